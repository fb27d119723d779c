"""
Authentication dependencies for FastAPI.

Protected handlers declare `Depends(require_authenticated)`; views that only
need to know whether someone is logged in use `Depends(current_user)`.
"""
from fastapi import Depends, Request

from storybooks.models.user import User
from storybooks.services.auth_gateway import AuthGateway
from storybooks.services.session_cookie import SessionCookie


def get_gateway(request: Request) -> AuthGateway:
    return request.app.state.auth_gateway


def get_session_cookie(request: Request) -> SessionCookie:
    return request.app.state.session_cookie


def get_session_token(
    request: Request,
    session_cookie: SessionCookie = Depends(get_session_cookie)
) -> str | None:
    """Verified session token from the request cookie, or None."""
    return session_cookie.decode(request.cookies.get(session_cookie.name))


def _attach(request: Request, user: User) -> None:
    request.state.user = user
    request.state.user_id = user.id


async def current_user(
    request: Request,
    session_token: str | None = Depends(get_session_token),
    gateway: AuthGateway = Depends(get_gateway)
) -> User | None:
    """
    The logged-in user for this request, or None.

    Usage:
        @router.get("/")
        async def index(user: User | None = Depends(current_user)):
            ...
    """
    user = await gateway.current_user(session_token)
    if user is not None:
        _attach(request, user)
    return user


async def require_authenticated(
    request: Request,
    session_token: str | None = Depends(get_session_token),
    gateway: AuthGateway = Depends(get_gateway)
) -> User:
    """
    Dependency that requires a valid session.

    Raises LoginRequired for anonymous requests, which the app turns into a
    302 to the login entry page.

    Usage:
        @router.get("/dashboard")
        async def dashboard(user: User = Depends(require_authenticated)):
            ...
    """
    user = await gateway.require_authenticated(session_token)
    _attach(request, user)
    return user
