"""
Authentication routes for Google OAuth.

Every endpoint answers with a 302. Failure details stay in the logs.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from storybooks.dependencies.auth import get_gateway, get_session_cookie, get_session_token
from storybooks.services.auth_gateway import AuthGateway, AuthResult
from storybooks.services.session_cookie import SessionCookie

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _redirect(result: AuthResult, session_cookie: SessionCookie) -> RedirectResponse:
    response = RedirectResponse(url=result.redirect_url, status_code=302)
    if result.session_token:
        response.set_cookie(**session_cookie.set_kwargs(result.session_token))
    elif result.clear_session:
        response.delete_cookie(**session_cookie.delete_kwargs())
    return response


@router.get("/google")
async def google_login(
    gateway: AuthGateway = Depends(get_gateway),
    session_cookie: SessionCookie = Depends(get_session_cookie)
):
    """
    Redirect user to Google OAuth consent page.
    """
    result = await gateway.initiate_login()
    return _redirect(result, session_cookie)


@router.get("/google/callback")
async def google_callback(
    request: Request,
    session_token: str | None = Depends(get_session_token),
    gateway: AuthGateway = Depends(get_gateway),
    session_cookie: SessionCookie = Depends(get_session_cookie)
):
    """
    Handle Google OAuth callback (server-side flow).

    Google sends either `code` & `state` or `error` & `state`.
    """
    result = await gateway.handle_callback(
        request.query_params,
        previous_session_token=session_token
    )
    return _redirect(result, session_cookie)


@router.post("/logout")
async def logout(
    session_token: str | None = Depends(get_session_token),
    gateway: AuthGateway = Depends(get_gateway),
    session_cookie: SessionCookie = Depends(get_session_cookie)
):
    """
    Logout endpoint.

    POST only, so link prefetchers and crawlers cannot end a session.
    """
    result = await gateway.logout(session_token)
    return _redirect(result, session_cookie)
