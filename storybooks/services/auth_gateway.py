"""
Auth gateway: the login/session state machine behind the HTTP routes.

States per request:

    ANONYMOUS --initiate_login--> PENDING_PROVIDER_REDIRECT
    (provider) --callback--> AWAITING_CALLBACK --> AUTHENTICATED | ANONYMOUS
    AUTHENTICATED --logout--> ANONYMOUS

Every operation returns an AuthResult; the route layer turns it into a 302
plus cookie changes. No failure detail is ever placed in the redirect.
"""
import enum
from collections.abc import Mapping
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storybooks.config import Settings
from storybooks.errors import (
    AuthDenied,
    AuthProviderError,
    AuthStateMismatch,
    DirectoryError,
    LoginRequired,
    StateStoreError,
)
from storybooks.models.user import User
from storybooks.oauth import IdentityProvider
from storybooks.routes.metrics import track_callback, track_logout, track_session_created
from storybooks.sentry_config import capture_exception
from storybooks.services.session_store import SessionStore
from storybooks.services.user_directory import UserDirectory

logger = structlog.get_logger()

LOGIN_FAILED_PARAM = "error=login_failed"


class AuthState(str, enum.Enum):
    """Authentication state of a single request."""
    ANONYMOUS = "anonymous"
    PENDING_PROVIDER_REDIRECT = "pending_provider_redirect"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthResult:
    state: AuthState
    redirect_url: str
    session_token: str | None = None
    clear_session: bool = False


def _with_failure_flag(url: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{LOGIN_FAILED_PARAM}"


class AuthGateway:
    """Orchestrates provider, user directory and session store."""

    def __init__(
        self,
        provider: IdentityProvider,
        session_store: SessionStore,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self.provider = provider
        self.session_store = session_store
        self.session_factory = session_factory
        self.settings = settings

    @property
    def failure_url(self) -> str:
        return _with_failure_flag(self.settings.PUBLIC_ENTRY_URL)

    async def initiate_login(self) -> AuthResult:
        """ANONYMOUS -> PENDING_PROVIDER_REDIRECT. No session is created."""
        try:
            url, _ = await self.provider.build_authorization_url(self.settings.GOOGLE_SCOPES)
        except (AuthProviderError, StateStoreError) as e:
            logger.error("auth_login_unavailable", provider=self.provider.name, error=str(e))
            capture_exception(e)
            return AuthResult(AuthState.ANONYMOUS, self.failure_url)

        logger.info("auth_login_initiated", provider=self.provider.name)
        return AuthResult(AuthState.PENDING_PROVIDER_REDIRECT, url)

    async def handle_callback(
        self,
        query: Mapping[str, str],
        previous_session_token: str | None = None,
    ) -> AuthResult:
        """
        AWAITING_CALLBACK -> AUTHENTICATED on success, ANONYMOUS otherwise.

        All failures share one redirect and never set a cookie. On success any
        session the browser already held is revoked, so a login always starts
        from a fresh token.
        """
        log = logger.bind(provider=self.provider.name)
        try:
            profile = await self.provider.handle_callback(query)
            async with self.session_factory() as db:
                user = await UserDirectory(db, self.settings.USER_PROFILE_RESYNC).resolve_or_create(profile)
            try:
                if previous_session_token:
                    await self.session_store.revoke(previous_session_token)
                token = await self.session_store.create(user.id)
            except SQLAlchemyError as e:
                raise DirectoryError(f"Session insert failed: {e.__class__.__name__}") from e
        except AuthDenied as e:
            # Expected user choice, not an error.
            log.info("auth_callback_denied", reason=e.reason)
            track_callback(self.provider.name, "denied")
            return AuthResult(AuthState.ANONYMOUS, self.failure_url)
        except AuthStateMismatch as e:
            log.warning("auth_state_mismatch", security_event=True, detail=str(e))
            track_callback(self.provider.name, "state_mismatch")
            return AuthResult(AuthState.ANONYMOUS, self.failure_url)
        except AuthProviderError as e:
            log.error("auth_provider_error", error=str(e))
            capture_exception(e)
            track_callback(self.provider.name, "provider_error")
            return AuthResult(AuthState.ANONYMOUS, self.failure_url)
        except DirectoryError as e:
            log.error("auth_directory_error", error=str(e))
            capture_exception(e)
            track_callback(self.provider.name, "directory_error")
            return AuthResult(AuthState.ANONYMOUS, self.failure_url)
        except StateStoreError as e:
            log.error("auth_state_store_error", error=str(e))
            capture_exception(e)
            track_callback(self.provider.name, "state_store_error")
            return AuthResult(AuthState.ANONYMOUS, self.failure_url)

        log.info("auth_login_succeeded", user_id=user.id)
        track_callback(self.provider.name, "success")
        track_session_created()
        return AuthResult(AuthState.AUTHENTICATED, self.settings.LOGIN_SUCCESS_URL, session_token=token)

    async def current_user(self, session_token: str | None) -> User | None:
        """The authenticated user for a session token, or None."""
        return await self.session_store.lookup(session_token)

    async def require_authenticated(self, session_token: str | None) -> User:
        """
        Gate for protected handlers.

        Raises:
            LoginRequired: no valid session; the app redirects to the login entry page
        """
        user = await self.current_user(session_token)
        if user is None:
            raise LoginRequired()
        return user

    async def logout(self, session_token: str | None) -> AuthResult:
        """Any state -> ANONYMOUS. Succeeds even without a valid session."""
        try:
            await self.session_store.revoke(session_token)
        except SQLAlchemyError as e:
            # The cookie is cleared regardless; the record expires on its own.
            logger.error("auth_logout_revoke_failed", error=e.__class__.__name__)
            capture_exception(e)

        logger.info("auth_logout", had_session=bool(session_token))
        track_logout(bool(session_token))
        return AuthResult(AuthState.ANONYMOUS, self.settings.PUBLIC_ENTRY_URL, clear_session=True)
