"""
StoryBooks - Google login with server-side sessions

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

# Import observability modules
from storybooks.config import Settings, get_settings
from storybooks.database import create_all_tables, create_engine, create_session_factory
from storybooks.errors import LoginRequired
from storybooks.logging_config import configure_logging
from storybooks.middleware.logging import LoggingMiddleware
from storybooks.oauth import GoogleIdentityProvider
from storybooks.sentry_config import configure_sentry
from storybooks.services.auth_gateway import AuthGateway
from storybooks.services.session_cookie import SessionCookie
from storybooks.services.session_store import MemorySessionStore, SqlSessionStore, db_user_loader
from storybooks.services.state_store import MemoryStateStore, RedisStateStore

# Import route modules
from storybooks.routes.auth import router as auth_router
from storybooks.routes.metrics import router as metrics_router
from storybooks.routes.pages import router as pages_router

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    provider_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the application and wire the auth subsystem.

    Args:
        settings: Defaults to environment settings
        provider_transport: httpx transport for provider calls (tests)
    """
    settings = settings or get_settings()

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    if settings.REDIS_URL:
        state_store = RedisStateStore(settings.REDIS_URL, ttl_seconds=settings.AUTH_STATE_TTL_SECONDS)
    else:
        state_store = MemoryStateStore(ttl_seconds=settings.AUTH_STATE_TTL_SECONDS)

    session_options = {
        "ttl_seconds": settings.SESSION_TTL_SECONDS,
        "sliding": settings.SESSION_SLIDING,
    }
    if settings.SESSION_BACKEND == "memory":
        session_store = MemorySessionStore(db_user_loader(session_factory), **session_options)
    else:
        session_store = SqlSessionStore(session_factory, **session_options)

    provider = GoogleIdentityProvider(settings, state_store, transport=provider_transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.DATABASE_CREATE_TABLES:
            await create_all_tables(engine)
        logger.info(
            "app_started",
            session_backend=settings.SESSION_BACKEND,
            state_backend=state_store.__class__.__name__,
        )
        try:
            yield
        finally:
            if isinstance(state_store, RedisStateStore):
                await state_store.close()
            await engine.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Google OAuth2 login with server-side sessions",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.state_store = state_store
    app.state.session_store = session_store
    app.state.session_cookie = SessionCookie(settings)
    app.state.auth_gateway = AuthGateway(provider, session_store, session_factory, settings)

    # Add logging middleware FIRST (runs before other middleware)
    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(LoginRequired)
    async def login_required_handler(request: Request, exc: LoginRequired):
        return RedirectResponse(url=settings.LOGIN_ENTRY_URL, status_code=302)

    # Include metrics endpoint FIRST (so it's always available)
    app.include_router(metrics_router)

    # Include authentication routes
    app.include_router(auth_router)

    # Include page routes
    app.include_router(pages_router)

    @app.get("/health")
    async def health():
        """Liveness check."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "healthy"
        }

    return app


def main():
    """Run the server with uvicorn."""
    settings = get_settings()
    configure_logging(settings)
    configure_sentry(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    main()
