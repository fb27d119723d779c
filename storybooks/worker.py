"""
ARQ background worker for StoryBooks.

Runs the periodic expired-session sweep. Request handling never waits on it:
lookups already refuse expired sessions on their own.

Start with: arq storybooks.worker.WorkerSettings
"""
import structlog
from arq import cron
from arq.connections import RedisSettings

from storybooks.config import get_settings
from storybooks.database import create_engine, create_session_factory
from storybooks.logging_config import configure_logging
from storybooks.routes.metrics import track_sessions_swept
from storybooks.sentry_config import configure_sentry
from storybooks.services.session_store import SqlSessionStore

logger = structlog.get_logger()


async def startup(ctx: dict) -> None:
    """Open the database engine once per worker process."""
    settings = get_settings()
    configure_logging(settings)
    configure_sentry(settings)
    engine = create_engine(settings)
    ctx["engine"] = engine
    ctx["session_store"] = SqlSessionStore(
        create_session_factory(engine),
        ttl_seconds=settings.SESSION_TTL_SECONDS,
        sliding=settings.SESSION_SLIDING,
    )


async def shutdown(ctx: dict) -> None:
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()


async def sweep_expired_sessions(ctx: dict) -> dict:
    """Delete sessions whose expires_at has passed."""
    store = ctx["session_store"]
    removed = await store.sweep_expired()
    track_sessions_swept(removed)
    logger.info("session_swept", removed=removed)
    return {"removed": removed}


def redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(get_settings().REDIS_URL or "redis://localhost:6379")


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq storybooks.worker.WorkerSettings'"""
    redis_settings = redis_settings()
    on_startup = startup
    on_shutdown = shutdown
    functions = [sweep_expired_sessions]
    cron_jobs = [
        cron(sweep_expired_sessions, minute={0, 15, 30, 45}, run_at_startup=True),
    ]
    job_timeout = 300
