"""
Sentry configuration for error tracking.

Captures provider and persistence failures from the login flow.
"""
import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from storybooks.config import Settings

logger = structlog.get_logger()


def configure_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Does nothing unless SENTRY_DSN is set. Returns whether Sentry is active.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.info("sentry_disabled")
        return False

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=scrub_event,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
        send_default_pii=False,
    )

    logger.info("sentry_enabled", environment=settings.ENVIRONMENT)
    return True


def scrub_event(event, hint):
    """
    Drop cookies and query strings from request data.

    The session cookie and the OAuth code/state must never reach Sentry.
    """
    request = event.get("request")
    if request:
        request.pop("cookies", None)
        request.pop("query_string", None)
        headers = request.get("headers")
        if isinstance(headers, dict):
            headers.pop("Cookie", None)
            headers.pop("cookie", None)
    return event


def capture_exception(exc=None):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            # some code
        except Exception as exc:
            capture_exception(exc)
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc)
