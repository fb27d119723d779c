"""
structlog setup for the web app and the sweep worker.

Every event goes through redact_secrets before rendering, so a stray
`code=` or `token=` keyword never reaches the log stream.
"""
import logging
import sys

import structlog

from storybooks.config import Settings

REDACTED = "[redacted]"

# Keys that may carry OAuth codes, state values, tokens or cookie contents
SENSITIVE_KEYS = frozenset({
    "code",
    "state",
    "code_verifier",
    "access_token",
    "refresh_token",
    "id_token",
    "client_secret",
    "session_token",
    "token",
    "cookie",
    "authorization",
})


def redact_secrets(logger, method_name, event_dict):
    """structlog processor replacing sensitive values in place."""
    for key in event_dict.keys() & SENSITIVE_KEYS:
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(settings: Settings) -> None:
    """
    Route structlog through JSON on stdout.

    DEBUG switches to DEBUG level; the app name and environment are
    attached to every event.
    """
    level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(
        app=settings.APP_NAME,
        environment=settings.ENVIRONMENT,
    )
