"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing and context.
"""
import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from storybooks.routes.metrics import track_request

logger = structlog.get_logger()


def _route_template(request: Request) -> str:
    # Route templates keep metric label cardinality bounded.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: user_id, route, method, duration_ms, status to every log.
    Query strings are never logged: the OAuth callback carries code and state.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        request_logger = logger.bind(
            route=request.url.path,
            method=request.method,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            request_logger.error(
                "request_failed",
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=e.__class__.__name__
            )
            raise

        duration = time.time() - start_time

        # Set by the auth dependencies during handling
        user_id = getattr(request.state, "user_id", None)

        request_logger.info(
            "request_completed",
            user_id=str(user_id) if user_id else None,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2)
        )
        track_request(request.method, _route_template(request), response.status_code, duration)

        return response
