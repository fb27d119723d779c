"""
Prometheus metrics endpoint.

Exposes login and session lifecycle counters for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

router = APIRouter(tags=["Metrics"])

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Auth Metrics
# ============================================

auth_callbacks = Counter(
    'auth_callbacks_total',
    'OAuth callbacks by outcome',
    ['provider', 'outcome']
)

sessions_created = Counter(
    'sessions_created_total',
    'Sessions established after login'
)

logouts = Counter(
    'logouts_total',
    'Logout requests',
    ['had_session']
)

sessions_swept = Counter(
    'sessions_swept_total',
    'Expired sessions removed by the periodic sweep'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_callback(provider: str, outcome: str):
    """Record a callback outcome (success, denied, state_mismatch, provider_error, directory_error, state_store_error)."""
    auth_callbacks.labels(provider=provider, outcome=outcome).inc()


def track_session_created():
    sessions_created.inc()


def track_logout(had_session: bool):
    logouts.labels(had_session=str(had_session).lower()).inc()


def track_sessions_swept(count: int):
    if count:
        sessions_swept.inc(count)


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
