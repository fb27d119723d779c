"""
Pytest config.

Google is simulated with an httpx.MockTransport and the database is a
per-test SQLite file, so no network or PostgreSQL is needed.
"""
import os
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

# get_settings() is only hit by modules that read the environment at import
os.environ.setdefault("SESSION_SECRET", "test-secret-key-for-testing-purposes-only")

from storybooks.config import Settings  # noqa: E402
from storybooks.database import create_all_tables, create_session_factory  # noqa: E402
from storybooks.main import create_app  # noqa: E402

GOOGLE_USERINFO = {
    "sub": "109876543210",
    "name": "Ada Lovelace",
    "given_name": "Ada",
    "family_name": "Lovelace",
    "email": "ada@example.com",
    "email_verified": True,
    "picture": "https://lh3.googleusercontent.com/a/ada",
}


class FakeGoogle:
    """Token and userinfo endpoints with switchable failure modes."""

    def __init__(self):
        self.token_status = 200
        self.token_payload = {
            "access_token": "ya29.test-access-token",
            "token_type": "Bearer",
            "expires_in": 3599,
            "scope": "openid email profile",
        }
        self.token_body = None
        self.userinfo_status = 200
        self.userinfo_payload = dict(GOOGLE_USERINFO)
        self.timeout = False
        self.token_requests = []
        self.userinfo_requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com" and request.url.path == "/token":
            self.token_requests.append(dict(parse_qsl(request.content.decode())))
            if self.timeout:
                raise httpx.ReadTimeout("timed out", request=request)
            if self.token_body is not None:
                return httpx.Response(self.token_status, content=self.token_body)
            return httpx.Response(self.token_status, json=self.token_payload)

        if request.url.host == "openidconnect.googleapis.com":
            self.userinfo_requests.append(request.headers.get("Authorization"))
            return httpx.Response(self.userinfo_status, json=self.userinfo_payload)

        return httpx.Response(404, json={"error": "not_found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "SESSION_SECRET": "test-secret-key-for-testing-purposes-only",
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'storybooks.db'}",
        "DATABASE_CREATE_TABLES": True,
        "REDIS_URL": None,
        "GOOGLE_CLIENT_ID": "test-client-id.apps.googleusercontent.com",
        "GOOGLE_CLIENT_SECRET": "test-client-secret",
        "GOOGLE_REDIRECT_URI": "https://testserver/auth/google/callback",
        "SENTRY_DSN": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app(settings, google):
    return create_app(settings, provider_transport=google.transport)


@pytest.fixture
def client(app):
    # https so the Secure session cookie is sent back on later requests
    with TestClient(app, base_url="https://testserver") as c:
        yield c


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'services.db'}")
    await create_all_tables(engine)
    yield create_session_factory(engine)
    await engine.dispose()
