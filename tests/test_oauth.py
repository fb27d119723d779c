"""
Tests for the Google authorization-code client.

Google's token and userinfo endpoints are served by FakeGoogle through an
httpx.MockTransport.
"""
import time
from urllib.parse import parse_qs, urlparse

import pytest
from authlib.oauth2.rfc7636 import create_s256_code_challenge

from storybooks.errors import AuthDenied, AuthProviderError, AuthStateMismatch
from storybooks.oauth import GoogleIdentityProvider, normalize_google_profile
from storybooks.services.state_store import AuthorizationRequest, MemoryStateStore

SCOPES = ["openid", "email", "profile"]


def query_of(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.fixture
def state_store():
    return MemoryStateStore(ttl_seconds=600)


@pytest.fixture
def provider(settings, state_store, google):
    return GoogleIdentityProvider(settings, state_store, transport=google.transport)


async def seed_state(store, state="s1", code_verifier="v" * 64):
    await store.put(AuthorizationRequest(
        state=state, requested_at=time.time(), scopes=SCOPES, code_verifier=code_verifier,
    ))


class TestAuthorizationUrl:

    @pytest.mark.asyncio
    async def test_url_carries_required_parameters(self, provider, settings):
        url, state = await provider.build_authorization_url(SCOPES)

        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        params = query_of(url)
        assert params["response_type"] == "code"
        assert params["client_id"] == settings.GOOGLE_CLIENT_ID
        assert params["redirect_uri"] == settings.GOOGLE_REDIRECT_URI
        assert params["scope"] == "openid email profile"
        assert params["state"] == state
        assert params["code_challenge_method"] == "S256"
        assert len(state) >= 20

    @pytest.mark.asyncio
    async def test_pkce_challenge_matches_stored_verifier(self, provider, state_store):
        url, state = await provider.build_authorization_url(SCOPES)

        pending = await state_store.consume(state)

        assert pending.scopes == SCOPES
        assert query_of(url)["code_challenge"] == create_s256_code_challenge(pending.code_verifier)

    @pytest.mark.asyncio
    async def test_each_call_issues_fresh_state(self, provider, state_store):
        _, first = await provider.build_authorization_url(SCOPES)
        _, second = await provider.build_authorization_url(SCOPES)

        assert first != second
        assert len(state_store) == 2

    @pytest.mark.asyncio
    async def test_unconfigured_client_refuses(self, settings, state_store):
        unconfigured = settings.model_copy(update={"GOOGLE_CLIENT_SECRET": None})
        provider = GoogleIdentityProvider(unconfigured, state_store)

        with pytest.raises(AuthProviderError):
            await provider.build_authorization_url(SCOPES)
        assert len(state_store) == 0


class TestCallback:

    @pytest.mark.asyncio
    async def test_successful_exchange_returns_profile(self, provider, state_store, google):
        await seed_state(state_store)

        profile = await provider.handle_callback({"code": "abc", "state": "s1"})

        assert profile.provider_id == "109876543210"
        assert profile.display_name == "Ada Lovelace"
        assert profile.email == "ada@example.com"
        assert profile.avatar_url == "https://lh3.googleusercontent.com/a/ada"

        body = google.token_requests[0]
        assert body["grant_type"] == "authorization_code"
        assert body["code"] == "abc"
        assert body["code_verifier"] == "v" * 64
        assert google.userinfo_requests == ["Bearer ya29.test-access-token"]

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, provider, state_store, google):
        await seed_state(state_store)
        await provider.handle_callback({"code": "abc", "state": "s1"})

        with pytest.raises(AuthStateMismatch):
            await provider.handle_callback({"code": "abc", "state": "s1"})
        assert len(google.token_requests) == 1

    @pytest.mark.asyncio
    async def test_missing_state(self, provider, google):
        with pytest.raises(AuthStateMismatch):
            await provider.handle_callback({"code": "abc"})
        assert google.token_requests == []

    @pytest.mark.asyncio
    async def test_unknown_state(self, provider, google):
        with pytest.raises(AuthStateMismatch):
            await provider.handle_callback({"code": "abc", "state": "forged"})
        assert google.token_requests == []

    @pytest.mark.asyncio
    async def test_expired_state(self, settings, google):
        clock = [1000.0]
        store = MemoryStateStore(ttl_seconds=600, clock=lambda: clock[0])
        provider = GoogleIdentityProvider(settings, store, transport=google.transport, clock=lambda: clock[0])
        _, state = await provider.build_authorization_url(SCOPES)

        clock[0] += 600
        with pytest.raises(AuthStateMismatch):
            await provider.handle_callback({"code": "abc", "state": state})

    @pytest.mark.asyncio
    async def test_denial_consumes_state(self, provider, state_store, google):
        await seed_state(state_store)

        with pytest.raises(AuthDenied) as exc_info:
            await provider.handle_callback({"error": "access_denied", "state": "s1"})
        assert exc_info.value.reason == "access_denied"

        with pytest.raises(AuthStateMismatch):
            await provider.handle_callback({"code": "abc", "state": "s1"})
        assert google.token_requests == []

    @pytest.mark.asyncio
    async def test_error_with_forged_state_is_a_mismatch(self, provider, state_store, google):
        await seed_state(state_store)

        with pytest.raises(AuthStateMismatch):
            await provider.handle_callback({"error": "access_denied", "state": "forged"})
        with pytest.raises(AuthStateMismatch):
            await provider.handle_callback({"error": "access_denied"})

        # The issued request is untouched by the forged callbacks
        assert len(state_store) == 1
        assert google.token_requests == []

    @pytest.mark.asyncio
    async def test_neither_code_nor_error(self, provider, state_store):
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"state": "s1"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 500, 503])
    async def test_token_endpoint_error_status(self, provider, state_store, google, status):
        google.token_status = status
        google.token_payload = {"error": "invalid_grant"}
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"code": "abc", "state": "s1"})

    @pytest.mark.asyncio
    async def test_token_endpoint_error_body_on_200(self, provider, state_store, google):
        google.token_payload = {"error": "invalid_grant", "error_description": "Bad Request"}
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"code": "abc", "state": "s1"})

    @pytest.mark.asyncio
    async def test_token_endpoint_timeout(self, provider, state_store, google):
        google.timeout = True
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"code": "abc", "state": "s1"})

    @pytest.mark.asyncio
    async def test_malformed_token_response(self, provider, state_store, google):
        google.token_body = b"<html>Service Unavailable</html>"
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"code": "abc", "state": "s1"})

    @pytest.mark.asyncio
    async def test_token_response_without_access_token(self, provider, state_store, google):
        google.token_payload = {"token_type": "Bearer", "expires_in": 3599}
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"code": "abc", "state": "s1"})

    @pytest.mark.asyncio
    async def test_userinfo_rejected(self, provider, state_store, google):
        google.userinfo_status = 401
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"code": "abc", "state": "s1"})

    @pytest.mark.asyncio
    async def test_userinfo_without_subject(self, provider, state_store, google):
        google.userinfo_payload = {"name": "Nobody"}
        await seed_state(state_store)

        with pytest.raises(AuthProviderError):
            await provider.handle_callback({"code": "abc", "state": "s1"})


class TestNormalizeGoogleProfile:

    def test_legacy_id_field(self):
        profile = normalize_google_profile({"id": "42", "name": "Ada"})
        assert profile.provider_id == "42"

    def test_unverified_email_is_dropped(self):
        profile = normalize_google_profile({
            "sub": "42", "name": "Ada", "email": "ada@example.com", "email_verified": False,
        })
        assert profile.email is None

    def test_display_name_falls_back(self):
        assert normalize_google_profile(
            {"sub": "42", "given_name": "Ada", "family_name": "Lovelace"}
        ).display_name == "Ada Lovelace"
        assert normalize_google_profile(
            {"sub": "42", "email": "ada@example.com"}
        ).display_name == "ada@example.com"
        assert normalize_google_profile({"sub": "42"}).display_name == "42"
