"""
OAuth 2.0 identity provider clients.

SECURITY: This module handles the authorization-code exchange. Never log
codes, tokens or client secrets from here.
"""
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping

import httpx
import structlog
from authlib.common.security import generate_token
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from storybooks.config import Settings
from storybooks.errors import AuthDenied, AuthProviderError, AuthStateMismatch
from storybooks.services.state_store import AuthorizationRequest, AuthorizationRequestStore
from storybooks.services.user_directory import ProviderProfile

logger = structlog.get_logger()


class IdentityProvider(ABC):
    """Authorization-code flow against one external provider."""

    name: str

    @abstractmethod
    async def build_authorization_url(self, requested_scopes: list[str]) -> tuple[str, str]:
        """Record a pending request and return (authorization URL, state)."""

    @abstractmethod
    async def handle_callback(self, query: Mapping[str, str]) -> ProviderProfile:
        """
        Complete the flow from the provider's callback query.

        Raises:
            AuthStateMismatch: state missing, unknown, expired or replayed,
                checked before any provider error
            AuthDenied: the user declined consent
            AuthProviderError: exchange or profile fetch failed
            StateStoreError: the pending request store is unreachable
        """


def _raise_for_status(resp: httpx.Response) -> httpx.Response:
    # Authlib only raises on 5xx; any non-2xx token response is a failure here.
    resp.raise_for_status()
    return resp


class GoogleIdentityProvider(IdentityProvider):
    """Google OAuth 2.0 / OpenID Connect client."""

    name = "google"

    def __init__(
        self,
        settings: Settings,
        state_store: AuthorizationRequestStore,
        transport: httpx.AsyncBaseTransport | None = None,
        clock=time.time,
    ):
        self.settings = settings
        self.state_store = state_store
        self._transport = transport
        self._clock = clock

    def _client(self) -> AsyncOAuth2Client:
        secret = self.settings.GOOGLE_CLIENT_SECRET
        client_kwargs = {}
        if self._transport is not None:
            client_kwargs["transport"] = self._transport
        client = AsyncOAuth2Client(
            client_id=self.settings.GOOGLE_CLIENT_ID,
            client_secret=secret.get_secret_value() if secret else None,
            redirect_uri=self.settings.GOOGLE_REDIRECT_URI,
            code_challenge_method="S256",
            timeout=self.settings.OAUTH_HTTP_TIMEOUT_SECONDS,
            **client_kwargs,
        )
        client.register_compliance_hook("access_token_response", _raise_for_status)
        return client

    async def build_authorization_url(self, requested_scopes: list[str]) -> tuple[str, str]:
        """
        Build Google's consent URL.

        A fresh state and PKCE verifier are generated per call and stored as
        the pending AuthorizationRequest.
        """
        if not self.settings.GOOGLE_CLIENT_ID or not self.settings.GOOGLE_CLIENT_SECRET:
            raise AuthProviderError("Google OAuth client is not configured")

        code_verifier = generate_token(64)
        async with self._client() as client:
            url, state = client.create_authorization_url(
                self.settings.GOOGLE_AUTHORIZE_URL,
                scope=list(requested_scopes),
                code_verifier=code_verifier,
            )

        await self.state_store.put(AuthorizationRequest(
            state=state,
            requested_at=self._clock(),
            scopes=list(requested_scopes),
            code_verifier=code_verifier,
        ))
        return url, state

    async def handle_callback(self, query: Mapping[str, str]) -> ProviderProfile:
        state = query.get("state")
        # Consume before anything else so every outcome burns the state.
        pending = await self.state_store.consume(state) if state else None

        # A denial only counts when it answers a request we issued.
        if pending is None:
            raise AuthStateMismatch("Unknown, expired or replayed state" if state else "Missing state")
        error = query.get("error")
        if error:
            raise AuthDenied(error)

        code = query.get("code")
        if not code:
            raise AuthProviderError("Callback carried neither code nor error")

        async with self._client() as client:
            await self._exchange_code(client, code, pending.code_verifier)
            userinfo = await self._fetch_userinfo(client)

        profile = normalize_google_profile(userinfo)
        logger.info("oauth_profile_fetched", provider=self.name)
        return profile

    async def _exchange_code(self, client: AsyncOAuth2Client, code: str, code_verifier: str | None) -> dict:
        params = {"code": code}
        if code_verifier:
            params["code_verifier"] = code_verifier
        try:
            token = await client.fetch_token(self.settings.GOOGLE_TOKEN_URL, **params)
        except httpx.TimeoutException as e:
            raise AuthProviderError("Token exchange timed out") from e
        except httpx.HTTPStatusError as e:
            raise AuthProviderError(f"Token exchange failed (status={e.response.status_code})") from e
        except OAuthError as e:
            raise AuthProviderError(f"Token exchange rejected ({e.error})") from e
        except (httpx.HTTPError, ValueError, TypeError, KeyError) as e:
            raise AuthProviderError(f"Token exchange failed ({e.__class__.__name__})") from e

        if not isinstance(token, Mapping) or not token.get("access_token"):
            raise AuthProviderError("Token response missing access_token")
        return dict(token)

    async def _fetch_userinfo(self, client: AsyncOAuth2Client) -> dict:
        try:
            resp = await client.get(self.settings.GOOGLE_USERINFO_URL)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            raise AuthProviderError("Userinfo request timed out") from e
        except httpx.HTTPStatusError as e:
            raise AuthProviderError(f"Userinfo request failed (status={e.response.status_code})") from e
        except (OAuthError, httpx.HTTPError, ValueError, KeyError) as e:
            raise AuthProviderError(f"Userinfo request failed ({e.__class__.__name__})") from e

        if not isinstance(data, dict):
            raise AuthProviderError("Userinfo response is not an object")
        return data


def normalize_google_profile(userinfo: Mapping) -> ProviderProfile:
    """
    Map a Google userinfo payload onto ProviderProfile.

    Accepts both the OpenID Connect endpoint ("sub") and the legacy v2
    endpoint ("id").
    """
    subject = userinfo.get("sub") or userinfo.get("id")
    if not subject:
        raise AuthProviderError("Userinfo response missing subject")

    first_name = userinfo.get("given_name") or None
    last_name = userinfo.get("family_name") or None
    email = userinfo.get("email") or None
    # Unverified addresses are not trusted as identity data.
    if userinfo.get("email_verified") is False:
        email = None

    display_name = (
        userinfo.get("name")
        or " ".join(part for part in (first_name, last_name) if part)
        or email
        or str(subject)
    )

    return ProviderProfile(
        provider_id=str(subject),
        display_name=str(display_name),
        email=email,
        first_name=first_name,
        last_name=last_name,
        avatar_url=userinfo.get("picture") or None,
    )
