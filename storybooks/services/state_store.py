"""
Pending authorization request store.

An AuthorizationRequest lives between login initiation and the provider
callback. consume() is the only read path and always deletes: a state value
can be redeemed at most once.
"""
import json
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from storybooks.errors import StateStoreError

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthorizationRequest:
    """In-flight login attempt keyed by its anti-forgery state."""
    state: str
    requested_at: float
    scopes: list[str] = field(default_factory=list)
    code_verifier: str | None = None

    def is_expired(self, ttl_seconds: int, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - self.requested_at >= ttl_seconds


class AuthorizationRequestStore(ABC):
    """Storage for pending authorization requests."""

    def __init__(self, ttl_seconds: int = 600):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def put(self, request: AuthorizationRequest) -> None:
        """Record a pending request."""

    @abstractmethod
    async def consume(self, state: str) -> AuthorizationRequest | None:
        """
        Atomically remove and return the request for state.

        Returns None when the state is unknown, already consumed or expired.

        Raises:
            StateStoreError: the backing store is unreachable
        """

    async def prune_expired(self) -> int:
        """Drop requests whose callback never arrived. Returns count removed."""
        return 0


class MemoryStateStore(AuthorizationRequestStore):
    """In-process store for tests and single-worker deployments."""

    def __init__(self, ttl_seconds: int = 600, clock=time.time):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._requests: dict[str, AuthorizationRequest] = {}

    async def put(self, request: AuthorizationRequest) -> None:
        # Abandoned logins never reach consume(); drop them here.
        await self.prune_expired()
        self._requests[request.state] = request

    async def consume(self, state: str) -> AuthorizationRequest | None:
        # No await between lookup and delete: pop is atomic on the event loop.
        request = self._requests.pop(state, None)
        if request is None:
            return None
        if request.is_expired(self.ttl_seconds, now=self._clock()):
            return None
        return request

    async def prune_expired(self) -> int:
        now = self._clock()
        expired = [
            state for state, request in self._requests.items()
            if request.is_expired(self.ttl_seconds, now=now)
        ]
        for state in expired:
            self._requests.pop(state, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._requests)


class RedisStateStore(AuthorizationRequestStore):
    """
    Redis-backed store shared by all web workers.

    Expiry is delegated to key TTLs; consumption uses GETDEL so two
    concurrent callbacks with the same state cannot both succeed.
    """

    KEY_PREFIX = "oauth:state:"

    def __init__(self, redis_url: str | None = None, ttl_seconds: int = 600, client=None):
        super().__init__(ttl_seconds)
        self.redis_url = redis_url
        self._redis = client

    async def get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _key(self, state: str) -> str:
        return f"{self.KEY_PREFIX}{state}"

    async def put(self, request: AuthorizationRequest) -> None:
        r = await self.get_redis()
        try:
            await r.set(self._key(request.state), json.dumps(asdict(request)), ex=self.ttl_seconds)
        except RedisError as e:
            raise StateStoreError(f"State write failed: {e.__class__.__name__}") from e

    async def consume(self, state: str) -> AuthorizationRequest | None:
        r = await self.get_redis()
        try:
            raw = await r.getdel(self._key(state))
        except RedisError as e:
            raise StateStoreError(f"State read failed: {e.__class__.__name__}") from e
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            request = AuthorizationRequest(**data)
        except (TypeError, ValueError):
            logger.warning("oauth_state_corrupt")
            return None
        # Redis TTL has second granularity
        if request.is_expired(self.ttl_seconds):
            return None
        return request

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
