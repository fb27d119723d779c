"""
Session store: opaque token to authenticated user.

The token is the only session value that leaves the server. Lookups never
raise for unknown or expired tokens; both come back as None.
"""
import secrets
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storybooks.models.base import as_utc, utcnow
from storybooks.models.session import Session
from storybooks.models.user import User
from storybooks.services.user_directory import UserDirectory

logger = structlog.get_logger()

UserLoader = Callable[[str], Awaitable[User | None]]


@dataclass(frozen=True)
class SessionRecord:
    token: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= as_utc(self.expires_at)


def new_session_token() -> str:
    # 256 bits, URL-safe, 43 characters
    return secrets.token_urlsafe(32)


def db_user_loader(session_factory: async_sessionmaker[AsyncSession]) -> UserLoader:
    """Build a loader that resolves session users through the user directory."""
    async def load(user_id: str) -> User | None:
        async with session_factory() as db:
            return await UserDirectory(db).get_by_id(user_id)
    return load


class SessionStore(ABC):
    """
    Session lifecycle shared by every backing.

    Subclasses only persist SessionRecord values; token generation, expiry
    and user resolution live here.
    """

    def __init__(
        self,
        user_loader: UserLoader,
        ttl_seconds: int = 60 * 60 * 24,
        sliding: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._load_user = user_loader
        self.ttl = timedelta(seconds=ttl_seconds)
        self.sliding = sliding
        self._clock = clock

    async def create(self, user_id: str) -> str:
        """Start a session for user_id and return its token."""
        now = self._clock()
        record = SessionRecord(
            token=new_session_token(),
            user_id=user_id,
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self._save(record)
        logger.info("session_created", user_id=user_id, expires_at=record.expires_at.isoformat())
        return record.token

    async def lookup(self, token: str | None) -> User | None:
        """
        Return the session's user, or None if the token is unknown or expired.

        Storage faults (DirectoryError, SQLAlchemyError) propagate; they are
        not an absence.
        """
        if not token:
            return None
        record = await self._get(token)
        if record is None:
            return None

        now = self._clock()
        if record.is_expired(now):
            await self._delete(token)
            return None

        user = await self._load_user(record.user_id)
        if user is None:
            # Orphaned session: its user is gone.
            await self._delete(token)
            return None

        if self.sliding:
            await self._touch(token, now + self.ttl)
        return user

    async def revoke(self, token: str | None) -> None:
        """Delete the session. Unknown tokens are ignored."""
        if token:
            await self._delete(token)

    async def sweep_expired(self) -> int:
        """Delete every expired session. Returns the number removed."""
        return await self._delete_expired(self._clock())

    @abstractmethod
    async def _save(self, record: SessionRecord) -> None: ...

    @abstractmethod
    async def _get(self, token: str) -> SessionRecord | None: ...

    @abstractmethod
    async def _delete(self, token: str) -> None: ...

    @abstractmethod
    async def _touch(self, token: str, expires_at: datetime) -> None: ...

    @abstractmethod
    async def _delete_expired(self, now: datetime) -> int: ...


class MemorySessionStore(SessionStore):
    """Dict-backed store. Sessions vanish with the process."""

    def __init__(self, user_loader: UserLoader, **kwargs):
        super().__init__(user_loader, **kwargs)
        self._records: dict[str, SessionRecord] = {}

    async def _save(self, record: SessionRecord) -> None:
        self._records[record.token] = record

    async def _get(self, token: str) -> SessionRecord | None:
        return self._records.get(token)

    async def _delete(self, token: str) -> None:
        self._records.pop(token, None)

    async def _touch(self, token: str, expires_at: datetime) -> None:
        record = self._records.get(token)
        if record is not None:
            self._records[token] = replace(record, expires_at=expires_at)

    async def _delete_expired(self, now: datetime) -> int:
        expired = [token for token, record in self._records.items() if record.is_expired(now)]
        for token in expired:
            self._records.pop(token, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class SqlSessionStore(SessionStore):
    """Sessions persisted in the `sessions` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], user_loader: UserLoader | None = None, **kwargs):
        self.session_factory = session_factory
        super().__init__(user_loader or db_user_loader(session_factory), **kwargs)

    async def _save(self, record: SessionRecord) -> None:
        async with self.session_factory() as db:
            db.add(Session(
                token=record.token,
                user_id=record.user_id,
                created_at=record.created_at,
                expires_at=record.expires_at,
            ))
            await db.commit()

    async def _get(self, token: str) -> SessionRecord | None:
        async with self.session_factory() as db:
            row = await db.get(Session, token)
            if row is None:
                return None
            return SessionRecord(
                token=row.token,
                user_id=row.user_id,
                created_at=as_utc(row.created_at),
                expires_at=as_utc(row.expires_at),
            )

    async def _delete(self, token: str) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(Session).where(Session.token == token))
            await db.commit()

    async def _touch(self, token: str, expires_at: datetime) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Session).where(Session.token == token).values(expires_at=expires_at)
            )
            await db.commit()

    async def _delete_expired(self, now: datetime) -> int:
        async with self.session_factory() as db:
            result = await db.execute(delete(Session).where(Session.expires_at <= now))
            await db.commit()
            return result.rowcount or 0

