"""
User directory: maps provider profiles onto local users.
"""
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storybooks.errors import DirectoryError
from storybooks.models.user import User

logger = structlog.get_logger()

PROFILE_FIELDS = ("display_name", "email", "first_name", "last_name", "avatar_url")


@dataclass(frozen=True)
class ProviderProfile:
    """Normalized identity returned by an identity provider."""
    provider_id: str
    display_name: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None


class UserDirectory:
    """Service for resolving and creating users."""

    def __init__(self, db: AsyncSession, resync_profile: bool = False):
        self.db = db
        self.resync_profile = resync_profile

    async def get_by_id(self, user_id: str) -> User | None:
        """
        Get user by ID.

        Args:
            user_id: User UUID

        Returns:
            User or None if not found
        """
        try:
            return await self.db.get(User, user_id)
        except SQLAlchemyError as e:
            raise DirectoryError(f"User lookup failed: {e.__class__.__name__}") from e

    async def get_by_provider_id(self, provider_id: str) -> User | None:
        """
        Get user by the provider's stable subject identifier.

        Args:
            provider_id: External subject (Google "sub")

        Returns:
            User or None if not found
        """
        stmt = select(User).where(User.provider_id == provider_id)
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise DirectoryError(f"User lookup failed: {e.__class__.__name__}") from e
        return result.scalar_one_or_none()

    async def resolve_or_create(self, profile: ProviderProfile) -> User:
        """
        Return the user for profile.provider_id, creating it on first login.

        Stored profile fields are left untouched on later logins unless
        resync_profile is enabled.

        Raises:
            DirectoryError: on any persistence failure
        """
        user = await self.get_by_provider_id(profile.provider_id)
        if user is not None:
            if self.resync_profile:
                await self._resync(user, profile)
            return user

        user = User(
            provider_id=profile.provider_id,
            display_name=profile.display_name,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            avatar_url=profile.avatar_url,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent first login created the row; use theirs.
            await self.db.rollback()
            existing = await self.get_by_provider_id(profile.provider_id)
            if existing is None:
                raise DirectoryError("User insert conflicted but no row exists")
            return existing
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DirectoryError(f"User insert failed: {e.__class__.__name__}") from e

        logger.info("user_created", user_id=user.id)
        return user

    async def _resync(self, user: User, profile: ProviderProfile) -> None:
        changed = []
        for name in PROFILE_FIELDS:
            value = getattr(profile, name)
            if value is not None and getattr(user, name) != value:
                setattr(user, name, value)
                changed.append(name)
        if not changed:
            return
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DirectoryError(f"User update failed: {e.__class__.__name__}") from e
        logger.info("user_profile_resynced", user_id=user.id, fields=changed)
