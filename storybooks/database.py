"""
Async database engine and session factory.
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storybooks.config import Settings
from storybooks.models.base import Base


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for DATABASE_URL."""
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=not settings.DATABASE_URL.startswith("sqlite"),
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps loaded users usable after their session closes
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create all tables registered on Base."""
    # Register models with Base before create_all
    from storybooks.models import session, user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
