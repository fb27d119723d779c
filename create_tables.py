"""
Script to create all database tables.

This script creates all tables defined in the models.
Run this after starting PostgreSQL with Docker.
"""
import asyncio

from storybooks.config import get_settings
from storybooks.database import create_all_tables, create_engine


async def main():
    """Main entry point."""
    print("Creating database tables...")
    engine = create_engine(get_settings())
    try:
        await create_all_tables(engine)
    finally:
        await engine.dispose()
    print("All tables created successfully!")


if __name__ == "__main__":
    asyncio.run(main())
