"""Initialize database schema for the catalog mirror.

Creates every table used by the sync job and seeds the integration row the
job reads its base URL from. Run this before starting the API server.
"""

import asyncio
import sys

from sqlalchemy import select

from anvisa_sync.config import settings
from anvisa_sync.db import AsyncSessionMaker, dispose_engine, engine
from anvisa_sync.models import Base, IntegrationConfig


async def init_database():
    """Create all tables and the default integration row."""
    print(f"Initializing database: {settings.db.url}")
    print("Creating tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        print("✓ Created all tables")

    async with AsyncSessionMaker() as session:
        name = settings.integration.name
        existing = await session.execute(
            select(IntegrationConfig).where(IntegrationConfig.integration_name == name)
        )
        if existing.scalar_one_or_none() is None:
            session.add(
                IntegrationConfig(
                    integration_name=name,
                    base_url=settings.integration.default_base_url,
                    is_active=True,
                )
            )
            await session.commit()
            print(f"✓ Seeded integration '{name}'")
        else:
            print(f"✓ Integration '{name}' already configured")

    print("\n✅ Database initialization complete!")
    print(f"Tables: {', '.join(Base.metadata.tables.keys())}")


async def main():
    """Main entry point."""
    try:
        await init_database()
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
