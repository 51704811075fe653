"""Async engine and session factory for the catalog store.

Sessions never expire loaded rows on commit: the sync job commits after every
record and keeps reading the rows it just wrote.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DatabaseSettings, settings

logger = logging.getLogger(__name__)


def build_engine(config: DatabaseSettings) -> AsyncEngine:
    """Create an engine; pool sizing only applies to server databases."""
    options: dict[str, Any] = {"echo": config.echo, "pool_pre_ping": True}
    if not config.is_sqlite:
        options.update(pool_size=config.pool_size, max_overflow=config.max_overflow)
    return create_async_engine(config.url, **options)


engine: AsyncEngine = build_engine(settings.db)

AsyncSessionMaker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""
    async with AsyncSessionMaker() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections at shutdown."""
    await engine.dispose()
    logger.info("Database connections closed")
