"""Access to the ``api_configurations`` row driving the sync job."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .errors import ConfigurationMissing

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("base_url", "is_active", "sync_frequency_hours")


async def get_integration(session: AsyncSession, name: str) -> models.IntegrationConfig | None:
    """Fetch the integration row by name, active or not."""
    result = await session.execute(
        select(models.IntegrationConfig).where(models.IntegrationConfig.integration_name == name)
    )
    return result.scalar_one_or_none()


async def resolve_integration(session: AsyncSession, name: str) -> models.IntegrationConfig:
    """Return the active integration row or fail before any network call.

    Raises:
        ConfigurationMissing: If the row is absent or disabled.
    """
    config = await get_integration(session, name)
    if config is None or not config.is_active:
        raise ConfigurationMissing(name)
    logger.info(f"Using API configuration {name}: {config.base_url}")
    return config


async def stamp_last_sync(session: AsyncSession, name: str, when: datetime) -> None:
    """Record the completion time of a full sync."""
    config = await get_integration(session, name)
    if config is None:
        raise ConfigurationMissing(name)
    config.last_sync = when
    await session.commit()


async def update_integration(
    session: AsyncSession,
    name: str,
    changes: dict[str, Any],
) -> models.IntegrationConfig | None:
    """Apply operator edits to the integration row; ``None`` if it does not exist."""
    config = await get_integration(session, name)
    if config is None:
        return None
    for field in UPDATABLE_FIELDS:
        if field in changes and changes[field] is not None:
            setattr(config, field, changes[field])
    config.updated_at = models.utcnow()
    await session.commit()
    return config
