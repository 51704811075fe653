"""Read-side queries over the mirrored catalog."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import models

logger = logging.getLogger(__name__)


@dataclass
class CatalogStats:
    """Row counts of the main synced tables."""
    total_datasets: int
    total_organizations: int
    total_reuses: int
    total_legal_compliance: int


def _search(columns, term: str | None):
    if not term:
        return None
    pattern = f"%{term.lower()}%"
    return or_(*(func.lower(column).like(pattern) for column in columns))


async def list_datasets(
    session: AsyncSession,
    *,
    organization: str | None = None,
    category: str | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[models.Dataset]:
    """Datasets with their resources, most recently updated first."""
    query = select(models.Dataset).options(selectinload(models.Dataset.resources))
    if organization:
        query = query.where(models.Dataset.organization == organization)
    if category:
        query = query.where(models.Dataset.category == category)
    if status:
        query = query.where(models.Dataset.status == status)
    condition = _search((models.Dataset.title, models.Dataset.description), search)
    if condition is not None:
        query = query.where(condition)

    query = query.order_by(models.Dataset.updated_date.desc().nulls_last(), models.Dataset.id)
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)

    result = await session.execute(query)
    return list(result.scalars().all())


async def list_legal_compliance(
    session: AsyncSession,
    *,
    compliance_type: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> list[models.LegalComplianceRecord]:
    """Legal compliance records, newest first."""
    model = models.LegalComplianceRecord
    query = select(model)
    if compliance_type:
        query = query.where(model.compliance_type == compliance_type)
    if status:
        query = query.where(model.status == status)
    condition = _search((model.title, model.description), search)
    if condition is not None:
        query = query.where(condition)

    result = await session.execute(query.order_by(model.created_at.desc(), model.id.desc()))
    return list(result.scalars().all())


async def list_organizations(
    session: AsyncSession,
    *,
    organization_type: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> list[models.Organization]:
    """Organizations with their detail row, ordered by name."""
    model = models.Organization
    query = select(model).options(selectinload(model.detail))
    if organization_type:
        query = query.where(model.organization_type == organization_type)
    if status:
        query = query.where(model.status == status)
    condition = _search((model.name, model.description), search)
    if condition is not None:
        query = query.where(condition)

    result = await session.execute(query.order_by(model.name.asc(), model.id))
    return list(result.scalars().all())


async def list_reuses(
    session: AsyncSession,
    *,
    reuse_type: str | None = None,
    category: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> list[models.Reuse]:
    """Reuses with their detail row, newest first."""
    model = models.Reuse
    query = select(model).options(selectinload(model.detail))
    if reuse_type:
        query = query.where(model.reuse_type == reuse_type)
    if category:
        query = query.where(model.category == category)
    if status:
        query = query.where(model.status == status)
    condition = _search((model.title, model.description), search)
    if condition is not None:
        query = query.where(condition)

    result = await session.execute(query.order_by(model.created_date.desc().nulls_last(), model.id))
    return list(result.scalars().all())


async def catalog_stats(session: AsyncSession) -> CatalogStats:
    """Count the main tables."""

    async def count(model: type[models.Base]) -> int:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()

    return CatalogStats(
        total_datasets=await count(models.Dataset),
        total_organizations=await count(models.Organization),
        total_reuses=await count(models.Reuse),
        total_legal_compliance=await count(models.LegalComplianceRecord),
    )
