"""Ingestion helpers: idempotent upserts and parent resolution.

Implementations:
- Native upserts keyed by ``external_id``; the local row id survives re-syncs.
- Commit each record on its own so a bad record never takes its batch down.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, TypeVar

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from ..errors import ParentNotFound, PersistenceError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=models.Base)


async def find_by_external_id(
    session: AsyncSession,
    model: type[ModelT],
    external_id: str,
) -> ModelT | None:
    """Return the row of ``model`` mirroring ``external_id``, if synced already."""
    result = await session.execute(select(model).where(model.external_id == external_id))
    return result.scalar_one_or_none()


def _insert_for(session: AsyncSession, model: type[ModelT]):
    """Dialect ``INSERT`` supporting ``ON CONFLICT``; the catalog runs on PostgreSQL or SQLite."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"No native upsert for dialect {dialect}")


async def upsert_record(
    session: AsyncSession,
    model: type[ModelT],
    record: Mapping[str, Any],
) -> ModelT:
    """Create or update one row from a normalized record.

    A single ``INSERT ... ON CONFLICT (external_id) DO UPDATE``, so two runs
    writing the same id concurrently both succeed and the later write wins.
    Every field in ``record`` overwrites the stored value, metadata bags
    included. The write is committed before returning.

    Raises:
        PersistenceError: If the database refuses the row. The session is
            rolled back so the caller can keep using it.
    """
    external_id = record.get("external_id")
    entity = model.__name__
    columns = model.__mapper__.columns
    now = models.utcnow()

    values = {columns[key]: value for key, value in record.items()}
    values[columns["updated_at"]] = now
    values.setdefault(columns["created_at"], now)

    try:
        stmt = _insert_for(session, model).values(values)
        # ON CONFLICT skips Python-side onupdate hooks, so updated_at is set explicitly
        stmt = stmt.on_conflict_do_update(
            index_elements=[model.external_id],
            set_={
                column.name: stmt.excluded[column.name]
                for column in values
                if column.name not in ("id", "external_id", "created_at")
            },
        )
        result = await session.execute(
            stmt.returning(model),
            execution_options={"populate_existing": True},
        )
        row = result.scalar_one()
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        reason = str(getattr(e, "orig", None) or e)
        logger.warning(f"Skipping {entity} '{external_id}': {reason}")
        raise PersistenceError(entity, external_id, reason) from e
    return row


async def resolve_parent(
    session: AsyncSession,
    model: type[ModelT],
    external_id: str,
) -> ModelT:
    """Look up the parent row a child record must link to.

    Raises:
        ParentNotFound: If the parent type has not been synced for this id.
    """
    parent = await find_by_external_id(session, model, external_id)
    if parent is None:
        raise ParentNotFound(model.__name__, external_id)
    return parent
