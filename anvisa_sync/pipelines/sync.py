"""Sync orchestration: dispatches an action to its entity sync and runs full syncs.

A run is a one-shot batch job. Each record is committed on its own, so a run
that fails half way keeps whatever it already wrote; re-issuing the same
action is always safe because every write is an upsert by external id.
``sync_all`` is therefore at-least-once per step, not all-or-nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from anvisa_sync import models
from anvisa_sync.config import Settings
from anvisa_sync.errors import InvalidSyncRequest, PersistenceError
from anvisa_sync.integration import resolve_integration, stamp_last_sync
from anvisa_sync.pipelines import normalization as norm
from anvisa_sync.pipelines.fetch import CatalogFetcher, Endpoint
from anvisa_sync.pipelines.ingest import resolve_parent, upsert_record
from anvisa_sync.pipelines.normalization import Rejection, normalize_item

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    """Every operation the sync endpoint accepts."""
    SYNC_CONJUNTOS_DADOS = "sync_conjuntos_dados"
    SYNC_CONJUNTO_DETALHE = "sync_conjunto_detalhe"
    SYNC_OBSERVANCIA_LEGAL = "sync_observancia_legal"
    SYNC_ODS = "sync_ods"
    SYNC_FORMATOS = "sync_formatos"
    SYNC_SOLICITACOES = "sync_solicitacoes"
    SYNC_ORGANIZACOES = "sync_organizacoes"
    SYNC_ORGANIZACAO_DETALHE = "sync_organizacao_detalhe"
    SYNC_TEMAS = "sync_temas"
    SYNC_REUSOS = "sync_reusos"
    SYNC_REUSO_DETALHE = "sync_reuso_detalhe"
    SYNC_REUSOS_PENDENTES = "sync_reusos_pendentes"
    SYNC_ALL = "sync_all"

    @classmethod
    def parse(cls, value: SyncAction | str | None) -> SyncAction:
        if value is None:
            return cls.SYNC_ALL
        try:
            return cls(value)
        except ValueError:
            raise InvalidSyncRequest(f"Unknown action: {value}") from None


class SyncState(str, Enum):
    """Lifecycle of one run."""
    IDLE = "idle"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


ACTIONS_REQUIRING_ENDPOINT = frozenset({
    SyncAction.SYNC_CONJUNTO_DETALHE,
    SyncAction.SYNC_ORGANIZACAO_DETALHE,
    SyncAction.SYNC_REUSO_DETALHE,
    SyncAction.SYNC_REUSOS_PENDENTES,
})


@dataclass(frozen=True)
class CollectionStep:
    """A list endpoint mirrored into one table."""
    key: str
    endpoint: Endpoint
    model: type[models.Base]
    normalizer: Callable[..., dict[str, Any]]


COLLECTION_STEPS: dict[SyncAction, CollectionStep] = {
    SyncAction.SYNC_CONJUNTOS_DADOS: CollectionStep(
        "conjuntos_dados", Endpoint.DATASETS, models.Dataset, norm.normalize_dataset
    ),
    SyncAction.SYNC_OBSERVANCIA_LEGAL: CollectionStep(
        "observancia_legal", Endpoint.LEGAL_COMPLIANCE, models.LegalComplianceRecord,
        norm.normalize_legal_compliance,
    ),
    SyncAction.SYNC_ODS: CollectionStep(
        "ods", Endpoint.SUSTAINABILITY_GOALS, models.SustainabilityGoal, norm.normalize_sustainability_goal
    ),
    SyncAction.SYNC_FORMATOS: CollectionStep(
        "formatos", Endpoint.FORMATS, models.FormatRegistryEntry, norm.normalize_format
    ),
    SyncAction.SYNC_SOLICITACOES: CollectionStep(
        "solicitacoes", Endpoint.DATA_REQUESTS, models.DataRequest, norm.normalize_data_request
    ),
    SyncAction.SYNC_ORGANIZACOES: CollectionStep(
        "organizacoes", Endpoint.ORGANIZATIONS, models.Organization, norm.normalize_organization
    ),
    SyncAction.SYNC_TEMAS: CollectionStep(
        "temas", Endpoint.THEMES, models.Theme, norm.normalize_theme
    ),
    SyncAction.SYNC_REUSOS: CollectionStep(
        "reusos", Endpoint.REUSES, models.Reuse, norm.normalize_reuse
    ),
}

# Order of a full sync. Detail actions are never part of it.
FULL_SYNC_ORDER: tuple[SyncAction, ...] = (
    SyncAction.SYNC_CONJUNTOS_DADOS,
    SyncAction.SYNC_OBSERVANCIA_LEGAL,
    SyncAction.SYNC_ODS,
    SyncAction.SYNC_FORMATOS,
    SyncAction.SYNC_SOLICITACOES,
    SyncAction.SYNC_ORGANIZACOES,
    SyncAction.SYNC_TEMAS,
    SyncAction.SYNC_REUSOS,
)


@dataclass
class SyncOutcome:
    """Result of a successful run."""
    action: SyncAction
    synced_count: int
    finished_at: datetime
    results: dict[str, int] | None = None
    rejected: list[Rejection] = field(default_factory=list)


class CatalogSyncer:
    """Runs sync actions against one database session and one HTTP client.

    Args:
        session: Database session; records are committed one by one.
        client: HTTP client used for every upstream call.
        settings: Application settings (integration name, retry and paging policy).
    """

    def __init__(self, session: AsyncSession, client: httpx.AsyncClient, *, settings: Settings):
        self.session = session
        self.client = client
        self.settings = settings
        self.state = SyncState.IDLE
        self._handlers: dict[SyncAction, Callable[[CatalogFetcher, str | None], Awaitable[SyncOutcome]]] = {
            action: self._collection_handler(action) for action in COLLECTION_STEPS
        }
        self._handlers.update({
            SyncAction.SYNC_CONJUNTO_DETALHE: self._sync_dataset_detail,
            SyncAction.SYNC_ORGANIZACAO_DETALHE: self._sync_organization_detail,
            SyncAction.SYNC_REUSO_DETALHE: self._sync_reuse_detail,
            SyncAction.SYNC_REUSOS_PENDENTES: self._sync_pending_reuse,
            SyncAction.SYNC_ALL: self._sync_all,
        })
        missing = set(SyncAction) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for actions: {sorted(a.value for a in missing)}")

    @property
    def handled_actions(self) -> frozenset[SyncAction]:
        return frozenset(self._handlers)

    def _transition(self, state: SyncState, step: str | None = None) -> None:
        self.state = state
        logger.debug(f"Sync state -> {state.value}" + (f" ({step})" if step else ""))

    async def run(self, action: SyncAction | str | None, endpoint: str | None = None) -> SyncOutcome:
        """Execute one action end to end.

        Raises:
            InvalidSyncRequest: Unknown action, or a detail action without ``endpoint``.
            ConfigurationMissing: No active integration row.
            UpstreamFetchError: The catalog API failed; aborts the rest of a full sync.
            ParentNotFound: A detail sync ran before its parent was synced.
        """
        try:
            action = SyncAction.parse(action)
            if action in ACTIONS_REQUIRING_ENDPOINT and not endpoint:
                raise InvalidSyncRequest(f"Action {action.value} requires an 'endpoint' id")

            logger.info(f"Sync {action.value} requested" + (f" for {endpoint}" if endpoint else ""))
            self._transition(SyncState.RESOLVING)
            config = await resolve_integration(self.session, self.settings.integration.name)
            fetcher = CatalogFetcher(
                self.client,
                config.base_url,
                upstream=self.settings.upstream,
                api_key=config.api_key,
            )
            outcome = await self._handlers[action](fetcher, endpoint)
        except Exception:
            self._transition(SyncState.FAILED)
            raise

        self._transition(SyncState.DONE)
        logger.info(f"Sync {action.value} finished: {outcome.synced_count} records")
        return outcome

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _collection_handler(self, action: SyncAction):
        async def handler(fetcher: CatalogFetcher, endpoint: str | None) -> SyncOutcome:
            return await self._sync_collection(fetcher, action)
        return handler

    async def _sync_collection(self, fetcher: CatalogFetcher, action: SyncAction) -> SyncOutcome:
        step = COLLECTION_STEPS[action]
        logger.info(f"Syncing {step.key}")

        self._transition(SyncState.FETCHING, step.key)
        items = await fetcher.fetch_collection(step.endpoint)

        self._transition(SyncState.NORMALIZING, step.key)
        rejected: list[Rejection] = []
        pending: list[tuple[dict[str, Any], Any]] = []
        for item in items:
            normalized = normalize_item(step.key, step.normalizer, item)
            if isinstance(normalized, Rejection):
                rejected.append(normalized)
            else:
                pending.append((normalized, item))

        self._transition(SyncState.WRITING, step.key)
        synced = 0
        for record, item in pending:
            row = await self._write(step.key, step.model, record, rejected)
            if row is None:
                continue
            synced += 1
            if isinstance(row, models.Dataset):
                await self._write_resources(row, item.get("resources"), rejected)

        if rejected:
            logger.warning(f"{step.key}: {len(rejected)} items rejected")
        logger.info(f"{step.key} synced: {synced} of {len(items)}")
        return SyncOutcome(action, synced, models.utcnow(), rejected=rejected)

    async def _sync_all(self, fetcher: CatalogFetcher, endpoint: str | None) -> SyncOutcome:
        logger.info("Starting full sync")
        results: dict[str, int] = {}
        rejected: list[Rejection] = []
        for action in FULL_SYNC_ORDER:
            outcome = await self._sync_collection(fetcher, action)
            results[COLLECTION_STEPS[action].key] = outcome.synced_count
            rejected.extend(outcome.rejected)

        finished_at = models.utcnow()
        await stamp_last_sync(self.session, self.settings.integration.name, finished_at)
        logger.info(f"Full sync finished: {results}")
        return SyncOutcome(
            SyncAction.SYNC_ALL,
            sum(results.values()),
            finished_at,
            results=results,
            rejected=rejected,
        )

    # ------------------------------------------------------------------
    # Details and children
    # ------------------------------------------------------------------

    async def _sync_dataset_detail(self, fetcher: CatalogFetcher, dataset_id: str) -> SyncOutcome:
        self._transition(SyncState.FETCHING, "conjunto_detalhe")
        item = await fetcher.fetch_detail(Endpoint.DATASETS, dataset_id)
        dataset = await resolve_parent(self.session, models.Dataset, dataset_id)

        rejected: list[Rejection] = []
        synced = await self._write_resources(dataset, item.get("resources"), rejected)
        return SyncOutcome(SyncAction.SYNC_CONJUNTO_DETALHE, synced, models.utcnow(), rejected=rejected)

    async def _sync_organization_detail(self, fetcher: CatalogFetcher, organization_id: str) -> SyncOutcome:
        self._transition(SyncState.FETCHING, "organizacao_detalhe")
        item = await fetcher.fetch_detail(Endpoint.ORGANIZATIONS, organization_id)
        organization = await resolve_parent(self.session, models.Organization, organization_id)

        self._transition(SyncState.NORMALIZING, "organizacao_detalhe")
        record = norm.normalize_organization_detail(
            item,
            organization_external_id=organization_id,
            organization_id=organization.id,
        )
        return await self._write_single(
            SyncAction.SYNC_ORGANIZACAO_DETALHE, "organizacao_detalhe", models.OrganizationDetail, record
        )

    async def _sync_reuse_detail(self, fetcher: CatalogFetcher, reuse_id: str) -> SyncOutcome:
        self._transition(SyncState.FETCHING, "reuso_detalhe")
        item = await fetcher.fetch_detail(Endpoint.REUSE, reuse_id)
        reuse = await resolve_parent(self.session, models.Reuse, reuse_id)

        self._transition(SyncState.NORMALIZING, "reuso_detalhe")
        record = norm.normalize_reuse_detail(item, reuse_external_id=reuse_id, reuse_id=reuse.id)
        return await self._write_single(
            SyncAction.SYNC_REUSO_DETALHE, "reuso_detalhe", models.ReuseDetail, record
        )

    async def _sync_pending_reuse(self, fetcher: CatalogFetcher, reuse_id: str) -> SyncOutcome:
        self._transition(SyncState.FETCHING, "reusos_pendentes")
        item = await fetcher.fetch_detail(Endpoint.PENDING_REUSES, reuse_id)

        self._transition(SyncState.NORMALIZING, "reusos_pendentes")
        normalized = normalize_item("reusos_pendentes", norm.normalize_pending_reuse, item)
        if isinstance(normalized, Rejection):
            return SyncOutcome(SyncAction.SYNC_REUSOS_PENDENTES, 0, models.utcnow(), rejected=[normalized])
        return await self._write_single(
            SyncAction.SYNC_REUSOS_PENDENTES, "reusos_pendentes", models.PendingReuseApproval, normalized
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _write(
        self,
        entity: str,
        model: type[models.Base],
        record: dict[str, Any],
        rejected: list[Rejection],
    ) -> models.Base | None:
        """Upsert one record; a persistence failure is recorded and yields ``None``."""
        try:
            return await upsert_record(self.session, model, record)
        except PersistenceError as e:
            rejected.append(Rejection(entity, e.external_id, e.reason))
            return None

    async def _write_single(
        self,
        action: SyncAction,
        entity: str,
        model: type[models.Base],
        record: dict[str, Any],
    ) -> SyncOutcome:
        self._transition(SyncState.WRITING, entity)
        rejected: list[Rejection] = []
        row = await self._write(entity, model, record, rejected)
        return SyncOutcome(action, 1 if row is not None else 0, models.utcnow(), rejected=rejected)

    async def _write_resources(
        self,
        dataset: models.Dataset,
        resources: Any,
        rejected: list[Rejection],
    ) -> int:
        """Upsert the resources embedded in a dataset payload."""
        # Read the id up front: a rolled-back write expires every loaded row.
        dataset_id = dataset.id
        written = 0
        for resource in norm.as_list(resources):
            normalized = normalize_item("recursos", norm.normalize_resource, resource, dataset_id=dataset_id)
            if isinstance(normalized, Rejection):
                rejected.append(normalized)
                continue
            if await self._write("recursos", models.Resource, normalized, rejected) is not None:
                written += 1
        return written
