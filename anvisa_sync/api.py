"""FastAPI app exposing the catalog sync job and read access to the mirror.

``POST /sync`` never lets a failure escape as an unhandled error: every
problem is reported as ``{"success": false, "error": ...}`` with HTTP 500.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from . import integration, queries
from .config import Settings, get_settings, settings
from .db import dispose_engine, get_session
from .errors import SyncError
from .logging_config import setup_logging
from .models import utcnow
from .pipelines.sync import CatalogSyncer, SyncOutcome

logger = logging.getLogger(__name__)

SYNC_PATHS = ("/", "/sync")


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class SyncRequest(BaseModel):
    """Sync request body."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    action: str | None = Field(default=None, description="Defaults to sync_all")
    endpoint: str | None = Field(default=None, description="External id for detail actions")


class RejectionDTO(BaseModel):
    """An upstream item that was not written."""
    entity: str
    external_id: str | None = None
    reason: str


class SyncResponse(BaseModel):
    """Successful sync response."""
    success: bool = True
    synced_count: int | None = None
    results: dict[str, int] | None = None
    total_synced: int | None = None
    rejected: list[RejectionDTO] = Field(default_factory=list)
    timestamp: str


class SyncErrorResponse(BaseModel):
    """Failed sync response."""
    success: bool = False
    error: str
    timestamp: str


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ResourceDTO(ORMModel):
    id: int
    external_id: str
    name: str | None = None
    format: str | None = None
    url: str | None = None
    size_bytes: int | None = None
    status: str


class DatasetDTO(ORMModel):
    id: int
    external_id: str
    title: str
    description: str | None = None
    organization: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_date: datetime | None = None
    updated_date: datetime | None = None
    resource_count: int
    status: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_")
    resources: list[ResourceDTO] = Field(default_factory=list)


class LegalComplianceDTO(ORMModel):
    id: int
    external_id: str
    title: str | None = None
    description: str | None = None
    compliance_type: str | None = None
    legal_norm: str | None = None
    legal_norm_url: str | None = None
    effective_date: datetime | None = None
    status: str


class OrganizationDetailDTO(ORMModel):
    area_of_activity: str | None = None
    responsible: str | None = None
    responsible_role: str | None = None
    dataset_count: int
    extra_data: dict | None = None


class OrganizationDTO(ORMModel):
    id: int
    external_id: str
    name: str | None = None
    acronym: str | None = None
    description: str | None = None
    organization_type: str | None = None
    sphere: str | None = None
    email: str | None = None
    website: str | None = None
    status: str
    detail: OrganizationDetailDTO | None = None


class ReuseDetailDTO(ORMModel):
    technologies: list = Field(default_factory=list)
    target_audience: str | None = None
    estimated_impact: str | None = None
    metrics: dict = Field(default_factory=dict)
    user_feedback: dict = Field(default_factory=dict)


class ReuseDTO(ORMModel):
    id: int
    external_id: str
    title: str | None = None
    description: str | None = None
    author: str | None = None
    author_organization: str | None = None
    url: str | None = None
    reuse_type: str | None = None
    category: str | None = None
    datasets_used: list = Field(default_factory=list)
    created_date: datetime | None = None
    status: str
    detail: ReuseDetailDTO | None = None


class StatsResponse(BaseModel):
    """Catalog statistics."""
    total_datasets: int
    total_organizations: int
    total_reuses: int
    total_legal_compliance: int


class IntegrationDTO(ORMModel):
    integration_name: str
    base_url: str
    is_active: bool
    sync_frequency_hours: int
    last_sync: datetime | None = None
    updated_at: datetime


class IntegrationUpdateRequest(BaseModel):
    """Editable integration fields."""
    base_url: str | None = Field(default=None, min_length=1)
    is_active: bool | None = None
    sync_frequency_hours: int | None = Field(default=None, ge=1, le=24 * 30)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging(settings.logging)
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")
    await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Mirrors the ANVISA open-data catalog into a local database",
    lifespan=lifespan,
)


# CORS middleware; credentials cannot be combined with a wildcard origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.allow_origins,
    allow_credentials="*" not in settings.cors.allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def get_catalog_client(
    config: Settings = Depends(get_settings),
) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client for the upstream catalog, one per request."""
    async with httpx.AsyncClient(
        timeout=config.upstream.timeout_seconds,
        follow_redirects=True,
    ) as client:
        yield client


def _failure(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=SyncErrorResponse(error=message, timestamp=utcnow().isoformat()).model_dump(),
    )


def _success(outcome: SyncOutcome) -> SyncResponse:
    rejected = [RejectionDTO(**r.as_dict()) for r in outcome.rejected]
    timestamp = outcome.finished_at.isoformat()
    if outcome.results is not None:
        return SyncResponse(
            results=outcome.results,
            total_synced=outcome.synced_count,
            rejected=rejected,
            timestamp=timestamp,
        )
    return SyncResponse(synced_count=outcome.synced_count, rejected=rejected, timestamp=timestamp)


# Exception handlers
@app.exception_handler(SyncError)
async def sync_error_handler(request, exc: SyncError):
    """Handle sync failures."""
    logger.error(f"Sync error ({type(exc).__name__}): {exc}")
    return _failure(str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed sync bodies in the sync failure envelope."""
    if request.method == "POST" and request.url.path in SYNC_PATHS:
        logger.error(f"Invalid sync request: {exc.errors()}")
        return _failure(f"Invalid request body: {exc.errors()}")
    return await request_validation_exception_handler(request, exc)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "sync": "/sync",
            "datasets": "/datasets",
            "legal_compliance": "/legal-compliance",
            "organizations": "/organizations",
            "reuses": "/reuses",
            "stats": "/stats",
            "integration": "/integration",
            "docs": "/docs",
        },
    }


@app.options("/")
@app.options("/sync")
async def sync_preflight() -> Response:
    """Answer bare OPTIONS requests with an empty 200."""
    return Response(status_code=status.HTTP_200_OK)


@app.post(
    "/",
    response_model=SyncResponse,
    response_model_exclude_none=True,
    responses={500: {"model": SyncErrorResponse}},
)
@app.post(
    "/sync",
    response_model=SyncResponse,
    response_model_exclude_none=True,
    responses={500: {"model": SyncErrorResponse}},
)
async def sync(
    request: SyncRequest = SyncRequest(),
    session: AsyncSession = Depends(get_session),
    client: httpx.AsyncClient = Depends(get_catalog_client),
    config: Settings = Depends(get_settings),
):
    """Run one sync action.

    Single-entity actions answer ``synced_count``; ``sync_all`` answers
    per-entity ``results`` and ``total_synced``. Writes that landed before a
    failure stay in the database.

    Args:
        request: Action name and, for detail actions, the external id
        session: Database session (injected)
        client: Upstream HTTP client (injected)
        config: Application settings (injected)
    """
    syncer = CatalogSyncer(session, client, settings=config)
    try:
        outcome = await syncer.run(request.action, request.endpoint)
    except SyncError:
        # Re-raise to be caught by exception handlers
        raise
    except Exception as e:
        logger.error(f"Unexpected error during sync: {e}", exc_info=True)
        return _failure(f"Internal error: {e}")

    return _success(outcome)


@app.get("/datasets", response_model=list[DatasetDTO])
async def get_datasets(
    organization: str | None = None,
    category: str | None = None,
    status_: str | None = Query(default=None, alias="status"),
    search: str | None = None,
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> list[DatasetDTO]:
    """List synced datasets with their resources."""
    rows = await queries.list_datasets(
        session,
        organization=organization,
        category=category,
        status=status_,
        search=search,
        limit=limit,
        offset=offset,
    )
    return [DatasetDTO.model_validate(row) for row in rows]


@app.get("/legal-compliance", response_model=list[LegalComplianceDTO])
async def get_legal_compliance(
    compliance_type: str | None = None,
    status_: str | None = Query(default=None, alias="status"),
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[LegalComplianceDTO]:
    """List synced legal compliance records."""
    rows = await queries.list_legal_compliance(
        session, compliance_type=compliance_type, status=status_, search=search
    )
    return [LegalComplianceDTO.model_validate(row) for row in rows]


@app.get("/organizations", response_model=list[OrganizationDTO])
async def get_organizations(
    organization_type: str | None = None,
    status_: str | None = Query(default=None, alias="status"),
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[OrganizationDTO]:
    """List synced organizations with their detail."""
    rows = await queries.list_organizations(
        session, organization_type=organization_type, status=status_, search=search
    )
    return [OrganizationDTO.model_validate(row) for row in rows]


@app.get("/reuses", response_model=list[ReuseDTO])
async def get_reuses(
    reuse_type: str | None = None,
    category: str | None = None,
    status_: str | None = Query(default=None, alias="status"),
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[ReuseDTO]:
    """List synced reuses with their detail."""
    rows = await queries.list_reuses(
        session, reuse_type=reuse_type, category=category, status=status_, search=search
    )
    return [ReuseDTO.model_validate(row) for row in rows]


@app.get("/stats", response_model=StatsResponse)
async def get_stats(session: AsyncSession = Depends(get_session)) -> StatsResponse:
    """Row counts of the main synced tables."""
    stats = await queries.catalog_stats(session)
    return StatsResponse(**stats.__dict__)


@app.get("/integration", response_model=IntegrationDTO)
async def get_integration_status(
    session: AsyncSession = Depends(get_session),
    config: Settings = Depends(get_settings),
) -> IntegrationDTO:
    """Current integration configuration, including the last full sync time."""
    row = await integration.get_integration(session, config.integration.name)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Integration '{config.integration.name}' is not configured",
        )
    return IntegrationDTO.model_validate(row)


@app.patch("/integration", response_model=IntegrationDTO)
async def update_integration_config(
    request: IntegrationUpdateRequest,
    session: AsyncSession = Depends(get_session),
    config: Settings = Depends(get_settings),
) -> IntegrationDTO:
    """Update base URL, active flag, or sync frequency."""
    logger.info(f"Updating integration {config.integration.name}")
    row = await integration.update_integration(
        session,
        config.integration.name,
        request.model_dump(exclude_none=True),
    )
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Integration '{config.integration.name}' is not configured",
        )
    return IntegrationDTO.model_validate(row)
