"""Shared fixtures: a throwaway SQLite catalog store and a fake upstream API."""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from anvisa_sync.config import Settings, UpstreamSettings
from anvisa_sync.models import Base, IntegrationConfig

BASE_URL = "https://catalog.test/dados/api"
API_PREFIX = "/dados/api"


class FakeCatalog:
    """In-memory stand-in for the catalog API, served through ``httpx.MockTransport``.

    Routes are keyed by URL path relative to ``BASE_URL``. Unknown paths
    answer 404, like the real API does for missing records.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, result: Any = None, *, status: int = 200) -> None:
        body = {"result": result} if status < 400 else {"message": "error"}
        self.routes[f"{API_PREFIX}/{path}"] = lambda request: httpx.Response(status, json=body)

    def add_handler(self, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[f"{API_PREFIX}/{path}"] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        return route(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        upstream=UpstreamSettings(retry_attempts=3, retry_min_wait=0, retry_max_wait=0),
    )


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest_asyncio.fixture
async def http_client(fake_catalog):
    async with fake_catalog.client() as client:
        yield client


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def integration_row(session_factory, test_settings):
    async with session_factory() as session:
        row = IntegrationConfig(
            integration_name=test_settings.integration.name,
            base_url=BASE_URL,
            is_active=True,
        )
        session.add(row)
        await session.commit()
        return row


async def count_rows(session: AsyncSession, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


def dataset_item(external_id: str, title: str | None = "Dataset", **extra: Any) -> dict[str, Any]:
    item: dict[str, Any] = {"id": external_id, "state": "active", **extra}
    if title is not None:
        item["title"] = title
    return item
