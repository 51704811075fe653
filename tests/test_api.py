import httpx
import pytest
import pytest_asyncio

from anvisa_sync.api import app, get_catalog_client
from anvisa_sync.config import get_settings
from anvisa_sync.db import get_session

from tests.conftest import dataset_item


@pytest_asyncio.fixture
async def api_client(session_factory, fake_catalog, test_settings):
    async def override_session():
        async with session_factory() as session:
            yield session

    async def override_catalog_client():
        async with fake_catalog.client() as client:
            yield client

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_catalog_client] = override_catalog_client
    app.dependency_overrides[get_settings] = lambda: test_settings
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_root_lists_endpoints(api_client):
    response = await api_client.get("/")
    assert response.status_code == 200
    assert response.json()["endpoints"]["sync"] == "/sync"


@pytest.mark.asyncio
async def test_sync_single_action(api_client, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [dataset_item("ds-1"), dataset_item("ds-2")])

    response = await api_client.post("/sync", json={"action": "sync_conjuntos_dados"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["synced_count"] == 2
    assert body["rejected"] == []
    assert "results" not in body
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_root_post_defaults_to_sync_all(api_client, integration_row, fake_catalog):
    for path in (
        "publico/conjuntos-dados",
        "publico/conjuntos-dados/observancia-legal",
        "publico/conjuntos-dados/objetivos-desenvolvimento-sustentavel",
        "publico/conjuntos-dados/formatos",
        "solicitacoes",
        "publico/organizacao",
        "temas",
        "publico/reusos",
    ):
        fake_catalog.add(path, [])
    fake_catalog.add("publico/organizacao", [{"id": "org-1", "name": "ANVISA"}])

    response = await api_client.post("/", json={})

    assert response.status_code == 200
    body = response.json()
    assert body["total_synced"] == 1
    assert body["results"]["organizacoes"] == 1
    assert "synced_count" not in body


@pytest.mark.asyncio
async def test_upstream_failure_returns_envelope(api_client, integration_row, fake_catalog):
    response = await api_client.post("/sync", json={"action": "sync_formatos"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert "404 Not Found" in body["error"]
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_missing_configuration_returns_envelope(api_client, fake_catalog):
    response = await api_client.post("/sync", json={"action": "sync_temas"})

    assert response.status_code == 500
    assert "not found or inactive" in response.json()["error"]
    assert fake_catalog.requests == []


@pytest.mark.asyncio
async def test_unknown_action_returns_envelope(api_client, integration_row):
    response = await api_client.post("/sync", json={"action": "sync_tudo"})
    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": "Unknown action: sync_tudo",
        "timestamp": response.json()["timestamp"],
    }


@pytest.mark.asyncio
async def test_detail_before_parent_returns_envelope(api_client, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados/ds-9", {"id": "ds-9", "resources": []})

    response = await api_client.post("/sync", json={"action": "sync_conjunto_detalhe", "endpoint": "ds-9"})

    assert response.status_code == 500
    assert "not found" in response.json()["error"]


@pytest.mark.asyncio
async def test_cors_preflight(api_client):
    response = await api_client.options(
        "/sync",
        headers={
            "Origin": "https://painel.example.org",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type,authorization",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_bare_options_is_ok(api_client):
    response = await api_client.options("/")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_query_endpoints_after_sync(api_client, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [
        dataset_item("ds-1", "Medicamentos registrados", resources=[{"id": "r-1", "format": "CSV"}]),
        dataset_item("ds-2", "Alimentos", state="deleted"),
    ])
    await api_client.post("/sync", json={"action": "sync_conjuntos_dados"})

    everything = (await api_client.get("/datasets")).json()
    assert {d["external_id"] for d in everything} == {"ds-1", "ds-2"}

    active = (await api_client.get("/datasets", params={"status": "ativo"})).json()
    assert [d["external_id"] for d in active] == ["ds-1"]
    assert active[0]["resources"][0]["format"] == "CSV"

    found = (await api_client.get("/datasets", params={"search": "aliment"})).json()
    assert [d["external_id"] for d in found] == ["ds-2"]

    stats = (await api_client.get("/stats")).json()
    assert stats["total_datasets"] == 2
    assert stats["total_reuses"] == 0


@pytest.mark.asyncio
async def test_integration_read_and_update(api_client, integration_row):
    response = await api_client.get("/integration")
    assert response.status_code == 200
    assert response.json()["last_sync"] is None

    response = await api_client.patch("/integration", json={"sync_frequency_hours": 6})
    assert response.status_code == 200
    assert response.json()["sync_frequency_hours"] == 6

    response = await api_client.patch("/integration", json={"is_active": False})
    assert response.json()["is_active"] is False

    response = await api_client.post("/sync", json={"action": "sync_temas"})
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_integration_not_configured(api_client):
    response = await api_client.get("/integration")
    assert response.status_code == 404
