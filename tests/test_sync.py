import pytest
from sqlalchemy import select

from anvisa_sync import models
from anvisa_sync.errors import ConfigurationMissing, InvalidSyncRequest, ParentNotFound, UpstreamFetchError
from anvisa_sync.integration import get_integration
from anvisa_sync.pipelines.sync import FULL_SYNC_ORDER, CatalogSyncer, SyncAction, SyncState

from tests.conftest import count_rows, dataset_item


@pytest.fixture
def syncer(session, http_client, test_settings):
    return CatalogSyncer(session, http_client, settings=test_settings)


def serve_empty_catalog(fake_catalog):
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


def test_every_action_has_a_handler(syncer):
    assert syncer.handled_actions == frozenset(SyncAction)


def test_default_action_is_sync_all():
    assert SyncAction.parse(None) is SyncAction.SYNC_ALL
    assert SyncAction.parse("sync_temas") is SyncAction.SYNC_TEMAS


@pytest.mark.asyncio
async def test_unknown_action_is_rejected(syncer, integration_row):
    with pytest.raises(InvalidSyncRequest, match="Unknown action"):
        await syncer.run("sync_everything")
    assert syncer.state is SyncState.FAILED


@pytest.mark.asyncio
async def test_detail_action_requires_endpoint(syncer, integration_row, fake_catalog):
    with pytest.raises(InvalidSyncRequest, match="requires an 'endpoint'"):
        await syncer.run(SyncAction.SYNC_ORGANIZACAO_DETALHE)
    assert fake_catalog.requests == []


@pytest.mark.asyncio
async def test_missing_configuration_makes_no_request(syncer, fake_catalog):
    with pytest.raises(ConfigurationMissing):
        await syncer.run(SyncAction.SYNC_CONJUNTOS_DADOS)
    assert fake_catalog.requests == []


@pytest.mark.asyncio
async def test_inactive_configuration_is_missing(session, syncer, integration_row, fake_catalog):
    config = await get_integration(session, integration_row.integration_name)
    config.is_active = False
    await session.commit()

    with pytest.raises(ConfigurationMissing, match="not found or inactive"):
        await syncer.run(SyncAction.SYNC_TEMAS)
    assert fake_catalog.requests == []


@pytest.mark.asyncio
async def test_empty_collection_syncs_zero(syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [])
    outcome = await syncer.run(SyncAction.SYNC_CONJUNTOS_DADOS)
    assert outcome.synced_count == 0
    assert outcome.results is None
    assert syncer.state is SyncState.DONE


@pytest.mark.asyncio
async def test_resync_is_idempotent_and_overwrites(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [dataset_item("ds-1", "Old"), dataset_item("ds-2")])
    await syncer.run(SyncAction.SYNC_CONJUNTOS_DADOS)
    first = await session.execute(select(models.Dataset.external_id, models.Dataset.id))
    ids_before = dict(first.all())

    fake_catalog.add("publico/conjuntos-dados", [dataset_item("ds-1", "New"), dataset_item("ds-2")])
    outcome = await syncer.run(SyncAction.SYNC_CONJUNTOS_DADOS)

    assert outcome.synced_count == 2
    assert await count_rows(session, models.Dataset) == 2
    second = await session.execute(select(models.Dataset.external_id, models.Dataset.id))
    assert dict(second.all()) == ids_before
    title = await session.execute(select(models.Dataset.title).where(models.Dataset.external_id == "ds-1"))
    assert title.scalar_one() == "New"


@pytest.mark.asyncio
async def test_one_bad_record_does_not_stop_the_batch(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [
        dataset_item("ds-1"),
        dataset_item("ds-2"),
        dataset_item("ds-3", title=None),
        dataset_item("ds-4"),
        dataset_item("ds-5"),
    ])

    outcome = await syncer.run(SyncAction.SYNC_CONJUNTOS_DADOS)

    assert outcome.synced_count == 4
    assert await count_rows(session, models.Dataset) == 4
    assert [(r.entity, r.external_id) for r in outcome.rejected] == [("conjuntos_dados", "ds-3")]


@pytest.mark.asyncio
async def test_items_without_id_are_reported(syncer, integration_row, fake_catalog):
    fake_catalog.add("temas", [{"name": "Sem id"}, "lixo", {"id": "t-1", "name": "Saude"}])

    outcome = await syncer.run(SyncAction.SYNC_TEMAS)

    assert outcome.synced_count == 1
    assert len(outcome.rejected) == 2
    assert {r.entity for r in outcome.rejected} == {"temas"}


@pytest.mark.asyncio
async def test_dataset_list_writes_embedded_resources(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [
        dataset_item("ds-1", resources=[{"id": "r-1", "format": "CSV"}, {"id": "r-2", "format": "JSON"}]),
    ])

    outcome = await syncer.run(SyncAction.SYNC_CONJUNTOS_DADOS)

    assert outcome.synced_count == 1
    assert await count_rows(session, models.Resource) == 2


@pytest.mark.asyncio
async def test_dataset_detail_before_parent_fails(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados/ds-9", {"id": "ds-9", "resources": [{"id": "r-1"}]})

    with pytest.raises(ParentNotFound, match="not found"):
        await syncer.run(SyncAction.SYNC_CONJUNTO_DETALHE, "ds-9")

    assert await count_rows(session, models.Resource) == 0
    assert syncer.state is SyncState.FAILED


@pytest.mark.asyncio
async def test_dataset_detail_after_parent(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [dataset_item("ds-1")])
    fake_catalog.add("publico/conjuntos-dados/ds-1", {
        "id": "ds-1",
        "resources": [
            {"id": "r-1", "name": "a.csv", "size": "10"},
            {"id": "r-2", "name": "b.csv"},
        ],
    })

    await syncer.run(SyncAction.SYNC_CONJUNTOS_DADOS)
    outcome = await syncer.run(SyncAction.SYNC_CONJUNTO_DETALHE, "ds-1")

    assert outcome.synced_count == 2
    result = await session.execute(select(models.Resource).order_by(models.Resource.external_id))
    resources = result.scalars().all()
    assert [r.external_id for r in resources] == ["r-1", "r-2"]
    assert resources[0].size_bytes == 10


@pytest.mark.asyncio
async def test_organization_detail(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/organizacao", [{"id": "org-1", "name": "ANVISA", "state": "active"}])
    fake_catalog.add("publico/organizacao/org-1", {
        "area_atuacao": "Vigilancia sanitaria",
        "responsavel": "Fulano",
        "package_count": "7",
        "sede": "Brasilia",
    })

    await syncer.run(SyncAction.SYNC_ORGANIZACOES)
    outcome = await syncer.run(SyncAction.SYNC_ORGANIZACAO_DETALHE, "org-1")

    assert outcome.synced_count == 1
    result = await session.execute(select(models.OrganizationDetail))
    detail = result.scalar_one()
    assert detail.external_id == "org-1_detalhe"
    assert detail.dataset_count == 7
    assert detail.extra_data == {"sede": "Brasilia"}


@pytest.mark.asyncio
async def test_reuse_detail_without_parent_fails(syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/reuso/re-1", {"publico_alvo": "Cidadaos"})
    with pytest.raises(ParentNotFound):
        await syncer.run(SyncAction.SYNC_REUSO_DETALHE, "re-1")


@pytest.mark.asyncio
async def test_reuse_detail(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/reusos", [{"id": "re-1", "titulo": "Painel"}])
    fake_catalog.add("publico/reuso/re-1", {
        "tecnologias_utilizadas": ["python"],
        "metricas": {"acessos": 10},
    })

    await syncer.run(SyncAction.SYNC_REUSOS)
    outcome = await syncer.run(SyncAction.SYNC_REUSO_DETALHE, "re-1")

    assert outcome.synced_count == 1
    detail = (await session.execute(select(models.ReuseDetail))).scalar_one()
    assert detail.external_id == "re-1_detalhe"
    assert detail.metrics == {"acessos": 10}


@pytest.mark.asyncio
async def test_pending_reuse(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/reusos/homologacao/pendente/re-7", {"id": "re-7", "titulo": "App"})

    outcome = await syncer.run(SyncAction.SYNC_REUSOS_PENDENTES, "re-7")

    assert outcome.synced_count == 1
    pending = (await session.execute(select(models.PendingReuseApproval))).scalar_one()
    assert pending.approval_status == "pendente"


@pytest.mark.asyncio
async def test_sync_all_reports_every_step(session, syncer, integration_row, fake_catalog):
    serve_empty_catalog(fake_catalog)
    fake_catalog.add("publico/conjuntos-dados", [dataset_item("ds-1"), dataset_item("ds-2")])
    fake_catalog.add("temas", [{"id": "t-1", "name": "Saude"}])

    outcome = await syncer.run(None)

    assert outcome.action is SyncAction.SYNC_ALL
    assert list(outcome.results) == [
        "conjuntos_dados",
        "observancia_legal",
        "ods",
        "formatos",
        "solicitacoes",
        "organizacoes",
        "temas",
        "reusos",
    ]
    assert outcome.results["conjuntos_dados"] == 2
    assert outcome.results["temas"] == 1
    assert outcome.synced_count == 3
    assert len(fake_catalog.requests) == len(FULL_SYNC_ORDER)

    config = await get_integration(session, integration_row.integration_name)
    assert config.last_sync is not None


@pytest.mark.asyncio
async def test_sync_all_keeps_earlier_steps_on_failure(session, syncer, integration_row, fake_catalog):
    fake_catalog.add("publico/conjuntos-dados", [dataset_item("ds-1")])
    fake_catalog.add("publico/conjuntos-dados/observancia-legal", [{"id": "lc-1", "titulo": "RDC"}])
    fake_catalog.add("publico/conjuntos-dados/objetivos-desenvolvimento-sustentavel", status=500)

    with pytest.raises(UpstreamFetchError) as exc_info:
        await syncer.run(SyncAction.SYNC_ALL)

    assert exc_info.value.status_code == 500
    assert syncer.state is SyncState.FAILED
    assert await count_rows(session, models.Dataset) == 1
    assert await count_rows(session, models.LegalComplianceRecord) == 1
    assert await count_rows(session, models.FormatRegistryEntry) == 0

    config = await get_integration(session, integration_row.integration_name)
    assert config.last_sync is None
