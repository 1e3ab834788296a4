from datetime import datetime, timezone

import pytest
from conftest import FakeCrm, FakeEmbedder, make_lead, synced_at

from services.sync.context import SyncContext
from services.sync.orchestrator import SyncOrchestrator, odoo_datetime
from shared.errors import CircuitOpenError, NotFoundError, ProviderUnavailable
from shared.schemas.sync import SyncPhase


def _orchestrator(crm, embedder, vector_store, context, **kwargs) -> SyncOrchestrator:
    return SyncOrchestrator(
        crm,
        embedder,
        vector_store,
        context,
        fetch_batch_size=kwargs.pop("fetch_batch_size", 200),
        upsert_batch_size=kwargs.pop("upsert_batch_size", 100),
        clock=synced_at,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_full_sync_happy_path(embedder, vector_store, context):
    leads = [make_lead(i) for i in range(1, 251)]
    leads += [make_lead(i, active=False, lost_reason_id=[2, "Price"]) for i in range(251, 301)]
    crm = FakeCrm(leads)
    events = []

    result = await _orchestrator(crm, embedder, vector_store, context).full_sync(events.append)

    assert result.success is True
    assert result.records_synced == 300
    assert result.records_failed == 0
    assert result.errors is None
    assert result.sync_version == 1
    assert max(embedder.chunk_sizes) <= 128
    assert set(embedder.modes) == {"document"}
    assert vector_store.upsert_sizes == [100, 100, 100]
    assert vector_store.ensure_calls == 1
    assert len(vector_store.points) == 300
    assert vector_store.points["300"].metadata.is_lost is True
    assert all(p.metadata.sync_version == 1 for p in vector_store.points.values())

    snapshot = context.snapshot()
    assert snapshot.sync_version == 1
    assert snapshot.last_sync_time == synced_at()
    assert snapshot.is_syncing is False

    percents = [e.percent_complete for e in events]
    assert percents == sorted(percents)
    assert percents[-1] == 100
    assert [e.phase for e in events][0] is SyncPhase.FETCHING
    assert {e.phase for e in events} == {SyncPhase.FETCHING, SyncPhase.EMBEDDING, SyncPhase.UPSERTING}
    assert all(e.percent_complete <= 33 for e in events if e.phase is SyncPhase.FETCHING)


@pytest.mark.asyncio
async def test_failed_upsert_batch_is_isolated(embedder, vector_store, context):
    crm = FakeCrm([make_lead(i) for i in range(1, 251)])
    vector_store.fail_upsert_calls = {2}

    result = await _orchestrator(crm, embedder, vector_store, context).full_sync()

    assert result.success is False
    assert result.records_synced == 150
    assert result.records_failed == 100
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Batch 2:")
    assert vector_store.upsert_sizes == [100, 100, 50]
    assert context.snapshot().sync_version == 0
    assert context.snapshot().last_sync_time is None


@pytest.mark.asyncio
async def test_sync_is_single_flight(crm, embedder, vector_store, context):
    assert context.try_begin() is True
    orchestrator = _orchestrator(crm, embedder, vector_store, context)

    full = await orchestrator.full_sync()
    incremental = await orchestrator.incremental_sync()

    for result in (full, incremental):
        assert result.success is False
        assert result.errors == ["Sync already in progress"]
    assert crm.calls == []
    assert vector_store.ensure_calls == 0
    assert context.snapshot().is_syncing is True


@pytest.mark.asyncio
async def test_guard_released_after_sync(embedder, vector_store, context):
    crm = FakeCrm([make_lead(1)])
    orchestrator = _orchestrator(crm, embedder, vector_store, context)

    await orchestrator.full_sync()
    second = await orchestrator.full_sync()

    assert second.success is True
    assert context.snapshot().sync_version == 2
    assert vector_store.points["1"].metadata.sync_version == 2


@pytest.mark.asyncio
async def test_incremental_noop_touches_nothing(embedder, vector_store):
    crm = FakeCrm([make_lead(1, write_date="2024-01-02 09:00:00")])
    context = SyncContext(last_sync_time=datetime(2024, 3, 1, tzinfo=timezone.utc), sync_version=4)

    result = await _orchestrator(crm, embedder, vector_store, context).incremental_sync()

    assert result.success is True
    assert result.records_synced == 0
    assert result.sync_version == 4
    assert crm.calls == ["count"]
    assert embedder.chunk_sizes == []
    assert vector_store.upsert_sizes == []
    assert vector_store.ensure_calls == 0


@pytest.mark.asyncio
async def test_incremental_syncs_changed_records(embedder, vector_store):
    crm = FakeCrm([
        make_lead(1, write_date="2024-01-02 09:00:00"),
        make_lead(2, write_date="2024-03-05 10:00:00"),
        make_lead(3, write_date="2024-03-06 10:00:00", active=False, lost_reason_id=[1, "Timing"]),
    ])
    context = SyncContext(last_sync_time=datetime(2024, 3, 1, tzinfo=timezone.utc), sync_version=4)

    result = await _orchestrator(crm, embedder, vector_store, context).incremental_sync()

    assert result.success is True
    assert result.records_synced == 2
    assert result.sync_version == 5
    assert sorted(vector_store.points) == ["2", "3"]
    assert vector_store.points["2"].metadata.sync_version == 5


@pytest.mark.asyncio
async def test_incremental_defaults_to_epoch(embedder, vector_store, context):
    crm = FakeCrm([make_lead(1), make_lead(2)])

    result = await _orchestrator(crm, embedder, vector_store, context).incremental_sync()

    assert result.records_synced == 2


@pytest.mark.asyncio
async def test_missing_provider_fails_before_fetch(crm, vector_store, context):
    embedder = FakeEmbedder(available=False)

    result = await _orchestrator(crm, embedder, vector_store, context).full_sync()

    assert result.success is False
    assert "not configured" in result.errors[0]
    assert crm.calls == []
    assert context.snapshot().is_syncing is False


@pytest.mark.asyncio
async def test_embedding_failure_becomes_result(vector_store, context):
    crm = FakeCrm([make_lead(i) for i in range(1, 6)])
    embedder = FakeEmbedder()
    embedder.fail = True

    result = await _orchestrator(crm, embedder, vector_store, context).full_sync()

    assert result.success is False
    assert result.records_failed == 5
    assert result.errors[0].startswith("Embedding failed:")
    assert vector_store.upsert_sizes == []


@pytest.mark.asyncio
async def test_circuit_errors_never_escape(embedder, vector_store, context):
    crm = FakeCrm([make_lead(1)])

    async def broken():
        raise CircuitOpenError("vector", 12)

    vector_store.ensure_collection = broken

    result = await _orchestrator(crm, embedder, vector_store, context).full_sync()

    assert result.success is False
    assert "circuit open" in result.errors[0]
    assert context.snapshot().is_syncing is False


@pytest.mark.asyncio
async def test_sync_one(embedder, vector_store):
    crm = FakeCrm([make_lead(7, description="Hospital ward refit")])
    context = SyncContext(sync_version=2)

    result = await _orchestrator(crm, embedder, vector_store, context).sync_one(7)

    assert result.success is True
    assert result.records_synced == 1
    assert vector_store.points["7"].metadata.sync_version == 3
    assert "Hospital ward refit" in vector_store.points["7"].metadata.embedding_text
    assert context.snapshot().sync_version == 2


@pytest.mark.asyncio
async def test_sync_one_raises_for_missing_lead(crm, embedder, vector_store, context):
    with pytest.raises(NotFoundError):
        await _orchestrator(crm, embedder, vector_store, context).sync_one(404)


@pytest.mark.asyncio
async def test_sync_one_raises_without_provider(vector_store, context):
    crm = FakeCrm([make_lead(1)])
    embedder = FakeEmbedder(available=False)

    with pytest.raises(ProviderUnavailable):
        await _orchestrator(crm, embedder, vector_store, context).sync_one(1)


@pytest.mark.asyncio
async def test_sync_one_transient_failure_is_result(embedder, vector_store, context):
    crm = FakeCrm([make_lead(1)])
    vector_store.fail_upsert_calls = {1}

    result = await _orchestrator(crm, embedder, vector_store, context).sync_one(1)

    assert result.success is False
    assert result.records_failed == 1


def test_odoo_datetime_is_utc():
    aware = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert odoo_datetime(aware) == "2024-03-01 12:00:00"


@pytest.mark.asyncio
async def test_watermark_is_run_start_time(embedder, vector_store, context):
    ticks = iter([datetime(2024, 6, 1, 12, minute, tzinfo=timezone.utc) for minute in range(60)])
    crm = FakeCrm([make_lead(1), make_lead(2)])
    orchestrator = SyncOrchestrator(crm, embedder, vector_store, context, clock=lambda: next(ticks))

    result = await orchestrator.full_sync()

    assert result.success is True
    assert context.snapshot().last_sync_time == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    assert vector_store.points["1"].metadata.last_synced > context.snapshot().last_sync_time
