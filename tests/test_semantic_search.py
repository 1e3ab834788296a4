import pytest
from conftest import FakeCrm, FakeEmbedder, fake_vector, make_lead, synced_at

from services.embed_cluster.text_builder import build_embedding_text, build_metadata
from services.search.semantic import SemanticSearchService
from shared.errors import NotFoundError, ProviderUnavailable
from shared.schemas.lead import LeadFilter, Outcome, VectorRecord


def _index(vector_store, leads):
    for lead in leads:
        built = build_embedding_text(lead)
        vector_store.points[str(lead["id"])] = VectorRecord(
            id=str(lead["id"]),
            vector=fake_vector(built.text),
            metadata=build_metadata(lead, built.text, built.truncated, 1, synced_at()),
        )


LEADS = [
    make_lead(1, name="School gym acoustic upgrade"),
    make_lead(2, name="Library fit-out", stage_id=[9, "Won"]),
    make_lead(3, name="Hospital ward", active=False, lost_reason_id=[4, "Budget"]),
    make_lead(4, name="Office refurbishment", sector="Commercial"),
]


@pytest.mark.asyncio
async def test_search_embeds_query_and_enriches(embedder, vector_store):
    crm = FakeCrm(LEADS)
    _index(vector_store, LEADS)
    service = SemanticSearchService(embedder, vector_store, crm)

    result = await service.search("anything", limit=10, min_score=-1.0)

    assert embedder.modes == ["query"]
    assert len(result.matches) == 4
    assert all(m.record is not None for m in result.matches)
    assert result.matches[0].record["id"] == int(result.matches[0].id)
    assert result.error is None


@pytest.mark.asyncio
async def test_search_applies_filter(embedder, vector_store):
    _index(vector_store, LEADS)
    service = SemanticSearchService(embedder, vector_store, FakeCrm(LEADS))

    result = await service.search("x", LeadFilter(sector="Commercial"), min_score=-1.0)

    assert [m.id for m in result.matches] == ["4"]


@pytest.mark.asyncio
async def test_open_breaker_short_circuits(embedder, vector_store):
    _index(vector_store, LEADS)
    for _ in range(3):
        vector_store.breaker.record_failure()
    service = SemanticSearchService(embedder, vector_store, FakeCrm(LEADS))

    result = await service.search("gym")

    assert result.matches == []
    assert "circuit open" in result.error
    assert embedder.chunk_sizes == []
    assert vector_store.search_calls == 0


@pytest.mark.asyncio
async def test_missing_provider_raises(vector_store):
    service = SemanticSearchService(FakeEmbedder(available=False), vector_store)

    with pytest.raises(ProviderUnavailable):
        await service.search("gym")


@pytest.mark.asyncio
async def test_enrichment_failure_keeps_matches(embedder, vector_store):
    crm = FakeCrm(LEADS)
    crm.fail_read = True
    _index(vector_store, LEADS)
    service = SemanticSearchService(embedder, vector_store, crm)

    result = await service.search("gym", min_score=-1.0)

    assert len(result.matches) == 4
    assert all(m.record is None for m in result.matches)
    assert result.error is None


@pytest.mark.asyncio
async def test_find_similar_excludes_reference(embedder, vector_store):
    _index(vector_store, LEADS)
    service = SemanticSearchService(embedder, vector_store, FakeCrm(LEADS))

    result = await service.find_similar(1, limit=5, min_score=-1.0)

    assert result.reference_id == "1"
    assert "1" not in [m.id for m in result.matches]
    assert len(result.matches) == 3
    assert result.query == "School gym acoustic upgrade"


@pytest.mark.asyncio
async def test_find_similar_filters_outcomes(embedder, vector_store):
    _index(vector_store, LEADS)
    service = SemanticSearchService(embedder, vector_store, FakeCrm(LEADS))

    result = await service.find_similar(4, include_outcomes=[Outcome.WON, Outcome.LOST], min_score=-1.0)

    assert sorted(m.id for m in result.matches) == ["2", "3"]


@pytest.mark.asyncio
async def test_find_similar_unknown_lead(embedder, vector_store):
    service = SemanticSearchService(embedder, vector_store, FakeCrm())

    with pytest.raises(NotFoundError):
        await service.find_similar(999)
