"""
Shared fixtures and in-memory fakes for the CRM source, embedder and vector store
"""

import zlib
from datetime import datetime, timezone
from typing import Optional

import numpy as np
import pytest

from services.sync.context import SyncContext
from shared.errors import OperationTimeoutError
from shared.resilience import CircuitBreaker
from shared.schemas.lead import LeadFilter, Outcome, ScrolledPoint, SearchMatch, VectorRecord

DIM = 8


def make_lead(lead_id: int, **overrides) -> dict:
    """A crm.lead record shaped like Odoo search_read output"""
    record = {
        "id": lead_id,
        "name": f"Opportunity {lead_id}",
        "partner_id": [1000 + lead_id, f"Partner {lead_id}"],
        "contact_name": False,
        "function": False,
        "email_from": f"lead{lead_id}@example.com",
        "phone": False,
        "mobile": False,
        "street": False,
        "city": "Sydney",
        "state_id": [2, "New South Wales"],
        "country_id": [13, "Australia"],
        "zip": False,
        "expected_revenue": 10000.0,
        "probability": 20.0,
        "stage_id": [1, "New"],
        "user_id": [7, "Alex Rep"],
        "team_id": [3, "Sales"],
        "source_id": False,
        "medium_id": False,
        "campaign_id": False,
        "referred": False,
        "description": False,
        "create_date": "2024-01-01 09:00:00",
        "write_date": "2024-01-02 09:00:00",
        "date_deadline": False,
        "date_closed": False,
        "lost_reason_id": False,
        "priority": "1",
        "type": "opportunity",
        "active": True,
        "sector": "Education",
        "lead_source_id": False,
        "specification_id": False,
        "won_status": False,
    }
    record.update(overrides)
    return record


def fake_vector(text: str, dim: int = DIM) -> list[float]:
    rng = np.random.RandomState(zlib.crc32(text.encode()))
    return rng.normal(size=dim).tolist()


class FakeCrm:
    """In-memory CrmSource with call recording"""

    def __init__(self, records: Optional[list[dict]] = None):
        self.records = list(records or [])
        self.calls: list[str] = []
        self.fail_read = False
        self.healthy = True

    def _matching(self, domain: list, include_inactive: bool) -> list[dict]:
        rows = [r for r in self.records if include_inactive or r.get("active", True)]
        for field, op, value in domain:
            if op == ">=":
                rows = [r for r in rows if str(r.get(field)) >= value]
            elif op == "=":
                rows = [r for r in rows if r.get(field) == value]
        return sorted(rows, key=lambda r: r["id"])

    async def count(self, domain: list, include_inactive: bool = False) -> int:
        self.calls.append("count")
        return len(self._matching(domain, include_inactive))

    async def fetch_page(self, domain, fields, offset=0, limit=200, order="id asc", include_inactive=False):
        self.calls.append("fetch_page")
        return self._matching(domain, include_inactive)[offset:offset + limit]

    async def fetch_one(self, record_id: int, fields: list[str]) -> Optional[dict]:
        self.calls.append("fetch_one")
        for record in self.records:
            if record["id"] == record_id:
                return record
        return None

    async def read(self, ids: list[int], fields: list[str]) -> list[dict]:
        self.calls.append("read")
        if self.fail_read:
            raise OperationTimeoutError("odoo execute_kw", 30)
        return [r for r in self.records if r["id"] in ids]

    async def check_health(self) -> bool:
        return self.healthy

    async def aclose(self):
        pass


class FakeEmbedder:
    """Deterministic embedder that records chunk sizes and modes"""

    MAX_BATCH_SIZE = 128

    def __init__(self, breaker: Optional[CircuitBreaker] = None, available: bool = True, batch_size: int = 128):
        self.breaker = breaker or CircuitBreaker("vector")
        self._available = available
        self.batch_size = batch_size
        self.dimensions = DIM
        self.chunk_sizes: list[int] = []
        self.modes: list[str] = []
        self.fail = False

    @property
    def available(self) -> bool:
        return self._available

    async def embed(self, text, mode="document"):
        return (await self.embed_batch([text], mode))[0]

    async def embed_batch(self, texts, mode="document", on_progress=None):
        if self.fail:
            raise OperationTimeoutError("voyage embeddings", 60)
        results = []
        for start in range(0, len(texts), self.batch_size):
            chunk = texts[start:start + self.batch_size]
            self.chunk_sizes.append(len(chunk))
            self.modes.append(getattr(mode, "value", mode))
            results.extend(fake_vector(t) for t in chunk)
            if on_progress:
                on_progress(min(start + self.batch_size, len(texts)), len(texts))
        return results

    async def check_health(self):
        return {"available": self._available}

    async def aclose(self):
        pass


def _matches(metadata, lead_filter: Optional[LeadFilter]) -> bool:
    if lead_filter is None:
        return True
    for key in ("sector", "is_won", "is_lost", "is_active", "team_id", "region_id", "lost_reason_id"):
        value = getattr(lead_filter, key)
        if value is not None and getattr(metadata, key) != value:
            return False
    for key in ("stage_id", "owner_id"):
        value = getattr(lead_filter, key)
        if value is not None:
            allowed = value if isinstance(value, list) else [value]
            if getattr(metadata, key) not in allowed:
                return False
    if lead_filter.outcomes and metadata.outcome not in [Outcome(o) for o in lead_filter.outcomes]:
        return False
    return True


class FakeVectorStore:
    """In-memory vector store with upsert batch failure injection"""

    def __init__(self, breaker: Optional[CircuitBreaker] = None):
        self.breaker = breaker or CircuitBreaker("vector")
        self.collection = "test_leads"
        self.points: dict[str, VectorRecord] = {}
        self.upsert_sizes: list[int] = []
        self.fail_upsert_calls: set[int] = set()
        self.ensure_calls = 0
        self.search_calls = 0
        self.scroll_filters: list = []

    async def ensure_collection(self) -> bool:
        self.ensure_calls += 1
        return self.ensure_calls == 1

    async def upsert(self, records: list[VectorRecord]) -> int:
        self.upsert_sizes.append(len(records))
        if len(self.upsert_sizes) in self.fail_upsert_calls:
            raise OperationTimeoutError("upsert", 60)
        for record in records:
            self.points[record.id] = record
        return len(records)

    async def get_by_id(self, point_id: str) -> Optional[VectorRecord]:
        return self.points.get(str(point_id))

    async def search(self, vector, top_k=10, filter=None, min_score=0.0, include_metadata=True):
        self.search_calls += 1
        query = np.asarray(vector)
        matches = []
        for record in self.points.values():
            if not _matches(record.metadata, filter):
                continue
            candidate = np.asarray(record.vector)
            score = float(query @ candidate / (np.linalg.norm(query) * np.linalg.norm(candidate)))
            if score >= min_score:
                matches.append(SearchMatch(id=record.id, score=score, metadata=record.metadata))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def scroll(self, filter=None, limit=1000, with_vectors=False):
        filters = filter if isinstance(filter, list) else [filter]
        self.scroll_filters.append(filters)
        points = [
            ScrolledPoint(id=r.id, metadata=r.metadata, vector=r.vector if with_vectors else None)
            for r in self.points.values()
            if all(_matches(r.metadata, f) for f in filters)
        ]
        return points[:limit]

    async def health_check(self) -> dict:
        return {
            "connected": True,
            "collection_exists": bool(self.points),
            "collection_name": self.collection,
            "vector_count": len(self.points),
            "circuit_breaker_state": self.breaker.state.value,
        }

    async def aclose(self):
        pass


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vector_breaker(clock):
    return CircuitBreaker("vector", failure_threshold=3, reset_timeout=30.0, clock=clock)


@pytest.fixture
def crm():
    return FakeCrm()


@pytest.fixture
def embedder(vector_breaker):
    return FakeEmbedder(breaker=vector_breaker)


@pytest.fixture
def vector_store(vector_breaker):
    return FakeVectorStore(breaker=vector_breaker)


@pytest.fixture
def context():
    return SyncContext()


def synced_at() -> datetime:
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


