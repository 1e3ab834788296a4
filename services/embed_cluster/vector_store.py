"""
Qdrant Vector Store
Manages lead embedding storage, filtered similarity search and scroll
"""

from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models
from qdrant_client.http.models import Distance, PointStruct, VectorParams

from shared.config import (
    API_TIMEOUT,
    EMBED_DIMENSIONS,
    HEALTH_CHECK_TIMEOUT,
    HNSW_EF_CONSTRUCT,
    HNSW_M,
    LARGE_OPERATION_TIMEOUT,
    QDRANT_COLLECTION,
)
from shared.resilience import CircuitBreaker, with_timeout
from shared.schemas.lead import (
    LeadFilter,
    Outcome,
    ScrolledPoint,
    SearchMatch,
    VectorMetadata,
    VectorRecord,
)

logger = structlog.get_logger()

# Filterable payload fields, created before any point is written
PAYLOAD_INDEXES = [
    ("stage_id", models.PayloadSchemaType.INTEGER),
    ("owner_id", models.PayloadSchemaType.INTEGER),
    ("team_id", models.PayloadSchemaType.INTEGER),
    ("region_id", models.PayloadSchemaType.INTEGER),
    ("lost_reason_id", models.PayloadSchemaType.INTEGER),
    ("sector", models.PayloadSchemaType.KEYWORD),
    ("is_won", models.PayloadSchemaType.BOOL),
    ("is_lost", models.PayloadSchemaType.BOOL),
    ("is_active", models.PayloadSchemaType.BOOL),
    ("expected_value", models.PayloadSchemaType.FLOAT),
]

SCROLL_PAGE_SIZE = 100


def _match(key: str, value: Union[int, str, bool, list]) -> models.FieldCondition:
    if isinstance(value, list):
        return models.FieldCondition(key=key, match=models.MatchAny(any=value))
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


def _conditions(lead_filter: LeadFilter) -> list:
    must: list = []
    for key in ("stage_id", "owner_id", "team_id", "region_id", "sector", "lost_reason_id",
                "is_won", "is_lost", "is_active"):
        value = getattr(lead_filter, key)
        if value is not None:
            must.append(_match(key, value))

    revenue = lead_filter.expected_value
    if revenue and (revenue.gte is not None or revenue.lte is not None):
        must.append(models.FieldCondition(
            key="expected_value",
            range=models.Range(gte=revenue.gte, lte=revenue.lte),
        ))

    if lead_filter.outcomes:
        should: list = []
        if Outcome.WON in lead_filter.outcomes:
            should.append(_match("is_won", True))
        if Outcome.LOST in lead_filter.outcomes:
            should.append(_match("is_lost", True))
        if Outcome.ACTIVE in lead_filter.outcomes:
            should.append(models.Filter(must=[_match("is_won", False), _match("is_lost", False)]))
        must.append(models.Filter(should=should))
    return must


def build_filter(*filters: Optional[LeadFilter]) -> Optional[models.Filter]:
    """AND together any number of LeadFilters; None when nothing is set"""
    must: list = []
    for lead_filter in filters:
        if lead_filter is not None:
            must.extend(_conditions(lead_filter))
    return models.Filter(must=must) if must else None


def _metadata(payload: Optional[dict], point_id: Any) -> Optional[VectorMetadata]:
    if not payload:
        return None
    try:
        return VectorMetadata.model_validate(payload)
    except ValidationError as e:
        logger.warning("Unreadable payload", point_id=point_id, error=str(e))
        return None


def _vector(raw: Any) -> Optional[list[float]]:
    if raw is None:
        return None
    if isinstance(raw, dict):
        # Named vectors: take the default/unnamed one if present
        raw = raw.get("", next(iter(raw.values()), None))
    return list(raw) if raw is not None else None


class VectorStore:
    """
    Qdrant vector store for lead embeddings.

    Supports:
    - Collection + payload index provisioning
    - Batch upsert and point lookup
    - Filtered similarity search and filter-only scroll
    - Health reporting

    All calls except health_check pass through the shared vector-path breaker.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection: str = QDRANT_COLLECTION,
        dimension: int = EMBED_DIMENSIONS,
        breaker: Optional[CircuitBreaker] = None,
        timeout: float = API_TIMEOUT,
        bulk_timeout: float = LARGE_OPERATION_TIMEOUT,
        health_timeout: float = HEALTH_CHECK_TIMEOUT,
        hnsw_m: int = HNSW_M,
        hnsw_ef_construct: int = HNSW_EF_CONSTRUCT,
    ):
        """
        Args:
            client: Async Qdrant client
            collection: Collection name
            dimension: Vector dimension
            breaker: Shared vector-path breaker
            timeout: Bound for point lookups and searches
            bulk_timeout: Bound for upserts, scroll pages and provisioning
            health_timeout: Bound for the health check
        """
        self._client = client
        self.collection = collection
        self.dimension = dimension
        self.breaker = breaker or CircuitBreaker("vector")
        self.timeout = timeout
        self.bulk_timeout = bulk_timeout
        self.health_timeout = health_timeout
        self.hnsw_m = hnsw_m
        self.hnsw_ef_construct = hnsw_ef_construct

    async def _guarded(self, operation: str, awaitable_factory, timeout: float):
        async def run():
            return await with_timeout(awaitable_factory(), timeout, operation)

        return await self.breaker.call(run)

    async def ensure_collection(self) -> bool:
        """
        Create the collection and its payload indexes if missing.
        Indexes are created before returning so that no data is ever loaded
        into an unindexed collection.

        Returns:
            True if the collection was created by this call
        """
        async def provision() -> bool:
            if await self._client.collection_exists(self.collection):
                return False
            await self._client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
                hnsw_config=models.HnswConfigDiff(m=self.hnsw_m, ef_construct=self.hnsw_ef_construct),
            )
            for field_name, schema in PAYLOAD_INDEXES:
                await self._client.create_payload_index(
                    collection_name=self.collection,
                    field_name=field_name,
                    field_schema=schema,
                    wait=True,
                )
            logger.info("Created collection", name=self.collection, indexes=len(PAYLOAD_INDEXES))
            return True

        return await self._guarded("ensure collection", provision, self.bulk_timeout)

    async def upsert(self, records: list[VectorRecord]) -> int:
        """
        Upsert whole records (last write wins per id).

        Returns:
            Number of points written
        """
        if not records:
            return 0
        points = [
            PointStruct(id=int(r.id), vector=r.vector, payload=r.metadata.to_payload())
            for r in records
        ]
        await self._guarded(
            "upsert",
            lambda: self._client.upsert(collection_name=self.collection, points=points, wait=True),
            self.bulk_timeout,
        )
        logger.debug("Upserted points", count=len(points))
        return len(points)

    async def get_by_id(self, point_id: str) -> Optional[VectorRecord]:
        """Fetch one point with its vector, or None"""
        points = await self._guarded(
            "retrieve",
            lambda: self._client.retrieve(
                collection_name=self.collection,
                ids=[int(point_id)],
                with_vectors=True,
                with_payload=True,
            ),
            self.timeout,
        )
        if not points:
            return None
        point = points[0]
        metadata = _metadata(point.payload, point.id)
        vector = _vector(point.vector)
        if metadata is None or vector is None:
            logger.warning("Point missing vector or payload", point_id=point.id)
            return None
        return VectorRecord(id=str(point.id), vector=vector, metadata=metadata)

    async def search(
        self,
        vector: list[float],
        top_k: int = 10,
        filter: Optional[LeadFilter] = None,
        min_score: float = 0.0,
        include_metadata: bool = True,
    ) -> list[SearchMatch]:
        """
        Cosine similarity search.

        Args:
            vector: Query embedding
            top_k: Max results
            filter: Metadata filter
            min_score: Matches below this score are dropped before the top_k cut
            include_metadata: Return payloads with the matches

        Returns:
            Matches sorted by descending score
        """
        response = await self._guarded(
            "search",
            lambda: self._client.query_points(
                collection_name=self.collection,
                query=vector,
                query_filter=build_filter(filter),
                limit=top_k,
                score_threshold=min_score if min_score > 0 else None,
                with_payload=include_metadata,
            ),
            self.timeout,
        )
        matches = [
            SearchMatch(
                id=str(p.id),
                score=p.score,
                metadata=_metadata(p.payload, p.id) if include_metadata else None,
            )
            for p in response.points
            if p.score >= min_score
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def scroll(
        self,
        filter: Optional[Union[LeadFilter, list[LeadFilter]]] = None,
        limit: int = 1000,
        with_vectors: bool = False,
    ) -> list[ScrolledPoint]:
        """
        Page through every point matching `filter`; no query vector needed.

        Args:
            filter: One filter, or several to AND together
            limit: Max points returned overall
            with_vectors: Also return stored vectors

        Returns:
            Matching points, in backend order
        """
        filters = filter if isinstance(filter, list) else [filter]
        scroll_filter = build_filter(*filters)
        results: list[ScrolledPoint] = []
        offset = None

        while len(results) < limit:
            page_size = min(SCROLL_PAGE_SIZE, limit - len(results))
            points, offset = await self._guarded(
                "scroll",
                lambda: self._client.scroll(
                    collection_name=self.collection,
                    scroll_filter=scroll_filter,
                    limit=page_size,
                    offset=offset,
                    with_payload=True,
                    with_vectors=with_vectors,
                ),
                self.bulk_timeout,
            )
            for point in points:
                results.append(ScrolledPoint(
                    id=str(point.id),
                    metadata=_metadata(point.payload, point.id),
                    vector=_vector(point.vector) if with_vectors else None,
                ))
            if not points or offset is None:
                break

        return results

    async def get_collection_info(self) -> dict:
        info = await self._guarded(
            "collection info",
            lambda: self._client.get_collection(self.collection),
            self.timeout,
        )
        return {
            "vector_count": info.points_count or 0,
            "indexed_vector_count": info.indexed_vectors_count or 0,
            "segments_count": info.segments_count or 0,
            "status": str(info.status.value if hasattr(info.status, "value") else info.status),
        }

    async def health_check(self) -> dict:
        """
        Connectivity, collection existence and point count.
        Never raises; bypasses the breaker so it can report while OPEN.
        """
        health = {
            "connected": False,
            "collection_exists": False,
            "collection_name": self.collection,
            "vector_count": 0,
            "circuit_breaker_state": self.breaker.state.value,
        }
        try:
            exists = await with_timeout(
                self._client.collection_exists(self.collection),
                self.health_timeout,
                "health check",
            )
            health["connected"] = True
            health["collection_exists"] = exists
            if exists:
                info = await with_timeout(
                    self._client.get_collection(self.collection),
                    self.health_timeout,
                    "health check",
                )
                health["vector_count"] = info.points_count or 0
        except Exception as e:
            logger.warning("Qdrant health check failed", error=str(e))
            health["error"] = str(e)
        return health

    async def aclose(self):
        await self._client.close()
