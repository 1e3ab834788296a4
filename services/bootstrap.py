"""
Service wiring
Builds the shared clients and breakers once and hands them to the sync,
search and pattern discovery services.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

import structlog
from qdrant_client import AsyncQdrantClient

from services.crm.client import OdooClient
from services.embed_cluster.clusterer import PatternDiscovery
from services.embed_cluster.embedder import LeadEmbedder
from services.embed_cluster.vector_store import VectorStore
from services.search.semantic import SemanticSearchService
from services.sync.context import SyncContext
from services.sync.orchestrator import SyncOrchestrator
from services.sync.status import get_vector_status
from shared.config import (
    BREAKER_HALF_OPEN_CALLS,
    CRM_BREAKER_RESET_SECONDS,
    CRM_BREAKER_THRESHOLD,
    EMBED_DIMENSIONS,
    LARGE_OPERATION_TIMEOUT,
    QDRANT_API_KEY,
    QDRANT_COLLECTION,
    QDRANT_HOST,
    QDRANT_PORT,
    QDRANT_URL,
    VECTOR_BREAKER_RESET_SECONDS,
    VECTOR_BREAKER_THRESHOLD,
    VECTOR_ENABLED,
)
from shared.resilience import CircuitBreaker
from shared.schemas.sync import VectorStatus

logger = structlog.get_logger()


@dataclass
class VectorServices:
    """Everything the CLI and API need, sharing one breaker per backend"""
    crm: OdooClient
    embedder: LeadEmbedder
    vector_store: VectorStore
    context: SyncContext
    orchestrator: SyncOrchestrator
    search: SemanticSearchService
    patterns: PatternDiscovery
    enabled: bool = True
    breakers: dict = field(default_factory=dict)

    async def status(self) -> VectorStatus:
        return await get_vector_status(
            self.vector_store if self.enabled else None,
            self.embedder,
            self.context.snapshot,
            enabled=self.enabled,
        )

    async def aclose(self):
        await self.embedder.aclose()
        await self.vector_store.aclose()
        await self.crm.aclose()
        logger.info("Closed service clients")


def create_qdrant_client(
    location: Optional[str] = None,
    timeout: float = LARGE_OPERATION_TIMEOUT,
) -> AsyncQdrantClient:
    """
    QDRANT_URL wins over host/port; `location=":memory:"` gives a local store.
    The client timeout matches the bulk bound so with_timeout decides expiry.
    """
    if location:
        return AsyncQdrantClient(location=location)
    seconds = int(math.ceil(timeout))
    if QDRANT_URL:
        return AsyncQdrantClient(url=QDRANT_URL, api_key=QDRANT_API_KEY, timeout=seconds)
    return AsyncQdrantClient(host=QDRANT_HOST, port=QDRANT_PORT, api_key=QDRANT_API_KEY, timeout=seconds)


def build_services(
    crm: Optional[OdooClient] = None,
    embedder: Optional[LeadEmbedder] = None,
    qdrant_client: Optional[AsyncQdrantClient] = None,
    context: Optional[SyncContext] = None,
    collection: str = QDRANT_COLLECTION,
    enabled: bool = VECTOR_ENABLED,
) -> VectorServices:
    """
    Wire the subsystem.

    The embedder and the vector store share a single vector-path breaker;
    the CRM client gets its own.
    """
    vector_breaker = embedder.breaker if embedder else CircuitBreaker(
        "vector",
        failure_threshold=VECTOR_BREAKER_THRESHOLD,
        reset_timeout=VECTOR_BREAKER_RESET_SECONDS,
        half_open_max_calls=BREAKER_HALF_OPEN_CALLS,
    )
    crm_breaker = crm.breaker if crm else CircuitBreaker(
        "crm",
        failure_threshold=CRM_BREAKER_THRESHOLD,
        reset_timeout=CRM_BREAKER_RESET_SECONDS,
        half_open_max_calls=BREAKER_HALF_OPEN_CALLS,
    )

    crm = crm or OdooClient(breaker=crm_breaker)
    embedder = embedder or LeadEmbedder(breaker=vector_breaker)
    vector_store = VectorStore(
        qdrant_client or create_qdrant_client(),
        collection=collection,
        dimension=embedder.dimensions or EMBED_DIMENSIONS,
        breaker=vector_breaker,
    )
    context = context or SyncContext()

    logger.info(
        "Built vector services",
        collection=collection,
        enabled=enabled,
        embedding_configured=embedder.available,
    )
    return VectorServices(
        crm=crm,
        embedder=embedder,
        vector_store=vector_store,
        context=context,
        orchestrator=SyncOrchestrator(crm, embedder, vector_store, context),
        search=SemanticSearchService(embedder, vector_store, crm),
        patterns=PatternDiscovery(vector_store, embedder),
        enabled=enabled,
        breakers={"vector": vector_breaker, "crm": crm_breaker},
    )
