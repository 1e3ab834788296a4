"""
Semantic Search Service
Natural-language search and find-similar over the lead vector index
"""

import time
from typing import Optional

import structlog

from services.crm.client import LEAD_FIELDS, CrmSource
from services.embed_cluster.embedder import EmbedMode, LeadEmbedder
from services.embed_cluster.vector_store import VectorStore
from shared.config import DEFAULT_MIN_SIMILARITY, LOOSE_MIN_SIMILARITY
from shared.errors import NotFoundError, ProviderUnavailable
from shared.resilience import CircuitState
from shared.schemas.lead import LeadFilter, Outcome, SearchMatch
from shared.schemas.search import SemanticSearchResult

logger = structlog.get_logger()

ALL_OUTCOMES = [Outcome.WON, Outcome.LOST, Outcome.ACTIVE]


class SemanticSearchService:
    """Query side of the vector index, enriched with live CRM records."""

    def __init__(
        self,
        embedder: LeadEmbedder,
        vector_store: VectorStore,
        crm: Optional[CrmSource] = None,
        lead_fields: Optional[list[str]] = None,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.crm = crm
        self.lead_fields = lead_fields or LEAD_FIELDS

    def _circuit_open_error(self) -> Optional[str]:
        breaker = self.vector_store.breaker
        if breaker.state is not CircuitState.OPEN:
            return None
        retry = breaker.seconds_until_retry() or 0
        return f"Vector database unavailable (circuit open). Retry in {int(round(retry))}s"

    async def search(
        self,
        query: str,
        lead_filter: Optional[LeadFilter] = None,
        limit: int = 10,
        min_score: float = DEFAULT_MIN_SIMILARITY,
    ) -> SemanticSearchResult:
        """
        Embed `query` in query mode and return the closest leads.

        Args:
            query: Natural-language description of the deals wanted
            lead_filter: Metadata filter ANDed onto the search
            limit: Max matches
            min_score: Similarity floor

        Returns:
            SemanticSearchResult; `error` is set when the vector path is down

        Raises:
            ProviderUnavailable: no embedding provider configured
        """
        start = time.monotonic()
        open_error = self._circuit_open_error()
        if open_error:
            return SemanticSearchResult(query=query, error=open_error)
        if not self.embedder.available:
            raise ProviderUnavailable()

        try:
            vector = await self.embedder.embed(query, EmbedMode.QUERY)
            matches = await self.vector_store.search(
                vector,
                top_k=limit,
                filter=lead_filter,
                min_score=min_score,
            )
        except (ProviderUnavailable, NotFoundError):
            raise
        except Exception as e:
            logger.error("Semantic search failed", query=query[:80], error=str(e))
            return SemanticSearchResult(
                query=query,
                search_time_ms=int((time.monotonic() - start) * 1000),
                error=str(e),
            )

        await self._enrich(matches)
        logger.info("Semantic search", query=query[:80], matches=len(matches))
        return SemanticSearchResult(
            query=query,
            matches=matches,
            search_time_ms=int((time.monotonic() - start) * 1000),
        )

    async def find_similar(
        self,
        lead_id: int,
        limit: int = 5,
        include_outcomes: Optional[list[Outcome]] = None,
        min_score: float = LOOSE_MIN_SIMILARITY,
    ) -> SemanticSearchResult:
        """
        Leads closest to an already-indexed lead, excluding the lead itself.

        Raises:
            NotFoundError: the reference lead is not in the vector index
        """
        start = time.monotonic()
        reference_id = str(lead_id)
        open_error = self._circuit_open_error()
        if open_error:
            return SemanticSearchResult(query=f"similar:{reference_id}", reference_id=reference_id, error=open_error)

        outcomes = [Outcome(o) for o in (include_outcomes or ALL_OUTCOMES)]
        lead_filter = None
        if set(outcomes) != set(ALL_OUTCOMES):
            lead_filter = LeadFilter(outcomes=outcomes)

        try:
            reference = await self.vector_store.get_by_id(reference_id)
        except Exception as e:
            logger.error("Reference lookup failed", lead_id=lead_id, error=str(e))
            return SemanticSearchResult(query=f"similar:{reference_id}", reference_id=reference_id, error=str(e))
        if reference is None:
            raise NotFoundError("Lead", lead_id)

        try:
            matches = await self.vector_store.search(
                reference.vector,
                top_k=limit + 1,
                filter=lead_filter,
                min_score=min_score,
            )
        except Exception as e:
            logger.error("Find similar failed", lead_id=lead_id, error=str(e))
            return SemanticSearchResult(query=reference.metadata.name, reference_id=reference_id, error=str(e))

        matches = [m for m in matches if m.id != reference_id][:limit]
        await self._enrich(matches)
        return SemanticSearchResult(
            query=reference.metadata.name,
            matches=matches,
            reference_id=reference_id,
            search_time_ms=int((time.monotonic() - start) * 1000),
        )

    async def _enrich(self, matches: list[SearchMatch]):
        """Attach full CRM records; matches survive an enrichment failure"""
        if not matches or self.crm is None:
            return
        try:
            records = await self.crm.read([int(m.id) for m in matches], self.lead_fields)
        except Exception as e:
            logger.warning("CRM enrichment failed", matches=len(matches), error=str(e))
            return
        by_id = {str(r.get("id")): r for r in records}
        for match in matches:
            match.record = by_id.get(match.id)
