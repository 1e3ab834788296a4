"""
Lead Embedding Service
Generates embeddings for CRM lead documents and search queries via Voyage AI
"""

from enum import Enum
from typing import Callable, Optional

import httpx
import structlog

from shared.config import (
    API_TIMEOUT,
    EMBED_BATCH_SIZE,
    EMBED_DIMENSIONS,
    EMBED_MODEL,
    LARGE_OPERATION_TIMEOUT,
    VOYAGE_API_KEY,
    VOYAGE_URL,
)
from shared.errors import InvalidResponse, ProviderUnavailable
from shared.resilience import CircuitBreaker, with_timeout

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]


class EmbedMode(str, Enum):
    """
    Input intent sent to the provider as `input_type`.
    Corpus documents and search queries are embedded differently; a query
    must never be embedded as a document or vice versa.
    """
    DOCUMENT = "document"
    QUERY = "query"


class LeadEmbedder:
    """
    Generates embeddings for lead text.

    Every HTTP call passes through the vector-path circuit breaker and a
    bounded timeout. Batches are chunked at `batch_size` inputs per call and
    sent sequentially; a failed chunk fails the whole batch.
    """

    MAX_BATCH_SIZE = 128

    def __init__(
        self,
        api_key: str = VOYAGE_API_KEY,
        base_url: str = VOYAGE_URL,
        model: str = EMBED_MODEL,
        dimensions: int = EMBED_DIMENSIONS,
        batch_size: int = EMBED_BATCH_SIZE,
        timeout: float = API_TIMEOUT,
        batch_timeout: float = LARGE_OPERATION_TIMEOUT,
        breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: Voyage API key; empty disables the provider
            base_url: Voyage API base URL
            model: Embedding model
            dimensions: Output dimension requested from the model
            batch_size: Max inputs per request (capped at MAX_BATCH_SIZE)
            timeout: Bound for single-text calls
            batch_timeout: Bound for each batch chunk
            breaker: Shared vector-path breaker
            http_client: Injected client (tests, connection reuse)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimensions = dimensions
        self.batch_size = max(1, min(batch_size, self.MAX_BATCH_SIZE))
        self.timeout = timeout
        self.batch_timeout = batch_timeout
        self.breaker = breaker or CircuitBreaker("embedding")
        self._client = http_client

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def embed(self, text: str, mode: EmbedMode = EmbedMode.DOCUMENT) -> list[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed
            mode: DOCUMENT for CRM records, QUERY for search queries

        Returns:
            Embedding vector
        """
        vectors = await self._request([text], mode, self.timeout)
        return vectors[0]

    async def embed_batch(
        self,
        texts: list[str],
        mode: EmbedMode = EmbedMode.DOCUMENT,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[list[float]]:
        """
        Generate embeddings for many texts, same order as input.

        Args:
            texts: Texts to embed
            mode: DOCUMENT for CRM records, QUERY for search queries
            on_progress: Called with (embedded_so_far, total) after each chunk

        Returns:
            List of embedding vectors
        """
        if not self.available:
            raise ProviderUnavailable()

        results: list[list[float]] = []
        total = len(texts)
        for start in range(0, total, self.batch_size):
            chunk = texts[start:start + self.batch_size]
            results.extend(await self._request(chunk, mode, self.batch_timeout))
            if on_progress:
                on_progress(min(start + self.batch_size, total), total)

        logger.debug("Embedded batch", count=total, mode=mode.value, model=self.model)
        return results

    async def _request(self, inputs: list[str], mode: EmbedMode, timeout: float) -> list[list[float]]:
        """One provider call, guarded by the breaker and the timeout"""
        if not self.available:
            raise ProviderUnavailable()
        mode = EmbedMode(mode)

        async def post() -> list[list[float]]:
            response = await with_timeout(
                self._http().post(
                    f"{self.base_url}/embeddings",
                    json={
                        "input": inputs,
                        "model": self.model,
                        "input_type": mode.value,
                        "output_dimension": self.dimensions,
                    },
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=timeout,
                ),
                timeout,
                "voyage embeddings",
            )
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error("Voyage HTTP error", status=e.response.status_code, error=e.response.text[:200])
                raise
            return self._parse(response.json(), len(inputs))

        return await self.breaker.call(post)

    def _parse(self, body: dict, expected: int) -> list[list[float]]:
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise InvalidResponse("Invalid embedding response from Voyage AI: missing data")

        by_index: dict[int, list[float]] = {}
        for position, item in enumerate(data):
            if not isinstance(item, dict):
                raise InvalidResponse(f"Invalid embedding item at position {position}")
            index = item.get("index", position)
            embedding = item.get("embedding")
            if embedding:
                if len(embedding) != self.dimensions:
                    raise InvalidResponse(
                        f"Embedding for input index {index} has {len(embedding)} dimensions, "
                        f"expected {self.dimensions}"
                    )
                by_index[index] = embedding

        missing = [i for i in range(expected) if i not in by_index]
        if missing:
            raise InvalidResponse(f"Missing embedding for input index {missing[0]} ({len(missing)} missing)")
        return [by_index[i] for i in range(expected)]

    async def check_health(self) -> dict:
        """Small query-mode embedding; never raises"""
        if not self.available:
            return {
                "available": False,
                "model": self.model,
                "dimensions": self.dimensions,
                "error": "Voyage client not configured",
            }
        try:
            vector = await self.embed("test", EmbedMode.QUERY)
            return {"available": True, "model": self.model, "dimensions": len(vector)}
        except Exception as e:
            logger.warning("Embedding health check failed", error=str(e))
            return {"available": False, "model": self.model, "dimensions": self.dimensions, "error": str(e)}

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
