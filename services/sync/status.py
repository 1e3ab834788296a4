"""
Vector subsystem status reporting
"""

from typing import Callable, Optional

import structlog

from services.embed_cluster.embedder import LeadEmbedder
from services.embed_cluster.vector_store import VectorStore
from shared.schemas.sync import VectorStatus

from .context import SyncSnapshot

logger = structlog.get_logger()


async def get_vector_status(
    vector_store: Optional[VectorStore],
    embedder: Optional[LeadEmbedder],
    sync_state: Callable[[], SyncSnapshot],
    enabled: bool = True,
) -> VectorStatus:
    """
    Report backend connectivity, vector count and sync state.
    Never raises; backend problems land in error_message.
    """
    state = sync_state()
    if not enabled or vector_store is None:
        return VectorStatus(
            enabled=False,
            last_sync=state.last_sync_time,
            sync_version=state.sync_version,
            is_syncing=state.is_syncing,
            error_message="Vector features disabled",
        )

    health = await vector_store.health_check()
    retry = vector_store.breaker.seconds_until_retry()
    return VectorStatus(
        enabled=True,
        backend_connected=health["connected"],
        embedding_connected=bool(embedder and embedder.available),
        collection_name=health["collection_name"],
        total_vectors=health["vector_count"],
        last_sync=state.last_sync_time,
        sync_version=state.sync_version,
        is_syncing=state.is_syncing,
        circuit_breaker_state=health["circuit_breaker_state"],
        seconds_until_retry=None if retry is None else int(round(retry)),
        error_message=health.get("error"),
    )
