"""
Error taxonomy for the sync and semantic search subsystem.

Transient backend failures (CircuitOpenError, OperationTimeoutError) are
recovered by the sync phases into SyncResult.errors. Misconfiguration and
caller mistakes (ProviderUnavailable, NotFoundError) propagate to the caller.
"""

from typing import Optional


class VectorSyncError(Exception):
    """Base class for all subsystem errors"""


class ProviderUnavailable(VectorSyncError):
    """No embedding client is configured (missing API key)"""

    def __init__(self, message: str = "Embedding provider not configured (VOYAGE_API_KEY not set)"):
        super().__init__(message)


class InvalidResponse(VectorSyncError):
    """A backend returned a malformed reply"""


class CircuitOpenError(VectorSyncError):
    """Raised without touching the network while a breaker is OPEN"""

    def __init__(self, name: str, retry_after: Optional[float] = None):
        self.name = name
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{name} service unavailable (circuit open). Retry in {int(round(retry_after))}s"
        else:
            message = f"{name} service unavailable (circuit half-open, trial call in flight)"
        super().__init__(message)


class OperationTimeoutError(VectorSyncError, TimeoutError):
    """An external call exceeded its bound"""

    def __init__(self, operation: str, seconds: float):
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"{operation} timed out after {seconds:g}s")


class SyncInProgressError(VectorSyncError):
    """Another full or incremental sync holds the single-flight guard"""

    def __init__(self, message: str = "Sync already in progress"):
        super().__init__(message)


class InsufficientDataError(VectorSyncError):
    """Clustering population is below 2 x k"""

    def __init__(self, found: int, required: int):
        self.found = found
        self.required = required
        super().__init__(f"Not enough data for clustering: found {found}, need {required}")


class NotFoundError(VectorSyncError):
    """A point or CRM record does not exist"""

    def __init__(self, kind: str, record_id):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class CrmError(VectorSyncError):
    """The CRM RPC endpoint returned a fault"""

    def __init__(self, message: str, data: Optional[dict] = None):
        self.data = data or {}
        super().__init__(message)
