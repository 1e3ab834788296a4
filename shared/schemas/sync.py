"""
CRM Vector Sync - Sync Schemas

Result, progress and status models exposed to the CLI and API layers
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SyncPhase(str, Enum):
    FETCHING = "fetching"
    EMBEDDING = "embedding"
    UPSERTING = "upserting"


class SyncProgress(BaseModel):
    """Progress event streamed during a sync"""
    phase: SyncPhase
    current_batch: int
    total_batches: int
    records_processed: int
    total_records: int
    percent_complete: int = Field(..., ge=0, le=100)
    elapsed_ms: int


class SyncResult(BaseModel):
    """Outcome of full, incremental or single-record sync"""
    success: bool
    records_synced: int = 0
    records_failed: int = 0
    records_deleted: int = 0
    duration_ms: int = 0
    sync_version: int = 0
    errors: Optional[list[str]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "records_synced": 300,
                "records_failed": 0,
                "records_deleted": 0,
                "duration_ms": 41250,
                "sync_version": 4,
            }
        }


class VectorStatus(BaseModel):
    """Health and sync state of the vector subsystem"""
    enabled: bool
    backend_connected: bool = False
    embedding_connected: bool = False
    collection_name: str = ""
    total_vectors: int = 0
    last_sync: Optional[datetime] = None
    sync_version: int = 0
    is_syncing: bool = False
    circuit_breaker_state: str = "CLOSED"
    seconds_until_retry: Optional[int] = None
    error_message: Optional[str] = None
