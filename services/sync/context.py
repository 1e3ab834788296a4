"""
Sync state shared by the orchestrator and the status reporter.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class SyncSnapshot:
    last_sync_time: Optional[datetime]
    sync_version: int
    is_syncing: bool


class SyncContext:
    """
    Mutex-guarded sync state: last sync time, sync version and the
    single-flight flag. The version only moves forward.
    """

    def __init__(self, last_sync_time: Optional[datetime] = None, sync_version: int = 0):
        self._lock = threading.Lock()
        self._last_sync_time = last_sync_time
        self._sync_version = sync_version
        self._is_syncing = False

    def try_begin(self) -> bool:
        """Claim the single-flight guard; False if a sync is already running"""
        with self._lock:
            if self._is_syncing:
                return False
            self._is_syncing = True
            return True

    def finish(self):
        with self._lock:
            self._is_syncing = False

    def commit(self, synced_at: datetime) -> int:
        """Record a successful sync; returns the new version"""
        with self._lock:
            self._sync_version += 1
            self._last_sync_time = synced_at
            return self._sync_version

    @property
    def pending_version(self) -> int:
        """Version stamped on records written by the current sync"""
        with self._lock:
            return self._sync_version + 1

    def snapshot(self) -> SyncSnapshot:
        with self._lock:
            return SyncSnapshot(
                last_sync_time=self._last_sync_time,
                sync_version=self._sync_version,
                is_syncing=self._is_syncing,
            )
