"""
CRM Vector Sync - Sync Service
Keeps the vector index in step with the CRM

Components:
- context.py: SyncContext single-flight guard and sync version
- orchestrator.py: SyncOrchestrator for full, incremental and single-record syncs
- status.py: Vector subsystem status reporting
- cli.py: Command-line interface for sync, search and pattern discovery
"""

from .context import SyncContext, SyncSnapshot
from .orchestrator import SyncOrchestrator
from .status import get_vector_status

__all__ = [
    "SyncContext",
    "SyncSnapshot",
    "SyncOrchestrator",
    "get_vector_status",
]
