"""CRM Vector Sync Shared Schemas"""

from .cluster import (
    AnalysisType,
    ClusterResult,
    CommonThemes,
    PatternResult,
    RepresentativeMember,
    RevenueStats,
    ValueCount,
)
from .lead import (
    LeadFilter,
    Outcome,
    RevenueRange,
    ScrolledPoint,
    SearchMatch,
    VectorMetadata,
    VectorRecord,
)
from .search import SemanticSearchResult
from .sync import SyncPhase, SyncProgress, SyncResult, VectorStatus

__all__ = [
    # Lead vector schemas
    "Outcome",
    "VectorMetadata",
    "VectorRecord",
    "LeadFilter",
    "RevenueRange",
    "SearchMatch",
    "ScrolledPoint",
    # Sync schemas
    "SyncPhase",
    "SyncProgress",
    "SyncResult",
    "VectorStatus",
    # Cluster schemas
    "AnalysisType",
    "ValueCount",
    "RevenueStats",
    "CommonThemes",
    "RepresentativeMember",
    "ClusterResult",
    "PatternResult",
    # Search schemas
    "SemanticSearchResult",
]
