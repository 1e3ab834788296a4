"""
CRM Vector Sync - Cluster Schemas

Pattern discovery results. Derived per request, never persisted.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AnalysisType(str, Enum):
    """Selects the base population for pattern discovery"""
    LOST_REASONS = "lost_reasons"
    WINNING_FACTORS = "winning_factors"
    DEAL_SEGMENTS = "deal_segments"
    OBJECTION_THEMES = "objection_themes"


class ValueCount(BaseModel):
    value: str
    count: int


class RevenueStats(BaseModel):
    """Revenue over members with positive expected value"""
    count: int = 0
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0


class CommonThemes(BaseModel):
    top_categories: list[ValueCount] = Field(default_factory=list, description="Most frequent sectors")
    top_loss_reasons: list[ValueCount] = Field(default_factory=list)
    revenue_stats: RevenueStats = Field(default_factory=RevenueStats)


class RepresentativeMember(BaseModel):
    """A member close to its cluster centroid"""
    id: int
    name: str
    similarity: float
    partner_name: Optional[str] = None
    stage_name: Optional[str] = None
    expected_value: float = 0.0
    city: Optional[str] = None
    region_name: Optional[str] = None
    sector: Optional[str] = None
    specification_name: Optional[str] = None
    is_won: bool = False
    is_lost: bool = False
    lost_reason_name: Optional[str] = None


class ClusterResult(BaseModel):
    cluster_id: int
    size: int
    centroid_distance_avg: float = Field(..., description="Mean cosine distance of members to the centroid")
    representative_members: list[RepresentativeMember] = Field(default_factory=list)
    common_themes: CommonThemes = Field(default_factory=CommonThemes)
    summary_text: str = ""


class PatternResult(BaseModel):
    """
    Output of pattern discovery.

    Cluster assignment comes from randomized k-means++ initialization, so two
    runs over identical data may partition it differently.
    """
    analysis_type: AnalysisType
    total_records_analyzed: int = 0
    num_clusters: int = 0
    clusters: list[ClusterResult] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    error: Optional[str] = None

    class Config:
        use_enum_values = True
