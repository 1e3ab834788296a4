"""
CRM Vector Sync - Lead Vector Schemas

Defines the vector payload stored per crm.lead and the structured filter
used for similarity search and scroll
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    """Derived lead status"""
    WON = "won"
    LOST = "lost"
    ACTIVE = "active"


class VectorMetadata(BaseModel):
    """
    Flat payload attached to every lead vector.
    Always written whole; never partially updated.
    """
    # Identity
    source_id: int
    name: str = "Untitled"
    partner_name: Optional[str] = None

    # Pipeline position
    stage_id: int = 0
    stage_name: str = ""
    owner_id: int = 0
    owner_name: str = ""
    team_id: Optional[int] = None
    team_name: Optional[str] = None

    # Business metrics
    expected_value: float = 0.0
    probability: float = 0.0

    # Status
    is_won: bool = False
    is_lost: bool = False
    is_active: bool = True

    # Classification
    sector: Optional[str] = None
    lead_source_id: Optional[int] = None
    lead_source_name: Optional[str] = None
    specification_id: Optional[int] = None
    specification_name: Optional[str] = None
    city: Optional[str] = None
    region_id: Optional[int] = None
    region_name: Optional[str] = None
    lost_reason_id: Optional[int] = None
    lost_reason_name: Optional[str] = None

    # CRM timestamps (Odoo "YYYY-MM-DD HH:MM:SS", UTC)
    create_date: str
    write_date: str
    closed_date: Optional[str] = None

    # Sync bookkeeping
    sync_version: int = Field(..., ge=1)
    last_synced: datetime
    truncated: bool = False
    embedding_text: str = Field(..., description="Exact text that produced the vector")

    def to_payload(self) -> dict[str, Any]:
        """Payload dict for the vector backend (unset optionals dropped)"""
        return self.model_dump(mode="json", exclude_none=True)

    @property
    def outcome(self) -> Outcome:
        if self.is_won:
            return Outcome.WON
        if self.is_lost:
            return Outcome.LOST
        return Outcome.ACTIVE


class VectorRecord(BaseModel):
    """One point in the vector index"""
    id: str
    vector: list[float]
    metadata: VectorMetadata


class RevenueRange(BaseModel):
    gte: Optional[float] = None
    lte: Optional[float] = None


class LeadFilter(BaseModel):
    """
    Structured filter over VectorMetadata.
    All set fields are ANDed; list values on id fields match any of them.
    """
    stage_id: Optional[Union[int, list[int]]] = None
    owner_id: Optional[Union[int, list[int]]] = None
    team_id: Optional[int] = None
    region_id: Optional[int] = None
    sector: Optional[str] = None
    lost_reason_id: Optional[int] = None
    is_won: Optional[bool] = None
    is_lost: Optional[bool] = None
    is_active: Optional[bool] = None
    expected_value: Optional[RevenueRange] = None
    outcomes: Optional[list[Outcome]] = Field(
        None, description="Match leads whose derived status is any of these"
    )

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)

    class Config:
        json_schema_extra = {
            "example": {
                "sector": "Education",
                "is_lost": True,
                "expected_value": {"gte": 50000},
            }
        }


class SearchMatch(BaseModel):
    """A similarity search hit"""
    id: str
    score: float
    metadata: Optional[VectorMetadata] = None
    record: Optional[dict[str, Any]] = Field(None, description="Full CRM record, when enriched")


class ScrolledPoint(BaseModel):
    """A filter-only scan hit"""
    id: str
    metadata: Optional[VectorMetadata] = None
    vector: Optional[list[float]] = None
