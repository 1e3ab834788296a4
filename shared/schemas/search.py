"""
CRM Vector Sync - Search Schemas
"""

from typing import Optional

from pydantic import BaseModel, Field

from .lead import SearchMatch


class SemanticSearchResult(BaseModel):
    """Result of a natural-language or find-similar query"""
    query: str
    matches: list[SearchMatch] = Field(default_factory=list)
    reference_id: Optional[str] = Field(None, description="Anchor lead for find-similar queries")
    search_time_ms: int = 0
    error: Optional[str] = None
