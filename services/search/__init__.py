"""
CRM Vector Sync - Search Service
Semantic search and find-similar over embedded leads
"""

from .semantic import SemanticSearchService

__all__ = ["SemanticSearchService"]
