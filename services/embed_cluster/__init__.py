"""
CRM Vector Sync - Embed/Cluster Service
Builds lead documents, embeds them and clusters the embedded population

Components:
- text_builder.py: Canonical embedding text and vector payload per crm.lead
- embedder.py: LeadEmbedder for Voyage AI document/query embeddings
- vector_store.py: VectorStore for Qdrant storage, search and scroll
- clusterer.py: PatternDiscovery for k-means pattern discovery
"""

from .clusterer import PatternDiscovery, analyze_themes, kmeans_cluster
from .embedder import EmbedMode, LeadEmbedder
from .text_builder import EmbeddingText, build_embedding_text, build_metadata
from .vector_store import VectorStore, build_filter

__all__ = [
    "EmbedMode",
    "LeadEmbedder",
    "VectorStore",
    "build_filter",
    "EmbeddingText",
    "build_embedding_text",
    "build_metadata",
    "PatternDiscovery",
    "kmeans_cluster",
    "analyze_themes",
]
