"""
Lead Pattern Discovery
Groups embedded leads with k-means and summarizes each cluster's themes

Cluster assignment uses randomized k-means++ initialization: two runs over
identical data can produce different partitions. That is expected.
"""

import time
from collections import Counter
from typing import Optional

import numpy as np
import structlog
from sklearn.cluster import KMeans

from shared.config import CLUSTER_MAX_ITERATIONS, CLUSTER_SCROLL_LIMIT
from shared.errors import InsufficientDataError
from shared.schemas.cluster import (
    AnalysisType,
    ClusterResult,
    CommonThemes,
    PatternResult,
    RepresentativeMember,
    RevenueStats,
    ValueCount,
)
from shared.schemas.lead import LeadFilter, VectorMetadata

from .embedder import EmbedMode, LeadEmbedder
from .vector_store import VectorStore

logger = structlog.get_logger()

TOP_THEMES = 3
REPRESENTATIVES = 3

BASE_FILTERS = {
    AnalysisType.LOST_REASONS: LeadFilter(is_lost=True),
    AnalysisType.OBJECTION_THEMES: LeadFilter(is_lost=True),
    AnalysisType.WINNING_FACTORS: LeadFilter(is_won=True),
    AnalysisType.DEAL_SEGMENTS: None,
}

POPULATION_LABELS = {
    AnalysisType.LOST_REASONS: "lost opportunities (is_lost=true)",
    AnalysisType.OBJECTION_THEMES: "lost opportunities (is_lost=true)",
    AnalysisType.WINNING_FACTORS: "won opportunities (is_won=true)",
    AnalysisType.DEAL_SEGMENTS: "opportunities",
}


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


def kmeans_cluster(
    vectors: np.ndarray,
    num_clusters: int,
    max_iterations: int = CLUSTER_MAX_ITERATIONS,
    random_state: Optional[int] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    k-means with k-means++ initialization on L2-normalized vectors.

    Returns:
        (labels per row, centroids)

    Raises:
        ValueError: num_clusters below 1
        InsufficientDataError: fewer than 2 x num_clusters rows
    """
    if num_clusters < 1:
        raise ValueError(f"num_clusters must be at least 1, got {num_clusters}")
    required = num_clusters * 2
    if len(vectors) < required:
        raise InsufficientDataError(len(vectors), required)

    model = KMeans(
        n_clusters=num_clusters,
        init="k-means++",
        n_init=1,
        max_iter=max_iterations,
        random_state=random_state,
    )
    labels = model.fit_predict(_normalize(np.asarray(vectors, dtype=np.float64)))
    return labels, model.cluster_centers_


def cosine_distances(vectors: np.ndarray, centroid: np.ndarray) -> np.ndarray:
    """1 - cosine similarity of each row to the centroid"""
    centroid_norm = np.linalg.norm(centroid)
    row_norms = np.linalg.norm(vectors, axis=1)
    denom = row_norms * centroid_norm
    denom[denom == 0] = 1.0
    return 1.0 - (vectors @ centroid) / denom


def _top(values: list[Optional[str]], n: int = TOP_THEMES) -> list[ValueCount]:
    counts = Counter(v for v in values if v)
    return [ValueCount(value=value, count=count) for value, count in counts.most_common(n)]


def analyze_themes(members: list[VectorMetadata]) -> CommonThemes:
    """Frequency counts of sector and loss reason, plus revenue stats"""
    revenues = [m.expected_value for m in members if m.expected_value > 0]
    stats = RevenueStats()
    if revenues:
        stats = RevenueStats(
            count=len(revenues),
            mean=sum(revenues) / len(revenues),
            min=min(revenues),
            max=max(revenues),
        )
    return CommonThemes(
        top_categories=_top([m.sector for m in members]),
        top_loss_reasons=_top([m.lost_reason_name for m in members]),
        revenue_stats=stats,
    )


def summarize_cluster(themes: CommonThemes, size: int) -> str:
    parts = [f"{size} opportunities"]
    if themes.top_categories:
        parts.append("primarily in " + ", ".join(c.value for c in themes.top_categories))
    if themes.revenue_stats.mean > 0:
        parts.append(f"avg deal size ${round(themes.revenue_stats.mean):,}")
    if themes.top_loss_reasons:
        top = themes.top_loss_reasons[0]
        parts.append(f"most common loss: {top.value} ({top.count})")
    return "; ".join(parts)


def _representative(metadata: VectorMetadata, distance: float) -> RepresentativeMember:
    return RepresentativeMember(
        id=metadata.source_id,
        name=metadata.name,
        similarity=round(1.0 - distance, 4),
        partner_name=metadata.partner_name,
        stage_name=metadata.stage_name,
        expected_value=metadata.expected_value,
        city=metadata.city,
        region_name=metadata.region_name,
        sector=metadata.sector,
        specification_name=metadata.specification_name,
        is_won=metadata.is_won,
        is_lost=metadata.is_lost,
        lost_reason_name=metadata.lost_reason_name,
    )


def build_insights(analysis_type: AnalysisType, clusters: list[ClusterResult]) -> list[str]:
    if not clusters:
        return []
    largest = clusters[0]
    insights = [f"Largest pattern: {largest.summary_text}"]
    themes = largest.common_themes
    if analysis_type in (AnalysisType.LOST_REASONS, AnalysisType.OBJECTION_THEMES) and themes.top_loss_reasons:
        top = themes.top_loss_reasons[0]
        insights.append(f"{round(top.count / largest.size * 100)}% of the largest cluster lost due to: {top.value}")
    elif themes.top_categories:
        top = themes.top_categories[0]
        insights.append(f"{round(top.count / largest.size * 100)}% of the largest cluster is in {top.value}")
    return insights


class PatternDiscovery:
    """Clusters the embedded lead population behind a metadata filter."""

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: LeadEmbedder,
        scroll_limit: int = CLUSTER_SCROLL_LIMIT,
        max_iterations: int = CLUSTER_MAX_ITERATIONS,
        random_state: Optional[int] = None,
    ):
        self.vector_store = vector_store
        self.embedder = embedder
        self.scroll_limit = scroll_limit
        self.max_iterations = max_iterations
        self.random_state = random_state

    async def _load_population(
        self,
        analysis_type: AnalysisType,
        lead_filter: Optional[LeadFilter],
    ) -> tuple[list[VectorMetadata], list[list[float]]]:
        points = await self.vector_store.scroll(
            [BASE_FILTERS[analysis_type], lead_filter],
            limit=self.scroll_limit,
            with_vectors=True,
        )
        logger.info("Scrolled records for clustering", analysis=analysis_type.value, found=len(points))

        metadata: list[VectorMetadata] = []
        vectors: list[Optional[list[float]]] = []
        to_embed: list[int] = []
        for point in points:
            if point.metadata is None:
                continue
            if point.vector:
                vectors.append(point.vector)
            elif point.metadata.embedding_text:
                to_embed.append(len(vectors))
                vectors.append(None)
            else:
                continue
            metadata.append(point.metadata)

        if to_embed:
            logger.info("Re-embedding points without stored vectors", count=len(to_embed))
            texts = [metadata[i].embedding_text for i in to_embed]
            embedded = await self.embedder.embed_batch(texts, EmbedMode.DOCUMENT)
            for i, vector in zip(to_embed, embedded):
                vectors[i] = vector

        return metadata, vectors

    async def discover_patterns(
        self,
        analysis_type: AnalysisType,
        lead_filter: Optional[LeadFilter] = None,
        num_clusters: int = 5,
    ) -> PatternResult:
        """
        Discover patterns in the lead population.

        Args:
            analysis_type: Selects the base population
            lead_filter: Extra conditions ANDed onto the base population
            num_clusters: k

        Returns:
            PatternResult; never raises for backend failures or small populations
        """
        start = time.monotonic()
        analysis_type = AnalysisType(analysis_type)

        if num_clusters < 1:
            message = f"Number of clusters must be at least 1, got {num_clusters}"
            logger.warning("Invalid cluster count", num_clusters=num_clusters)
            return PatternResult(
                analysis_type=analysis_type,
                insights=[message],
                duration_ms=int((time.monotonic() - start) * 1000),
                error=message,
            )

        try:
            metadata, vectors = await self._load_population(analysis_type, lead_filter)
        except Exception as e:
            logger.error("Pattern discovery failed to load records", error=str(e))
            return PatternResult(
                analysis_type=analysis_type,
                insights=[f"Could not load records for analysis: {e}"],
                duration_ms=int((time.monotonic() - start) * 1000),
                error=str(e),
            )

        try:
            labels, centroids = kmeans_cluster(
                np.asarray(vectors, dtype=np.float64) if vectors else np.empty((0, 0)),
                num_clusters,
                max_iterations=self.max_iterations,
                random_state=self.random_state,
            )
        except InsufficientDataError as e:
            logger.info("Population too small for clustering", found=e.found, required=e.required)
            return PatternResult(
                analysis_type=analysis_type,
                total_records_analyzed=e.found,
                insights=[
                    f"Not enough data for clustering: found {e.found} {POPULATION_LABELS[analysis_type]}",
                    f"Minimum required: {e.required} records ({num_clusters} clusters x 2)",
                    "Tip: Run a full sync to make sure vector metadata is up to date"
                    if e.found == 0
                    else "Tip: Try fewer clusters or the deal_segments analysis type",
                ],
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        matrix = np.asarray(vectors, dtype=np.float64)
        clusters: list[ClusterResult] = []
        for cluster_id in range(num_clusters):
            member_idx = np.flatnonzero(labels == cluster_id)
            if member_idx.size == 0:
                continue
            distances = cosine_distances(matrix[member_idx], centroids[cluster_id])
            order = np.argsort(distances)[:REPRESENTATIVES]
            members = [metadata[i] for i in member_idx]
            themes = analyze_themes(members)
            clusters.append(ClusterResult(
                cluster_id=cluster_id,
                size=int(member_idx.size),
                centroid_distance_avg=float(distances.mean()),
                representative_members=[
                    _representative(metadata[member_idx[j]], float(distances[j])) for j in order
                ],
                common_themes=themes,
                summary_text=summarize_cluster(themes, int(member_idx.size)),
            ))

        clusters.sort(key=lambda c: c.size, reverse=True)
        logger.info("Clustering complete", analysis=analysis_type.value, clusters=len(clusters), records=len(metadata))

        return PatternResult(
            analysis_type=analysis_type,
            total_records_analyzed=len(metadata),
            num_clusters=len(clusters),
            clusters=clusters,
            insights=build_insights(analysis_type, clusters),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
