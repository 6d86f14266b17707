"""
Similarity Search Engine

Scores cached content against a query embedding and returns a ranked,
thresholded list.

Pipeline per candidate:
    ownership -> content-type allow-list -> age -> cosine similarity -> threshold

Survivors are sorted by similarity (descending), ties broken by newest
created_at, then by id, and truncated to the limit. For a fixed snapshot and
query vector the output is fully deterministic.

Usage:
    from search.similarity import SimilaritySearchEngine, SearchFilters

    engine = SimilaritySearchEngine()
    filters = SearchFilters(owner_id="user-1", similarity_threshold=0.6, limit=10)
    results = engine.search(query_vec, snapshot.items(), filters)

    for r in results:
        print(f"{r.similarity:.3f} - {r.item.title}")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import List, Optional, Iterable, Dict, Any, FrozenSet

import numpy as np

from core.errors import ConfigurationError
from core.metrics import MetricsCollector, get_metrics_collector
from database.models import ContentItem, ContentType
from .embeddings import cosine_similarity, as_vector, EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


# =============================================================================
# Data Models
# =============================================================================

class ProjectMatch(Enum):
    """How a result's project relates to the requesting project."""
    DIRECT = "direct"
    RELATED = "related"


@dataclass(frozen=True)
class ProjectContext:
    """Why a result was considered project-relevant."""
    match: ProjectMatch
    relationship_type: Optional[str] = None
    relationship_strength: Optional[float] = None

    @property
    def is_direct_match(self) -> bool:
        return self.match is ProjectMatch.DIRECT

    @property
    def is_related_project(self) -> bool:
        return self.match is ProjectMatch.RELATED

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'is_direct_match': self.is_direct_match,
            'is_related_project': self.is_related_project,
        }
        if self.relationship_type is not None:
            result['relationship_type'] = self.relationship_type
        if self.relationship_strength is not None:
            result['relationship_strength'] = self.relationship_strength
        return result


def make_preview(text: str, max_length: int = PREVIEW_LENGTH) -> str:
    """Leading slice of text for display."""
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + '...'


@dataclass
class SearchResult:
    """
    A scored candidate.

    Attributes:
        item: The underlying content (never mutated)
        similarity: Raw cosine similarity to the query
        project_relevance: Organizational relevance in [0, 1] (0.5 until weighted)
        project_context: Direct/related tag, set by relevance weighting
        adjusted_similarity: Similarity after the direct-project boost
        final_score: Blend of relevance and adjusted similarity
        preview: Leading slice of the body
    """
    item: ContentItem
    similarity: float
    project_relevance: float = 0.5
    project_context: Optional[ProjectContext] = None
    adjusted_similarity: Optional[float] = None
    final_score: Optional[float] = None
    preview: str = ''

    def __post_init__(self):
        if not self.preview:
            self.preview = make_preview(self.item.body)
        if self.adjusted_similarity is None:
            self.adjusted_similarity = self.similarity

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def title(self) -> str:
        return self.item.title

    @property
    def project_id(self) -> Optional[str]:
        return self.item.project_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.item.id,
            'title': self.item.title,
            'content_type': self.item.content_type.value,
            'project_id': self.item.project_id,
            'project_name': self.item.project_name,
            'similarity': self.similarity,
            'adjusted_similarity': self.adjusted_similarity,
            'project_relevance': self.project_relevance,
            'project_context': self.project_context.to_dict() if self.project_context else None,
            'final_score': self.final_score,
            'preview': self.preview,
            'created_at': self.item.created_at.isoformat(),
        }


@dataclass
class SearchFilters:
    """
    Candidate filters for one search.

    Attributes:
        owner_id: Only content owned by this user
        similarity_threshold: Minimum raw similarity (inclusive)
        limit: Maximum results
        content_types: Allow-list of content types (None = all)
        max_age_days: Skip content older than this (None = no limit)
        project_id: Only content in this project (None = any)
    """
    owner_id: str
    similarity_threshold: float = 0.6
    limit: int = 10
    content_types: Optional[Iterable[Any]] = None
    max_age_days: Optional[float] = None
    project_id: Optional[str] = None
    _allowed_types: Optional[FrozenSet[ContentType]] = field(default=None, init=False, repr=False)

    def validate(self) -> 'SearchFilters':
        """Check and normalize filters. Raises ConfigurationError."""
        if not self.owner_id:
            raise ConfigurationError("owner_id is required", field="owner_id")
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                f"similarity_threshold must be in [-1, 1], got {self.similarity_threshold}",
                field="similarity_threshold"
            )
        if self.limit is None or self.limit <= 0:
            raise ConfigurationError(f"limit must be positive, got {self.limit}", field="limit")
        if self.max_age_days is not None and self.max_age_days < 0:
            raise ConfigurationError(
                f"max_age_days must not be negative, got {self.max_age_days}",
                field="max_age_days"
            )
        if self.content_types is not None:
            try:
                self._allowed_types = frozenset(ContentType.parse(t) for t in self.content_types)
            except ValueError as e:
                raise ConfigurationError(str(e), field="content_types")
        return self

    @property
    def allowed_types(self) -> Optional[FrozenSet[ContentType]]:
        return self._allowed_types


# =============================================================================
# Search Engine
# =============================================================================

class SimilaritySearchEngine:
    """
    Ranks content by cosine similarity to a query vector.

    Stateless apart from metrics; safe to share between requests.
    """

    def __init__(
        self,
        dimensions: int = EMBEDDING_DIMENSIONS,
        metrics: Optional[MetricsCollector] = None
    ):
        self.dimensions = dimensions
        self.metrics = metrics or get_metrics_collector()

    def score(self, query_vec: np.ndarray, item: ContentItem) -> float:
        """
        Cosine similarity between the query and an item.

        Missing, empty or wrongly sized vectors score 0 and are reported as
        integrity warnings.
        """
        vec = as_vector(item.embedding)
        if vec.shape[0] == 0:
            logger.warning(f"Content {item.id} has no embedding; scoring 0")
            self.metrics.record_integrity_warning("empty_vector")
            return 0.0
        if vec.shape[0] != query_vec.shape[0]:
            logger.warning(
                f"Content {item.id} embedding has {vec.shape[0]} dimensions, "
                f"query has {query_vec.shape[0]}; scoring 0"
            )
            self.metrics.record_integrity_warning("dimension_mismatch")
            return 0.0
        return cosine_similarity(query_vec, vec)

    def search(
        self,
        query_embedding,
        candidates: Iterable[ContentItem],
        filters: SearchFilters,
        now: Optional[datetime] = None
    ) -> List[SearchResult]:
        """
        Filter, score, threshold, sort and truncate candidates.

        Args:
            query_embedding: Query vector
            candidates: Items to consider (typically a cache snapshot)
            filters: Search filters
            now: Reference time for age filtering (default: now, UTC)

        Returns:
            Ranked SearchResults, all with similarity >= threshold
        """
        filters.validate()
        query_vec = as_vector(query_embedding)
        if query_vec.shape[0] != self.dimensions:
            logger.warning(
                f"Query embedding has {query_vec.shape[0]} dimensions, expected {self.dimensions}"
            )
            self.metrics.record_integrity_warning("query_dimension_mismatch")

        now = now or datetime.now(timezone.utc)
        cutoff = None
        if filters.max_age_days is not None:
            cutoff = now - timedelta(days=filters.max_age_days)
        allowed = filters.allowed_types

        scored = []
        considered = 0
        for item in candidates:
            if item.owner_id != filters.owner_id:
                continue
            if allowed is not None and item.content_type not in allowed:
                continue
            if cutoff is not None and item.created_at < cutoff:
                continue
            if filters.project_id is not None and item.project_id != filters.project_id:
                continue

            considered += 1
            similarity = self.score(query_vec, item)
            if similarity < filters.similarity_threshold:
                continue
            scored.append(SearchResult(item=item, similarity=similarity))

        scored.sort(key=_ranking_key)
        results = scored[:filters.limit]

        self.metrics.increment("searches")
        logger.debug(
            f"Search for {filters.owner_id}: {considered} considered, "
            f"{len(scored)} above threshold, {len(results)} returned"
        )
        return results


def _ranking_key(result: SearchResult):
    # Similarity desc, then newest first, then id for total order
    return (-result.similarity, -result.item.created_at.timestamp(), result.item.id)
