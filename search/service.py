"""
Retrieval Service

The entry point the chat layer calls. Wires the embedding provider, vector
cache, similarity search, project relevance, context assembly and insights
into these operations:

- rag_query: question -> bounded context (+ optional answer) with stats
- search_with_project_context: ranked, project-weighted results + insights
- find_project_related_content: repository-backed search scoped to a project
  and its related projects (bypasses the cache)
- memory_stats: per-owner storage totals and recent activity

All collaborators are injected; nothing here is global.

Usage:
    from search.service import RetrievalService, RAGQuery

    service = RetrievalService.from_config(config, repository, relationships)
    result = await service.rag_query(RAGQuery(question="what did we decide on pricing?",
                                              user_id="user-1", project_id="proj-pricing"))
    print(result.context)
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Protocol, Iterable

import numpy as np

from core.config import RetrievalConfig
from core.embedding_provider import EmbeddingProvider, create_embedding_provider
from core.errors import RetrievalError, QueryEmbeddingError, TransientProviderError
from core.logging_config import log_performance
from core.metrics import MetricsCollector, get_metrics_collector, PhaseTimer
from context.assembler import ContextAssembler, ContextSource, CompressionStats
from context.project_relevance import ProjectRelevanceEngine, compute_final_score
from database.models import ProjectRelationship, MemoryStats
from database.repository import ContentRepository, RelationshipStore
from intelligence.insights import SearchInsightsGenerator, SearchInsights
from .similarity import (
    SimilaritySearchEngine, SearchFilters, SearchResult, ProjectContext, ProjectMatch
)
from .vector_cache import VectorCache

logger = logging.getLogger(__name__)


class AnswerGenerator(Protocol):
    """Turns an assembled context into an answer (external)."""

    async def generate(self, question: str, context: str) -> str:
        ...


# =============================================================================
# Request / Response Models
# =============================================================================

@dataclass
class RAGQuery:
    """A question to answer from the user's knowledge base."""
    question: str
    user_id: str
    project_id: Optional[str] = None
    max_tokens: Optional[int] = None
    threshold: Optional[float] = None
    include_types: Optional[List[str]] = None
    max_age_days: Optional[float] = None
    limit: Optional[int] = None
    temporal_weighting: Optional[bool] = None


@dataclass
class SearchStats:
    total_candidates: int = 0
    searched: int = 0
    included: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'total_candidates': self.total_candidates,
            'searched': self.searched,
            'included': self.included,
        }


@dataclass
class RAGResult:
    """Context, sources and statistics for one RAG query."""
    answer: Optional[str]
    sources: List[ContextSource]
    context: str
    compression_stats: CompressionStats
    search_stats: SearchStats
    insights: Optional[SearchInsights] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'answer': self.answer,
            'sources': [s.to_dict() for s in self.sources],
            'context': self.context,
            'compression_stats': self.compression_stats.to_dict(),
            'search_stats': self.search_stats.to_dict(),
            'insights': self.insights.to_dict() if self.insights else None,
        }


@dataclass
class ProjectSearchRequest:
    """Project-aware search parameters."""
    query: str
    user_id: str
    project_id: Optional[str] = None
    limit: int = 20
    threshold: float = 0.3
    content_types: Optional[List[str]] = None
    max_age_days: Optional[float] = None
    project_boost: Optional[float] = None
    temporal_weighting: bool = False


@dataclass
class ProjectSearchResponse:
    results: List[SearchResult]
    insights: SearchInsights
    total_results: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'results': [r.to_dict() for r in self.results],
            'insights': self.insights.to_dict(),
            'total_results': self.total_results,
        }


@dataclass
class CrossReference:
    """Content reached through one project relationship."""
    source_project: str
    target_project: str
    reference_type: str
    content: List[SearchResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_project': self.source_project,
            'target_project': self.target_project,
            'reference_type': self.reference_type,
            'content': [r.to_dict() for r in self.content],
        }


@dataclass
class ProjectRelatedContent:
    direct: List[SearchResult]
    related: List[SearchResult]
    cross_references: List[CrossReference]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'direct_content': [r.to_dict() for r in self.direct],
            'related_content': [r.to_dict() for r in self.related],
            'cross_references': [c.to_dict() for c in self.cross_references],
        }


# =============================================================================
# Service
# =============================================================================

class RetrievalService:
    """
    Project-aware retrieval over a user's stored content.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        repository: ContentRepository,
        relationships: RelationshipStore,
        config: Optional[RetrievalConfig] = None,
        cache: Optional[VectorCache] = None,
        answer_generator: Optional[AnswerGenerator] = None,
        metrics_collector: Optional[MetricsCollector] = None
    ):
        """
        Initialize retrieval service.

        Args:
            provider: Embedding provider for queries
            repository: Content repository
            relationships: Project relationship store
            config: Engine configuration (defaults if None)
            cache: Pre-built vector cache (built from config if None)
            answer_generator: Optional answer generator for rag_query
            metrics_collector: Optional metrics collector
        """
        self.config = config or RetrievalConfig()
        self.provider = provider
        self.repository = repository
        self.relationships = relationships
        self.answer_generator = answer_generator
        self.metrics = metrics_collector or get_metrics_collector()

        self.cache = cache or VectorCache.from_config(repository, self.config.cache, metrics=self.metrics)
        self.search_engine = SimilaritySearchEngine(
            dimensions=self.config.embedding.dimensions,
            metrics=self.metrics
        )
        self.relevance = ProjectRelevanceEngine(
            relationships,
            project_boost=self.config.relevance.project_boost,
            decay_days=self.config.relevance.decay_days
        )
        self.assembler = ContextAssembler.from_config(self.config.context)
        self.insights = SearchInsightsGenerator()

    @classmethod
    def from_config(
        cls,
        config: RetrievalConfig,
        repository: ContentRepository,
        relationships: RelationshipStore,
        **kwargs
    ) -> 'RetrievalService':
        """Build a service with the configured embedding provider."""
        metrics = kwargs.pop('metrics_collector', None) or get_metrics_collector()
        provider = create_embedding_provider(config.embedding, metrics=metrics)
        return cls(provider, repository, relationships, config=config, metrics_collector=metrics, **kwargs)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def embed_query(self, text: str) -> np.ndarray:
        """
        Embed a query. Any provider failure fails the search explicitly.
        """
        if not text or not text.strip():
            raise QueryEmbeddingError("Query text is empty")
        try:
            with PhaseTimer("query_embedding", self.metrics):
                return await self.provider.embed(text, max_input_chars=self.config.embedding.max_input_chars)
        except RetrievalError as e:
            logger.error(f"Query embedding failed: {e}")
            raise QueryEmbeddingError(f"Could not embed query: {e.message}", original_error=e) from e

    async def _search_cache(
        self,
        query_vec: np.ndarray,
        filters: SearchFilters,
        now: Optional[datetime] = None
    ) -> List[SearchResult]:
        snapshot = await self.cache.ensure_fresh(filters.owner_id)
        with PhaseTimer("similarity_search", self.metrics):
            return self.search_engine.search(query_vec, snapshot.items(), filters, now=now)

    async def _total_candidates(self, owner_id: str) -> int:
        try:
            return await self.repository.count(owner_id)
        except TransientProviderError as e:
            logger.warning(f"Could not count content for {owner_id}: {e}")
            return len(self.cache.all(owner_id))

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    @log_performance('retrieval.rag_query')
    async def rag_query(self, query: RAGQuery, now: Optional[datetime] = None) -> RAGResult:
        """
        Find relevant content for a question and assemble a bounded context.

        Raises:
            QueryEmbeddingError: The question could not be embedded
            ConfigurationError: Malformed filters
        """
        search_cfg = self.config.search
        max_tokens = query.max_tokens if query.max_tokens is not None else search_cfg.default_max_tokens
        threshold = query.threshold if query.threshold is not None else search_cfg.default_threshold
        temporal = (query.temporal_weighting if query.temporal_weighting is not None
                    else self.config.relevance.temporal_weighting)

        filters = SearchFilters(
            owner_id=query.user_id,
            similarity_threshold=threshold,
            limit=query.limit if query.limit is not None else search_cfg.default_limit,
            content_types=query.include_types,
            max_age_days=query.max_age_days
        ).validate()

        logger.info(f"RAG query for {query.user_id}: {query.question[:80]!r}")

        query_vec = await self.embed_query(query.question)
        results = await self._search_cache(query_vec, filters, now=now)

        with PhaseTimer("relevance_weighting", self.metrics):
            ranked = await self.relevance.weight(
                results,
                query.project_id,
                temporal_weighting=temporal,
                now=now
            )

        with PhaseTimer("context_assembly", self.metrics):
            assembled = self.assembler.assemble(ranked, max_tokens)

        answer = None
        if self.answer_generator is not None:
            answer = await self.answer_generator.generate(query.question, assembled.text)

        search_stats = SearchStats(
            total_candidates=await self._total_candidates(query.user_id),
            searched=len(results),
            included=len(assembled.sources)
        )
        insights = self.insights.summarize(query.question, query.project_id, ranked, ranked, now=now)

        self.metrics.increment("rag_queries")
        return RAGResult(
            answer=answer,
            sources=assembled.sources,
            context=assembled.text,
            compression_stats=assembled.compression_stats,
            search_stats=search_stats,
            insights=insights
        )

    @log_performance('retrieval.project_search')
    async def search_with_project_context(
        self,
        request: ProjectSearchRequest,
        now: Optional[datetime] = None
    ) -> ProjectSearchResponse:
        """
        Project-weighted search with insights.

        Twice the requested number of candidates are scored so relevance
        weighting can promote project content that raw similarity ranked
        lower.
        """
        filters = SearchFilters(
            owner_id=request.user_id,
            similarity_threshold=request.threshold,
            limit=request.limit * 2,
            content_types=request.content_types,
            max_age_days=request.max_age_days
        ).validate()

        query_vec = await self.embed_query(request.query)
        base_results = await self._search_cache(query_vec, filters, now=now)

        weighted = await self.relevance.weight(
            base_results,
            request.project_id,
            project_boost=request.project_boost,
            temporal_weighting=request.temporal_weighting,
            now=now
        )
        final = weighted[:request.limit]
        insights = self.insights.summarize(request.query, request.project_id, final, weighted, now=now)

        return ProjectSearchResponse(results=final, insights=insights, total_results=len(weighted))

    async def _search_project(
        self,
        query_vec: np.ndarray,
        user_id: str,
        project_id: str,
        limit: int,
        now: datetime
    ) -> List[SearchResult]:
        """
        Repository-backed similarity search within one project.

        A failed listing is logged and yields no results for that project.
        """
        try:
            items = await self.repository.list_by_filters(user_id, {"project_id": project_id})
        except TransientProviderError as e:
            logger.warning(f"Skipping project {project_id}: listing failed ({e})")
            self.metrics.increment("project_listing_failures")
            return []

        filters = SearchFilters(
            owner_id=user_id,
            similarity_threshold=self.config.search.project_search_threshold,
            limit=limit,
            project_id=project_id
        )
        return self.search_engine.search(query_vec, items, filters, now=now)

    @staticmethod
    def _sort_by_relevance(results: Iterable[SearchResult]) -> List[SearchResult]:
        return sorted(
            results,
            key=lambda r: (-r.project_relevance, -r.similarity, -r.item.created_at.timestamp(), r.item.id)
        )

    def _finalize(self, results: List[SearchResult], temporal_weighting: bool, now: datetime) -> List[SearchResult]:
        """Apply age decay (optional) and the final score, then order by relevance."""
        if temporal_weighting:
            results = [self.relevance.apply_decay(r, now) for r in results]
        return self._sort_by_relevance(
            replace(r, final_score=compute_final_score(r.project_relevance, r.similarity))
            for r in results
        )

    @log_performance('retrieval.project_related')
    async def find_project_related_content(
        self,
        query: str,
        project_id: str,
        user_id: str,
        include_related: bool = True,
        temporal_weighting: bool = True,
        limit: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ProjectRelatedContent:
        """
        Content from a project and, optionally, from its related projects.

        Related content's relevance is scaled by relationship strength. Each
        related project gets an equal share of `limit`. Every list is
        ordered by project relevance. A project whose listing fails
        contributes nothing.
        """
        limit = limit or self.config.search.related_content_limit
        now = now or datetime.now(timezone.utc)
        query_vec = await self.embed_query(query)

        direct = self._finalize([
            replace(
                r,
                project_relevance=1.0,
                project_context=ProjectContext(match=ProjectMatch.DIRECT)
            )
            for r in await self._search_project(query_vec, user_id, project_id, limit, now)
        ], temporal_weighting, now)

        related: List[SearchResult] = []
        cross_references: List[CrossReference] = []

        if include_related:
            try:
                relationships: List[ProjectRelationship] = await self.relationships.get_outgoing(project_id)
            except TransientProviderError as e:
                logger.warning(f"Could not load relationships for {project_id}: {e}")
                relationships = []

            if relationships:
                per_project = math.ceil(limit / len(relationships))
                searches = await asyncio.gather(*(
                    self._search_project(query_vec, user_id, rel.target_id, per_project, now)
                    for rel in relationships
                ))

                for rel, results in zip(relationships, searches):
                    weighted = self._finalize([
                        replace(
                            r,
                            project_relevance=1.0 * rel.confidence,
                            project_context=ProjectContext(
                                match=ProjectMatch.RELATED,
                                relationship_type=rel.relationship_type,
                                relationship_strength=rel.confidence
                            )
                        )
                        for r in results
                    ], temporal_weighting, now)
                    related.extend(weighted)
                    if weighted:
                        cross_references.append(CrossReference(
                            source_project=project_id,
                            target_project=rel.target_id,
                            reference_type=rel.relationship_type,
                            content=weighted
                        ))

        return ProjectRelatedContent(
            direct=direct,
            related=self._sort_by_relevance(related),
            cross_references=cross_references
        )

    # -------------------------------------------------------------------------
    # Storage statistics
    # -------------------------------------------------------------------------

    @log_performance('retrieval.memory_stats')
    async def memory_stats(self, owner_id: str, recent_limit: int = 10) -> MemoryStats:
        """
        Storage totals for an owner: item count, type distribution, stored
        and original bytes, and the most recent items.

        Raises:
            TransientProviderError: The repository could not be read
        """
        stats = await self.repository.memory_stats(owner_id, recent_limit=recent_limit)
        logger.debug(
            f"Memory stats for {owner_id}: {stats.total_items} items",
            extra={'owner_id': owner_id}
        )
        return stats
