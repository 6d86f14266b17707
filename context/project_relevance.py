"""
Project Relevance Engine

Re-weights similarity results by how each result's project relates to the
project the user is working in.

Rules per result:
- Same project as the request: relevance 1.0, similarity boosted by
  `project_boost` (default 1.3), tagged as a direct match
- Project related to the request's project (outgoing relationship):
  relevance 0.3 + confidence * 0.4, tagged with relationship type and strength
- Anything else (no project, unrelated project, no requesting project):
  relevance 0.5, untagged

Optional temporal decay scales relevance by 0.7 + 0.3 * exp(-age_days / 30),
so old content keeps at least 70% of its relevance.

Ranking uses a fixed blend:
    final_score = relevance * 0.4 + adjusted_similarity * 0.6

Usage:
    from context.project_relevance import ProjectRelevanceEngine

    engine = ProjectRelevanceEngine(relationship_store)
    ranked = await engine.weight(results, requesting_project_id="proj-billing")
"""

import logging
import math
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Dict

from core.errors import TransientProviderError
from database.models import ProjectRelationship
from database.repository import RelationshipStore
from search.similarity import SearchResult, ProjectContext, ProjectMatch

logger = logging.getLogger(__name__)

# Fixed blend for final ordering
RELEVANCE_WEIGHT = 0.4
SIMILARITY_WEIGHT = 0.6

DIRECT_RELEVANCE = 1.0
NEUTRAL_RELEVANCE = 0.5
RELATED_BASE_RELEVANCE = 0.3
RELATED_CONFIDENCE_SPAN = 0.4

DEFAULT_PROJECT_BOOST = 1.3
DEFAULT_DECAY_DAYS = 30.0
DECAY_FLOOR = 0.7


def temporal_factor(created_at: datetime, now: datetime, decay_days: float = DEFAULT_DECAY_DAYS) -> float:
    """Relevance multiplier in [0.7, 1.0]; 1.0 for brand new content."""
    age_days = max(0.0, (now - created_at).total_seconds() / 86400)
    decay = math.exp(-age_days / decay_days)
    return DECAY_FLOOR + (1.0 - DECAY_FLOOR) * decay


def compute_final_score(project_relevance: float, similarity: float) -> float:
    return project_relevance * RELEVANCE_WEIGHT + similarity * SIMILARITY_WEIGHT


def related_relevance(confidence: float) -> float:
    """Relevance for content from a related project, in [0.3, 0.7]."""
    return RELATED_BASE_RELEVANCE + confidence * RELATED_CONFIDENCE_SPAN


def rank_key(result: SearchResult):
    # Final score desc, newest first, id for a total order
    return (-(result.final_score or 0.0), -result.item.created_at.timestamp(), result.item.id)


class ProjectRelevanceEngine:
    """
    Applies project relevance, boost and optional decay to search results.
    """

    def __init__(
        self,
        relationships: RelationshipStore,
        project_boost: float = DEFAULT_PROJECT_BOOST,
        decay_days: float = DEFAULT_DECAY_DAYS
    ):
        self.relationships = relationships
        self.project_boost = project_boost
        self.decay_days = decay_days

    async def _outgoing(self, project_id: str) -> Dict[str, ProjectRelationship]:
        """Relationships from project_id keyed by target. Empty on store failure."""
        try:
            relationships = await self.relationships.get_outgoing(project_id)
        except TransientProviderError as e:
            logger.warning(f"Relationship lookup failed for {project_id}; treating as unrelated: {e}")
            return {}
        return {rel.target_id: rel for rel in relationships}

    def weight_one(
        self,
        result: SearchResult,
        requesting_project_id: Optional[str],
        related: Dict[str, ProjectRelationship],
        project_boost: float
    ) -> SearchResult:
        """Relevance and context for a single result, without decay."""
        project_id = result.item.project_id

        if requesting_project_id and project_id == requesting_project_id:
            return replace(
                result,
                project_relevance=DIRECT_RELEVANCE,
                adjusted_similarity=result.similarity * project_boost,
                project_context=ProjectContext(match=ProjectMatch.DIRECT)
            )

        relationship = related.get(project_id) if project_id else None
        if relationship is not None:
            return replace(
                result,
                project_relevance=related_relevance(relationship.confidence),
                adjusted_similarity=result.similarity,
                project_context=ProjectContext(
                    match=ProjectMatch.RELATED,
                    relationship_type=relationship.relationship_type,
                    relationship_strength=relationship.confidence
                )
            )

        return replace(
            result,
            project_relevance=NEUTRAL_RELEVANCE,
            adjusted_similarity=result.similarity,
            project_context=None
        )

    def apply_decay(self, result: SearchResult, now: datetime) -> SearchResult:
        factor = temporal_factor(result.item.created_at, now, self.decay_days)
        return replace(result, project_relevance=result.project_relevance * factor)

    async def weight(
        self,
        results: List[SearchResult],
        requesting_project_id: Optional[str],
        project_boost: Optional[float] = None,
        temporal_weighting: bool = False,
        now: Optional[datetime] = None
    ) -> List[SearchResult]:
        """
        Weight and re-rank results.

        Args:
            results: Output of the similarity search
            requesting_project_id: Project the query is made from (None = no project)
            project_boost: Override the configured boost for direct matches
            temporal_weighting: Apply recency decay to relevance
            now: Reference time for decay (default: now, UTC)

        Returns:
            New SearchResults ordered by final_score (inputs are not modified)
        """
        if not results:
            return []

        boost = self.project_boost if project_boost is None else project_boost
        now = now or datetime.now(timezone.utc)

        related: Dict[str, ProjectRelationship] = {}
        if requesting_project_id:
            related = await self._outgoing(requesting_project_id)

        weighted = []
        for result in results:
            updated = self.weight_one(result, requesting_project_id, related, boost)
            if temporal_weighting:
                updated = self.apply_decay(updated, now)
            updated = replace(
                updated,
                final_score=compute_final_score(updated.project_relevance, updated.adjusted_similarity)
            )
            weighted.append(updated)

        weighted.sort(key=rank_key)

        direct = sum(1 for r in weighted if r.project_context and r.project_context.is_direct_match)
        related_count = sum(1 for r in weighted if r.project_context and r.project_context.is_related_project)
        logger.debug(
            f"Weighted {len(weighted)} results for project {requesting_project_id}: "
            f"{direct} direct, {related_count} related"
        )
        return weighted
