"""
Tests for Project Relevance Weighting
"""

import math
import pytest
from datetime import timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import TransientProviderError
from context.project_relevance import (
    ProjectRelevanceEngine, temporal_factor, compute_final_score, related_relevance
)
from database.models import ProjectRelationship
from database.repository import InMemoryRelationshipStore, RelationshipStore
from search.similarity import SearchResult
from tests.fixtures.sample_data import make_item, NOW, RELATIONSHIPS


class FailingRelationshipStore(RelationshipStore):
    async def get_outgoing(self, project_id):
        raise TransientProviderError("relationship store down", provider="relationships")

    async def get_relationship(self, source_id, target_id):
        raise TransientProviderError("relationship store down", provider="relationships")


def result(item_id, similarity, project_id=None, age_days=1.0):
    return SearchResult(
        item=make_item(item_id, similarity=similarity, project_id=project_id, age_days=age_days),
        similarity=similarity
    )


@pytest.fixture
def engine():
    return ProjectRelevanceEngine(InMemoryRelationshipStore(RELATIONSHIPS))


class TestScoringFunctions:
    """Tests for the scoring helpers."""

    def test_final_score_blend(self):
        assert compute_final_score(1.0, 0.5) == pytest.approx(0.4 + 0.3)

    def test_related_relevance_range(self):
        assert related_relevance(0.0) == pytest.approx(0.3)
        assert related_relevance(1.0) == pytest.approx(0.7)

    def test_temporal_factor_new_content(self):
        assert temporal_factor(NOW, NOW) == pytest.approx(1.0)

    def test_temporal_factor_thirty_days(self):
        expected = 0.7 + 0.3 * math.exp(-1)
        assert temporal_factor(NOW - timedelta(days=30), NOW) == pytest.approx(expected)

    def test_temporal_factor_floor(self):
        assert temporal_factor(NOW - timedelta(days=3650), NOW) == pytest.approx(0.7)

    def test_future_content_not_boosted(self):
        assert temporal_factor(NOW + timedelta(days=5), NOW) == pytest.approx(1.0)


class TestWeighting:
    """Tests for ProjectRelevanceEngine.weight."""

    @pytest.mark.asyncio
    async def test_direct_match(self, engine):
        weighted = await engine.weight([result("mem_1", 0.6, "proj-billing")], "proj-billing", now=NOW)
        r = weighted[0]

        assert r.project_relevance == 1.0
        assert r.adjusted_similarity == pytest.approx(0.78)
        assert r.final_score == pytest.approx(0.4 + 0.6 * 0.78)
        assert r.project_context.is_direct_match
        assert r.similarity == 0.6

    @pytest.mark.asyncio
    async def test_related_project(self, engine):
        weighted = await engine.weight([result("mem_1", 0.8, "proj-ledger")], "proj-billing", now=NOW)
        r = weighted[0]

        assert r.project_relevance == pytest.approx(0.5)
        assert r.adjusted_similarity == 0.8
        assert r.project_context.is_related_project
        assert r.project_context.relationship_type == "depends_on"
        assert r.project_context.relationship_strength == 0.5

    @pytest.mark.asyncio
    async def test_unrelated_and_unassigned_are_neutral(self, engine):
        weighted = await engine.weight(
            [result("mem_1", 0.8, "proj-unknown"), result("mem_2", 0.7, None)],
            "proj-billing",
            now=NOW
        )
        for r in weighted:
            assert r.project_relevance == 0.5
            assert r.project_context is None

    @pytest.mark.asyncio
    async def test_no_requesting_project(self, engine):
        weighted = await engine.weight([result("mem_1", 0.8, "proj-billing")], None, now=NOW)
        assert weighted[0].project_relevance == 0.5
        assert weighted[0].adjusted_similarity == 0.8

    @pytest.mark.asyncio
    async def test_relationships_are_directional(self, engine):
        """proj-ledger has no outgoing edge back to proj-billing."""
        weighted = await engine.weight([result("mem_1", 0.8, "proj-billing")], "proj-ledger", now=NOW)
        assert weighted[0].project_context is None

    @pytest.mark.asyncio
    async def test_direct_content_outranks_more_similar_neutral(self, engine):
        results = [result("mem_neutral", 0.9, None), result("mem_direct", 0.7, "proj-billing")]
        weighted = await engine.weight(results, "proj-billing", now=NOW)
        assert [r.item.id for r in weighted] == ["mem_direct", "mem_neutral"]

    @pytest.mark.asyncio
    async def test_custom_boost(self, engine):
        weighted = await engine.weight(
            [result("mem_1", 0.5, "proj-billing")], "proj-billing", project_boost=2.0, now=NOW
        )
        assert weighted[0].adjusted_similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_temporal_weighting(self, engine):
        old = result("mem_old", 0.8, None, age_days=30)
        weighted = await engine.weight([old], None, temporal_weighting=True, now=NOW)
        expected = 0.5 * (0.7 + 0.3 * math.exp(-1))
        assert weighted[0].project_relevance == pytest.approx(expected)

    @pytest.mark.asyncio
    async def test_inputs_not_modified(self, engine):
        original = result("mem_1", 0.6, "proj-billing")
        await engine.weight([original], "proj-billing", temporal_weighting=True, now=NOW)

        assert original.project_relevance == 0.5
        assert original.adjusted_similarity == 0.6
        assert original.project_context is None
        assert original.final_score is None

    @pytest.mark.asyncio
    async def test_empty_results(self, engine):
        assert await engine.weight([], "proj-billing") == []

    @pytest.mark.asyncio
    async def test_store_failure_treated_as_unrelated(self):
        engine = ProjectRelevanceEngine(FailingRelationshipStore())
        weighted = await engine.weight(
            [result("mem_1", 0.8, "proj-ledger"), result("mem_2", 0.6, "proj-billing")],
            "proj-billing",
            now=NOW
        )
        by_id = {r.item.id: r for r in weighted}

        assert by_id["mem_1"].project_relevance == 0.5
        assert by_id["mem_2"].project_relevance == 1.0

    def test_relationship_confidence_validated(self):
        with pytest.raises(ValueError):
            ProjectRelationship("a", "b", "similar", 1.5)
