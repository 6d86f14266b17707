"""
Tests for Search Insights
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from context.project_relevance import ProjectRelevanceEngine
from database.models import ContentType
from database.repository import InMemoryRelationshipStore
from intelligence.insights import SearchInsightsGenerator, generate_related_queries
from search.similarity import SearchResult
from tests.fixtures.sample_data import make_item, sample_corpus, NOW, RELATIONSHIPS


def as_results(items):
    return [SearchResult(item=item, similarity=0.8) for item in items]


@pytest.fixture
def generator():
    return SearchInsightsGenerator()


class TestRelatedQueries:
    """Tests for lexical query variations."""

    def test_variations(self):
        assert generate_related_queries("deploy pipeline") == [
            "deploy analysis",
            "deploy pipeline implementation",
            "deploy pipeline best practices",
        ]

    def test_empty_query(self):
        assert generate_related_queries("   ") == []

    def test_max_queries(self):
        assert len(generate_related_queries("cache warmup", max_queries=5)) == 5


class TestSummaries:
    """Tests for SearchInsightsGenerator.summarize."""

    @pytest.mark.asyncio
    async def test_distributions(self, generator):
        weighted = await ProjectRelevanceEngine(InMemoryRelationshipStore(RELATIONSHIPS)).weight(
            as_results(sample_corpus()), "proj-billing", now=NOW
        )

        insights = generator.summarize("pricing", "proj-billing", weighted[:3], weighted, now=NOW)

        assert insights.total_results == 6
        assert insights.project_distribution == {
            "proj-billing": 2, "proj-ledger": 1, "proj-roadmap": 1, "unassigned": 2
        }
        assert insights.content_type_distribution["knowledge"] == 2
        assert insights.project_context == "proj-billing"

    @pytest.mark.asyncio
    async def test_related_projects_ranked_by_relevance(self, generator):
        weighted = await ProjectRelevanceEngine(InMemoryRelationshipStore(RELATIONSHIPS)).weight(
            as_results(sample_corpus()), "proj-billing", now=NOW
        )

        insights = generator.summarize("pricing", "proj-billing", weighted, weighted, now=NOW)
        related = insights.related_projects

        # ledger: 0.3 + 0.5 * 0.4 = 0.5, roadmap: 0.3 + 0.25 * 0.4 = 0.4
        assert [p.project_id for p in related] == ["proj-ledger", "proj-roadmap"]
        assert related[0].project_name == "Ledger"
        assert related[0].relevance_score == pytest.approx(0.5)
        assert insights.suggestions.project_recommendations == ["Ledger", "Roadmap"]

    def test_temporal_buckets(self, generator):
        items = [
            make_item("a", age_days=3),
            make_item("b", age_days=20),
            make_item("c", age_days=60),
            make_item("d", age_days=200),
            make_item("e", age_days=7),
        ]
        insights = generator.summarize("q", None, [], as_results(items), now=NOW)

        assert insights.temporal_distribution == {
            "last_7_days": 2, "last_30_days": 1, "last_90_days": 1, "older": 1
        }

    def test_quality_metrics(self, generator):
        results = [
            SearchResult(item=make_item("a", project_id="p1"), similarity=0.9),
            SearchResult(item=make_item("b", project_id="p2"), similarity=0.7),
        ]
        insights = generator.summarize("q", "p1", results, results, now=NOW)

        assert insights.average_similarity == pytest.approx(0.8)
        assert insights.project_coverage == pytest.approx(0.5)

    def test_no_results(self, generator):
        insights = generator.summarize("q", "p1", [], [], now=NOW)

        assert insights.average_similarity == 0.0
        assert insights.project_coverage == 0.0
        assert insights.related_projects == []
        assert insights.suggestions.content_gaps == []

    def test_content_gaps(self, generator):
        items = [make_item("a", content_type=ContentType.EMAIL)]
        insights = generator.summarize("q", None, as_results(items), as_results(items), now=NOW)

        assert "email" not in insights.suggestions.content_gaps
        assert "knowledge" in insights.suggestions.content_gaps
        assert len(insights.suggestions.content_gaps) == 5

    def test_related_projects_capped(self):
        generator = SearchInsightsGenerator(max_related_projects=2)
        items = [make_item(f"m{i}", project_id=f"p{i}") for i in range(4)]
        insights = generator.summarize("q", None, [], as_results(items), now=NOW)
        assert len(insights.related_projects) == 2

    def test_to_dict(self, generator):
        data = generator.summarize("q", None, [], [], now=NOW).to_dict()
        assert set(data["search_quality"]) == {"average_similarity", "project_coverage", "temporal_distribution"}
        assert "related_queries" in data["suggestions"]
