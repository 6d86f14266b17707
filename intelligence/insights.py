"""
Search Insights Generator

Summarizes a project-aware search for the UI: where the results came from,
how good they look, and what the user might try next.

Computed over all weighted results (before the final limit):
- Project distribution ('unassigned' for content without a project)
- Content-type distribution
- Related projects: up to 5, ranked by mean project relevance, excluding
  the requesting project and unassigned content
- Temporal distribution (last 7 / 30 / 90 days, older)

Computed over the final results:
- Average similarity (raw cosine, before any project boost)
- Project coverage: share of results from the requesting project

Suggestions are heuristic UX hints, not recommendations with any accuracy
guarantee: lexical query variants, names of the top related projects, and
content types that produced no results.

Usage:
    from intelligence.insights import SearchInsightsGenerator

    insights = SearchInsightsGenerator().summarize(
        "deploy pipeline", "proj-infra", final_results, all_results
    )
    print(insights.to_dict())
"""

import re
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from collections import Counter, defaultdict
from datetime import datetime, timezone

from database.models import ContentType
from search.similarity import SearchResult

UNASSIGNED = 'unassigned'
MAX_RELATED_PROJECTS = 5
MAX_PROJECT_RECOMMENDATIONS = 3
MAX_RELATED_QUERIES = 3

# (bucket name, max age in days)
TEMPORAL_BUCKETS = [
    ('last_7_days', 7),
    ('last_30_days', 30),
    ('last_90_days', 90),
]
OLDER_BUCKET = 'older'

_LAST_WORD = re.compile(r'\w+$')


@dataclass
class RelatedProject:
    """A project that contributed results, with its mean relevance."""
    project_id: str
    project_name: str
    relevance_score: float
    matching_results: int

    def to_dict(self) -> dict:
        return {
            'project_id': self.project_id,
            'project_name': self.project_name,
            'relevance_score': self.relevance_score,
            'matching_results': self.matching_results,
        }


@dataclass
class SearchSuggestions:
    """Heuristic follow-ups. Best effort only."""
    related_queries: List[str] = field(default_factory=list)
    project_recommendations: List[str] = field(default_factory=list)
    content_gaps: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'related_queries': self.related_queries,
            'project_recommendations': self.project_recommendations,
            'content_gaps': self.content_gaps,
        }


@dataclass
class SearchInsights:
    """Summary of one project-aware search."""
    query: str
    project_context: Optional[str]
    total_results: int
    project_distribution: Dict[str, int]
    content_type_distribution: Dict[str, int]
    related_projects: List[RelatedProject]
    average_similarity: float
    project_coverage: float
    temporal_distribution: Dict[str, int]
    suggestions: SearchSuggestions

    def to_dict(self) -> dict:
        return {
            'query': self.query,
            'project_context': self.project_context,
            'total_results': self.total_results,
            'project_distribution': self.project_distribution,
            'content_type_distribution': self.content_type_distribution,
            'related_projects': [p.to_dict() for p in self.related_projects],
            'search_quality': {
                'average_similarity': self.average_similarity,
                'project_coverage': self.project_coverage,
                'temporal_distribution': self.temporal_distribution,
            },
            'suggestions': self.suggestions.to_dict(),
        }


def generate_related_queries(query: str, max_queries: int = MAX_RELATED_QUERIES) -> List[str]:
    """
    Lexical variations of a query. Heuristic, no semantic understanding.
    """
    query = query.strip()
    if not query:
        return []

    variations = [
        (_LAST_WORD.sub('', query).strip() + ' analysis').strip(),
        f'{query} implementation',
        f'{query} best practices',
        f'how to {query}',
        f'{query} examples',
    ]

    seen = set()
    unique = []
    for v in variations:
        if v and v != query and v not in seen:
            seen.add(v)
            unique.append(v)
    return unique[:max_queries]


class SearchInsightsGenerator:
    """Builds SearchInsights from weighted search results."""

    def __init__(self, max_related_projects: int = MAX_RELATED_PROJECTS):
        self.max_related_projects = max_related_projects

    def _related_projects(
        self,
        results: List[SearchResult],
        requesting_project_id: Optional[str]
    ) -> List[RelatedProject]:
        by_project: Dict[str, List[SearchResult]] = defaultdict(list)
        for r in results:
            pid = r.item.project_id
            if pid and pid != requesting_project_id:
                by_project[pid].append(r)

        related = []
        for pid, project_results in by_project.items():
            mean_relevance = sum(r.project_relevance for r in project_results) / len(project_results)
            name = next((r.item.project_name for r in project_results if r.item.project_name), pid)
            related.append(RelatedProject(
                project_id=pid,
                project_name=name,
                relevance_score=mean_relevance,
                matching_results=len(project_results)
            ))

        related.sort(key=lambda p: (-p.relevance_score, -p.matching_results, p.project_id))
        return related[:self.max_related_projects]

    def _temporal_distribution(self, results: List[SearchResult], now: datetime) -> Dict[str, int]:
        distribution = {name: 0 for name, _ in TEMPORAL_BUCKETS}
        distribution[OLDER_BUCKET] = 0

        for r in results:
            age = r.item.age_days(now)
            for name, max_days in TEMPORAL_BUCKETS:
                if age <= max_days:
                    distribution[name] += 1
                    break
            else:
                distribution[OLDER_BUCKET] += 1

        return distribution

    def _content_gaps(self, type_distribution: Dict[str, int]) -> List[str]:
        if not type_distribution:
            return []
        return [t.value for t in ContentType if t.value not in type_distribution]

    def summarize(
        self,
        query: str,
        requesting_project_id: Optional[str],
        final_results: List[SearchResult],
        all_results: List[SearchResult],
        now: Optional[datetime] = None
    ) -> SearchInsights:
        """
        Summarize a search.

        Args:
            query: The user's query text
            requesting_project_id: Project the search was made from
            final_results: Results returned to the user
            all_results: Every weighted result before the final limit
            now: Reference time for temporal buckets

        Returns:
            SearchInsights
        """
        now = now or datetime.now(timezone.utc)

        project_distribution = dict(Counter(r.item.project_id or UNASSIGNED for r in all_results))
        type_distribution = dict(Counter(r.item.content_type.value for r in all_results))
        related = self._related_projects(all_results, requesting_project_id)

        if final_results:
            average_similarity = sum(r.similarity for r in final_results) / len(final_results)
            if requesting_project_id:
                in_project = sum(1 for r in final_results if r.item.project_id == requesting_project_id)
                project_coverage = in_project / len(final_results)
            else:
                project_coverage = 0.0
        else:
            average_similarity = 0.0
            project_coverage = 0.0

        suggestions = SearchSuggestions(
            related_queries=generate_related_queries(query),
            project_recommendations=[p.project_name for p in related[:MAX_PROJECT_RECOMMENDATIONS]],
            content_gaps=self._content_gaps(type_distribution)
        )

        return SearchInsights(
            query=query,
            project_context=requesting_project_id,
            total_results=len(all_results),
            project_distribution=project_distribution,
            content_type_distribution=type_distribution,
            related_projects=related,
            average_similarity=average_similarity,
            project_coverage=project_coverage,
            temporal_distribution=self._temporal_distribution(all_results, now),
            suggestions=suggestions
        )
