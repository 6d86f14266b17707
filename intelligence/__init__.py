"""
Search insights for the retrieval engine.

Summaries of a search (project and type distributions, related projects,
result quality) plus heuristic follow-up suggestions.
"""

from .insights import (
    SearchInsightsGenerator,
    SearchInsights,
    SearchSuggestions,
    RelatedProject,
    generate_related_queries,
)

__all__ = [
    'SearchInsightsGenerator',
    'SearchInsights',
    'SearchSuggestions',
    'RelatedProject',
    'generate_related_queries',
]
