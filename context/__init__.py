"""
Project context for retrieval results.

This module provides:
- Project relevance: boosting and re-ranking results by project relationship
- Context assembly: packing ranked results into a token-bounded context

Usage:
    from context import ProjectRelevanceEngine, ContextAssembler

    ranked = await ProjectRelevanceEngine(relationships).weight(results, "proj-billing")
    assembled = ContextAssembler().assemble(ranked, max_tokens=2000)
"""

from .project_relevance import ProjectRelevanceEngine, compute_final_score, temporal_factor
from .assembler import ContextAssembler, AssembledContext, ContextSource, CompressionStats

__all__ = [
    'ProjectRelevanceEngine',
    'compute_final_score',
    'temporal_factor',
    'ContextAssembler',
    'AssembledContext',
    'ContextSource',
    'CompressionStats',
]
