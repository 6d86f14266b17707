"""
Semantic search for the retrieval engine.

Provides:
- Cosine similarity and a memoizing embedding wrapper
- Paragraph/sentence document chunking
- A per-user vector cache with coalesced, TTL-driven reloads
- Filtered, thresholded similarity search

The orchestrating service lives in search.service and is imported from
there directly (it depends on the context and intelligence packages).

Usage:
    from search import VectorCache, SimilaritySearchEngine, SearchFilters

    cache = VectorCache(repository)
    snapshot = await cache.ensure_fresh("user-1")
    results = SimilaritySearchEngine().search(query_vec, snapshot.items(),
                                              SearchFilters(owner_id="user-1"))
"""

from .embeddings import cosine_similarity, CachedEmbeddingProvider, MemoStats
from .chunker import chunk_document, filter_trivial_chunks, chunk_importance
from .similarity import (
    SimilaritySearchEngine,
    SearchFilters,
    SearchResult,
    ProjectContext,
    ProjectMatch,
)
from .vector_cache import VectorCache, CacheState, CacheSnapshot, CacheEntry

__all__ = [
    'cosine_similarity',
    'CachedEmbeddingProvider',
    'MemoStats',
    'chunk_document',
    'filter_trivial_chunks',
    'chunk_importance',
    'SimilaritySearchEngine',
    'SearchFilters',
    'SearchResult',
    'ProjectContext',
    'ProjectMatch',
    'VectorCache',
    'CacheState',
    'CacheSnapshot',
    'CacheEntry',
]
