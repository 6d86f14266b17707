"""
Vector math and query-embedding memo.

Provides:
- cosine_similarity: deterministic, symmetric cosine over float64 vectors
- as_vector: normalize provider/stored output to a 1-D float64 array
- CachedEmbeddingProvider: LRU + TTL memo in front of any EmbeddingProvider,
  so repeated queries do not hit the embedding API

Usage:
    from search.embeddings import cosine_similarity, CachedEmbeddingProvider

    score = cosine_similarity(query_vec, item_vec)

    provider = CachedEmbeddingProvider(OpenAIEmbeddingProvider(config))
    vec = await provider.embed("quarterly planning notes")
    print(provider.stats().to_dict())
"""

import hashlib
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional, Callable, Sequence, Union, Dict, Any, Tuple

import numpy as np

from core.embedding_provider import EmbeddingProvider, DEFAULT_DIMENSIONS, DEFAULT_MAX_INPUT_CHARS

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = DEFAULT_DIMENSIONS


# =============================================================================
# Vector Math
# =============================================================================

def as_vector(values: Union[np.ndarray, Sequence[float], None]) -> np.ndarray:
    """Convert to a 1-D float64 array (empty for None)."""
    if values is None:
        return np.zeros(0, dtype=np.float64)
    return np.asarray(values, dtype=np.float64).reshape(-1)


def cosine_similarity(vec1, vec2) -> float:
    """
    Compute cosine similarity between two vectors.

    Returns 0.0 when lengths differ or either vector has zero norm. The
    result is symmetric and a non-zero vector scores exactly 1.0 against
    itself.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        Cosine similarity score (-1 to 1)
    """
    a = as_vector(vec1)
    b = as_vector(vec2)

    if a.shape[0] == 0 or a.shape[0] != b.shape[0]:
        return 0.0

    norm1_sq = float(np.dot(a, a))
    norm2_sq = float(np.dot(b, b))
    if norm1_sq == 0.0 or norm2_sq == 0.0:
        return 0.0

    # sqrt(x * x) == x in IEEE arithmetic, which keeps sim(a, a) at 1.0
    score = float(np.dot(a, b)) / math.sqrt(norm1_sq * norm2_sq)
    return max(-1.0, min(1.0, score))


# =============================================================================
# Query-embedding Memo
# =============================================================================

@dataclass
class MemoStats:
    """Hit/miss counters for the embedding memo."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total_requests if self.total_requests else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "total_requests": self.total_requests,
            "hit_rate": round(self.hit_rate, 4),
        }


class CachedEmbeddingProvider(EmbeddingProvider):
    """
    LRU memo in front of another provider.

    Keys are the SHA-256 of the normalized text (trimmed, lower-cased, first
    max_input_chars characters). Entries expire after ttl_seconds. Failures
    are never cached.
    """

    def __init__(
        self,
        inner: EmbeddingProvider,
        max_entries: int = 1000,
        ttl_seconds: float = 24 * 60 * 60,
        clock: Optional[Callable[[], float]] = None
    ):
        self.inner = inner
        self.dimensions = inner.dimensions
        self.max_input_chars = getattr(inner, "max_input_chars", DEFAULT_MAX_INPUT_CHARS)
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic

        self._entries: "OrderedDict[str, Tuple[np.ndarray, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = MemoStats()

    @property
    def name(self) -> str:
        return f"cached:{self.inner.name}"

    def cache_key(self, text: str) -> str:
        normalized = text.strip().lower()[:self.max_input_chars]
        return hashlib.sha256(normalized.encode('utf-8')).hexdigest()

    def _get(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            vector, stored_at = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return None

            self._entries.move_to_end(key)
            self._stats.hits += 1
            return vector

    def _put(self, key: str, vector: np.ndarray):
        with self._lock:
            self._entries[key] = (vector, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1

    async def embed(self, text: str, max_input_chars: Optional[int] = None) -> np.ndarray:
        key = self.cache_key(text)
        cached = self._get(key)
        if cached is not None:
            logger.debug(f"Embedding memo hit ({self._stats.hit_rate:.0%} hit rate)")
            return cached.copy()

        vector = await self.inner.embed(text, max_input_chars=max_input_chars)
        self._put(key, vector)
        return vector.copy()

    async def embed_batch(self, texts: List[str]) -> List[Optional[np.ndarray]]:
        """Serve what the memo has; send only the misses to the inner provider."""
        results: List[Optional[np.ndarray]] = [None] * len(texts)
        missing_indices = []

        for i, text in enumerate(texts):
            cached = self._get(self.cache_key(text))
            if cached is not None:
                results[i] = cached.copy()
            else:
                missing_indices.append(i)

        if missing_indices:
            fresh = await self.inner.embed_batch([texts[i] for i in missing_indices])
            for i, vector in zip(missing_indices, fresh):
                if vector is not None:
                    self._put(self.cache_key(texts[i]), vector)
                    results[i] = vector.copy()

        return results

    def stats(self) -> MemoStats:
        with self._lock:
            return MemoStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                size=len(self._entries),
            )

    def clear(self):
        with self._lock:
            self._entries.clear()
