"""
Tests for vector math and the embedding memo
"""

import numpy as np
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import TransientProviderError
from search.embeddings import cosine_similarity, CachedEmbeddingProvider
from tests.conftest import FakeEmbeddingProvider, FakeClock
from tests.fixtures.sample_data import unit_vector, vector_with_similarity, QUERY_VECTOR


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical_vectors_score_exactly_one(self):
        """A non-zero vector scores exactly 1.0 against itself."""
        rng = np.random.default_rng(7)
        for _ in range(20):
            vec = rng.normal(size=1536)
            assert cosine_similarity(vec, vec) == 1.0

    def test_orthogonal_vectors(self):
        assert cosine_similarity(unit_vector(0), unit_vector(1)) == 0.0

    def test_opposite_vectors(self):
        vec = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(vec, -vec) == pytest.approx(-1.0)

    def test_symmetric(self):
        """sim(a, b) == sim(b, a)."""
        rng = np.random.default_rng(11)
        a, b = rng.normal(size=64), rng.normal(size=64)
        assert cosine_similarity(a, b) == cosine_similarity(b, a)

    def test_scale_invariant(self):
        a = np.array([0.3, -1.2, 4.0])
        b = np.array([1.0, 0.5, 2.0])
        assert cosine_similarity(a * 10, b) == pytest.approx(cosine_similarity(a, b))

    def test_length_mismatch_scores_zero(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0

    def test_empty_and_none(self):
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity(None, [1.0]) == 0.0

    def test_controlled_similarity_helper(self):
        """The fixture helper produces the similarity it promises."""
        assert cosine_similarity(QUERY_VECTOR, vector_with_similarity(0.8)) == pytest.approx(0.8)

    def test_lists_accepted(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == 1.0


class TestCachedEmbeddingProvider:
    """Tests for the query-embedding memo."""

    @pytest.fixture
    def inner(self):
        return FakeEmbeddingProvider()

    @pytest.mark.asyncio
    async def test_repeat_query_served_from_memo(self, inner):
        """The second identical request does not reach the provider."""
        memo = CachedEmbeddingProvider(inner)

        first = await memo.embed("quarterly pricing review")
        second = await memo.embed("quarterly pricing review")

        assert len(inner.calls) == 1
        assert np.array_equal(first, second)
        assert memo.stats().hits == 1
        assert memo.stats().misses == 1

    @pytest.mark.asyncio
    async def test_normalized_key(self, inner):
        """Case and surrounding whitespace do not change the key."""
        memo = CachedEmbeddingProvider(inner)

        await memo.embed("Pricing Review")
        await memo.embed("  pricing review \n")

        assert len(inner.calls) == 1

    @pytest.mark.asyncio
    async def test_entries_expire(self, inner):
        clock = FakeClock()
        memo = CachedEmbeddingProvider(inner, ttl_seconds=60, clock=clock)

        await memo.embed("ledger export")
        clock.advance(61)
        await memo.embed("ledger export")

        assert len(inner.calls) == 2
        assert memo.stats().expirations == 1

    @pytest.mark.asyncio
    async def test_lru_eviction(self, inner):
        memo = CachedEmbeddingProvider(inner, max_entries=2)

        await memo.embed("one")
        await memo.embed("two")
        await memo.embed("one")      # refresh "one"
        await memo.embed("three")    # evicts "two"
        await memo.embed("one")

        assert inner.calls == ["one", "two", "three"]
        assert memo.stats().evictions == 1
        assert memo.stats().size == 2

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, inner):
        memo = CachedEmbeddingProvider(inner)
        inner.failing.add("flaky")

        with pytest.raises(TransientProviderError):
            await memo.embed("flaky")

        inner.failing.clear()
        vec = await memo.embed("flaky")

        assert vec.shape == (1536,)
        assert len(inner.calls) == 2

    @pytest.mark.asyncio
    async def test_returned_vectors_are_copies(self, inner):
        """Mutating a returned vector does not corrupt the memo."""
        memo = CachedEmbeddingProvider(inner)

        first = await memo.embed("copy check")
        original = first.copy()
        first[:] = 0.0
        second = await memo.embed("copy check")

        assert np.array_equal(second, original)

    @pytest.mark.asyncio
    async def test_batch_only_sends_misses(self, inner):
        memo = CachedEmbeddingProvider(inner)
        await memo.embed("known")
        inner.calls.clear()

        results = await memo.embed_batch(["known", "new one", "new two"])

        assert sorted(inner.calls) == ["new one", "new two"]
        assert all(r is not None for r in results)

    @pytest.mark.asyncio
    async def test_batch_failure_yields_none(self, inner):
        memo = CachedEmbeddingProvider(inner)
        inner.failing.add("bad")

        results = await memo.embed_batch(["good", "bad"])

        assert results[0] is not None
        assert results[1] is None

    def test_stats_dict(self, inner):
        memo = CachedEmbeddingProvider(inner)
        stats = memo.stats().to_dict()
        assert stats["hit_rate"] == 0.0
        assert stats["total_requests"] == 0
