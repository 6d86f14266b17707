"""
Shared fixtures for the retrieval engine tests.
"""

import asyncio
import hashlib
from pathlib import Path
import sys
from typing import Dict, List, Optional, Set

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.embedding_provider import EmbeddingProvider
from core.errors import TransientProviderError
from core.metrics import MetricsCollector, reset_metrics_collector
from database.repository import InMemoryContentRepository, InMemoryRelationshipStore
from tests.fixtures.sample_data import DIMENSIONS


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic provider for tests.

    Texts registered in `vectors` get that vector; anything else gets a
    pseudo-random unit vector seeded from the text. Texts in `failing` raise
    TransientProviderError; `errors_by_text` maps a text to the error it
    raises; `error` (if set) is raised for every call.
    """

    def __init__(self, vectors: Optional[Dict[str, np.ndarray]] = None, dims: int = DIMENSIONS):
        self.dimensions = dims
        self.vectors = dict(vectors or {})
        self.failing: Set[str] = set()
        self.error: Optional[Exception] = None
        self.errors_by_text: Dict[str, Exception] = {}
        self.calls = []

    @property
    def name(self) -> str:
        return "fake"

    async def embed(self, text, max_input_chars=None):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.errors_by_text:
            raise self.errors_by_text[text]
        if text in self.failing:
            raise TransientProviderError(f"cannot embed {text[:20]!r}", provider=self.name)
        if text in self.vectors:
            return np.array(self.vectors[text], dtype=np.float64)

        seed = int(hashlib.sha256(text.encode('utf-8')).hexdigest()[:8], 16)
        vec = np.random.default_rng(seed).normal(size=self.dimensions)
        return vec / np.linalg.norm(vec)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class CountingRepository(InMemoryContentRepository):
    """In-memory repository that counts listings and can inject failures."""

    def __init__(self, items=None, list_delay: float = 0.0):
        super().__init__(items)
        self.list_calls = 0
        self.fetch_calls = 0
        self.list_delay = list_delay
        self.fail_listing = 0
        self.failing_ids: Set[str] = set()
        self.failing_projects: Set[str] = set()
        self.failing_stores: Set[str] = set()
        self.stored_ids: List[str] = []

    async def list_eligible_ids(self, owner_id, cap):
        self.list_calls += 1
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.fail_listing > 0:
            self.fail_listing -= 1
            raise TransientProviderError("repository unavailable", provider="repository")
        return await super().list_eligible_ids(owner_id, cap)

    async def fetch(self, content_id):
        self.fetch_calls += 1
        if content_id in self.failing_ids:
            raise TransientProviderError(f"cannot fetch {content_id}", provider="repository")
        return await super().fetch(content_id)

    async def list_by_filters(self, owner_id, filters=None):
        project_id = (filters or {}).get("project_id")
        if project_id in self.failing_projects:
            raise TransientProviderError(f"cannot list {project_id}", provider="repository")
        return await super().list_by_filters(owner_id, filters)

    async def store(self, item):
        if item.id in self.failing_stores:
            raise TransientProviderError(f"cannot write {item.id}", provider="repository")
        stored_id = await super().store(item)
        self.stored_ids.append(stored_id)
        return stored_id


@pytest.fixture(autouse=True)
def fresh_global_metrics():
    """Each test starts with a clean global collector."""
    reset_metrics_collector()
    yield
    reset_metrics_collector()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def relationships():
    from tests.fixtures.sample_data import RELATIONSHIPS
    return InMemoryRelationshipStore(RELATIONSHIPS)
