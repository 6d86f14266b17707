"""
In-memory vector cache.

Holds the decompressed embeddings and bodies of each owner's most recent
content so similarity search never touches the repository on the hot path.

Freshness model (per owner):
    EMPTY -> LOADING -> FRESH -> (ttl elapses) STALE -> LOADING -> FRESH

- A read of an EMPTY or STALE owner triggers a full repopulation before it
  returns.
- At most one population per owner is in flight. Concurrent callers await
  the same task; a cancelled caller does not cancel the shared load.
- Population fetches every eligible id concurrently (bounded), skips ids
  that fail to fetch or decode with a warning, and swaps the new snapshot
  in with a single assignment. Readers see either the old snapshot or the
  new one, never a partial one.
- If listing eligible ids fails, the load fails for every waiter and the
  next call retries.

Usage:
    from search.vector_cache import VectorCache

    cache = VectorCache(repository, ttl_seconds=1800, max_entries=100)
    snapshot = await cache.ensure_fresh("user-1")
    for entry in snapshot.entries.values():
        ...
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Optional, Dict, List, Mapping, Callable, Any

import numpy as np

from core.metrics import MetricsCollector, get_metrics_collector
from database.codec import decode_stored
from database.models import ContentItem
from database.repository import ContentRepository

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_ENTRIES = 100


# =============================================================================
# Data Models
# =============================================================================

class CacheState(Enum):
    """Freshness of one owner's cached vectors."""
    EMPTY = "empty"
    LOADING = "loading"
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class CacheEntry:
    """A cached, decompressed item."""
    item: ContentItem

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def embedding(self) -> np.ndarray:
        return self.item.embedding

    @property
    def content(self) -> str:
        return self.item.body

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.item.metadata_dict()


@dataclass(frozen=True)
class CacheSnapshot:
    """Immutable set of entries for one owner plus when it was loaded."""
    owner_id: str
    entries: Mapping[str, CacheEntry]
    loaded_at: float
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.entries)

    def items(self) -> List[ContentItem]:
        return [entry.item for entry in self.entries.values()]


# =============================================================================
# Vector Cache
# =============================================================================

class VectorCache:
    """
    Per-owner snapshot cache with coalesced, TTL-driven repopulation.

    Not thread-safe: intended for use from a single event loop.
    """

    def __init__(
        self,
        repository: ContentRepository,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        fetch_concurrency: int = 10,
        fetch_timeout_seconds: Optional[float] = 10.0,
        clock: Optional[Callable[[], float]] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        """
        Args:
            repository: Where content is fetched from
            ttl_seconds: Age after which a snapshot is stale
            max_entries: Cap on ids loaded per owner
            fetch_concurrency: Concurrent repository fetches per load
            fetch_timeout_seconds: Per-call timeout for repository calls
                (None disables)
            clock: Monotonic time source, injectable for tests
            metrics: Metrics collector (global one if None)
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.repository = repository
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.fetch_concurrency = max(1, fetch_concurrency)
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self._clock = clock or time.monotonic
        self.metrics = metrics or get_metrics_collector()

        self._snapshots: Dict[str, CacheSnapshot] = {}
        self._loading: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(cls, repository: ContentRepository, config, **kwargs) -> 'VectorCache':
        """Build from a core.config.CacheConfig."""
        return cls(
            repository,
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            fetch_concurrency=config.fetch_concurrency,
            fetch_timeout_seconds=config.fetch_timeout_seconds,
            **kwargs
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _is_stale(self, snapshot: CacheSnapshot) -> bool:
        return self._clock() - snapshot.loaded_at >= self.ttl_seconds

    def state(self, owner_id: str) -> CacheState:
        """Current freshness for an owner."""
        if owner_id in self._loading:
            return CacheState.LOADING
        snapshot = self._snapshots.get(owner_id)
        if snapshot is None or len(snapshot) == 0:
            return CacheState.EMPTY
        if self._is_stale(snapshot):
            return CacheState.STALE
        return CacheState.FRESH

    def snapshot(self, owner_id: str) -> Optional[CacheSnapshot]:
        """Current snapshot without triggering a load (may be stale)."""
        return self._snapshots.get(owner_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def ensure_fresh(self, owner_id: str) -> CacheSnapshot:
        """
        Return a fresh snapshot for owner_id, loading it first if needed.

        Raises whatever the repository raised while listing ids.
        """
        snapshot = self._snapshots.get(owner_id)
        if snapshot is not None and len(snapshot) > 0 and not self._is_stale(snapshot):
            return snapshot

        task = self._loading.get(owner_id)
        if task is None:
            task = asyncio.ensure_future(self._load(owner_id))
            self._loading[owner_id] = task
            task.add_done_callback(lambda t, owner=owner_id: self._load_finished(owner, t))

        return await asyncio.shield(task)

    def get(self, content_id: str) -> Optional[CacheEntry]:
        """Look up a cached entry by id across all owners."""
        for snapshot in self._snapshots.values():
            entry = snapshot.entries.get(content_id)
            if entry is not None:
                return entry
        return None

    def all(self, owner_id: str) -> List[CacheEntry]:
        """All cached entries for an owner (empty if not loaded)."""
        snapshot = self._snapshots.get(owner_id)
        return list(snapshot.entries.values()) if snapshot else []

    def invalidate(self, owner_id: Optional[str] = None):
        """Drop snapshots so the next read reloads. In-flight loads still land."""
        if owner_id is None:
            self._snapshots = {}
        else:
            self._snapshots.pop(owner_id, None)

    async def close(self):
        """Cancel in-flight loads."""
        tasks = list(self._loading.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Population
    # -------------------------------------------------------------------------

    def _load_finished(self, owner_id: str, task: asyncio.Task):
        if self._loading.get(owner_id) is task:
            del self._loading[owner_id]
        # Mark the failure as observed even if every waiter went away
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Cache load for {owner_id} ended with {type(task.exception()).__name__}")

    async def _with_timeout(self, coro):
        if self.fetch_timeout_seconds is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self.fetch_timeout_seconds)

    async def _fetch_entry(self, content_id: str, semaphore: asyncio.Semaphore) -> Optional[CacheEntry]:
        async with semaphore:
            try:
                stored = await self._with_timeout(self.repository.fetch(content_id))
                if not stored.has_embedding:
                    logger.debug(f"Skipping {content_id}: stored without embedding")
                    return None
                item = decode_stored(stored)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Failed to load vector for {content_id}: {type(e).__name__}: {e}")
                return None
        return CacheEntry(item=item)

    async def _load(self, owner_id: str) -> CacheSnapshot:
        start_time = time.perf_counter()
        logger.info(f"Loading vector cache for {owner_id}")

        try:
            ids = await self._with_timeout(self.repository.list_eligible_ids(owner_id, self.max_entries))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.metrics.record_cache_load(owner_id, 0, 0, duration_ms, success=False)
            logger.error(f"Could not list content ids for {owner_id}: {e}")
            raise

        ids = list(dict.fromkeys(ids))[:self.max_entries]
        semaphore = asyncio.Semaphore(self.fetch_concurrency)
        results = await asyncio.gather(*(self._fetch_entry(i, semaphore) for i in ids))

        entries = {entry.id: entry for entry in results if entry is not None}
        skipped = len(ids) - len(entries)

        snapshot = CacheSnapshot(
            owner_id=owner_id,
            entries=MappingProxyType(entries),
            loaded_at=self._clock(),
            skipped=skipped
        )
        self._snapshots[owner_id] = snapshot

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record_cache_load(owner_id, len(entries), skipped, duration_ms)
        logger.info(
            f"Loaded {len(entries)} vectors into cache for {owner_id}"
            + (f" ({skipped} skipped)" if skipped else ""),
            extra={'owner_id': owner_id, 'duration_ms': int(duration_ms)}
        )
        return snapshot
