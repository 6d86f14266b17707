"""
Content and Relationship Repositories

The retrieval core reads stored content and project relationships through
these two interfaces. Real deployments back them with their own storage;
the in-memory implementations here serve tests, local development and
embedding the engine in a single process.

Usage:
    from database.repository import InMemoryContentRepository

    repo = InMemoryContentRepository()
    await repo.store(item)
    ids = await repo.list_eligible_ids("user-1", cap=100)
    stored = await repo.fetch(ids[0])
"""

import asyncio
import logging
from collections import Counter
from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta
from typing import List, Dict, Any, Optional

from .codec import encode_item, decode_stored
from .models import (
    ContentItem, ContentType, StoredContent, ProjectRelationship, MemoryStats, RecentItem, parse_datetime
)

logger = logging.getLogger(__name__)


class ContentNotFoundError(KeyError):
    """No stored content with the requested id."""
    pass


# =============================================================================
# Interfaces
# =============================================================================

class ContentRepository(ABC):
    """Read/write access to stored content."""

    @abstractmethod
    async def list_eligible_ids(self, owner_id: str, cap: int) -> List[str]:
        """
        Ids of content eligible for the vector cache, newest first.

        Args:
            owner_id: Owner whose content is listed
            cap: Maximum ids to return
        """
        pass

    @abstractmethod
    async def fetch(self, content_id: str) -> StoredContent:
        """
        Fetch one item in its compressed form.

        Raises:
            ContentNotFoundError: Unknown id
        """
        pass

    @abstractmethod
    async def list_by_filters(self, owner_id: str, filters: Optional[Dict[str, Any]] = None) -> List[ContentItem]:
        """
        Decompressed items matching filters, newest first.

        Supported filters:
            project_id: Only items assigned to this project
            content_types: Iterable of ContentType (or values)
            max_age_days: Only items newer than this
            limit: Maximum items
        """
        pass

    @abstractmethod
    async def store(self, item: ContentItem) -> str:
        """Persist an item and return its id."""
        pass

    @abstractmethod
    async def count(self, owner_id: str) -> int:
        """Number of items owned by owner_id."""
        pass

    @abstractmethod
    async def memory_stats(self, owner_id: str, recent_limit: int = 10) -> MemoryStats:
        """Storage totals for owner_id with the `recent_limit` newest items."""
        pass


class RelationshipStore(ABC):
    """Read-only access to project relationships."""

    @abstractmethod
    async def get_outgoing(self, project_id: str) -> List[ProjectRelationship]:
        """Relationships whose source is project_id."""
        pass

    @abstractmethod
    async def get_relationship(self, source_id: str, target_id: str) -> Optional[ProjectRelationship]:
        """The relationship from source to target, if any."""
        pass


# =============================================================================
# In-memory Implementations
# =============================================================================

class InMemoryContentRepository(ContentRepository):
    """
    Dictionary-backed repository.

    Items are kept in compressed form, exactly as a remote store would hand
    them back, so the cache exercises the same decode path.
    """

    def __init__(self, items: Optional[List[ContentItem]] = None):
        self._stored: Dict[str, StoredContent] = {}
        self._lock = asyncio.Lock()
        for item in items or []:
            self._stored[item.id] = encode_item(item)

    def _sorted_metadata(self, owner_id: str) -> List[StoredContent]:
        owned = [s for s in self._stored.values() if s.metadata.get("owner_id") == owner_id]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(
            owned,
            key=lambda s: parse_datetime(s.metadata.get("created_at")) or epoch,
            reverse=True
        )

    async def list_eligible_ids(self, owner_id: str, cap: int) -> List[str]:
        return [s.id for s in self._sorted_metadata(owner_id)][:cap]

    async def fetch(self, content_id: str) -> StoredContent:
        stored = self._stored.get(content_id)
        if stored is None:
            raise ContentNotFoundError(content_id)
        return stored

    async def list_by_filters(self, owner_id: str, filters: Optional[Dict[str, Any]] = None) -> List[ContentItem]:
        filters = filters or {}

        project_id = filters.get("project_id")
        types = filters.get("content_types")
        allowed = {ContentType.parse(t) for t in types} if types else None
        max_age_days = filters.get("max_age_days")
        cutoff = None
        if max_age_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        limit = filters.get("limit")

        items = []
        for stored in self._sorted_metadata(owner_id):
            item = decode_stored(stored)
            if project_id is not None and item.project_id != project_id:
                continue
            if allowed is not None and item.content_type not in allowed:
                continue
            if cutoff is not None and item.created_at < cutoff:
                continue
            items.append(item)
            if limit is not None and len(items) >= limit:
                break

        return items

    async def store(self, item: ContentItem) -> str:
        async with self._lock:
            self._stored[item.id] = encode_item(item)
        logger.debug(f"Stored content {item.id} ({item.content_type.value})")
        return item.id

    async def count(self, owner_id: str) -> int:
        return sum(1 for s in self._stored.values() if s.metadata.get("owner_id") == owner_id)

    async def memory_stats(self, owner_id: str, recent_limit: int = 10) -> MemoryStats:
        rows = self._sorted_metadata(owner_id)
        stats = MemoryStats(
            owner_id=owner_id,
            total_items=len(rows),
            type_distribution=dict(Counter(s.metadata.get("type") for s in rows)),
            original_bytes=sum(s.original_size for s in rows),
            compressed_bytes=sum(s.compressed_size for s in rows),
        )
        for stored in rows[:recent_limit]:
            stats.recent.append(RecentItem(
                id=stored.id,
                title=stored.metadata.get("title") or "Untitled",
                content_type=stored.metadata.get("type"),
                created_at=parse_datetime(stored.metadata.get("created_at")),
                original_size=stored.original_size,
            ))
        return stats


class InMemoryRelationshipStore(RelationshipStore):
    """Relationships held in a list, indexed by source project."""

    def __init__(self, relationships: Optional[List[ProjectRelationship]] = None):
        self._by_source: Dict[str, List[ProjectRelationship]] = {}
        for rel in relationships or []:
            self.add(rel)

    def add(self, relationship: ProjectRelationship):
        self._by_source.setdefault(relationship.source_id, []).append(relationship)

    async def get_outgoing(self, project_id: str) -> List[ProjectRelationship]:
        return list(self._by_source.get(project_id, []))

    async def get_relationship(self, source_id: str, target_id: str) -> Optional[ProjectRelationship]:
        for rel in self._by_source.get(source_id, []):
            if rel.target_id == target_id:
                return rel
        return None
