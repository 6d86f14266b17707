"""
Storage layer for the retrieval engine.

Provides the content and relationship models, the gzip+base64 codec used for
at-rest content, and the repository interfaces the retrieval core reads
through (with in-memory implementations).

Usage:
    from database import InMemoryContentRepository, ContentItem, ContentType

    repo = InMemoryContentRepository()
    await repo.store(ContentItem(id="mem_1", owner_id="user-1",
                                 content_type=ContentType.KNOWLEDGE,
                                 title="Runbook", body="..."))
"""

from .models import (
    ContentType,
    ContentItem,
    StoredContent,
    ProjectRelationship,
    ConversationDetails,
    DocumentDetails,
    EmailDetails,
    FileDetails,
    CalendarDetails,
    MemoryStats,
    RecentItem,
    format_bytes,
)
from .codec import encode_item, decode_stored, CodecError
from .repository import (
    ContentRepository,
    RelationshipStore,
    InMemoryContentRepository,
    InMemoryRelationshipStore,
    ContentNotFoundError,
)

__all__ = [
    'ContentType',
    'ContentItem',
    'StoredContent',
    'ProjectRelationship',
    'ConversationDetails',
    'DocumentDetails',
    'EmailDetails',
    'FileDetails',
    'CalendarDetails',
    'MemoryStats',
    'RecentItem',
    'format_bytes',
    'encode_item',
    'decode_stored',
    'CodecError',
    'ContentRepository',
    'RelationshipStore',
    'InMemoryContentRepository',
    'InMemoryRelationshipStore',
    'ContentNotFoundError',
]
