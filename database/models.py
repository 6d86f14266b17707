"""
Data model for stored content, projects and relationships.

ContentItem is the decompressed, in-memory form the retrieval core works on.
StoredContent is the repository's at-rest form (compressed body and vector,
see database.codec). Per-type metadata is a tagged variant keyed by
`kind`, with an open `extra` dict for keys no variant models.

Usage:
    from database.models import ContentItem, ContentType, EmailDetails

    item = ContentItem(
        id="mem_1",
        owner_id="user-1",
        content_type=ContentType.EMAIL,
        title="Q3 invoice",
        body="Hi, attached is the invoice...",
        details=EmailDetails(sender="billing@example.com", subject="Q3 invoice"),
    )
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Union

import numpy as np


# =============================================================================
# Enums
# =============================================================================

class ContentType(Enum):
    """Kinds of stored content. Closed set."""
    CONVERSATION = "conversation"
    KNOWLEDGE = "knowledge"        # documents
    EMAIL = "email"
    FILE = "file"
    CALENDAR = "calendar"
    TRANSCRIPTION = "transcription"

    @classmethod
    def parse(cls, value: Union[str, 'ContentType']) -> 'ContentType':
        """Accept an enum member or its string value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown content type: {value!r}")


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse ISO timestamps; naive values are assumed UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# Type-specific details
# =============================================================================

@dataclass
class ConversationDetails:
    kind = "conversation"
    conversation_id: Optional[str] = None
    role: Optional[str] = None          # set on per-message chunks
    message_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "message_count": self.message_count,
        }


@dataclass
class DocumentDetails:
    kind = "document"
    parent_id: Optional[str] = None     # set on chunks
    chunk_index: Optional[int] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "parent_id": self.parent_id,
            "chunk_index": self.chunk_index,
            "source": self.source,
        }


@dataclass
class EmailDetails:
    kind = "email"
    sender: Optional[str] = None
    recipients: List[str] = field(default_factory=list)
    subject: Optional[str] = None
    thread_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "sender": self.sender,
            "recipients": list(self.recipients),
            "subject": self.subject,
            "thread_id": self.thread_id,
        }


@dataclass
class FileDetails:
    kind = "file"
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
        }


@dataclass
class CalendarDetails:
    kind = "calendar"
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    location: Optional[str] = None
    attendees: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "starts_at": _format_datetime(self.starts_at),
            "ends_at": _format_datetime(self.ends_at),
            "location": self.location,
            "attendees": list(self.attendees),
        }


ContentDetails = Union[ConversationDetails, DocumentDetails, EmailDetails, FileDetails, CalendarDetails]

_DETAILS_BY_KIND = {
    cls.kind: cls
    for cls in (ConversationDetails, DocumentDetails, EmailDetails, FileDetails, CalendarDetails)
}


def details_from_dict(data: Optional[Dict[str, Any]]) -> Optional[ContentDetails]:
    """Rebuild a details variant from its tagged dict form."""
    if not data:
        return None

    values = dict(data)
    kind = values.pop("kind", None)
    cls = _DETAILS_BY_KIND.get(kind)
    if cls is None:
        raise ValueError(f"Unknown details kind: {kind!r}")

    if cls is CalendarDetails:
        values["starts_at"] = parse_datetime(values.get("starts_at"))
        values["ends_at"] = parse_datetime(values.get("ends_at"))

    known = cls.__dataclass_fields__.keys()
    return cls(**{k: v for k, v in values.items() if k in known})


# =============================================================================
# Core Items
# =============================================================================

@dataclass
class ContentItem:
    """
    One stored, embedded unit of content.

    Attributes:
        id: Unique identifier
        owner_id: User who owns the item
        content_type: Kind of content
        title: Display title
        body: Full text
        embedding: Vector from the embedding provider (may be None before
            ingestion has embedded it)
        project_id: Optional project assignment
        project_name: Display name of the project, when known
        tags: Free-form tags
        details: Type-specific metadata variant
        extra: Unstructured metadata
        created_at: Creation time (timezone-aware)
        importance: Ingestion-assigned weight in [0, 1]
    """
    id: str
    owner_id: str
    content_type: ContentType
    title: str
    body: str
    embedding: Optional[np.ndarray] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    details: Optional[ContentDetails] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    importance: float = 0.5

    def __post_init__(self):
        self.content_type = ContentType.parse(self.content_type)
        self.created_at = parse_datetime(self.created_at)
        if not 0.0 <= self.importance <= 1.0:
            raise ValueError(f"importance must be in [0, 1], got {self.importance}")

    def age_days(self, now: Optional[datetime] = None) -> float:
        """Age in fractional days relative to `now`."""
        now = now or datetime.now(timezone.utc)
        return (now - self.created_at).total_seconds() / 86400

    def metadata_dict(self) -> Dict[str, Any]:
        """Plain metadata, without body or embedding."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "type": self.content_type.value,
            "title": self.title,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "tags": list(self.tags),
            "details": self.details.to_dict() if self.details else None,
            "extra": dict(self.extra),
            "created_at": _format_datetime(self.created_at),
            "importance": self.importance,
        }

    @classmethod
    def from_metadata(
        cls,
        metadata: Dict[str, Any],
        body: str,
        embedding: Optional[np.ndarray]
    ) -> 'ContentItem':
        """Inverse of metadata_dict()."""
        return cls(
            id=metadata["id"],
            owner_id=metadata["owner_id"],
            content_type=metadata["type"],
            title=metadata.get("title") or "Untitled",
            body=body,
            embedding=embedding,
            project_id=metadata.get("project_id"),
            project_name=metadata.get("project_name"),
            tags=list(metadata.get("tags") or []),
            details=details_from_dict(metadata.get("details")),
            extra=dict(metadata.get("extra") or {}),
            created_at=metadata.get("created_at") or datetime.now(timezone.utc),
            importance=float(metadata.get("importance", 0.5)),
        )


@dataclass
class StoredContent:
    """
    At-rest form of a ContentItem.

    Body and embedding are gzip-compressed and base64-encoded; an empty
    `embedding_compressed` means the item was stored without a vector.
    """
    id: str
    content_compressed: str
    embedding_compressed: str
    metadata: Dict[str, Any]
    original_size: int = 0
    compressed_size: int = 0

    @property
    def compression_ratio(self) -> float:
        return self.compressed_size / max(self.original_size, 1)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding_compressed)


@dataclass
class ProjectRelationship:
    """
    Directed relationship between two projects.

    Attributes:
        source_id: Project the relationship starts from
        target_id: Related project
        relationship_type: e.g. 'depends_on', 'shares_client', 'similar'
        confidence: Strength in [0, 1]
        target_name: Display name of the target project
    """
    source_id: str
    target_id: str
    relationship_type: str
    confidence: float
    target_name: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "relationship_type": self.relationship_type,
            "confidence": self.confidence,
            "target_name": self.target_name,
        }


# =============================================================================
# Storage Statistics
# =============================================================================

def format_bytes(size: int) -> str:
    """Human-readable byte count, e.g. 1536 -> '1.5 KB'."""
    if size <= 0:
        return "0 KB"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {units[unit]}"


@dataclass
class RecentItem:
    """One row of a MemoryStats activity list."""
    id: str
    title: str
    content_type: str
    created_at: Optional[datetime]
    original_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.content_type,
            "created": self.created_at.isoformat() if self.created_at else None,
            "size": format_bytes(self.original_size),
        }


@dataclass
class MemoryStats:
    """Per-owner storage totals, type distribution and recent activity."""
    owner_id: str
    total_items: int = 0
    type_distribution: Dict[str, int] = field(default_factory=dict)
    original_bytes: int = 0
    compressed_bytes: int = 0
    recent: List[RecentItem] = field(default_factory=list)

    @property
    def space_saved(self) -> float:
        """Fraction of the original size saved by compression."""
        if self.original_bytes <= 0:
            return 0.0
        return 1.0 - self.compressed_bytes / self.original_bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "total_items": self.total_items,
            "type_distribution": dict(self.type_distribution),
            "storage_used": format_bytes(self.compressed_bytes),
            "compression_efficiency": f"{self.space_saved * 100:.1f}% space saved",
            "recent_activity": [r.to_dict() for r in self.recent],
        }
