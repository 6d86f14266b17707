"""
Ingestion Pipeline

Turns documents and conversations into embedded ContentItems and stores
them in the content repository, ready for the vector cache.

Documents:
- The full document is stored with importance 0.9
- It is chunked (600 characters max); chunks shorter than 50 characters
  after trimming are dropped; the rest are stored with importance declining
  by position (0.8, 0.75, 0.7, ... floored at 0.1)

Conversations:
- The full transcript is stored with importance 0.8
- Assistant messages longer than 100 characters are stored at 0.7
- User messages longer than 50 characters are stored at 0.6

An item whose embedding fails is skipped and counted; the rest of the
document still goes in. Configuration errors (bad credentials) abort.

Usage:
    from ingestion.pipeline import IngestionPipeline

    pipeline = IngestionPipeline(provider, repository, config)
    result = await pipeline.ingest_document("user-1", "Runbook", text, tags=["ops"])
    print(f"{len(result.chunk_ids)} chunks stored")
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable

from core.config import RetrievalConfig
from core.embedding_provider import EmbeddingProvider
from core.errors import TransientProviderError, RetrievalError, ConfigurationError
from core.metrics import MetricsCollector, get_metrics_collector, PhaseTimer
from database.models import (
    ContentItem, ContentType, ConversationDetails, DocumentDetails
)
from database.repository import ContentRepository
from search.chunker import chunk_document, filter_trivial_chunks, chunk_importance

logger = logging.getLogger(__name__)


def new_content_id() -> str:
    return f"mem_{uuid.uuid4().hex[:16]}"


# =============================================================================
# Data Models
# =============================================================================

@dataclass
class ConversationMessage:
    """One turn of a conversation."""
    role: str  # "user", "assistant", "system"
    content: str
    timestamp: Optional[str] = None


@dataclass
class IngestionResult:
    """Ids stored for one document or conversation."""
    parent_id: Optional[str] = None
    chunk_ids: List[str] = field(default_factory=list)
    skipped: int = 0
    error: Optional[str] = None

    @property
    def stored_count(self) -> int:
        return len(self.chunk_ids) + (1 if self.parent_id else 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'parent_id': self.parent_id,
            'chunk_ids': self.chunk_ids,
            'skipped': self.skipped,
            'error': self.error,
        }


# =============================================================================
# Pipeline
# =============================================================================

class IngestionPipeline:
    """
    Embeds and stores content for retrieval.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        repository: ContentRepository,
        config: Optional[RetrievalConfig] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        id_factory: Optional[Callable[[], str]] = None
    ):
        """
        Initialize ingestion pipeline.

        Args:
            provider: Embedding provider
            repository: Where items are stored
            config: Engine configuration (defaults if None)
            metrics_collector: Optional metrics collector
            id_factory: Generates content ids (uuid-based by default)
        """
        self.provider = provider
        self.repository = repository
        self.config = config or RetrievalConfig()
        self.chunking_config = self.config.chunking
        self.ingestion_config = self.config.ingestion
        self.metrics = metrics_collector or get_metrics_collector()
        self.new_id = id_factory or new_content_id

        # Statistics
        self.total_items_stored = 0
        self.total_items_skipped = 0
        self.failed_documents = 0

    async def _embed_and_store(self, items: List[ContentItem]) -> List[Optional[str]]:
        """
        Embed items concurrently and store the ones that embedded.

        Returns the stored id per item, or None where the item was skipped.
        """
        semaphore = asyncio.Semaphore(max(1, self.ingestion_config.embed_concurrency))

        async def _one(item: ContentItem) -> Optional[str]:
            async with semaphore:
                try:
                    item.embedding = await self.provider.embed(item.body)
                except TransientProviderError as e:
                    logger.warning(f"Skipping '{item.title}': embedding failed ({e})")
                    return None
                try:
                    return await self.repository.store(item)
                except TransientProviderError as e:
                    logger.warning(f"Skipping '{item.title}': store failed ({e})")
                    return None

        with PhaseTimer("ingestion", self.metrics):
            outcomes = await asyncio.gather(*(_one(item) for item in items), return_exceptions=True)

        # Every sibling has finished before an error is surfaced
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        stored = outcomes

        stored_count = sum(1 for s in stored if s)
        skipped = len(stored) - stored_count
        self.total_items_stored += stored_count
        self.total_items_skipped += skipped
        self.metrics.increment("ingested_items", stored_count)
        if skipped:
            self.metrics.increment("ingestion_skipped_items", skipped)
        return list(stored)

    @staticmethod
    def _result(stored: List[Optional[str]]) -> IngestionResult:
        parent_id, chunk_ids = stored[0], stored[1:]
        return IngestionResult(
            parent_id=parent_id,
            chunk_ids=[c for c in chunk_ids if c],
            skipped=sum(1 for s in stored if s is None)
        )

    async def ingest_document(
        self,
        owner_id: str,
        title: str,
        content: str,
        tags: Optional[List[str]] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
        source: Optional[str] = None,
        content_type: ContentType = ContentType.KNOWLEDGE
    ) -> IngestionResult:
        """
        Store a document and its chunks.

        Args:
            owner_id: Owning user
            title: Document title
            content: Full text
            tags: Extra tags applied to the document and its chunks
            project_id: Optional project assignment
            project_name: Project display name
            source: Where the document came from (path, URL)
            content_type: Content type for all stored items

        Returns:
            IngestionResult with the stored ids
        """
        if not content or not content.strip():
            raise ConfigurationError(f"Document '{title}' has no content", field="content")

        tags = list(tags or [])
        created_at = datetime.now(timezone.utc)
        parent_id = self.new_id()

        items = [ContentItem(
            id=parent_id,
            owner_id=owner_id,
            content_type=content_type,
            title=title,
            body=content,
            project_id=project_id,
            project_name=project_name,
            tags=['document'] + tags,
            details=DocumentDetails(source=source),
            created_at=created_at,
            importance=self.ingestion_config.document_importance
        )]

        chunks = chunk_document(content, self.chunking_config.max_chunk_size)
        kept = filter_trivial_chunks(chunks, self.chunking_config.min_chunk_chars)
        for position, chunk in kept:
            items.append(ContentItem(
                id=self.new_id(),
                owner_id=owner_id,
                content_type=content_type,
                title=f"{title} - Part {position + 1}",
                body=chunk,
                project_id=project_id,
                project_name=project_name,
                tags=['document', 'chunk'] + tags,
                details=DocumentDetails(parent_id=parent_id, chunk_index=position, source=source),
                created_at=created_at,
                importance=chunk_importance(position)
            ))

        stored = await self._embed_and_store(items)
        result = self._result(stored)
        result.skipped += len(chunks) - len(kept)

        logger.info(
            f"Ingested document '{title}': {len(result.chunk_ids)} chunks stored, "
            f"{result.skipped} skipped"
        )
        return result

    async def ingest_conversation(
        self,
        owner_id: str,
        messages: List[ConversationMessage],
        title: Optional[str] = None,
        conversation_id: Optional[str] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None
    ) -> IngestionResult:
        """
        Store a conversation transcript and its substantial messages.

        Args:
            owner_id: Owning user
            messages: Conversation turns in order
            title: Conversation title (dated default if None)
            conversation_id: External conversation id
            project_id: Optional project assignment
            project_name: Project display name

        Returns:
            IngestionResult with the transcript id and message ids
        """
        if not messages:
            raise ConfigurationError("Conversation has no messages", field="messages")

        created_at = datetime.now(timezone.utc)
        title = title or f"Conversation {created_at.date().isoformat()}"
        transcript = "\n\n".join(f"{m.role}: {m.content}" for m in messages)

        items = [ContentItem(
            id=self.new_id(),
            owner_id=owner_id,
            content_type=ContentType.CONVERSATION,
            title=title,
            body=transcript,
            project_id=project_id,
            project_name=project_name,
            tags=['conversation', 'full'],
            details=ConversationDetails(conversation_id=conversation_id, message_count=len(messages)),
            created_at=created_at,
            importance=self.ingestion_config.conversation_importance
        )]

        cfg = self.ingestion_config
        for message in messages:
            if message.role == 'assistant' and len(message.content) > cfg.min_assistant_message_chars:
                importance = cfg.assistant_message_importance
            elif message.role == 'user' and len(message.content) > cfg.min_user_message_chars:
                importance = cfg.user_message_importance
            else:
                continue

            items.append(ContentItem(
                id=self.new_id(),
                owner_id=owner_id,
                content_type=ContentType.CONVERSATION,
                title=f"{title} - {message.role} message",
                body=message.content,
                project_id=project_id,
                project_name=project_name,
                tags=['conversation', message.role, 'chunk'],
                details=ConversationDetails(conversation_id=conversation_id, role=message.role),
                created_at=created_at,
                importance=importance
            ))

        stored = await self._embed_and_store(items)
        result = self._result(stored)

        logger.info(f"Ingested conversation '{title}': {len(result.chunk_ids)} messages stored")
        return result

    async def ingest_batch(self, owner_id: str, documents: List[Dict[str, Any]]) -> List[IngestionResult]:
        """
        Ingest documents one after another.

        Each dict takes the keyword arguments of ingest_document (title,
        content, tags, ...). A document that fails yields an empty result
        carrying the error and the batch continues. A ConfigurationError
        other than an empty document aborts the batch.
        """
        results = []
        for document in documents:
            try:
                results.append(await self.ingest_document(owner_id, **document))
            except RetrievalError as e:
                # Credential and provider setup problems fail the whole batch
                if isinstance(e, ConfigurationError) and e.field != "content":
                    raise
                self.failed_documents += 1
                logger.error(f"Failed to store document {document.get('title')}: {e}")
                results.append(IngestionResult(error=str(e)))
        return results

    def get_stats(self) -> Dict[str, Any]:
        return {
            'total_items_stored': self.total_items_stored,
            'total_items_skipped': self.total_items_skipped,
            'failed_documents': self.failed_documents,
        }
