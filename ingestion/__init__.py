"""
Content ingestion: chunk, embed and store documents and conversations.
"""

from .pipeline import IngestionPipeline, IngestionResult, ConversationMessage

__all__ = [
    'IngestionPipeline',
    'IngestionResult',
    'ConversationMessage',
]
