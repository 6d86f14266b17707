"""
Compression codec for stored content.

Bodies and embeddings are stored gzip-compressed and base64-encoded. The
embedding is serialized as a JSON array of floats before compression.

Usage:
    from database.codec import encode_item, decode_stored

    stored = encode_item(item)
    item = decode_stored(stored)
"""

import base64
import gzip
import json
import logging
from typing import Optional, Sequence

import numpy as np

from .models import ContentItem, StoredContent

logger = logging.getLogger(__name__)


class CodecError(ValueError):
    """Stored payload could not be decoded."""
    pass


def compress_text(text: str) -> str:
    """gzip + base64 a UTF-8 string."""
    return base64.b64encode(gzip.compress(text.encode('utf-8'))).decode('ascii')


def decompress_text(payload: str) -> str:
    """Inverse of compress_text."""
    try:
        return gzip.decompress(base64.b64decode(payload)).decode('utf-8')
    except (ValueError, OSError, EOFError) as e:
        raise CodecError(f"Could not decompress payload: {e}") from e


def compress_embedding(embedding: Optional[Sequence[float]]) -> str:
    """Compress a vector; empty string for no vector."""
    if embedding is None or len(embedding) == 0:
        return ""
    values = [float(v) for v in embedding]
    return compress_text(json.dumps(values))


def decompress_embedding(payload: str) -> Optional[np.ndarray]:
    """Inverse of compress_embedding. Returns None for an empty payload."""
    if not payload:
        return None
    try:
        values = json.loads(decompress_text(payload))
    except json.JSONDecodeError as e:
        raise CodecError(f"Embedding payload is not valid JSON: {e}") from e
    if not isinstance(values, list):
        raise CodecError("Embedding payload is not a list")
    return np.asarray(values, dtype=np.float64)


def encode_item(item: ContentItem) -> StoredContent:
    """Compress a ContentItem for storage."""
    content_compressed = compress_text(item.body)
    embedding_compressed = compress_embedding(item.embedding)

    embedding_len = 0 if item.embedding is None else len(item.embedding)
    original_size = len(item.body.encode('utf-8')) + embedding_len * 4

    return StoredContent(
        id=item.id,
        content_compressed=content_compressed,
        embedding_compressed=embedding_compressed,
        metadata=item.metadata_dict(),
        original_size=original_size,
        compressed_size=len(content_compressed) + len(embedding_compressed),
    )


def decode_stored(stored: StoredContent) -> ContentItem:
    """Decompress a StoredContent back into a ContentItem."""
    body = decompress_text(stored.content_compressed)
    embedding = decompress_embedding(stored.embedding_compressed)
    return ContentItem.from_metadata(stored.metadata, body, embedding)
