"""
Document chunking for retrieval.

Splits long text into bounded pieces at paragraph boundaries, falling back
to sentence boundaries for paragraphs that are too long on their own.
Nothing is ever cut mid-sentence: a single sentence longer than the
maximum becomes its own (oversize) chunk.

Usage:
    from search.chunker import chunk_document, filter_trivial_chunks, chunk_importance

    chunks = chunk_document(text, max_chunk_size=600)
    for position, chunk in filter_trivial_chunks(chunks):
        store(chunk, importance=chunk_importance(position))
"""

import re
from typing import Iterator, List, Tuple

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "

DEFAULT_MAX_CHUNK_SIZE = 600
MIN_CHUNK_CHARS = 50

# Leading chunk gets the most weight, each later one a bit less
FIRST_CHUNK_IMPORTANCE = 0.8
IMPORTANCE_STEP = 0.05
MIN_CHUNK_IMPORTANCE = 0.1

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
# Text up to and including a run of terminators, or a trailing fragment
_SENTENCE = re.compile(r"[^.!?]+(?:[.!?]+|$)|[.!?]+")


def split_paragraphs(text: str) -> List[str]:
    """Split on blank lines, dropping empty paragraphs."""
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]


def split_sentences(paragraph: str) -> List[str]:
    """
    Split on . ! ? keeping each terminator with its sentence.

    Concatenating the result reproduces the paragraph apart from whitespace.
    """
    return [s.strip() for s in _SENTENCE.findall(paragraph) if s.strip()]


class _ChunkBuffer:
    """Fill/flush accumulator shared by the paragraph and sentence passes."""

    def __init__(self, max_chunk_size: int):
        self.max_chunk_size = max_chunk_size
        self.text = ""

    def add(self, unit: str, separator: str) -> Iterator[str]:
        """Append unit, yielding the previous buffer if unit does not fit."""
        if not self.text:
            self.text = unit
            return
        if len(self.text) + len(separator) + len(unit) <= self.max_chunk_size:
            self.text = f"{self.text}{separator}{unit}"
            return
        yield self.text
        self.text = unit

    def flush(self) -> Iterator[str]:
        if self.text:
            yield self.text
        self.text = ""


def iter_chunks(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> Iterator[str]:
    """
    Lazily yield chunks of text. See chunk_document.
    """
    if max_chunk_size <= 0:
        raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")

    buffer = _ChunkBuffer(max_chunk_size)

    for paragraph in split_paragraphs(text or ""):
        if len(paragraph) <= max_chunk_size:
            yield from buffer.add(paragraph, PARAGRAPH_SEPARATOR)
            continue

        # Oversize paragraph: start clean and pack its sentences
        yield from buffer.flush()
        for sentence in split_sentences(paragraph):
            yield from buffer.add(sentence, SENTENCE_SEPARATOR)

    yield from buffer.flush()


def chunk_document(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> List[str]:
    """
    Split text into chunks of at most max_chunk_size characters.

    Paragraphs (separated by blank lines) are packed into a running buffer
    and the buffer is flushed when the next paragraph would not fit. A
    paragraph longer than max_chunk_size is split into sentences which are
    packed the same way. A sentence longer than max_chunk_size is emitted
    whole.

    Args:
        text: Document text
        max_chunk_size: Maximum characters per chunk

    Returns:
        Chunks in document order
    """
    return list(iter_chunks(text, max_chunk_size))


def filter_trivial_chunks(chunks: List[str], min_chars: int = MIN_CHUNK_CHARS) -> List[Tuple[int, str]]:
    """
    Drop chunks whose trimmed length is below min_chars.

    Returns (position, chunk) pairs; position is the index in the original
    list so importance still reflects where the chunk sat in the document.
    """
    return [(i, chunk) for i, chunk in enumerate(chunks) if len(chunk.strip()) >= min_chars]


def chunk_importance(position: int) -> float:
    """Importance for the chunk at a 0-based position, declining with depth."""
    score = FIRST_CHUNK_IMPORTANCE - position * IMPORTANCE_STEP
    return round(max(MIN_CHUNK_IMPORTANCE, score), 4)
