"""
Context Assembler

Greedily packs ranked results into a bounded text context for an answer
generator.

Budget: 60% of max_tokens (the rest is left for question and answer), at an
estimated 4 characters per token. Each result's body is cut to 800
characters and emitted as a block:

    --- {title} ({similarity:.1f}% match) ---
    {body}

Blocks are separated by a blank line. A block that would overrun the
remaining budget is skipped and the next (possibly smaller) one is tried.
Running out of budget is never an error; it shows up in the compression
statistics.

Usage:
    from context.assembler import ContextAssembler

    assembled = ContextAssembler().assemble(ranked_results, max_tokens=2000)
    print(assembled.text)
    print(assembled.compression_stats.to_dict())
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any

from search.similarity import SearchResult

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_FRACTION = 0.6
DEFAULT_CHARS_PER_TOKEN = 4
DEFAULT_MAX_ITEM_CHARS = 800
BLOCK_SEPARATOR = "\n\n"


def utf8_len(text: str) -> int:
    return len(text.encode('utf-8'))


# =============================================================================
# Data Models
# =============================================================================

@dataclass
class ContextSource:
    """One result that made it into the context."""
    id: str
    title: str
    content: str            # truncated body as emitted
    similarity: float
    content_type: str
    created_at: datetime
    project_id: Optional[str] = None
    final_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'similarity': self.similarity,
            'type': self.content_type,
            'created_at': self.created_at.isoformat(),
            'project_id': self.project_id,
            'final_score': self.final_score,
        }


@dataclass
class CompressionStats:
    """How much of the selected content was actually emitted."""
    original_context_size: int = 0
    compressed_size: int = 0

    @property
    def compression_ratio(self) -> float:
        return self.compressed_size / max(self.original_context_size, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original_context_size': self.original_context_size,
            'compressed_size': self.compressed_size,
            'compression_ratio': round(self.compression_ratio, 4),
        }


@dataclass
class AssembledContext:
    """Context text plus the sources it was built from."""
    text: str
    sources: List[ContextSource] = field(default_factory=list)
    compression_stats: CompressionStats = field(default_factory=CompressionStats)
    budget_tokens: float = 0.0
    skipped: int = 0

    @property
    def estimated_tokens(self) -> float:
        return utf8_len(self.text) / DEFAULT_CHARS_PER_TOKEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            'context': self.text,
            'sources': [s.to_dict() for s in self.sources],
            'compression_stats': self.compression_stats.to_dict(),
            'budget_tokens': self.budget_tokens,
            'estimated_tokens': self.estimated_tokens,
            'skipped': self.skipped,
        }


# =============================================================================
# Assembler
# =============================================================================

class ContextAssembler:
    """
    Token-budgeted greedy context builder.

    Block cost is measured in UTF-8 bytes, so the emitted context never
    exceeds budget_fraction * max_tokens * chars_per_token bytes.
    """

    def __init__(
        self,
        budget_fraction: float = DEFAULT_BUDGET_FRACTION,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
        max_item_chars: int = DEFAULT_MAX_ITEM_CHARS
    ):
        if not 0 < budget_fraction <= 1:
            raise ValueError("budget_fraction must be in (0, 1]")
        self.budget_fraction = budget_fraction
        self.chars_per_token = chars_per_token
        self.max_item_chars = max_item_chars

    @classmethod
    def from_config(cls, config) -> 'ContextAssembler':
        """Build from a core.config.ContextConfig."""
        return cls(
            budget_fraction=config.budget_fraction,
            chars_per_token=config.chars_per_token,
            max_item_chars=config.max_item_chars
        )

    def format_block(self, title: str, similarity: float, body: str) -> str:
        return f"--- {title} ({similarity * 100:.1f}% match) ---\n{body}"

    def assemble(self, ranked_results: List[SearchResult], max_tokens: int) -> AssembledContext:
        """
        Build the context from results in the given order.

        Args:
            ranked_results: Results, best first
            max_tokens: Total token allowance for context + question + answer

        Returns:
            AssembledContext (empty text if nothing fits)
        """
        budget_tokens = max(0, max_tokens) * self.budget_fraction
        budget_bytes = budget_tokens * self.chars_per_token

        blocks: List[str] = []
        sources: List[ContextSource] = []
        used_bytes = 0
        original_size = 0
        skipped = 0

        for result in ranked_results:
            item = result.item
            body = item.body[:self.max_item_chars]
            block = self.format_block(item.title or 'Untitled', result.similarity, body)

            cost = utf8_len(block) + (utf8_len(BLOCK_SEPARATOR) if blocks else 0)
            if used_bytes + cost > budget_bytes:
                skipped += 1
                continue

            blocks.append(block)
            used_bytes += cost
            original_size += utf8_len(item.body)
            sources.append(ContextSource(
                id=item.id,
                title=item.title or 'Untitled',
                content=body,
                similarity=result.similarity,
                content_type=item.content_type.value,
                created_at=item.created_at,
                project_id=item.project_id,
                final_score=result.final_score
            ))

        text = BLOCK_SEPARATOR.join(blocks)
        stats = CompressionStats(
            original_context_size=original_size,
            compressed_size=utf8_len(text)
        )

        if skipped:
            logger.debug(f"Context budget ({budget_tokens:.0f} tokens) left out {skipped} of {len(ranked_results)} results")

        return AssembledContext(
            text=text,
            sources=sources,
            compression_stats=stats,
            budget_tokens=budget_tokens,
            skipped=skipped
        )
