"""
Tests for Document Chunking

Tests paragraph packing, sentence fallback, trivial-chunk filtering and
positional importance.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from search.chunker import (
    chunk_document, iter_chunks, filter_trivial_chunks, chunk_importance,
    split_paragraphs, split_sentences
)
from tests.fixtures.sample_data import SAMPLE_DOCUMENT


class TestSplitting:
    """Tests for paragraph and sentence splitting."""

    def test_paragraphs_split_on_blank_lines(self):
        """Blank lines (with optional whitespace) separate paragraphs."""
        text = "First paragraph.\n\nSecond paragraph.\n   \nThird."
        assert split_paragraphs(text) == ["First paragraph.", "Second paragraph.", "Third."]

    def test_single_newline_keeps_paragraph(self):
        """A single newline does not break a paragraph."""
        assert split_paragraphs("line one\nline two") == ["line one\nline two"]

    def test_sentences_keep_terminators(self):
        """Each sentence keeps its punctuation."""
        sentences = split_sentences("Is it done? Yes! It shipped. Trailing fragment")
        assert sentences == ["Is it done?", "Yes!", "It shipped.", "Trailing fragment"]

    def test_repeated_terminators_stay_together(self):
        """Ellipses and '?!' stay with their sentence."""
        assert split_sentences("Wait... What?! Ok.") == ["Wait...", "What?!", "Ok."]


class TestChunkDocument:
    """Tests for chunk_document."""

    def test_empty_text(self):
        """Empty input yields no chunks."""
        assert chunk_document("") == []
        assert chunk_document("   \n\n  ") == []

    def test_small_paragraphs_are_packed(self):
        """Paragraphs that fit together share a chunk."""
        text = "Alpha paragraph.\n\nBeta paragraph.\n\nGamma paragraph."
        chunks = chunk_document(text, max_chunk_size=600)

        assert chunks == ["Alpha paragraph.\n\nBeta paragraph.\n\nGamma paragraph."]

    def test_flush_when_next_paragraph_does_not_fit(self):
        """The buffer is emitted when the next paragraph would overflow it."""
        a = "a" * 300
        b = "b" * 300
        c = "c" * 200
        chunks = chunk_document(f"{a}\n\n{b}\n\n{c}", max_chunk_size=600)

        # a + separator + b is 602 characters
        assert chunks == [a, f"{b}\n\n{c}"]

    def test_exact_fit_is_packed(self):
        """A buffer that lands exactly on the limit is not flushed early."""
        a = "a" * 299
        b = "b" * 299
        chunks = chunk_document(f"{a}\n\n{b}", max_chunk_size=600)
        assert chunks == [f"{a}\n\n{b}"]

    def test_long_paragraph_splits_on_sentences(self):
        """An oversize paragraph is packed sentence by sentence."""
        sentence = "This sentence is exactly fifty characters long ok."
        paragraph = " ".join([sentence] * 30)
        chunks = chunk_document(paragraph, max_chunk_size=600)

        assert len(chunks) > 1
        for chunk in chunks:
            assert len(chunk) <= 600
            assert chunk.endswith(".")
        assert " ".join(chunks) == paragraph

    def test_oversize_sentence_is_emitted_whole(self):
        """A single sentence longer than the limit is never cut."""
        sentence = "word " * 200 + "end."
        chunks = chunk_document(sentence.strip(), max_chunk_size=100)

        assert chunks == [sentence.strip()]

    def test_long_paragraph_does_not_merge_with_previous_buffer(self):
        """The buffer is flushed before sentence-splitting a long paragraph."""
        short = "Short intro paragraph."
        long_paragraph = "Sentence number one is here. " * 30
        chunks = chunk_document(f"{short}\n\n{long_paragraph}", max_chunk_size=200)

        assert chunks[0] == short

    def test_no_content_lost(self):
        """Every word of the input appears in the output, in order."""
        chunks = chunk_document(SAMPLE_DOCUMENT, max_chunk_size=200)
        assert " ".join(" ".join(chunks).split()) == " ".join(SAMPLE_DOCUMENT.split())

    def test_chunks_respect_limit_when_sentences_fit(self):
        """With normal sentences no chunk exceeds the limit."""
        for chunk in chunk_document(SAMPLE_DOCUMENT, max_chunk_size=300):
            assert len(chunk) <= 300

    def test_invalid_max_size(self):
        """A non-positive limit is rejected."""
        with pytest.raises(ValueError):
            chunk_document("text", max_chunk_size=0)

    def test_iter_chunks_is_lazy(self):
        """iter_chunks yields without building the full list."""
        gen = iter_chunks("One.\n\nTwo.", max_chunk_size=5)
        assert next(gen) == "One."


class TestTrivialChunks:
    """Tests for filtering and importance."""

    def test_short_chunks_dropped(self):
        """Chunks under the minimum trimmed length are dropped."""
        chunks = ["x" * 60, "   tiny   ", "y" * 50]
        kept = filter_trivial_chunks(chunks, min_chars=50)

        assert kept == [(0, "x" * 60), (2, "y" * 50)]

    def test_whitespace_does_not_count(self):
        """Padding does not lift a chunk over the minimum."""
        assert filter_trivial_chunks(["  " + "z" * 49 + "  "], min_chars=50) == []

    def test_importance_declines_with_position(self):
        """Importance starts at 0.8 and drops by 0.05 per position."""
        assert chunk_importance(0) == 0.8
        assert chunk_importance(1) == 0.75
        assert chunk_importance(2) == 0.7

    def test_importance_has_floor(self):
        """Deep chunks never fall below 0.1."""
        assert chunk_importance(14) == 0.1
        assert chunk_importance(100) == 0.1
