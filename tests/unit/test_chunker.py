"""Unit tests for the retrieval chunker."""

from __future__ import annotations

import pytest

from invoice_service.chunking.chunker import _validate_chunk_params, chunk_text


class TestValidateChunkParams:
    def test_valid_params(self):
        assert _validate_chunk_params(1000, 100) == (1000, 100)

    def test_zero_chunk_size_raises(self):
        with pytest.raises(ValueError, match="must be > 0"):
            _validate_chunk_params(0, 100)

    def test_negative_overlap_clamped(self):
        assert _validate_chunk_params(1000, -50) == (1000, 0)

    def test_overlap_ge_size_clamped(self):
        size, overlap = _validate_chunk_params(100, 200)
        assert overlap < size


class TestChunkText:
    def test_empty_text_returns_empty(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\t  ") == []

    def test_short_text_single_chunk(self):
        text = "FACTURE N° 12 - Total 10,00 EUR"
        assert chunk_text(text, chunk_size=1000) == [text]

    def test_long_text_splits_within_limit(self):
        text = "ligne de facture " * 400
        chunks = chunk_text(text, chunk_size=500, chunk_overlap=50)
        assert len(chunks) > 1
        for c in chunks:
            assert len(c) <= 500 + 50

    def test_paragraph_boundaries_preferred(self):
        text = "Paragraphe un.\n\nParagraphe deux.\n\nParagraphe trois."
        chunks = chunk_text(text, chunk_size=20, chunk_overlap=0)
        assert chunks == ["Paragraphe un.\n\n", "Paragraphe deux.\n\n", "Paragraphe trois."]

    def test_no_overlap_reproduces_input(self):
        text = "Ligne 1\nLigne 2\n" * 200
        assert "".join(chunk_text(text, chunk_size=100, chunk_overlap=0)) == text

    def test_overlap_prefixes_previous_tail(self):
        text = "a" * 50 + " " + "b" * 50
        chunks = chunk_text(text, chunk_size=60, chunk_overlap=5)
        assert len(chunks) == 2
        assert chunks[0] == "a" * 50 + " "
        assert chunks[1] == "aaaa " + "b" * 50

    def test_unbroken_text_hard_split(self):
        chunks = chunk_text("x" * 250, chunk_size=100, chunk_overlap=0)
        assert [len(c) for c in chunks] == [100, 100, 50]
