"""Unit tests for prompt building, retrieval context and response parsing."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from invoice_service.errors import ParseFailure
from invoice_service.pipeline.extraction import (
    RETRIEVAL_QUERY,
    build_classification_prompt,
    build_context,
    build_extraction_prompt,
    parse_classification,
    parse_extraction,
)
from invoice_service.pipeline.schema import ExtractedInvoice, LineItem


def _long_text(n: int = 6) -> str:
    return "\n\n".join(f"P{i} " + "x" * 900 for i in range(n))


class TestPrompts:
    def test_extraction_prompt_carries_context_and_file_name(self):
        prompt = build_extraction_prompt("FACTURE 12", file_name="acme.pdf")
        assert "Fichier: acme.pdf" in prompt
        assert "FACTURE 12" in prompt
        assert '"supplier_name"' in prompt

    def test_classification_prompt_excludes_annotations(self):
        invoice = ExtractedInvoice(
            supplier_name="Société Électrique",
            items=[LineItem(description="Câble", total_price=12.0)],
            validation_notes=["note"],
            heuristic_overrides={"supplier_name": {"ai": "a", "heuristic": "b", "source": "header_lines"}},
        )
        prompt = build_classification_prompt(invoice)
        assert "Société Électrique" in prompt
        assert "validation_notes" not in prompt
        assert "heuristic_overrides" not in prompt
        assert "invoice_number" not in prompt  # None values dropped


class TestBuildContext:
    async def test_short_text_used_whole(self):
        ranker = AsyncMock()
        assert await build_context("court", max_chars=100, top_k=2, ranker=ranker) == "court"
        ranker.assert_not_awaited()

    async def test_few_chunks_joined(self):
        ranker = AsyncMock()
        ctx = await build_context(_long_text(2), max_chars=1000, top_k=8, ranker=ranker)
        assert "P0 " in ctx and "P1 " in ctx
        ranker.assert_not_awaited()

    async def test_ranked_chunks_selected(self):
        ranker = AsyncMock(return_value=[1, 4])
        ctx = await build_context(_long_text(), max_chars=1000, top_k=2, ranker=ranker)

        query, chunks, k = ranker.await_args.args
        assert query == RETRIEVAL_QUERY
        assert len(chunks) == 6
        assert k == 2
        assert "P1 " in ctx and "P4 " in ctx
        assert "P0 " not in ctx and "P2 " not in ctx

    async def test_ranker_failure_uses_leading_chunks(self):
        ranker = AsyncMock(side_effect=RuntimeError("embedding service down"))
        ctx = await build_context(_long_text(), max_chars=1000, top_k=2, ranker=ranker)
        assert "P0 " in ctx and "P1 " in ctx
        assert "P2 " not in ctx


class TestParsing:
    def test_parse_extraction(self):
        raw = "```json\n" + json.dumps({"invoice_number": "F-1", "total_amount": "12,50"}) + "\n```"
        invoice = parse_extraction(raw)
        assert invoice.invoice_number == "F-1"
        assert invoice.total_amount == 12.5

    def test_parse_extraction_failure_keeps_raw(self):
        with pytest.raises(ParseFailure) as exc_info:
            parse_extraction("Désolé, je ne peux pas lire ce document.")
        assert "no JSON object found" in str(exc_info.value)
        assert exc_info.value.raw.startswith("Désolé")

    def test_parse_extraction_validation_error(self):
        with pytest.raises(ParseFailure):
            parse_extraction('{"invoice_number": "F-1", "validation_notes": "oops"}')

    def test_parse_classification_defaults(self):
        assert parse_classification("n/a").category == "other"
        assert parse_classification('{"category": "tax", "confidence": 0.9}').category == "tax"
