"""Shared test fixtures for the invoice-service test suite."""

from __future__ import annotations

import dataclasses
import uuid

import pytest

from invoice_service.pipeline.config import PipelineConfig


def _make_config(**overrides) -> PipelineConfig:
    """PipelineConfig with production defaults and no environment lookup."""
    base = PipelineConfig(
        storage_bucket="invoices-test",
        max_attempts=3,
        quota_max_attempts=5,
        quota_cooldown_seconds=120,
        min_native_chars=30,
        ocr_engine="tesseract",
        ocr_languages="fra+eng",
        ocr_max_pages=5,
        ocr_render_dpi=200,
        docai_project=None,
        docai_location=None,
        docai_processor_id=None,
        ocr_good_enough_words=50,
        ocr_good_enough_symbols=10,
        ocr_good_enough_score=1500,
        ocr_max_alternates=2,
        max_rotation_retries=2,
        max_context_chars=12_000,
        retrieval_top_k=8,
        validation_tolerance=1.0,
        header_keywords=r"FACTURE|INVOICE",
        header_window_before=400,
        header_window_after=800,
        supplier_scan_lines=40,
    )
    return dataclasses.replace(base, **overrides)


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return _make_config()


@pytest.fixture
def organization_id() -> str:
    return str(uuid.UUID("11111111-1111-1111-1111-111111111111"))


@pytest.fixture
def other_organization_id() -> str:
    return str(uuid.UUID("22222222-2222-2222-2222-222222222222"))


@pytest.fixture
def make_config():
    """Factory fixture: ``make_config(max_rotation_retries=1)``."""
    return _make_config
