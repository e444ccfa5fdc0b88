from __future__ import annotations

import os
from dataclasses import dataclass

from invoice_service import config as svc


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    return int(v)


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    return float(v)


@dataclass(frozen=True)
class PipelineConfig:
    # Object storage
    storage_bucket: str

    # Queue / retries
    max_attempts: int
    quota_max_attempts: int
    quota_cooldown_seconds: int

    # Text acquisition
    min_native_chars: int
    ocr_engine: str  # tesseract|documentai
    ocr_languages: str
    ocr_max_pages: int
    ocr_render_dpi: int
    docai_project: str | None
    docai_location: str | None
    docai_processor_id: str | None

    # Rotation search thresholds
    ocr_good_enough_words: int
    ocr_good_enough_symbols: int
    ocr_good_enough_score: int
    ocr_max_alternates: int

    # Extraction
    max_rotation_retries: int
    max_context_chars: int
    retrieval_top_k: int
    validation_tolerance: float

    # Heuristics
    header_keywords: str  # regex alternation
    header_window_before: int
    header_window_after: int
    supplier_scan_lines: int

    @classmethod
    def from_env(cls) -> PipelineConfig:
        return cls(
            storage_bucket=os.getenv("STORAGE_BUCKET", svc.STORAGE_BUCKET),
            max_attempts=_get_int("QUEUE_DEFAULT_MAX_ATTEMPTS", svc.QUEUE_DEFAULT_MAX_ATTEMPTS),
            quota_max_attempts=_get_int("QUEUE_QUOTA_MAX_ATTEMPTS", svc.QUEUE_QUOTA_MAX_ATTEMPTS),
            quota_cooldown_seconds=_get_int("QUEUE_QUOTA_COOLDOWN_SECONDS", svc.QUEUE_QUOTA_COOLDOWN_SECONDS),
            min_native_chars=_get_int("PDF_MIN_NATIVE_CHARS", 30),
            ocr_engine=os.getenv("OCR_ENGINE", "tesseract").strip().lower(),
            ocr_languages=os.getenv("OCR_LANGUAGES", "fra+eng"),
            ocr_max_pages=_get_int("OCR_PDF_MAX_PAGES", 5),
            ocr_render_dpi=_get_int("OCR_RENDER_DPI", 200),
            docai_project=os.getenv("DOC_AI_PROJECT"),
            docai_location=os.getenv("DOC_AI_LOCATION"),
            docai_processor_id=os.getenv("DOC_AI_PROCESSOR_ID"),
            ocr_good_enough_words=_get_int("OCR_GOOD_ENOUGH_WORDS", 50),
            ocr_good_enough_symbols=_get_int("OCR_GOOD_ENOUGH_SYMBOLS", 10),
            ocr_good_enough_score=_get_int("OCR_GOOD_ENOUGH_SCORE", 1500),
            ocr_max_alternates=_get_int("OCR_MAX_ALTERNATES", 2),
            max_rotation_retries=_get_int("EXTRACTION_MAX_ROTATION_RETRIES", 2),
            max_context_chars=_get_int("EXTRACTION_MAX_CONTEXT_CHARS", 12_000),
            retrieval_top_k=_get_int("EXTRACTION_RETRIEVAL_TOP_K", 8),
            validation_tolerance=_get_float("VALIDATION_TOLERANCE", 1.0),
            header_keywords=os.getenv("HEADER_KEYWORDS", r"FACTURE|INVOICE"),
            header_window_before=_get_int("HEADER_WINDOW_BEFORE", 400),
            header_window_after=_get_int("HEADER_WINDOW_AFTER", 800),
            supplier_scan_lines=_get_int("SUPPLIER_SCAN_LINES", 40),
        )

    def validate(self) -> None:
        if not self.storage_bucket:
            raise ValueError("STORAGE_BUCKET is required")

        if self.ocr_engine not in ("tesseract", "documentai"):
            raise ValueError(f"OCR_ENGINE must be 'tesseract' or 'documentai', got '{self.ocr_engine}'")

        if self.ocr_engine == "documentai":
            missing = [
                k
                for k, v in {
                    "DOC_AI_PROJECT": self.docai_project,
                    "DOC_AI_LOCATION": self.docai_location,
                    "DOC_AI_PROCESSOR_ID": self.docai_processor_id,
                }.items()
                if not v
            ]
            if missing:
                raise ValueError(f"OCR_ENGINE=documentai but missing DocAI config: {', '.join(missing)}")

        if self.max_attempts < 1:
            raise ValueError("QUEUE_DEFAULT_MAX_ATTEMPTS must be >= 1")
        if self.quota_max_attempts < self.max_attempts:
            raise ValueError("QUEUE_QUOTA_MAX_ATTEMPTS must be >= QUEUE_DEFAULT_MAX_ATTEMPTS")
        if self.ocr_max_pages < 1:
            raise ValueError("OCR_PDF_MAX_PAGES must be >= 1")
        if self.validation_tolerance < 0:
            raise ValueError("VALIDATION_TOLERANCE must be >= 0")
