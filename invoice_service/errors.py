"""Error taxonomy for the ingestion pipeline.

The worker branches on these types when deciding the next task/document
state; the document ``status`` column is what consumers read, never the
free-text message.
"""

from __future__ import annotations

import re


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class EmptyExtraction(PipelineError):
    """The LLM returned no header fields and no items.

    Handled inside the orchestrator through rotation retry; never reaches
    the worker.
    """


class ParseFailure(PipelineError):
    """The LLM response could not be turned into a JSON object."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw[:2000]


class QuotaExceeded(PipelineError):
    """The AI provider rejected the call for quota or rate-limit reasons."""

    def __init__(self, message: str = "quota exceeded", *, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class DuplicateInvoiceNumber(PipelineError):
    """(organization, supplier, invoice number) already exists."""

    def __init__(self, invoice_number: str | None, *, supplier_id: str | None = None) -> None:
        super().__init__(f"duplicate invoice number: {invoice_number}")
        self.invoice_number = invoice_number
        self.supplier_id = supplier_id


class UnreadableDocument(PipelineError):
    """No text could be obtained, even after OCR."""


class ValidationMismatch(PipelineError):
    """Line items do not add up to the invoice total.

    Only ever converted to an advisory note; kept as a type so the note
    text has a single source.
    """

    def __init__(self, items_sum: float, total_amount: float, tolerance: float) -> None:
        self.items_sum = items_sum
        self.total_amount = total_amount
        self.delta = abs(items_sum - total_amount)
        super().__init__(
            f"items sum {items_sum:.2f} differs from total_amount {total_amount:.2f} "
            f"by {self.delta:.2f} (tolerance {tolerance:.2f})"
        )


class DownstreamStorageError(PipelineError):
    """Database or object-store failure; retried under the standard ceiling."""


_QUOTA_PATTERN = re.compile(r"quota|rate[ _]?limit|resource_exhausted|too many requests|\b429\b", re.IGNORECASE)


def is_quota_error(exc: BaseException) -> bool:
    """True for QuotaExceeded and for raw provider errors that look like one.

    Our own wrapped errors (``DownstreamStorageError``, ``ParseFailure``, ...)
    embed document ids and payload text, so only ``QuotaExceeded`` counts
    among ``PipelineError`` subclasses.
    """
    if isinstance(exc, QuotaExceeded):
        return True
    if isinstance(exc, PipelineError):
        return False
    return _QUOTA_PATTERN.search(f"{type(exc).__name__}: {exc}") is not None
