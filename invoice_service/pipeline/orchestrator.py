"""Extraction orchestrator.

Drives the LLM over the acquired pages:

1. Each page is extracted in order; page 0 is the primary result.
2. An empty page result is retried against the page's alternate OCR
   rotations (best score first, at most ``max_rotation_retries``) and the
   first non-empty result replaces it.
3. Later pages are reconciled into the primary: their items are appended in
   page order and header fields the primary lacks are filled in.
4. The merged invoice is classified, the subtotal is derived from the items
   when missing, and a mismatch between the items and the total becomes an
   advisory note.

The page/retry walk is the pure ``next_state`` function below; the
orchestrator only performs the side effects each state asks for.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from invoice_service.embedding import rank_chunks
from invoice_service.errors import ParseFailure, QuotaExceeded, ValidationMismatch
from invoice_service.pipeline.config import PipelineConfig
from invoice_service.pipeline.extraction import (
    Ranker,
    build_classification_prompt,
    build_context,
    build_extraction_prompt,
    parse_classification,
    parse_extraction,
)
from invoice_service.pipeline.llm import CompletionClient, LlmResponse
from invoice_service.pipeline.schema import ExtractedInvoice, InvoiceClassification
from invoice_service.pipeline.types import AcquiredText, PageText

logger = logging.getLogger(__name__)

UsageSink = Callable[[LlmResponse, str], Awaitable[None]]

_HEADER_FIELDS: tuple[str, ...] = (
    "invoice_number",
    "invoice_date",
    "due_date",
    "total_amount",
    "tax_amount",
    "subtotal",
    "currency",
    "payment_terms",
    "notes",
    "document_type",
    "supplier_name",
    "supplier_address",
    "supplier_email",
    "supplier_phone",
    "supplier_vat_number",
    "client_name",
    "client_address",
    "client_email",
    "client_phone",
    "client_vat_number",
)


# -- State machine -------------------------------------------------------------


@dataclass(frozen=True)
class Extracting:
    page: int


@dataclass(frozen=True)
class EmptyRetry:
    page: int
    rotation_index: int


@dataclass(frozen=True)
class Reconciling:
    pass


@dataclass(frozen=True)
class Done:
    pass


State = Extracting | EmptyRetry | Reconciling | Done


def _advance(page: int, page_count: int) -> State:
    return Extracting(page + 1) if page + 1 < page_count else Reconciling()


def next_state(
    state: State,
    *,
    empty: bool = False,
    page_count: int,
    retry_budget: int = 0,
) -> State:
    """Transition after the side effect of ``state`` has run.

    ``empty`` is whether the extraction just performed came back empty and
    ``retry_budget`` is how many alternate rotations the current page may
    still be retried on (already capped by configuration).
    """
    if isinstance(state, Extracting):
        if empty and retry_budget > 0:
            return EmptyRetry(state.page, 0)
        return _advance(state.page, page_count)
    if isinstance(state, EmptyRetry):
        if empty and state.rotation_index + 1 < retry_budget:
            return EmptyRetry(state.page, state.rotation_index + 1)
        return _advance(state.page, page_count)
    if isinstance(state, Reconciling):
        return Done()
    return state


# -- Reconciliation helpers ----------------------------------------------------


def reconcile(results: list[ExtractedInvoice]) -> ExtractedInvoice:
    """Merge per-page results into the first one.

    Items are concatenated in page order without deduplication; header
    fields missing from the primary are taken from the first later page that
    has them.
    """
    if not results:
        return ExtractedInvoice()
    primary = results[0]
    if len(results) == 1:
        return primary

    updates: dict[str, object] = {"items": [item for r in results for item in r.items]}
    for name in _HEADER_FIELDS:
        if getattr(primary, name) is not None:
            continue
        for later in results[1:]:
            value = getattr(later, name)
            if value is not None:
                updates[name] = value
                break
    return primary.model_copy(update=updates)


def finalize_amounts(invoice: ExtractedInvoice, *, tolerance: float) -> ExtractedInvoice:
    """Fill a missing subtotal from the items and flag an items/total mismatch."""
    updates: dict[str, object] = {}
    items_sum = invoice.items_total()
    if invoice.subtotal is None and invoice.items:
        updates["subtotal"] = items_sum

    if invoice.total_amount is not None and invoice.items:
        if abs(items_sum - invoice.total_amount) > tolerance:
            mismatch = ValidationMismatch(items_sum, invoice.total_amount, tolerance)
            logger.info("Validation note: %s", mismatch)
            updates["validation_notes"] = [*invoice.validation_notes, str(mismatch)]

    return invoice.model_copy(update=updates) if updates else invoice


# -- Orchestrator --------------------------------------------------------------


@dataclass
class OrchestrationResult:
    invoice: ExtractedInvoice
    classification: InvoiceClassification
    page_results: list[ExtractedInvoice] = field(default_factory=list)
    rotation_retries: int = 0
    states: list[State] = field(default_factory=list)


class ExtractionOrchestrator:
    def __init__(
        self,
        llm: CompletionClient,
        *,
        cfg: PipelineConfig,
        record_usage: UsageSink | None = None,
        ranker: Ranker = rank_chunks,
    ) -> None:
        self._llm = llm
        self._cfg = cfg
        self._record_usage = record_usage
        self._ranker = ranker

    async def _forward_usage(self, response: LlmResponse, operation: str) -> None:
        if self._record_usage is None:
            return
        try:
            await self._record_usage(response, operation)
        except Exception:
            logger.warning("Token usage recording failed (operation=%s)", operation, exc_info=True)

    async def _invoke(self, prompt: str, operation: str) -> LlmResponse:
        response = await asyncio.to_thread(self._llm.invoke, prompt)
        await self._forward_usage(response, operation)
        return response

    async def extract(self, text: str, *, file_name: str) -> ExtractedInvoice:
        context = await build_context(
            text,
            max_chars=self._cfg.max_context_chars,
            top_k=self._cfg.retrieval_top_k,
            ranker=self._ranker,
        )
        response = await self._invoke(build_extraction_prompt(context, file_name=file_name), "extraction")
        return parse_extraction(response.text)

    async def classify(self, invoice: ExtractedInvoice) -> InvoiceClassification:
        try:
            response = await self._invoke(build_classification_prompt(invoice), "classification")
        except QuotaExceeded:
            raise
        except Exception:
            logger.warning("Classification call failed; defaulting to 'other'", exc_info=True)
            return InvoiceClassification()
        return parse_classification(response.text)

    def _retry_budget(self, page: PageText) -> int:
        return min(len(page.alternates), max(0, self._cfg.max_rotation_retries))

    async def run(self, acquired: AcquiredText, *, file_name: str) -> OrchestrationResult:
        pages = [p for p in acquired.pages if p.text]
        if len(pages) <= 1:
            # Single page: extract over the whole text, keep its alternates.
            alternates = pages[0].alternates if pages else ()
            pages = [PageText(index=0, text=acquired.full_text, alternates=alternates)]

        results: list[ExtractedInvoice] = [ExtractedInvoice() for _ in pages]
        retries = 0
        trace: list[State] = []
        state: State = Extracting(0)

        while not isinstance(state, Done):
            trace.append(state)
            if isinstance(state, Extracting):
                page = pages[state.page]
                result = await self.extract(page.text, file_name=file_name)
                results[state.page] = result
                if result.is_empty():
                    logger.info("Page %d extraction empty (%d alternate rotation(s))", page.index + 1, len(page.alternates))
                state = next_state(
                    state,
                    empty=result.is_empty(),
                    page_count=len(pages),
                    retry_budget=self._retry_budget(page),
                )
            elif isinstance(state, EmptyRetry):
                page = pages[state.page]
                alt = page.alternates[state.rotation_index]
                retries += 1
                try:
                    result = await self.extract(alt.text, file_name=file_name)
                except ParseFailure as e:
                    # A garbled rotation counts as one more empty reading.
                    logger.warning("Page %d rotation %d unparseable: %s", page.index + 1, alt.angle, e)
                    result = ExtractedInvoice()
                if not result.is_empty():
                    logger.info("Page %d recovered from rotation %d (score=%d)", page.index + 1, alt.angle, alt.score)
                    results[state.page] = result
                state = next_state(
                    state,
                    empty=result.is_empty(),
                    page_count=len(pages),
                    retry_budget=self._retry_budget(page),
                )
            else:
                state = next_state(state, page_count=len(pages))
        trace.append(state)

        merged = reconcile(results)
        classification = await self.classify(merged)
        merged = finalize_amounts(merged, tolerance=self._cfg.validation_tolerance)

        logger.info(
            "Extraction done: pages=%d items=%d retries=%d category=%s",
            len(pages),
            len(merged.items),
            retries,
            classification.category,
        )
        return OrchestrationResult(
            invoice=merged,
            classification=classification,
            page_results=results,
            rotation_retries=retries,
            states=trace,
        )
