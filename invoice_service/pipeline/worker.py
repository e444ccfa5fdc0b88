"""Queue worker: one claimed task, end to end.

``process_next_task`` claims at most one task, runs download -> text
acquisition -> extraction -> heuristics -> supplier resolution ->
persistence, and applies the task/document transition for the outcome:

=========================  ==================  ==================
outcome                    task                document
=========================  ==================  ==================
success                    completed           completed
duplicate invoice number   completed           duplicate
quota, attempts < quota    pending (cooldown)  queued
other, attempts < ceiling  pending             queued
other, ceiling reached     failed              error
unreadable document        failed              error (manual review)
=========================  ==================  ==================

The long-running steps run outside any database transaction; the claim and
the final writes each get their own short one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import asyncpg
from google.api_core import exceptions as gcloud_exceptions
from google.cloud import storage

from invoice_service.db import get_pool
from invoice_service.embedding import rank_chunks
from invoice_service.errors import (
    DownstreamStorageError,
    DuplicateInvoiceNumber,
    QuotaExceeded,
    UnreadableDocument,
    is_quota_error,
)
from invoice_service.logging_config import task_log_context
from invoice_service.pipeline.acquisition.base import Acquirer, acquire_text
from invoice_service.pipeline.acquisition.docx import DocxAcquirer
from invoice_service.pipeline.acquisition.html import HtmlAcquirer
from invoice_service.pipeline.acquisition.image import ImageAcquirer
from invoice_service.pipeline.acquisition.pdf import PdfAcquirer
from invoice_service.pipeline.acquisition.text import TextAcquirer
from invoice_service.pipeline.config import PipelineConfig
from invoice_service.pipeline.extraction import Ranker
from invoice_service.pipeline.gcs import download_bytes, gs_uri, resolve_location
from invoice_service.pipeline.heuristics import UNKNOWN_SUPPLIER
from invoice_service.pipeline.llm import CompletionClient, GeminiCompletionClient, LlmResponse
from invoice_service.pipeline.ocr.base import OcrEngine
from invoice_service.pipeline.ocr.document_ai import DocAIConfig, DocumentAIEngine
from invoice_service.pipeline.ocr.rotation import RotationSearch
from invoice_service.pipeline.ocr.tesseract import TesseractEngine
from invoice_service.pipeline.orchestrator import ExtractionOrchestrator
from invoice_service.pipeline.postprocess import PostProcessor
from invoice_service.pipeline.types import DocumentRecord, ProcessOutcome, Task, TokenUsageRecord
from invoice_service.stores.document_store import DocumentStore
from invoice_service.stores.supplier_store import SupplierStore
from invoice_service.stores.task_store import TaskStore
from invoice_service.stores.token_usage_store import TokenUsageStore

logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class InvoiceWorker:
    def __init__(
        self,
        *,
        cfg: PipelineConfig,
        pool: asyncpg.Pool,
        storage_client: storage.Client,
        acquirers: Sequence[Acquirer],
        llm: CompletionClient,
        ranker: Ranker = rank_chunks,
        tasks: TaskStore | None = None,
        documents: DocumentStore | None = None,
        suppliers: SupplierStore | None = None,
        usage: TokenUsageStore | None = None,
    ) -> None:
        self._cfg = cfg
        self._pool = pool
        self._gcs = storage_client
        self._acquirers = list(acquirers)
        self._llm = llm
        self._ranker = ranker
        self._tasks = tasks or TaskStore()
        self._documents = documents or DocumentStore()
        self._suppliers = suppliers or SupplierStore()
        self._usage = usage or TokenUsageStore()

    async def process_next_task(self) -> ProcessOutcome:
        """Claim and process at most one task. Safe to call concurrently."""
        async with self._pool.acquire() as conn:
            task = await self._tasks.claim_next_task(conn, cooldown_seconds=self._cfg.quota_cooldown_seconds)
        if task is None:
            logger.debug("No runnable task")
            return ProcessOutcome(processed=False)

        with task_log_context(task.id, task.document_id):
            try:
                return await self._process(task)
            except UnreadableDocument as e:
                return await self._fail_unreadable(task, e)
            except Exception as e:
                if is_quota_error(e):
                    return await self._handle_quota(task, e)
                logger.exception("Task %s failed (attempt %d)", task.id, task.attempts)
                return await self._handle_failure(task, e)

    # -- Pipeline --------------------------------------------------------------

    async def _process(self, task: Task) -> ProcessOutcome:
        async with self._pool.acquire() as conn:
            document = await self._documents.get_document(conn, task.document_id)
        if document is None:
            error = f"document {task.document_id} not found"
            async with self._pool.acquire() as conn:
                await self._tasks.mark_failed(conn, task.id, error=error)
            logger.error("Task %s references a missing document %s", task.id, task.document_id)
            return ProcessOutcome(processed=True, task_id=task.id, document_id=task.document_id, status=None, error=error)

        try:
            uri = gs_uri(*resolve_location(self._cfg.storage_bucket, document.file_path))
        except ValueError as e:
            raise UnreadableDocument(str(e)) from e
        logger.info("Processing %s (%s, task=%s)", uri, document.mime_type, task.id)
        try:
            data = await asyncio.to_thread(download_bytes, self._gcs, self._cfg.storage_bucket, document.file_path)
        except gcloud_exceptions.NotFound as e:
            raise UnreadableDocument(f"file not found in storage: {uri}") from e
        except gcloud_exceptions.GoogleAPIError as e:
            raise DownstreamStorageError(f"download failed for {uri}: {e}") from e

        acquired = await asyncio.to_thread(acquire_text, self._acquirers, data=data, mime_type=document.mime_type)
        logger.info(
            "Acquired %d chars over %d page(s) via %s (ocr=%s)",
            len(acquired.full_text),
            len(acquired.pages),
            acquired.strategy,
            acquired.used_ocr,
        )

        async def record_usage(response: LlmResponse, operation: str) -> None:
            await self._record_usage(document, response, operation)

        orchestrator = ExtractionOrchestrator(
            self._llm,
            cfg=self._cfg,
            record_usage=record_usage,
            ranker=self._ranker,
        )
        result = await orchestrator.run(acquired, file_name=document.display_name)

        async def is_known_supplier(name: str | None) -> bool:
            async with self._pool.acquire() as conn:
                return await self._suppliers.is_known(conn, organization_id=document.organization_id, name=name)

        invoice = await PostProcessor(cfg=self._cfg, is_known_supplier=is_known_supplier).apply(
            result.invoice,
            text=acquired.full_text,
            file_name=document.display_name,
        )

        try:
            async with self._pool.acquire() as conn, conn.transaction():
                supplier_id = document.supplier_id
                if invoice.supplier_name and invoice.supplier_name != UNKNOWN_SUPPLIER:
                    supplier = await self._suppliers.upsert_supplier(
                        conn,
                        organization_id=document.organization_id,
                        display_name=invoice.supplier_name,
                    )
                    if supplier is not None:
                        supplier_id = supplier.id

                try:
                    n_items = await self._documents.save_extraction(
                        conn,
                        document=document,
                        invoice=invoice,
                        classification=result.classification,
                        supplier_id=supplier_id,
                    )
                except DuplicateInvoiceNumber as dup:
                    await self._documents.mark_duplicate(
                        conn,
                        document=document,
                        invoice=invoice,
                        classification=result.classification,
                        supplier_id=supplier_id,
                    )
                    await self._tasks.mark_completed(conn, task.id, note=str(dup))
                    logger.info("Document %s is a duplicate (%s)", document.id, dup)
                    return ProcessOutcome(
                        processed=True,
                        task_id=task.id,
                        document_id=document.id,
                        status="duplicate",
                    )

                await self._tasks.mark_completed(conn, task.id)
        except (asyncpg.PostgresError, OSError) as e:
            raise DownstreamStorageError(f"persisting document {document.id} failed: {e}") from e

        logger.info(
            "Document %s completed: invoice=%s supplier=%s items=%d notes=%d",
            document.id,
            invoice.invoice_number,
            invoice.supplier_name,
            n_items,
            len(invoice.validation_notes),
        )
        return ProcessOutcome(processed=True, task_id=task.id, document_id=document.id, status="completed")

    async def _record_usage(self, document: DocumentRecord, response: LlmResponse, operation: str) -> None:
        if response.usage is None:
            logger.debug("No usage metadata on %s response", operation)
            return
        record = TokenUsageRecord(
            organization_id=document.organization_id,
            document_id=document.id,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            operation=operation,
        )
        # Own connection: a failed insert must not poison another transaction.
        async with self._pool.acquire() as conn:
            await self._usage.record(conn, record)

    # -- Transitions -----------------------------------------------------------

    async def _fail_unreadable(self, task: Task, exc: UnreadableDocument) -> ProcessOutcome:
        error = _describe(exc)
        logger.warning("Task %s: document %s unreadable: %s", task.id, task.document_id, exc)
        async with self._pool.acquire() as conn, conn.transaction():
            await self._tasks.mark_failed(conn, task.id, error=error)
            await self._documents.mark_error(conn, task.document_id, error=error, needs_manual_review=True)
        return ProcessOutcome(processed=True, task_id=task.id, document_id=task.document_id, status="error", error=error)

    async def _handle_quota(self, task: Task, exc: Exception) -> ProcessOutcome:
        retry_after = exc.retry_after_seconds if isinstance(exc, QuotaExceeded) else None
        wait = retry_after or self._cfg.quota_cooldown_seconds
        error = f"quota exceeded, retry after {wait}s: {exc}"

        async with self._pool.acquire() as conn, conn.transaction():
            if task.attempts < self._cfg.quota_max_attempts:
                await self._tasks.requeue(conn, task.id, error=error, min_max_attempts=self._cfg.quota_max_attempts)
                await self._documents.set_status(conn, task.document_id, "queued")
                status = "queued"
            else:
                await self._tasks.mark_failed(conn, task.id, error=error)
                await self._documents.mark_error(conn, task.document_id, error=error)
                status = "error"

        logger.warning(
            "Task %s hit provider quota (attempt %d/%d) -> %s",
            task.id,
            task.attempts,
            self._cfg.quota_max_attempts,
            status,
        )
        return ProcessOutcome(processed=True, task_id=task.id, document_id=task.document_id, status=status, error=error)

    async def _handle_failure(self, task: Task, exc: Exception) -> ProcessOutcome:
        error = _describe(exc)
        ceiling = min(task.max_attempts, self._cfg.max_attempts)

        async with self._pool.acquire() as conn, conn.transaction():
            if task.attempts < ceiling:
                await self._tasks.requeue(conn, task.id, error=error)
                await self._documents.set_status(conn, task.document_id, "queued")
                status = "queued"
            else:
                await self._tasks.mark_failed(conn, task.id, error=error)
                await self._documents.mark_error(conn, task.document_id, error=error)
                status = "error"

        logger.warning("Task %s attempt %d/%d failed -> %s: %s", task.id, task.attempts, ceiling, status, error)
        return ProcessOutcome(processed=True, task_id=task.id, document_id=task.document_id, status=status, error=error)


def build_ocr_engine(cfg: PipelineConfig) -> OcrEngine:
    if cfg.ocr_engine == "documentai":
        return DocumentAIEngine(
            cfg=DocAIConfig(
                project=cfg.docai_project or "",
                location=cfg.docai_location or "",
                processor_id=cfg.docai_processor_id or "",
            )
        )
    return TesseractEngine(languages=cfg.ocr_languages)


def build_acquirers(cfg: PipelineConfig, engine: OcrEngine) -> list[Acquirer]:
    search = RotationSearch(
        engine,
        good_enough_words=cfg.ocr_good_enough_words,
        good_enough_symbols=cfg.ocr_good_enough_symbols,
        good_enough_score=cfg.ocr_good_enough_score,
        max_alternates=cfg.ocr_max_alternates,
    )
    return [
        TextAcquirer(),
        HtmlAcquirer(),
        DocxAcquirer(),
        ImageAcquirer(rotation_search=search),
        PdfAcquirer(
            rotation_search=search,
            min_native_chars=cfg.min_native_chars,
            ocr_max_pages=cfg.ocr_max_pages,
            render_dpi=cfg.ocr_render_dpi,
        ),
    ]


async def build_worker(cfg: PipelineConfig) -> InvoiceWorker:
    """Production wiring: pooled DB, GCS, configured OCR engine, Gemini."""
    cfg.validate()
    return InvoiceWorker(
        cfg=cfg,
        pool=await get_pool(),
        storage_client=storage.Client(),
        acquirers=build_acquirers(cfg, build_ocr_engine(cfg)),
        llm=GeminiCompletionClient(),
    )
