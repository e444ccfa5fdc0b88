"""FastAPI entry point for the invoice processing service.

Endpoints:
- POST/GET /v1/worker/run          Process at most one queued task (scheduler hook)
- POST /v1/queue                   Queue a document for processing
- GET  /v1/queue/{document_id}     Latest task and document status
- GET  /liveness                   Health check
- GET  /readiness                  DB connectivity check
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, cast

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from invoice_service.config import ENQUEUE_RATE_LIMIT, WORKER_RATE_LIMIT
from invoice_service.db import check_db_connection, close_pool, db_transaction
from invoice_service.logging_config import generate_request_id, setup_logging
from invoice_service.models import (
    EnqueueRequest,
    EnqueueResponse,
    HealthResponse,
    QueueStatusResponse,
    TaskResponse,
    WorkerRunResponse,
)
from invoice_service.pipeline.config import PipelineConfig
from invoice_service.pipeline.worker import InvoiceWorker, build_worker
from invoice_service.stores.document_store import DocumentStore
from invoice_service.stores.task_store import TaskStore

logger = logging.getLogger(__name__)

_task_store = TaskStore()
_doc_store = DocumentStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: build the worker (and pool) on startup, close on shutdown."""
    setup_logging()
    app.state.worker = await build_worker(PipelineConfig.from_env())
    logger.info("Invoice service started")
    yield
    await close_pool()
    logger.info("Invoice service stopped")


app = FastAPI(
    title="Invoice Processing API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["120/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


# -- Body size limit ----------------------------------------------------------

_MAX_BODY_BYTES = 1 * 1024 * 1024  # 1 MB; requests carry ids, never files


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests with bodies exceeding the size limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None and int(content_length) > _MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


def _get_worker(request: Request) -> InvoiceWorker:
    """Dependency: the worker built at startup."""
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        raise HTTPException(status_code=503, detail="Worker not initialised")
    return cast(InvoiceWorker, worker)


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness() -> HealthResponse:
    db_ok = await check_db_connection()
    if not db_ok:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return HealthResponse(status="ok")


# -- Worker -------------------------------------------------------------------


@app.api_route("/v1/worker/run", methods=["GET", "POST"], response_model=WorkerRunResponse)
@limiter.limit(WORKER_RATE_LIMIT)
async def run_worker(
    request: Request,
    worker: Annotated[InvoiceWorker, Depends(_get_worker)],
) -> WorkerRunResponse:
    """Claim and process at most one task. Idempotent when the queue is empty."""
    try:
        outcome = await worker.process_next_task()
    except Exception as e:
        logger.exception("Worker run failed")
        raise HTTPException(status_code=500, detail="Worker run failed") from e

    return WorkerRunResponse(
        processed=outcome.processed,
        task_id=outcome.task_id,
        document_id=outcome.document_id,
        status=outcome.status,
        error=outcome.error,
    )


# -- Queue --------------------------------------------------------------------


@app.post("/v1/queue", response_model=EnqueueResponse)
@limiter.limit(ENQUEUE_RATE_LIMIT)
async def enqueue_document(request: Request, body: EnqueueRequest) -> EnqueueResponse:
    """Queue a document; an open task for the same document is reused."""
    document_id = str(body.document_id)
    async with db_transaction() as conn:
        document = await _doc_store.get_document(conn, document_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Document not found")
        task, created = await _task_store.enqueue(
            conn,
            document_id=document_id,
            priority=body.priority,
            max_attempts=body.max_attempts,
        )

    return EnqueueResponse(task=TaskResponse.from_task(task), created=created)


@app.get("/v1/queue/{document_id}", response_model=QueueStatusResponse)
async def queue_status(document_id: uuid.UUID) -> QueueStatusResponse:
    """Latest task for a document plus the document's own status."""
    async with db_transaction() as conn:
        document = await _doc_store.get_document(conn, str(document_id))
        if document is None:
            raise HTTPException(status_code=404, detail="Document not found")
        task = await _task_store.latest_for_document(conn, str(document_id))

    return QueueStatusResponse(
        document_id=document.id,
        document_status=document.status,
        task=TaskResponse.from_task(task) if task else None,
    )
