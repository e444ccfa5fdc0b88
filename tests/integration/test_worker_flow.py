"""End-to-end worker runs against a real database (storage and LLM stubbed)."""

from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from invoice_service.errors import QuotaExceeded
from invoice_service.pipeline.acquisition.text import TextAcquirer
from invoice_service.pipeline.llm import LlmResponse
from invoice_service.pipeline.types import TokenUsage
from invoice_service.pipeline.worker import InvoiceWorker
from invoice_service.stores.task_store import TaskStore

INVOICE_TEXT = b"ACME FOURNITURES\nFACTURE N\xc2\xb0 FA-2024-001\nDate: 15/03/2024\nClient: Dupont\n"

EXTRACTION = json.dumps(
    {
        "invoice_number": "FA-2024-001",
        "invoice_date": "2024-03-15",
        "supplier_name": "ACME FOURNITURES",
        "client_name": "Dupont",
        "total_amount": 30,
        "items": [
            {"description": "Papier A4", "total_price": 10},
            {"description": "Toner", "total_price": 20},
        ],
    }
)


class StubLlm:
    model = "test-model"

    def __init__(self, error: Exception | None = None):
        self.error = error

    def invoke(self, prompt: str) -> LlmResponse:
        if self.error is not None:
            raise self.error
        text = json.dumps({"category": "expense", "confidence": 0.7}) if "classifiez" in prompt else EXTRACTION
        return LlmResponse(text=text, usage=TokenUsage(1000, 200), model=self.model)


@pytest.fixture(autouse=True)
def _download():
    with patch("invoice_service.pipeline.worker.download_bytes", return_value=INVOICE_TEXT) as m:
        yield m


def _worker(db_pool, cfg, llm=None) -> InvoiceWorker:
    return InvoiceWorker(
        cfg=cfg,
        pool=db_pool,
        storage_client=MagicMock(),
        acquirers=[TextAcquirer()],
        llm=llm or StubLlm(),
        ranker=AsyncMock(return_value=[0]),
    )


async def _enqueue(db_pool, doc_id: str):
    async with db_pool.acquire() as conn:
        task, _ = await TaskStore().enqueue(conn, document_id=doc_id)
    return task


async def _row(db_pool, table: str, id_: str):
    async with db_pool.acquire() as conn:
        return await conn.fetchrow(f"SELECT * FROM {table} WHERE id = $1", uuid.UUID(id_))


async def test_completed_then_duplicate(db_pool, insert_document, pipeline_config):
    first = await insert_document(file_name="ACME_2024-03.txt")
    second = await insert_document(file_name="ACME_2024-03 (1).txt")
    t1 = await _enqueue(db_pool, first)
    t2 = await _enqueue(db_pool, second)
    worker = _worker(db_pool, pipeline_config)

    o1 = await worker.process_next_task()
    o2 = await worker.process_next_task()
    o3 = await worker.process_next_task()

    assert (o1.status, o2.status, o3.processed) == ("completed", "duplicate", False)

    doc1 = await _row(db_pool, "documents", first)
    doc2 = await _row(db_pool, "documents", second)
    assert doc1["status"] == "completed"
    assert doc1["invoice_number"] == "FA-2024-001"
    assert doc1["extracted_data"]["subtotal"] == 30.0
    assert doc2["status"] == "duplicate"
    assert doc2["invoice_number"] is None
    assert doc2["supplier_id"] == doc1["supplier_id"]

    task1 = await _row(db_pool, "processing_queue", t1.id)
    task2 = await _row(db_pool, "processing_queue", t2.id)
    assert task1["status"] == "completed"
    assert task2["status"] == "completed"
    assert task2["error_message"] == "duplicate invoice number: FA-2024-001"

    async with db_pool.acquire() as conn:
        usage = await conn.fetch("SELECT operation_type, total_tokens FROM token_usage ORDER BY created_at")
        items = await conn.fetchval("SELECT count(*) FROM document_items")
    assert sorted(r["operation_type"] for r in usage) == ["classification"] * 2 + ["extraction"] * 2
    assert all(r["total_tokens"] == 1200 for r in usage)
    assert items == 2


async def test_quota_requeues_with_cooldown(db_pool, insert_document, pipeline_config):
    doc_id = await insert_document()
    task = await _enqueue(db_pool, doc_id)
    worker = _worker(db_pool, pipeline_config, llm=StubLlm(error=QuotaExceeded(retry_after_seconds=60)))

    outcome = await worker.process_next_task()

    assert outcome.status == "queued"
    row = await _row(db_pool, "processing_queue", task.id)
    assert row["status"] == "pending"
    assert row["attempts"] == 1
    assert row["max_attempts"] == pipeline_config.quota_max_attempts
    assert row["error_message"].startswith("quota exceeded, retry after 60s")
    assert (await _row(db_pool, "documents", doc_id))["status"] == "queued"

    # Still cooling down.
    assert (await worker.process_next_task()).processed is False


async def test_failures_exhaust_ceiling(db_pool, insert_document, make_config):
    doc_id = await insert_document()
    task = await _enqueue(db_pool, doc_id)
    worker = _worker(db_pool, make_config(max_attempts=2), llm=StubLlm(error=RuntimeError("model crashed")))

    first = await worker.process_next_task()
    second = await worker.process_next_task()
    third = await worker.process_next_task()

    assert (first.status, second.status, third.processed) == ("queued", "error", False)
    row = await _row(db_pool, "processing_queue", task.id)
    assert (row["status"], row["attempts"]) == ("failed", 2)
    doc = await _row(db_pool, "documents", doc_id)
    assert doc["status"] == "error"
    assert doc["extracted_data"]["error"] == "RuntimeError: model crashed"
