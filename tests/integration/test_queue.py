"""Integration tests for the processing queue against a real database."""

from __future__ import annotations

import asyncio
import uuid

from invoice_service.stores.task_store import TaskStore

store = TaskStore()


async def _claim(db_pool, cooldown_seconds: int = 120):
    async with db_pool.acquire() as conn:
        return await store.claim_next_task(conn, cooldown_seconds=cooldown_seconds)


async def _enqueue(db_pool, document_id: str, **kwargs):
    async with db_pool.acquire() as conn:
        return await store.enqueue(conn, document_id=document_id, **kwargs)


async def test_concurrent_claims_have_one_winner(db_pool, insert_document):
    doc_id = await insert_document()
    await _enqueue(db_pool, doc_id)

    results = await asyncio.gather(*(_claim(db_pool) for _ in range(6)))

    winners = [t for t in results if t is not None]
    assert len(winners) == 1
    assert winners[0].attempts == 1
    assert winners[0].status == "processing"
    async with db_pool.acquire() as conn:
        status = await conn.fetchval("SELECT status FROM documents WHERE id = $1", uuid.UUID(doc_id))
    assert status == "processing"


async def test_claim_order_priority_then_age(db_pool, insert_document):
    old_low = await insert_document()
    new_high = await insert_document()
    await _enqueue(db_pool, old_low, priority=0)
    await _enqueue(db_pool, new_high, priority=10)

    first = await _claim(db_pool)
    second = await _claim(db_pool)

    assert first.document_id == new_high
    assert second.document_id == old_low
    assert await _claim(db_pool) is None


async def test_attempts_never_exceed_max(db_pool, insert_document):
    doc_id = await insert_document()
    task, _ = await _enqueue(db_pool, doc_id, max_attempts=1)

    claimed = await _claim(db_pool)
    async with db_pool.acquire() as conn:
        await store.requeue(conn, claimed.id, error="RuntimeError: boom")

    assert await _claim(db_pool) is None
    async with db_pool.acquire() as conn:
        row = await store.get_task(conn, task.id)
    assert (row.status, row.attempts, row.max_attempts) == ("pending", 1, 1)


async def test_quota_cooldown(db_pool, insert_document):
    doc_id = await insert_document()
    await _enqueue(db_pool, doc_id)
    claimed = await _claim(db_pool)
    async with db_pool.acquire() as conn:
        await store.requeue(
            conn,
            claimed.id,
            error="quota exceeded, retry after 120s: 429 RESOURCE_EXHAUSTED",
            min_max_attempts=5,
        )

    assert await _claim(db_pool, cooldown_seconds=120) is None

    async with db_pool.acquire() as conn:
        await conn.execute(
            "UPDATE processing_queue SET updated_at = NOW() - INTERVAL '10 minutes' WHERE id = $1",
            uuid.UUID(claimed.id),
        )
    again = await _claim(db_pool, cooldown_seconds=120)
    assert again is not None
    assert again.attempts == 2
    assert again.max_attempts == 5


async def test_plain_failure_has_no_cooldown(db_pool, insert_document):
    doc_id = await insert_document()
    await _enqueue(db_pool, doc_id)
    claimed = await _claim(db_pool)
    async with db_pool.acquire() as conn:
        await store.requeue(conn, claimed.id, error="ParseFailure: no JSON object found")

    assert await _claim(db_pool, cooldown_seconds=3600) is not None


async def test_enqueue_reuses_open_task(db_pool, insert_document):
    doc_id = await insert_document(status="error")

    first, created_first = await _enqueue(db_pool, doc_id)
    second, created_second = await _enqueue(db_pool, doc_id, priority=50)

    assert created_first is True
    assert created_second is False
    assert second.id == first.id
    assert second.priority == 0
    async with db_pool.acquire() as conn:
        status = await conn.fetchval("SELECT status FROM documents WHERE id = $1", uuid.UUID(doc_id))
        count = await conn.fetchval("SELECT count(*) FROM processing_queue")
    assert status == "queued"
    assert count == 1


async def test_enqueue_after_completion_creates_new_task(db_pool, insert_document):
    doc_id = await insert_document()
    first, _ = await _enqueue(db_pool, doc_id)
    claimed = await _claim(db_pool)
    async with db_pool.acquire() as conn:
        await store.mark_completed(conn, claimed.id)

    second, created = await _enqueue(db_pool, doc_id)

    assert created is True
    assert second.id != first.id
    async with db_pool.acquire() as conn:
        latest = await store.latest_for_document(conn, doc_id)
    assert latest.id == second.id


async def test_requeue_only_raises_ceiling(db_pool, insert_document):
    doc_id = await insert_document()
    task, _ = await _enqueue(db_pool, doc_id, max_attempts=3)
    claimed = await _claim(db_pool)

    async with db_pool.acquire() as conn:
        await store.requeue(conn, claimed.id, error="quota exceeded", min_max_attempts=5)
        await store.requeue(conn, claimed.id, error="RuntimeError: x", min_max_attempts=2)
        row = await store.get_task(conn, task.id)

    assert row.max_attempts == 5
    assert row.started_at is None
    assert row.error_message == "RuntimeError: x"
