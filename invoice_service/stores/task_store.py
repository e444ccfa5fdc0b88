"""Processing queue: claim, enqueue and task state transitions.

Correctness across concurrent workers rests on ``claim_next_task``: the
candidate row is locked with ``FOR UPDATE SKIP LOCKED`` and flipped from
``pending`` to ``processing`` in the same statement, so two workers racing
for one task cannot both see it as theirs. Every other method only touches
the row the caller already claimed.
"""

from __future__ import annotations

import logging
import uuid

import asyncpg

from invoice_service.pipeline.types import Task

logger = logging.getLogger(__name__)

_CLAIM_SQL = """
WITH candidate AS (
    SELECT id
    FROM processing_queue
    WHERE status = 'pending'
      AND attempts < max_attempts
      AND (
            error_message IS NULL
            OR error_message NOT ILIKE '%quota%'
            OR updated_at < NOW() - make_interval(secs => $1)
      )
    ORDER BY priority DESC, created_at ASC
    LIMIT 1
    FOR UPDATE SKIP LOCKED
)
UPDATE processing_queue q
SET status = 'processing',
    attempts = q.attempts + 1,
    started_at = NOW(),
    updated_at = NOW()
FROM candidate
WHERE q.id = candidate.id
  AND q.status = 'pending'
RETURNING q.*
"""


class TaskStore:
    """Stateless data-access object for processing_queue."""

    async def claim_next_task(
        self,
        conn: asyncpg.Connection,
        *,
        cooldown_seconds: int,
    ) -> Task | None:
        """Claim the next runnable task or return None.

        Tasks last failed on quota are skipped until ``cooldown_seconds``
        have passed since their last update. The parent document is moved
        to ``processing`` in the same transaction.
        """
        async with conn.transaction():
            row = await conn.fetchrow(_CLAIM_SQL, float(cooldown_seconds))
            if row is None:
                return None
            task = Task.from_row(row)
            await conn.execute(
                "UPDATE documents SET status = 'processing', updated_at = NOW() WHERE id = $1",
                uuid.UUID(task.document_id),
            )
        logger.info(
            "Claimed task %s (document=%s, attempt %d/%d)",
            task.id,
            task.document_id,
            task.attempts,
            task.max_attempts,
        )
        return task

    async def enqueue(
        self,
        conn: asyncpg.Connection,
        *,
        document_id: str,
        priority: int = 0,
        max_attempts: int = 3,
    ) -> tuple[Task, bool]:
        """Queue a document, reusing an open task for it.

        Returns (task, created). An existing ``pending`` or ``processing``
        task for the document is returned unchanged with created=False.
        """
        doc_uuid = uuid.UUID(document_id)
        async with conn.transaction():
            # Serialise concurrent enqueues of the same document.
            await conn.execute("SELECT 1 FROM documents WHERE id = $1 FOR UPDATE", doc_uuid)
            existing = await conn.fetchrow(
                """
                SELECT * FROM processing_queue
                WHERE document_id = $1 AND status IN ('pending', 'processing')
                ORDER BY created_at DESC
                LIMIT 1
                """,
                doc_uuid,
            )
            if existing is not None:
                return Task.from_row(existing), False

            row = await conn.fetchrow(
                """
                INSERT INTO processing_queue (id, document_id, status, attempts, max_attempts, priority)
                VALUES ($1, $2, 'pending', 0, $3, $4)
                RETURNING *
                """,
                uuid.uuid4(),
                doc_uuid,
                max_attempts,
                priority,
            )
            await conn.execute(
                "UPDATE documents SET status = 'queued', updated_at = NOW() WHERE id = $1",
                doc_uuid,
            )
        task = Task.from_row(row)
        logger.info("Enqueued task %s for document %s (priority=%d)", task.id, document_id, priority)
        return task, True

    async def get_task(self, conn: asyncpg.Connection, task_id: str) -> Task | None:
        row = await conn.fetchrow("SELECT * FROM processing_queue WHERE id = $1", uuid.UUID(task_id))
        return Task.from_row(row) if row else None

    async def latest_for_document(self, conn: asyncpg.Connection, document_id: str) -> Task | None:
        """Most recently created task for a document, whatever its state."""
        row = await conn.fetchrow(
            """
            SELECT * FROM processing_queue
            WHERE document_id = $1
            ORDER BY created_at DESC
            LIMIT 1
            """,
            uuid.UUID(document_id),
        )
        return Task.from_row(row) if row else None

    async def mark_completed(self, conn: asyncpg.Connection, task_id: str, *, note: str | None = None) -> None:
        await conn.execute(
            """
            UPDATE processing_queue
            SET status = 'completed',
                error_message = $2,
                completed_at = NOW(),
                updated_at = NOW()
            WHERE id = $1
            """,
            uuid.UUID(task_id),
            note,
        )

    async def mark_failed(self, conn: asyncpg.Connection, task_id: str, *, error: str) -> None:
        await conn.execute(
            """
            UPDATE processing_queue
            SET status = 'failed',
                error_message = $2,
                completed_at = NOW(),
                updated_at = NOW()
            WHERE id = $1
            """,
            uuid.UUID(task_id),
            error,
        )

    async def requeue(
        self,
        conn: asyncpg.Connection,
        task_id: str,
        *,
        error: str,
        min_max_attempts: int | None = None,
    ) -> None:
        """Put a claimed task back to ``pending``.

        ``attempts`` is left alone so the next claim keeps counting.
        ``min_max_attempts`` raises the task's ceiling (quota retries get a
        larger budget than ordinary failures).
        """
        await conn.execute(
            """
            UPDATE processing_queue
            SET status = 'pending',
                started_at = NULL,
                error_message = $2,
                max_attempts = GREATEST(max_attempts, COALESCE($3::int, max_attempts)),
                updated_at = NOW()
            WHERE id = $1
            """,
            uuid.UUID(task_id),
            error,
            min_max_attempts,
        )
