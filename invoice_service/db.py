"""asyncpg pool shared by the API and the worker.

The worker holds connections only for short claim/persist steps; OCR and
LLM calls run with no connection checked out, so a small pool is enough
even when several invocations overlap.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg

from invoice_service.config import (
    DATABASE_URL,
    DB_APPLICATION_NAME,
    DB_COMMAND_TIMEOUT,
    DB_POOL_MAX_SIZE,
    DB_POOL_MIN_SIZE,
)

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """extracted_data and heuristic overrides travel as dicts, not strings."""
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


async def get_pool() -> asyncpg.Pool:
    """Return the process-wide pool, creating it on first use."""
    global _pool  # noqa: PLW0603
    if _pool is None:
        logger.info("Creating database pool (min=%d, max=%d)", DB_POOL_MIN_SIZE, DB_POOL_MAX_SIZE)
        _pool = await asyncpg.create_pool(
            dsn=DATABASE_URL,
            min_size=DB_POOL_MIN_SIZE,
            max_size=DB_POOL_MAX_SIZE,
            command_timeout=DB_COMMAND_TIMEOUT,
            server_settings={"application_name": DB_APPLICATION_NAME},
            init=_init_connection,
        )
    return _pool


async def close_pool() -> None:
    global _pool  # noqa: PLW0603
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


async def check_db_connection() -> bool:
    """Readiness probe: True when a pooled connection answers ``SELECT 1``."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except (asyncpg.PostgresError, OSError):
        logger.exception("Database health check failed")
        return False


@asynccontextmanager
async def db_transaction() -> AsyncIterator[asyncpg.Connection]:
    """Pooled connection inside a transaction; rolls back when the block raises."""
    pool = await get_pool()
    async with pool.acquire() as conn, conn.transaction():
        yield conn
