"""Token usage accounting.

One row per LLM call, tagged with the operation that made it. Recording is
best-effort: an insert failure is logged and swallowed so billing never
fails an extraction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

import asyncpg

from invoice_service.config import (
    TOKEN_INPUT_COST_PER_MILLION,
    TOKEN_MARKUP_RATE,
    TOKEN_OUTPUT_COST_PER_MILLION,
)
from invoice_service.pipeline.types import TokenUsageRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenCost:
    input_cost: float
    output_cost: float
    total_cost: float
    total_cost_marked_up: float


def calculate_token_cost(
    input_tokens: int,
    output_tokens: int,
    *,
    input_per_million: float = TOKEN_INPUT_COST_PER_MILLION,
    output_per_million: float = TOKEN_OUTPUT_COST_PER_MILLION,
    markup_rate: float = TOKEN_MARKUP_RATE,
) -> TokenCost:
    """USD cost of a call, rounded to 8 decimals."""
    input_cost = input_tokens / 1_000_000 * input_per_million
    output_cost = output_tokens / 1_000_000 * output_per_million
    total = input_cost + output_cost
    return TokenCost(
        input_cost=round(input_cost, 8),
        output_cost=round(output_cost, 8),
        total_cost=round(total, 8),
        total_cost_marked_up=round(total * (1 + markup_rate), 8),
    )


class TokenUsageStore:
    """Stateless data-access object for token_usage."""

    async def record(self, conn: asyncpg.Connection, usage: TokenUsageRecord) -> bool:
        """Insert one usage row. Returns False (after logging) when the insert fails."""
        cost = calculate_token_cost(usage.input_tokens, usage.output_tokens)
        try:
            await conn.execute(
                """
                INSERT INTO token_usage
                    (id, organization_id, document_id, model_name, operation_type,
                     input_tokens, output_tokens, total_tokens,
                     input_cost, output_cost, total_cost, total_cost_marked_up)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                uuid.uuid4(),
                uuid.UUID(usage.organization_id),
                uuid.UUID(usage.document_id) if usage.document_id else None,
                usage.model,
                usage.operation,
                usage.input_tokens,
                usage.output_tokens,
                usage.input_tokens + usage.output_tokens,
                cost.input_cost,
                cost.output_cost,
                cost.total_cost,
                cost.total_cost_marked_up,
            )
        except (asyncpg.PostgresError, OSError):
            logger.warning(
                "Failed to record token usage (org=%s, document=%s, operation=%s)",
                usage.organization_id,
                usage.document_id,
                usage.operation,
                exc_info=True,
            )
            return False

        logger.info(
            "Recorded %d tokens (%.4f USD) for %s on document %s",
            usage.input_tokens + usage.output_tokens,
            cost.total_cost_marked_up,
            usage.operation,
            usage.document_id,
        )
        return True
