from __future__ import annotations

import asyncio
import logging

from invoice_service.db import close_pool
from invoice_service.logging_config import setup_logging
from invoice_service.pipeline.cli import build_parser
from invoice_service.pipeline.config import PipelineConfig
from invoice_service.pipeline.types import ProcessOutcome
from invoice_service.pipeline.worker import InvoiceWorker, build_worker

logger = logging.getLogger("invoice_service.pipeline")


async def drain(
    worker: InvoiceWorker,
    *,
    max_tasks: int,
    loop: bool = False,
    interval: float = 10.0,
) -> list[ProcessOutcome]:
    """Call ``process_next_task`` until ``max_tasks`` are processed or the queue is empty.

    With ``loop`` an empty queue sleeps ``interval`` seconds and polls again.
    """
    outcomes: list[ProcessOutcome] = []
    while max_tasks <= 0 or len(outcomes) < max_tasks:
        outcome = await worker.process_next_task()
        if outcome.processed:
            outcomes.append(outcome)
            continue
        if not loop:
            break
        await asyncio.sleep(interval)
    return outcomes


async def _amain() -> int:
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(level=args.log_level.upper())

    cfg = PipelineConfig.from_env()
    worker = await build_worker(cfg)

    try:
        outcomes = await drain(
            worker,
            max_tasks=int(args.max_tasks or 0),
            loop=bool(args.loop),
            interval=float(args.interval),
        )
    finally:
        await close_pool()

    totals: dict[str, int] = {}
    for o in outcomes:
        key = o.status or "unknown"
        totals[key] = totals.get(key, 0) + 1
    logger.info("DONE processed=%d totals=%s", len(outcomes), totals)
    return 0 if totals.get("error", 0) == 0 else 2


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
