from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="invoice-worker",
        description="Process queued invoice documents (claim -> OCR -> extraction -> persistence)",
    )
    p.add_argument(
        "--max-tasks",
        type=int,
        default=1,
        help="Stop after this many processed tasks (0 = until the queue is empty)",
    )
    p.add_argument(
        "--loop",
        action="store_true",
        help="Keep polling when the queue is empty instead of exiting",
    )
    p.add_argument(
        "--interval",
        type=float,
        default=10.0,
        help="Seconds to sleep between polls of an empty queue (with --loop)",
    )
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")
    return p
