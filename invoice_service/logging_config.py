"""Logging setup.

On Cloud Run every record is one JSON line (python-json-logger) with a GCP
``severity``; locally it is plain text. While the worker processes a task,
records carry ``task_id``/``document_id`` so one invoice's lines can be
grouped in Cloud Logging.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

_task_id: ContextVar[str | None] = ContextVar("task_id", default=None)
_document_id: ContextVar[str | None] = ContextVar("document_id", default=None)

# Libraries that log every page/request at DEBUG or INFO
_NOISY_LOGGERS = ("PIL", "pdf2image", "pypdf", "httpx", "google_genai")


class TaskContextFilter(logging.Filter):
    """Stamp the current task and document ids onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.task_id = _task_id.get()
        record.document_id = _document_id.get()
        return True


class GCPJsonFormatter(JsonFormatter):
    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["severity"] = "WARNING" if record.levelname == "WARN" else record.levelname
        log_record.pop("levelname", None)
        for key in ("task_id", "document_id"):
            if log_record.get(key) is None:
                log_record.pop(key, None)


@contextmanager
def task_log_context(task_id: str, document_id: str) -> Iterator[None]:
    """Attach ``task_id``/``document_id`` to records logged inside the block."""
    task_token = _task_id.set(task_id)
    doc_token = _document_id.set(document_id)
    try:
        yield
    finally:
        _document_id.reset(doc_token)
        _task_id.reset(task_token)


def setup_logging(*, level: str = "INFO") -> None:
    """Configure the root logger; replaces any handlers already installed."""
    is_cloud_run = bool(os.getenv("K_SERVICE") or os.getenv("CLOUD_RUN_JOB"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.addFilter(TaskContextFilter())
    if is_cloud_run:
        handler.setFormatter(GCPJsonFormatter(
            fmt="%(message)s %(name)s %(lineno)d %(task_id)s %(document_id)s",
            rename_fields={"name": "logger"},
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s [task=%(task_id)s]  %(message)s",
            datefmt="%H:%M:%S",
        ))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:16]
