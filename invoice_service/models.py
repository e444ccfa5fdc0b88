"""Pydantic request/response schemas for the invoice service API."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from invoice_service.pipeline.types import Task

# -- Health -------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    error: str | None = None


# -- Worker -------------------------------------------------------------------


class WorkerRunResponse(BaseModel):
    processed: bool
    task_id: str | None = None
    document_id: str | None = None
    status: str | None = Field(None, description="Final document status when a task was processed")
    error: str | None = None


# -- Queue --------------------------------------------------------------------


class EnqueueRequest(BaseModel):
    document_id: uuid.UUID
    priority: int = Field(0, ge=0, le=100, description="Higher runs first")
    max_attempts: int = Field(3, ge=1, le=10)


class TaskResponse(BaseModel):
    task_id: str
    document_id: str
    status: str
    attempts: int
    max_attempts: int
    priority: int
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_task(cls, task: Task) -> TaskResponse:
        return cls(
            task_id=task.id,
            document_id=task.document_id,
            status=task.status,
            attempts=task.attempts,
            max_attempts=task.max_attempts,
            priority=task.priority,
            error_message=task.error_message,
            created_at=task.created_at,
            started_at=task.started_at,
            completed_at=task.completed_at,
            updated_at=task.updated_at,
        )


class EnqueueResponse(BaseModel):
    task: TaskResponse
    created: bool = Field(..., description="False when an open task for the document was reused")


class QueueStatusResponse(BaseModel):
    document_id: str
    document_status: str
    task: TaskResponse | None = None
