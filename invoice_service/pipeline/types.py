from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Task:
    id: str
    document_id: str
    status: str  # pending|processing|completed|failed
    attempts: int
    max_attempts: int
    priority: int
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> Task:
        return cls(
            id=str(row["id"]),
            document_id=str(row["document_id"]),
            status=row["status"],
            attempts=int(row["attempts"]),
            max_attempts=int(row["max_attempts"]),
            priority=int(row["priority"] or 0),
            error_message=row["error_message"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    organization_id: str
    supplier_id: str | None
    file_path: str
    file_name: str | None
    mime_type: str
    status: str  # queued|processing|completed|error|duplicate

    @classmethod
    def from_row(cls, row: Any) -> DocumentRecord:
        return cls(
            id=str(row["id"]),
            organization_id=str(row["organization_id"]),
            supplier_id=str(row["supplier_id"]) if row["supplier_id"] else None,
            file_path=row["file_path"],
            file_name=row["file_name"],
            mime_type=row["mime_type"] or "application/octet-stream",
            status=row["status"],
        )

    @property
    def display_name(self) -> str:
        if self.file_name:
            return self.file_name
        return self.file_path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class RotationCandidate:
    angle: int  # 0|90|180|270
    text: str
    score: int


@dataclass(frozen=True)
class PageText:
    index: int
    text: str
    angle: int | None = None  # None when the text layer was read natively
    score: int | None = None
    alternates: tuple[RotationCandidate, ...] = ()


@dataclass(frozen=True)
class AcquiredText:
    pages: list[PageText]
    used_ocr: bool
    strategy: str  # pypdf|ocr_pdf|ocr_image|text|html|docx
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def full_text(self) -> str:
        return "\n".join(p.text for p in self.pages if p.text)


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class TokenUsageRecord:
    organization_id: str
    document_id: str | None
    model: str
    input_tokens: int
    output_tokens: int
    operation: str  # extraction|classification


@dataclass(frozen=True)
class ProcessOutcome:
    processed: bool
    task_id: str | None = None
    document_id: str | None = None
    status: str | None = None  # final document status
    error: str | None = None
