from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from invoice_service.errors import UnreadableDocument
from invoice_service.pipeline.types import AcquiredText


class Acquirer(ABC):
    @abstractmethod
    def can_handle(self, mime_type: str) -> bool: ...

    @abstractmethod
    def acquire(self, *, data: bytes, mime_type: str) -> AcquiredText: ...


def normalize_text(text: str) -> str:
    if not text:
        return ""
    # Remove null bytes, normalize whitespace a bit
    text = text.replace("\x00", "")
    # Collapse very long runs of blank lines
    while "\n\n\n\n" in text:
        text = text.replace("\n\n\n\n", "\n\n\n")
    return text.strip()


def acquire_text(acquirers: Sequence[Acquirer], *, data: bytes, mime_type: str) -> AcquiredText:
    """Pick the first acquirer for ``mime_type`` and run it.

    Raises UnreadableDocument when the format is unsupported or no text
    came out, even after OCR.
    """
    acquirer = next((a for a in acquirers if a.can_handle(mime_type)), None)
    if acquirer is None:
        raise UnreadableDocument(f"Unsupported mime type: {mime_type}")

    result = acquirer.acquire(data=data, mime_type=mime_type)
    if not result.full_text.strip():
        raise UnreadableDocument(f"No text extracted from document ({result.strategy})")
    return result
