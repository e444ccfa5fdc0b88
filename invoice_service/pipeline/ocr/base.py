from __future__ import annotations

from typing import Protocol


class OcrEngine(Protocol):
    """Anything that turns one page image (PNG bytes) into text."""

    name: str

    def recognize(self, image_bytes: bytes) -> str: ...
