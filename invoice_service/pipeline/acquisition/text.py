from __future__ import annotations

from invoice_service.pipeline.acquisition.base import Acquirer, normalize_text
from invoice_service.pipeline.types import AcquiredText, PageText


class TextAcquirer(Acquirer):
    def can_handle(self, mime_type: str) -> bool:
        return mime_type in ("text/plain", "text/csv", "text/markdown")

    def acquire(self, *, data: bytes, mime_type: str) -> AcquiredText:
        text = normalize_text(data.decode("utf-8", errors="ignore"))
        return AcquiredText(pages=[PageText(index=0, text=text)], used_ocr=False, strategy="text")
