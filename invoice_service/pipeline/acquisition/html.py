from __future__ import annotations

from bs4 import BeautifulSoup

from invoice_service.pipeline.acquisition.base import Acquirer, normalize_text
from invoice_service.pipeline.types import AcquiredText, PageText


class HtmlAcquirer(Acquirer):
    """E-mailed invoices often arrive as an HTML body rather than a file."""

    def can_handle(self, mime_type: str) -> bool:
        return mime_type in ("text/html", "application/xhtml+xml")

    def acquire(self, *, data: bytes, mime_type: str) -> AcquiredText:
        raw = data.decode("utf-8", errors="ignore")
        soup = BeautifulSoup(raw, "lxml")
        # Remove script/style
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        text = normalize_text(soup.get_text(separator="\n"))
        return AcquiredText(pages=[PageText(index=0, text=text)], used_ocr=False, strategy="html")
