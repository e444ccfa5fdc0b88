"""Rasterize PDF pages into PIL images for OCR."""

from __future__ import annotations

from pdf2image import convert_from_bytes
from PIL import Image


def render_pdf_pages(pdf_bytes: bytes, *, dpi: int = 200, max_pages: int = 5) -> list[Image.Image]:
    """Render the first ``max_pages`` pages of a PDF (requires poppler)."""
    return convert_from_bytes(pdf_bytes, dpi=dpi, first_page=1, last_page=max_pages)
