from __future__ import annotations

import io
import logging

from pypdf import PdfReader

from invoice_service.pipeline.acquisition.base import Acquirer, normalize_text
from invoice_service.pipeline.ocr import render
from invoice_service.pipeline.ocr.rotation import RotationSearch
from invoice_service.pipeline.types import AcquiredText, PageText

logger = logging.getLogger(__name__)


class PdfAcquirer(Acquirer):
    def __init__(
        self,
        *,
        rotation_search: RotationSearch | None,
        min_native_chars: int,
        ocr_max_pages: int,
        render_dpi: int = 200,
    ) -> None:
        self._search = rotation_search
        self._min = max(1, int(min_native_chars))
        self._max_pages = max(1, int(ocr_max_pages))
        self._dpi = render_dpi

    def can_handle(self, mime_type: str) -> bool:
        return mime_type == "application/pdf"

    def acquire(self, *, data: bytes, mime_type: str) -> AcquiredText:
        # Try the text layer first, one PageText per page that has text
        pages = None
        native: list[PageText] = []
        try:
            r = PdfReader(io.BytesIO(data))
            pages = len(r.pages)
            for idx, p in enumerate(r.pages):
                t = normalize_text(p.extract_text() or "")
                if t:
                    native.append(PageText(index=idx, text=t))
        except Exception as e:
            logger.warning("PyPDF text extraction failed, falling back to OCR: %s", e)
            native = []

        native_chars = sum(len(p.text) for p in native)

        # Below the threshold the PDF is a scan without a usable text layer.
        if native_chars >= self._min or self._search is None:
            if native_chars < self._min:
                logger.warning("PDF has no text layer and OCR is disabled")
            return AcquiredText(
                pages=native,
                used_ocr=False,
                strategy="pypdf",
                meta={"pdf_pages": pages, "native_chars": native_chars},
            )

        images = render.render_pdf_pages(data, dpi=self._dpi, max_pages=self._max_pages)
        page_texts: list[PageText] = []
        angles_tried: list[list[int]] = []
        for idx, img in enumerate(images):
            res = self._search.search(img)
            angles_tried.append(list(res.tried))
            text = normalize_text(res.best.text)
            logger.info(
                "PDF page %d OCR: best angle=%d score=%d tried=%s early_exit=%s",
                idx + 1,
                res.best.angle,
                res.best.score,
                list(res.tried),
                res.early_exit,
            )
            if not text:
                continue
            page_texts.append(
                PageText(
                    index=idx,
                    text=text,
                    angle=res.best.angle,
                    score=res.best.score,
                    alternates=res.alternates,
                )
            )

        return AcquiredText(
            pages=page_texts,
            used_ocr=True,
            strategy="ocr_pdf",
            meta={
                "pdf_pages": pages,
                "native_chars": native_chars,
                "ocr_pages": len(images),
                "angles_tried": angles_tried,
            },
        )
