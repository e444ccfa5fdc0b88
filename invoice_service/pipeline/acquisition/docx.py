from __future__ import annotations

import io

import docx  # python-docx

from invoice_service.pipeline.acquisition.base import Acquirer, normalize_text
from invoice_service.pipeline.types import AcquiredText, PageText

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class DocxAcquirer(Acquirer):
    def can_handle(self, mime_type: str) -> bool:
        return mime_type == DOCX_MIME

    def acquire(self, *, data: bytes, mime_type: str) -> AcquiredText:
        d = docx.Document(io.BytesIO(data))
        parts: list[str] = [p.text for p in d.paragraphs if p.text and p.text.strip()]
        # Invoice lines usually live in tables, not paragraphs.
        for table in d.tables:
            for row in table.rows:
                cells = [c.text.strip() for c in row.cells if c.text and c.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        text = normalize_text("\n".join(parts))
        return AcquiredText(pages=[PageText(index=0, text=text)], used_ocr=False, strategy="docx")
