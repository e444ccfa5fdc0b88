from __future__ import annotations

import io
import logging

from PIL import Image

from invoice_service.pipeline.acquisition.base import Acquirer, normalize_text
from invoice_service.pipeline.ocr.rotation import RotationSearch
from invoice_service.pipeline.types import AcquiredText, PageText

logger = logging.getLogger(__name__)


class ImageAcquirer(Acquirer):
    def __init__(self, *, rotation_search: RotationSearch) -> None:
        self._search = rotation_search

    def can_handle(self, mime_type: str) -> bool:
        return mime_type.startswith("image/")

    def acquire(self, *, data: bytes, mime_type: str) -> AcquiredText:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            res = self._search.search(img)

        logger.info(
            "Image OCR: best angle=%d score=%d tried=%s early_exit=%s",
            res.best.angle,
            res.best.score,
            list(res.tried),
            res.early_exit,
        )
        page = PageText(
            index=0,
            text=normalize_text(res.best.text),
            angle=res.best.angle,
            score=res.best.score,
            alternates=res.alternates,
        )
        return AcquiredText(
            pages=[page],
            used_ocr=True,
            strategy="ocr_image",
            meta={"angles_tried": [list(res.tried)]},
        )
