"""Tesseract OCR engine (pytesseract).

Tesseract must be installed on the system; the binary is probed lazily on
first use so that importing this module never fails on a dev laptop.
"""

from __future__ import annotations

import io
import logging

import pytesseract
from PIL import Image

logger = logging.getLogger(__name__)


class TesseractEngine:
    name = "tesseract"

    def __init__(self, *, languages: str = "fra+eng", psm: int = 3, oem: int = 3, extra_config: str = "") -> None:
        self._languages = languages
        self._psm = psm
        self._oem = oem
        self._extra_config = extra_config
        self._version_logged = False

    def _build_config(self) -> str:
        parts = [f"--psm {self._psm}", f"--oem {self._oem}"]
        if self._extra_config:
            parts.append(self._extra_config)
        return " ".join(parts)

    def recognize(self, image_bytes: bytes) -> str:
        if not self._version_logged:
            logger.info("Tesseract version: %s (lang=%s)", pytesseract.get_tesseract_version(), self._languages)
            self._version_logged = True

        with Image.open(io.BytesIO(image_bytes)) as image:
            if image.mode not in ("L", "RGB"):
                image = image.convert("RGB")
            text = pytesseract.image_to_string(image, lang=self._languages, config=self._build_config())
        return text or ""
