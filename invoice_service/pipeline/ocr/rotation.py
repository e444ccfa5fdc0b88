"""Rotation search for scanned pages.

Phone scans and multi-function printers routinely deliver pages rotated by
a quarter or half turn, and OCR on a rotated page returns garbage rather
than failing. Each page is therefore OCR'd at 0/90/180/270 degrees and the
reading with the best quality score wins:

    score = chars + 20 * valid_words - 5 * symbols

where ``chars`` counts non-whitespace characters, a valid word is an
alphanumeric token longer than two characters and a symbol is any other
non-whitespace character. The search stops as soon as a reading is good
enough; the runner-up readings are kept so extraction can retry on them.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageFilter, ImageOps

from invoice_service.pipeline.ocr.base import OcrEngine
from invoice_service.pipeline.types import RotationCandidate

logger = logging.getLogger(__name__)

ROTATION_ANGLES: tuple[int, ...] = (0, 90, 180, 270)


@dataclass(frozen=True)
class TextQuality:
    chars: int
    valid_words: int
    symbols: int

    @property
    def score(self) -> int:
        return self.chars + 20 * self.valid_words - 5 * self.symbols


def score_text(text: str) -> TextQuality:
    chars = 0
    symbols = 0
    for ch in text:
        if ch.isspace():
            continue
        chars += 1
        if not ch.isalnum():
            symbols += 1
    valid_words = sum(1 for tok in text.split() if len(tok) > 2 and tok.isalnum())
    return TextQuality(chars=chars, valid_words=valid_words, symbols=symbols)


def preprocess_image(image: Image.Image, angle: int = 0) -> bytes:
    """Rotate, grayscale, normalize and sharpen; returns PNG bytes."""
    img = image.rotate(angle, expand=True) if angle else image
    img = ImageOps.grayscale(img)
    img = ImageOps.autocontrast(img)
    img = img.filter(ImageFilter.SHARPEN)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@dataclass(frozen=True)
class RotationSearchResult:
    best: RotationCandidate
    alternates: tuple[RotationCandidate, ...]
    tried: tuple[int, ...]
    early_exit: bool


class RotationSearch:
    def __init__(
        self,
        engine: OcrEngine,
        *,
        good_enough_words: int = 50,
        good_enough_symbols: int = 10,
        good_enough_score: int = 1500,
        max_alternates: int = 2,
        angles: tuple[int, ...] = ROTATION_ANGLES,
    ) -> None:
        self._engine = engine
        self._min_words = good_enough_words
        self._max_symbols = good_enough_symbols
        self._min_score = good_enough_score
        self._max_alternates = max(0, max_alternates)
        self._angles = angles

    def is_good_enough(self, quality: TextQuality) -> bool:
        return (
            quality.valid_words > self._min_words
            and quality.symbols < self._max_symbols
            and quality.score > self._min_score
        )

    def search(self, image: Image.Image) -> RotationSearchResult:
        candidates: list[RotationCandidate] = []
        tried: list[int] = []
        early_exit = False

        for angle in self._angles:
            tried.append(angle)
            try:
                text = self._engine.recognize(preprocess_image(image, angle)).strip()
            except Exception as e:
                # One bad angle does not sink the page; an all-empty page is
                # reported upstream as unreadable.
                logger.warning("OCR failed at %d degrees (%s): %s", angle, self._engine.name, e)
                continue

            quality = score_text(text)
            candidates.append(RotationCandidate(angle=angle, text=text, score=quality.score))
            logger.debug(
                "OCR angle=%d chars=%d words=%d symbols=%d score=%d",
                angle,
                quality.chars,
                quality.valid_words,
                quality.symbols,
                quality.score,
            )

            if self.is_good_enough(quality):
                early_exit = True
                break

        if not candidates:
            return RotationSearchResult(
                best=RotationCandidate(angle=0, text="", score=0),
                alternates=(),
                tried=tuple(tried),
                early_exit=False,
            )

        # Stable sort keeps evaluation order among equal scores.
        ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
        best = ranked[0]
        alternates = tuple(c for c in ranked[1:] if c.text)[: self._max_alternates]
        return RotationSearchResult(best=best, alternates=alternates, tried=tuple(tried), early_exit=early_exit)
