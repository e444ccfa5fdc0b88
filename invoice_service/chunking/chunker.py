"""Overlapping character chunks for the extraction retrieval context.

Long OCR dumps (multi-page statements, contracts stapled to an invoice) do not
fit a single prompt. The text is split hierarchically on paragraph, line,
sentence and word boundaries so no chunk exceeds ``chunk_size``, then each
chunk is prefixed with the tail of its predecessor so a line item split at a
boundary stays readable in at least one chunk.
"""

from __future__ import annotations

import logging

from invoice_service.config import CHUNK_OVERLAP, CHUNK_SIZE

logger = logging.getLogger(__name__)

_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", ".\n", "? ", "! ", " ", "")


def chunk_text(text: str, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP) -> list[str]:
    """Split ``text`` into chunks of at most ``chunk_size`` characters before overlap.

    Returns an empty list for blank input.
    """
    if not text or not text.strip():
        return []

    chunk_size, chunk_overlap = _validate_chunk_params(chunk_size, chunk_overlap)
    pieces = _split(text, _SEPARATORS, chunk_size)
    return _with_overlap(pieces, chunk_overlap)


def _validate_chunk_params(chunk_size: int, chunk_overlap: int) -> tuple[int, int]:
    chunk_size = int(chunk_size)
    chunk_overlap = int(chunk_overlap)

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")

    if chunk_overlap < 0:
        logger.warning("chunk_overlap < 0 (%d); clamping to 0", chunk_overlap)
        chunk_overlap = 0

    if chunk_overlap >= chunk_size:
        clamped = max(min(chunk_size // 2, chunk_size - 1), 0)
        logger.warning(
            "chunk_overlap (%d) >= chunk_size (%d); clamping overlap to %d",
            chunk_overlap,
            chunk_size,
            clamped,
        )
        chunk_overlap = clamped

    return chunk_size, chunk_overlap


def _with_overlap(pieces: list[str], overlap: int) -> list[str]:
    if overlap <= 0 or len(pieces) <= 1:
        return pieces

    out = [pieces[0]]
    for prev, cur in zip(pieces, pieces[1:]):
        tail = prev[-overlap:]
        out.append(cur if cur.startswith(tail) else tail + cur)
    return out


def _split(text: str, separators: tuple[str, ...], chunk_size: int) -> list[str]:
    """Recursively split on the coarsest separator present; every result fits chunk_size."""
    if len(text) <= chunk_size:
        return [text] if text.strip() else []

    sep, rest = separators[0], separators[1:]
    if sep == "":
        return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]
    if sep not in text:
        return _split(text, rest, chunk_size)

    segments = text.split(sep)
    # Keep the separator attached so joining chunks reproduces the input.
    parts = [s + sep for s in segments[:-1]] + [segments[-1]]

    chunks: list[str] = []
    current = ""
    for part in parts:
        if not part:
            continue
        if len(part) > chunk_size:
            if current.strip():
                chunks.append(current)
            current = ""
            chunks.extend(_split(part, rest, chunk_size))
        elif len(current) + len(part) <= chunk_size:
            current += part
        else:
            if current.strip():
                chunks.append(current)
            current = part

    if current.strip():
        chunks.append(current)
    return chunks
