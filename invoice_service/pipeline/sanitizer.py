"""Turn raw LLM text into a JSON object without raising mid-pipeline.

Models wrap JSON in markdown fences, prepend "Here is the JSON:", or leave
trailing commentary. ``sanitize_response`` strips all of that and returns a
``ParsedResponse`` carrying either the object or the reason it failed; the
caller decides whether that failure is fatal.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ParsedResponse:
    data: dict[str, Any] | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None


def strip_code_fences(raw: str) -> str:
    m = _FENCE_RE.search(raw)
    if m:
        return m.group(1).strip()
    # Unterminated fence: drop the opening line.
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
    return text.strip()


def outermost_object(text: str) -> str | None:
    """Return the substring from the first '{' to the last '}'."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def sanitize_response(raw: str | None) -> ParsedResponse:
    if not raw or not raw.strip():
        return ParsedResponse(data=None, error="empty response")

    text = strip_code_fences(raw)
    block = outermost_object(text)
    if block is None:
        return ParsedResponse(data=None, error="no JSON object found")

    try:
        obj = json.loads(block)
    except json.JSONDecodeError as e:
        # Trailing commas are the most common defect; retry once without them.
        try:
            obj = json.loads(re.sub(r",\s*([}\]])", r"\1", block))
        except json.JSONDecodeError:
            return ParsedResponse(data=None, error=f"invalid JSON: {e.msg} at line {e.lineno} col {e.colno}")

    if not isinstance(obj, dict):
        return ParsedResponse(data=None, error=f"expected JSON object, got {type(obj).__name__}")
    return ParsedResponse(data=obj)
