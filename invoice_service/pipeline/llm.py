"""LLM completion client.

The orchestrator only needs ``invoke(prompt) -> LlmResponse``; the Gemini
implementation below is the production one and tests pass stubs. Provider
quota/rate-limit rejections are converted to ``QuotaExceeded`` here so the
worker can requeue without parsing provider-specific errors.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from google.genai import errors as genai_errors
from google.genai import types

from invoice_service.config import LLM_MAX_OUTPUT_TOKENS, LLM_MODEL, LLM_TEMPERATURE
from invoice_service.embedding import _get_gemini_client
from invoice_service.errors import QuotaExceeded, is_quota_error
from invoice_service.pipeline.types import TokenUsage

logger = logging.getLogger(__name__)

_RETRY_DELAY_RE = re.compile(r"retry[_ ]?delay['\"]?\s*[:=]\s*['\"]?(\d+(?:\.\d+)?)s", re.IGNORECASE)


@dataclass(frozen=True)
class LlmResponse:
    text: str
    usage: TokenUsage | None
    model: str


class CompletionClient(Protocol):
    model: str

    def invoke(self, prompt: str) -> LlmResponse: ...


def extract_token_usage(metadata: Any) -> TokenUsage | None:
    """Read token counts from Gemini ``usage_metadata`` or an OpenAI-style dict.

    Returns None when no counts are present.
    """
    if metadata is None:
        return None

    def _get(*names: str) -> int:
        for n in names:
            v = metadata.get(n) if isinstance(metadata, dict) else getattr(metadata, n, None)
            if isinstance(v, int) and not isinstance(v, bool) and v > 0:
                return v
        return 0

    input_tokens = _get("prompt_token_count", "prompt_tokens", "input_tokens")
    output_tokens = _get("candidates_token_count", "completion_tokens", "output_tokens")
    if input_tokens == 0 and output_tokens == 0:
        total = _get("total_token_count", "total_tokens")
        if total == 0:
            return None
        input_tokens = total
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)


def _retry_after_seconds(exc: Exception) -> int | None:
    m = _RETRY_DELAY_RE.search(str(getattr(exc, "details", "") or exc))
    if not m:
        return None
    return int(float(m.group(1))) or None


class GeminiCompletionClient:
    def __init__(
        self,
        *,
        model: str = LLM_MODEL,
        temperature: float = LLM_TEMPERATURE,
        max_output_tokens: int = LLM_MAX_OUTPUT_TOKENS,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._client = client

    def invoke(self, prompt: str) -> LlmResponse:
        client = self._client or _get_gemini_client()
        try:
            response = client.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=self._temperature,
                    max_output_tokens=self._max_output_tokens,
                    response_mime_type="application/json",
                ),
            )
        except genai_errors.APIError as e:
            if e.code == 429 or is_quota_error(e):
                retry_after = _retry_after_seconds(e)
                logger.warning("LLM quota exceeded (model=%s, retry_after=%s)", self.model, retry_after)
                raise QuotaExceeded(f"quota exceeded: {e}", retry_after_seconds=retry_after) from e
            raise

        usage = extract_token_usage(getattr(response, "usage_metadata", None))
        return LlmResponse(text=(getattr(response, "text", "") or ""), usage=usage, model=self.model)
