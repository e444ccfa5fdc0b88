"""Unit tests for the Gemini completion client and usage parsing."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.genai import errors as genai_errors

from invoice_service.errors import DownstreamStorageError, ParseFailure, QuotaExceeded, is_quota_error
from invoice_service.pipeline.llm import GeminiCompletionClient, extract_token_usage
from invoice_service.pipeline.types import TokenUsage


class TestExtractTokenUsage:
    def test_gemini_metadata(self):
        meta = SimpleNamespace(prompt_token_count=120, candidates_token_count=30, total_token_count=150)
        assert extract_token_usage(meta) == TokenUsage(120, 30)

    def test_openai_style_dict(self):
        assert extract_token_usage({"prompt_tokens": 7, "completion_tokens": 3}) == TokenUsage(7, 3)

    def test_total_only(self):
        assert extract_token_usage({"total_tokens": 42}) == TokenUsage(42, 0)

    def test_missing(self):
        assert extract_token_usage(None) is None
        assert extract_token_usage(SimpleNamespace(prompt_token_count=None)) is None


def _client(**kwargs):
    client = MagicMock()
    client.models.generate_content = MagicMock(**kwargs)
    return client


class TestGeminiCompletionClient:
    def test_invoke(self):
        response = SimpleNamespace(
            text='{"invoice_number": "F-1"}',
            usage_metadata=SimpleNamespace(prompt_token_count=10, candidates_token_count=5),
        )
        client = _client(return_value=response)

        out = GeminiCompletionClient(model="gemini-test", client=client).invoke("prompt")

        assert out.text == '{"invoice_number": "F-1"}'
        assert out.usage == TokenUsage(10, 5)
        assert out.model == "gemini-test"
        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert kwargs["contents"] == "prompt"
        assert kwargs["config"].response_mime_type == "application/json"

    def test_none_text(self):
        client = _client(return_value=SimpleNamespace(text=None, usage_metadata=None))
        out = GeminiCompletionClient(client=client).invoke("prompt")
        assert out.text == ""
        assert out.usage is None

    def test_rate_limit_becomes_quota_exceeded(self):
        error = genai_errors.ClientError(
            429,
            {
                "error": {
                    "code": 429,
                    "message": "Resource has been exhausted (e.g. check quota).",
                    "status": "RESOURCE_EXHAUSTED",
                    "details": [{"retryDelay": "17s"}],
                }
            },
        )
        client = _client(side_effect=error)

        with pytest.raises(QuotaExceeded) as exc_info:
            GeminiCompletionClient(client=client).invoke("prompt")

        assert exc_info.value.retry_after_seconds == 17
        assert exc_info.value.__cause__ is error

    def test_other_api_errors_propagate(self):
        error = genai_errors.ClientError(
            400, {"error": {"code": 400, "message": "Invalid argument", "status": "INVALID_ARGUMENT"}}
        )
        client = _client(side_effect=error)

        with pytest.raises(genai_errors.ClientError):
            GeminiCompletionClient(client=client).invoke("prompt")


class TestIsQuotaError:
    @pytest.mark.parametrize(
        "exc",
        [
            QuotaExceeded(),
            RuntimeError("429 Too Many Requests"),
            RuntimeError("RESOURCE_EXHAUSTED: Quota exceeded for metric"),
            RuntimeError("rate limit reached"),
        ],
    )
    def test_quota(self, exc):
        assert is_quota_error(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            ValueError("invalid JSON"),
            OSError("connection reset on 5f1c4290-7c1e-4b0a-9d2e-1a2b3c4d5e6f"),
            RuntimeError("invoice 14290 rejected"),
            DownstreamStorageError("persisting document 5f1c-429-ab failed: connection reset"),
            ParseFailure("quota field missing in 429 response"),
        ],
    )
    def test_not_quota(self, exc):
        assert not is_quota_error(exc)
