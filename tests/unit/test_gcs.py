"""Unit tests for storage path resolution."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from invoice_service.pipeline.gcs import download_bytes, gs_uri, resolve_location


class TestResolveLocation:
    @pytest.mark.parametrize(
        ("file_path", "expected"),
        [
            ("acme/2024/f.pdf", ("invoices", "acme/2024/f.pdf")),
            ("/acme/f.pdf", ("invoices", "acme/f.pdf")),
            ("gs://other-bucket/acme/f.pdf", ("other-bucket", "acme/f.pdf")),
        ],
    )
    def test_resolves(self, file_path, expected):
        assert resolve_location("invoices", file_path) == expected

    @pytest.mark.parametrize("file_path", ["", "/", "gs://", "gs://bucket", "gs://bucket/", "gs:///f.pdf"])
    def test_rejects(self, file_path):
        with pytest.raises(ValueError):
            resolve_location("invoices", file_path)


def test_download_uses_resolved_bucket():
    client = MagicMock()
    client.bucket.return_value.blob.return_value.download_as_bytes.return_value = b"%PDF"

    assert download_bytes(client, "invoices", "gs://other/a/b.pdf") == b"%PDF"
    client.bucket.assert_called_once_with("other")
    client.bucket.return_value.blob.assert_called_once_with("a/b.pdf")


def test_gs_uri():
    assert gs_uri("invoices", "a/b.pdf") == "gs://invoices/a/b.pdf"
