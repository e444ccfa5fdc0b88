"""Object storage access for queued documents.

A document's ``file_path`` is either relative to the configured bucket
(``acme/2024/facture-0042.pdf``) or a full ``gs://bucket/path`` URI when the
upload landed in another bucket.
"""

from __future__ import annotations

from google.cloud import storage


def gs_uri(bucket: str, name: str) -> str:
    return f"gs://{bucket}/{name}"


def resolve_location(default_bucket: str, file_path: str) -> tuple[str, str]:
    """Split ``file_path`` into ``(bucket, object name)``.

    Raises ``ValueError`` for an empty path or a ``gs://`` URI without an
    object name.
    """
    if file_path.startswith("gs://"):
        bucket, _, name = file_path[len("gs://"):].partition("/")
        if not bucket or not name:
            raise ValueError(f"malformed storage URI: {file_path!r}")
        return bucket, name
    name = file_path.lstrip("/")
    if not name:
        raise ValueError("empty storage path")
    return default_bucket, name


def download_bytes(client: storage.Client, bucket: str, file_path: str) -> bytes:
    bucket_name, name = resolve_location(bucket, file_path)
    blob = client.bucket(bucket_name).blob(name)
    return blob.download_as_bytes()
