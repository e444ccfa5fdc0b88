"""Gemini client factory and embedding helpers.

Embeddings are only used to rank chunks of an oversized document against the
extraction query; nothing is persisted.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import lru_cache

import numpy as np
from google import genai

from invoice_service.config import (
    EMBED_BATCH_SIZE,
    EMBED_MAX_RETRIES,
    EMBED_RETRY_BASE_SECONDS,
    EMBEDDING_DIM,
    EMBEDDING_MODEL,
    EMBEDDING_TASK_DOC,
    EMBEDDING_TASK_QUERY,
    VERTEX_LOCATION,
    VERTEX_PROJECT,
)

logger = logging.getLogger(__name__)


def _is_gcp_environment() -> bool:
    """Detect if running on GCP (Cloud Run, GCE, etc.)."""
    return bool(os.getenv("K_SERVICE") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS"))


@lru_cache(maxsize=1)
def _get_gemini_client() -> genai.Client:
    """Cached Gemini client with automatic credential detection."""
    if _is_gcp_environment():
        return genai.Client(vertexai=True, project=VERTEX_PROJECT, location=VERTEX_LOCATION)
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ValueError("GEMINI_API_KEY not set. Set it for local dev or run on GCP for ADC.")
    return genai.Client(api_key=api_key)


def embed_texts(texts: list[str], task_type: str = EMBEDDING_TASK_DOC) -> np.ndarray:
    """Embed ``texts`` in batches; returns an L2-normalised (n, dim) float32 matrix.

    Raises:
        RuntimeError: If the API returns no embeddings.
        ValueError: On a count or dimension mismatch.
    """
    if not texts:
        return np.zeros((0, EMBEDDING_DIM), dtype=np.float32)

    client = _get_gemini_client()
    rows: list[list[float]] = []
    batch_size = max(1, EMBED_BATCH_SIZE)
    for start in range(0, len(texts), batch_size):
        batch = texts[start : start + batch_size]
        response = client.models.embed_content(
            model=EMBEDDING_MODEL,
            contents=batch,
            config={"task_type": task_type, "output_dimensionality": EMBEDDING_DIM},
        )
        if response.embeddings is None:
            raise RuntimeError("Embedding response was empty")
        if len(response.embeddings) != len(batch):
            raise ValueError(
                f"Embedding count mismatch: got {len(response.embeddings)}, expected {len(batch)}"
            )
        for i, emb in enumerate(response.embeddings):
            if emb.values is None or len(emb.values) != EMBEDDING_DIM:
                got = None if emb.values is None else len(emb.values)
                raise ValueError(f"Embedding dimension mismatch at index {start + i}: got {got}, expected {EMBEDDING_DIM}")
            rows.append(list(emb.values))

    mat = np.asarray(rows, dtype=np.float32)
    norms = np.linalg.norm(mat, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return mat / norms


def top_k_by_similarity(query_vec: np.ndarray, chunk_vecs: np.ndarray, k: int) -> list[int]:
    """Indices of the ``k`` most similar chunks, returned in ascending (document) order."""
    if chunk_vecs.shape[0] == 0 or k <= 0:
        return []
    scores = chunk_vecs @ query_vec.reshape(-1)
    # argsort is ascending; stable so ties keep document order.
    best = np.argsort(-scores, kind="stable")[:k]
    return sorted(int(i) for i in best)


async def rank_chunks(query: str, chunks: list[str], k: int) -> list[int]:
    """Embed query and chunks off the event loop with bounded retries."""
    retries = max(0, EMBED_MAX_RETRIES)
    for attempt in range(retries + 1):
        try:
            chunk_vecs = await asyncio.to_thread(embed_texts, chunks, EMBEDDING_TASK_DOC)
            query_vecs = await asyncio.to_thread(embed_texts, [query], EMBEDDING_TASK_QUERY)
            return top_k_by_similarity(query_vecs[0], chunk_vecs, k)
        except Exception:
            if attempt >= retries:
                raise
            backoff_seconds = EMBED_RETRY_BASE_SECONDS * (2**attempt)
            logger.warning(
                "Embedding attempt %d/%d failed; retrying in %.2fs",
                attempt + 1,
                retries + 1,
                backoff_seconds,
            )
            await asyncio.sleep(backoff_seconds)

    raise RuntimeError("Unreachable embedding retry path")
