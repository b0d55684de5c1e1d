# kbengine/embed/remote.py
"""
Remote embedding client.

One POST per call to an OpenAI-compatible ``/embeddings`` endpoint. The
response rows are aligned positionally with the input chunks; anything short
of a complete, well-formed response fails the whole call.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from enum import Enum
from typing import Any

import httpx

from kbengine.config import get_settings
from kbengine.corpus.interfaces import Chunk, EmbeddingResult
from kbengine.errors import EmbeddingError
from kbengine.obs.metrics import EMBED_LATENCY

logger = logging.getLogger(__name__)


class EmbeddingProvider(Enum):
    """Supported embedding providers with their endpoint and default model."""

    OPENAI = ("openai", "https://api.openai.com/v1/embeddings", "text-embedding-3-small")
    ALIYUN = (
        "aliyun",
        "https://dashscope.aliyuncs.com/compatible-mode/v1/embeddings",
        "text-embedding-v2",
    )

    def __init__(self, label: str, endpoint: str, default_model: str):
        self.label = label
        self.endpoint = endpoint
        self.default_model = default_model

    @classmethod
    def parse(cls, value: "EmbeddingProvider | str") -> "EmbeddingProvider":
        if isinstance(value, cls):
            return value
        for provider in cls:
            if provider.label == str(value).lower():
                return provider
        raise ValueError(f"Unknown embedding provider: {value!r}")

    def configured_model(self) -> str:
        settings = get_settings()
        if self is EmbeddingProvider.OPENAI:
            return settings.openai_embed_model or self.default_model
        return settings.aliyun_embed_model or self.default_model


def _parse_vectors(body: Any, expected: int) -> list[list[float]]:
    if not isinstance(body, dict) or not isinstance(body.get("data"), list):
        raise EmbeddingError("response has no 'data' array", code="malformed_response")

    rows = body["data"]
    if len(rows) != expected:
        raise EmbeddingError(
            f"expected {expected} embeddings, got {len(rows)}", code="malformed_response"
        )

    vectors: list[list[float]] = []
    for row in rows:
        emb = row.get("embedding") if isinstance(row, dict) else None
        if not isinstance(emb, list) or not all(isinstance(x, (int, float)) for x in emb):
            raise EmbeddingError("embedding row is not a numeric array", code="malformed_response")
        vectors.append([float(x) for x in emb])
    return vectors


def embed_chunks_remotely(
    chunks: Sequence[Chunk],
    provider: EmbeddingProvider | str,
    api_key: str,
    client: httpx.Client | None = None,
    model: str | None = None,
) -> list[EmbeddingResult]:
    """
    Embed a batch of chunks with one HTTP call.

    Args:
        chunks: Chunks to embed (order defines response alignment)
        provider: Provider enum member or its label ('openai' | 'aliyun')
        api_key: Bearer token for the provider
        client: Optional pre-configured httpx client
        model: Override for the provider's configured model

    Returns:
        One EmbeddingResult per input chunk, in input order

    Raises:
        EmbeddingError: On transport failure, non-2xx status or malformed body
    """
    if not chunks:
        return []

    prov = EmbeddingProvider.parse(provider)
    payload = {"model": model or prov.configured_model(), "input": [c.text for c in chunks]}
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    own_client = client is None
    http = client or httpx.Client(timeout=get_settings().embed_timeout)
    started = time.perf_counter()
    try:
        resp = http.post(prov.endpoint, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"{prov.label} embedding request failed: {e}")
        raise EmbeddingError(f"{prov.label} request failed: {e}", code="transport_error") from e
    finally:
        EMBED_LATENCY.labels(provider=prov.label).observe(time.perf_counter() - started)
        if own_client:
            http.close()

    if not resp.is_success:
        logger.error(f"{prov.label} embedding returned HTTP {resp.status_code}")
        raise EmbeddingError(
            f"{prov.label} returned HTTP {resp.status_code}",
            status_code=resp.status_code,
            code="http_error",
        )

    try:
        body = resp.json()
    except ValueError as e:
        raise EmbeddingError("response is not JSON", code="malformed_response") from e

    vectors = _parse_vectors(body, len(chunks))
    logger.info(f"Embedded {len(chunks)} chunks with {prov.label}:{payload['model']}")
    return [EmbeddingResult(chunk_id=c.id, vector=v) for c, v in zip(chunks, vectors, strict=True)]
