# kbengine/retrieval/vector.py
from __future__ import annotations

import logging
import time
from collections.abc import Sequence

import numpy as np

from kbengine.corpus.interfaces import DocumentStore
from kbengine.obs.metrics import RETRIEVAL_LATENCY

from .interfaces import BaseSearcher, SearchHit

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine of the angle between ``a`` and ``b``.

    A zero denominator (either vector all-zero) is replaced by 1, so such
    pairs score 0. The result is clipped to [-1, 1].
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"vector dimensions differ: {va.shape} vs {vb.shape}")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb)) or 1.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


class VectorSearcher(BaseSearcher):
    """
    Brute-force cosine search over one document's stored vectors.

    Every vector row ranks on its own, so a chunk with several stored vectors
    may appear more than once. Rows whose chunk is gone are skipped.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def search(self, doc_id: str, query_vector: Sequence[float], top_k: int = 5) -> list[SearchHit]:
        rows = self.store.get_vectors_by_doc(doc_id)
        if not rows:
            return []

        chunks = {c.id: c for c in self.store.get_chunks_by_doc(doc_id)}
        started = time.perf_counter()
        scored: list[SearchHit] = []
        for row in rows:
            chunk = chunks.get(row.chunk_id)
            if chunk is None:
                logger.warning(f"Vector {row.id} refers to missing chunk {row.chunk_id}")
                continue
            scored.append(SearchHit(chunk=chunk, score=cosine_similarity(query_vector, row.vector)))

        scored.sort(key=lambda h: h.score, reverse=True)
        RETRIEVAL_LATENCY.labels(method="vector").observe(time.perf_counter() - started)
        return scored[: max(0, top_k)]
