# kbengine/retrieval/bm25.py
from __future__ import annotations

import logging
import math
import re
import time
from collections import Counter

import numpy as np

from kbengine.corpus.interfaces import DocumentStore
from kbengine.obs.metrics import RETRIEVAL_LATENCY

from .interfaces import BaseSearcher, SearchHit

logger = logging.getLogger(__name__)

DEFAULT_K1 = 1.5
DEFAULT_B = 0.75
ABSENT_DF = 0.5  # smoothed document frequency for terms no chunk contains

# keep ASCII alphanumerics, CJK ideographs and whitespace
_STRIP = re.compile(r"[^a-z0-9一-龥\s]")


def tokenize(text: str) -> list[str]:
    return _STRIP.sub(" ", (text or "").lower()).split()


def bm25_scores(
    query_tokens: list[str],
    docs_tokens: list[list[str]],
    k1: float = DEFAULT_K1,
    b: float = DEFAULT_B,
) -> np.ndarray:
    """
    Okapi BM25 with statistics local to ``docs_tokens``.

    Repeated query tokens contribute once per occurrence.
    """
    n = len(docs_tokens)
    if n == 0:
        return np.zeros(0, dtype=np.float64)

    freqs = [Counter(tokens) for tokens in docs_tokens]
    dl = np.array([len(tokens) or 1 for tokens in docs_tokens], dtype=np.float64)
    avgdl = (sum(len(tokens) for tokens in docs_tokens) / n) or 1.0
    df: Counter[str] = Counter()
    for f in freqs:
        df.update(f.keys())

    norm = k1 * (1 - b + b * dl / avgdl)
    scores = np.zeros(n, dtype=np.float64)
    for q in query_tokens:
        n_q = df.get(q) or ABSENT_DF
        idf = math.log(1 + (n - n_q + 0.5) / (n_q + 0.5))
        f_q = np.array([f.get(q, 0) for f in freqs], dtype=np.float64)
        denom = f_q + norm
        denom[denom == 0] = 1.0
        scores += idf * (f_q * (k1 + 1)) / denom
    return scores


class BM25Searcher(BaseSearcher):
    """
    In-memory BM25 over a single document's chunks.
    Statistics are recomputed on every call from the store's current chunks.
    """

    def __init__(self, store: DocumentStore, k1: float = DEFAULT_K1, b: float = DEFAULT_B):
        self.store = store
        self.k1 = k1
        self.b = b

    def search(self, doc_id: str, query: str, top_k: int = 5) -> list[SearchHit]:
        if not query or not query.strip():
            return []
        chunks = self.store.get_chunks_by_doc(doc_id)
        if not chunks:
            return []

        started = time.perf_counter()
        scores = bm25_scores(tokenize(query), [tokenize(c.text) for c in chunks], self.k1, self.b)
        # stable sort keeps index order among equal scores
        order = np.argsort(-scores, kind="stable")[: max(0, top_k)]
        RETRIEVAL_LATENCY.labels(method="bm25").observe(time.perf_counter() - started)

        logger.debug(f"BM25 scored {len(chunks)} chunks of {doc_id} for {query!r}")
        return [SearchHit(chunk=chunks[i], score=float(scores[i])) for i in order.tolist()]
