# kbengine/embed/store.py
from __future__ import annotations

import logging
from collections.abc import Sequence

from kbengine.corpus.interfaces import Chunk, DocumentStore, EmbeddingResult, VectorRow
from kbengine.errors import ValidationError

logger = logging.getLogger(__name__)


def vector_id_for(chunk_id: str) -> str:
    return f"v_{chunk_id}"


def save_vectors(
    store: DocumentStore,
    doc_id: str,
    chunks: Sequence[Chunk],
    results: Sequence[EmbeddingResult],
) -> int:
    """
    Persist embedding results as VectorRows keyed ``v_<chunk_id>``.

    Saving again for the same chunk replaces the earlier row. Results for chunk
    ids outside ``chunks`` are rejected before anything is written.
    """
    known = {c.id for c in chunks}
    unknown = [r.chunk_id for r in results if r.chunk_id not in known]
    if unknown:
        raise ValidationError(
            f"embedding results for unknown chunks: {unknown[:3]}", code="unknown_chunk"
        )

    rows = [
        VectorRow(id=vector_id_for(r.chunk_id), doc_id=doc_id, chunk_id=r.chunk_id, vector=list(r.vector))
        for r in results
    ]
    store.put_vectors(rows)
    logger.info(f"Saved {len(rows)} vectors for {doc_id}")
    return len(rows)
