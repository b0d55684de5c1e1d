# kbengine/corpus/chunk.py
"""
Text chunking utilities for document processing.

This module provides functions for:
- Normalizing line endings before chunking
- Creating overlapping sliding window chunks with stable ids
- Re-keying chunks so a streamed import keeps contiguous indices
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .interfaces import Chunk, chunk_id_for

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_SIZE = 800
DEFAULT_OVERLAP = 100


def normalize_newlines(text: str) -> str:
    """Strip carriage returns; no other mutation is applied."""
    return (text or "").replace("\r", "")


def chunk_text(
    doc_id: str,
    text: str,
    size: int = DEFAULT_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[Chunk]:
    """
    Split text into overlapping sliding windows.

    Each window spans ``[i, min(i + size, len(text)))``; the next one starts
    ``overlap`` characters before the previous end. Chunking stops once a
    window reaches the end of the text, so the same inputs always yield the
    same boundaries.

    Args:
        doc_id: Owning document id, used to derive chunk ids
        text: Raw text to chunk
        size: Maximum characters per chunk
        overlap: Number of characters shared by consecutive chunks

    Returns:
        Chunks with contiguous indices starting at 0

    Raises:
        ValueError: If size/overlap violate ``0 <= overlap < size``
    """
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")

    if overlap < 0:
        raise ValueError(f"overlap must be non-negative, got {overlap}")

    if overlap >= size:
        raise ValueError(f"overlap ({overlap}) must be smaller than size ({size})")

    clean = normalize_newlines(text)
    chunks: list[Chunk] = []
    i = 0

    while i < len(clean):
        j = min(len(clean), i + size)
        index = len(chunks)
        chunks.append(Chunk(id=chunk_id_for(doc_id, index), doc_id=doc_id, index=index, text=clean[i:j]))

        if j >= len(clean):
            break

        i = max(0, j - overlap)

    logger.debug(f"Created {len(chunks)} chunks for {doc_id} ({len(clean)} chars)")
    return chunks


def reindex_chunks(chunks: Iterable[Chunk], offset: int) -> list[Chunk]:
    """Shift chunk indices (and ids) by ``offset``."""
    return [
        Chunk(
            id=chunk_id_for(c.doc_id, c.index + offset),
            doc_id=c.doc_id,
            index=c.index + offset,
            text=c.text,
        )
        for c in chunks
    ]
