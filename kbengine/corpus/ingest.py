# kbengine/corpus/ingest.py
"""
Inline document import.

This module provides functions for:
- Importing a small document in a single transaction
- Importing a document streamed as text pieces (sync or async), appended batch by batch
- Generating document ids and metadata
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterable, Iterable
from dataclasses import replace

from kbengine.errors import ValidationError

from .chunk import DEFAULT_OVERLAP, DEFAULT_SIZE, chunk_text, reindex_chunks
from .interfaces import DocumentMeta, DocumentStore

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_NAME = "Untitled"
DEFAULT_APPEND_BATCH_SIZE = 200


def new_doc_id() -> str:
    """Return a fresh document id: ``doc-<epoch ms>-<6 hex chars>``."""
    return f"doc-{now_ms()}-{uuid.uuid4().hex[:6]}"


def now_ms() -> int:
    return int(time.time() * 1000)


def import_text(
    store: DocumentStore,
    name: str,
    text: str,
    chunk_size: int = DEFAULT_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> DocumentMeta:
    """
    Chunk a whole document and persist it in one transaction.

    Args:
        store: Target store
        name: Display name ('Untitled' when blank)
        text: Document text; surrounding whitespace is trimmed
        chunk_size: Maximum characters per chunk
        overlap: Characters shared by consecutive chunks

    Returns:
        The stored document metadata

    Raises:
        ValidationError: If the text is empty after trimming
        StorageError: If the transaction fails
    """
    clean = (text or "").strip()
    if not clean:
        raise ValidationError("text is empty", code="empty_text")

    doc_id = new_doc_id()
    chunks = chunk_text(doc_id, clean, chunk_size, overlap)
    meta = DocumentMeta(id=doc_id, name=name or DEFAULT_NAME, created_at=now_ms(), size=len(clean))
    store.put_doc(meta, chunks)

    logger.info(f"Imported {meta.name!r} as {doc_id} ({len(chunks)} chunks)")
    return meta


class _StreamedImport:
    """Running state of one streamed import: the reserved meta, index offset and length."""

    def __init__(self, store: DocumentStore, name: str, chunk_size: int, overlap: int, batch_size: int):
        self.store = store
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.batch_size = batch_size
        self.meta = DocumentMeta(id=new_doc_id(), name=name or DEFAULT_NAME, created_at=now_ms(), size=0)
        self.total = 0
        self.offset = 0

    def begin(self) -> None:
        self.store.create_doc(self.meta)

    def add(self, piece: str) -> None:
        text = str(piece or "")
        self.total += len(text)
        chunks = reindex_chunks(chunk_text(self.meta.id, text, self.chunk_size, self.overlap), self.offset)
        self.offset += len(chunks)
        self.store.append_chunks(chunks, self.batch_size)
        logger.debug(f"{self.meta.id}: appended {len(chunks)} chunks (offset now {self.offset})")

    def finish(self) -> DocumentMeta:
        self.store.update_doc_size(self.meta.id, self.total)
        logger.info(f"Incrementally imported {self.meta.name!r} as {self.meta.id} ({self.offset} chunks)")
        return replace(self.meta, size=self.total)

    def discard(self) -> None:
        logger.warning(f"Streamed import {self.meta.id} failed after {self.offset} chunks, deleting it")
        self.store.delete_doc(self.meta.id)


def import_chunks_incremental(
    store: DocumentStore,
    name: str,
    pieces: Iterable[str],
    chunk_size: int = DEFAULT_SIZE,
    overlap: int = DEFAULT_OVERLAP,
    batch_size: int = DEFAULT_APPEND_BATCH_SIZE,
) -> DocumentMeta:
    """
    Import a document delivered as a stream of text pieces.

    The metadata row is created first with size 0. Each piece is chunked on its
    own and appended; the running index offset keeps chunk indices contiguous
    across pieces. The final size is written back once the stream is exhausted.
    If the stream or a write fails part way, the partial document is deleted
    and the error re-raised.

    Async iterables go through ``import_chunks_incremental_async``.
    """
    if hasattr(pieces, "__aiter__"):
        raise TypeError("async iterable given; use import_chunks_incremental_async")

    stream = _StreamedImport(store, name, chunk_size, overlap, batch_size)
    stream.begin()
    try:
        for piece in pieces:
            stream.add(piece)
    except Exception:
        stream.discard()
        raise
    return stream.finish()


async def import_chunks_incremental_async(
    store: DocumentStore,
    name: str,
    pieces: AsyncIterable[str] | Iterable[str],
    chunk_size: int = DEFAULT_SIZE,
    overlap: int = DEFAULT_OVERLAP,
    batch_size: int = DEFAULT_APPEND_BATCH_SIZE,
) -> DocumentMeta:
    """Same as ``import_chunks_incremental``, consuming ``pieces`` with ``async for``.

    Store writes and chunking run via ``asyncio.to_thread``.
    """
    if not hasattr(pieces, "__aiter__"):
        return await asyncio.to_thread(
            import_chunks_incremental, store, name, pieces, chunk_size, overlap, batch_size
        )

    stream = _StreamedImport(store, name, chunk_size, overlap, batch_size)
    await asyncio.to_thread(stream.begin)
    try:
        async for piece in pieces:
            await asyncio.to_thread(stream.add, piece)
    except Exception:
        await asyncio.to_thread(stream.discard)
        raise
    return await asyncio.to_thread(stream.finish)
