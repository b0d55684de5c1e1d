# kbengine/corpus/__init__.py
"""
Corpus module: document records, chunking, extraction and storage.

Main components:
- Text chunking: overlapping sliding windows with stable chunk ids
- Extraction: PDF/DOCX/plain-text byte buffers to text
- Storage: SQLite-backed store for documents, chunks and vectors
- Inline import: single-shot and streamed document ingestion
"""

from .chunk import chunk_text, normalize_newlines, reindex_chunks
from .files import ext_for, extract_text
from .ingest import (
    import_chunks_incremental,
    import_chunks_incremental_async,
    import_text,
    new_doc_id,
)
from .interfaces import (
    Chunk,
    DocumentMeta,
    DocumentStore,
    EmbeddingResult,
    VectorRow,
    chunk_id_for,
)
from .schema import SqliteStore

__all__ = [
    # Text chunking
    "chunk_text",
    "normalize_newlines",
    "reindex_chunks",
    # Extraction
    "ext_for",
    "extract_text",
    # Import
    "import_text",
    "import_chunks_incremental",
    "import_chunks_incremental_async",
    "new_doc_id",
    # Storage
    "SqliteStore",
    # Records and interfaces
    "Chunk",
    "DocumentMeta",
    "DocumentStore",
    "EmbeddingResult",
    "VectorRow",
    "chunk_id_for",
]
