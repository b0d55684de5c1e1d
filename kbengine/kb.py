# kbengine/kb.py
"""
Knowledge-base facade used by the UI/API layer.

``KnowledgeBase`` binds a store and settings to the chunker, the two
searchers, the embedding client and the background importer.
``AsyncKnowledgeBase`` exposes the same operations as coroutines that run
on worker threads, so an event loop never blocks on SQLite or scoring.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Iterable, Sequence

import httpx

from kbengine.config import Settings, get_settings
from kbengine.corpus.ingest import (
    import_chunks_incremental,
    import_chunks_incremental_async,
    import_text,
    new_doc_id,
)
from kbengine.corpus.interfaces import Chunk, DocumentMeta, DocumentStore, EmbeddingResult
from kbengine.corpus.schema import SqliteStore
from kbengine.embed.remote import EmbeddingProvider, embed_chunks_remotely
from kbengine.embed.store import save_vectors
from kbengine.errors import ValidationError
from kbengine.retrieval.bm25 import BM25Searcher
from kbengine.retrieval.interfaces import SearchHit
from kbengine.retrieval.vector import VectorSearcher
from kbengine.worker.jobs import ImportJobs, JobStatus
from kbengine.worker.pipeline import ImportTask

logger = logging.getLogger(__name__)


class KnowledgeBase:
    def __init__(self, store: DocumentStore | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.store = store or SqliteStore(
            self.settings.sqlite_path, busy_timeout_ms=self.settings.sqlite_busy_timeout_ms
        )
        self.bm25 = BM25Searcher(self.store, k1=self.settings.bm25_k1, b=self.settings.bm25_b)
        self.vectors = VectorSearcher(self.store)
        self.jobs = ImportJobs(self.store)

    # ----- import -----
    def import_text(
        self, name: str, text: str, chunk_size: int | None = None, overlap: int | None = None
    ) -> DocumentMeta:
        return import_text(
            self.store,
            name,
            text,
            chunk_size=chunk_size or self.settings.chunk_size,
            overlap=self.settings.chunk_overlap if overlap is None else overlap,
        )

    def import_chunks_incremental(self, name: str, pieces: Iterable[str]) -> DocumentMeta:
        return import_chunks_incremental(
            self.store,
            name,
            pieces,
            chunk_size=self.settings.chunk_size,
            overlap=self.settings.chunk_overlap,
            batch_size=self.settings.append_batch_size,
        )

    def start_import(
        self,
        name: str,
        ext: str,
        data: bytes,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> JobStatus:
        """Run a file import on a background worker; poll ``self.jobs`` for progress."""
        task = ImportTask(
            doc_id=new_doc_id(), name=name, ext=ext, data=data, chunk_size=chunk_size, overlap=overlap
        )
        return self.jobs.start(task)

    # ----- queries -----
    def search_in_doc(self, doc_id: str, query: str, top_k: int | None = None) -> list[SearchHit]:
        return self.bm25.search(doc_id, query, top_k or self.settings.top_k)

    def vector_search(
        self, doc_id: str, query_vector: Sequence[float], top_k: int | None = None
    ) -> list[SearchHit]:
        return self.vectors.search(doc_id, query_vector, top_k or self.settings.top_k)

    def list_all_docs(self) -> list[DocumentMeta]:
        return self.store.list_docs()

    def get_doc(self, doc_id: str) -> DocumentMeta | None:
        return self.store.get_doc(doc_id)

    def get_doc_chunks(self, doc_id: str) -> list[Chunk]:
        return self.store.get_chunks_by_doc(doc_id)

    # ----- deletion -----
    def clear_knowledge_base(self) -> None:
        self.store.clear_all()

    def delete_doc(self, doc_id: str) -> None:
        self.store.delete_doc(doc_id, batch_size=self.settings.delete_batch_size)

    # ----- embeddings -----
    def _api_key_for(self, provider: EmbeddingProvider, api_key: str | None) -> str:
        key = api_key or (
            self.settings.openai_api_key
            if provider is EmbeddingProvider.OPENAI
            else self.settings.aliyun_api_key
        )
        if not key:
            raise ValidationError(f"no API key for {provider.label}", code="missing_api_key")
        return key

    def embed_chunks_remotely(
        self,
        chunks: Sequence[Chunk],
        provider: EmbeddingProvider | str,
        api_key: str | None = None,
        client: httpx.Client | None = None,
    ) -> list[EmbeddingResult]:
        prov = EmbeddingProvider.parse(provider)
        return embed_chunks_remotely(chunks, prov, self._api_key_for(prov, api_key), client=client)

    def save_vectors(
        self, doc_id: str, chunks: Sequence[Chunk], results: Sequence[EmbeddingResult]
    ) -> int:
        return save_vectors(self.store, doc_id, chunks, results)

    def embed_and_save(
        self,
        doc_id: str,
        provider: EmbeddingProvider | str,
        api_key: str | None = None,
        client: httpx.Client | None = None,
    ) -> int:
        """Embed every chunk of a document and persist the vectors; returns the count."""
        chunks = self.get_doc_chunks(doc_id)
        results = self.embed_chunks_remotely(chunks, provider, api_key, client=client)
        saved = self.save_vectors(doc_id, chunks, results)
        logger.info(f"Embedded and saved {saved} vectors for {doc_id}")
        return saved

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


class AsyncKnowledgeBase:
    """Coroutine wrapper around KnowledgeBase; each call runs via ``asyncio.to_thread``."""

    def __init__(self, kb: KnowledgeBase | None = None):
        self.kb = kb or KnowledgeBase()

    async def import_text(self, name: str, text: str, **kwargs) -> DocumentMeta:
        return await asyncio.to_thread(self.kb.import_text, name, text, **kwargs)

    async def import_chunks_incremental(
        self, name: str, pieces: AsyncIterable[str] | Iterable[str]
    ) -> DocumentMeta:
        """Streamed import; ``pieces`` may be a plain iterable or an async iterable."""
        settings = self.kb.settings
        return await import_chunks_incremental_async(
            self.kb.store,
            name,
            pieces,
            chunk_size=settings.chunk_size,
            overlap=settings.chunk_overlap,
            batch_size=settings.append_batch_size,
        )

    async def search_in_doc(self, doc_id: str, query: str, top_k: int | None = None) -> list[SearchHit]:
        return await asyncio.to_thread(self.kb.search_in_doc, doc_id, query, top_k)

    async def vector_search(
        self, doc_id: str, query_vector: Sequence[float], top_k: int | None = None
    ) -> list[SearchHit]:
        return await asyncio.to_thread(self.kb.vector_search, doc_id, query_vector, top_k)

    async def start_import(self, name: str, ext: str, data: bytes, **kwargs) -> JobStatus:
        return await asyncio.to_thread(self.kb.start_import, name, ext, data, **kwargs)

    async def list_all_docs(self) -> list[DocumentMeta]:
        return await asyncio.to_thread(self.kb.list_all_docs)

    async def get_doc(self, doc_id: str) -> DocumentMeta | None:
        return await asyncio.to_thread(self.kb.get_doc, doc_id)

    async def get_doc_chunks(self, doc_id: str) -> list[Chunk]:
        return await asyncio.to_thread(self.kb.get_doc_chunks, doc_id)

    async def clear_knowledge_base(self) -> None:
        await asyncio.to_thread(self.kb.clear_knowledge_base)

    async def delete_doc(self, doc_id: str) -> None:
        await asyncio.to_thread(self.kb.delete_doc, doc_id)

    async def embed_chunks_remotely(
        self, chunks: Sequence[Chunk], provider: EmbeddingProvider | str, api_key: str | None = None
    ) -> list[EmbeddingResult]:
        return await asyncio.to_thread(self.kb.embed_chunks_remotely, chunks, provider, api_key)

    async def save_vectors(
        self, doc_id: str, chunks: Sequence[Chunk], results: Sequence[EmbeddingResult]
    ) -> int:
        return await asyncio.to_thread(self.kb.save_vectors, doc_id, chunks, results)

    async def embed_and_save(self, doc_id: str, provider: EmbeddingProvider | str, api_key: str | None = None) -> int:
        return await asyncio.to_thread(self.kb.embed_and_save, doc_id, provider, api_key)
