"""
Core record types and the storage interface for the knowledge base.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field


@dataclass(frozen=True)
class DocumentMeta:
    """Metadata for one ingested document. ``created_at`` is epoch milliseconds."""

    id: str
    name: str
    created_at: int
    size: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Chunk:
    """A slice of a document's text; ``id`` is always ``f"{doc_id}:{index}"``."""

    id: str
    doc_id: str
    index: int
    text: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class VectorRow:
    id: str
    doc_id: str
    chunk_id: str
    vector: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class EmbeddingResult:
    chunk_id: str
    vector: list[float]


def chunk_id_for(doc_id: str, index: int) -> str:
    return f"{doc_id}:{index}"


class DocumentStore(ABC):
    """
    Persistent collection of documents, chunks and vectors.

    Implementations must make every write transaction all-or-nothing and
    surface failures as ``StorageError``.
    """

    @abstractmethod
    def create_doc(self, meta: DocumentMeta) -> None:
        """Insert metadata only, reserving the id before chunks exist."""
        pass

    @abstractmethod
    def put_doc(self, meta: DocumentMeta, chunks: Sequence[Chunk]) -> None:
        """Insert metadata and all chunks in one transaction."""
        pass

    @abstractmethod
    def append_chunks(self, chunks: Sequence[Chunk], batch_size: int = 100) -> None:
        """Insert chunks in sequential atomic sub-transactions of at most ``batch_size``."""
        pass

    @abstractmethod
    def update_doc_size(self, doc_id: str, size: int) -> None:
        pass

    @abstractmethod
    def get_doc(self, doc_id: str) -> DocumentMeta | None:
        pass

    @abstractmethod
    def list_docs(self) -> list[DocumentMeta]:
        pass

    @abstractmethod
    def get_chunks_by_doc(self, doc_id: str) -> list[Chunk]:
        """Return the document's chunks in index order."""
        pass

    @abstractmethod
    def delete_doc(self, doc_id: str, batch_size: int = 500) -> None:
        """Delete a document with its chunks and vectors. Unknown ids are a no-op."""
        pass

    @abstractmethod
    def clear_all(self) -> None:
        pass

    @abstractmethod
    def put_vectors(self, rows: Sequence[VectorRow]) -> None:
        pass

    @abstractmethod
    def get_vectors_by_doc(self, doc_id: str) -> list[VectorRow]:
        pass
