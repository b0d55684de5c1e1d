# kbengine/retrieval/interfaces.py
"""
Base interfaces for retrieval components.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from kbengine.corpus.interfaces import Chunk


@dataclass(frozen=True)
class SearchHit:
    """A ranked chunk. Higher scores are better."""

    chunk: Chunk
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"chunk": self.chunk.to_dict(), "score": self.score}


class BaseSearcher(ABC):
    """Abstract base class for per-document searchers."""

    @abstractmethod
    def search(self, doc_id: str, query: Any, top_k: int = 5) -> list[SearchHit]:
        """
        Rank one document's chunks against a query.

        Args:
            doc_id: Document to search within
            query: Query text or query vector, depending on the searcher
            top_k: Maximum number of hits to return

        Returns:
            Hits sorted by descending score
        """
        pass
