"""
Retrieval module for per-document ranking.

Main components:
- BM25Searcher: lexical ranking over one document's chunks
- VectorSearcher: cosine-similarity ranking over one document's stored vectors
"""

from .bm25 import BM25Searcher, bm25_scores, tokenize
from .interfaces import BaseSearcher, SearchHit
from .vector import VectorSearcher, cosine_similarity

__all__ = [
    # Searchers
    "BM25Searcher",
    "VectorSearcher",
    # Scoring helpers
    "bm25_scores",
    "cosine_similarity",
    "tokenize",
    # Interfaces and types
    "BaseSearcher",
    "SearchHit",
]
