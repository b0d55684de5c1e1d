"""
kbengine: local knowledge-base indexing and retrieval.

Documents are split into overlapping chunks, persisted in SQLite, and ranked
per document with BM25 or cosine similarity over remotely computed embeddings.
"""

from .kb import AsyncKnowledgeBase, KnowledgeBase

__all__ = ["KnowledgeBase", "AsyncKnowledgeBase"]
