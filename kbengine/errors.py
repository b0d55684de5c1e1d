# kbengine/errors.py
"""
Typed errors raised by the knowledge-base engine.

Every error carries a short machine-readable ``code``; turning that into a
user-facing message is the caller's job.
"""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base class for all engine errors."""

    code = "kb_error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.code)
        if code is not None:
            self.code = code


class ExtractionError(KnowledgeBaseError):
    """Raw bytes could not be converted to text for the given format."""

    code = "extraction_failed"

    def __init__(self, message: str = "", *, fmt: str | None = None, code: str | None = None):
        super().__init__(message, code=code)
        self.fmt = fmt


class StorageError(KnowledgeBaseError):
    """A storage transaction failed (disk, quota, corruption, locking)."""

    code = "storage_failed"


class EmbeddingError(KnowledgeBaseError):
    """The embedding provider returned an error or an unusable response."""

    code = "embedding_failed"

    def __init__(
        self, message: str = "", *, status_code: int | None = None, code: str | None = None
    ):
        super().__init__(message, code=code)
        self.status_code = status_code


class ValidationError(KnowledgeBaseError):
    """Caller supplied input the engine cannot accept (e.g. empty text)."""

    code = "invalid_input"
