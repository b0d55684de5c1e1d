"""
Background import: extraction, chunking and batched persistence off the
caller's thread, reported through progress/terminal messages.
"""

from .jobs import ImportJobs, JobStatus
from .pipeline import (
    DoneMessage,
    ErrorMessage,
    ImportCancelled,
    ImportState,
    ImportTask,
    ImportWorker,
    ProgressMessage,
    clamp_chunk_params,
)

__all__ = [
    "ImportWorker",
    "ImportTask",
    "ImportState",
    "ImportCancelled",
    "ProgressMessage",
    "DoneMessage",
    "ErrorMessage",
    "clamp_chunk_params",
    "ImportJobs",
    "JobStatus",
]
