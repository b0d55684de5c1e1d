# kbengine/worker/pipeline.py
"""
Background import pipeline.

A worker runs one import task on its own thread and reports back over a
queue: zero or more progress messages, then exactly one terminal message
(done or error). Nothing is shared with the caller except that queue and the
cancellation flag.

State machine::

    IDLE -> EXTRACTING -> CHUNKING -> PERSISTING -> DONE
                 \\            \\            \\-> FAILED
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from kbengine.corpus.chunk import chunk_text
from kbengine.corpus.files import extract_text
from kbengine.corpus.ingest import DEFAULT_NAME, now_ms
from kbengine.corpus.interfaces import DocumentMeta, DocumentStore
from kbengine.errors import ExtractionError, KnowledgeBaseError, StorageError, ValidationError
from kbengine.obs.metrics import IMPORT_RESULTS, IMPORTED_CHUNKS

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_CHUNK_SIZE = 800
DEFAULT_OVERLAP = 100
MIN_CHUNK_SIZE = 200
MAX_CHUNK_SIZE = 4000
PERSIST_BATCH_SIZE = 200


class ImportState(Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class ImportCancelled(KnowledgeBaseError):
    code = "cancelled"


def clamp_chunk_params(chunk_size: int | None, overlap: int | None) -> tuple[int, int]:
    """Clamp size to [200, 4000] and overlap to [0, size // 2]; None picks the defaults."""
    size = DEFAULT_CHUNK_SIZE if chunk_size is None else int(chunk_size)
    size = max(MIN_CHUNK_SIZE, min(MAX_CHUNK_SIZE, size))
    ov = DEFAULT_OVERLAP if overlap is None else int(overlap)
    ov = max(0, min(size // 2, ov))
    return size, ov


@dataclass
class ImportTask:
    doc_id: str
    name: str
    ext: str = "txt"
    data: bytes = b""
    chunk_size: int | None = None
    overlap: int | None = None

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "ImportTask":
        """Parse ``{"type": "import", "task": {docId, name, ext, bytes, chunkSize?, overlap?}}``."""
        if not isinstance(message, dict) or message.get("type") != "import":
            raise ValidationError("not an import message", code="bad_message")
        task = message.get("task") or {}
        doc_id = task.get("docId") or task.get("doc_id")
        if not doc_id:
            raise ValidationError("import task has no docId", code="bad_message")
        return cls(
            doc_id=doc_id,
            name=task.get("name") or DEFAULT_NAME,
            ext=task.get("ext") or "txt",
            data=task.get("bytes") or task.get("data") or b"",
            chunk_size=task.get("chunkSize", task.get("chunk_size")),
            overlap=task.get("overlap"),
        )


# ----------------------------
# Outbound messages
# ----------------------------
@dataclass(frozen=True)
class ProgressMessage:
    type: ClassVar[str] = "progress"
    terminal: ClassVar[bool] = False
    done: int
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "done": self.done, "total": self.total}


@dataclass(frozen=True)
class DoneMessage:
    type: ClassVar[str] = "done"
    terminal: ClassVar[bool] = True
    meta: DocumentMeta

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "ok": True, "meta": self.meta.to_dict()}


@dataclass(frozen=True)
class ErrorMessage:
    type: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True
    message: str
    kind: str = "storage"  # extraction | storage | validation | cancelled

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "kind": self.kind}


WorkerMessage = ProgressMessage | DoneMessage | ErrorMessage


def _error_kind(exc: Exception) -> str:
    if isinstance(exc, ImportCancelled):
        return "cancelled"
    if isinstance(exc, ExtractionError):
        return "extraction"
    if isinstance(exc, (ValidationError, ValueError)):
        return "validation"
    return "storage"


@dataclass
class ImportWorker:
    """
    Runs a single import task on a background thread.

    Usage::

        worker = ImportWorker(store)
        worker.submit({"type": "import", "task": {...}})
        for msg in worker.messages():
            ...
    """

    store: DocumentStore
    extractor: Callable[[str, bytes], str] = extract_text
    batch_size: int = PERSIST_BATCH_SIZE
    outbox: "queue.Queue[WorkerMessage]" = field(default_factory=queue.Queue)
    state: ImportState = ImportState.IDLE

    def __post_init__(self):
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self._submit_lock = threading.Lock()

    # ----- caller side -----
    def submit(self, task: ImportTask | dict[str, Any]) -> None:
        """Start the import in the background. A worker accepts one task only."""
        if not isinstance(task, ImportTask):
            task = ImportTask.from_message(task)
        with self._submit_lock:
            if self._thread is not None:
                raise RuntimeError("ImportWorker already has a task; use a new worker")
            self._thread = threading.Thread(
                target=self.run, args=(task,), name=f"import-{task.doc_id}", daemon=True
            )
            self._thread.start()
        logger.info(f"Submitted import {task.doc_id} ({task.ext}, {len(task.data)} bytes)")

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker thread; returns True once it has finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def messages(self, timeout: float | None = None) -> Iterator[WorkerMessage]:
        """Yield outbound messages until (and including) the terminal one."""
        while True:
            msg = self.outbox.get(timeout=timeout)
            yield msg
            if msg.terminal:
                return

    # ----- worker side -----
    def _emit(self, msg: WorkerMessage) -> None:
        self.outbox.put(msg)

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise ImportCancelled("import cancelled")

    def run(self, task: ImportTask) -> WorkerMessage:
        """Execute the pipeline synchronously, emitting messages; returns the terminal one."""
        created = False
        try:
            self._check_cancel()
            self.state = ImportState.EXTRACTING
            clean = (self.extractor(task.ext or "txt", task.data) or "").strip()

            self._check_cancel()
            self.state = ImportState.CHUNKING
            size, overlap = clamp_chunk_params(task.chunk_size, task.overlap)
            meta = DocumentMeta(
                id=task.doc_id, name=task.name or DEFAULT_NAME, created_at=now_ms(), size=len(clean)
            )
            self.store.create_doc(meta)
            created = True
            chunks = chunk_text(task.doc_id, clean, size, overlap)

            self.state = ImportState.PERSISTING
            total = len(chunks)
            for i in range(0, total, self.batch_size):
                self._check_cancel()
                batch = chunks[i : i + self.batch_size]
                self.store.append_chunks(batch, len(batch))
                IMPORTED_CHUNKS.inc(len(batch))
                self._emit(ProgressMessage(done=min(i + len(batch), total), total=total))

            self.state = ImportState.DONE
            IMPORT_RESULTS.labels(result="done").inc()
            logger.info(f"Import {task.doc_id} finished ({total} chunks)")
            terminal: WorkerMessage = DoneMessage(meta=meta)

        except (KnowledgeBaseError, ValueError) as e:
            self.state = ImportState.FAILED
            kind, message = _error_kind(e), str(e)
            if kind == "cancelled" and created:
                try:
                    self.store.delete_doc(task.doc_id)
                except StorageError as de:
                    kind, message = "storage", str(de)
            IMPORT_RESULTS.labels(result=kind).inc()
            logger.error(f"Import {task.doc_id} failed ({kind}): {message}")
            terminal = ErrorMessage(message=message, kind=kind)

        except Exception as e:
            self.state = ImportState.FAILED
            IMPORT_RESULTS.labels(result="storage").inc()
            logger.exception(f"Import {task.doc_id} crashed")
            terminal = ErrorMessage(message=str(e), kind="storage")

        self._emit(terminal)
        return terminal

