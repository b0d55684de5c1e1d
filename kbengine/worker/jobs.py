# kbengine/worker/jobs.py
from __future__ import annotations

import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Any

from kbengine.corpus.interfaces import DocumentStore

from .pipeline import DoneMessage, ErrorMessage, ImportTask, ImportWorker, ProgressMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_FINISHED = 100


@dataclass
class JobStatus:
    job_id: str
    doc_id: str
    state: str = "idle"
    done: int = 0
    total: int = 0
    meta: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    @property
    def finished(self) -> bool:
        return self.meta is not None or self.error is not None


class ImportJobs:
    """
    Registry of background imports, one ImportWorker per job.

    Status is refreshed lazily by draining each worker's outbox when polled.
    At most ``max_finished`` finished jobs are kept; the oldest are evicted
    when a new job starts. Running jobs are never evicted.
    """

    def __init__(self, store: DocumentStore, max_finished: int = DEFAULT_MAX_FINISHED):
        self.store = store
        self.max_finished = max_finished
        self._jobs: dict[str, tuple[ImportWorker, JobStatus]] = {}
        self._lock = threading.Lock()

    def start(self, task: ImportTask) -> JobStatus:
        job_id = uuid.uuid4().hex[:12]
        worker = ImportWorker(self.store)
        status = JobStatus(job_id=job_id, doc_id=task.doc_id)
        with self._lock:
            self._evict_finished()
            self._jobs[job_id] = (worker, status)
        worker.submit(task)
        logger.info(f"Started import job {job_id} for {task.doc_id}")
        return status

    def status(self, job_id: str) -> JobStatus | None:
        with self._lock:
            entry = self._jobs.get(job_id)
            if entry is None:
                return None
            worker, status = entry
            self._drain(worker, status)
            return status

    def cancel(self, job_id: str) -> JobStatus | None:
        with self._lock:
            entry = self._jobs.get(job_id)
        if entry is None:
            return None
        worker, status = entry
        worker.cancel()
        return self.status(job_id)

    def wait(self, job_id: str, timeout: float | None = None) -> JobStatus | None:
        with self._lock:
            entry = self._jobs.get(job_id)
        if entry is None:
            return None
        entry[0].join(timeout)
        return self.status(job_id)

    def _evict_finished(self) -> None:
        # caller holds self._lock; dict order is start order
        finished = []
        for job_id, (worker, status) in self._jobs.items():
            self._drain(worker, status)
            if status.finished:
                finished.append(job_id)
        for job_id in finished[: max(0, len(finished) - self.max_finished)]:
            del self._jobs[job_id]
            logger.debug(f"Evicted finished import job {job_id}")

    @staticmethod
    def _drain(worker: ImportWorker, status: JobStatus) -> None:
        while True:
            try:
                msg = worker.outbox.get_nowait()
            except queue.Empty:
                break
            if isinstance(msg, ProgressMessage):
                status.done, status.total = msg.done, msg.total
            elif isinstance(msg, DoneMessage):
                status.meta = msg.meta.to_dict()
            elif isinstance(msg, ErrorMessage):
                status.error = msg.to_dict()
        if status.meta is not None:
            status.state = "done"
        elif status.error is not None:
            status.state = "failed"
        else:
            status.state = worker.state.value
