import pytest

from kbengine.corpus.schema import SqliteStore
from kbengine.errors import ExtractionError, StorageError, ValidationError
from kbengine.worker.jobs import ImportJobs
from kbengine.worker.pipeline import (
    DoneMessage,
    ErrorMessage,
    ImportState,
    ImportTask,
    ImportWorker,
    ProgressMessage,
    clamp_chunk_params,
)

# 250 chunks at size 200 / overlap 0
BIG_TEXT = ("0123456789" * 20) * 250


def _drain(worker):
    msgs = []
    while not worker.outbox.empty():
        msgs.append(worker.outbox.get_nowait())
    return msgs


def _task(data, doc_id="doc-1", **kw):
    kw.setdefault("chunk_size", 200)
    kw.setdefault("overlap", 0)
    return ImportTask(doc_id=doc_id, name="big.txt", ext="txt", data=data, **kw)


@pytest.mark.parametrize(
    "given,expected",
    [
        ((None, None), (800, 100)),
        ((50, 10), (200, 10)),
        ((10_000, 3000), (4000, 2000)),
        ((1000, -5), (1000, 0)),
        ((1000, 0), (1000, 0)),
        ((300, 400), (300, 150)),
    ],
)
def test_clamp_chunk_params(given, expected):
    assert clamp_chunk_params(*given) == expected


def test_from_message():
    task = ImportTask.from_message(
        {"type": "import", "task": {"docId": "d9", "name": "n", "ext": "md", "bytes": b"hi", "chunkSize": 300}}
    )
    assert (task.doc_id, task.ext, task.data, task.chunk_size, task.overlap) == ("d9", "md", b"hi", 300, None)

    with pytest.raises(ValidationError):
        ImportTask.from_message({"type": "other"})
    with pytest.raises(ValidationError):
        ImportTask.from_message({"type": "import", "task": {"name": "no id"}})


def test_progress_then_done(store):
    worker = ImportWorker(store)
    terminal = worker.run(_task(BIG_TEXT.encode()))
    msgs = _drain(worker)

    assert msgs[-1] is terminal
    assert isinstance(terminal, DoneMessage)
    assert [(m.done, m.total) for m in msgs[:-1]] == [(200, 250), (250, 250)]
    assert all(isinstance(m, ProgressMessage) for m in msgs[:-1])
    assert worker.state is ImportState.DONE

    assert terminal.meta.size == len(BIG_TEXT)
    chunks = store.get_chunks_by_doc("doc-1")
    assert [c.index for c in chunks] == list(range(250))
    assert store.get_doc("doc-1") == terminal.meta


def test_wire_shapes(store):
    worker = ImportWorker(store)
    worker.run(_task(b"hello world"))
    progress, done = _drain(worker)

    assert progress.to_dict() == {"type": "progress", "done": 1, "total": 1}
    wire = done.to_dict()
    assert wire["type"] == "done" and wire["ok"] is True
    assert wire["meta"]["id"] == "doc-1"
    assert ErrorMessage("bad pdf", "extraction").to_dict() == {
        "type": "error",
        "message": "bad pdf",
        "kind": "extraction",
    }


def test_whitespace_only_input_creates_empty_doc(store):
    worker = ImportWorker(store)
    terminal = worker.run(_task(b"  \r\n  "))
    assert _drain(worker) == [terminal]
    assert isinstance(terminal, DoneMessage)
    assert terminal.meta.size == 0
    assert store.get_chunks_by_doc("doc-1") == []


def test_extraction_failure(store):
    def broken(ext, data):
        raise ExtractionError("not a pdf", fmt=ext)

    worker = ImportWorker(store, extractor=broken)
    terminal = worker.run(_task(b"%PDF-garbage"))
    assert isinstance(terminal, ErrorMessage)
    assert terminal.kind == "extraction"
    assert worker.state is ImportState.FAILED
    assert store.get_doc("doc-1") is None


def test_corrupt_pdf_reports_extraction(store):
    worker = ImportWorker(store)
    terminal = worker.run(ImportTask(doc_id="doc-1", name="x.pdf", ext="pdf", data=b"definitely not a pdf"))
    assert terminal.kind == "extraction"


class _FailingStore(SqliteStore):
    def create_doc(self, meta):
        raise StorageError("disk full")


def test_storage_failure(tmp_path):
    store = _FailingStore(tmp_path / "fail.db")
    worker = ImportWorker(store)
    terminal = worker.run(_task(b"some text"))
    assert terminal.to_dict() == {"type": "error", "message": "disk full", "kind": "storage"}
    store.close()


class _CancelAfterFirstBatch(SqliteStore):
    worker = None

    def append_chunks(self, chunks, batch_size=100):
        super().append_chunks(chunks, batch_size)
        self.worker.cancel()


def test_cancel_between_batches_discards_document(tmp_path):
    store = _CancelAfterFirstBatch(tmp_path / "cancel.db")
    worker = ImportWorker(store)
    store.worker = worker

    terminal = worker.run(_task(BIG_TEXT.encode()))
    msgs = _drain(worker)

    assert [type(m) for m in msgs] == [ProgressMessage, ErrorMessage]
    assert terminal.kind == "cancelled"
    assert store.get_doc("doc-1") is None
    assert store.get_chunks_by_doc("doc-1") == []
    store.close()


def test_cancel_before_start(store):
    worker = ImportWorker(store)
    worker.cancel()
    worker.submit(_task(b"never imported"))
    msgs = list(worker.messages(timeout=10))
    assert len(msgs) == 1
    assert msgs[0].kind == "cancelled"
    assert store.list_docs() == []


def test_submit_runs_in_background(store):
    worker = ImportWorker(store)
    worker.submit({"type": "import", "task": {"docId": "bg", "name": "bg.txt", "ext": "txt", "bytes": b"background text"}})
    msgs = list(worker.messages(timeout=10))
    assert worker.join(timeout=10)
    assert isinstance(msgs[-1], DoneMessage)
    assert [c.text for c in store.get_chunks_by_doc("bg")] == ["background text"]

    with pytest.raises(RuntimeError):
        worker.submit(_task(b"again"))


def test_import_jobs_registry(kb):
    status = kb.start_import("notes.txt", "txt", b"job text " * 100, chunk_size=200, overlap=0)
    final = kb.jobs.wait(status.job_id, timeout=10)

    assert final.finished
    assert final.state == "done"
    assert final.done == final.total == 5
    assert final.meta["id"] == status.doc_id
    assert kb.jobs.status("unknown") is None


def test_worker_on_memory_store():
    store = SqliteStore(":memory:")
    worker = ImportWorker(store)
    worker.submit(ImportTask(doc_id="m1", name="m.txt", ext="txt", data=b"hello world"))
    msgs = list(worker.messages(timeout=10))
    worker.join(timeout=10)

    assert isinstance(msgs[-1], DoneMessage)
    assert [c.text for c in store.get_chunks_by_doc("m1")] == ["hello world"]
    store.close()


def test_finished_jobs_are_evicted(store):
    jobs = ImportJobs(store, max_finished=2)
    ids = []
    for i in range(4):
        status = jobs.start(_task(b"text", doc_id=f"doc-{i}"))
        jobs.wait(status.job_id, timeout=10)
        ids.append(status.job_id)

    latest = jobs.start(_task(b"text", doc_id="doc-4"))
    jobs.wait(latest.job_id, timeout=10)

    assert jobs.status(ids[0]) is None
    assert jobs.status(ids[1]) is None
    assert jobs.status(ids[2]).state == "done"
    assert jobs.status(ids[3]).state == "done"
    assert jobs.status(latest.job_id).state == "done"
