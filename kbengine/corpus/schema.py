# kbengine/corpus/schema.py
"""
SQLite-backed document store.

This module provides:
- Connection management (one connection per thread)
- Schema initialization for documents, chunks and vectors
- Transactional writes with bounded sub-batches
- Cascading document deletion
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import numpy as np

from kbengine.errors import StorageError

from .interfaces import Chunk, DocumentMeta, DocumentStore, VectorRow

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_DB_PATH = "kb_local.db"
DEFAULT_APPEND_BATCH_SIZE = 100
DEFAULT_DELETE_BATCH_SIZE = 500
DEFAULT_BUSY_TIMEOUT_MS = 5000
MEMORY_PATH = ":memory:"
VECTOR_DTYPE = np.float64

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    size INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    doc_id TEXT NOT NULL,
    idx INTEGER NOT NULL,
    text TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS vectors (
    id TEXT PRIMARY KEY,
    doc_id TEXT NOT NULL,
    chunk_id TEXT NOT NULL,
    dim INTEGER NOT NULL,
    vec BLOB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_doc_id ON chunks(doc_id, idx);
CREATE INDEX IF NOT EXISTS idx_vectors_doc_id ON vectors(doc_id);
CREATE INDEX IF NOT EXISTS idx_vectors_chunk_id ON vectors(chunk_id);
"""


def to_blob(vector: Sequence[float]) -> bytes:
    arr = np.asarray(vector, dtype=VECTOR_DTYPE)
    assert arr.ndim == 1
    return arr.tobytes(order="C")


def from_blob(b: bytes, dim: int) -> list[float]:
    if dim == 0:
        return []
    return np.frombuffer(b, dtype=VECTOR_DTYPE, count=dim).tolist()


class SqliteStore(DocumentStore):
    """
    Document store on a single SQLite file.

    - One connection per thread via threading.local(), so the background
      import worker and the interactive caller never share a connection.
    - WAL journal + busy timeout; every write runs in its own
      ``BEGIN IMMEDIATE`` transaction and nothing else serializes writers.
    - Same-document concurrent writers are not supported (caller's job).
    - ``":memory:"`` maps to a private shared-cache in-memory database, so every
      thread of this store sees the same data until ``close()``.
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS):
        self.db_path = Path(db_path)
        self._memory_uri = (
            f"file:kbengine-{uuid.uuid4().hex}?mode=memory&cache=shared"
            if str(db_path) == MEMORY_PATH
            else None
        )
        self.busy_timeout_ms = busy_timeout_ms
        self._local = threading.local()
        self._conns: list[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._init_schema()
        logger.info(f"SqliteStore ready: {self.db_path}")

    # ----- connection management -----
    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                if self._memory_uri:
                    conn = sqlite3.connect(
                        self._memory_uri, uri=True, check_same_thread=False, isolation_level=None
                    )
                else:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    conn = sqlite3.connect(
                        str(self.db_path), check_same_thread=False, isolation_level=None
                    )
                conn.row_factory = sqlite3.Row
                conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
                if not self._memory_uri:
                    conn.execute("PRAGMA journal_mode = WAL")
            except (sqlite3.Error, OSError) as e:
                logger.error(f"Failed to open database {self.db_path}: {e}")
                raise StorageError(f"cannot open database {self.db_path}: {e}") from e
            self._local.conn = conn
            with self._conns_lock:
                self._conns.append(conn)
            logger.debug("Opened SQLite connection for thread %s", threading.get_ident())
        return conn

    def _init_schema(self) -> None:
        try:
            self._get_conn().executescript(SCHEMA)
        except sqlite3.Error as e:
            logger.error(f"Database schema initialization failed: {e}")
            raise StorageError(f"schema initialization failed: {e}") from e

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """All-or-nothing write transaction; failures surface as StorageError."""
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            logger.error(f"{action}: could not begin transaction: {e}")
            raise StorageError(f"{action} failed: {e}") from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"{action} failed, rolled back: {e}")
            raise StorageError(f"{action} failed: {e}") from e
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def _query(self, action: str, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"{action} failed: {e}")
            raise StorageError(f"{action} failed: {e}") from e

    def close(self) -> None:
        with self._conns_lock:
            conns, self._conns = self._conns, []
        for conn in conns:
            try:
                conn.close()
            except sqlite3.Error as e:  # pragma: no cover
                logger.warning(f"Error closing connection: {e}")
        self._local = threading.local()

    # ----- documents -----
    @staticmethod
    def _meta_row(meta: DocumentMeta) -> tuple:
        return (meta.id, meta.name, int(meta.created_at), int(meta.size))

    @staticmethod
    def _chunk_rows(chunks: Sequence[Chunk]) -> list[tuple]:
        return [(c.id, c.doc_id, c.index, c.text) for c in chunks]

    def create_doc(self, meta: DocumentMeta) -> None:
        with self._transaction(f"create_doc {meta.id}") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO documents(id, name, created_at, size) VALUES(?,?,?,?)",
                self._meta_row(meta),
            )
        logger.debug(f"Created document: {meta.id}")

    def put_doc(self, meta: DocumentMeta, chunks: Sequence[Chunk]) -> None:
        with self._transaction(f"put_doc {meta.id}") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO documents(id, name, created_at, size) VALUES(?,?,?,?)",
                self._meta_row(meta),
            )
            conn.executemany(
                "INSERT OR REPLACE INTO chunks(id, doc_id, idx, text) VALUES(?,?,?,?)",
                self._chunk_rows(chunks),
            )
        logger.info(f"Stored document {meta.id} with {len(chunks)} chunks")

    def append_chunks(self, chunks: Sequence[Chunk], batch_size: int = DEFAULT_APPEND_BATCH_SIZE) -> None:
        if not chunks:
            return
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        for i in range(0, len(chunks), batch_size):
            batch = chunks[i : i + batch_size]
            with self._transaction("append_chunks") as conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO chunks(id, doc_id, idx, text) VALUES(?,?,?,?)",
                    self._chunk_rows(batch),
                )
            logger.debug(f"Appended chunk batch {i}-{i + len(batch)}")

    def update_doc_size(self, doc_id: str, size: int) -> None:
        with self._transaction(f"update_doc_size {doc_id}") as conn:
            conn.execute("UPDATE documents SET size = ? WHERE id = ?", (int(size), doc_id))

    def get_doc(self, doc_id: str) -> DocumentMeta | None:
        rows = self._query(
            "get_doc", "SELECT id, name, created_at, size FROM documents WHERE id = ?", (doc_id,)
        )
        if not rows:
            return None
        r = rows[0]
        return DocumentMeta(id=r["id"], name=r["name"], created_at=r["created_at"], size=r["size"])

    def list_docs(self) -> list[DocumentMeta]:
        rows = self._query(
            "list_docs", "SELECT id, name, created_at, size FROM documents ORDER BY created_at, id"
        )
        return [
            DocumentMeta(id=r["id"], name=r["name"], created_at=r["created_at"], size=r["size"])
            for r in rows
        ]

    def get_chunks_by_doc(self, doc_id: str) -> list[Chunk]:
        rows = self._query(
            "get_chunks_by_doc",
            "SELECT id, doc_id, idx, text FROM chunks WHERE doc_id = ? ORDER BY idx",
            (doc_id,),
        )
        return [Chunk(id=r["id"], doc_id=r["doc_id"], index=r["idx"], text=r["text"]) for r in rows]

    # ----- deletion -----
    def _delete_in_batches(self, table: str, doc_id: str, batch_size: int) -> int:
        deleted = 0
        while True:
            with self._transaction(f"delete {table} for {doc_id}") as conn:
                cur = conn.execute(
                    f"DELETE FROM {table} WHERE id IN "
                    f"(SELECT id FROM {table} WHERE doc_id = ? LIMIT ?)",
                    (doc_id, batch_size),
                )
                n = cur.rowcount
            deleted += n
            if n < batch_size:
                return deleted

    def delete_doc(self, doc_id: str, batch_size: int = DEFAULT_DELETE_BATCH_SIZE) -> None:
        with self._transaction(f"delete_doc {doc_id}") as conn:
            conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        n_chunks = self._delete_in_batches("chunks", doc_id, batch_size)
        n_vectors = self._delete_in_batches("vectors", doc_id, batch_size)
        logger.info(f"Deleted document {doc_id} ({n_chunks} chunks, {n_vectors} vectors)")

    def clear_all(self) -> None:
        with self._transaction("clear_all") as conn:
            conn.execute("DELETE FROM documents")
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM vectors")
        logger.info("Cleared knowledge base")

    # ----- vectors -----
    def put_vectors(self, rows: Sequence[VectorRow]) -> None:
        if not rows:
            return
        with self._transaction("put_vectors") as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO vectors(id, doc_id, chunk_id, dim, vec) VALUES(?,?,?,?,?)",
                [(r.id, r.doc_id, r.chunk_id, len(r.vector), to_blob(r.vector)) for r in rows],
            )
        logger.info(f"Stored {len(rows)} vectors")

    def get_vectors_by_doc(self, doc_id: str) -> list[VectorRow]:
        rows = self._query(
            "get_vectors_by_doc",
            "SELECT id, doc_id, chunk_id, dim, vec FROM vectors WHERE doc_id = ?",
            (doc_id,),
        )
        return [
            VectorRow(
                id=r["id"], doc_id=r["doc_id"], chunk_id=r["chunk_id"], vector=from_blob(r["vec"], r["dim"])
            )
            for r in rows
        ]
