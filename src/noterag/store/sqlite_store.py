from __future__ import annotations

from datetime import date, datetime
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from ..errors import DimensionMismatchError, StoreError
from ..models import DocumentMetadata, StoreHit, VectorDocument
from .base import cosine_distances

logger = logging.getLogger(__name__)

DB_FILENAME = "vectors.sqlite"

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS vectors (
  id TEXT PRIMARY KEY,
  note_id TEXT NOT NULL,
  note_path TEXT NOT NULL,
  chunk_index INTEGER NOT NULL,
  content TEXT NOT NULL,
  dims INTEGER NOT NULL,
  embedding BLOB NOT NULL,
  metadata_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_vectors_note_path ON vectors(note_path);
CREATE INDEX IF NOT EXISTS idx_vectors_note_id ON vectors(note_id);
"""


class _JSONEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime and date objects."""
    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


def _vec_to_blob(vec: np.ndarray) -> bytes:
    vec = np.asarray(vec, dtype=np.float32).ravel()
    return vec.tobytes()


def _blob_to_vec(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class SqliteVectorStore:
    """Disk-backed vector store: one SQLite file, vectors as float32 BLOBs.

    Search is a brute-force cosine scan. Each thread gets its own connection,
    so the store can be driven from ``asyncio.to_thread`` workers.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.db_path = self.directory / DB_FILENAME
        self._local = threading.local()
        # Track all connections for cleanup
        self._connections: list[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        """Get a thread-local SQLite connection with WAL mode and busy timeout."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path))
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA busy_timeout=5000")
            except (sqlite3.Error, OSError) as e:
                raise StoreError(f"cannot open vector store at {self.db_path}: {e}") from e
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    def initialize(self) -> None:
        try:
            conn = self._get_conn()
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"cannot initialize vector store: {e}") from e
        logger.debug(f"Vector store ready at {self.db_path}")

    def add(self, documents: Sequence[VectorDocument]) -> None:
        if not documents:
            return
        conn = self._get_conn()
        try:
            with conn:
                expected = self._stored_dims(conn)
                for doc in documents:
                    if expected is None:
                        expected = doc.dims
                    elif doc.dims != expected:
                        raise DimensionMismatchError(expected, doc.dims)
                conn.executemany(
                    "INSERT OR REPLACE INTO vectors(id, note_id, note_path, chunk_index, content, dims, embedding, metadata_json) "
                    "VALUES(?,?,?,?,?,?,?,?)",
                    [
                        (
                            d.id,
                            d.note_id,
                            d.note_path,
                            d.chunk_index,
                            d.content,
                            d.dims,
                            _vec_to_blob(d.embedding),
                            json.dumps(d.metadata.to_dict(), cls=_JSONEncoder),
                        )
                        for d in documents
                    ],
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to write {len(documents)} documents: {e}")
            raise StoreError(f"cannot write to vector store: {e}") from e

    def search(self, query_vector: np.ndarray, top_k: int) -> list[StoreHit]:
        docs = self.get_all_documents()
        if not docs or top_k <= 0:
            return []
        matrix = np.vstack([d.embedding for d in docs])
        dist = cosine_distances(matrix, query_vector)
        order = np.argsort(dist, kind="stable")[:top_k]
        return [StoreHit(document=docs[i], distance=float(dist[i])) for i in order]

    def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        self._write("DELETE FROM vectors WHERE id=?", [(i,) for i in ids])

    def delete_by_note_path(self, note_path: str) -> int:
        conn = self._get_conn()
        try:
            with conn:
                cur = conn.execute("DELETE FROM vectors WHERE note_path=?", (note_path,))
                return cur.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"cannot delete documents for {note_path}: {e}") from e

    def clear(self) -> None:
        self._write("DELETE FROM vectors", [()])

    def count(self) -> int:
        row = self._read("SELECT COUNT(*) AS n FROM vectors")[0]
        return int(row["n"])

    def get_all_documents(self) -> list[VectorDocument]:
        rows = self._read(
            "SELECT id, note_id, note_path, chunk_index, content, embedding, metadata_json "
            "FROM vectors ORDER BY note_id, chunk_index"
        )
        return [self._row_to_doc(r) for r in rows]

    def dims(self) -> int | None:
        try:
            return self._stored_dims(self._get_conn())
        except sqlite3.Error as e:
            raise StoreError(f"cannot read vector store: {e}") from e

    def close(self) -> None:
        with self._conn_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._local = threading.local()

    @staticmethod
    def _stored_dims(conn: sqlite3.Connection) -> int | None:
        row = conn.execute("SELECT dims FROM vectors LIMIT 1").fetchone()
        return int(row["dims"]) if row else None

    @staticmethod
    def _row_to_doc(row: sqlite3.Row) -> VectorDocument:
        meta = json.loads(row["metadata_json"]) if row["metadata_json"] else {}
        return VectorDocument(
            id=row["id"],
            note_id=row["note_id"],
            note_path=row["note_path"],
            chunk_index=int(row["chunk_index"]),
            content=row["content"],
            embedding=_blob_to_vec(row["embedding"]),
            metadata=DocumentMetadata.from_dict(meta),
        )

    def _read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"cannot read vector store: {e}") from e

    def _write(self, sql: str, rows: list[tuple]) -> None:
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany(sql, rows)
        except sqlite3.Error as e:
            logger.error(f"Vector store write failed: {e}")
            raise StoreError(f"cannot write to vector store: {e}") from e
