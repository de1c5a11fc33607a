from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence
import numpy as np

from ..errors import IndexWriteFailure, QuerySyntaxError
from ..models import EMBEDDING_DIM, Chunk, ChunkRow
from .schema_manager import SchemaManager

logger = logging.getLogger(__name__)

# Three stores share one surrogate id per chunk:
#   memory_chunks      authoritative rows (id is the surrogate)
#   vec_memory_chunks  embeddings keyed by chunk_id = memory_chunks.id
#   fts_memory_chunks  FTS5 external-content index shadowing memory_chunks
# Rows are only ever written or deleted in all three together.
BACKING_SQL = """
CREATE TABLE IF NOT EXISTS memory_chunks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  file_path TEXT NOT NULL,
  heading TEXT NOT NULL DEFAULT '',
  content TEXT NOT NULL,
  start_line INTEGER NOT NULL,
  end_line INTEGER NOT NULL,
  created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER) * 1000)
);

CREATE INDEX IF NOT EXISTS idx_memory_chunks_file ON memory_chunks(file_path);
"""

VECTOR_SQL = """
CREATE TABLE IF NOT EXISTS vec_memory_chunks (
  chunk_id INTEGER PRIMARY KEY,
  dims INTEGER NOT NULL,
  embedding BLOB NOT NULL
);
"""

KEYWORD_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS fts_memory_chunks USING fts5(
  content,
  heading,
  file_path,
  content='memory_chunks',
  content_rowid='id'
);
"""

SCHEMA_SQL = "PRAGMA journal_mode=WAL;\nPRAGMA synchronous=NORMAL;\n" + BACKING_SQL + VECTOR_SQL + KEYWORD_SQL

ROW_COLUMNS = "id, file_path, heading, content, start_line, end_line, created_at"


def _vec_to_blob(vec: np.ndarray) -> bytes:
    vec = np.asarray(vec, dtype=np.float32).ravel()
    return vec.tobytes()


def _blob_to_vec(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


def _row(r: sqlite3.Row) -> ChunkRow:
    return ChunkRow(
        id=int(r["id"]),
        file_path=r["file_path"],
        heading=r["heading"],
        content=r["content"],
        start_line=int(r["start_line"]),
        end_line=int(r["end_line"]),
        created_at=int(r["created_at"] or 0),
    )


class MemoryStore:
    """SQLite store holding backing rows, vector entries and FTS5 keyword entries.

    Vector search is exact brute-force cosine distance over all stored
    embeddings, which is fine for a personal memory directory.

    Each thread gets its own connection (WAL mode, busy timeout). Writes go
    through transaction() and touch all three tables or none.
    """

    def __init__(self, db_path: Path, dims: int = EMBEDDING_DIM, busy_timeout_ms: int = 5000) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.dims = dims
        self.busy_timeout_ms = busy_timeout_ms

        # Thread-local storage for per-thread connections
        self._local = threading.local()
        # Track all connections for cleanup
        self._connections: list[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            # check_same_thread=False so close() can close connections opened by worker threads
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        """Close all thread-local connections."""
        with self._conn_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Failed to close connection: {e}")
            self._connections.clear()
        self._local = threading.local()

    def init(self) -> None:
        conn = self._get_conn()
        schema = SchemaManager(conn)
        schema.check_vector_table()
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        schema.ensure_current()
        logger.debug("Tables ensured: memory_chunks, vec_memory_chunks, fts_memory_chunks")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block as one atomic write; any failure rolls everything back.

        sqlite errors are re-raised as IndexWriteFailure, other exceptions
        propagate unchanged after the rollback.
        """
        conn = self._get_conn()
        try:
            # Inside the try: a lock timeout on BEGIN is a write failure too
            conn.execute("BEGIN IMMEDIATE")
            yield conn.cursor()
        except sqlite3.Error as e:
            conn.rollback()
            raise IndexWriteFailure(f"Index write failed and was rolled back: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    # -- writes (always all three stores) ---------------------------------

    def add_file_chunks(self, chunks: Sequence[Chunk], vectors: Sequence[np.ndarray]) -> list[int]:
        """Insert chunks with their embeddings. Returns the new surrogate ids."""
        self._check_vectors(chunks, vectors)
        with self.transaction() as cur:
            return self._insert(cur, chunks, vectors)

    def remove_file(self, file_path: str) -> int:
        """Delete every row of a file from all stores. Returns rows removed."""
        with self.transaction() as cur:
            return self._delete(cur, file_path)

    def replace_file_chunks(self, file_path: str, chunks: Sequence[Chunk], vectors: Sequence[np.ndarray]) -> list[int]:
        """Swap a file's rows for new ones in a single transaction."""
        self._check_vectors(chunks, vectors)
        with self.transaction() as cur:
            self._delete(cur, file_path)
            return self._insert(cur, chunks, vectors)

    def _check_vectors(self, chunks: Sequence[Chunk], vectors: Sequence[np.ndarray]) -> None:
        if len(chunks) != len(vectors):
            raise IndexWriteFailure(f"Got {len(vectors)} embeddings for {len(chunks)} chunks")
        for v in vectors:
            size = int(np.asarray(v).size)
            if size != self.dims:
                raise IndexWriteFailure(f"Expected {self.dims}-dim embedding, got {size}-dim")

    def _insert(self, cur: sqlite3.Cursor, chunks: Sequence[Chunk], vectors: Sequence[np.ndarray]) -> list[int]:
        ids: list[int] = []
        for chunk, vec in zip(chunks, vectors):
            cur.execute(
                """INSERT INTO memory_chunks(file_path, heading, content, start_line, end_line)
                   VALUES(?,?,?,?,?)""",
                (chunk.file_path, chunk.heading, chunk.content, chunk.start_line, chunk.end_line),
            )
            row_id = int(cur.lastrowid)
            self._insert_vector(cur, row_id, vec)
            self._insert_keyword(cur, row_id, chunk)
            ids.append(row_id)
        return ids

    def _insert_vector(self, cur: sqlite3.Cursor, row_id: int, vec: np.ndarray) -> None:
        cur.execute(
            "INSERT INTO vec_memory_chunks(chunk_id, dims, embedding) VALUES(?,?,?)",
            (row_id, self.dims, _vec_to_blob(vec)),
        )

    def _insert_keyword(self, cur: sqlite3.Cursor, row_id: int, chunk: Chunk) -> None:
        cur.execute(
            "INSERT INTO fts_memory_chunks(rowid, content, heading, file_path) VALUES(?,?,?,?)",
            (row_id, chunk.content, chunk.heading, chunk.file_path),
        )

    def _delete(self, cur: sqlite3.Cursor, file_path: str) -> int:
        ids = [r[0] for r in cur.execute("SELECT id FROM memory_chunks WHERE file_path=?", (file_path,)).fetchall()]
        if not ids:
            return 0
        cur.executemany("DELETE FROM vec_memory_chunks WHERE chunk_id=?", [(i,) for i in ids])
        # External-content FTS5 tables need the 'delete' command with the original column values
        cur.execute(
            """INSERT INTO fts_memory_chunks(fts_memory_chunks, rowid, content, heading, file_path)
               SELECT 'delete', id, content, heading, file_path FROM memory_chunks WHERE file_path=?""",
            (file_path,),
        )
        cur.execute("DELETE FROM memory_chunks WHERE file_path=?", (file_path,))
        return len(ids)

    def clear(self) -> None:
        """Drop and recreate all three stores."""
        conn = self._get_conn()
        with self.transaction() as cur:
            cur.execute("DROP TABLE IF EXISTS vec_memory_chunks")
            cur.execute("DROP TABLE IF EXISTS fts_memory_chunks")
            cur.execute("DELETE FROM memory_chunks")
            cur.execute("DELETE FROM sqlite_sequence WHERE name='memory_chunks'")
        conn.executescript(VECTOR_SQL + KEYWORD_SQL)
        conn.commit()
        logger.info("Cleared memory_chunks, vec_memory_chunks, fts_memory_chunks")

    # -- reads --------------------------------------------------------------

    def vector_count(self) -> int:
        return int(self._get_conn().execute("SELECT COUNT(*) FROM vec_memory_chunks").fetchone()[0])

    def knn(self, query_vec: np.ndarray, k: int) -> list[tuple[int, float]]:
        """Exact k nearest neighbours by cosine distance (lower = closer)."""
        if k <= 0:
            return []
        rows = self._get_conn().execute("SELECT chunk_id, embedding FROM vec_memory_chunks").fetchall()
        if not rows:
            return []

        q = np.asarray(query_vec, dtype=np.float32).ravel()
        ids = np.array([r["chunk_id"] for r in rows], dtype=np.int64)
        mat = np.vstack([_blob_to_vec(r["embedding"]) for r in rows])

        qn = np.linalg.norm(q) + 1e-12
        norms = np.linalg.norm(mat, axis=1) + 1e-12
        distances = 1.0 - (mat @ q) / (norms * qn)

        # Stable sort keeps insertion order among equal distances
        order = np.argsort(distances, kind="stable")[:k]
        return [(int(ids[i]), float(distances[i])) for i in order]

    def match(self, query: str, k: int) -> list[tuple[int, float]]:
        """Ranked FTS5 match (BM25 rank, lower = better).

        Raises QuerySyntaxError when FTS5 rejects the query.
        """
        try:
            rows = self._get_conn().execute(
                """SELECT rowid, rank FROM fts_memory_chunks
                   WHERE fts_memory_chunks MATCH ?
                   ORDER BY rank
                   LIMIT ?""",
                (query, k),
            ).fetchall()
        except sqlite3.OperationalError as e:
            raise QuerySyntaxError(f"FTS5 query failed: {e}") from e
        return [(int(r["rowid"]), float(r["rank"])) for r in rows]

    def fetch_rows(self, ids: Sequence[int]) -> dict[int, ChunkRow]:
        """Batch-fetch backing rows by id."""
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        rows = self._get_conn().execute(
            f"SELECT {ROW_COLUMNS} FROM memory_chunks WHERE id IN ({placeholders})",
            list(ids),
        ).fetchall()
        return {int(r["id"]): _row(r) for r in rows}

    def rows_for_file(self, file_path: str) -> list[ChunkRow]:
        rows = self._get_conn().execute(
            f"SELECT {ROW_COLUMNS} FROM memory_chunks WHERE file_path=? ORDER BY id",
            (file_path,),
        ).fetchall()
        return [_row(r) for r in rows]

    def counts_for_file(self, file_path: str) -> dict[str, int]:
        """Row counts for one file in each store."""
        conn = self._get_conn()
        backing = conn.execute("SELECT COUNT(*) FROM memory_chunks WHERE file_path=?", (file_path,)).fetchone()[0]
        vector = conn.execute(
            """SELECT COUNT(*) FROM vec_memory_chunks v
               JOIN memory_chunks c ON c.id = v.chunk_id WHERE c.file_path=?""",
            (file_path,),
        ).fetchone()[0]
        # The MATCH goes through the FTS index itself; the rowid join pins it to this exact path
        keyword = conn.execute(
            """SELECT COUNT(*) FROM fts_memory_chunks
               WHERE fts_memory_chunks MATCH ?
                 AND rowid IN (SELECT id FROM memory_chunks WHERE file_path=?)""",
            ('file_path : "' + file_path.replace('"', '""') + '"', file_path),
        ).fetchone()[0]
        return {"backing": int(backing), "vector": int(vector), "keyword": int(keyword)}

    def indexed_files(self) -> list[str]:
        rows = self._get_conn().execute("SELECT DISTINCT file_path FROM memory_chunks ORDER BY file_path").fetchall()
        return [r[0] for r in rows]

    def status(self) -> dict[str, Any]:
        conn = self._get_conn()
        chunks = conn.execute("SELECT COUNT(*) FROM memory_chunks").fetchone()[0]
        files = conn.execute("SELECT COUNT(DISTINCT file_path) FROM memory_chunks").fetchone()[0]
        vectors = conn.execute("SELECT COUNT(*) FROM vec_memory_chunks").fetchone()[0]
        orphans = conn.execute(
            """SELECT
                 (SELECT COUNT(*) FROM memory_chunks c
                    WHERE NOT EXISTS (SELECT 1 FROM vec_memory_chunks v WHERE v.chunk_id = c.id))
               + (SELECT COUNT(*) FROM vec_memory_chunks v
                    WHERE NOT EXISTS (SELECT 1 FROM memory_chunks c WHERE c.id = v.chunk_id))"""
        ).fetchone()[0]
        return {
            "db_path": str(self.db_path),
            "indexed_files": int(files),
            "indexed_chunks": int(chunks),
            "vector_entries": int(vectors),
            "consistent": int(orphans) == 0,
        }
