"""Schema versioning for the memory index database."""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Callable

from ..errors import IncompatibleIndex

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2


class SchemaManager:
    """Tracks the schema version in a `schema_metadata` table.

    Migrations run sequentially from the stored version up to
    CURRENT_SCHEMA_VERSION.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def ensure_current(self) -> None:
        self._ensure_metadata_table()
        current = self._get_version()

        if current == CURRENT_SCHEMA_VERSION:
            logger.debug(f"Schema already at version {current}")
            return

        if current == 0:
            # Fresh database (tables were just created from SCHEMA_SQL) or a
            # database written before versioning; both already match v1.
            self._stamp_version(1)
            current = 1

        for target in range(current + 1, CURRENT_SCHEMA_VERSION + 1):
            migration = _MIGRATIONS.get(target)
            if migration is None:
                raise RuntimeError(f"No migration found for version {target}")
            logger.info(f"Running migration to v{target}")
            migration(self._conn)
            self._stamp_version(target)
            logger.info(f"Migration to v{target} complete")

    def check_vector_table(self) -> None:
        """Refuse a vec_memory_chunks table that is not the BLOB layout.

        Indexes built with the sqlite-vec extension keep vectors in a `vec0`
        virtual table, which cannot be read (or even dropped) without that
        extension. Such a database has to be rebuilt from the markdown files.
        """
        row = self._conn.execute(
            "SELECT sql FROM sqlite_master WHERE name = 'vec_memory_chunks'"
        ).fetchone()
        if row is None:
            return
        sql = (row[0] or "").lower()
        if "using vec0" in sql or "dims" not in sql or "embedding" not in sql:
            raise IncompatibleIndex(
                "vec_memory_chunks was written by another vector engine (sqlite-vec?) "
                "and cannot be read. Delete the index database and run `wrexmem index` to rebuild it."
            )

    def version(self) -> int:
        self._ensure_metadata_table()
        return self._get_version()

    def _ensure_metadata_table(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def _get_version(self) -> int:
        row = self._conn.execute(
            "SELECT value FROM schema_metadata WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return 0
        return int(row[0])

    def _stamp_version(self, version: int) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            """INSERT INTO schema_metadata (key, value, applied_at)
               VALUES ('schema_version', ?, ?)
               ON CONFLICT(key) DO UPDATE SET value=excluded.value, applied_at=excluded.applied_at
            """,
            (str(version), now),
        )
        self._conn.commit()


def _migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    """v2: drop the unused embedding_hash column from memory_chunks.

    Older BLOB-vector databases carry it; fresh ones never had it. Columns are
    matched by name so the migration is safe either way. sqlite-vec databases
    never reach this point, check_vector_table() rejects them first.
    """
    cols = [r[1] for r in conn.execute("PRAGMA table_info(memory_chunks)").fetchall()]
    if "embedding_hash" in cols:
        conn.execute("ALTER TABLE memory_chunks DROP COLUMN embedding_hash")
        conn.commit()


_MIGRATIONS: dict[int, Callable[[sqlite3.Connection], None]] = {
    2: _migrate_v1_to_v2,
}
