from __future__ import annotations

import logging
import time
from pathlib import Path

import numpy as np

from ..chunking.markdown_chunker import MarkdownChunker
from ..embeddings.embedder import Embedder
from ..errors import FileNotReadable, IndexWriteFailure
from ..models import Chunk, IndexStats, TaskType
from ..store.sqlite_store import MemoryStore
from .reconciler import Reconciler

logger = logging.getLogger(__name__)


class MemoryIndexer:
    """Orchestrates chunk -> embed -> store for markdown memory files.

    Every mutation of a file's index is one transaction across the backing,
    vector and keyword stores. Embedding happens before the transaction
    opens, so nothing is written until all vectors are in hand.

    Overlapping reindex_file() calls for the same path are not serialized
    here; callers must not issue them.
    """

    def __init__(self, store: MemoryStore, embedder: Embedder, chunker: MarkdownChunker | None = None) -> None:
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or MarkdownChunker()
        self._schema_ready = False

    def ensure_schema(self) -> None:
        """Create the stores if needed. Runs once per indexer; later calls are no-ops."""
        if self._schema_ready:
            return
        self.store.init()
        self._schema_ready = True

    def _read_and_chunk(self, path: Path) -> list[Chunk]:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FileNotReadable(str(path), str(e)) from e
        return self.chunker.chunk(content, str(path))

    async def _embed_chunks(self, chunks: list[Chunk]) -> list[np.ndarray]:
        # Sequential on purpose: the backend takes one request at a time
        return await self.embedder.embed_batch([c.content for c in chunks], TaskType.DOCUMENT)

    async def index_file(self, path: str | Path) -> int:
        """Index a markdown file into all three stores. Returns chunks indexed."""
        self.ensure_schema()
        file_path = Path(path).resolve()

        chunks = self._read_and_chunk(file_path)
        if not chunks:
            logger.info(f"No chunks produced for {file_path}")
            return 0

        vectors = await self._embed_chunks(chunks)
        self.store.add_file_chunks(chunks, vectors)

        logger.info(f"Indexed {len(chunks)} chunks from {file_path}")
        return len(chunks)

    def remove_file_index(self, path: str | Path) -> int:
        """Remove a file from all stores. No-op for files that were never indexed."""
        self.ensure_schema()
        file_path = Path(path).resolve()
        removed = self.store.remove_file(str(file_path))
        if removed:
            logger.info(f"Removed {removed} chunks for {file_path}")
        else:
            logger.debug(f"Nothing indexed for {file_path}")
        return removed

    async def reindex_file(self, path: str | Path) -> int:
        """Rebuild a file's index from scratch (no diffing).

        Old rows are removed and new rows added in the same transaction, so a
        failure anywhere leaves the previous index untouched.
        """
        self.ensure_schema()
        file_path = Path(path).resolve()

        chunks = self._read_and_chunk(file_path)
        vectors = await self._embed_chunks(chunks) if chunks else []
        self.store.replace_file_chunks(str(file_path), chunks, vectors)

        logger.info(f"Re-indexed {file_path}: {len(chunks)} chunks")
        return len(chunks)

    async def index_directory(self, root: str | Path, ignore: tuple[str, ...] = ()) -> IndexStats:
        """Reindex every markdown file under root.

        An unreadable file or failed write is logged and counted and the rest
        still get indexed. Embedding errors abort the run, since they would
        fail every file.
        """
        self.ensure_schema()
        start = time.time()
        paths = Reconciler(Path(root).resolve(), ignore).scan_files()
        logger.info(f"Found {len(paths)} markdown files in {root}")

        stats = IndexStats(files_scanned=len(paths))
        for p in paths:
            try:
                stats.chunks_created += await self.reindex_file(p)
                stats.files_indexed += 1
            except (FileNotReadable, IndexWriteFailure) as e:
                stats.files_failed += 1
                logger.warning(f"Indexing failed for {p}: {e}")

        stats.elapsed_seconds = time.time() - start
        logger.info(
            f"Indexed {stats.chunks_created} chunks from {stats.files_indexed} file(s) "
            f"in {stats.elapsed_seconds:.1f}s ({stats.files_failed} failed)"
        )
        return stats

    def clear(self) -> None:
        """Erase the whole index (all files, all stores)."""
        self.ensure_schema()
        self.store.clear()
