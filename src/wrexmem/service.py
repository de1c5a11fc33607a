from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Callable, Sequence

import numpy as np

from .chunking.markdown_chunker import MarkdownChunker
from .config import MemoryConfig
from .embeddings.base import EmbeddingBackend
from .embeddings.embedder import Embedder
from .errors import WrexMemError
from .indexer.indexer import MemoryIndexer
from .models import Chunk, IndexStats, SearchResult, TaskType
from .retrieval.hybrid import RRFRanker
from .retrieval.retriever import HybridSearcher
from .store.sqlite_store import MemoryStore

logger = logging.getLogger(__name__)


def default_backend_factory(cfg: MemoryConfig) -> Callable[[], EmbeddingBackend]:
    def _factory() -> EmbeddingBackend:
        from .embeddings.sentence_transformers import SentenceTransformersBackend
        cfg.apply_offline_mode()
        return SentenceTransformersBackend(
            model_id=cfg.embedding_model,
            model_path=cfg.embedding_model_path,
            device=cfg.embedding_device,
        )
    return _factory


class MemoryService:
    """Owns the store, embedder, indexer and searcher for one process.

    Construct once at startup, call initialize(), pass it to whoever needs
    memory search, and await shutdown() on exit:

        service = MemoryService(load_config())
        service.initialize()
        results = await service.hybrid_search("what does the user prefer?")
        await service.shutdown()
    """

    def __init__(
        self,
        cfg: MemoryConfig,
        backend_factory: Callable[[], EmbeddingBackend] | None = None,
    ) -> None:
        self.cfg = cfg
        self.chunker = MarkdownChunker(max_chunk_chars=cfg.max_chunk_chars)
        self.store = MemoryStore(cfg.db_path)
        self.embedder = Embedder(
            backend_factory or default_backend_factory(cfg),
            prefixes={TaskType.DOCUMENT: cfg.document_prefix, TaskType.QUERY: cfg.query_prefix},
        )
        self.indexer = MemoryIndexer(self.store, self.embedder, self.chunker)
        self.searcher = HybridSearcher(
            self.store,
            self.embedder,
            ranker=RRFRanker(rrf_k=cfg.rrf_k),
            candidate_multiplier=cfg.candidate_multiplier,
        )
        self._initialized = False

    def initialize(self) -> None:
        """Prepare the stores. The embedding model still loads lazily on first use."""
        if self._initialized:
            return
        self.indexer.ensure_schema()
        self._initialized = True
        logger.info(f"Memory index ready at {self.cfg.db_path}")

    async def shutdown(self) -> None:
        await self.embedder.dispose()
        self.store.close()
        self._initialized = False

    async def __aenter__(self) -> "MemoryService":
        self.initialize()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.shutdown()

    def _require_ready(self) -> None:
        if not self._initialized:
            self.initialize()

    # -- chunk / embed --------------------------------------------------------

    def chunk_markdown(self, content: str, file_path: str) -> list[Chunk]:
        return self.chunker.chunk(content, file_path)

    async def embed(self, text: str, task_type: TaskType) -> np.ndarray:
        return await self.embedder.embed(text, task_type)

    async def embed_batch(self, texts: Sequence[str], task_type: TaskType) -> list[np.ndarray]:
        return await self.embedder.embed_batch(texts, task_type)

    async def dispose_embedder(self) -> None:
        await self.embedder.dispose()

    # -- index lifecycle --------------------------------------------------------

    def ensure_schema(self) -> None:
        self._require_ready()

    async def index_file(self, path: str | Path) -> int:
        self._require_ready()
        return await self.indexer.index_file(path)

    def remove_file_index(self, path: str | Path) -> int:
        self._require_ready()
        return self.indexer.remove_file_index(path)

    async def reindex_file(self, path: str | Path) -> int:
        self._require_ready()
        return await self.indexer.reindex_file(path)

    async def index_all(self) -> IndexStats:
        """Reindex every markdown file in the memory directory."""
        self._require_ready()
        return await self.indexer.index_directory(self.cfg.memory_dir, self.cfg.ignore)

    def clear(self) -> None:
        self._require_ready()
        self.indexer.clear()

    def status(self) -> dict:
        self._require_ready()
        return {**self.store.status(), "memory_dir": str(self.cfg.memory_dir),
                "model_loaded": self.embedder.is_loaded}

    # -- search ---------------------------------------------------------------

    async def hybrid_search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        self._require_ready()
        return await self.searcher.hybrid_search(query, limit if limit is not None else self.cfg.default_limit)

    async def search_context(self, query: str, limit: int = 3) -> list[SearchResult]:
        """Best-effort search for conversational context.

        Memory is optional there: any engine or I/O failure is logged and
        yields no results.
        """
        try:
            return await self.hybrid_search(query, limit)
        except (WrexMemError, OSError, sqlite3.Error) as e:
            logger.warning(f"Memory search failed (non-fatal): {e}")
            return []
