from __future__ import annotations

import asyncio
import logging

from ..embeddings.embedder import Embedder
from ..errors import QuerySyntaxError
from ..models import ChunkRow, SearchResult, Source, TaskType
from ..store.sqlite_store import MemoryStore
from .hybrid import RRFRanker

logger = logging.getLogger(__name__)


def _attach_rows(hits: list[tuple[int, float]], rows: dict[int, ChunkRow], source: Source) -> list[SearchResult]:
    """Join (id, score) hits with their rows, keeping hit order."""
    results: list[SearchResult] = []
    for row_id, score in hits:
        row = rows.get(row_id)
        if row is None:
            continue
        results.append(SearchResult.from_row(row, score=score, source=source))
    return results


class HybridSearcher:
    """Vector KNN + FTS5 keyword search fused with RRF."""

    def __init__(
        self,
        store: MemoryStore,
        embedder: Embedder,
        ranker: RRFRanker | None = None,
        candidate_multiplier: int = 2,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.ranker = ranker or RRFRanker()
        self.candidate_multiplier = candidate_multiplier

    async def vector_search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """Nearest chunks by cosine distance. score is the raw distance (lower = closer)."""
        if self.store.vector_count() == 0:
            return []

        query_vec = await self.embedder.embed(query, TaskType.QUERY)
        hits = self.store.knn(query_vec, limit)
        if not hits:
            return []

        rows = self.store.fetch_rows([row_id for row_id, _ in hits])
        return _attach_rows(hits, rows, Source.VECTOR)

    def _keyword_hits(self, query: str, limit: int) -> list[SearchResult]:
        try:
            hits = self.store.match(query, limit)
        except QuerySyntaxError as e:
            # Special characters, unbalanced quotes, ...: no keyword results
            logger.warning(f"Keyword search skipped for {query!r}: {e}")
            return []
        if not hits:
            return []
        rows = self.store.fetch_rows([row_id for row_id, _ in hits])
        return _attach_rows(hits, rows, Source.KEYWORD)

    async def keyword_search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """BM25-ranked FTS5 match. score is the FTS5 rank (lower = better).

        Malformed query syntax yields [] instead of an error.
        """
        return await asyncio.to_thread(self._keyword_hits, query, limit)

    async def hybrid_search(self, query: str, limit: int = 5) -> list[SearchResult]:
        """Best `limit` passages for query, highest fused score first."""
        if limit <= 0:
            return []
        expanded = limit * self.candidate_multiplier

        vec_hits, lex_hits = await asyncio.gather(
            self.vector_search(query, expanded),
            self.keyword_search(query, expanded),
        )
        if not vec_hits and not lex_hits:
            return []

        results = self.ranker.merge(vec_hits, lex_hits, limit)
        logger.debug(
            f"hybrid_search {query!r}: {len(vec_hits)} vector, {len(lex_hits)} keyword -> {len(results)} results"
        )
        return results
