from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from ..models import SearchResult, Source

RRF_K = 60


@dataclass
class RRFRanker:
    """Merge vector and keyword results with Reciprocal Rank Fusion.

    Each list contributes 1 / (rank + 1 + k) for a result at 0-indexed rank;
    an id's fused score is the sum over the lists that returned it (missing
    from a list adds nothing). Raw scores are ignored, only positions count.

    Reference: Cormack, Clarke, Buettcher (2009) "Reciprocal Rank Fusion
    outperforms Condorcet and individual Rank Learning Methods"
    """

    rrf_k: int = RRF_K

    def contribution(self, rank: int) -> float:
        return 1 / (rank + 1 + self.rrf_k)

    def fuse(self, vec: Sequence[SearchResult], lex: Sequence[SearchResult]) -> list[SearchResult]:
        """Fused results sorted by descending score, one entry per surrogate id."""
        scores: dict[int, float] = {}
        results: dict[int, SearchResult] = {}
        sources: dict[int, set[Source]] = {}

        for hits, source in ((vec, Source.VECTOR), (lex, Source.KEYWORD)):
            for rank, r in enumerate(hits):
                scores[r.id] = scores.get(r.id, 0.0) + self.contribution(rank)
                # Keep the first row seen (vector before keyword)
                results.setdefault(r.id, r)
                sources.setdefault(r.id, set()).add(source)

        # sorted() is stable, so ties keep first-seen order
        ranked = sorted(scores, key=lambda rid: scores[rid], reverse=True)
        return [
            replace(results[rid], score=scores[rid], sources=frozenset(sources[rid]))
            for rid in ranked
        ]

    def merge(self, vec: Sequence[SearchResult], lex: Sequence[SearchResult], limit: int) -> list[SearchResult]:
        """Fuse, collapse duplicate passages, and keep the best `limit`.

        Duplicates share (heading, start_line, end_line): the same passage can
        be stored under several ids, e.g. when a file was indexed under two
        path spellings. The highest-scoring duplicate keeps its row and score;
        the sources of all duplicates are unioned into it.
        """
        if limit <= 0:
            return []

        deduped: dict[tuple[str, int, int], SearchResult] = {}
        for r in self.fuse(vec, lex):
            kept = deduped.get(r.location_key)
            if kept is None:
                deduped[r.location_key] = r
            else:
                deduped[r.location_key] = replace(kept, sources=kept.sources | r.sources)

        return list(deduped.values())[:limit]
