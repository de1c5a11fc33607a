"""
Tests for Reciprocal Rank Fusion and duplicate collapsing.
"""
import pytest

from wrexmem.models import SearchResult, Source
from wrexmem.retrieval.hybrid import RRFRanker


def _r(id_: int, heading: str = "", start: int | None = None, end: int | None = None,
       source: Source = Source.VECTOR) -> SearchResult:
    start = id_ * 10 if start is None else start
    end = start + 1 if end is None else end
    return SearchResult(id=id_, file_path="/m/a.md", heading=heading or f"h{id_}", content=f"c{id_}",
                        start_line=start, end_line=end, score=0.0, sources=frozenset({source}))


def _vec(*ids):
    return [_r(i, source=Source.VECTOR) for i in ids]


def _lex(*ids):
    return [_r(i, source=Source.KEYWORD) for i in ids]


class TestContribution:
    def test_default_k(self):
        assert RRFRanker().rrf_k == 60

    def test_rank_zero(self):
        assert RRFRanker().contribution(0) == pytest.approx(1 / 61)

    def test_custom_k(self):
        assert RRFRanker(rrf_k=10).contribution(2) == pytest.approx(1 / 13)


class TestFuse:
    def test_in_both_lists_scores_sum(self):
        fused = RRFRanker().fuse(_vec(1, 2), _lex(2, 1))
        scores = {r.id: r.score for r in fused}
        assert scores[1] == pytest.approx(1 / 61 + 1 / 62)
        assert scores[2] == pytest.approx(1 / 62 + 1 / 61)

    def test_single_list_entry(self):
        fused = RRFRanker().fuse(_vec(1), _lex(2, 3))
        scores = {r.id: r.score for r in fused}
        assert scores[1] == pytest.approx(1 / 61)
        assert scores[3] == pytest.approx(1 / 62)

    def test_sorted_descending(self):
        fused = RRFRanker().fuse(_vec(1, 2, 3), _lex(3, 4))
        assert fused[0].id == 3
        assert [r.score for r in fused] == sorted((r.score for r in fused), reverse=True)

    def test_sources_union(self):
        fused = {r.id: r for r in RRFRanker().fuse(_vec(1, 2), _lex(2))}
        assert fused[1].sources == frozenset({Source.VECTOR})
        assert fused[2].sources == frozenset({Source.VECTOR, Source.KEYWORD})

    def test_keyword_only(self):
        fused = RRFRanker().fuse([], _lex(5))
        assert fused[0].sources == frozenset({Source.KEYWORD})

    def test_ties_keep_first_seen_order(self):
        fused = RRFRanker().fuse(_vec(1), _lex(2))
        assert [r.id for r in fused] == [1, 2]

    def test_raw_scores_ignored(self):
        v = [SearchResult(id=1, file_path="f", heading="a", content="", start_line=1, end_line=1,
                          score=999.0, sources=frozenset({Source.VECTOR}))]
        assert RRFRanker().fuse(v, [])[0].score == pytest.approx(1 / 61)


class TestMerge:
    def test_limit_truncates(self):
        merged = RRFRanker().merge(_vec(1, 2, 3, 4), _lex(5, 6), limit=3)
        assert len(merged) == 3

    def test_zero_limit(self):
        assert RRFRanker().merge(_vec(1), _lex(1), limit=0) == []

    def test_empty_inputs(self):
        assert RRFRanker().merge([], [], limit=5) == []

    def test_duplicates_collapsed_on_location(self):
        # ids 1 and 7 are the same passage stored twice
        a = _r(1, heading="Topic", start=3, end=5, source=Source.VECTOR)
        b = _r(7, heading="Topic", start=3, end=5, source=Source.KEYWORD)
        merged = RRFRanker().merge([a, _r(2)], [b], limit=5)

        keys = [r.location_key for r in merged]
        assert keys.count(("Topic", 3, 5)) == 1
        kept = next(r for r in merged if r.location_key == ("Topic", 3, 5))
        assert kept.id == 1
        assert kept.score == pytest.approx(1 / 61)
        assert kept.sources == frozenset({Source.VECTOR, Source.KEYWORD})

    def test_higher_scoring_duplicate_kept(self):
        low = _r(1, heading="T", start=1, end=2)
        high = _r(9, heading="T", start=1, end=2)
        # id 9 appears first in both lists, id 1 only late in the vector list
        merged = RRFRanker().merge([high, _r(2), low], [_r(9, heading="T", start=1, end=2, source=Source.KEYWORD)],
                                   limit=5)
        kept = next(r for r in merged if r.location_key == ("T", 1, 2))
        assert kept.id == 9
        assert kept.score == pytest.approx(2 / 61)

    def test_same_location_in_different_files_collapsed(self):
        # Location identity is (heading, start_line, end_line); file_path is not part of it
        a = SearchResult(id=1, file_path="/m/a.md", heading="A", content="same", start_line=1, end_line=2,
                         score=0.0, sources=frozenset({Source.VECTOR}))
        b = SearchResult(id=2, file_path="/m/sub/a.md", heading="A", content="same", start_line=1, end_line=2,
                         score=0.0, sources=frozenset({Source.KEYWORD}))
        merged = RRFRanker().merge([a], [b], limit=5)
        assert len(merged) == 1
        assert merged[0].file_path == "/m/a.md"
        assert merged[0].sources == frozenset({Source.VECTOR, Source.KEYWORD})

    def test_result_keys_distinct(self):
        merged = RRFRanker().merge(_vec(1, 2, 3), _lex(3, 2, 1), limit=10)
        keys = [r.location_key for r in merged]
        assert len(keys) == len(set(keys))
