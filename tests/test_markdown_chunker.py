"""
Tests for the heading-aware markdown chunker.
"""
from wrexmem.chunking.markdown_chunker import MarkdownChunker, chunk_markdown


def _paragraphs(n: int, width: int = 300) -> list[str]:
    return [f"para{i} " + ("x" * (width - len(f"para{i} "))) for i in range(n)]


class TestHeadingSplits:
    """Sections are cut at level 1-3 headings."""

    def test_empty_and_whitespace_yield_nothing(self):
        assert chunk_markdown("", "a.md") == []
        assert chunk_markdown("   \n\n\t\n", "a.md") == []

    def test_no_headings_single_chunk(self):
        chunks = chunk_markdown("just some text\nand more", "a.md")
        assert len(chunks) == 1
        c = chunks[0]
        assert c.heading == ""
        assert c.start_line == 1
        assert c.end_line == 2
        assert c.content == "just some text\nand more"
        assert c.file_path == "a.md"

    def test_split_at_headings(self):
        content = "# A\ntext a\n## B\ntext b\n### C\ntext c"
        chunks = chunk_markdown(content, "notes.md")

        assert [c.heading for c in chunks] == ["A", "B", "C"]
        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 2), (3, 4), (5, 6)]
        assert chunks[0].content == "# A\ntext a"
        assert chunks[1].content == "## B\ntext b"

    def test_preamble_before_first_heading(self):
        chunks = chunk_markdown("intro line\n# Title\nbody", "a.md")
        assert [c.heading for c in chunks] == ["", "Title"]
        assert chunks[0].content == "intro line"
        assert (chunks[1].start_line, chunks[1].end_line) == (2, 3)

    def test_level_four_heading_does_not_split(self):
        chunks = chunk_markdown("## Section\nbody\n#### Detail\nmore", "a.md")
        assert len(chunks) == 1
        assert chunks[0].heading == "Section"
        assert "#### Detail" in chunks[0].content

    def test_hash_without_space_is_not_heading(self):
        chunks = chunk_markdown("# Real\n#hashtag line\ntext", "a.md")
        assert len(chunks) == 1
        assert chunks[0].heading == "Real"

    def test_heading_only_section_is_kept(self):
        chunks = chunk_markdown("# Empty\n# Next\nbody", "a.md")
        assert [c.content for c in chunks] == ["# Empty", "# Next\nbody"]

    def test_whitespace_only_preamble_skipped(self):
        chunks = chunk_markdown("\n\n# A\nbody", "a.md")
        assert len(chunks) == 1
        assert chunks[0].start_line == 3
        assert chunks[0].heading == "A"

    def test_trailing_newline_stays_in_last_chunk(self):
        chunks = chunk_markdown("# A\nbody\n", "a.md")
        assert chunks[-1].end_line == 3
        assert chunks[-1].content == "# A\nbody\n"


class TestLineRanges:
    """Line numbers are 1-indexed, inclusive, and cover the document."""

    def test_content_matches_line_range(self):
        content = "pre\n# A\none\ntwo\n## B\nthree\n### C\nfour\nfive"
        lines = content.split("\n")
        for c in chunk_markdown(content, "a.md"):
            assert c.start_line >= 1
            assert c.start_line <= c.end_line
            assert c.content == "\n".join(lines[c.start_line - 1:c.end_line])

    def test_ranges_cover_every_line(self):
        content = "pre\n# A\none\n\n## B\nthree\n### C\nfour"
        chunks = chunk_markdown(content, "a.md")
        covered = set()
        for c in chunks:
            covered.update(range(c.start_line, c.end_line + 1))
        assert covered == set(range(1, len(content.split("\n")) + 1))


class TestOversizedSections:
    """Sections over the bound are split at paragraph boundaries with one line of overlap."""

    def _long_section(self, n: int = 12, width: int = 300) -> str:
        return "## Long\n" + "\n\n".join(_paragraphs(n, width))

    def test_short_section_not_split(self):
        chunker = MarkdownChunker(max_chunk_chars=2048)
        assert len(chunker.chunk("# A\n" + "y" * 1000, "a.md")) == 1

    def test_long_section_is_split(self):
        chunks = chunk_markdown(self._long_section(), "a.md", max_chunk_chars=1000)
        assert len(chunks) > 1
        assert all(c.heading == "Long" for c in chunks)

    def test_sub_chunks_overlap_by_one_line(self):
        chunks = chunk_markdown(self._long_section(), "a.md", max_chunk_chars=1000)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_line == prev.end_line
            assert nxt.content.split("\n")[0] == prev.content.split("\n")[-1]

    def test_sub_chunks_bounded_by_one_paragraph(self):
        width = 300
        limit = 1000
        chunks = chunk_markdown(self._long_section(width=width), "a.md", max_chunk_chars=limit)
        for c in chunks:
            assert len(c.content) <= limit + width + 2

    def test_sub_chunk_content_matches_lines(self):
        content = self._long_section()
        lines = content.split("\n")
        for c in chunk_markdown(content, "a.md", max_chunk_chars=1000):
            assert c.content == "\n".join(lines[c.start_line - 1:c.end_line])

    def test_split_covers_whole_section(self):
        content = self._long_section()
        chunks = chunk_markdown(content, "a.md", max_chunk_chars=1000)
        assert chunks[0].start_line == 1
        assert chunks[-1].end_line == len(content.split("\n"))

    def test_single_huge_paragraph_kept_whole(self):
        content = "# Big\n" + "z" * 5000
        chunks = chunk_markdown(content, "a.md", max_chunk_chars=1000)
        assert len(chunks) == 1
        assert chunks[0].content == content

    def test_every_paragraph_lands_somewhere(self):
        paras = _paragraphs(12)
        content = "## Long\n" + "\n\n".join(paras)
        joined = "\n".join(c.content for c in chunk_markdown(content, "a.md", max_chunk_chars=1000))
        for p in paras:
            assert p in joined


class TestDeterminism:
    def test_same_input_same_chunks(self):
        content = "# A\n" + "\n\n".join(_paragraphs(15)) + "\n## B\nend"
        assert chunk_markdown(content, "a.md", 900) == chunk_markdown(content, "a.md", 900)
