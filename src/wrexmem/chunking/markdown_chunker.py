from __future__ import annotations

import re
from dataclasses import dataclass

from ..models import Chunk

# Only levels 1-3 start a new chunk; deeper headings stay inside their section.
HEADING_RE = re.compile(r"^(#{1,3})\s+(.+)")

MAX_CHUNK_CHARS = 2048


@dataclass
class MarkdownChunker:
    """Heading-aware markdown chunker.

    Splits content at heading boundaries (#, ##, ###). A section longer than
    max_chunk_chars is split again at paragraph boundaries, carrying the last
    line of each sub-chunk forward as the first line of the next one. The
    bound is soft: a sub-chunk closes only after it exceeds the bound and
    reaches a paragraph boundary, so one oversized paragraph is kept whole.
    """

    max_chunk_chars: int = MAX_CHUNK_CHARS

    def chunk(self, content: str, file_path: str) -> list[Chunk]:
        if not content.strip():
            return []

        lines = content.split("\n")
        chunks: list[Chunk] = []
        heading = ""
        pending: list[str] = []
        start_line = 1

        for i, line in enumerate(lines):
            m = HEADING_RE.match(line)
            if m and pending:
                # Line i + 1 (1-indexed) is the heading; the pending chunk ends just before it
                chunks.extend(self._flush(pending, start_line, i, file_path, heading))
                pending = []
                start_line = i + 1
            if m:
                heading = m.group(2)
            pending.append(line)

        if pending:
            chunks.extend(self._flush(pending, start_line, len(lines), file_path, heading))

        return chunks

    def _flush(
        self,
        lines: list[str],
        start_line: int,
        end_line: int,
        file_path: str,
        heading: str,
    ) -> list[Chunk]:
        text = "\n".join(lines)
        if not text.strip():
            return []
        if len(text) > self.max_chunk_chars:
            return self._split_at_paragraphs(lines, start_line, file_path, heading)
        return [Chunk(content=text, file_path=file_path, heading=heading,
                      start_line=start_line, end_line=end_line)]

    def _split_at_paragraphs(
        self,
        lines: list[str],
        start_line: int,
        file_path: str,
        heading: str,
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        sub: list[str] = []
        sub_start = start_line
        length = 0
        carried = False

        for i, line in enumerate(lines):
            sub.append(line)
            length += len(line) + 1

            is_blank = line.strip() == ""
            next_is_blank = i + 1 < len(lines) and lines[i + 1].strip() == ""
            at_paragraph_boundary = is_blank and not next_is_blank

            if at_paragraph_boundary and length > self.max_chunk_chars:
                end = sub_start + len(sub) - 1
                chunks.append(Chunk(content="\n".join(sub), file_path=file_path,
                                    heading=heading, start_line=sub_start, end_line=end))
                # NOTE: the carried line is indexed twice (end of this chunk, start of the next)
                last = sub[-1]
                sub = [last]
                sub_start = end
                length = len(last) + 1
                carried = True
            else:
                carried = False

        # A remainder holding only the carried line adds nothing new
        if sub and not (carried and len(sub) == 1):
            chunks.append(Chunk(content="\n".join(sub), file_path=file_path, heading=heading,
                                start_line=sub_start, end_line=start_line + len(lines) - 1))

        return chunks


def chunk_markdown(content: str, file_path: str, max_chunk_chars: int = MAX_CHUNK_CHARS) -> list[Chunk]:
    """Split a markdown document into heading-scoped chunks."""
    return MarkdownChunker(max_chunk_chars=max_chunk_chars).chunk(content, file_path)
