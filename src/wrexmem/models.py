from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

EMBEDDING_DIM = 768


class Source(str, Enum):
    """Retrieval path that contributed a search result."""
    VECTOR = "vector"
    KEYWORD = "keyword"


class TaskType(str, Enum):
    DOCUMENT = "search_document"
    QUERY = "search_query"


@dataclass(frozen=True)
class Chunk:
    """Contiguous span of a markdown file.

    heading is the nearest preceding level 1-3 heading ("" if none).
    start_line / end_line are 1-indexed and inclusive.
    """
    content: str
    file_path: str
    heading: str
    start_line: int
    end_line: int


@dataclass(frozen=True)
class ChunkRow:
    """Persisted backing row for a chunk."""
    id: int
    file_path: str
    heading: str
    content: str
    start_line: int
    end_line: int
    created_at: int = 0


@dataclass(frozen=True)
class SearchResult:
    id: int
    file_path: str
    heading: str
    content: str
    start_line: int
    end_line: int
    score: float
    sources: frozenset[Source] = field(default_factory=frozenset)

    @classmethod
    def from_row(cls, row: ChunkRow, score: float, source: Source) -> "SearchResult":
        return cls(
            id=row.id,
            file_path=row.file_path,
            heading=row.heading,
            content=row.content,
            start_line=row.start_line,
            end_line=row.end_line,
            score=score,
            sources=frozenset({source}),
        )

    @property
    def location_key(self) -> tuple[str, int, int]:
        return (self.heading, self.start_line, self.end_line)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "heading": self.heading,
            "content": self.content,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "score": self.score,
            "sources": sorted(s.value for s in self.sources),
        }


@dataclass
class IndexStats:
    files_scanned: int = 0
    files_indexed: int = 0
    files_failed: int = 0
    chunks_created: int = 0
    elapsed_seconds: float = 0.0
