"""wrexmem: local hybrid search over a directory of markdown memory files.

Markdown files are split at headings, embedded with a local sentence
embedding model, and stored in SQLite next to an FTS5 keyword index.
Queries run vector and keyword search together and fuse the two rankings
with Reciprocal Rank Fusion. All data stays local.

Public API:
- MemoryConfig, load_config
- MemoryService
- chunk_markdown
- Embedder
- MemoryIndexer
- HybridSearcher
"""

from .chunking.markdown_chunker import chunk_markdown
from .config import MemoryConfig, load_config
from .embeddings.embedder import Embedder
from .indexer.indexer import MemoryIndexer
from .models import SearchResult, Source, TaskType
from .retrieval.retriever import HybridSearcher
from .service import MemoryService

__all__ = [
    "MemoryConfig",
    "load_config",
    "MemoryService",
    "chunk_markdown",
    "Embedder",
    "MemoryIndexer",
    "HybridSearcher",
    "SearchResult",
    "Source",
    "TaskType",
]
