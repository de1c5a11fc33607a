"""Memory file tool handlers.

Each handler takes the service and a params dict and returns a JSON-ready
dict. Failures come back as {"error": ..., "is_error": True}; they never
raise into the calling tool layer.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .errors import PathOutsideMemoryDir, WrexMemError
from .indexer.reconciler import Reconciler
from .models import SearchResult
from .service import MemoryService

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


def _error(message: str) -> dict[str, Any]:
    return {"error": message, "is_error": True}


def resolve_memory_path(memory_dir: Path, rel_path: str) -> Path:
    """Resolve rel_path inside memory_dir, rejecting anything that escapes it."""
    root = memory_dir.resolve()
    full = (root / rel_path).resolve()
    if full != root and root not in full.parents:
        raise PathOutsideMemoryDir(f"Path traversal detected: {rel_path!r} is outside the memory directory.")
    return full


def format_results(query: str, results: list[SearchResult]) -> str:
    if not results:
        return f"No relevant memories found for: {query}"
    blocks = []
    for i, r in enumerate(results, 1):
        preview = r.content[:PREVIEW_CHARS].replace("\n", " ")
        more = "..." if len(r.content) > PREVIEW_CHARS else ""
        sources = ", ".join(sorted(s.value for s in r.sources))
        blocks.append("\n".join([
            f"### {i}. {r.heading or '(no heading)'}",
            f"**File:** {r.file_path}  ",
            f"**Lines:** {r.start_line}-{r.end_line}  ",
            f"**Score:** {r.score:.4f} ({sources})",
            "",
            f"{preview}{more}",
        ]))
    return f'Found {len(results)} result(s) for: "{query}"\n\n' + "\n\n---\n\n".join(blocks)


async def tool_search(service: MemoryService, params: dict[str, Any]) -> dict[str, Any]:
    """Search memories.

    Params:
        query: Natural language search query
        limit: Maximum number of results (default 5)
    """
    query = str(params.get("query", ""))
    limit = int(params.get("limit", service.cfg.default_limit))
    try:
        results = await service.hybrid_search(query, limit)
    except (WrexMemError, OSError) as e:
        logger.error(f"memory_search error: {e}")
        return _error(f"Search failed: {e}")
    return {
        "results": [r.to_dict() for r in results],
        "text": format_results(query, results),
    }


async def tool_get(service: MemoryService, params: dict[str, Any]) -> dict[str, Any]:
    """Read a memory file, optionally a 1-indexed inclusive line range."""
    rel = str(params.get("path", ""))
    try:
        full = resolve_memory_path(service.cfg.memory_dir, rel)
    except PathOutsideMemoryDir as e:
        return _error(str(e))
    if not full.is_file():
        return _error(f"File not found: {rel}")

    try:
        content = full.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"memory_get error: {e}")
        return _error(f"Error reading file: {e}")

    start_line = params.get("start_line")
    end_line = params.get("end_line")
    if start_line is not None or end_line is not None:
        lines = content.split("\n")
        start = int(start_line or 1) - 1
        end = int(end_line) if end_line is not None else len(lines)
        content = "\n".join(lines[max(start, 0):end])
    return {"path": rel, "content": content}


async def tool_write(service: MemoryService, params: dict[str, Any]) -> dict[str, Any]:
    """Write a memory file and reindex it so it is searchable right away.

    Params:
        path: File path relative to the memory directory
        content: Markdown to write
        mode: "append" (default, joined with a newline) or "overwrite"
    """
    rel = str(params.get("path", ""))
    content = str(params.get("content", ""))
    mode = params.get("mode", "append")
    if mode not in ("append", "overwrite"):
        return _error(f"Invalid mode: {mode}. Use 'append' or 'overwrite'.")
    try:
        full = resolve_memory_path(service.cfg.memory_dir, rel)
    except PathOutsideMemoryDir as e:
        return _error(str(e))

    try:
        full.parent.mkdir(parents=True, exist_ok=True)
        if mode == "append" and full.exists():
            existing = full.read_text(encoding="utf-8")
            new_content = existing + "\n" + content if existing else content
        else:
            new_content = content
        full.write_text(new_content, encoding="utf-8")
        chunk_count = await service.reindex_file(full)
    except (WrexMemError, OSError) as e:
        logger.error(f"memory_write error: {e}")
        return _error(f"Error writing file: {e}")

    return {"path": rel, "chunks": chunk_count,
            "text": f"Written to {rel} and re-indexed ({chunk_count} chunks)."}


async def tool_list(service: MemoryService, params: dict[str, Any]) -> dict[str, Any]:
    """List memory files with size and last modified date."""
    directory = str(params.get("directory", "") or "")
    try:
        target = resolve_memory_path(service.cfg.memory_dir, directory)
    except PathOutsideMemoryDir as e:
        return _error(str(e))
    if not target.is_dir():
        return _error(f"Directory not found: {directory}")

    rec = Reconciler(service.cfg.memory_dir.resolve(), service.cfg.ignore)
    files = rec.list_files(target)
    return {"files": [{"path": f.rel_path, "size": f.size, "modified": f.modified} for f in files]}


async def tool_reindex(service: MemoryService, params: dict[str, Any]) -> dict[str, Any]:
    """Reindex one file (removing it from the index if deleted on disk), or all files."""
    rel = params.get("path")
    try:
        if rel:
            full = resolve_memory_path(service.cfg.memory_dir, str(rel))
            if not full.exists():
                service.remove_file_index(full)
                return {"path": rel, "chunks": 0, "removed": True,
                        "text": f"{rel} not found on disk. Removed from search index."}
            chunk_count = await service.reindex_file(full)
            return {"path": rel, "chunks": chunk_count, "text": f"Re-indexed {rel} ({chunk_count} chunks)."}

        stats = await service.index_all()
        return {
            "files": stats.files_indexed,
            "failed": stats.files_failed,
            "chunks": stats.chunks_created,
            "text": f"Re-indexed {stats.files_indexed} file(s), {stats.chunks_created} total chunks.",
        }
    except PathOutsideMemoryDir as e:
        return _error(str(e))
    except (WrexMemError, OSError) as e:
        logger.error(f"memory_reindex error: {e}")
        return _error(f"Error re-indexing: {e}")


TOOLS = {
    "memory_search": tool_search,
    "memory_get": tool_get,
    "memory_write": tool_write,
    "memory_list": tool_list,
    "memory_reindex": tool_reindex,
}
