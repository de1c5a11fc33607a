from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path


def matches_ignore_pattern(rel_path: str, patterns: tuple[str, ...] | list[str]) -> bool:
    """Check if a relative path matches any of the ignore patterns.

    Supports glob patterns like:
    - "**/.DS_Store" - match .DS_Store in any directory
    - ".git/**" - match everything under .git
    - "drafts/*.md" - plain fnmatch against the relative path
    """
    rel_path = rel_path.replace("\\", "/")

    for pattern in patterns:
        pattern = pattern.replace("\\", "/")

        if pattern.startswith("**/"):
            suffix = pattern[3:]
            if fnmatch(rel_path, pattern) or fnmatch(rel_path, f"*/{suffix}"):
                return True
            parts = rel_path.split("/")
            for i, part in enumerate(parts):
                if fnmatch(part, suffix) or fnmatch("/".join(parts[i:]), suffix):
                    return True

        elif pattern.endswith("/**"):
            prefix = pattern[:-3]
            if rel_path.startswith(prefix + "/") or rel_path == prefix:
                return True

        elif fnmatch(rel_path, pattern):
            return True

    return False


@dataclass(frozen=True)
class MemoryFile:
    rel_path: str
    size: int
    modified: str  # YYYY-MM-DD


@dataclass
class Reconciler:
    """Finds files under the memory directory, respecting ignore patterns."""
    root: Path
    ignore: tuple[str, ...] | list[str] = field(default_factory=tuple)

    def scan_files(self, suffix: str | None = ".md") -> list[Path]:
        paths: list[Path] = []
        if not self.root.exists():
            return paths
        for p in sorted(self.root.rglob("*")):
            if not p.is_file():
                continue
            if suffix and p.suffix.lower() != suffix:
                continue
            rel_path = str(p.relative_to(self.root)).replace("\\", "/")
            if not matches_ignore_pattern(rel_path, self.ignore):
                paths.append(p)
        return paths

    def list_files(self, directory: Path | None = None) -> list[MemoryFile]:
        """All files under directory (default: root) with size and modified date."""
        base = directory or self.root
        out: list[MemoryFile] = []
        for p in Reconciler(base).scan_files(suffix=None):
            # Ignore globs are written relative to root, not to the listed directory
            rel_path = str(p.relative_to(self.root)).replace("\\", "/")
            if matches_ignore_pattern(rel_path, self.ignore):
                continue
            st = p.stat()
            out.append(MemoryFile(
                rel_path=rel_path,
                size=int(st.st_size),
                modified=datetime.fromtimestamp(st.st_mtime).strftime("%Y-%m-%d"),
            ))
        return out
