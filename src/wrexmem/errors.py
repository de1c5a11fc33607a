"""Exception types raised by the memory index and search engine."""
from __future__ import annotations


class WrexMemError(Exception):
    """Base class for all wrexmem errors."""


class ConfigError(WrexMemError, ValueError):
    """Invalid configuration value."""


class EmbeddingError(WrexMemError):
    """Embedding backend failed to load or to encode text."""


class ModelUnavailable(EmbeddingError):
    """Embedding model files could not be located."""

    def __init__(self, model_id: str, detail: str = "") -> None:
        self.model_id = model_id
        message = (
            f"Embedding model '{model_id}' not found. Download it with "
            f"`huggingface-cli download {model_id}` (or run once with "
            f"offline_mode = false), or point [embeddings] model_path at a local copy."
        )
        if detail:
            message += f"\nOriginal error: {detail}"
        super().__init__(message)


class EmbeddingDimensionMismatch(EmbeddingError):
    """Backend returned a vector of unexpected length."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected}-dim vector, got {actual}-dim")


class QuerySyntaxError(WrexMemError):
    """Keyword index rejected the query syntax."""


class IndexWriteFailure(WrexMemError):
    """A multi-store write transaction failed and was rolled back."""


class FileNotReadable(WrexMemError):
    """Source markdown file is missing or cannot be read."""

    def __init__(self, path: str, detail: str = "") -> None:
        self.path = path
        super().__init__(f"Cannot read {path}" + (f": {detail}" if detail else ""))


class PathOutsideMemoryDir(WrexMemError):
    """Requested path resolves outside the memory directory."""


class IncompatibleIndex(WrexMemError):
    """Existing index database uses a table layout this store cannot read."""
