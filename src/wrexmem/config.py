from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import tomllib
from typing import Any

from .errors import ConfigError

DEFAULT_MEMORY_DIR = "./data/workspace/memory"
DEFAULT_DB_PATH = "./data/wrex.db"
DEFAULT_MODEL = "nomic-ai/nomic-embed-text-v1.5"


def _expand(p: str) -> str:
    return os.path.expandvars(os.path.expanduser(p))


@dataclass(frozen=True)
class MemoryConfig:
    """Configuration for the memory index.

    Paths may be given as strings; they are expanded (~ and $VARS) and
    converted to Path objects.
    """

    memory_dir: Path = Path(DEFAULT_MEMORY_DIR)
    db_path: Path = Path(DEFAULT_DB_PATH)
    ignore: tuple[str, ...] = (".git/**", "**/.DS_Store")

    def __post_init__(self):
        if isinstance(self.memory_dir, str):
            object.__setattr__(self, "memory_dir", Path(_expand(self.memory_dir)))
        if isinstance(self.db_path, str):
            object.__setattr__(self, "db_path", Path(_expand(self.db_path)))
        if isinstance(self.ignore, list):
            object.__setattr__(self, "ignore", tuple(self.ignore))

    # Chunking (~512 tokens at ~4 chars/token)
    max_chunk_chars: int = 2048

    # Embeddings
    embedding_model: str = DEFAULT_MODEL
    embedding_model_path: str | None = None
    embedding_device: str = "cpu"  # cpu|cuda|mps
    offline_mode: bool = True  # Set HF_HUB_OFFLINE and TRANSFORMERS_OFFLINE
    document_prefix: str = "search_document: "
    query_prefix: str = "search_query: "

    # Retrieval
    default_limit: int = 5
    rrf_k: int = 60
    candidate_multiplier: int = 2

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    @staticmethod
    def from_toml(path: str | Path) -> "MemoryConfig":
        data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
        return MemoryConfig.from_dict(data)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "MemoryConfig":
        memory = data.get("memory", {})
        index = data.get("index", {})
        chunking = data.get("chunking", {})
        emb = data.get("embeddings", {})
        ret = data.get("retrieval", {})
        log = data.get("logging", {})

        # Environment variables take precedence over the file for paths
        memory_dir = os.environ.get("MEMORY_DIR") or memory.get("dir", DEFAULT_MEMORY_DIR)
        db_path = os.environ.get("DB_PATH") or index.get("db_path", DEFAULT_DB_PATH)

        max_chunk_chars = int(chunking.get("max_chunk_chars", 2048))
        if max_chunk_chars < 100 or max_chunk_chars > 50000:
            raise ConfigError(f"Invalid max_chunk_chars: {max_chunk_chars}. Must be between 100 and 50000.")

        device = emb.get("device", "cpu")
        valid_devices = ("cpu", "cuda", "mps")
        if device not in valid_devices:
            raise ConfigError(f"Invalid device: {device}. Must be one of {valid_devices}.")

        default_limit = int(ret.get("default_limit", 5))
        rrf_k = int(ret.get("rrf_k", 60))
        candidate_multiplier = int(ret.get("candidate_multiplier", 2))
        if default_limit <= 0 or default_limit > 1000:
            raise ConfigError(f"Invalid default_limit: {default_limit}. Must be between 1 and 1000.")
        if rrf_k < 0:
            raise ConfigError(f"Invalid rrf_k: {rrf_k}. Must be >= 0.")
        if candidate_multiplier < 1 or candidate_multiplier > 20:
            raise ConfigError(f"Invalid candidate_multiplier: {candidate_multiplier}. Must be between 1 and 20.")

        log_level = str(log.get("level", "INFO")).upper()
        if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ConfigError(f"Invalid log level: {log_level}.")

        offline_mode_env = os.environ.get("HF_OFFLINE_MODE")
        if offline_mode_env is not None:
            offline_mode = offline_mode_env.lower() in ("1", "true", "yes")
        else:
            offline_mode = bool(emb.get("offline_mode", True))

        return MemoryConfig(
            memory_dir=Path(_expand(memory_dir)).resolve(),
            db_path=Path(_expand(db_path)).resolve(),
            ignore=tuple(memory.get("ignore", (".git/**", "**/.DS_Store"))),
            max_chunk_chars=max_chunk_chars,
            embedding_model=emb.get("model", DEFAULT_MODEL),
            embedding_model_path=emb.get("model_path"),
            embedding_device=device,
            offline_mode=offline_mode,
            document_prefix=emb.get("document_prefix", "search_document: "),
            query_prefix=emb.get("query_prefix", "search_query: "),
            default_limit=default_limit,
            rrf_k=rrf_k,
            candidate_multiplier=candidate_multiplier,
            log_level=log_level,
            log_file=log.get("file"),
        )

    def apply_offline_mode(self) -> None:
        """Export HuggingFace offline variables for this process.

        Uses setdefault so an explicit environment always wins.
        """
        if self.offline_mode:
            os.environ.setdefault("HF_HUB_OFFLINE", "1")
            os.environ.setdefault("TRANSFORMERS_OFFLINE", "1")


def load_config(path: str | Path | None = None) -> MemoryConfig:
    """Load config from a TOML file, or defaults plus environment if no file exists."""
    if path is not None and Path(path).exists():
        return MemoryConfig.from_toml(path)
    return MemoryConfig.from_dict({})
