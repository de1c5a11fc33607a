from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer

from .config import MemoryConfig, load_config
from .errors import WrexMemError
from .indexer.reconciler import Reconciler
from .service import MemoryService

app = typer.Typer(add_completion=False, no_args_is_help=True)

logger = logging.getLogger(__name__)

ConfigOpt = typer.Option("config.toml", "--config", "-c", help="Path to config.toml")
LogLevelOpt = typer.Option(None, "--log-level", help="Log level: DEBUG, INFO, WARNING, ERROR")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging")
LogFileOpt = typer.Option(None, "--log-file", "-l", help="Also write logs to this file")


def _setup_logging(log_file: str | None, log_level: str, verbose: bool) -> None:
    """Configure the wrexmem logger: stderr always, a rotating file optionally."""
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO)

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers: list[logging.Handler] = []

    # StreamHandler defaults to stderr; stdout is for command output
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(fmt, datefmt))
    handlers.append(console)

    if log_file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(logging.Formatter(fmt, datefmt))
        handlers.append(file_handler)

    root = logging.getLogger("wrexmem")
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(level)
    for h in handlers:
        root.addHandler(h)


def _cfg(config: str, log_level: str | None, verbose: bool, log_file: str | None) -> MemoryConfig:
    """Load config, then set up logging from flags (falling back to [logging])."""
    try:
        cfg = load_config(config)
    except WrexMemError as e:
        raise typer.BadParameter(str(e)) from e
    _setup_logging(log_file or cfg.log_file, log_level or cfg.log_level, verbose)
    return cfg


def _run(cfg: MemoryConfig, fn):
    """Run fn(service) inside a fresh service and event loop."""
    async def _main():
        async with MemoryService(cfg) as service:
            return await fn(service)

    try:
        return asyncio.run(_main())
    except WrexMemError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


def _remove_markdown_files(memory_dir: Path) -> int:
    """Delete every markdown file under memory_dir and prune emptied directories."""
    if not memory_dir.exists():
        logger.info(f"Memory directory does not exist: {memory_dir}")
        return 0

    count = 0
    for p in Reconciler(memory_dir).scan_files():
        p.unlink()
        count += 1
        logger.info(f"Removed {p}")

    # Deepest first so parents empty out before they are checked
    for d in sorted((p for p in memory_dir.rglob("*") if p.is_dir()), key=lambda p: len(p.parts), reverse=True):
        if not any(d.iterdir()):
            d.rmdir()
    return count


@app.command()
def init(memory_dir: str = typer.Option("./data/workspace/memory", help="Memory directory"),
         db_path: str = typer.Option("./data/wrex.db", help="SQLite index file"),
         out: str = typer.Option("config.toml", help="Write example config to this path")):
    """Write a starter config.toml."""
    outp = Path(out)
    outp.write_text(f"""[memory]
dir = "{memory_dir}"
ignore = [".git/**", "**/.DS_Store"]

[index]
db_path = "{db_path}"

[chunking]
max_chunk_chars = 2048

[embeddings]
model = "nomic-ai/nomic-embed-text-v1.5"
# model_path = "/path/to/local/model"
device = "cpu"
# Set to true to use cached models only (no HuggingFace downloads)
# Can also be controlled via HF_OFFLINE_MODE environment variable
offline_mode = true
document_prefix = "search_document: "
query_prefix = "search_query: "

[retrieval]
default_limit = 5
rrf_k = 60
candidate_multiplier = 2

[logging]
level = "INFO"
# file = "wrexmem.log"
""", encoding="utf-8")
    typer.echo(f"Wrote {outp}")


@app.command()
def index(config: str = ConfigOpt, log_level: str = LogLevelOpt,
          verbose: bool = VerboseOpt, log_file: str = LogFileOpt):
    """Index every markdown file in the memory directory."""
    cfg = _cfg(config, log_level, verbose, log_file)
    stats = _run(cfg, lambda s: s.index_all())

    typer.echo(f"Index complete: {stats.files_indexed} files, {stats.chunks_created} chunks "
               f"in {stats.elapsed_seconds:.1f}s")
    if stats.files_failed > 0:
        typer.echo(f"  ({stats.files_failed} files failed)")


@app.command()
def reindex(path: str, config: str = ConfigOpt, log_level: str = LogLevelOpt,
            verbose: bool = VerboseOpt, log_file: str = LogFileOpt):
    """Rebuild the index for one markdown file."""
    cfg = _cfg(config, log_level, verbose, log_file)
    n = _run(cfg, lambda s: s.reindex_file(path))
    typer.echo(f"Re-indexed {path}: {n} chunks")


@app.command()
def remove(path: str, config: str = ConfigOpt, log_level: str = LogLevelOpt,
           verbose: bool = VerboseOpt, log_file: str = LogFileOpt):
    """Remove one file from the index (the file itself is left alone)."""
    cfg = _cfg(config, log_level, verbose, log_file)

    async def _remove(service: MemoryService) -> int:
        return service.remove_file_index(path)

    n = _run(cfg, _remove)
    typer.echo(f"Removed {n} chunks for {path}")


@app.command()
def query(q: str, config: str = ConfigOpt, limit: int = typer.Option(None, "--limit", "-k"),
          log_level: str = LogLevelOpt, verbose: bool = VerboseOpt, log_file: str = LogFileOpt):
    """Hybrid search over indexed memories. Prints JSON."""
    cfg = _cfg(config, log_level, verbose, log_file)
    hits = _run(cfg, lambda s: s.hybrid_search(q, limit))
    typer.echo(json.dumps([h.to_dict() for h in hits], indent=2))


@app.command()
def status(config: str = ConfigOpt, log_level: str = LogLevelOpt,
           verbose: bool = VerboseOpt, log_file: str = LogFileOpt):
    """Show index statistics."""
    cfg = _cfg(config, log_level, verbose, log_file)

    async def _status(service: MemoryService) -> dict:
        return service.status()

    info = _run(cfg, _status)
    typer.echo(f"Memory dir: {info['memory_dir']}")
    typer.echo(f"Indexed files: {info['indexed_files']}")
    typer.echo(f"Indexed chunks: {info['indexed_chunks']}")
    typer.echo(f"Vectors: {info['vector_entries']}")
    if not info["consistent"]:
        typer.echo("Warning: vector store and backing rows are out of sync", err=True)


@app.command()
def clear(files: bool = typer.Option(False, "--files", help="Also delete the markdown memory files"),
          config: str = ConfigOpt, log_level: str = LogLevelOpt,
          verbose: bool = VerboseOpt, log_file: str = LogFileOpt):
    """Erase the index; with --files, the memory files too."""
    cfg = _cfg(config, log_level, verbose, log_file)

    async def _clear(service: MemoryService) -> None:
        service.clear()

    _run(cfg, _clear)
    typer.echo("Cleared all memory tables.")
    if files:
        n = _remove_markdown_files(cfg.memory_dir)
        typer.echo(f"Removed {n} markdown file(s).")


if __name__ == "__main__":
    app()
