from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence
import numpy as np

from ..errors import EmbeddingDimensionMismatch, EmbeddingError, WrexMemError
from ..models import EMBEDDING_DIM, TaskType
from .base import EmbeddingBackend

logger = logging.getLogger(__name__)

DEFAULT_PREFIXES: dict[TaskType, str] = {
    TaskType.DOCUMENT: "search_document: ",
    TaskType.QUERY: "search_query: ",
}


class Embedder:
    """Async embedding service over a lazily loaded backend.

    - The backend is built on first use. Concurrent first callers share a
      single load; a failed load leaves the embedder unloaded so the next
      call retries.
    - Backend requests are serialized: the backend handles one request at a
      time, whatever the callers do.
    - Every text is prefixed with its task marker (document vs query). The
      nomic-embed-text family needs it; without it results degrade silently.

    Blocking backend work runs in a worker thread so the event loop stays free.
    """

    def __init__(
        self,
        backend_factory: Callable[[], EmbeddingBackend],
        dims: int = EMBEDDING_DIM,
        prefixes: dict[TaskType, str] | None = None,
    ) -> None:
        self._backend_factory = backend_factory
        self.dims = dims
        self.prefixes = {**DEFAULT_PREFIXES, **(prefixes or {})}
        self._backend: EmbeddingBackend | None = None
        self._init_lock = asyncio.Lock()
        self._request_lock = asyncio.Lock()
        self.load_count = 0

    @property
    def is_loaded(self) -> bool:
        return self._backend is not None

    async def _get_backend(self) -> EmbeddingBackend:
        if self._backend is not None:
            return self._backend

        async with self._init_lock:
            # Another caller may have finished loading while we waited
            if self._backend is None:
                try:
                    backend = await asyncio.to_thread(self._backend_factory)
                except WrexMemError:
                    raise
                except Exception as e:
                    raise EmbeddingError(f"Failed to load embedding model: {e}") from e
                self._backend = backend
                self.load_count += 1
                logger.info(f"Embedding model loaded: {getattr(backend, 'model_id', '?')} ({self.dims}-dim)")
        return self._backend

    def prefix(self, text: str, task_type: TaskType) -> str:
        return f"{self.prefixes[TaskType(task_type)]}{text}"

    async def embed(self, text: str, task_type: TaskType) -> np.ndarray:
        """Embed one text with its task prefix. Returns a float32 vector of length dims."""
        prefixed = self.prefix(text, task_type)

        async with self._request_lock:
            # Resolved under the request lock so a dispose() queued ahead of us is seen
            backend = await self._get_backend()
            try:
                raw = await asyncio.to_thread(backend.embed, prefixed)
            except WrexMemError:
                raise
            except Exception as e:
                logger.error(f"Embedding failed for text: {text[:80]!r}...: {e}")
                raise EmbeddingError(f"Embedding failed: {e}") from e

        vec = np.asarray(raw, dtype=np.float32).ravel()
        if vec.shape[0] != self.dims:
            raise EmbeddingDimensionMismatch(self.dims, int(vec.shape[0]))
        return vec

    async def embed_batch(self, texts: Sequence[str], task_type: TaskType) -> list[np.ndarray]:
        """Embed texts one after another (the backend is not a parallelization point)."""
        results: list[np.ndarray] = []
        for text in texts:
            results.append(await self.embed(text, task_type))
        return results

    async def dispose(self) -> None:
        """Release backend resources. A later embed() loads the backend again."""
        async with self._request_lock:
            if self._backend is None:
                return
            backend, self._backend = self._backend, None
            await asyncio.to_thread(backend.close)
            logger.info("Embedding backend disposed")
