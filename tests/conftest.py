"""Shared fixtures: a deterministic fake embedding backend and a wired service."""
from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from pathlib import Path

import numpy as np
import pytest

from wrexmem.config import MemoryConfig
from wrexmem.models import EMBEDDING_DIM
from wrexmem.service import MemoryService

TOKEN_RE = re.compile(r"[a-z0-9]+")


class FakeBackend:
    """Hashed bag-of-words embeddings: texts sharing words land close together.

    Records every text it sees and the peak number of concurrent calls.
    """

    model_id = "fake/bag-of-words"

    def __init__(self, dims: int = EMBEDDING_DIM, delay: float = 0.0) -> None:
        self.dims = dims
        self.delay = delay
        self.calls: list[str] = []
        self.closed = False
        self._active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def embed(self, text: str) -> np.ndarray:
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            self.calls.append(text)
            vec = np.zeros(self.dims, dtype=np.float32)
            for tok in TOKEN_RE.findall(text.lower()):
                if tok in ("search", "document", "query"):
                    continue
                h = int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16)
                vec[h % self.dims] += 1.0
            norm = np.linalg.norm(vec)
            if norm == 0:
                vec[0] = 1.0
                norm = 1.0
            return vec / norm
        finally:
            with self._lock:
                self._active -= 1

    def close(self) -> None:
        self.closed = True


class CountingFactory:
    """Backend factory that counts how often it is invoked."""

    def __init__(self, backend: FakeBackend | None = None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.backend = backend or FakeBackend()
        self.error = error
        self.delay = delay
        self.calls = 0

    def __call__(self) -> FakeBackend:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.backend


@pytest.fixture(autouse=True)
def _reset_wrexmem_logger():
    yield
    root = logging.getLogger("wrexmem")
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(logging.NOTSET)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def memory_dir(tmp_path: Path) -> Path:
    d = tmp_path / "memory"
    d.mkdir()
    return d


@pytest.fixture
def cfg(tmp_path: Path, memory_dir: Path) -> MemoryConfig:
    return MemoryConfig(memory_dir=memory_dir.resolve(), db_path=(tmp_path / "wrex.db").resolve())


@pytest.fixture
def service(cfg: MemoryConfig, fake_backend: FakeBackend):
    svc = MemoryService(cfg, backend_factory=lambda: fake_backend)
    svc.initialize()
    yield svc
    svc.store.close()
