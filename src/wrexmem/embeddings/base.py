from __future__ import annotations

from typing import Protocol, Sequence


class EmbeddingBackend(Protocol):
    """Blocking embedding backend. Handles one request at a time."""
    model_id: str

    def embed(self, text: str) -> Sequence[float]:
        ...

    def close(self) -> None:
        ...
