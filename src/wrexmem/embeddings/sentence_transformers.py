from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any
import numpy as np

from ..errors import EmbeddingError, ModelUnavailable

logger = logging.getLogger(__name__)


def _find_cached_model(model_id: str) -> str | None:
    """Check if model exists in HuggingFace cache (Artifactory download format).

    Artifactory downloads use: ~/.cache/huggingface/hub/{org}/{model}/main/
    Standard HF cache uses: ~/.cache/huggingface/hub/models--{org}--{model}/snapshots/{hash}/
    and is resolved by sentence-transformers itself.

    Returns the path if found, None otherwise.
    """
    hf_cache = os.path.expanduser("~/.cache/huggingface/hub")

    artifactory_path = os.path.join(hf_cache, model_id, "main")
    if os.path.exists(artifactory_path):
        # Verify it has model files (not just empty dir)
        contents = os.listdir(artifactory_path)
        if any(f.endswith((".safetensors", ".bin", ".json")) for f in contents):
            return artifactory_path

    return None


@dataclass
class SentenceTransformersBackend:
    """Local embedding backend on sentence-transformers.

    The model is loaded in __post_init__, so constructing the backend is the
    expensive step; the Embedder defers it until the first request.
    """
    model_id: str
    model_path: str | None = None  # Explicit local path (overrides model_id for loading)
    device: str = "cpu"
    trust_remote_code: bool = True  # nomic-embed-text ships custom modeling code

    def __post_init__(self) -> None:
        # Suppress harmless multiprocessing resource tracker warnings on macOS
        import warnings
        warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

        from sentence_transformers import SentenceTransformer  # type: ignore

        # Priority: explicit model_path > auto-detected cache > model_id (standard cache / network)
        model_to_load = self.model_id

        if self.model_path:
            model_to_load = os.path.expanduser(self.model_path)
            if not os.path.exists(model_to_load):
                raise ModelUnavailable(self.model_id, f"model_path does not exist: {model_to_load}")
            logger.info(f"Loading embedding model from explicit path: {model_to_load}")
        else:
            cached_path = _find_cached_model(self.model_id)
            if cached_path:
                model_to_load = cached_path
                logger.info(f"Found cached model at: {cached_path}")
            else:
                logger.info(f"Loading embedding model: {self.model_id}")

        try:
            self._model: Any = SentenceTransformer(
                model_to_load,
                device=self.device,
                trust_remote_code=self.trust_remote_code,
            )
        except OSError as e:
            # huggingface_hub raises OSError subclasses for missing repos / cache misses
            raise ModelUnavailable(self.model_id, str(e)) from e
        except Exception as e:
            raise EmbeddingError(f"Failed to load embedding model {self.model_id}: {e}") from e

    def embed(self, text: str) -> np.ndarray:
        return self._model.encode([text], batch_size=1, convert_to_numpy=True, normalize_embeddings=True)[0]

    def close(self) -> None:
        self._model = None
