from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Sequence
import urllib.error
import urllib.request

import numpy as np

from ..errors import DimensionMismatchError, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class OllamaEmbedder:
    """Adapter for a local Ollama embeddings endpoint.

    Dimensionality is measured on construction so the index can detect a model
    swap before anything is written.
    """
    model_id: str
    endpoint: str = "http://127.0.0.1:11434/api/embeddings"
    timeout_s: float = 30.0
    dims: int = 0

    def __post_init__(self) -> None:
        if self.dims == 0:
            self.dims = len(self._call("dimension check"))
            logger.info(f"Ollama model {self.model_id} produces {self.dims}-dim vectors")

    def _call(self, prompt: str) -> list[float]:
        payload = {"model": self.model_id, "prompt": prompt}
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(self.endpoint, data=data, headers={"Content-Type": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                out = json.loads(resp.read().decode("utf-8"))
        except (urllib.error.URLError, TimeoutError, ValueError) as e:
            raise ProviderError(f"embedding provider unavailable: {self.endpoint}: {e}") from e
        vec = out.get("embedding") if isinstance(out, dict) else None
        if not isinstance(vec, list) or not vec:
            raise ProviderError(f"Unexpected Ollama response: {out}")
        return [float(x) for x in vec]

    def _check(self, arr: np.ndarray) -> np.ndarray:
        if arr.shape[-1] != self.dims:
            raise DimensionMismatchError(self.dims, int(arr.shape[-1]))
        return arr

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        vectors = [self._call(t) for t in texts]
        return self._check(np.array(vectors, dtype=np.float32))

    def embed_query(self, query: str) -> np.ndarray:
        return self._check(np.array(self._call(query), dtype=np.float32))
