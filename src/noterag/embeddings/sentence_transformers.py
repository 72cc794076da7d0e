from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
import numpy as np

from ..errors import ProviderError

DIMENSION_CHECK_TEXT = "dimension check"


@dataclass
class SentenceTransformersEmbedder:
    """Local sentence-transformers model; vectors come back L2-normalized float32."""

    model_id: str
    device: str = "cpu"
    batch_size: int = 32
    use_query_prefix: bool = True
    query_prefix: str = "Represent this sentence for searching relevant passages: "

    def __post_init__(self) -> None:
        # Suppress harmless multiprocessing resource tracker warnings on macOS
        import warnings
        warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

        try:
            from sentence_transformers import SentenceTransformer  # type: ignore
        except ImportError as e:
            raise ProviderError(
                "embedding provider unavailable: install the 'sentence-transformers' extra"
            ) from e
        try:
            self._model = SentenceTransformer(self.model_id, device=self.device)
            sample = self._encode([DIMENSION_CHECK_TEXT], 1)
        except Exception as e:
            raise ProviderError(f"embedding provider unavailable: cannot load {self.model_id}: {e}") from e
        if sample.ndim != 2 or sample.shape[1] == 0:
            raise ProviderError(f"embedding provider returned shape {sample.shape} for the dimension check")
        self.dims = int(sample.shape[1])

    def _encode(self, texts: list[str], batch_size: int) -> np.ndarray:
        vectors = self._model.encode(texts, batch_size=batch_size, convert_to_numpy=True, normalize_embeddings=True)
        return np.asarray(vectors, dtype=np.float32)

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Embed note chunks as-is; the query prefix is never applied here."""
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        try:
            return self._encode(list(texts), self.batch_size)
        except Exception as e:
            raise ProviderError(f"embedding provider unavailable: {e}") from e

    def embed_query(self, query: str) -> np.ndarray:
        """Embed query with optional instruction prefix for asymmetric retrieval."""
        if self.use_query_prefix and self.query_prefix:
            query = self.query_prefix + query
        try:
            return self._encode([query], 1)[0]
        except Exception as e:
            raise ProviderError(f"embedding provider unavailable: {e}") from e
