from __future__ import annotations

from typing import Protocol, Sequence
import numpy as np

from ..models import StoreHit, VectorDocument


class VectorStore(Protocol):
    """Storage contract shared by the in-memory and SQLite stores.

    ``search()`` ranks by a store-specific distance (lower is closer); callers
    that need comparable scores compute their own similarity from
    ``get_all_documents()``.
    """

    def initialize(self) -> None:
        ...

    def add(self, documents: Sequence[VectorDocument]) -> None:
        """Insert or replace documents. All-or-nothing per call."""
        ...

    def search(self, query_vector: np.ndarray, top_k: int) -> list[StoreHit]:
        ...

    def delete(self, ids: Sequence[str]) -> None:
        ...

    def delete_by_note_path(self, note_path: str) -> int:
        ...

    def clear(self) -> None:
        ...

    def count(self) -> int:
        ...

    def get_all_documents(self) -> list[VectorDocument]:
        ...

    def dims(self) -> int | None:
        """Dimensionality of stored vectors, or None when empty."""
        ...

    def close(self) -> None:
        ...


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """1 - cosine similarity of each row of ``matrix`` against ``query``."""
    q = np.asarray(query, dtype=np.float32).ravel()
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    denom[denom == 0] = 1.0
    return 1.0 - (matrix @ q) / denom
