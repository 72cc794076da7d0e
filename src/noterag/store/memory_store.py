from __future__ import annotations

import threading
from typing import Sequence

import numpy as np

from ..errors import DimensionMismatchError
from ..models import StoreHit, VectorDocument
from .base import cosine_distances


class MemoryVectorStore:
    """Brute-force in-process store for tests and small corpora."""

    def __init__(self) -> None:
        self._docs: dict[str, VectorDocument] = {}
        self._lock = threading.Lock()

    def initialize(self) -> None:
        pass

    def add(self, documents: Sequence[VectorDocument]) -> None:
        if not documents:
            return
        with self._lock:
            expected = self._dims_locked()
            for doc in documents:
                if expected is None:
                    expected = doc.dims
                elif doc.dims != expected:
                    raise DimensionMismatchError(expected, doc.dims)
            for doc in documents:
                self._docs[doc.id] = doc

    def search(self, query_vector: np.ndarray, top_k: int) -> list[StoreHit]:
        docs = self.get_all_documents()
        if not docs or top_k <= 0:
            return []
        matrix = np.vstack([np.asarray(d.embedding, dtype=np.float32) for d in docs])
        dist = cosine_distances(matrix, query_vector)
        order = np.argsort(dist, kind="stable")[:top_k]
        return [StoreHit(document=docs[i], distance=float(dist[i])) for i in order]

    def delete(self, ids: Sequence[str]) -> None:
        with self._lock:
            for doc_id in ids:
                self._docs.pop(doc_id, None)

    def delete_by_note_path(self, note_path: str) -> int:
        with self._lock:
            doomed = [k for k, d in self._docs.items() if d.note_path == note_path]
            for k in doomed:
                del self._docs[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._docs.clear()

    def count(self) -> int:
        return len(self._docs)

    def get_all_documents(self) -> list[VectorDocument]:
        with self._lock:
            docs = list(self._docs.values())
        return sorted(docs, key=lambda d: (d.note_id, d.chunk_index))

    def dims(self) -> int | None:
        with self._lock:
            return self._dims_locked()

    def _dims_locked(self) -> int | None:
        for doc in self._docs.values():
            return doc.dims
        return None

    def close(self) -> None:
        pass
