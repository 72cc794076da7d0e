"""Shared fixtures: a deterministic offline embedder and small note corpora."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Sequence

import numpy as np
import pytest

from noterag.config import EngineConfig

_WORD_RE = re.compile(r"\w+")


class FakeEmbedder:
    """Bag-of-words hashing embedder: texts sharing words get similar vectors."""

    def __init__(self, dims: int = 64, model_id: str = "fake-hash") -> None:
        self.dims = dims
        self.model_id = f"{model_id}-{dims}"
        self.calls = 0

    def _vector(self, text: str) -> np.ndarray:
        v = np.zeros(self.dims, dtype=np.float32)
        for word in _WORD_RE.findall(text.lower()):
            h = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16)
            v[h % self.dims] += 1.0
        norm = np.linalg.norm(v)
        return v / norm if norm > 0 else v

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        self.calls += 1
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        return np.vstack([self._vector(t) for t in texts])

    def embed_query(self, query: str) -> np.ndarray:
        return self._vector(query)


class FailingEmbedder(FakeEmbedder):
    """Raises for any batch containing ``trigger``."""

    def __init__(self, trigger: str, dims: int = 64) -> None:
        super().__init__(dims=dims)
        self.trigger = trigger

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        if any(self.trigger in t for t in texts):
            raise ConnectionError("provider offline")
        return super().embed_texts(texts)


def write_note(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def notes_dir(tmp_path: Path) -> Path:
    """A small linked corpus: astronomy notes link to each other, cooking is isolated."""
    root = tmp_path / "notes"
    root.mkdir()
    write_note(root, "Telescopes.md", """---
title: Telescopes
tags: [astronomy, optics]
---
# Telescopes

A refracting telescope gathers starlight with a lens. See [[Stars]] and [[Galaxies]].

## Mirrors

Reflecting telescopes use a curved mirror instead of a lens.
""")
    write_note(root, "Stars.md", """# Stars

Stars are fusion reactors. Observing them needs a [[Telescopes|telescope]].
""")
    write_note(root, "Galaxies.md", """# Galaxies

A galaxy holds billions of [[Stars]]. Spiral galaxies have arms.
""")
    write_note(root, "cooking/Bread.md", """# Bread

Knead the dough for ten minutes, then let the yeast rise overnight.
""")
    return root


@pytest.fixture
def cfg(notes_dir: Path) -> EngineConfig:
    return EngineConfig(notes_dir=notes_dir, min_score=0.0, embedding_batch_size=2)
