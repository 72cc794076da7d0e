from __future__ import annotations

from typing import TYPE_CHECKING

from .base import Embedder

if TYPE_CHECKING:
    from ..config import EngineConfig

__all__ = ["Embedder", "create_embedder"]


def create_embedder(cfg: "EngineConfig") -> Embedder:
    """Build the embedding provider named by the config."""
    if cfg.embedding_provider == "ollama":
        from .ollama import OllamaEmbedder
        return OllamaEmbedder(model_id=cfg.embedding_model, endpoint=cfg.ollama_endpoint)

    from .sentence_transformers import SentenceTransformersEmbedder
    return SentenceTransformersEmbedder(
        model_id=cfg.embedding_model,
        device=cfg.embedding_device,
        batch_size=cfg.embedding_batch_size,
        use_query_prefix=cfg.use_query_prefix,
        query_prefix=cfg.query_prefix,
    )
