from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
import tomllib
from typing import Any

from .chunking.markdown_chunker import ChunkConfig

INDEX_DIRNAME = ".noterag"
VALID_PROVIDERS = ("sentence_transformers", "ollama")
VALID_DEVICES = ("cpu", "cuda", "mps")


def _expand(p: str) -> str:
    return os.path.expandvars(os.path.expanduser(p))


def _check_range(name: str, value: int | float, lo: int | float, hi: int | float) -> None:
    if value < lo or value > hi:
        raise ValueError(f"Invalid {name}: {value}. Must be between {lo} and {hi}.")


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for one notes directory.

    ``index_dir`` defaults to a hidden ``.noterag`` directory inside the notes
    directory; everything under it can be deleted and rebuilt.
    """

    notes_dir: Path
    index_dir: Path | None = None
    ignore: list[str] = field(default_factory=list)
    use_persistent_storage: bool = True

    # Chunking
    max_chunk_size: int = 1000
    overlap_size: int = 200
    preserve_sentences: bool = True
    preserve_headers: bool = True
    preserve_code_blocks: bool = True
    max_header_level: int = 3

    # Embeddings
    embedding_provider: str = "sentence_transformers"
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_batch_size: int = 32
    embedding_concurrency: int = 2
    embedding_device: str = "cpu"  # cpu|cuda|mps
    use_query_prefix: bool = True  # Asymmetric retrieval (BGE pattern)
    query_prefix: str = "Represent this sentence for searching relevant passages: "
    ollama_endpoint: str = "http://127.0.0.1:11434/api/embeddings"

    # Retrieval
    top_k: int = 10
    min_score: float = 0.3
    keyword_weight: float = 0.3
    graph_boost_factor: float = 0.2
    use_graph_reranking: bool = True
    expand_context: bool = True
    context_lines: int = 2
    query_expansion: bool = True
    max_expansion_keywords: int = 8

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    def __post_init__(self):
        """Expand ~ and environment variables and resolve both directories to absolute paths."""
        object.__setattr__(self, "notes_dir", Path(_expand(str(self.notes_dir))).resolve())
        if self.index_dir is None:
            object.__setattr__(self, "index_dir", self.notes_dir / INDEX_DIRNAME)
        else:
            object.__setattr__(self, "index_dir", Path(_expand(str(self.index_dir))).resolve())
        self.validate()

    def validate(self) -> None:
        _check_range("max_chunk_size", self.max_chunk_size, 100, 50000)
        _check_range("overlap_size", self.overlap_size, 0, 5000)
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError(
                f"Invalid overlap_size: {self.overlap_size}. Must be smaller than max_chunk_size ({self.max_chunk_size})."
            )
        _check_range("max_header_level", self.max_header_level, 1, 6)
        _check_range("embedding_batch_size", self.embedding_batch_size, 1, 10000)
        _check_range("embedding_concurrency", self.embedding_concurrency, 1, 64)
        if self.embedding_provider not in VALID_PROVIDERS:
            raise ValueError(f"Invalid embedding provider: {self.embedding_provider}. Must be one of {VALID_PROVIDERS}.")
        if self.embedding_device not in VALID_DEVICES:
            raise ValueError(f"Invalid device: {self.embedding_device}. Must be one of {VALID_DEVICES}.")
        _check_range("top_k", self.top_k, 1, 1000)
        _check_range("min_score", self.min_score, 0.0, 1.0)
        _check_range("keyword_weight", self.keyword_weight, 0.0, 1.0)
        _check_range("graph_boost_factor", self.graph_boost_factor, 0.0, 10.0)
        _check_range("context_lines", self.context_lines, 0, 100)
        _check_range("max_expansion_keywords", self.max_expansion_keywords, 0, 100)

    @property
    def vectors_dir(self) -> Path:
        assert self.index_dir is not None
        return self.index_dir / "vectors"

    @property
    def metadata_path(self) -> Path:
        assert self.index_dir is not None
        return self.index_dir / "index-meta.json"

    def chunk_config(self) -> ChunkConfig:
        return ChunkConfig(
            max_chunk_size=self.max_chunk_size,
            overlap_size=self.overlap_size,
            preserve_sentences=self.preserve_sentences,
            preserve_headers=self.preserve_headers,
            preserve_code_blocks=self.preserve_code_blocks,
            max_header_level=self.max_header_level,
        )

    @staticmethod
    def from_toml(path: str | Path) -> "EngineConfig":
        data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
        return EngineConfig.from_dict(data)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "EngineConfig":
        notes = data.get("notes", {})
        index = data.get("index", {})
        chunking = data.get("chunking", {})
        emb = data.get("embeddings", {})
        ret = data.get("retrieval", {})
        log = data.get("logging", {})

        if "root" not in notes:
            raise ValueError("Missing required [notes] root setting.")
        return EngineConfig(
            notes_dir=notes["root"],
            index_dir=index.get("dir") or None,
            ignore=list(notes.get("ignore", [])),
            use_persistent_storage=bool(notes.get("persistent", True)),
            max_chunk_size=int(chunking.get("max_chunk_size", 1000)),
            overlap_size=int(chunking.get("overlap_size", 200)),
            preserve_sentences=bool(chunking.get("preserve_sentences", True)),
            preserve_headers=bool(chunking.get("preserve_headers", True)),
            preserve_code_blocks=bool(chunking.get("preserve_code_blocks", True)),
            max_header_level=int(chunking.get("max_header_level", 3)),
            embedding_provider=emb.get("provider", "sentence_transformers"),
            embedding_model=emb.get("model", "BAAI/bge-small-en-v1.5"),
            embedding_batch_size=int(emb.get("batch_size", 32)),
            embedding_concurrency=int(emb.get("concurrency", 2)),
            embedding_device=emb.get("device", "cpu"),
            use_query_prefix=bool(emb.get("use_query_prefix", True)),
            query_prefix=emb.get("query_prefix", "Represent this sentence for searching relevant passages: "),
            ollama_endpoint=emb.get("ollama_endpoint", "http://127.0.0.1:11434/api/embeddings"),
            top_k=int(ret.get("top_k", 10)),
            min_score=float(ret.get("min_score", 0.3)),
            keyword_weight=float(ret.get("keyword_weight", 0.3)),
            graph_boost_factor=float(ret.get("graph_boost_factor", 0.2)),
            use_graph_reranking=bool(ret.get("use_graph_reranking", True)),
            expand_context=bool(ret.get("expand_context", True)),
            context_lines=int(ret.get("context_lines", 2)),
            query_expansion=bool(ret.get("query_expansion", True)),
            max_expansion_keywords=int(ret.get("max_expansion_keywords", 8)),
            log_level=str(log.get("level", "INFO")),
            log_file=log.get("file"),
        )
