"""Process-level entry point: owns initialization order and the public search API.

A :class:`RetrievalService` can be constructed and passed around explicitly;
:func:`get_service` returns a shared default instance for callers that want
one engine per process.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
import logging
from pathlib import Path
from typing import Callable

from .config import EngineConfig
from .embeddings import create_embedder
from .embeddings.base import Embedder
from .errors import MetadataError, NotReadyError
from .graph.analyzer import GraphAnalyzer
from .indexer.indexer import Indexer, ProgressCallback
from .models import IndexStats, NoteGraphStats, RetrievalResult, SearchMode, SearchResult, ValidationResult
from .retrieval.retriever import RetrievalConfig, Retriever
from .store.base import VectorStore
from .store.memory_store import MemoryVectorStore
from .store.sqlite_store import SqliteVectorStore

logger = logging.getLogger(__name__)

HIGHLIGHT_CHUNKS = 3
HIGHLIGHT_LENGTH = 200

EmbedderFactory = Callable[[EngineConfig], Embedder]
StoreFactory = Callable[[EngineConfig], VectorStore]


class ServiceState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass(frozen=True)
class SearchOptions:
    """Per-query overrides; ``None`` means the configured default."""
    mode: SearchMode = "hybrid"
    top_k: int | None = None
    min_score: float | None = None
    use_graph_reranking: bool | None = None
    expand_context: bool | None = None
    query_expansion: bool | None = None


@dataclass(frozen=True)
class ServiceStats:
    document_count: int
    note_count: int


def default_store(cfg: EngineConfig) -> VectorStore:
    if cfg.use_persistent_storage:
        return SqliteVectorStore(cfg.vectors_dir)
    return MemoryVectorStore()


def to_search_result(result: RetrievalResult) -> SearchResult:
    best = result.chunks[0] if result.chunks else None
    return SearchResult(
        note_path=result.note_path,
        title=result.note_title,
        content=best.content if best else "",
        base_score=result.base_score,
        final_score=result.final_score,
        highlights=[c.content[:HIGHLIGHT_LENGTH] for c in result.chunks[:HIGHLIGHT_CHUNKS]],
    )


class RetrievalService:
    """Lifecycle ``uninitialized -> initializing -> ready`` around one notes directory.

    Concurrent ``initialize()`` calls are single-flighted by a lock: later
    callers wait for the first to finish and then see ``ready``.
    """

    def __init__(
        self,
        embedder_factory: EmbedderFactory | None = None,
        store_factory: StoreFactory | None = None,
    ) -> None:
        self._embedder_factory = embedder_factory
        self._store_factory = store_factory or default_store
        self._init_lock = asyncio.Lock()
        self._state = ServiceState.UNINITIALIZED
        self._cfg: EngineConfig | None = None
        self._store: VectorStore | None = None
        self._embedder: Embedder | None = None
        self._indexer: Indexer | None = None
        self._retriever: Retriever | None = None

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ServiceState.READY

    @property
    def config(self) -> EngineConfig | None:
        return self._cfg

    async def initialize(self, cfg: EngineConfig, on_progress: ProgressCallback | None = None) -> IndexStats | None:
        """Open the store, build the index (full, incremental or after drift) and load it.

        Returns the indexing stats, or None when already ready for the same
        notes directory.
        """
        async with self._init_lock:
            if self._state is ServiceState.READY:
                assert self._cfg is not None
                if _same_dir(self._cfg.notes_dir, cfg.notes_dir):
                    return None
                logger.info(f"Switching notes directory {self._cfg.notes_dir} -> {cfg.notes_dir}")
                await self._teardown()

            self._state = ServiceState.INITIALIZING
            try:
                stats = await self._initialize(cfg, on_progress)
            except BaseException:
                await self._teardown()
                raise
            self._state = ServiceState.READY
            return stats

    async def _initialize(self, cfg: EngineConfig, on_progress: ProgressCallback | None) -> IndexStats:
        logger.info(f"Initializing retrieval for {cfg.notes_dir}")
        store = self._store_factory(cfg)
        self._store = store
        await asyncio.to_thread(store.initialize)
        embedder = await asyncio.to_thread(self._embedder_factory or create_embedder, cfg)

        graph = GraphAnalyzer(cfg.ignore)
        indexer = Indexer(cfg, store, embedder, graph=graph)
        retriever = Retriever(
            embedder,
            cfg.notes_dir,
            graph=graph,
            config=RetrievalConfig(
                top_k=cfg.top_k,
                min_score=cfg.min_score,
                keyword_weight=cfg.keyword_weight,
                use_graph_reranking=cfg.use_graph_reranking,
                graph_boost_factor=cfg.graph_boost_factor,
                expand_context=cfg.expand_context,
                context_lines=cfg.context_lines,
                query_expansion=cfg.query_expansion,
                max_expansion_keywords=cfg.max_expansion_keywords,
            ),
        )

        count = await asyncio.to_thread(store.count)
        if count == 0:
            stats = await indexer.index_all(on_progress)
        elif await self._has_drifted(store, indexer, embedder):
            await asyncio.to_thread(store.clear)
            stats = await indexer.index_all(on_progress)
        else:
            stats = await indexer.index_incremental(on_progress)

        if stats.errors:
            logger.warning(f"{len(stats.errors)} notes skipped during indexing")

        await retriever.load_index(await asyncio.to_thread(store.get_all_documents))
        self._cfg = cfg
        self._embedder = embedder
        self._indexer = indexer
        self._retriever = retriever
        return stats

    @staticmethod
    async def _has_drifted(store: VectorStore, indexer: Indexer, embedder: Embedder) -> bool:
        stored_dims = await asyncio.to_thread(store.dims)
        if stored_dims is not None and stored_dims != embedder.dims:
            logger.warning(
                f"Embedding dimension changed ({stored_dims} -> {embedder.dims}); clearing index for full re-index"
            )
            return True
        try:
            meta = await asyncio.to_thread(indexer.load_metadata)
        except MetadataError:
            return False
        if meta.embedding_model_id != embedder.model_id:
            logger.warning(
                f"Embedding model changed ({meta.embedding_model_id} -> {embedder.model_id}); "
                "clearing index for full re-index"
            )
            return True
        return False

    def _require_ready(self) -> tuple[Indexer, Retriever]:
        if self._state is not ServiceState.READY or self._indexer is None or self._retriever is None:
            raise NotReadyError(f"index not ready: service is {self._state.value}; call initialize() first")
        return self._indexer, self._retriever

    async def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        _, retriever = self._require_ready()
        opts = options or SearchOptions()
        rc = replace(retriever.config, search_mode=opts.mode)
        if opts.top_k is not None:
            rc = replace(rc, top_k=opts.top_k)
        if opts.min_score is not None:
            rc = replace(rc, min_score=opts.min_score)
        if opts.use_graph_reranking is not None:
            rc = replace(rc, use_graph_reranking=opts.use_graph_reranking)
        if opts.expand_context is not None:
            rc = replace(rc, expand_context=opts.expand_context)
        if opts.query_expansion is not None:
            rc = replace(rc, query_expansion=opts.query_expansion)

        results = await retriever.retrieve(query, rc)
        return [to_search_result(r) for r in results]

    async def reindex(self, on_progress: ProgressCallback | None = None) -> IndexStats:
        """Full re-index, then reload the search snapshot."""
        indexer, retriever = self._require_ready()
        stats = await indexer.index_all(on_progress)
        await self._reload(indexer, retriever)
        logger.info(f"Re-index complete: {stats.added} notes, {stats.chunks_written} chunks")
        return stats

    async def update(self, on_progress: ProgressCallback | None = None) -> IndexStats:
        """Incremental re-index, then reload the search snapshot."""
        indexer, retriever = self._require_ready()
        stats = await indexer.index_incremental(on_progress)
        if stats.changed:
            await self._reload(indexer, retriever)
        return stats

    async def index_note(self, path: Path | str) -> IndexStats:
        indexer, retriever = self._require_ready()
        stats = await indexer.index_note(path)
        await self._reload(indexer, retriever)
        return stats

    async def remove_note(self, path: Path | str) -> bool:
        indexer, retriever = self._require_ready()
        removed = await indexer.remove_note(path)
        if removed:
            await self._reload(indexer, retriever)
        return removed

    async def validate(self) -> ValidationResult:
        indexer, _ = self._require_ready()
        return await indexer.validate_index()

    def get_stats(self) -> ServiceStats:
        _, retriever = self._require_ready()
        return ServiceStats(document_count=retriever.document_count(), note_count=retriever.note_count())

    def get_graph_stats(self) -> NoteGraphStats | None:
        _, retriever = self._require_ready()
        return retriever.graph_stats

    def get_embedding_model_id(self) -> str:
        self._require_ready()
        assert self._embedder is not None
        return self._embedder.model_id

    async def close(self) -> None:
        async with self._init_lock:
            await self._teardown()

    async def _reload(self, indexer: Indexer, retriever: Retriever) -> None:
        docs = await asyncio.to_thread(indexer.store.get_all_documents)
        await retriever.load_index(docs)

    async def _teardown(self) -> None:
        store = self._store
        self._state = ServiceState.UNINITIALIZED
        self._cfg = None
        self._store = None
        self._embedder = None
        self._indexer = None
        self._retriever = None
        if store is not None:
            await asyncio.to_thread(store.close)


def _same_dir(a: Path, b: Path) -> bool:
    return Path(a).resolve() == Path(b).resolve()


_default_service: RetrievalService | None = None


def get_service() -> RetrievalService:
    """Shared process-wide service instance."""
    global _default_service
    if _default_service is None:
        _default_service = RetrievalService()
    return _default_service


def reset_service() -> None:
    """Forget the shared instance (tests, or switching configuration wholesale)."""
    global _default_service
    _default_service = None
