from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from ..chunking.frontmatter import split_frontmatter
from ..embeddings.base import Embedder
from ..errors import CorpusError, DimensionMismatchError, NoteRagError, NotReadyError, ProviderError
from ..graph.analyzer import GraphAnalyzer
from ..models import NoteGraphStats, RetrievalResult, RetrievedChunk, SearchMode, VectorDocument
from ..utils import safe_read_text
from .graph_boost import GraphBoostAdjuster, GraphBoostConfig, compute_centrality
from .keyword import KeywordIndex
from .query_expansion import DEFAULT_MAX_KEYWORDS, expand_query

logger = logging.getLogger(__name__)

OVERFETCH_FACTOR = 3
DEFAULT_KEYWORD_WEIGHT = 0.3

# Advisory confidence blend; not used for ranking.
CONFIDENCE_WEIGHTS = (0.5, 0.3, 0.2)


@dataclass(frozen=True)
class RetrievalConfig:
    top_k: int = 10
    min_score: float = 0.3
    search_mode: SearchMode = "hybrid"
    keyword_weight: float = DEFAULT_KEYWORD_WEIGHT  # hybrid mode only
    use_graph_reranking: bool = True
    graph_boost_factor: float = 0.2
    expand_context: bool = True
    context_lines: int = 2
    query_expansion: bool = True  # keyword side only
    max_expansion_keywords: int = DEFAULT_MAX_KEYWORDS

    def effective_keyword_weight(self) -> float:
        if self.search_mode == "keyword":
            return 1.0
        if self.search_mode == "semantic":
            return 0.0
        return self.keyword_weight


@dataclass(frozen=True)
class _IndexSnapshot:
    """Everything a query reads. Replaced as a whole by ``load_index``."""
    documents: tuple[VectorDocument, ...]
    matrix: np.ndarray
    keyword: KeywordIndex
    centrality: dict[str, float] = field(default_factory=dict)
    graph: NoteGraphStats | None = None

    @property
    def dims(self) -> int | None:
        return int(self.matrix.shape[1]) if self.matrix.size else None


@dataclass
class _NoteHits:
    doc: VectorDocument
    vector: float = 0.0
    keyword: float = 0.0
    chunk_scores: dict[int, float] = field(default_factory=dict)
    chunk_docs: dict[int, VectorDocument] = field(default_factory=dict)

    def add_chunk(self, doc: VectorDocument, score: float) -> None:
        if score > self.chunk_scores.get(doc.chunk_index, -1.0):
            self.chunk_scores[doc.chunk_index] = score
            self.chunk_docs[doc.chunk_index] = doc


def _clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def _normalized_rows(documents: Sequence[VectorDocument]) -> np.ndarray:
    if not documents:
        return np.zeros((0, 0), dtype=np.float32)
    matrix = np.vstack([np.asarray(d.embedding, dtype=np.float32) for d in documents])
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class Retriever:
    """Hybrid vector + BM25 search over an in-memory snapshot, re-ranked by link centrality.

    ``load_index()`` must be called before ``retrieve()``. Queries read one
    immutable snapshot, so reloading never affects a query in flight.
    """

    def __init__(
        self,
        embedder: Embedder,
        notes_dir: Path | str,
        graph: GraphAnalyzer | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.notes_dir = Path(notes_dir)
        self.graph = graph or GraphAnalyzer()
        self.config = config or RetrievalConfig()
        self._snapshot: _IndexSnapshot | None = None

    @property
    def is_ready(self) -> bool:
        return self._snapshot is not None

    @property
    def graph_stats(self) -> NoteGraphStats | None:
        snap = self._snapshot
        return snap.graph if snap is not None else None

    def document_count(self) -> int:
        snap = self._snapshot
        return len(snap.documents) if snap is not None else 0

    def note_count(self) -> int:
        snap = self._snapshot
        return len({d.note_id for d in snap.documents}) if snap is not None else 0

    async def load_index(self, documents: Sequence[VectorDocument]) -> None:
        """Replace the working set and recompute link centrality."""
        snapshot = await asyncio.to_thread(self._build_snapshot, list(documents))
        self._snapshot = snapshot
        logger.info(
            f"Loaded {len(snapshot.documents)} chunks from {len({d.note_id for d in snapshot.documents})} notes"
        )

    def _build_snapshot(self, documents: list[VectorDocument]) -> _IndexSnapshot:
        try:
            graph = self.graph.analyze(self.notes_dir, use_cache=True)
        except Exception as e:
            logger.warning(f"Graph analysis failed, centrality disabled for this snapshot: {e}")
            graph = None
        return _IndexSnapshot(
            documents=tuple(documents),
            matrix=_normalized_rows(documents),
            keyword=KeywordIndex.build(documents),
            centrality=compute_centrality(documents, graph),
            graph=graph,
        )

    async def retrieve(self, query: str, config: RetrievalConfig | None = None) -> list[RetrievalResult]:
        snap = self._snapshot
        if snap is None:
            raise NotReadyError("index not ready: call load_index() before retrieve()")
        cfg = config or self.config
        if not query.strip() or not snap.documents:
            return []

        fetch = cfg.top_k * OVERFETCH_FACTOR
        extra = self._expansion_terms(query, cfg)
        if cfg.search_mode == "hybrid":
            vector_hits, keyword_hits = await asyncio.gather(
                self._vector_search(snap, query, fetch),
                self._keyword_search(snap, query, fetch, extra),
            )
        elif cfg.search_mode == "semantic":
            vector_hits, keyword_hits = await self._vector_search(snap, query, fetch), []
        else:
            vector_hits, keyword_hits = [], await self._keyword_search(snap, query, fetch, extra)

        results = self._aggregate(snap, vector_hits, keyword_hits, cfg.effective_keyword_weight())
        results = GraphBoostAdjuster(
            GraphBoostConfig(enabled=cfg.use_graph_reranking, boost_factor=cfg.graph_boost_factor)
        ).apply(results)

        kept = [r for r in results if r.base_score >= cfg.min_score]
        kept.sort(key=lambda r: r.final_score, reverse=True)
        kept = kept[: cfg.top_k]

        if cfg.expand_context and kept:
            kept = await asyncio.to_thread(self._expand_results, kept, cfg.context_lines)
        return kept

    async def _vector_search(self, snap: _IndexSnapshot, query: str, limit: int) -> list[tuple[int, float]]:
        try:
            qv = await asyncio.to_thread(self.embedder.embed_query, query)
        except NoteRagError:
            raise
        except Exception as e:
            raise ProviderError(f"embedding provider unavailable: {e}") from e

        q = np.asarray(qv, dtype=np.float32).ravel()
        if snap.dims is not None and q.shape[0] != snap.dims:
            raise DimensionMismatchError(snap.dims, int(q.shape[0]))
        q_norm = float(np.linalg.norm(q))
        if q_norm == 0.0:
            return []
        sims = snap.matrix @ (q / q_norm)
        order = np.argsort(-sims, kind="stable")[:limit]
        return [(int(i), float(sims[i])) for i in order]

    @staticmethod
    def _expansion_terms(query: str, cfg: RetrievalConfig) -> list[str]:
        if not cfg.query_expansion or cfg.search_mode == "semantic":
            return []
        terms = expand_query(query, cfg.max_expansion_keywords).expansion_terms()
        if terms:
            logger.debug(f"Expanded '{query}' with {terms}")
        return terms

    async def _keyword_search(
        self, snap: _IndexSnapshot, query: str, limit: int, expansion_terms: Sequence[str] = ()
    ) -> list[tuple[int, float]]:
        scores = await asyncio.to_thread(snap.keyword.score, query, expansion_terms)
        best: dict[str, float] = {}
        for i in np.flatnonzero(scores > 0):
            note_id = snap.documents[i].note_id
            best[note_id] = max(best.get(note_id, 0.0), float(scores[i]))
        top_notes = set(sorted(best, key=lambda n: best[n], reverse=True)[:limit])

        hits = [(int(i), float(scores[i])) for i in np.flatnonzero(scores > 0)
                if snap.documents[i].note_id in top_notes]
        hits.sort(key=lambda h: h[1], reverse=True)
        return hits

    def _aggregate(
        self,
        snap: _IndexSnapshot,
        vector_hits: list[tuple[int, float]],
        keyword_hits: list[tuple[int, float]],
        keyword_weight: float,
    ) -> list[RetrievalResult]:
        notes: dict[str, _NoteHits] = {}

        for i, sim in vector_hits:
            doc = snap.documents[i]
            v = _clamp(sim)
            agg = notes.setdefault(doc.note_id, _NoteHits(doc=doc))
            agg.vector = max(agg.vector, v)
            agg.add_chunk(doc, v)

        max_keyword = max((s for _, s in keyword_hits), default=0.0)
        for i, raw in keyword_hits:
            doc = snap.documents[i]
            k = raw / max_keyword if max_keyword > 0 else 0.0
            agg = notes.setdefault(doc.note_id, _NoteHits(doc=doc))
            agg.keyword = max(agg.keyword, k)
            agg.add_chunk(doc, k)

        w_vec, w_kw, w_graph = CONFIDENCE_WEIGHTS
        results = []
        for note_id, agg in notes.items():
            centrality = snap.centrality.get(note_id, 0.0)
            base = (1.0 - keyword_weight) * agg.vector + keyword_weight * agg.keyword
            chunks = sorted(
                (
                    RetrievedChunk(content=agg.chunk_docs[idx].content, score=score, chunk_index=idx)
                    for idx, score in agg.chunk_scores.items()
                ),
                key=lambda c: c.score,
                reverse=True,
            )
            results.append(RetrievalResult(
                note_id=note_id,
                note_path=agg.doc.note_path,
                note_title=agg.doc.metadata.title or Path(agg.doc.note_path).stem,
                chunks=chunks,
                base_score=base,
                final_score=base,
                confidence=_clamp(w_vec * agg.vector + w_kw * agg.keyword + w_graph * centrality),
                graph_centrality=centrality,
            ))
        return results

    def _expand_results(self, results: list[RetrievalResult], context_lines: int) -> list[RetrievalResult]:
        return [self._expand_one(r, context_lines) for r in results]

    def _expand_one(self, result: RetrievalResult, context_lines: int) -> RetrievalResult:
        if not result.chunks or context_lines <= 0:
            return result
        top = result.chunks[0]
        try:
            body = split_frontmatter(safe_read_text(Path(result.note_path))).body
        except CorpusError as e:
            logger.debug(f"Context expansion skipped for {result.note_path}: {e}")
            return result

        expanded = expand_span(body, top.content, context_lines)
        if expanded is None or len(expanded) <= len(top.content):
            return result
        chunks = [replace(top, content=expanded)] + list(result.chunks[1:])
        return replace(result, chunks=chunks)


def expand_span(body: str, content: str, context_lines: int) -> str | None:
    """Return ``content`` widened by ``context_lines`` whole lines on each side, or None if not found."""
    pos = body.find(content)
    if pos < 0 or not content:
        return None
    lines = body.split("\n")
    first = body.count("\n", 0, pos)
    last = body.count("\n", 0, pos + len(content))
    start = max(0, first - context_lines)
    stop = min(len(lines), last + context_lines + 1)
    return "\n".join(lines[start:stop]).strip()
