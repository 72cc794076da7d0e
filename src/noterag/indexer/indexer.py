from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from pathlib import Path
import time
from typing import Any, Callable

import numpy as np

from ..chunking.frontmatter import split_frontmatter
from ..chunking.markdown_chunker import MarkdownChunker
from ..config import EngineConfig
from ..embeddings.base import Embedder
from ..errors import CorpusError, DimensionMismatchError, MetadataError, NoteRagError, ProviderError
from ..graph.analyzer import GraphAnalyzer
from ..hashing import sha256_hex
from ..models import (
    Chunk,
    DocumentMetadata,
    IndexingProgress,
    IndexStats,
    NoteGraphStats,
    ValidationResult,
    VectorDocument,
)
from ..paths import collect_markdown_files, is_hidden, is_note_file, matches_ignore_pattern, note_id_for, relpath
from ..store.base import VectorStore
from ..utils import normalize_note_title, safe_read_text
from .embedding_text import build_embedding_texts
from .metadata import IndexMetadata, MetadataStore, NoteRecord
from .reconciler import CorpusFile, plan_changes

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexingProgress], None]


def document_id(note_id: str, chunk_index: int) -> str:
    return f"{note_id}_chunk_{chunk_index}"


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _as_tags(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [t.strip().lstrip("#") for t in value.split(",") if t.strip()]
    if isinstance(value, (list, tuple)):
        return [str(t).strip().lstrip("#") for t in value if str(t).strip()]
    return [str(value)]


def _iso_mtime(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class _PreparedNote:
    note_id: str
    note_path: str
    content_hash: str
    modified_time: float
    size: int
    chunks: list[Chunk]
    metadata: DocumentMetadata
    embedding_texts: list[str]


class _ConnectionCounts:
    """Backlinks + forward links per note, looked up by title and path."""

    def __init__(self, stats: NoteGraphStats | None) -> None:
        self._incoming: dict[str, int] = {}
        self._outgoing: dict[str, int] = {}
        if stats is None:
            return
        for title, entries in stats.backlinks.items():
            self._incoming[normalize_note_title(title)] = len(entries)
        for path, targets in stats.forward_links.items():
            self._outgoing[path] = len(targets)

    def get(self, title: str, note_path: str) -> int:
        return self._incoming.get(normalize_note_title(title), 0) + self._outgoing.get(note_path, 0)


class Indexer:
    """Walk the notes directory, chunk, embed and write to the vector store.

    Per-note change metadata is kept in ``index-meta.json`` so that
    :meth:`index_incremental` only touches notes whose content changed.
    Corpus and provider failures for one note are recorded in
    ``IndexStats.errors`` and never abort a run; store failures propagate.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        store: VectorStore,
        embedder: Embedder,
        chunker: MarkdownChunker | None = None,
        graph: GraphAnalyzer | None = None,
        metadata_store: MetadataStore | None = None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or MarkdownChunker(cfg.chunk_config())
        self.graph = graph or GraphAnalyzer(cfg.ignore)
        self.metadata_store = metadata_store or MetadataStore(cfg.metadata_path)
        self._write_lock = asyncio.Lock()
        self._embed_semaphore = asyncio.Semaphore(cfg.embedding_concurrency)

    @property
    def notes_dir(self) -> Path:
        return self.cfg.notes_dir

    def load_metadata(self) -> IndexMetadata:
        """Load change metadata; raises :class:`MetadataError` when missing or corrupt."""
        return self.metadata_store.load()

    def _new_metadata(self) -> IndexMetadata:
        return IndexMetadata(embedding_model_id=self.embedder.model_id, dims=self.embedder.dims)

    async def index_all(self, on_progress: ProgressCallback | None = None) -> IndexStats:
        """Rebuild the whole index from the notes directory."""
        async with self._write_lock:
            return await self._index_all(on_progress)

    async def _index_all(self, on_progress: ProgressCallback | None) -> IndexStats:
        t0 = time.time()
        stats = IndexStats()
        files = await asyncio.to_thread(collect_markdown_files, self.notes_dir, self.cfg.ignore)
        logger.info(f"Full index: {len(files)} notes in {self.notes_dir}")

        counts = await self._connection_counts()
        # Metadata goes first so an interrupted rebuild is never mistaken for a current index
        await asyncio.to_thread(self.metadata_store.delete)
        await asyncio.to_thread(self.store.clear)
        meta = self._new_metadata()

        for i, path in enumerate(files):
            _report(on_progress, IndexingProgress(len(files), i, relpath(self.notes_dir, path), "indexing"))
            record = await self._index_path(path, counts, stats, on_progress, len(files), i)
            if record is not None:
                meta.notes[note_id_for(self.notes_dir, path)] = record
                stats.added += 1

        await asyncio.to_thread(self.metadata_store.save, meta)
        stats.elapsed_seconds = time.time() - t0
        _report(on_progress, IndexingProgress(len(files), len(files), None, "complete"))
        logger.info(
            f"Full index complete: {stats.added} notes, {stats.chunks_written} chunks "
            f"in {stats.elapsed_seconds:.1f}s ({stats.skipped} skipped)"
        )
        return stats

    async def index_incremental(self, on_progress: ProgressCallback | None = None) -> IndexStats:
        """Re-index only notes that were added, changed or removed since the last run.

        Missing, corrupt or foreign-model metadata means the index state is
        unknown, so a full re-index is done instead.
        """
        async with self._write_lock:
            try:
                meta = await asyncio.to_thread(self.load_metadata)
            except MetadataError as e:
                logger.warning(f"{e}; falling back to full re-index")
                return await self._index_all(on_progress)
            if meta.embedding_model_id != self.embedder.model_id:
                logger.warning(
                    f"Index was built with {meta.embedding_model_id}, now using {self.embedder.model_id}; "
                    "falling back to full re-index"
                )
                return await self._index_all(on_progress)
            return await self._index_incremental(meta, on_progress)

    async def _index_incremental(self, meta: IndexMetadata, on_progress: ProgressCallback | None) -> IndexStats:
        t0 = time.time()
        stats = IndexStats()
        current = await asyncio.to_thread(self._scan_corpus)
        stored = await asyncio.to_thread(self._stored_chunk_counts)
        plan = await asyncio.to_thread(plan_changes, current, meta.notes, stored)

        for note_id, rec in plan.removed.items():
            await asyncio.to_thread(self.store.delete_by_note_path, rec.note_path)
            meta.notes.pop(note_id, None)
            stats.removed += 1
            logger.info(f"Removed {rec.note_path}")

        meta.notes.update(plan.touched)
        stats.unchanged = len(plan.unchanged) + len(plan.touched)
        for err in plan.unreadable.values():
            stats.skipped += 1
            stats.errors.append(err)
            logger.warning(f"Skipping unreadable note {err}")

        todo = [(f, True) for f in plan.added] + [(f, False) for f in plan.modified]
        counts = await self._connection_counts() if todo else _ConnectionCounts(None)
        for i, (f, is_new) in enumerate(todo):
            _report(on_progress, IndexingProgress(len(todo), i, relpath(self.notes_dir, f.path), "indexing"))
            old = meta.notes.pop(f.note_id, None)
            if old is not None and old.note_path != str(f.path):
                await asyncio.to_thread(self.store.delete_by_note_path, old.note_path)
            record = await self._index_path(f.path, counts, stats, on_progress, len(todo), i)
            if record is None:
                if old is not None and old.note_path == str(f.path):
                    # Failed update keeps the previous chunks and record
                    meta.notes[f.note_id] = old
                continue
            meta.notes[f.note_id] = record
            if is_new:
                stats.added += 1
            else:
                stats.updated += 1

        pruned = await asyncio.to_thread(self._prune_orphans, set(meta.notes))
        if pruned:
            logger.info(f"Pruned {pruned} orphaned chunks")

        if stats.changed or plan.touched or pruned:
            meta.dims = self.embedder.dims
            await asyncio.to_thread(self.metadata_store.save, meta)

        stats.elapsed_seconds = time.time() - t0
        _report(on_progress, IndexingProgress(len(todo), len(todo), None, "complete"))
        logger.info(
            f"Incremental index: {stats.added} added, {stats.updated} updated, {stats.removed} removed, "
            f"{stats.unchanged} unchanged, {stats.skipped} skipped in {stats.elapsed_seconds:.1f}s"
        )
        return stats

    async def index_note(self, path: Path | str) -> IndexStats:
        """Re-index one note; a path that no longer exists is removed from the index."""
        p = self._absolute(path)
        if not p.is_file():
            stats = IndexStats()
            if await self.remove_note(p):
                stats.removed = 1
            return stats

        stats = IndexStats()
        if not self._is_indexable(p):
            logger.debug(f"Not indexing {p}: outside notes dir, hidden or ignored")
            return stats

        async with self._write_lock:
            meta = await self._metadata_or_new()
            note_id = note_id_for(self.notes_dir, p)
            existed = note_id in meta.notes
            counts = await self._connection_counts()
            record = await self._index_path(p, counts, stats, None, 1, 0)
            if record is None:
                return stats
            meta.notes[note_id] = record
            meta.dims = self.embedder.dims
            await asyncio.to_thread(self.metadata_store.save, meta)
            if existed:
                stats.updated = 1
            else:
                stats.added = 1
        logger.info(f"Indexed {relpath(self.notes_dir, p)} ({stats.chunks_written} chunks)")
        return stats

    async def remove_note(self, path: Path | str) -> bool:
        """Drop a note's documents and metadata. Returns True if anything was removed."""
        p = self._absolute(path)
        async with self._write_lock:
            deleted = await asyncio.to_thread(self.store.delete_by_note_path, str(p))
            removed = deleted > 0
            try:
                meta = await asyncio.to_thread(self.load_metadata)
            except MetadataError:
                meta = None
            if meta is not None:
                try:
                    note_id = note_id_for(self.notes_dir, p)
                except ValueError:
                    note_id = None
                if note_id is not None and meta.notes.pop(note_id, None) is not None:
                    removed = True
                    await asyncio.to_thread(self.metadata_store.save, meta)
        if removed:
            logger.info(f"Removed {p} from index ({deleted} chunks)")
        return removed

    async def validate_index(self) -> ValidationResult:
        """Cross-check stored documents against change metadata and embedder dims."""
        result = ValidationResult()
        docs = await asyncio.to_thread(self.store.get_all_documents)
        result.total_documents = len(docs)
        try:
            meta = await asyncio.to_thread(self.load_metadata)
        except MetadataError as e:
            result.valid = False
            result.errors.append(str(e))
            return result

        result.total_metadata = len(meta.notes)
        per_note: dict[str, int] = {}
        mismatches = []
        for doc in docs:
            per_note[doc.note_id] = per_note.get(doc.note_id, 0) + 1
            if doc.note_id not in meta.notes:
                result.orphaned_chunks += 1
            if doc.dims != self.embedder.dims:
                result.dimension_mismatches += 1
                if len(mismatches) < 5:
                    mismatches.append(f"{doc.id}: expected {self.embedder.dims} dims, got {doc.dims}")

        for note_id, rec in meta.notes.items():
            missing = rec.chunk_count - per_note.get(note_id, 0)
            if missing > 0:
                result.missing_chunks += missing

        if result.orphaned_chunks:
            result.errors.append(f"{result.orphaned_chunks} chunks have no metadata entry")
        if result.missing_chunks:
            result.errors.append(f"{result.missing_chunks} chunks recorded in metadata are missing from the store")
        if result.dimension_mismatches:
            result.errors.append(f"{result.dimension_mismatches} chunks have the wrong dimensionality")
            result.errors.extend(mismatches)
        result.valid = not result.errors
        return result

    async def _index_path(
        self,
        path: Path,
        counts: _ConnectionCounts,
        stats: IndexStats,
        on_progress: ProgressCallback | None,
        total: int,
        processed: int,
    ) -> NoteRecord | None:
        """Chunk, embed and store one note. Returns its metadata record, or None if skipped."""
        rel = relpath(self.notes_dir, path)
        try:
            prepared = await asyncio.to_thread(self._prepare, path, counts)
            if not prepared.chunks:
                logger.debug(f"No content in {rel}")
                await asyncio.to_thread(self.store.delete_by_note_path, prepared.note_path)
                return self._record(prepared)

            _report(on_progress, IndexingProgress(total, processed, rel, "embedding"))
            vectors = await self._embed(prepared.embedding_texts)

            _report(on_progress, IndexingProgress(total, processed, rel, "storing"))
            docs = [
                VectorDocument(
                    id=document_id(prepared.note_id, chunk.index),
                    note_id=prepared.note_id,
                    note_path=prepared.note_path,
                    chunk_index=chunk.index,
                    content=chunk.content,
                    embedding=vectors[k],
                    metadata=prepared.metadata,
                )
                for k, chunk in enumerate(prepared.chunks)
            ]
            await asyncio.to_thread(self.store.delete_by_note_path, prepared.note_path)
            await asyncio.to_thread(self.store.add, docs)
        except DimensionMismatchError:
            raise
        except (CorpusError, ProviderError) as e:
            stats.skipped += 1
            stats.errors.append(f"{rel}: {e}")
            logger.warning(f"Skipping {rel}: {e}")
            _report(on_progress, IndexingProgress(total, processed, rel, "error"))
            return None

        stats.chunks_written += len(docs)
        return self._record(prepared)

    @staticmethod
    def _record(prepared: _PreparedNote) -> NoteRecord:
        return NoteRecord(
            note_path=prepared.note_path,
            content_hash=prepared.content_hash,
            modified_time=prepared.modified_time,
            size=prepared.size,
            chunk_count=len(prepared.chunks),
        )

    def _prepare(self, path: Path, counts: _ConnectionCounts) -> _PreparedNote:
        try:
            st = path.stat()
        except OSError as e:
            raise CorpusError(str(path), f"cannot stat: {e}") from e
        raw = safe_read_text(path)
        parsed = split_frontmatter(raw)
        data = parsed.data

        note_path = str(path)
        title = _as_text(data.get("title")) or path.stem
        metadata = DocumentMetadata(
            title=title,
            type=_as_text(data.get("type")) or "note",
            tags=_as_tags(data.get("tags")),
            created=_as_text(data.get("created")) or _iso_mtime(getattr(st, "st_birthtime", st.st_ctime)),
            modified=_as_text(data.get("modified")) or _iso_mtime(st.st_mtime),
            connection_count=counts.get(title, note_path),
        )
        chunks = self.chunker.chunk(raw)
        return _PreparedNote(
            note_id=note_id_for(self.notes_dir, path),
            note_path=note_path,
            content_hash=sha256_hex(raw),
            modified_time=st.st_mtime,
            size=st.st_size,
            chunks=chunks,
            metadata=metadata,
            embedding_texts=build_embedding_texts(chunks, title),
        )

    async def _embed(self, texts: list[str]) -> np.ndarray:
        """Embed in ``embedding_batch_size`` batches issued concurrently."""
        size = self.cfg.embedding_batch_size
        batches = [texts[i:i + size] for i in range(0, len(texts), size)]
        results = await asyncio.gather(*(self._embed_batch(b) for b in batches))
        return np.vstack(results)

    async def _embed_batch(self, batch: list[str]) -> np.ndarray:
        async with self._embed_semaphore:
            try:
                vectors = await asyncio.to_thread(self.embedder.embed_texts, batch)
            except NoteRagError:
                raise
            except Exception as e:
                raise ProviderError(f"embedding provider unavailable: {e}") from e
        arr = np.asarray(vectors, dtype=np.float32)
        if arr.ndim != 2 or arr.shape[0] != len(batch):
            raise ProviderError(f"embedding provider returned shape {arr.shape} for {len(batch)} texts")
        if arr.shape[1] != self.embedder.dims:
            raise DimensionMismatchError(self.embedder.dims, int(arr.shape[1]))
        return arr

    async def _connection_counts(self) -> _ConnectionCounts:
        try:
            stats = await asyncio.to_thread(self.graph.analyze, self.notes_dir, True)
        except Exception as e:
            logger.warning(f"Graph analysis failed, connection counts set to 0: {e}")
            return _ConnectionCounts(None)
        return _ConnectionCounts(stats)

    async def _metadata_or_new(self) -> IndexMetadata:
        try:
            meta = await asyncio.to_thread(self.load_metadata)
        except MetadataError:
            return self._new_metadata()
        if meta.embedding_model_id != self.embedder.model_id:
            return self._new_metadata()
        return meta

    def _scan_corpus(self) -> list[CorpusFile]:
        out = []
        for path in collect_markdown_files(self.notes_dir, self.cfg.ignore):
            try:
                st = path.stat()
            except OSError as e:
                logger.warning(f"Cannot stat {path}: {e}")
                continue
            out.append(CorpusFile(note_id_for(self.notes_dir, path), path, st.st_mtime, st.st_size))
        return out

    def _stored_chunk_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for doc in self.store.get_all_documents():
            counts[doc.note_id] = counts.get(doc.note_id, 0) + 1
        return counts

    def _prune_orphans(self, known: set[str]) -> int:
        orphans = [d.id for d in self.store.get_all_documents() if d.note_id not in known]
        if orphans:
            self.store.delete(orphans)
        return len(orphans)

    def _absolute(self, path: Path | str) -> Path:
        p = Path(path)
        if not p.is_absolute():
            p = self.notes_dir / p
        return p

    def _is_indexable(self, path: Path) -> bool:
        try:
            rel = relpath(self.notes_dir, path)
        except ValueError:
            return False
        if not is_note_file(path) or is_hidden(self.notes_dir, path):
            return False
        return not matches_ignore_pattern(rel, self.cfg.ignore)


def _report(callback: ProgressCallback | None, progress: IndexingProgress) -> None:
    if callback is not None:
        callback(progress)
