from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np

SearchMode = Literal["hybrid", "semantic", "keyword"]
ProgressStatus = Literal["indexing", "embedding", "storing", "complete", "error"]


@dataclass(frozen=True)
class ChunkMetadata:
    """Structural facts about a chunk.

    ``header_*`` describe the heading the chunk opens with (if any);
    ``code_languages`` is a comma-joined list of fence info strings.
    """
    has_header: bool = False
    header_level: int | None = None
    header_text: str | None = None
    has_code_block: bool = False
    code_languages: str | None = None
    section_chunk_index: int = 0


@dataclass(frozen=True)
class Chunk:
    """A contiguous span of one note.

    ``raw_text[start_offset:end_offset] == content`` always holds for the text
    the chunk was produced from.
    """
    content: str
    start_offset: int
    end_offset: int
    index: int
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)


@dataclass(frozen=True)
class DocumentMetadata:
    title: str
    type: str = "note"
    tags: list[str] = field(default_factory=list)
    created: str | None = None
    modified: str | None = None
    connection_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "type": self.type,
            "tags": list(self.tags),
            "created": self.created,
            "modified": self.modified,
            "connection_count": self.connection_count,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "DocumentMetadata":
        return DocumentMetadata(
            title=str(data.get("title", "")),
            type=str(data.get("type") or "note"),
            tags=[str(t) for t in data.get("tags") or []],
            created=data.get("created"),
            modified=data.get("modified"),
            connection_count=int(data.get("connection_count") or 0),
        )


@dataclass(frozen=True)
class VectorDocument:
    """The persisted unit: one embedded chunk of one note."""
    id: str
    note_id: str
    note_path: str
    chunk_index: int
    content: str
    embedding: np.ndarray = field(repr=False, compare=False)
    metadata: DocumentMetadata = field(default_factory=lambda: DocumentMetadata(title=""))

    @property
    def dims(self) -> int:
        return int(np.asarray(self.embedding).shape[-1])


@dataclass(frozen=True)
class StoreHit:
    """A raw store search hit; ``distance`` is store-specific (lower is closer)."""
    document: VectorDocument
    distance: float


@dataclass(frozen=True)
class RetrievedChunk:
    content: str
    score: float
    chunk_index: int


@dataclass(frozen=True)
class RetrievalResult:
    """Per-note aggregate for one query.

    ``base_score`` is the blended vector/keyword score before any graph boost;
    only ``final_score`` is changed by reranking.
    """
    note_id: str
    note_path: str
    note_title: str
    chunks: list[RetrievedChunk]
    base_score: float
    final_score: float
    confidence: float
    graph_centrality: float = 0.0


@dataclass(frozen=True)
class SearchResult:
    note_path: str
    title: str
    content: str
    base_score: float
    final_score: float
    highlights: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BacklinkEntry:
    note_id: str
    note_path: str
    note_title: str
    alias: str | None = None


@dataclass(frozen=True)
class NoteGraphStats:
    """Link structure of a notes directory.

    ``backlinks`` is keyed by the target note's title, ``forward_links`` by the
    source note's path (values are the raw, de-duplicated link targets).
    """
    backlinks: dict[str, list[BacklinkEntry]] = field(default_factory=dict)
    forward_links: dict[str, list[str]] = field(default_factory=dict)
    note_count: int = 0
    unique_connections: int = 0
    total_mentions: int = 0
    dangling_links: dict[str, list[str]] = field(default_factory=dict)
    orphan_notes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class IndexingProgress:
    total: int
    processed: int
    current_file: str | None = None
    status: ProgressStatus = "indexing"


@dataclass
class IndexStats:
    """Outcome of one indexing run."""
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    skipped: int = 0
    chunks_written: int = 0
    elapsed_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return self.added + self.updated + self.removed


@dataclass
class ValidationResult:
    valid: bool = True
    total_documents: int = 0
    total_metadata: int = 0
    orphaned_chunks: int = 0
    missing_chunks: int = 0
    dimension_mismatches: int = 0
    errors: list[str] = field(default_factory=list)
