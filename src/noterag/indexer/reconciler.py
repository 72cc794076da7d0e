"""Diff the notes on disk against the last recorded index state."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..hashing import hash_file
from .metadata import NoteRecord


@dataclass(frozen=True)
class CorpusFile:
    note_id: str
    path: Path
    modified_time: float
    size: int


@dataclass
class ChangePlan:
    """Notes to (re)index, notes to drop, and records that only need a new mtime."""
    added: list[CorpusFile] = field(default_factory=list)
    modified: list[CorpusFile] = field(default_factory=list)
    removed: dict[str, NoteRecord] = field(default_factory=dict)
    touched: dict[str, NoteRecord] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)
    unreadable: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)


def plan_changes(
    current: list[CorpusFile],
    recorded: dict[str, NoteRecord],
    stored_chunks: dict[str, int] | None = None,
) -> ChangePlan:
    """Classify every note.

    The content hash decides whether a note changed. It is only computed when
    the mtime or size moved, and a moved mtime over identical content just
    refreshes the record. When ``stored_chunks`` (chunks per note id actually
    in the store) is given, a note with fewer stored chunks than its record
    claims is re-indexed whatever its hash.
    """
    plan = ChangePlan()
    seen: set[str] = set()

    for f in current:
        seen.add(f.note_id)
        rec = recorded.get(f.note_id)
        if rec is None:
            plan.added.append(f)
            continue
        if rec.note_path != str(f.path):
            plan.modified.append(f)
            continue
        if stored_chunks is not None and stored_chunks.get(f.note_id, 0) < rec.chunk_count:
            plan.modified.append(f)
            continue
        if rec.modified_time == f.modified_time and rec.size == f.size:
            plan.unchanged.append(f.note_id)
            continue
        try:
            digest = hash_file(f.path)
        except OSError as e:
            plan.unreadable[f.note_id] = f"{f.path}: {e}"
            continue
        if digest == rec.content_hash:
            plan.touched[f.note_id] = NoteRecord(
                note_path=rec.note_path,
                content_hash=rec.content_hash,
                modified_time=f.modified_time,
                size=f.size,
                chunk_count=rec.chunk_count,
            )
        else:
            plan.modified.append(f)

    for note_id, rec in recorded.items():
        if note_id not in seen:
            plan.removed[note_id] = rec
    return plan
