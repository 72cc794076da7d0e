"""Per-note change metadata persisted next to the vector store."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path

from ..errors import MetadataError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass
class NoteRecord:
    note_path: str
    content_hash: str
    modified_time: float
    size: int = 0
    chunk_count: int = 0


@dataclass
class IndexMetadata:
    """What the index looked like after the last successful run.

    ``notes`` is keyed by note id; every stored document's note id must have
    an entry here or the document is treated as orphaned.
    """
    embedding_model_id: str
    dims: int | None = None
    notes: dict[str, NoteRecord] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION
    updated_at: str | None = None


class MetadataStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> IndexMetadata:
        """Load metadata, raising :class:`MetadataError` if missing or unusable."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise MetadataError(f"index metadata not found: {self.path}") from e
        except OSError as e:
            raise MetadataError(f"cannot read index metadata {self.path}: {e}") from e

        try:
            data = json.loads(raw)
            version = int(data.get("schema_version", 0))
            if version != SCHEMA_VERSION:
                raise MetadataError(f"unsupported index metadata version {version} (expected {SCHEMA_VERSION})")
            notes = {
                note_id: NoteRecord(
                    note_path=str(rec["note_path"]),
                    content_hash=str(rec["content_hash"]),
                    modified_time=float(rec["modified_time"]),
                    size=int(rec.get("size", 0)),
                    chunk_count=int(rec.get("chunk_count", 0)),
                )
                for note_id, rec in data.get("notes", {}).items()
            }
            dims = data.get("dims")
            return IndexMetadata(
                embedding_model_id=str(data["embedding_model_id"]),
                dims=int(dims) if dims is not None else None,
                notes=notes,
                schema_version=version,
                updated_at=data.get("updated_at"),
            )
        except MetadataError:
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise MetadataError(f"corrupt index metadata {self.path}: {e}") from e

    def save(self, meta: IndexMetadata) -> None:
        meta.updated_at = datetime.now(timezone.utc).isoformat()
        payload = {
            "schema_version": meta.schema_version,
            "embedding_model_id": meta.embedding_model_id,
            "dims": meta.dims,
            "updated_at": meta.updated_at,
            "notes": {k: asdict(v) for k, v in sorted(meta.notes.items())},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)
        logger.debug(f"Saved index metadata for {len(meta.notes)} notes")

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
