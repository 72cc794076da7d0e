from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import threading
import time
from typing import Callable, Literal

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..paths import is_note_file, matches_ignore_pattern

logger = logging.getLogger(__name__)

EventKind = Literal["upsert", "delete", "move"]


@dataclass(frozen=True)
class NoteEvent:
    kind: EventKind
    path: Path
    new_path: Path | None = None


class _Handler(FileSystemEventHandler):
    def __init__(self, outer: "NoteWatcher", root: Path) -> None:
        self.outer = outer
        self.root = root
        self._last: dict[str, float] = {}
        self._lock = threading.Lock()

    def _rel(self, path: str) -> str | None:
        p = Path(path)
        if not is_note_file(p):
            return None
        try:
            rel = str(p.resolve().relative_to(self.root)).replace("\\", "/")
        except (OSError, ValueError):
            return None
        if any(part.startswith(".") for part in rel.split("/")):
            return None
        if matches_ignore_pattern(rel, self.outer.ignore):
            return None
        return rel

    def _debounced(self, rel: str) -> bool:
        now = time.time()
        with self._lock:
            last = self._last.get(rel, 0.0)
            self._last[rel] = now
        return (now - last) * 1000 < self.outer.debounce_ms

    def _emit(self, event: NoteEvent) -> None:
        try:
            self.outer.on_event(event)
        except Exception as e:
            logger.error(f"Error handling {event.kind} for {event.path}: {e}")

    def on_created(self, event: FileSystemEvent) -> None:  # noqa
        self._upsert(event)

    def on_modified(self, event: FileSystemEvent) -> None:  # noqa
        self._upsert(event)

    def _upsert(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        rel = self._rel(event.src_path)
        if rel is None or self._debounced(rel):
            return
        self._emit(NoteEvent(kind="upsert", path=self.root / rel))

    def on_deleted(self, event: FileSystemEvent) -> None:  # noqa
        if event.is_directory:
            return
        rel = self._rel(event.src_path)
        if rel is None:
            return
        self._emit(NoteEvent(kind="delete", path=self.root / rel))

    def on_moved(self, event: FileSystemEvent) -> None:  # noqa
        if event.is_directory:
            return
        rel_src = self._rel(event.src_path)
        rel_dst = self._rel(event.dest_path)
        if rel_src is None and rel_dst is None:
            return
        if rel_src is None:
            # Moved in from an ignored location
            self._emit(NoteEvent(kind="upsert", path=self.root / rel_dst))
        elif rel_dst is None:
            self._emit(NoteEvent(kind="delete", path=self.root / rel_src))
        else:
            self._emit(NoteEvent(kind="move", path=self.root / rel_src, new_path=self.root / rel_dst))


@dataclass
class NoteWatcher:
    """Filesystem watcher for a notes directory using watchdog.

    Forwards debounced create/modify events and delete/move events for
    markdown notes to ``on_event``. Hidden directories and ignore patterns are
    skipped. ``on_event`` runs on the watchdog thread.
    """
    root: Path
    on_event: Callable[[NoteEvent], None]
    ignore: list[str] = field(default_factory=list)
    debounce_ms: int = 500

    def __post_init__(self) -> None:
        self._observer: Observer | None = None

    def make_handler(self) -> FileSystemEventHandler:
        # Resolve symlinks to match watchdog's resolved paths (e.g., /tmp -> /private/tmp on macOS)
        return _Handler(self, Path(self.root).resolve())

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self.make_handler(), str(Path(self.root).resolve()), recursive=True)
        observer.start()
        self._observer = observer
        logger.info(f"Watching {self.root} for note changes")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
