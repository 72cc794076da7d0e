"""Tests for the watchdog event handler that feeds note changes to the indexer."""

from pathlib import Path

from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from noterag.indexer.change_detector import NoteEvent, NoteWatcher


def _watcher(root: Path, debounce_ms: int = 0, ignore=None):
    events: list[NoteEvent] = []
    watcher = NoteWatcher(root=root, on_event=events.append, ignore=ignore or [], debounce_ms=debounce_ms)
    return watcher, watcher.make_handler(), events


class TestHandler:
    def test_created_and_modified_are_upserts(self, tmp_path: Path):
        _, handler, events = _watcher(tmp_path)
        handler.on_created(FileCreatedEvent(str(tmp_path / "a.md")))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "sub" / "b.md")))
        root = tmp_path.resolve()
        assert events == [
            NoteEvent("upsert", root / "a.md"),
            NoteEvent("upsert", root / "sub" / "b.md"),
        ]

    def test_non_markdown_hidden_and_ignored_are_dropped(self, tmp_path: Path):
        _, handler, events = _watcher(tmp_path, ignore=["drafts/**"])
        handler.on_created(FileCreatedEvent(str(tmp_path / "image.png")))
        handler.on_created(FileCreatedEvent(str(tmp_path / ".noterag" / "x.md")))
        handler.on_created(FileCreatedEvent(str(tmp_path / "drafts" / "y.md")))
        handler.on_created(DirCreatedEvent(str(tmp_path / "folder.md")))
        assert events == []

    def test_rapid_modifications_are_debounced(self, tmp_path: Path):
        _, handler, events = _watcher(tmp_path, debounce_ms=10_000)
        path = str(tmp_path / "a.md")
        handler.on_modified(FileModifiedEvent(path))
        handler.on_modified(FileModifiedEvent(path))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "b.md")))
        assert [e.path.name for e in events] == ["a.md", "b.md"]

    def test_delete(self, tmp_path: Path):
        _, handler, events = _watcher(tmp_path)
        handler.on_deleted(FileDeletedEvent(str(tmp_path / "gone.md")))
        assert events == [NoteEvent("delete", tmp_path.resolve() / "gone.md")]

    def test_moves(self, tmp_path: Path):
        _, handler, events = _watcher(tmp_path, ignore=["archive/**"])
        root = tmp_path.resolve()
        handler.on_moved(FileMovedEvent(str(tmp_path / "a.md"), str(tmp_path / "b.md")))
        handler.on_moved(FileMovedEvent(str(tmp_path / "c.md"), str(tmp_path / "archive" / "c.md")))
        handler.on_moved(FileMovedEvent(str(tmp_path / "d.tmp"), str(tmp_path / "d.md")))
        assert events == [
            NoteEvent("move", root / "a.md", root / "b.md"),
            NoteEvent("delete", root / "c.md"),
            NoteEvent("upsert", root / "d.md"),
        ]

    def test_callback_errors_do_not_escape(self, tmp_path: Path):
        def explode(event):
            raise RuntimeError("boom")

        watcher = NoteWatcher(root=tmp_path, on_event=explode, debounce_ms=0)
        watcher.make_handler().on_created(FileCreatedEvent(str(tmp_path / "a.md")))


class TestWatcher:
    def test_start_stop(self, tmp_path: Path):
        watcher, _, _ = _watcher(tmp_path)
        watcher.start()
        watcher.start()
        watcher.stop()
        watcher.stop()
