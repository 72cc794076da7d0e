"""Wikilink graph of a notes directory (backlinks, forward links, orphans)."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from pathlib import Path

from ..chunking.frontmatter import split_frontmatter
from ..errors import CorpusError
from ..models import BacklinkEntry, NoteGraphStats
from ..paths import collect_markdown_files
from ..utils import extract_wikilinks, normalize_note_title, parse_wikilinks, safe_read_text

logger = logging.getLogger(__name__)

Fingerprint = tuple[tuple[str, int, int], ...]


@dataclass(frozen=True)
class _NoteInfo:
    id: str
    title: str
    path: str
    basename: str


class GraphAnalyzer:
    """Build :class:`NoteGraphStats` for a notes directory.

    Link targets are matched against each note's title, file name and
    frontmatter ``id`` after :func:`normalize_note_title`. Results are cached
    per directory and reused while no markdown file was added, removed or
    touched.
    """

    def __init__(self, ignore: list[str] | None = None) -> None:
        self.ignore = list(ignore or [])
        self._cache: dict[str, tuple[Fingerprint, NoteGraphStats]] = {}
        self._lock = threading.Lock()

    def analyze(self, notes_dir: Path | str, use_cache: bool = True) -> NoteGraphStats:
        root = Path(notes_dir)
        files = collect_markdown_files(root, self.ignore)
        key = str(root.resolve())
        fingerprint = self._fingerprint(files)

        if use_cache:
            with self._lock:
                cached = self._cache.get(key)
            if cached is not None and cached[0] == fingerprint:
                return cached[1]

        stats = self._build(files)
        with self._lock:
            self._cache[key] = (fingerprint, stats)
        return stats

    def invalidate(self, notes_dir: Path | str | None = None) -> None:
        with self._lock:
            if notes_dir is None:
                self._cache.clear()
            else:
                self._cache.pop(str(Path(notes_dir).resolve()), None)

    @staticmethod
    def _fingerprint(files: list[Path]) -> Fingerprint:
        out = []
        for f in files:
            try:
                st = f.stat()
            except OSError:
                continue
            out.append((str(f), st.st_mtime_ns, st.st_size))
        return tuple(out)

    def _build(self, files: list[Path]) -> NoteGraphStats:
        notes: list[tuple[_NoteInfo, str | None]] = []
        lookup: dict[str, _NoteInfo] = {}

        for f in files:
            basename = f.stem
            try:
                content = safe_read_text(f)
            except CorpusError as e:
                logger.debug(f"Cannot read {f} for graph analysis: {e}")
                content = None
            data = split_frontmatter(content).data if content is not None else {}
            info = _NoteInfo(
                id=str(data.get("id") or basename),
                title=str(data.get("title") or basename),
                path=str(f),
                basename=basename,
            )
            notes.append((info, content))
            lookup[normalize_note_title(info.title)] = info
            lookup[normalize_note_title(info.basename)] = info
            if info.id != info.basename:
                lookup[normalize_note_title(info.id)] = info

        backlinks: dict[str, list[BacklinkEntry]] = {}
        forward_links: dict[str, list[str]] = {}
        dangling: dict[str, list[str]] = {}
        pairs: set[tuple[str, str]] = set()
        total_mentions = 0

        for info, content in notes:
            if content is None:
                continue
            links = parse_wikilinks(content)
            total_mentions += len(links)
            forward_links[info.path] = extract_wikilinks(content)

            for link in links:
                target = lookup.get(normalize_note_title(link.target))
                if target is None:
                    sources = dangling.setdefault(link.target, [])
                    if info.path not in sources:
                        sources.append(info.path)
                    continue
                entries = backlinks.setdefault(target.title, [])
                if not any(e.note_path == info.path for e in entries):
                    entries.append(BacklinkEntry(
                        note_id=info.id,
                        note_path=info.path,
                        note_title=info.title,
                        alias=link.alias,
                    ))
                pairs.add((info.path, target.path))

        orphans = [
            info.path
            for info, _ in notes
            if not forward_links.get(info.path) and info.title not in backlinks
        ]

        logger.debug(f"Graph analysis: {len(files)} notes, {len(pairs)} connections")
        return NoteGraphStats(
            backlinks=backlinks,
            forward_links=forward_links,
            note_count=len(files),
            unique_connections=len(pairs),
            total_mentions=total_mentions,
            dangling_links=dangling,
            orphan_notes=orphans,
        )
