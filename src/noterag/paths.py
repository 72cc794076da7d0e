"""Walking a notes directory and naming the notes found in it."""

from __future__ import annotations

from fnmatch import fnmatch
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"


def matches_ignore_pattern(rel_path: str, patterns: list[str]) -> bool:
    """Check if a relative path matches any of the ignore patterns.

    Supports glob patterns like:
    - "**/drafts" - match a drafts segment in any directory
    - "archive/**" - match everything under archive
    - "*.tmp.md" - plain glob against the whole relative path
    """
    rel_path = rel_path.replace("\\", "/")

    for pattern in patterns:
        pattern = pattern.replace("\\", "/")

        if pattern.startswith("**/"):
            suffix = pattern[3:]
            if fnmatch(rel_path, pattern) or fnmatch(rel_path, f"*/{suffix}"):
                return True
            parts = rel_path.split("/")
            for i, part in enumerate(parts):
                if fnmatch(part, suffix) or fnmatch("/".join(parts[i:]), suffix):
                    return True
        elif pattern.endswith("/**"):
            prefix = pattern[:-3]
            if rel_path.startswith(prefix + "/") or rel_path == prefix:
                return True
        elif fnmatch(rel_path, pattern):
            return True

    return False


def relpath(root: Path, path: Path) -> str:
    return str(path.relative_to(root)).replace("\\", "/")


def note_id_for(root: Path, path: Path) -> str:
    """Stable note id: path relative to the notes root, forward slashes, no ``.md``."""
    rel = relpath(root, path)
    if rel.lower().endswith(NOTE_SUFFIX):
        rel = rel[: -len(NOTE_SUFFIX)]
    return rel


def is_note_file(path: Path) -> bool:
    return path.suffix.lower() == NOTE_SUFFIX


def collect_markdown_files(root: Path, ignore: list[str] | None = None) -> list[Path]:
    """Return every markdown file under ``root`` in a stable order.

    Hidden directories (``.git``, ``.noterag``, ...) are never descended into.
    A missing root yields an empty list.
    """
    ignore = ignore or []
    if not root.is_dir():
        return []

    found: list[Path] = []
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir())
        except OSError as e:
            logger.warning(f"Cannot list directory {current}: {e}")
            continue
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                stack.append(entry)
            elif entry.is_file() and is_note_file(entry):
                if ignore and matches_ignore_pattern(relpath(root, entry), ignore):
                    continue
                found.append(entry)
    return sorted(found)


def is_hidden(root: Path, path: Path) -> bool:
    """True when any component of ``path`` below ``root`` starts with a dot."""
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        return False
    return any(p.startswith(".") for p in parts)
