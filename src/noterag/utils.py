from __future__ import annotations

from dataclasses import dataclass
import re
from pathlib import Path

from .errors import CorpusError

# [[Target]], [[Target#Section]], [[Target|Alias]], [[Target#Section|Alias]]
WIKILINK_RE = re.compile(r"\[\[([^\]|#]+)(?:#([^\]|]+))?(?:\|([^\]]+))?\]\]")


@dataclass(frozen=True)
class ParsedWikilink:
    target: str
    section: str | None = None
    alias: str | None = None


def parse_wikilinks(text: str) -> list[ParsedWikilink]:
    out = []
    for m in WIKILINK_RE.finditer(text):
        target = m.group(1).strip()
        if not target:
            continue
        section = m.group(2).strip() if m.group(2) else None
        alias = m.group(3).strip() if m.group(3) else None
        out.append(ParsedWikilink(target=target, section=section, alias=alias))
    return out


def extract_wikilinks(text: str) -> list[str]:
    """Unique link targets in first-seen order."""
    seen: dict[str, None] = {}
    for link in parse_wikilinks(text):
        seen.setdefault(link.target, None)
    return list(seen)


def normalize_note_title(title: str) -> str:
    """Case/whitespace-insensitive key for matching link targets to notes."""
    t = title.strip().lower()
    if t.endswith(".md"):
        t = t[:-3]
    t = re.sub(r"[-_]", " ", t)
    return re.sub(r"\s+", " ", t).strip()


def safe_read_text(path: Path, max_bytes: int = 10_000_000) -> str:
    """Read a note as UTF-8, raising :class:`CorpusError` on any failure."""
    try:
        b = path.read_bytes()
    except OSError as e:
        raise CorpusError(str(path), f"unreadable: {e}") from e
    if len(b) > max_bytes:
        raise CorpusError(str(path), f"file too large for text read ({len(b)} bytes)")
    try:
        return b.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorpusError(str(path), f"not valid UTF-8: {e}") from e
