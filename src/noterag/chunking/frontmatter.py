"""YAML frontmatter handling that keeps track of where the body starts."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any

import frontmatter
import yaml

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(
    r"\A\ufeff?---[ \t]*\r?\n(.*?)^(?:---|\.\.\.)[ \t]*\r?$\n?",
    re.DOTALL | re.MULTILINE,
)


@dataclass(frozen=True)
class ParsedNote:
    data: dict[str, Any] = field(default_factory=dict)
    body: str = ""
    body_offset: int = 0


def split_frontmatter(raw: str) -> ParsedNote:
    """Split ``raw`` into frontmatter data and body.

    ``body`` is always ``raw[body_offset:]``. Invalid frontmatter is not an
    error: the whole input is returned as body with offset 0.
    """
    m = FRONTMATTER_RE.match(raw)
    if not m:
        return ParsedNote(data={}, body=raw, body_offset=0)
    try:
        post = frontmatter.loads(raw)
        data = dict(post.metadata)
    except (yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Invalid frontmatter, treating note as plain body: {e}")
        return ParsedNote(data={}, body=raw, body_offset=0)
    return ParsedNote(data=data, body=raw[m.end():], body_offset=m.end())
