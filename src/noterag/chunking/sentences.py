"""Sentence segmentation for mixed Latin/Korean text.

Segments are ``(start, end)`` spans into the caller's string; nothing here
copies or rewrites text.
"""

from __future__ import annotations

from dataclasses import dataclass
import re

# Korean sentence-final endings, matched as literal suffixes.
KOREAN_SENTENCE_ENDINGS = (
    "다.", "요.", "죠.", "네.", "군요.", "습니다.", "니다.", "입니다.", "ㅂ니다.",
    "까?", "요?", "니?", "죠?", "가요?", "나요?",
    "자.", "세요.", "시오.", "라.",
    "구나.", "군.", "네!", "요!",
)

_ENDINGS = sorted(set(KOREAN_SENTENCE_ENDINGS), key=len, reverse=True)

SENTENCE_END_RE = re.compile(
    "|".join(re.escape(e) for e in _ENDINGS) + r"|[.!?](?=\s|$)|\n"
)


@dataclass(frozen=True)
class Segment:
    start: int
    end: int
    atomic: bool = False

    @property
    def length(self) -> int:
        return self.end - self.start


def split_sentences(text: str, start: int = 0, end: int | None = None) -> list[Segment]:
    """Split ``text[start:end]`` after every sentence terminator.

    Whitespace-only pieces are folded into the following sentence (or the
    previous one at the end) so every segment holds visible text.
    """
    if end is None:
        end = len(text)
    bounds: list[tuple[int, int]] = []
    pos = start
    for m in SENTENCE_END_RE.finditer(text, start, end):
        bounds.append((pos, m.end()))
        pos = m.end()
    if pos < end:
        bounds.append((pos, end))

    segments: list[Segment] = []
    pending: int | None = None
    for s, e in bounds:
        if pending is not None:
            s, pending = pending, None
        if text[s:e].strip():
            segments.append(Segment(s, e))
        else:
            pending = s
    if pending is not None and segments:
        last = segments[-1]
        segments[-1] = Segment(last.start, end)
    return segments


def split_long_segment(text: str, seg: Segment, limit: int) -> list[Segment]:
    """Cut a segment longer than ``limit`` into pieces of at most ``limit``.

    Cuts land just after whitespace when there is some in the back half of
    the window, otherwise at exactly ``limit`` characters.
    """
    if seg.atomic or seg.length <= limit:
        return [seg]
    limit = max(1, limit)
    pieces: list[Segment] = []
    pos = seg.start
    while seg.end - pos > limit:
        cut = pos + limit
        floor = pos + limit // 2
        i = cut
        while i > floor and not text[i - 1].isspace():
            i -= 1
        if i > floor:
            cut = i
        if text[pos:cut].strip():
            pieces.append(Segment(pos, cut))
        pos = cut
    if text[pos:seg.end].strip():
        pieces.append(Segment(pos, seg.end))
    return pieces
