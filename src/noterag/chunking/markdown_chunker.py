from __future__ import annotations

from dataclasses import dataclass
import logging
import re

from ..models import Chunk, ChunkMetadata
from .frontmatter import split_frontmatter
from .sentences import Segment, split_long_segment, split_sentences

logger = logging.getLogger(__name__)

CODE_BLOCK_RE = re.compile(r"```(\w*)\n?[\s\S]*?```")

# Fenced blocks are masked with a run of this private-use character of the
# same width, so offsets into the masked text are offsets into the note.
CODE_MASK_CHAR = "\ue000"


@dataclass(frozen=True)
class ChunkConfig:
    max_chunk_size: int = 1000
    overlap_size: int = 200
    preserve_sentences: bool = True
    preserve_headers: bool = True
    preserve_code_blocks: bool = True
    max_header_level: int = 3  # split at #..### by default, 1-6


@dataclass(frozen=True)
class CodeSpan:
    start: int
    end: int
    language: str = ""


@dataclass(frozen=True)
class _Section:
    start: int
    end: int
    level: int | None = None
    header: str | None = None


def find_code_blocks(text: str, start: int = 0) -> list[CodeSpan]:
    return [CodeSpan(m.start(), m.end(), m.group(1)) for m in CODE_BLOCK_RE.finditer(text, start)]


def mask_code_blocks(text: str, spans: list[CodeSpan]) -> str:
    if not spans:
        return text
    parts = []
    pos = 0
    for span in spans:
        parts.append(text[pos:span.start])
        parts.append(CODE_MASK_CHAR * (span.end - span.start))
        pos = span.end
    parts.append(text[pos:])
    return "".join(parts)


def _trim(text: str, start: int, end: int) -> tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def _span_containing(spans: list[CodeSpan], pos: int) -> CodeSpan | None:
    for span in spans:
        if span.start < pos < span.end:
            return span
    return None


class MarkdownChunker:
    """Split a markdown note into overlapping, offset-exact chunks.

    Order of operations:
    - frontmatter is skipped; offsets still count from the start of the note
    - fenced code blocks are masked so nothing below can split them
    - the body is cut into sections at headings up to ``max_header_level``
    - oversized sections are split on sentence boundaries (or a raw sliding
      window when ``preserve_sentences`` is off) with a tail overlap

    ``chunk()`` never raises; on an unexpected failure the whole body becomes
    a single chunk.
    """

    def __init__(self, config: ChunkConfig | None = None) -> None:
        self.config = config or ChunkConfig()
        level = min(6, max(1, self.config.max_header_level))
        self._heading_re = re.compile(rf"^(#{{1,{level}}})[ \t]+(.+)$", re.MULTILINE)

    def chunk(self, raw_text: str) -> list[Chunk]:
        try:
            return self._chunk(raw_text)
        except Exception as e:
            logger.warning(f"Chunking failed, using the whole note as one chunk: {e}")
            return self._single_chunk(raw_text)

    def _chunk(self, raw: str) -> list[Chunk]:
        cfg = self.config
        body_offset = split_frontmatter(raw).body_offset
        if not raw[body_offset:].strip():
            return []

        code_spans = find_code_blocks(raw, body_offset)
        protected = code_spans if cfg.preserve_code_blocks else []
        text = mask_code_blocks(raw, protected)

        if cfg.preserve_headers:
            sections = self._split_sections(text, raw, body_offset)
        else:
            sections = [_Section(body_offset, len(text))]

        chunks: list[Chunk] = []
        for section in sections:
            for i, (s, e) in enumerate(self._chunk_section(text, section, protected)):
                chunks.append(self._make_chunk(raw, s, e, len(chunks), i, section, code_spans))
        return chunks

    def _single_chunk(self, raw: str) -> list[Chunk]:
        s, e = _trim(raw, split_frontmatter(raw).body_offset, len(raw))
        if s >= e:
            return []
        return [Chunk(content=raw[s:e], start_offset=s, end_offset=e, index=0)]

    def _split_sections(self, text: str, raw: str, offset: int) -> list[_Section]:
        matches = list(self._heading_re.finditer(text, offset))
        if not matches:
            return [_Section(offset, len(text))]

        sections: list[_Section] = []
        if text[offset:matches[0].start()].strip():
            sections.append(_Section(offset, matches[0].start()))
        for i, m in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            header = raw[m.start(2):m.end(2)].strip()
            sections.append(_Section(m.start(), end, len(m.group(1)), header))
        return sections

    def _chunk_section(self, text: str, section: _Section, protected: list[CodeSpan]) -> list[tuple[int, int]]:
        s, e = _trim(text, section.start, section.end)
        if s >= e:
            return []
        if e - s <= self.config.max_chunk_size:
            return [(s, e)]

        if self.config.preserve_sentences:
            spans = self._split_by_sentences(text, s, e, protected)
        else:
            spans = self._split_by_window(text, s, e, protected)

        out = []
        for a, b in spans:
            a, b = _trim(text, a, b)
            if a < b:
                out.append((a, b))
        return out

    def _segments(self, text: str, start: int, end: int, protected: list[CodeSpan]) -> list[Segment]:
        """Sentence segments of ``text[start:end]`` with code blocks as atomic segments."""
        segments: list[Segment] = []
        pos = start
        for span in protected:
            if span.end <= start or span.start >= end:
                continue
            segments.extend(self._text_segments(text, pos, max(pos, span.start)))
            segments.append(Segment(max(start, span.start), min(end, span.end), atomic=True))
            pos = min(end, span.end)
        segments.extend(self._text_segments(text, pos, end))
        return segments

    def _text_segments(self, text: str, start: int, end: int) -> list[Segment]:
        if start >= end:
            return []
        limit = self.config.max_chunk_size
        piece = max(1, limit - self.config.overlap_size)
        out: list[Segment] = []
        for seg in split_sentences(text, start, end):
            if seg.length > limit:
                out.extend(split_long_segment(text, seg, piece))
            else:
                out.append(seg)
        return out

    def _split_by_sentences(
        self, text: str, start: int, end: int, protected: list[CodeSpan]
    ) -> list[tuple[int, int]]:
        segments = self._segments(text, start, end, protected)
        limit = self.config.max_chunk_size

        spans: list[tuple[int, int]] = []
        cur_start: int | None = None
        cur_end = start
        for i, seg in enumerate(segments):
            if cur_start is None:
                cur_start, cur_end = seg.start, seg.end
                continue
            if seg.end - cur_start <= limit:
                cur_end = seg.end
                continue
            spans.append((cur_start, cur_end))
            cur_start = self._overlap_start(text, segments, i, cur_start, cur_end)
            cur_end = seg.end
        if cur_start is not None:
            spans.append((cur_start, cur_end))
        return spans

    def _overlap_start(self, text: str, segments: list[Segment], i: int, cur_start: int, cur_end: int) -> int:
        """Where the chunk after ``text[cur_start:cur_end]`` begins.

        Prefers the earliest sentence start inside the last ``overlap_size``
        characters. Otherwise the tail is cut at the earliest whitespace that
        keeps the next chunk within ``max_chunk_size``, so a long following
        sentence shortens the overlap instead of dropping it. Only a closing
        code block or a next segment that fills a chunk on its own means no
        overlap.
        """
        overlap = self.config.overlap_size
        limit = self.config.max_chunk_size
        nxt = segments[i]
        if overlap <= 0:
            return nxt.start

        best: int | None = None
        j = i - 1
        while j >= 0 and segments[j].start > cur_start:
            p = segments[j].start
            if cur_end - p > overlap:
                break
            if nxt.end - p <= limit:
                best = p
            j -= 1
        if best is not None:
            return best

        last = segments[i - 1]
        if last.atomic or nxt.length >= limit:
            return nxt.start
        p = max(cur_start + 1, cur_end - overlap, nxt.end - limit)
        for seg in segments[:i]:
            if seg.atomic and seg.start < p < seg.end:
                p = seg.end
        while p < cur_end and not text[p - 1].isspace():
            p += 1
        if p < cur_end and text[p:cur_end].strip():
            return p
        return nxt.start

    def _split_by_window(
        self, text: str, start: int, end: int, protected: list[CodeSpan]
    ) -> list[tuple[int, int]]:
        size = self.config.max_chunk_size
        overlap = self.config.overlap_size

        spans: list[tuple[int, int]] = []
        pos = start
        while pos < end:
            stop = min(pos + size, end)
            block = _span_containing(protected, stop)
            if block is not None:
                stop = block.start if block.start > pos else block.end
            spans.append((pos, stop))
            if stop >= end:
                break
            nxt = stop - overlap
            block = _span_containing(protected, nxt)
            if block is not None:
                nxt = block.start if block.start > pos else block.end
            if nxt <= pos:
                nxt = stop
            pos = nxt
        return spans

    def _make_chunk(
        self,
        raw: str,
        start: int,
        end: int,
        index: int,
        section_index: int,
        section: _Section,
        code_spans: list[CodeSpan],
    ) -> Chunk:
        languages: list[str] = []
        has_code = False
        for span in code_spans:
            if span.start < end and span.end > start:
                has_code = True
                if span.language and span.language not in languages:
                    languages.append(span.language)

        opens_section = section_index == 0 and section.level is not None
        metadata = ChunkMetadata(
            has_header=opens_section,
            header_level=section.level if opens_section else None,
            header_text=section.header if opens_section else None,
            has_code_block=has_code,
            code_languages=",".join(languages) or None,
            section_chunk_index=section_index,
        )
        return Chunk(
            content=raw[start:end],
            start_offset=start,
            end_offset=end,
            index=index,
            metadata=metadata,
        )
