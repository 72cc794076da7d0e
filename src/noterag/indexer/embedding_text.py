"""Text sent to the embedder for a chunk: the chunk with title/heading context."""

from __future__ import annotations

import re

from ..models import Chunk

MAX_TITLE_CONTEXT_LENGTH = 80
MAX_HEADER_CONTEXT_LENGTH = 80
MAX_HEADER_CONTEXT_LEVEL = 3
MAX_HEADER_CONTEXT_CHUNKS = 2

# Headings too generic to say anything about the chunk under them.
HEADER_STOPLIST = frozenset({
    "overview", "summary", "notes", "note", "todo", "todos", "appendix",
    "references", "reference", "intro", "introduction", "background",
    "conclusion", "misc", "miscellaneous",
    "개요", "서론", "소개", "배경", "요약", "정리", "결론", "참고", "참고문헌",
    "부록", "메모", "노트", "목차", "할 일", "할일",
    "概要", "はじめに", "まとめ", "結論", "参考", "参考文献", "付録", "メモ",
    "概述", "简介", "引言", "背景", "总结", "结论", "附录", "备注", "笔记", "待办",
})


def _normalize(value: str) -> str:
    return re.sub(r"\s+", " ", value.lower()).strip()


def truncate_context(value: str, max_length: int) -> str:
    text = re.sub(r"\s+", " ", value).strip()
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    return text[: max_length - 3] + "..."


def _wants_header(chunk: Chunk, header: str | None, title: str) -> bool:
    if not header or len(header.strip()) < 2:
        return False
    if chunk.content.lstrip().startswith("#"):
        return False
    if chunk.metadata.section_chunk_index >= MAX_HEADER_CONTEXT_CHUNKS:
        return False
    normalized = _normalize(header)
    return bool(normalized) and normalized not in HEADER_STOPLIST and normalized != _normalize(title)


def build_embedding_texts(chunks: list[Chunk], title: str) -> list[str]:
    """Prefix each chunk with ``# <title>`` and, near the top of a section,
    the section heading.

    Only the first chunk of a section carries heading metadata, so the
    heading is carried forward to the chunks that follow it.
    """
    texts = []
    header: str | None = None
    level = 2
    title_line = truncate_context(title, MAX_TITLE_CONTEXT_LENGTH)
    for chunk in chunks:
        meta = chunk.metadata
        if meta.section_chunk_index == 0:
            header = meta.header_text
            level = meta.header_level or 2

        body = chunk.content
        if _wants_header(chunk, header, title):
            prefix = "#" * min(max(level, 2), MAX_HEADER_CONTEXT_LEVEL)
            body = f"{prefix} {truncate_context(header or '', MAX_HEADER_CONTEXT_LENGTH)}\n\n{body}"
        texts.append(f"# {title_line}\n\n{body}")
    return texts
