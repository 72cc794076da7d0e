from .markdown_chunker import ChunkConfig, MarkdownChunker

__all__ = ["ChunkConfig", "MarkdownChunker"]
