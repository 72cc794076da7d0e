from .base import VectorStore
from .memory_store import MemoryVectorStore
from .sqlite_store import SqliteVectorStore

__all__ = ["VectorStore", "MemoryVectorStore", "SqliteVectorStore"]
