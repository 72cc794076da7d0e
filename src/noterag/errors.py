"""Error taxonomy shared by the indexer, retriever and service.

Callers can catch :class:`NoteRagError` for anything raised by this package,
or one of the narrower classes to tell data problems apart from misuse.
"""

from __future__ import annotations


class NoteRagError(Exception):
    """Base class for all noterag errors."""


class CorpusError(NoteRagError):
    """A note file could not be read or parsed."""

    def __init__(self, note_path: str, message: str) -> None:
        super().__init__(f"{note_path}: {message}")
        self.note_path = note_path


class StoreError(NoteRagError):
    """Reading or writing the vector store failed."""


class ProviderError(NoteRagError):
    """The embedding provider failed or returned unusable output."""


class DimensionMismatchError(ProviderError):
    """Vectors do not have the dimensionality the index expects."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class MetadataError(NoteRagError):
    """Per-note change metadata is missing, corrupt or from another schema version."""


class NotReadyError(NoteRagError):
    """An operation was called before its component finished initializing."""

    def __init__(self, message: str = "index not ready") -> None:
        super().__init__(message)
