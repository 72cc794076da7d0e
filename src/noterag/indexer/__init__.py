from .indexer import Indexer, document_id
from .metadata import IndexMetadata, MetadataStore, NoteRecord

__all__ = ["Indexer", "document_id", "IndexMetadata", "MetadataStore", "NoteRecord"]
