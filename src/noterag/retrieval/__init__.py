from .retriever import RetrievalConfig, Retriever

__all__ = ["RetrievalConfig", "Retriever"]
