from .analyzer import GraphAnalyzer

__all__ = ["GraphAnalyzer"]
