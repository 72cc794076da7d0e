"""noterag: hybrid retrieval over a folder of markdown notes."""

__all__ = ["__version__"]
__version__ = "0.1.0"
