"""Forest Vectors: resilient multi-backend vector storage for HTA data."""

__version__ = "0.1.0"
