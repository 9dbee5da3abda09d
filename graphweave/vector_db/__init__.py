# graphweave/vector_db/__init__.py
"""
Vector store adapters.
"""

from .base import VectorRecord, chunk_payload
from .memory import MemoryVectorStore
from .qdrant import QdrantVectorStore

__all__ = ["VectorRecord", "chunk_payload", "MemoryVectorStore", "QdrantVectorStore"]
