# graphweave/ingest/chunking/__init__.py
"""
Chunking: splitters per content type and the packing service.
"""

from .base import Splitter, Unit
from .models import ChunkMetadata, Document, DocumentChunk
from .router import ChunkingRouter, detect_language
from .service import ChunkingService

__all__ = [
    "Document",
    "DocumentChunk",
    "ChunkMetadata",
    "Splitter",
    "Unit",
    "ChunkingRouter",
    "ChunkingService",
    "detect_language",
]
