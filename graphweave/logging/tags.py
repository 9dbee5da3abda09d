# graphweave/logging/tags.py
"""
Subsystem tags prefixed to log messages.

Usage:
    logger.info(f"{INDEXER} Run complete: {stats}")
"""

INDEXER = "[INDEXER]"
SCANNER = "[SCANNER]"
CHUNKING = "[CHUNKING]"
ENTITIES = "[ENTITIES]"
GRAPH = "[GRAPH]"
VECTOR_DB = "[VECTOR_DB]"
EMBEDDING = "[EMBEDDING]"
EXTRACTION = "[EXTRACTION]"
STATE = "[STATE]"

__all__ = [
    "INDEXER",
    "SCANNER",
    "CHUNKING",
    "ENTITIES",
    "GRAPH",
    "VECTOR_DB",
    "EMBEDDING",
    "EXTRACTION",
    "STATE",
]
