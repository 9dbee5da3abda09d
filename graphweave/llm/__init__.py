# graphweave/llm/__init__.py
"""
Reference adapters for the embedding and extraction ports, plus the retry
contract they share.
"""

from .embedding import LocalEmbedder, LocalEmbedderConfig, RetryingEmbedder
from .extraction import RetryingExtractor, StaticEntityExtractor
from .retry import RetryPolicy, call_with_retry

__all__ = [
    "LocalEmbedder",
    "LocalEmbedderConfig",
    "RetryingEmbedder",
    "StaticEntityExtractor",
    "RetryingExtractor",
    "RetryPolicy",
    "call_with_retry",
]
