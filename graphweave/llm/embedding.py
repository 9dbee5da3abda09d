# graphweave/llm/embedding.py
"""
Embedding adapters.

- LocalEmbedder: deterministic feature-hashing embeddings. Lexical only; a stable
  baseline that needs no model and gives identical vectors across runs
  and machines.
- RetryingEmbedder: wraps any EmbeddingPort with the retry contract.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from hashlib import blake2b
from typing import List, Optional

from graphweave.exceptions import EmbeddingError
from graphweave.llm.retry import RetryPolicy, call_with_retry
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import EMBEDDING
from graphweave.ports import EmbeddingPort

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


@dataclass(frozen=True)
class LocalEmbedderConfig:
    dim: int = 384
    seed: int = 0


class LocalEmbedder:
    """Deterministic hash-embedding backend."""

    model_name = "local-hash"

    def __init__(self, cfg: LocalEmbedderConfig | None = None) -> None:
        self._cfg = cfg or LocalEmbedderConfig()

    @property
    def dim(self) -> int:
        return self._cfg.dim

    async def embed(self, text: str) -> List[float]:
        return _hash_embed(text or "", dim=self._cfg.dim, seed=self._cfg.seed)


def _hash_embed(text: str, *, dim: int, seed: int) -> List[float]:
    # Signed feature hashing over lowercased word tokens
    vec = [0.0] * dim
    key = seed.to_bytes(8, "little", signed=True)
    for token in _TOKEN_RE.findall(text.lower()) or [text]:
        digest = blake2b(token.encode("utf-8", errors="ignore"), digest_size=8, key=key).digest()
        bucket = int.from_bytes(digest[:4], "little") % dim
        vec[bucket] += 1.0 if digest[4] & 1 else -1.0

    norm = sum(x * x for x in vec) ** 0.5
    if norm == 0:
        vec[0] = 1.0
        return vec
    return [x / norm for x in vec]


class RetryingEmbedder:
    """
    EmbeddingPort with bounded retries.

    `embed` raises EmbeddingError once retries are exhausted;
    `embed_or_none` returns None instead, which the indexer stores as a
    chunk without a vector.
    """

    def __init__(self, inner: EmbeddingPort, policy: RetryPolicy | None = None) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()

    @property
    def inner(self) -> EmbeddingPort:
        return self._inner

    async def embed(self, text: str) -> List[float]:
        try:
            return await call_with_retry(
                lambda: self._inner.embed(text), self._policy, label="embed", tag=EMBEDDING
            )
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding failed after {self._policy.max_attempts} attempts: {exc!r}"
            ) from exc

    async def embed_or_none(self, text: str) -> Optional[List[float]]:
        try:
            return await self.embed(text)
        except EmbeddingError as exc:
            logger.warning(f"{EMBEDDING} {exc}")
            return None


__all__ = ["LocalEmbedderConfig", "LocalEmbedder", "RetryingEmbedder"]
