# tests/test_llm.py
"""
Tests for graphweave.llm: retry contract, embedding and extraction adapters.
"""

import asyncio

import pytest

from graphweave.exceptions import EmbeddingError
from graphweave.ingest.chunking import ChunkMetadata, DocumentChunk
from graphweave.ingest.entities import EntityKind
from graphweave.llm import (
    LocalEmbedder,
    LocalEmbedderConfig,
    RetryingEmbedder,
    RetryingExtractor,
    RetryPolicy,
    StaticEntityExtractor,
    call_with_retry,
)

FAST = RetryPolicy(max_attempts=3, initial_delay=0.0, timeout=None)


def run(coro):
    return asyncio.run(coro)


def code_chunk(content: str, language: str, start_line: int = 1) -> DocumentChunk:
    return DocumentChunk(
        id="c1",
        document_id="src/x",
        start_char=0,
        end_char=len(content),
        content=content,
        metadata=ChunkMetadata(chunk_type="code", language=language, start_line=start_line),
    )


class Flaky:
    """Fails `failures` times, then returns `value`."""

    def __init__(self, failures: int, value="ok"):
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls}")
        return self.value


class AlwaysFailing:
    model_name = "broken-model"

    async def embed(self, text):
        raise TimeoutError("embedding service down")

    async def extract(self, chunk):
        raise TimeoutError("extraction service down")


# =============================================================================
# Retry
# =============================================================================


class TestRetry:
    """Tests for call_with_retry and RetryPolicy."""

    def test_backoff_delays(self):
        policy = RetryPolicy(initial_delay=0.5, backoff_factor=2.0, max_delay=1.5)
        assert [policy.delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]

    def test_succeeds_after_transient_failures(self):
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        fn = Flaky(failures=2)
        policy = RetryPolicy(max_attempts=3, initial_delay=0.5, timeout=None)

        result = run(call_with_retry(fn, policy, label="test", sleep=fake_sleep))

        assert result == "ok"
        assert fn.calls == 3
        assert slept == [0.5, 1.0]

    def test_reraises_last_error(self):
        fn = Flaky(failures=5)
        with pytest.raises(ConnectionError, match="attempt 3"):
            run(call_with_retry(fn, FAST, label="test"))
        assert fn.calls == 3

    def test_single_attempt_reraises_without_sleeping(self):
        slept = []
        raised = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        async def failing():
            raised.append(ValueError(f"call {len(raised) + 1}"))
            raise raised[-1]

        policy = RetryPolicy(max_attempts=1, timeout=None)
        with pytest.raises(ValueError) as info:
            run(call_with_retry(failing, policy, label="once", sleep=fake_sleep))

        assert info.value is raised[-1]
        assert len(raised) == 1
        assert slept == []

    def test_timeout_counts_as_attempt(self):
        async def slow():
            await asyncio.sleep(1.0)

        policy = RetryPolicy(max_attempts=2, initial_delay=0.0, timeout=0.01)
        with pytest.raises(asyncio.TimeoutError):
            run(call_with_retry(slow, policy, label="slow"))


# =============================================================================
# Embedding
# =============================================================================


class TestEmbedding:
    def test_local_embedder_is_deterministic_unit_vector(self):
        embedder = LocalEmbedder()
        a = run(embedder.embed("parse the config file"))
        b = run(embedder.embed("parse the config file"))
        c = run(embedder.embed("render a chart"))

        assert a == b
        assert a != c
        assert len(a) == 384
        assert sum(x * x for x in a) == pytest.approx(1.0)

    def test_local_embedder_shares_direction_for_shared_words(self):
        embedder = LocalEmbedder()
        base = run(embedder.embed("alpha beta gamma delta"))
        close = run(embedder.embed("alpha beta gamma epsilon"))
        far = run(embedder.embed("zeta eta theta iota"))

        def cosine(u, v):
            return sum(x * y for x, y in zip(u, v))

        assert cosine(base, close) > cosine(base, far)
        assert cosine(base, close) == pytest.approx(0.75, abs=0.3)

    def test_local_embedder_seed_and_empty_text(self):
        plain = run(LocalEmbedder(LocalEmbedderConfig(dim=32)).embed("hello world"))
        seeded = run(LocalEmbedder(LocalEmbedderConfig(dim=32, seed=7)).embed("hello world"))
        empty = run(LocalEmbedder(LocalEmbedderConfig(dim=32)).embed(""))

        assert plain != seeded
        assert sum(x * x for x in empty) == pytest.approx(1.0)

    def test_retrying_embedder_gives_up_with_none(self):
        embedder = RetryingEmbedder(AlwaysFailing(), FAST)
        assert run(embedder.embed_or_none("text")) is None
        with pytest.raises(EmbeddingError):
            run(embedder.embed("text"))

    def test_retrying_embedder_passes_through(self):
        embedder = RetryingEmbedder(LocalEmbedder(LocalEmbedderConfig(dim=8)), FAST)
        assert len(run(embedder.embed_or_none("text"))) == 8


# =============================================================================
# Extraction
# =============================================================================


class TestStaticEntityExtractor:
    """Tests for the regex extractor."""

    def test_typescript(self):
        source = "\n".join(
            [
                "import { useState } from 'react';",
                "export class Dog extends Animal {",
                "  bark(): string {",
                "    return sound();",
                "  }",
                "}",
            ]
        )
        result = run(StaticEntityExtractor().extract(code_chunk(source, "typescript", start_line=10)))

        found = [(e.kind, e.name, e.line) for e in result.entities]
        assert found == [
            (EntityKind.IMPORT, "react", 10),
            (EntityKind.CLASS, "Dog", 11),
            (EntityKind.EXPORT, "Dog", 11),
            (EntityKind.METHOD, "bark", 12),
            (EntityKind.TYPE_REF, "string", 12),
            (EntityKind.CALL, "sound", 13),
        ]
        react, dog = result.entities[0], result.entities[1]
        assert react.source == "react"
        assert react.specifiers == ("useState",)
        assert dog.metadata.extends == ("Animal",)
        assert dog.metadata.is_exported is True
        assert result.model == "static-regex"

    def test_python(self):
        source = "\n".join(
            [
                "from .models import User, Account",
                "import os",
                "",
                "class Repo(Base):",
                "    def load(self, key: str) -> User:",
                "        return fetch(key)",
            ]
        )
        result = run(StaticEntityExtractor().extract(code_chunk(source, "python")))

        found = [(e.kind, e.name, e.line) for e in result.entities]
        assert found == [
            (EntityKind.IMPORT, ".models", 1),
            (EntityKind.IMPORT, "os", 2),
            (EntityKind.CLASS, "Repo", 4),
            (EntityKind.METHOD, "load", 5),
            (EntityKind.TYPE_REF, "str", 5),
            (EntityKind.TYPE_REF, "User", 5),
            (EntityKind.CALL, "fetch", 6),
        ]
        assert result.entities[0].specifiers == ("Account", "User")
        assert result.entities[2].metadata.extends == ("Base",)

    def test_unknown_language_is_empty(self):
        result = run(StaticEntityExtractor().extract(code_chunk("whatever()", "markdown")))
        assert result.is_empty


class TestRetryingExtractor:
    def test_falls_back_to_empty(self):
        extractor = RetryingExtractor(AlwaysFailing(), FAST)
        result = run(extractor.extract_or_empty(code_chunk("x()", "python")))
        assert result.is_empty
        assert result.model == "broken-model"

    def test_passes_through(self):
        extractor = RetryingExtractor(StaticEntityExtractor(), FAST)
        result = run(extractor.extract_or_empty(code_chunk("import os", "python")))
        assert [e.name for e in result.entities] == ["os"]
