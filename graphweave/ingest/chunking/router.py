# graphweave/ingest/chunking/router.py
"""
Routes documents to a splitter by language.

Language is detected from the file extension. Unknown extensions fall back
to the prose splitter.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Dict, Optional

from graphweave.ingest.chunking.base import Splitter
from graphweave.ingest.chunking.plugins import CodeSplitter, MarkdownSplitter, ProseSplitter
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import CHUNKING

logger = get_logger(__name__)

LANGUAGE_BY_EXTENSION: Dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".pyi": "python",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".cs": "csharp",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
    ".mdx": "markdown",
    ".txt": "text",
    ".rst": "text",
}

PROSE_LANGUAGES = frozenset({"text"})
MARKDOWN_LANGUAGES = frozenset({"markdown"})


def detect_language(path: str) -> Optional[str]:
    """Language for a path by extension, or None when unknown."""
    return LANGUAGE_BY_EXTENSION.get(PurePosixPath(path).suffix.lower())


class ChunkingRouter:
    """
    Picks the splitter for a language.

    Example:
        >>> router = ChunkingRouter()
        >>> router.get_splitter("markdown").plugin_name
        'markdown'
        >>> router.get_splitter(None).plugin_name
        'prose'
    """

    def __init__(
        self,
        by_language: Dict[str, Splitter] | None = None,
        default: Splitter | None = None,
    ) -> None:
        code = CodeSplitter()
        markdown = MarkdownSplitter()
        self._default = default or ProseSplitter()
        self._by_language: Dict[str, Splitter] = {}
        for language in set(LANGUAGE_BY_EXTENSION.values()):
            if language in MARKDOWN_LANGUAGES:
                self._by_language[language] = markdown
            elif language in PROSE_LANGUAGES:
                self._by_language[language] = self._default
            else:
                self._by_language[language] = code
        self._by_language.update(by_language or {})

    def get_splitter(self, language: Optional[str]) -> Splitter:
        if language is None:
            return self._default
        splitter = self._by_language.get(language)
        if splitter is None:
            logger.debug(f"{CHUNKING} No splitter for {language!r}, using {self._default.plugin_name}")
            return self._default
        return splitter

    def register(self, language: str, splitter: Splitter) -> None:
        self._by_language[language] = splitter


__all__ = ["LANGUAGE_BY_EXTENSION", "detect_language", "ChunkingRouter"]
