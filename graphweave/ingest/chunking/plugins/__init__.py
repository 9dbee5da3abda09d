# graphweave/ingest/chunking/plugins/__init__.py
from .code import CodeSplitter
from .markdown import MarkdownSplitter
from .prose import ProseSplitter

__all__ = ["CodeSplitter", "MarkdownSplitter", "ProseSplitter"]
