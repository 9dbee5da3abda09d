# graphweave/ingest/chunking/plugins/prose.py
"""
Prose splitter: sentences and paragraphs.

Splitter ID format: "prose"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List

from graphweave.ingest.chunking.base import Unit, spans_from_offsets

_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+|\n[ \t]*\n\s*")


@dataclass
class ProseSplitter:
    """
    Cuts after sentence punctuation followed by whitespace and after blank
    lines. A sentence longer than the chunk limit stays one unit.
    """

    plugin_name: str = field(default="prose", repr=False)
    chunk_type: str = "prose"

    def split(self, text: str) -> List[Unit]:
        cuts = [m.end() for m in _SENTENCE_END_RE.finditer(text)]
        return [Unit(a, b) for a, b in spans_from_offsets(0, len(text), cuts)]


__all__ = ["ProseSplitter"]
