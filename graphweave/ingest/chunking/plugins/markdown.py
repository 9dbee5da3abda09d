# graphweave/ingest/chunking/plugins/markdown.py
"""
Markdown splitter: heading sections, then paragraphs.

Splitter ID format: "markdown"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from graphweave.ingest.chunking.base import Unit, blocks

_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t#]*$")
_FENCE_RE = re.compile(r"^[ \t]*(```|~~~)")


def find_headings(text: str) -> List[Tuple[int, int, str]]:
    """(offset, level, title) for every ATX heading outside fenced code."""
    headings = []
    offset = 0
    in_fence = False
    for line in text.splitlines(keepends=True):
        stripped = line.rstrip("\n")
        if _FENCE_RE.match(stripped):
            in_fence = not in_fence
        elif not in_fence:
            m = _HEADING_RE.match(stripped)
            if m:
                headings.append((offset, len(m.group(1)), m.group(2).strip()))
        offset += len(line)
    return headings


@dataclass
class MarkdownSplitter:
    """Each heading opens a section; sections are cut further on blank lines."""

    plugin_name: str = field(default="markdown", repr=False)
    chunk_type: str = "markdown"

    def split(self, text: str) -> List[Unit]:
        headings = find_headings(text)
        sections: List[Tuple[int, int, Optional[str], Optional[int]]] = []

        first = headings[0][0] if headings else len(text)
        if first > 0:
            sections.append((0, first, None, None))
        for i, (offset, level, title) in enumerate(headings):
            end = headings[i + 1][0] if i + 1 < len(headings) else len(text)
            sections.append((offset, end, title, level))

        units: List[Unit] = []
        for start, end, title, level in sections:
            meta = {"heading": title, "heading_level": level} if title else {}
            units.extend(blocks(text, start, end, meta))
        return units


__all__ = ["MarkdownSplitter", "find_headings"]
