# graphweave/ingest/chunking/plugins/code.py
"""
Code splitter: top-level symbol boundaries, then blank-line blocks.

Splitter ID format: "code"

A symbol section starts at its declaration line, pulled up over any
decorators and comment lines sitting directly above it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Tuple

from graphweave.ingest.chunking.base import Unit, blocks

_SYMBOL_RE = re.compile(
    r"^(?:export\s+(?:default\s+)?)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:(?P<kind>def|class|function\*?|interface|type|enum)\s+(?P<name>[A-Za-z_$][\w$]*)"
    r"|(?:const|let|var)\s+(?P<arrow>[A-Za-z_$][\w$]*)\s*(?::[^=]+)?=\s*(?:async\s*)?"
    r"(?:\([^)]*\)|[A-Za-z_$][\w$]*)\s*(?::[^=]+)?=>)"
)
_LEADING_RE = re.compile(r"^[ \t]*(?:@|#|//|/\*|\*)")

_KIND_NAMES = {"def": "function", "function*": "function"}


def find_symbols(text: str) -> List[Tuple[int, str, str]]:
    """(offset, kind, name) for each top-level declaration."""
    lines = text.splitlines(keepends=True)
    offsets = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line)

    symbols = []
    for i, line in enumerate(lines):
        m = _SYMBOL_RE.match(line)
        if not m:
            continue
        if m.group("arrow"):
            kind, name = "function", m.group("arrow")
        else:
            kind = _KIND_NAMES.get(m.group("kind"), m.group("kind"))
            name = m.group("name")

        first = i
        while first > 0 and lines[first - 1].strip() and _LEADING_RE.match(lines[first - 1]):
            first -= 1
        symbols.append((offsets[first], kind, name))
    return symbols


@dataclass
class CodeSplitter:
    """Sections per top-level symbol; units inherit their section's symbol."""

    plugin_name: str = field(default="code", repr=False)
    chunk_type: str = "code"

    def split(self, text: str) -> List[Unit]:
        symbols = find_symbols(text)
        units: List[Unit] = []

        first = symbols[0][0] if symbols else len(text)
        if first > 0:
            units.extend(blocks(text, 0, first))

        for i, (offset, kind, name) in enumerate(symbols):
            end = symbols[i + 1][0] if i + 1 < len(symbols) else len(text)
            if end <= offset:
                continue
            units.extend(blocks(text, offset, end, {"symbol_name": name, "symbol_kind": kind}))
        return units


__all__ = ["CodeSplitter", "find_symbols"]
