# graphweave/ingest/chunking/base.py
"""
Splitter protocol and span helpers.

A splitter cuts a text into contiguous units: the first unit starts at 0,
each unit starts where the previous one ended and the last one ends at
len(text). Units carry optional metadata (symbol, heading) that the packer
copies onto the chunk that starts with them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Protocol, runtime_checkable

_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n\s*")


@dataclass(frozen=True)
class Unit:
    start: int
    end: int
    meta: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Splitter(Protocol):
    """Cuts text into contiguous units along natural boundaries."""

    plugin_name: str
    chunk_type: str

    def split(self, text: str) -> List[Unit]:
        ...


def spans_from_offsets(start: int, end: int, offsets: Iterable[int]) -> List[tuple[int, int]]:
    """Turn cut offsets into contiguous (start, end) spans covering [start, end)."""
    cuts = sorted({o for o in offsets if start < o < end})
    bounds = [start, *cuts, end]
    return [(a, b) for a, b in zip(bounds, bounds[1:]) if a < b]


def blank_line_cuts(text: str, start: int, end: int) -> List[int]:
    """Offsets just past each blank-line run inside [start, end)."""
    return [m.end() for m in _BLANK_LINE_RE.finditer(text, start, end)]


def blocks(text: str, start: int, end: int, meta: Dict[str, Any] | None = None) -> List[Unit]:
    """Split [start, end) on blank lines, tagging every unit with meta."""
    meta = meta or {}
    return [Unit(a, b, dict(meta)) for a, b in spans_from_offsets(start, end, blank_line_cuts(text, start, end))]


__all__ = ["Unit", "Splitter", "spans_from_offsets", "blank_line_cuts", "blocks"]
