from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

from bytelens.core.endian import parse_bits_type, parse_numeric_type
from bytelens.core.engine import ParsedNode


@dataclass(frozen=True)
class Span:
    offset: int
    length: int
    path: str
    group: str  # int|float|string|bytes|bits|unknown
    type: str = ""

    @property
    def end(self) -> int:
        return self.offset + self.length


class SpanIndex:
    def __init__(self, spans: list[Span]) -> None:
        # assumes non-overlapping sorted spans; overlapping still works by picking the last start
        self._spans = sorted((s for s in spans if s.length > 0), key=lambda s: s.offset)
        self._starts = [s.offset for s in self._spans]

    def __len__(self) -> int:
        return len(self._spans)

    def find(self, offset: int) -> Span | None:
        i = bisect_right(self._starts, offset) - 1
        if i >= 0:
            s = self._spans[i]
            if s.offset <= offset < s.end:
                return s
        return None

    def in_range(self, start: int, end: int) -> list[Span]:
        """Spans overlapping [start, end)."""
        i = max(bisect_right(self._starts, start) - 1, 0)
        out: list[Span] = []
        for s in self._spans[i:]:
            if s.offset >= end:
                break
            if s.end > start:
                out.append(s)
        return out


def type_group(node_type: str) -> str:
    if node_type in ("str", "strz"):
        return "string"
    if node_type == "bytes":
        return "bytes"
    numeric = parse_numeric_type(node_type)
    if numeric is not None:
        return "float" if numeric[0] == "f" else "int"
    if parse_bits_type(node_type) is not None:
        return "bits"
    return "unknown"


def build_spans(root: ParsedNode) -> list[Span]:
    """Leaf spans of a parsed tree, in walk order."""
    return [
        Span(offset=n.offset, length=n.length, path=n.path, group=type_group(n.type), type=n.type)
        for n in root.walk()
        if n.children is None and n.length > 0
    ]


def build_span_index(root: ParsedNode) -> SpanIndex:
    return SpanIndex(build_spans(root))


def overlapping(
    nodes: tuple[ParsedNode, ...] | list[ParsedNode], start: int, end: int
) -> list[ParsedNode]:
    """Nodes with `offset < end and offset + length > start`."""
    return [n for n in nodes if n.offset < end and n.offset + n.length > start]


def node_at_offset(root: ParsedNode, offset: int) -> ParsedNode | None:
    """Deepest node covering `offset`."""
    if not root.offset <= offset < root.end and root.children is None:
        return None
    best: ParsedNode | None = root if root.offset <= offset < root.end else None
    for child in root.children or ():
        if child.offset <= offset < child.end or child.children:
            found = node_at_offset(child, offset)
            if found is not None:
                return found
    return best
