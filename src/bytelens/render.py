from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rich.markup import escape
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from bytelens.core.engine import EnumValue, ParsedNode, collect_findings
from bytelens.core.registry import FormatEntry
from bytelens.core.spans import type_group


@dataclass(frozen=True)
class Palette:
    parsed_name: str
    parsed_value: str
    parsed_index: str
    parsed_offset: str
    parsed_type: str
    parsed_punct: str
    parsed_error: str
    type_int_fg: str
    type_float_fg: str
    type_string_fg: str
    type_bytes_fg: str
    inspector_warning: str
    inspector_header: str


DEFAULT = Palette(
    parsed_name="#d8dee9",
    parsed_value="#ffffff",
    parsed_index="#5ea1ff",
    parsed_offset="#8892a0",
    parsed_type="#4c75c6",
    parsed_punct="#6b7280",
    parsed_error="#ff5555",
    type_int_fg="#9cdcfe",
    type_float_fg="#b3ecff",
    type_string_fg="#d7ba7d",
    type_bytes_fg="#ce9178",
    inspector_warning="#ffa657",
    inspector_header="#5ea1ff",
)

MONO = Palette(
    parsed_name="#e0e0e0",
    parsed_value="#f0f0f0",
    parsed_index="#a0a0a0",
    parsed_offset="#777777",
    parsed_type="#888888",
    parsed_punct="#666666",
    parsed_error="#ff6666",
    type_int_fg="#cccccc",
    type_float_fg="#cccccc",
    type_string_fg="#bbbbbb",
    type_bytes_fg="#aaaaaa",
    inspector_warning="#dddddd",
    inspector_header="#ffffff",
)

MAX_BYTES_SHOWN = 16


def format_value(value: Any, limit: int = MAX_BYTES_SHOWN) -> str:
    if value is None:
        return "null"
    if isinstance(value, EnumValue):
        return f"{value.label} ({int(value)})" if value.label else str(int(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        shown = raw[:limit].hex(" ").upper()
        return f"{shown} …" if len(raw) > limit else shown
    if isinstance(value, str):
        return repr(value)
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def display_name(n: ParsedNode) -> str:
    name = n.name
    if name.endswith("]"):
        lb = name.rfind("[")
        if lb != -1:
            return name[lb:]
    return name or "(root)"


def _value_style(n: ParsedNode, palette: Palette) -> str:
    group = type_group(n.type)
    return {
        "int": palette.type_int_fg,
        "bits": palette.type_int_fg,
        "float": palette.type_float_fg,
        "string": palette.type_string_fg,
        "bytes": palette.type_bytes_fg,
    }.get(group, palette.parsed_value)


def meta_suffix(n: ParsedNode) -> str:
    parts: list[str] = [f"@0x{n.offset:08X}"]
    if n.children is None:
        if n.type == "bytes":
            parts.append(f"bytes[{n.length}]")
        else:
            parts.append(n.type)
    else:
        parts.append(f"{n.type} ({n.length} bytes)")
    return " ".join(parts)


def struct_summary(n: ParsedNode, limit: int = 3) -> str:
    res: list[str] = []

    def visit(node: ParsedNode) -> None:
        if len(res) >= limit:
            return
        if node.children is not None:
            for ch in node.children:
                visit(ch)
                if len(res) >= limit:
                    return
        elif node.value is not None:
            res.append(f"{display_name(node)}: {format_value(node.value, 4)}")

    visit(n)
    return "{ " + ", ".join(res) + " }" if res else "{ … }"


def format_label(n: ParsedNode, palette: Palette = DEFAULT, show_meta: bool = True) -> Text:
    name = display_name(n)
    t = Text()
    name_style = palette.parsed_index if name.startswith("[") else palette.parsed_name
    t.append(name, style=name_style)
    t.append(": ", style=palette.parsed_punct)
    if n.children is not None:
        if n.type.endswith("[]"):
            t.append(f"[ {len(n.children)} items ]", style=palette.parsed_value)
        else:
            t.append(struct_summary(n), style=palette.parsed_value)
    elif n.value is None and n.findings:
        t.append("null", style=palette.parsed_error)
    else:
        t.append(format_value(n.value), style=_value_style(n, palette))
    if show_meta:
        t.append("  ", style=palette.parsed_punct)
        t.append(meta_suffix(n), style=palette.parsed_offset)
    for f in n.findings:
        t.append(f"  ⚠ {f.kind}: {f.message}", style=palette.inspector_warning)
    return t


def render_tree(
    root: ParsedNode,
    *,
    max_depth: int | None = None,
    palette: Palette = DEFAULT,
    show_meta: bool = True,
) -> Tree:
    """Build a rich Tree for a parsed node.

    Nodes deeper than `max_depth` are collapsed into a single "…" leaf.
    """
    tree = Tree(format_label(root, palette, show_meta), guide_style=palette.parsed_punct)
    _add_children(tree, root, 0, max_depth, palette, show_meta)
    return tree


def _add_children(
    parent: Tree,
    node: ParsedNode,
    depth: int,
    max_depth: int | None,
    palette: Palette,
    show_meta: bool,
) -> None:
    for child in node.children or ():
        branch = parent.add(format_label(child, palette, show_meta))
        if child.children:
            if max_depth is not None and depth + 1 >= max_depth:
                branch.add(Text("…", style=palette.parsed_punct))
            else:
                _add_children(branch, child, depth + 1, max_depth, palette, show_meta)


def render_nodes(
    nodes: list[ParsedNode],
    title: str,
    *,
    max_depth: int | None = None,
    palette: Palette = DEFAULT,
) -> Tree:
    """Tree of a viewport result (several top-level nodes)."""
    tree = Tree(Text(title, style=palette.inspector_header), guide_style=palette.parsed_punct)
    for node in nodes:
        branch = tree.add(format_label(node, palette))
        _add_children(branch, node, 1, max_depth, palette, True)
    return tree


def findings_table(root: ParsedNode, palette: Palette = DEFAULT) -> Table | None:
    findings = collect_findings(root)
    if not findings:
        return None
    table = Table(title="Findings", title_style=palette.inspector_header)
    table.add_column("Kind", style=palette.inspector_warning)
    table.add_column("Offset", style=palette.parsed_offset, justify="right")
    table.add_column("Path", style=palette.parsed_name)
    table.add_column("Message")
    for f in findings:
        offset = f"0x{f.offset:08X}" if f.offset is not None else "-"
        table.add_row(f.kind, offset, escape(f.path) or "-", escape(f.message))
    return table


def formats_table(entries: list[FormatEntry], palette: Palette = DEFAULT) -> Table:
    table = Table(title="Formats", title_style=palette.inspector_header)
    table.add_column("Id", style=palette.parsed_name)
    table.add_column("Name")
    table.add_column("Category", style=palette.parsed_type)
    table.add_column("Extensions", style=palette.parsed_offset)
    table.add_column("Signature", style=palette.type_bytes_fg)
    for e in entries:
        sig = e.signature
        sig_text = sig.pattern.hex(" ").upper() if sig is not None else "-"
        if sig is not None and sig.offset:
            sig_text += f" @{sig.offset}"
        table.add_row(e.id, e.name, e.category, ", ".join(e.extensions) or "-", sig_text)
    return table
