from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from bytelens.core.io import PagedReader
from bytelens.core.profiles import PROFILES, get_profile
from bytelens.core.registry import FormatRegistry
from bytelens.core.runtime import Runtime
from bytelens.core.schema import CompileError, lint_schema
from bytelens.core.storage import DirectorySchemaStore
from bytelens.render import findings_table, formats_table, render_nodes, render_tree


def parse_range_arg(text: str) -> tuple[int, int]:
    """Parse `START:END`; both ends accept decimal or 0x-prefixed hex."""
    start_s, sep, end_s = text.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected START:END, got '{text}'")
    try:
        start, end = int(start_s, 0), int(end_s, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid range '{text}'") from None
    if start < 0 or end < start:
        raise argparse.ArgumentTypeError(f"invalid range '{text}'")
    return start, end


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bytelens", description="Schema-driven binary structure viewer (.ksy)"
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    parser.add_argument(
        "--profile", choices=sorted(PROFILES), default="interactive", help="Runtime profile"
    )
    parser.add_argument(
        "--user-formats",
        action="store_true",
        help="Also load schemas from the per-user formats directory",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_detect = sub.add_parser("detect", help="Detect the format of a file")
    p_detect.add_argument("path", help="Path to binary file")

    p_parse = sub.add_parser("parse", help="Parse a file and print its structure")
    p_parse.add_argument("path", help="Path to binary file")
    p_parse.add_argument("--format", dest="format_id", help="Format id (detected if omitted)")
    p_parse.add_argument("--schema", help="Path to a .ksy schema to use")
    p_parse.add_argument("--range", type=parse_range_arg, help="Only nodes overlapping START:END")
    p_parse.add_argument("--depth", type=int, default=None, help="Maximum tree depth shown")
    p_parse.add_argument("--json", action="store_true", help="Print JSON instead of a tree")

    p_formats = sub.add_parser("formats", help="List registered formats")
    p_formats.add_argument("--category", choices=("system", "user"))
    p_formats.add_argument("--name", help="Filter by name substring")

    p_lint = sub.add_parser("lint", help="Validate a .ksy schema")
    p_lint.add_argument("schema", help="Path to a .ksy schema")
    return parser


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _make_runtime(args: argparse.Namespace) -> Runtime:
    store = DirectorySchemaStore() if args.user_formats else None
    profile = get_profile(args.profile)
    registry = FormatRegistry(store, detect_prefix=profile.detect_prefix)
    registry.initialize()
    return Runtime(registry, profile=profile)


def _cmd_detect(args: argparse.Namespace, console: Console) -> int:
    runtime = _make_runtime(args)
    with PagedReader(args.path) as reader:
        found = runtime.detect_format(reader, os.path.basename(args.path))
    if found is None:
        console.print(f"{args.path}: unknown")
        return 1
    entry = runtime.registry.entry(found)
    name = entry.name if entry is not None else found
    console.print(f"{args.path}: {found} ({name})")
    return 0


def _cmd_parse(args: argparse.Namespace, console: Console) -> int:
    runtime = _make_runtime(args)
    format_id = args.format_id
    if args.schema:
        try:
            text = Path(args.schema).read_text(encoding="utf-8")
            format_id = runtime.registry.register(text)
        except OSError as e:
            print(f"bytelens: cannot read schema: {e}", file=sys.stderr)
            return 2
        except CompileError as e:
            for err in e.errors:
                print(f"bytelens: {args.schema}: {err}", file=sys.stderr)
            return 1

    filename = os.path.basename(args.path)
    with PagedReader(args.path) as reader:
        if args.range is not None:
            start, end = args.range
            nodes = runtime.parse_range(reader, start, end, format_id=format_id, filename=filename)
            if args.json:
                print(json.dumps([n.to_dict() for n in nodes], indent=2, default=str))
            else:
                title = f"{filename} [0x{start:X}:0x{end:X}]"
                console.print(render_nodes(nodes, title, max_depth=args.depth))
            return 0
        root = runtime.parse(reader, format_id=format_id, filename=filename)

    if root.type == "error":
        print(f"bytelens: {root.value}", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps(root.to_dict(), indent=2, default=str))
        return 0
    console.print(render_tree(root, max_depth=args.depth))
    table = findings_table(root)
    if table is not None:
        console.print(table)
    return 0


def _cmd_formats(args: argparse.Namespace, console: Console) -> int:
    runtime = _make_runtime(args)
    entries = runtime.registry.list_formats(args.category, args.name)
    console.print(formats_table(entries))
    return 0


def _cmd_lint(args: argparse.Namespace, console: Console) -> int:
    result = lint_schema(Path(args.schema).read_text(encoding="utf-8"))
    for err in result.errors:
        console.print(f"[red]error[/red]: {escape(err)}")
    for warn in result.warnings:
        console.print(f"[yellow]warning[/yellow]: {escape(warn)}")
    if result.success:
        console.print(f"{args.schema}: ok")
        return 0
    return 1


COMMANDS = {
    "detect": _cmd_detect,
    "parse": _cmd_parse,
    "formats": _cmd_formats,
    "lint": _cmd_lint,
}


def main(argv: list[str] | None = None, console: Console | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    path = getattr(args, "path", None) or getattr(args, "schema", None)
    if path is not None and not os.path.exists(path):
        print(f"bytelens: file not found: {path}", file=sys.stderr)
        return 2

    return COMMANDS[args.command](args, console or Console())


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
