"""Interpretation engine: walks a compiled schema over a byte stream.

The engine never raises for malformed input. Each problem becomes a
`Finding` on the node where it happened and parsing continues with the
next field; only cancellation (`ParseCancelled`) escapes `parse_schema`.
"""

from __future__ import annotations

import logging
import math
import threading
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from bytelens.core.endian import (
    Endian,
    parse_bits_type,
    parse_numeric_type,
    resolve_endian,
)
from bytelens.core.expr import (
    UNKNOWN,
    ExpressionError,
    as_bool,
    as_int,
    evaluate,
    evaluate_or_unknown,
)
from bytelens.core.findings import (
    OUT_OF_BOUNDS,
    RECURSION_LIMIT,
    REPEAT_ABORTED,
    UNKNOWN_SWITCH,
    UNKNOWN_TYPE,
    UNRESOLVED_EXPRESSION,
    VALIDATION_MISMATCH,
    Finding,
)
from bytelens.core.io import Buffer, ByteSource
from bytelens.core.profiles import EngineLimits
from bytelens.core.schema import (
    EnumValue,
    FieldSpec,
    SchemaDocument,
    SwitchSpec,
    TypeSpec,
    ValidSpec,
)
from bytelens.core.stream import (
    KaitaiStream,
    OutOfBounds,
    decode_str,
    process_rotate_left,
    process_xor,
)

logger = logging.getLogger(__name__)

__all__ = [
    "EnumValue",
    "ParseCancelled",
    "ParsedNode",
    "collect_findings",
    "parse_schema",
]


class ParseCancelled(Exception):
    """The caller's cancel event was set while parsing."""


@dataclass(frozen=True)
class ParsedNode:
    name: str
    path: str
    offset: int
    length: int
    type: str
    value: Any | None = None
    children: tuple[ParsedNode, ...] | None = None
    findings: tuple[Finding, ...] = ()

    @property
    def end(self) -> int:
        return self.offset + self.length

    def child(self, name: str) -> ParsedNode | None:
        for node in self.children or ():
            if node.name == name:
                return node
        return None

    def find(self, path: str) -> ParsedNode | None:
        """Find a descendant by dotted path relative to this node."""
        node: ParsedNode | None = self
        for part in path.split("."):
            if node is None:
                return None
            node = node.child(part)
        return node

    def walk(self) -> Iterator[ParsedNode]:
        yield self
        for node in self.children or ():
            yield from node.walk()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "offset": self.offset,
            "length": self.length,
            "type": self.type,
        }
        if self.children is not None:
            out["children"] = [c.to_dict() for c in self.children]
        else:
            value = self.value
            if isinstance(value, EnumValue):
                value = {"value": int(value), "label": value.label}
            elif isinstance(value, (bytes, bytearray)):
                value = bytes(value).hex()
            out["value"] = value
        if self.findings:
            out["findings"] = [
                {"kind": f.kind, "message": f.message, "offset": f.offset} for f in self.findings
            ]
        return out


def collect_findings(node: ParsedNode) -> list[Finding]:
    """All findings in the tree, depth-first."""
    return [f for n in node.walk() for f in n.findings]


def parse_schema(
    schema: SchemaDocument,
    data: Buffer | ByteSource,
    base_offset: int = 0,
    limits: EngineLimits | None = None,
    cancel: threading.Event | None = None,
) -> ParsedNode:
    """Parse `data` with `schema` and return the root node.

    `base_offset` is the absolute position of `data[0]` (used when a window
    of a larger file is parsed); node offsets are absolute.

    Raises:
        ParseCancelled: `cancel` was set before parsing finished.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        data = data.slice(0, data.size)
    interp = _Interpreter(schema, KaitaiStream(data, base_offset), limits or EngineLimits(), cancel)
    return interp.parse_root()


# ----------------------------------------------------------------------
# Scopes
# ----------------------------------------------------------------------


class _IoView:
    """What `_io` resolves to inside expressions."""

    def __init__(self, interp: _Interpreter) -> None:
        self._interp = interp

    def resolve(self, name: str) -> Any:
        stream = self._interp.stream
        if name == "pos":
            return stream.io_pos
        if name == "size":
            return stream.io_size
        if name == "eof":
            return stream.eof
        raise LookupError(f"_io.{name}")


class _Context:
    """Per user-type instance state; also the expression `Scope`."""

    def __init__(
        self,
        interp: _Interpreter,
        spec: TypeSpec,
        path: str,
        offset: int,
        parent: _Context | None = None,
    ) -> None:
        self.interp = interp
        self.spec = spec
        self.path = path
        self.offset = offset
        self.parent = parent
        self.root: _Context = parent.root if parent is not None else self
        self.depth = parent.depth + 1 if parent is not None else 0
        self.values: dict[str, Any] = {}
        self.bindings: dict[str, Any] = {}
        self.findings: list[Finding] = []
        self._instances: dict[str, tuple[Any, ParsedNode | None]] = {}
        self._pending: set[str] = set()
        self._endian: Endian | None = None
        # stream and region this type was parsed in; set when its body starts
        self.io: tuple[KaitaiStream, tuple[int, int]] | None = None

    def child_path(self, name: str) -> str:
        return f"{self.path}.{name}" if self.path else name

    # -- Scope protocol ----------------------------------------------------

    def resolve(self, name: str) -> Any:
        if name in self.bindings:
            return self.bindings[name]
        if name in self.values:
            return self.values[name]
        if name in self.spec.instances:
            return self.instance(name)[0]
        if name in ("_parent", "parent"):
            if self.parent is None:
                raise LookupError(name)
            return self.parent
        if name in ("_root", "root"):
            return self.root
        if name == "_io":
            return _IoView(self.interp)
        raise LookupError(name)

    def resolve_enum(self, enum_name: str, label: str) -> Any:
        spec = self.interp.schema.find_enum(enum_name)
        if spec is None:
            raise LookupError(f"{enum_name}::{label}")
        return spec.value_of(label)

    # -- endianness --------------------------------------------------------

    @property
    def endian(self) -> Endian:
        if self._endian is None:
            own: Endian | None = self.spec.endian
            switch = self.spec.endian_switch
            if own is None and switch is not None:
                on = evaluate_or_unknown(switch.switch_on, self)
                for key, value in switch.cases:
                    if on is not UNKNOWN and evaluate_or_unknown(key, self) == on:
                        own = value
                        break
                else:
                    own = switch.default
            parent = self.parent.endian if self.parent is not None else None
            root_meta = self.interp.schema.meta.endian
            self._endian, _ = resolve_endian(None, own, parent, root_meta)
        return self._endian

    # -- instances -----------------------------------------------------------

    def instance(self, name: str) -> tuple[Any, ParsedNode | None]:
        """Evaluate an instance at most once; cycles resolve to UNKNOWN."""
        if name in self._instances:
            return self._instances[name]
        if name in self._pending:
            raise LookupError(f"cyclic instance '{name}'")
        self._pending.add(name)
        try:
            with self.interp.enter_io(self):
                result = self.interp.parse_instance(self, name, self.spec.instances[name])
        finally:
            self._pending.discard(name)
        self._instances[name] = result
        return result


# ----------------------------------------------------------------------
# Interpreter
# ----------------------------------------------------------------------


class _Interpreter:
    def __init__(
        self,
        schema: SchemaDocument,
        stream: KaitaiStream,
        limits: EngineLimits,
        cancel: threading.Event | None,
    ) -> None:
        self.schema = schema
        self.stream = stream
        self.limits = limits
        self.cancel = cancel
        # (type name, absolute position) pairs of user types being parsed
        self._active: set[tuple[str, int]] = set()

    def check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise ParseCancelled()

    def finding(self, kind: str, message: str, path: str, offset: int | None = None) -> Finding:
        logger.debug("%s at %s: %s", kind, path, message)
        return Finding(kind, message, path, self.stream.pos if offset is None else offset)

    def resolve_expr(self, expr: str, scope: _Context, findings: list[Finding], path: str) -> Any:
        try:
            return evaluate(expr, scope)
        except ExpressionError as e:
            findings.append(self.finding(UNRESOLVED_EXPRESSION, f"'{expr}': {e}", path))
            return UNKNOWN

    def resolve_int(
        self, expr: str, scope: _Context, findings: list[Finding], path: str
    ) -> int | None:
        """Evaluate a count, size or position. None when it has no integer value."""
        value = self.resolve_expr(expr, scope, findings, path)
        if value is UNKNOWN:
            return None
        if isinstance(value, float) and not math.isfinite(value):
            findings.append(
                self.finding(UNRESOLVED_EXPRESSION, f"'{expr}' is {value}, not an integer", path)
            )
            return None
        return as_int(value)

    @contextmanager
    def swap_stream(self, stream: KaitaiStream) -> Iterator[None]:
        saved = self.stream
        self.stream = stream
        try:
            yield
        finally:
            self.stream = saved

    @contextmanager
    def enter_io(self, ctx: _Context) -> Iterator[None]:
        """Make `ctx`'s own stream and region current, wherever we are now."""
        if ctx.io is None:
            yield
            return
        stream, region = ctx.io
        with self.swap_stream(stream), stream.within(region):
            yield

    # -- structure -------------------------------------------------------------

    def parse_root(self) -> ParsedNode:
        schema = self.schema
        start = self.stream.pos
        ctx = _Context(self, schema.root, "", start)
        children = self.parse_body(ctx)
        return ParsedNode(
            name=schema.id,
            path="",
            offset=start,
            length=self.stream.pos - start,
            type=schema.id,
            children=tuple(children),
            findings=tuple(ctx.findings),
        )

    def parse_body(self, ctx: _Context) -> list[ParsedNode]:
        """Sequence fields in order, then any instances not yet evaluated."""
        ctx.io = (self.stream, self.stream.region)
        children: list[ParsedNode] = []
        for spec in ctx.spec.seq:
            self.check_cancel()
            value, node = self.parse_field(ctx, spec, ctx.child_path(spec.id))
            ctx.values[spec.id] = value
            if node is not None:
                children.append(node)
        for name in ctx.spec.instances:
            self.check_cancel()
            _, node = ctx.instance(name)
            if node is not None:
                children.append(node)
        return children

    def parse_instance(
        self, ctx: _Context, name: str, spec: FieldSpec
    ) -> tuple[Any, ParsedNode | None]:
        path = ctx.child_path(name)
        findings: list[Finding] = []
        if spec.condition is not None:
            cond = self.resolve_expr(spec.condition, ctx, findings, path)
            if not as_bool(cond):
                ctx.findings.extend(findings)
                return None, None

        if spec.value is not None:
            value = self.resolve_expr(spec.value, ctx, findings, path)
            if value is UNKNOWN:
                value = None
            value = self.map_enum(spec, value, findings, path)
            return value, ParsedNode(
                name=name,
                path=path,
                offset=ctx.offset,
                length=0,
                type="value",
                value=_export(value),
                findings=tuple(findings),
            )

        stream = self.stream
        saved = stream.pos
        if spec.pos is not None:
            target = self.resolve_int(spec.pos, ctx, findings, path)
            if target is None:
                return None, self.null_node(name, path, saved, "bytes", findings)
            absolute = stream.to_absolute(target)
            try:
                stream.seek(absolute)
            except OutOfBounds as e:
                findings.append(self.finding(OUT_OF_BOUNDS, str(e), path, absolute))
                return None, self.null_node(name, path, absolute, "bytes", findings)
        try:
            value, node = self.parse_field(ctx, spec, path, skip_condition=True)
        finally:
            stream.seek(saved)
        if node is not None and findings:
            node = _with_findings(node, findings)
        return value, node

    def parse_field(
        self,
        ctx: _Context,
        spec: FieldSpec,
        path: str,
        skip_condition: bool = False,
    ) -> tuple[Any, ParsedNode | None]:
        if spec.condition is not None and not skip_condition:
            cond = self.resolve_expr(spec.condition, ctx, ctx.findings, path)
            if not as_bool(cond):
                return None, None
        if spec.repeat is not None:
            return self.parse_repeat(ctx, spec, path)
        return self.parse_single(ctx, spec, spec.id, path)

    def parse_repeat(
        self, ctx: _Context, spec: FieldSpec, path: str
    ) -> tuple[list[Any], ParsedNode]:
        stream = self.stream
        repeat = spec.repeat
        assert repeat is not None
        ceiling = self.limits.max_repeat_items
        findings: list[Finding] = []
        start = stream.pos

        count: int | None = None
        if repeat.mode == "expr":
            count = self.resolve_int(repeat.expr or "0", ctx, findings, path) or 0
            if count > ceiling:
                findings.append(
                    self.finding(
                        REPEAT_ABORTED, f"repeat count {count} exceeds ceiling {ceiling}", path
                    )
                )
                count = ceiling
            count = max(count, 0)

        values: list[Any] = []
        nodes: list[ParsedNode] = []
        i = 0
        try:
            while True:
                self.check_cancel()
                if count is not None and i >= count:
                    break
                if repeat.mode == "eos" and stream.eof:
                    break
                if i >= ceiling:
                    findings.append(
                        self.finding(REPEAT_ABORTED, f"stopped after {ceiling} items", path)
                    )
                    break
                before = stream.pos
                ctx.bindings["_index"] = i
                value, node = self.parse_single(ctx, spec, f"{spec.id}[{i}]", f"{path}[{i}]")
                values.append(value)
                nodes.append(node)
                i += 1
                if any(f.kind == OUT_OF_BOUNDS for f in node.findings):
                    break
                if repeat.mode == "until":
                    ctx.bindings["_"] = value
                    done = self.resolve_expr(repeat.expr or "true", ctx, findings, path)
                    if done is UNKNOWN or as_bool(done):
                        break
                if stream.pos == before:
                    findings.append(
                        self.finding(REPEAT_ABORTED, "item consumed no bytes", path)
                    )
                    break
        finally:
            ctx.bindings.pop("_index", None)
            ctx.bindings.pop("_", None)

        item_type = nodes[0].type if nodes else _type_label(spec)
        return values, ParsedNode(
            name=spec.id,
            path=path,
            offset=start,
            length=stream.pos - start,
            type=f"{item_type}[]",
            children=tuple(nodes),
            findings=tuple(findings),
        )

    def parse_single(
        self, ctx: _Context, spec: FieldSpec, name: str, path: str
    ) -> tuple[Any, ParsedNode]:
        stream = self.stream
        start = stream.pos
        findings: list[Finding] = []
        type_label = _type_label(spec)
        try:
            if spec.contents is not None:
                data = stream.read_bytes(len(spec.contents))
                if data != spec.contents:
                    findings.append(
                        self.finding(
                            VALIDATION_MISMATCH,
                            f"expected {spec.contents.hex(' ')}, got {data.hex(' ')}",
                            path,
                            start,
                        )
                    )
                return data, self.leaf(name, path, start, type_label, data, findings)

            ftype = spec.type
            if isinstance(ftype, SwitchSpec):
                chosen = self.choose_case(ctx, ftype, findings, path)
                if chosen is None:
                    findings.append(
                        self.finding(
                            UNKNOWN_SWITCH, f"no case matches '{ftype.switch_on}'", path, start
                        )
                    )
                    data = self.read_raw(ctx, spec, findings, path)
                    return data, self.leaf(name, path, start, "bytes", data, findings)
                ftype = chosen

            if ftype is None or ftype == "bytes":
                data = self.read_raw(ctx, spec, findings, path)
                data = self.process(ctx, spec, data, findings, path)
                self.check_valid(ctx, spec.valid, data, findings, path)
                return data, self.leaf(name, path, start, "bytes", data, findings)

            if ftype in ("str", "strz"):
                data = self.read_raw(ctx, spec, findings, path)
                text = decode_str(data, self.encoding_for(ctx, spec))
                self.check_valid(ctx, spec.valid, text, findings, path)
                return text, self.leaf(name, path, start, ftype, text, findings)

            numeric = parse_numeric_type(ftype)
            if numeric is not None:
                kind, width, suffix = numeric
                endian = suffix or ctx.endian
                raw = stream.read_number(kind, width, endian)
                value = self.map_enum(spec, raw, findings, path)
                self.check_valid(ctx, spec.valid, value, findings, path)
                return value, self.leaf(name, path, start, ftype, value, findings)

            bits = parse_bits_type(ftype)
            if bits is not None:
                raw_bits = stream.read_bits_int_be(bits)
                value = bool(raw_bits) if bits == 1 and spec.enum is None else raw_bits
                value = self.map_enum(spec, value, findings, path)
                self.check_valid(ctx, spec.valid, value, findings, path)
                return value, self.leaf(name, path, start, ftype, value, findings)

            if ftype in self.schema.types:
                return self.parse_user_type(ctx, spec, ftype, name, path, findings)

            findings.append(self.finding(UNKNOWN_TYPE, f"unknown type '{ftype}'", path, start))
            data = self.read_raw(ctx, spec, findings, path)
            return data, self.leaf(name, path, start, "bytes", data, findings)
        except OutOfBounds as e:
            findings.append(self.finding(OUT_OF_BOUNDS, str(e), path, start))
            return None, self.null_node(name, path, start, type_label, findings)
        except ValueError as e:
            findings.append(self.finding(VALIDATION_MISMATCH, str(e), path, start))
            return None, self.null_node(name, path, start, type_label, findings)

    def parse_user_type(
        self,
        ctx: _Context,
        spec: FieldSpec,
        type_name: str,
        name: str,
        path: str,
        findings: list[Finding],
    ) -> tuple[Any, ParsedNode]:
        stream = self.stream
        start = stream.pos
        tspec = self.schema.types[type_name]

        if ctx.depth + 1 > self.limits.max_depth:
            findings.append(
                self.finding(
                    RECURSION_LIMIT, f"type nesting deeper than {self.limits.max_depth}", path
                )
            )
            return None, self.null_node(name, path, start, type_name, findings)
        key = (type_name, start)
        if key in self._active:
            findings.append(
                self.finding(RECURSION_LIMIT, f"'{type_name}' re-entered at the same position", path)
            )
            return None, self.null_node(name, path, start, type_name, findings)

        size = self.byte_count(ctx, spec, findings, path)
        if size is not None and size > stream.remaining:
            findings.append(
                self.finding(
                    OUT_OF_BOUNDS,
                    f"size {size} exceeds the {stream.remaining} bytes available",
                    path,
                )
            )
            size = stream.remaining

        child = _Context(self, tspec, path, start, parent=ctx)
        self._active.add(key)
        try:
            if size is None:
                children = self.parse_body(child)
                length = stream.pos - start
            elif spec.process is not None:
                raw = stream.read_bytes(size)
                data = self.process(ctx, spec, raw, findings, path)
                with self.swap_stream(KaitaiStream(data, start)):
                    children = self.parse_body(child)
                length = size
            else:
                with stream.limit(size):
                    children = self.parse_body(child)
                stream.seek(start + size)
                length = size
        finally:
            self._active.discard(key)

        node = ParsedNode(
            name=name,
            path=path,
            offset=start,
            length=length,
            type=type_name,
            children=tuple(children),
            findings=tuple(findings + child.findings),
        )
        return child, node

    def choose_case(
        self, ctx: _Context, switch: SwitchSpec, findings: list[Finding], path: str
    ) -> str | None:
        on = self.resolve_expr(switch.switch_on, ctx, findings, path)
        if on is not UNKNOWN:
            for key, target in switch.cases:
                candidate = evaluate_or_unknown(key, ctx)
                if candidate is UNKNOWN:
                    continue
                if _case_equal(on, candidate):
                    return target
        return switch.default

    # -- leaves ---------------------------------------------------------------

    def byte_count(
        self, ctx: _Context, spec: FieldSpec, findings: list[Finding], path: str
    ) -> int | None:
        if spec.size is not None:
            n = self.resolve_int(spec.size, ctx, findings, path) or 0
            if n < 0:
                findings.append(self.finding(OUT_OF_BOUNDS, f"negative size {n}", path))
                return 0
            return n
        if spec.size_eos:
            return self.stream.remaining
        return None

    def read_raw(
        self,
        ctx: _Context,
        spec: FieldSpec,
        findings: list[Finding],
        path: str,
    ) -> bytes:
        stream = self.stream
        n = self.byte_count(ctx, spec, findings, path)
        if n is not None:
            data = self.read_capped(n)
            if spec.terminator is not None:
                cut = data.find(bytes([spec.terminator]))
                if cut != -1:
                    data = data[: cut + (1 if spec.include else 0)]
            return data
        if spec.terminator is not None:
            data = stream.read_bytes_term(
                spec.terminator, spec.include, spec.consume, spec.eos_error
            )
            return data[: self.limits.max_string_bytes]
        return b""

    def read_capped(self, n: int) -> bytes:
        """Read `n` bytes, keeping at most `max_string_bytes` of them."""
        cap = self.limits.max_string_bytes
        stream = self.stream
        if n <= cap:
            return stream.read_bytes(n)
        if n > stream.remaining:
            raise OutOfBounds(stream.pos, n, stream.size)
        data = stream.read_bytes(cap)
        stream.skip(n - cap)
        return data

    def process(
        self,
        ctx: _Context,
        spec: FieldSpec,
        data: bytes,
        findings: list[Finding],
        path: str,
    ) -> bytes:
        if spec.process is None:
            return data
        name, _, arg = spec.process.partition("(")
        arg = arg.rstrip(")")
        if name == "zlib":
            try:
                return zlib.decompress(data)
            except zlib.error as e:
                findings.append(self.finding(VALIDATION_MISMATCH, f"zlib: {e}", path))
                return data
        key = self.resolve_expr(arg, ctx, findings, path) if arg else UNKNOWN
        if key is UNKNOWN:
            return data
        if name == "xor":
            return process_xor(data, key if isinstance(key, (bytes, int)) else as_int(key))
        amount = as_int(key)
        return process_rotate_left(data, amount if name == "rol" else -amount)

    def encoding_for(self, ctx: _Context, spec: FieldSpec) -> str:
        if spec.encoding:
            return spec.encoding
        scope: _Context | None = ctx
        while scope is not None:
            if scope.spec.encoding:
                return scope.spec.encoding
            scope = scope.parent
        return self.schema.meta.encoding or "utf-8"

    def map_enum(self, spec: FieldSpec, value: Any, findings: list[Finding], path: str) -> Any:
        if spec.enum is None or not isinstance(value, int):
            return value
        enum = self.schema.find_enum(spec.enum)
        if enum is None:
            findings.append(self.finding(UNKNOWN_TYPE, f"unknown enum '{spec.enum}'", path))
            return value
        return enum.lookup(int(value))

    def check_valid(
        self,
        ctx: _Context,
        valid: ValidSpec | None,
        value: Any,
        findings: list[Finding],
        path: str,
    ) -> None:
        if valid is None or value is None:
            return

        def resolve(raw: Any) -> Any:
            if isinstance(raw, str):
                return self.resolve_expr(raw, ctx, findings, path)
            if isinstance(raw, list):
                return bytes(raw) if all(isinstance(b, int) for b in raw) else raw
            return raw

        problems: list[str] = []
        if valid.eq is not None:
            expected = resolve(valid.eq)
            if expected is not UNKNOWN and not _case_equal(value, expected):
                problems.append(f"expected {expected!r}")
        if valid.min is not None:
            low = resolve(valid.min)
            if low is not UNKNOWN and _compare(value, low) < 0:
                problems.append(f"below minimum {low!r}")
        if valid.max is not None:
            high = resolve(valid.max)
            if high is not UNKNOWN and _compare(value, high) > 0:
                problems.append(f"above maximum {high!r}")
        if valid.any_of is not None:
            options = [resolve(o) for o in valid.any_of]
            if not any(o is not UNKNOWN and _case_equal(value, o) for o in options):
                problems.append("not one of the allowed values")
        if valid.expr is not None:
            ctx.bindings["_"] = value
            try:
                ok = self.resolve_expr(valid.expr, ctx, findings, path)
            finally:
                ctx.bindings.pop("_", None)
            if ok is not UNKNOWN and not as_bool(ok):
                problems.append(f"'{valid.expr}' is false")
        for problem in problems:
            findings.append(self.finding(VALIDATION_MISMATCH, f"{value!r}: {problem}", path))

    def leaf(
        self,
        name: str,
        path: str,
        start: int,
        type_label: str,
        value: Any,
        findings: list[Finding],
    ) -> ParsedNode:
        return ParsedNode(
            name=name,
            path=path,
            offset=start,
            length=self.stream.pos - start,
            type=type_label,
            value=value,
            findings=tuple(findings),
        )

    def null_node(
        self, name: str, path: str, start: int, type_label: str, findings: list[Finding]
    ) -> ParsedNode:
        return ParsedNode(
            name=name,
            path=path,
            offset=start,
            length=0,
            type=type_label,
            value=None,
            findings=tuple(findings),
        )


def _type_label(spec: FieldSpec) -> str:
    if isinstance(spec.type, str):
        return spec.type
    if isinstance(spec.type, SwitchSpec):
        return "switch"
    return "bytes"


def _case_equal(left: Any, right: Any) -> bool:
    if isinstance(left, (bytearray, memoryview)):
        left = bytes(left)
    if isinstance(right, (bytearray, memoryview)):
        right = bytes(right)
    if isinstance(left, bytes) and isinstance(right, str):
        right = right.encode("utf-8")
    if isinstance(left, str) and isinstance(right, bytes):
        left = left.encode("utf-8")
    try:
        return bool(left == right)
    except TypeError:
        return False


def _with_findings(node: ParsedNode, extra: list[Finding]) -> ParsedNode:
    return ParsedNode(
        name=node.name,
        path=node.path,
        offset=node.offset,
        length=node.length,
        type=node.type,
        value=node.value,
        children=node.children,
        findings=tuple(extra) + node.findings,
    )


def _export(value: Any) -> Any:
    """Strip engine scopes out of values stored on nodes."""
    if isinstance(value, _Context):
        return None
    if isinstance(value, list):
        return [_export(v) for v in value]
    return value


def _compare(left: Any, right: Any) -> int:
    """Three-way compare; incomparable values count as equal."""
    try:
        return (left > right) - (left < right)
    except TypeError:
        return 0
