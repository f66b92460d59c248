"""KSY schema model and compiler.

`compile_schema` turns KSY YAML text into an immutable `SchemaDocument`.
Nested `types` blocks are flattened into one arena keyed by qualified name
(`outer.inner`); every type and enum reference in the document is resolved
against that arena at compile time, so the engine only does dictionary
lookups.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

import yaml

from bytelens.core.endian import Endian, is_primitive, needs_endian, normalize_endian
from bytelens.core.expr import ExpressionError, compile_expression

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[a-z][a-z0-9_]*$")
_TYPE_REF_RE = re.compile(r"^[a-z][a-z0-9_]*(::[a-z][a-z0-9_]*)*$")
_PROCESS_RE = re.compile(r"^(?P<name>xor|rol|ror|zlib)(?:\((?P<arg>[^)]*)\))?$")

REPEAT_MODES = ("expr", "eos", "until")
LARGE_REPEAT_WARNING = 100_000


class CompileError(Exception):
    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        super().__init__("; ".join(errors))
        self.errors = errors
        self.warnings = warnings or []


# ----------------------------------------------------------------------
# Model
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Signature:
    """Fixed byte pattern at a fixed offset; `mask` bytes are ANDed first."""

    pattern: bytes
    offset: int = 0
    mask: bytes | None = None

    def matches(self, data: bytes | bytearray | memoryview) -> bool:
        end = self.offset + len(self.pattern)
        if len(data) < end:
            return False
        window = bytes(data[self.offset : end])
        if self.mask is None:
            return window == self.pattern
        return all(
            (b & m) == (p & m) for b, p, m in zip(window, self.pattern, self.mask)
        )


@dataclass(frozen=True)
class SwitchSpec:
    """`type: {switch-on: expr, cases: {...}}`.

    Case keys are kept as expression text (ints are rendered in decimal) and
    evaluated when the switch is taken; `_` becomes `default`.
    """

    switch_on: str
    cases: tuple[tuple[str, str], ...]
    default: str | None = None


@dataclass(frozen=True)
class RepeatSpec:
    mode: str  # expr | eos | until
    expr: str | None = None


@dataclass(frozen=True)
class ValidSpec:
    eq: Any = None
    min: Any = None
    max: Any = None
    any_of: tuple[Any, ...] | None = None
    expr: str | None = None


@dataclass(frozen=True)
class FieldSpec:
    id: str
    type: str | SwitchSpec | None = None
    contents: bytes | None = None
    size: str | None = None
    size_eos: bool = False
    terminator: int | None = None
    include: bool = False
    consume: bool = True
    eos_error: bool = True
    repeat: RepeatSpec | None = None
    condition: str | None = None
    encoding: str | None = None
    enum: str | None = None
    valid: ValidSpec | None = None
    process: str | None = None
    pos: str | None = None
    value: str | None = None
    doc: str | None = None


@dataclass(frozen=True)
class EndianSwitch:
    switch_on: str
    cases: tuple[tuple[str, Endian], ...]
    default: Endian | None = None


@dataclass(frozen=True)
class TypeSpec:
    name: str
    seq: tuple[FieldSpec, ...] = ()
    instances: Mapping[str, FieldSpec] = field(default_factory=lambda: MappingProxyType({}))
    endian: Endian | None = None
    endian_switch: EndianSwitch | None = None
    encoding: str | None = None


class EnumValue(int):
    """Integer code of an enum field, carrying its label."""

    def __new__(cls, value: int, label: str, enum: str = "") -> EnumValue:
        obj = super().__new__(cls, value)
        obj.label = label
        obj.enum = enum
        return obj

    def __repr__(self) -> str:
        return f"{self.enum}::{self.label}({int(self)})"

    def __str__(self) -> str:
        return f"{self.label} ({int(self)})"

    def __reduce__(self):
        return (EnumValue, (int(self), self.label, self.enum))


@dataclass(frozen=True)
class EnumSpec:
    name: str
    values: Mapping[int, str]
    by_label: Mapping[str, int]

    def lookup(self, code: int) -> EnumValue | int:
        """Map a raw code to an `EnumValue`; unknown codes pass through as int."""
        label = self.values.get(code)
        if label is None:
            return code
        return EnumValue(code, label, self.name)

    def value_of(self, label: str) -> EnumValue:
        return EnumValue(self.by_label[label], label, self.name)


@dataclass(frozen=True)
class Meta:
    id: str
    title: str | None = None
    endian: Endian | None = None
    endian_switch: EndianSwitch | None = None
    file_extensions: tuple[str, ...] = ()
    signature: Signature | None = None
    encoding: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class SchemaDocument:
    meta: Meta
    root: TypeSpec
    types: Mapping[str, TypeSpec]
    enums: Mapping[str, EnumSpec]
    source_hash: str
    warnings: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.meta.id

    @property
    def seq(self) -> tuple[FieldSpec, ...]:
        return self.root.seq

    @property
    def instances(self) -> Mapping[str, FieldSpec]:
        return self.root.instances

    @property
    def signature(self) -> Signature | None:
        return self.meta.signature

    def find_enum(self, name: str) -> EnumSpec | None:
        """Find an enum by qualified name, or by its last path component."""
        spec = self.enums.get(name)
        if spec is not None:
            return spec
        short = name.replace("::", ".").rsplit(".", 1)[-1]
        for qualified, spec in self.enums.items():
            if qualified.rsplit(".", 1)[-1] == short:
                return spec
        return None


@dataclass(frozen=True)
class LintResult:
    success: bool
    schema: SchemaDocument | None
    errors: list[str]
    warnings: list[str]


# ----------------------------------------------------------------------
# Compiler
# ----------------------------------------------------------------------


def source_fingerprint(text: str) -> str:
    return hashlib.blake2b(text.encode("utf-8"), digest_size=16).hexdigest()


def lint_schema(text: str) -> LintResult:
    """Compile without raising; report errors and warnings."""
    try:
        schema = compile_schema(text)
    except CompileError as e:
        return LintResult(success=False, schema=None, errors=e.errors, warnings=e.warnings)
    return LintResult(success=True, schema=schema, errors=[], warnings=list(schema.warnings))


def compile_schema(text: str) -> SchemaDocument:
    """Compile KSY YAML text.

    Raises:
        CompileError: YAML is malformed or the document breaks a structural rule.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise CompileError([f"YAML parse error: {e}"]) from None

    if not isinstance(data, dict):
        raise CompileError(["Invalid KSY structure: must be a mapping"])

    compiler = _Compiler(data)
    schema = compiler.run(source_fingerprint(text))
    if compiler.errors:
        for msg in compiler.warnings:
            logger.debug("schema warning: %s", msg)
        raise CompileError(compiler.errors, compiler.warnings)
    assert schema is not None
    return schema


def peek_meta(text: str) -> Meta:
    """Read only the `meta` block (plus an inferred signature).

    Used to index a schema whose full compilation is deferred.

    Raises:
        CompileError: YAML is malformed or the meta block is invalid.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise CompileError([f"YAML parse error: {e}"]) from None
    if not isinstance(data, dict) or not isinstance(data.get("meta"), dict):
        raise CompileError(['Missing required "meta" section'])
    compiler = _Compiler(data)
    meta = compiler._compile_meta(data["meta"])
    if compiler.errors:
        raise CompileError(compiler.errors)
    if meta.signature is None and isinstance(data.get("seq"), list):
        pattern = bytearray()
        for f in data["seq"]:
            if not isinstance(f, dict) or "contents" not in f or "if" in f or "repeat" in f:
                break
            contents = _as_bytes(f["contents"])
            if contents is None:
                break
            pattern += contents
        if pattern:
            meta = replace(meta, signature=Signature(pattern=bytes(pattern)))
    return meta


def _as_bytes(raw: Any) -> bytes | None:
    """Convert a `contents`-style value (list of ints/strings, or a string)."""
    if isinstance(raw, str):
        return raw.encode("utf-8")
    if isinstance(raw, int) and not isinstance(raw, bool) and 0 <= raw < 256:
        return bytes([raw])
    if isinstance(raw, list):
        out = bytearray()
        for item in raw:
            if isinstance(item, bool):
                return None
            if isinstance(item, int) and 0 <= item < 256:
                out.append(item)
            elif isinstance(item, str):
                out += item.encode("utf-8")
            else:
                return None
        return bytes(out)
    return None


def _expr_text(raw: Any) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


def _case_key(raw: Any) -> str:
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


class _Compiler:
    def __init__(self, data: dict[str, Any]) -> None:
        self.data = data
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.types: dict[str, TypeSpec] = {}
        self.enums: dict[str, EnumSpec] = {}
        # qualified type name -> names of types declared directly inside it
        self._children: dict[str, set[str]] = {"": set()}
        self._enum_children: dict[str, set[str]] = {"": set()}
        self._raw_types: dict[str, dict[str, Any]] = {}
        self._numeric_fields = 0

    # -- entry -----------------------------------------------------------

    def run(self, source_hash: str) -> SchemaDocument | None:
        data = self.data
        meta_raw = data.get("meta")
        if meta_raw is None:
            self.errors.append('Missing required "meta" section')
            meta_raw = {}
        elif not isinstance(meta_raw, dict):
            self.errors.append("meta must be a mapping")
            meta_raw = {}

        # Pass 1: declare every type and enum so references can resolve.
        self._declare_enums("", data.get("enums"))
        self._declare_types("", data.get("types"))

        meta = self._compile_meta(meta_raw)

        # Pass 2: compile bodies.
        compiled: dict[str, TypeSpec] = {}
        for qualified, raw in self._raw_types.items():
            spec = self._compile_type(qualified, raw, ctx=f"types.{qualified}")
            if spec is not None:
                compiled[qualified] = spec
        self.types = compiled

        root = self._compile_type(
            "",
            {"seq": data.get("seq"), "instances": data.get("instances")},
            ctx="",
            name=meta.id or "root",
            endian=meta.endian,
            endian_switch=meta.endian_switch,
            encoding=meta.encoding,
        )

        if meta.signature is None and root is not None:
            inferred = infer_signature(root.seq)
            if inferred is not None:
                meta = replace(meta, signature=inferred)

        self._collect_warnings(meta)
        if self.errors or root is None:
            return None
        return SchemaDocument(
            meta=meta,
            root=root,
            types=MappingProxyType(compiled),
            enums=MappingProxyType(dict(self.enums)),
            source_hash=source_hash,
            warnings=tuple(self.warnings),
        )

    # -- meta ------------------------------------------------------------

    def _compile_meta(self, raw: dict[str, Any]) -> Meta:
        meta_id = raw.get("id")
        if not meta_id:
            self.errors.append("Missing required meta field: id")
            meta_id = ""
        elif not isinstance(meta_id, str) or not _ID_RE.match(meta_id):
            self.errors.append(
                "Invalid meta.id: must start with lowercase letter and contain only "
                "lowercase letters, numbers, and underscores"
            )
            meta_id = str(meta_id)

        endian, endian_switch = self._compile_endian(raw.get("endian"), "meta.endian")

        exts_raw = raw.get("file-extension")
        exts: tuple[str, ...] = ()
        if isinstance(exts_raw, str):
            exts = (exts_raw,)
        elif isinstance(exts_raw, list):
            if all(isinstance(e, str) for e in exts_raw):
                exts = tuple(exts_raw)
            else:
                self.errors.append("Invalid file-extension: must be string or list of strings")
        elif exts_raw is not None:
            self.errors.append("Invalid file-extension: must be string or list of strings")
        exts = tuple(e.lower().lstrip(".") for e in exts)

        imports = raw.get("imports")
        if imports is not None:
            if not isinstance(imports, list) or not all(isinstance(i, str) for i in imports):
                self.errors.append("Invalid meta.imports: must be a list of strings")
            elif imports:
                self.warnings.append(
                    f"meta.imports are not resolved: {', '.join(imports)}"
                )

        tags_raw = raw.get("tags") or []
        tags = tuple(str(t) for t in tags_raw) if isinstance(tags_raw, list) else (str(tags_raw),)

        return Meta(
            id=meta_id,
            title=raw.get("title"),
            endian=endian,
            endian_switch=endian_switch,
            file_extensions=exts,
            signature=self._compile_signature(raw.get("signature")),
            encoding=raw.get("encoding"),
            tags=tags,
        )

    def _compile_signature(self, raw: Any) -> Signature | None:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            pattern = _as_bytes(raw)
            if not pattern:
                self.errors.append("meta.signature must be a mapping or byte list")
                return None
            return Signature(pattern=pattern)
        pattern = raw.get("bytes")
        if isinstance(pattern, str) and re.fullmatch(r"([0-9a-fA-F]{2}\s*)+", pattern):
            pattern_bytes: bytes | None = bytes.fromhex(pattern)
        else:
            pattern_bytes = _as_bytes(pattern)
        if not pattern_bytes:
            self.errors.append("meta.signature.bytes must be a non-empty byte list")
            return None
        offset = raw.get("offset", 0)
        if not isinstance(offset, int) or offset < 0:
            self.errors.append("meta.signature.offset must be a non-negative integer")
            return None
        mask = raw.get("mask")
        mask_bytes = _as_bytes(mask) if mask is not None else None
        if mask is not None and (mask_bytes is None or len(mask_bytes) != len(pattern_bytes)):
            self.errors.append("meta.signature.mask must match the length of bytes")
            return None
        return Signature(pattern=pattern_bytes, offset=offset, mask=mask_bytes)

    def _compile_endian(
        self, raw: Any, ctx: str
    ) -> tuple[Endian | None, EndianSwitch | None]:
        if raw is None:
            return None, None
        if isinstance(raw, dict):
            switch_on = raw.get("switch-on")
            cases = raw.get("cases")
            if switch_on is None or not isinstance(cases, dict):
                self.errors.append(f"{ctx}: switch requires 'switch-on' and 'cases'")
                return None, None
            out: list[tuple[str, Endian]] = []
            default: Endian | None = None
            for key, value in cases.items():
                try:
                    e = normalize_endian(value)
                except ValueError:
                    self.errors.append(f"{ctx}.cases: invalid endian '{value}'")
                    continue
                if key == "_":
                    default = e
                else:
                    out.append((_case_key(key), e))  # type: ignore[arg-type]
            self._check_expr(_expr_text(switch_on), f"{ctx}.switch-on")
            return None, EndianSwitch(_expr_text(switch_on) or "", tuple(out), default)
        if raw not in ("le", "be"):
            self.errors.append(f"Invalid {ctx}: must be one of le, be")
            return None, None
        return raw, None

    # -- declarations ------------------------------------------------------

    def _declare_types(self, scope: str, raw: Any) -> None:
        if raw is None:
            return
        if not isinstance(raw, dict):
            self.errors.append(f"{'types' if not scope else scope + '.types'} must be a mapping")
            return
        for name, body in raw.items():
            if not isinstance(name, str) or not _ID_RE.match(name):
                self.errors.append(f'Invalid type name "{name}": must follow naming rules')
                continue
            qualified = f"{scope}.{name}" if scope else name
            if body is None:
                body = {}
            if not isinstance(body, dict):
                self.errors.append(f"types.{qualified} must be a mapping")
                continue
            self._children.setdefault(scope, set()).add(name)
            self._children.setdefault(qualified, set())
            self._enum_children.setdefault(qualified, set())
            self._raw_types[qualified] = body
            self._declare_enums(qualified, body.get("enums"))
            self._declare_types(qualified, body.get("types"))

    def _declare_enums(self, scope: str, raw: Any) -> None:
        if raw is None:
            return
        if not isinstance(raw, dict):
            self.errors.append("Invalid enums: must be a mapping")
            return
        for name, body in raw.items():
            if not isinstance(name, str) or not _ID_RE.match(name):
                self.errors.append(f'Invalid enum name "{name}": must follow naming rules')
                continue
            if not isinstance(body, dict):
                self.errors.append(f'Invalid enum "{name}": must be a mapping')
                continue
            values: dict[int, str] = {}
            for key, label in body.items():
                if isinstance(label, dict):
                    label = label.get("id")
                if isinstance(key, bool) or not isinstance(key, int):
                    self.errors.append(f'Invalid enum key in "{name}": keys must be integers')
                    continue
                if not isinstance(label, str):
                    self.errors.append(f'Invalid enum label for {key} in "{name}"')
                    continue
                values[key] = label
            qualified = f"{scope}.{name}" if scope else name
            self._enum_children.setdefault(scope, set()).add(name)
            self.enums[qualified] = EnumSpec(
                name=qualified,
                values=MappingProxyType(values),
                by_label=MappingProxyType({v: k for k, v in values.items()}),
            )

    def _resolve(self, children: dict[str, set[str]], ref: str, scope: str) -> str | None:
        """Resolve `a::b` from `scope` outwards, the way nested names are looked up."""
        parts = ref.split("::")
        cur = scope
        while True:
            candidate = cur
            ok = True
            for part in parts:
                if part in children.get(candidate, ()):
                    candidate = f"{candidate}.{part}" if candidate else part
                else:
                    ok = False
                    break
            if ok:
                return candidate
            if not cur:
                return None
            cur = cur.rsplit(".", 1)[0] if "." in cur else ""

    def resolve_type(self, ref: str, scope: str) -> str | None:
        return self._resolve(self._children, ref, scope)

    def resolve_enum(self, ref: str, scope: str) -> str | None:
        return self._resolve(self._enum_children, ref, scope)

    # -- bodies ------------------------------------------------------------

    def _compile_type(
        self,
        qualified: str,
        raw: dict[str, Any],
        *,
        ctx: str,
        name: str | None = None,
        endian: Endian | None = None,
        endian_switch: EndianSwitch | None = None,
        encoding: str | None = None,
    ) -> TypeSpec | None:
        if qualified:
            meta = raw.get("meta") or {}
            if not isinstance(meta, dict):
                self.errors.append(f"{ctx}.meta must be a mapping")
                meta = {}
            endian, endian_switch = self._compile_endian(meta.get("endian"), f"{ctx}.meta.endian")
            encoding = meta.get("encoding")

        prefix = f"{ctx}." if ctx else ""
        seq_raw = raw.get("seq")
        seq: list[FieldSpec] = []
        if seq_raw is not None:
            if not isinstance(seq_raw, list):
                self.errors.append(f"Invalid {prefix}seq: must be a list")
            else:
                seen: set[str] = set()
                for i, f in enumerate(seq_raw):
                    spec = self._compile_field(f, f"{prefix}seq[{i}]", qualified, index=i)
                    if spec is None:
                        continue
                    if spec.id in seen:
                        self.errors.append(f"{prefix}seq[{i}]: duplicate id '{spec.id}'")
                        continue
                    seen.add(spec.id)
                    seq.append(spec)

        inst_raw = raw.get("instances")
        instances: dict[str, FieldSpec] = {}
        if inst_raw is not None:
            if not isinstance(inst_raw, dict):
                self.errors.append(f"Invalid {prefix}instances: must be a mapping")
            else:
                for inst_name, body in inst_raw.items():
                    if not isinstance(inst_name, str) or not _ID_RE.match(inst_name):
                        self.errors.append(
                            f'Invalid instance name "{inst_name}": must follow naming rules'
                        )
                        continue
                    if not isinstance(body, dict):
                        self.errors.append(f"{prefix}instances.{inst_name} must be a mapping")
                        continue
                    spec = self._compile_field(
                        {**body, "id": inst_name},
                        f"{prefix}instances.{inst_name}",
                        qualified,
                        instance=True,
                    )
                    if spec is not None:
                        instances[inst_name] = spec

        return TypeSpec(
            name=name or qualified,
            seq=tuple(seq),
            instances=MappingProxyType(instances),
            endian=endian,
            endian_switch=endian_switch,
            encoding=encoding,
        )

    def _compile_field(
        self,
        f: Any,
        ctx: str,
        scope: str,
        *,
        index: int = 0,
        instance: bool = False,
    ) -> FieldSpec | None:
        if not isinstance(f, dict):
            self.errors.append(f"{ctx} must be a mapping")
            return None

        contents = None
        if "contents" in f:
            contents = _as_bytes(f["contents"])
            if contents is None:
                self.errors.append(f"{ctx}.contents: must be a byte list or string")
                return None

        field_id = f.get("id")
        if field_id is None:
            if contents is None:
                self.errors.append(f'{ctx}: missing required field "id"')
                return None
            field_id = f"_unnamed{index}"
        elif not isinstance(field_id, str) or not _ID_RE.match(field_id):
            self.errors.append(f"{ctx}.id: invalid format")
            return None

        ftype = self._compile_type_ref(f.get("type"), f"{ctx}.type", scope)

        size = f.get("size")
        if size is not None and (isinstance(size, bool) or not isinstance(size, (int, str))):
            self.errors.append(f"{ctx}.size: must be a number or expression")
            return None
        size_text = _expr_text(size)
        self._check_expr(size_text, f"{ctx}.size")

        repeat = None
        if "repeat" in f:
            mode = f.get("repeat")
            if mode not in REPEAT_MODES:
                self.errors.append(f"{ctx}.repeat: must be one of {', '.join(REPEAT_MODES)}")
                return None
            rexpr = None
            if mode == "expr":
                if f.get("repeat-expr") is None:
                    self.errors.append(f'{ctx}: repeat "expr" requires "repeat-expr"')
                    return None
                rexpr = _expr_text(f["repeat-expr"])
                count = f["repeat-expr"]
                if isinstance(count, int) and count > LARGE_REPEAT_WARNING:
                    self.warnings.append(
                        f'Very large repeat count ({count}) in field "{field_id}" may impact performance'
                    )
            elif mode == "until":
                if f.get("repeat-until") is None:
                    self.errors.append(f'{ctx}: repeat "until" requires "repeat-until"')
                    return None
                rexpr = _expr_text(f["repeat-until"])
            self._check_expr(rexpr, f"{ctx}.repeat")
            repeat = RepeatSpec(mode=mode, expr=rexpr)

        terminator = f.get("terminator")
        if terminator is not None and (
            isinstance(terminator, bool) or not isinstance(terminator, int) or not 0 <= terminator < 256
        ):
            self.errors.append(f"{ctx}.terminator: must be a byte value")
            return None
        if ftype == "strz" and terminator is None:
            terminator = 0

        enum_ref = f.get("enum")
        if enum_ref is not None:
            resolved = self.resolve_enum(str(enum_ref), scope)
            if resolved is None:
                self.warnings.append(f"{ctx}.enum: unknown enum '{enum_ref}'")
                enum_ref = str(enum_ref)
            else:
                enum_ref = resolved

        process = f.get("process")
        if process is not None:
            process = str(process).replace(" ", "")
            if not _PROCESS_RE.match(process):
                self.errors.append(f"{ctx}.process: unsupported '{process}'")
                return None

        if instance:
            if f.get("value") is None and f.get("pos") is None and ftype is None and size is None:
                if contents is None:
                    self.warnings.append(f"{ctx}: instance has neither value nor pos")
        else:
            for key in ("value", "pos"):
                if key in f:
                    self.errors.append(f"{ctx}.{key}: only allowed on instances")
                    return None
        if "io" in f:
            self.warnings.append(f"{ctx}.io is not supported; the current stream is used")

        condition = _expr_text(f.get("if"))
        self._check_expr(condition, f"{ctx}.if")
        value = _expr_text(f.get("value"))
        self._check_expr(value, f"{ctx}.value")
        pos = _expr_text(f.get("pos"))
        self._check_expr(pos, f"{ctx}.pos")

        if isinstance(ftype, str) and needs_endian(ftype):
            self._numeric_fields += 1

        encoding = f.get("encoding")
        return FieldSpec(
            id=field_id,
            type=ftype,
            contents=contents,
            size=size_text,
            size_eos=bool(f.get("size-eos", False)),
            terminator=terminator,
            include=bool(f.get("include", False)),
            consume=bool(f.get("consume", True)),
            eos_error=bool(f.get("eos-error", True)),
            repeat=repeat,
            condition=condition,
            encoding=str(encoding) if encoding is not None else None,
            enum=enum_ref,
            valid=self._compile_valid(f.get("valid"), ctx),
            process=process,
            pos=pos,
            value=value,
            doc=f.get("doc"),
        )

    def _compile_type_ref(self, raw: Any, ctx: str, scope: str) -> str | SwitchSpec | None:
        if raw is None:
            return None
        if isinstance(raw, dict):
            switch_on = raw.get("switch-on", raw.get("switch_on"))
            cases = raw.get("cases")
            if switch_on is None:
                self.errors.append(f'{ctx}: switch type requires "switch-on"')
                return None
            if not isinstance(cases, dict):
                self.errors.append(f'{ctx}: switch type requires "cases" mapping')
                return None
            self._check_expr(_expr_text(switch_on), f"{ctx}.switch-on")
            out: list[tuple[str, str]] = []
            default = None
            for key, target in cases.items():
                target_name = self._type_name(str(target), f"{ctx}.cases", scope)
                if key == "_":
                    default = target_name
                    continue
                key_text = _case_key(key)
                self._check_expr(key_text, f"{ctx}.cases")
                out.append((key_text, target_name))
            return SwitchSpec(_expr_text(switch_on) or "", tuple(out), default)
        if not isinstance(raw, str):
            self.errors.append(f"{ctx}: must be a type name or switch")
            return None
        return self._type_name(raw, ctx, scope)

    def _type_name(self, name: str, ctx: str, scope: str) -> str:
        if is_primitive(name):
            return name
        base = name.split("(", 1)[0].strip()
        if not _TYPE_REF_RE.match(base):
            self.errors.append(f'{ctx}: invalid type "{name}"')
            return name
        resolved = self.resolve_type(base, scope)
        if resolved is None:
            self.warnings.append(f"{ctx}: unknown type '{name}'")
            return base
        return resolved

    def _compile_valid(self, raw: Any, ctx: str) -> ValidSpec | None:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            return ValidSpec(eq=raw)
        any_of = raw.get("any-of")
        if any_of is not None and not isinstance(any_of, list):
            self.errors.append(f"{ctx}.valid.any-of must be a list")
            any_of = None
        expr = _expr_text(raw.get("expr"))
        self._check_expr(expr, f"{ctx}.valid.expr")
        return ValidSpec(
            eq=raw.get("eq"),
            min=raw.get("min"),
            max=raw.get("max"),
            any_of=tuple(any_of) if any_of is not None else None,
            expr=expr,
        )

    def _check_expr(self, text: str | None, ctx: str) -> None:
        if text is None:
            return
        try:
            compile_expression(text)
        except ExpressionError as e:
            self.warnings.append(f"{ctx}: malformed expression '{text}': {e}")

    # -- warnings ------------------------------------------------------------

    def _collect_warnings(self, meta: Meta) -> None:
        if meta.endian is None and meta.endian_switch is None and self._numeric_fields:
            self.warnings.append("No endian specified - defaulting to little-endian")
        data = self.data
        if not data.get("seq") and not data.get("instances") and not data.get("types"):
            self.warnings.append("No structure defined - file will be treated as raw bytes")


def infer_signature(seq: tuple[FieldSpec, ...]) -> Signature | None:
    """Build a signature from leading unconditional `contents` fields."""
    pattern = bytearray()
    for spec in seq:
        if spec.contents is None or spec.condition is not None or spec.repeat is not None:
            break
        pattern += spec.contents
    if not pattern:
        return None
    return Signature(pattern=bytes(pattern))
