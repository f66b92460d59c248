"""Expression evaluator for schema sizes, conditions, repeats and switches.

Expressions are tokenized and parsed once into a small AST (memoized by
source text), then evaluated against a `Scope`. Only a safe subset of the
Kaitai expression language is understood; anything else raises
`ExpressionError`, which callers turn into the `UNKNOWN` sentinel.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol, Union


class ExpressionError(ValueError):
    """Expression could not be parsed or evaluated."""


class _Unknown:
    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __bool__(self) -> bool:
        return False


UNKNOWN: Any = _Unknown()


def as_int(value: Any) -> int:
    """Coerce an evaluated value to int. UNKNOWN and non-numbers give 0."""
    if value is UNKNOWN or value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            return int(value.strip(), 0)
        except ValueError:
            return 0
    return 0


def as_bool(value: Any) -> bool:
    if value is UNKNOWN or value is None:
        return False
    return bool(value)


class Scope(Protocol):
    """Name lookup used during evaluation."""

    def resolve(self, name: str) -> Any:
        """Return the value bound to `name` or raise LookupError."""
        ...

    def resolve_enum(self, enum_name: str, label: str) -> Any:
        """Return the value of `enum_name::label` or raise LookupError."""
        ...


class DictScope:
    """Plain mapping-backed scope, with optional parent and enum tables."""

    def __init__(
        self,
        values: dict[str, Any] | None = None,
        *,
        enums: dict[str, dict[str, int]] | None = None,
        parent: DictScope | None = None,
    ) -> None:
        self.values = dict(values or {})
        self.enums = enums or {}
        self.parent = parent

    def resolve(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        if name in ("_parent", "parent") and self.parent is not None:
            return self.parent
        if name in ("_root", "root"):
            root = self
            while root.parent is not None:
                root = root.parent
            return root
        raise LookupError(name)

    def resolve_enum(self, enum_name: str, label: str) -> Any:
        table = self.enums.get(enum_name)
        if table is None or label not in table:
            if self.parent is not None:
                return self.parent.resolve_enum(enum_name, label)
            raise LookupError(f"{enum_name}::{label}")
        return table[label]


# ----------------------------------------------------------------------
# AST
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Const:
    value: Any


@dataclass(frozen=True)
class Name:
    name: str


@dataclass(frozen=True)
class EnumRef:
    enum: str
    label: str


@dataclass(frozen=True)
class Attr:
    obj: Node
    name: str


@dataclass(frozen=True)
class Index:
    obj: Node
    index: Node


@dataclass(frozen=True)
class ListLit:
    items: tuple[Node, ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary:
    op: str
    left: Node
    right: Node


Node = Union[Const, Name, EnumRef, Attr, Index, ListLit, Unary, Binary]


# ----------------------------------------------------------------------
# Tokenizer
# ----------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<num>0[xX][0-9a-fA-F_]+|0[bB][01_]+|0[oO][0-7_]+|\d[\d_]*\.\d+|\d[\d_]*)
  | (?P<str>"(?:[^"\\]|\\.)*"|'[^']*')
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>::|<<|>>|<=|>=|==|!=|[-+*/%<>()\[\].,&|^!~])
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "not", "true", "false"}


def tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise ExpressionError(f"unexpected character {text[pos]!r} at {pos}")
        pos = m.end()
        kind = m.lastgroup
        if kind == "ws":
            continue
        value = m.group()
        if kind == "name" and value in _KEYWORDS:
            kind = "kw"
        tokens.append((kind, value))  # type: ignore[arg-type]
    return tokens


def _parse_number(text: str) -> int | float:
    text = text.replace("_", "")
    if "." in text:
        return float(text)
    return int(text, 0) if text[:2].lower() in ("0x", "0b", "0o") else int(text)


def _unquote(text: str) -> str:
    body = text[1:-1]
    if text[0] == "'":
        return body
    return body.encode("latin-1", "backslashreplace").decode("unicode_escape")


# ----------------------------------------------------------------------
# Parser (recursive descent, lowest precedence first)
# ----------------------------------------------------------------------

_COMPARISONS = {"==", "!=", "<", "<=", ">", ">="}


class _Parser:
    def __init__(self, tokens: list[tuple[str, str]]) -> None:
        self.tokens = tokens
        self.i = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.i] if self.i < len(self.tokens) else None

    def accept(self, *values: str) -> str | None:
        tok = self.peek()
        if tok is not None and tok[0] in ("op", "kw") and tok[1] in values:
            self.i += 1
            return tok[1]
        return None

    def expect(self, value: str) -> None:
        if self.accept(value) is None:
            found = self.peek()
            raise ExpressionError(f"expected {value!r}, found {found[1] if found else 'end'!r}")

    def parse(self) -> Node:
        node = self.parse_or()
        if self.peek() is not None:
            raise ExpressionError(f"unexpected token {self.peek()[1]!r}")  # type: ignore[index]
        return node

    def parse_or(self) -> Node:
        node = self.parse_and()
        while self.accept("or"):
            node = Binary("or", node, self.parse_and())
        return node

    def parse_and(self) -> Node:
        node = self.parse_not()
        while self.accept("and"):
            node = Binary("and", node, self.parse_not())
        return node

    def parse_not(self) -> Node:
        if self.accept("not"):
            return Unary("not", self.parse_not())
        return self.parse_comparison()

    def parse_comparison(self) -> Node:
        node = self.parse_bitor()
        op = self.accept(*_COMPARISONS)
        if op:
            node = Binary(op, node, self.parse_bitor())
        return node

    def parse_bitor(self) -> Node:
        node = self.parse_bitxor()
        while self.accept("|"):
            node = Binary("|", node, self.parse_bitxor())
        return node

    def parse_bitxor(self) -> Node:
        node = self.parse_bitand()
        while self.accept("^"):
            node = Binary("^", node, self.parse_bitand())
        return node

    def parse_bitand(self) -> Node:
        node = self.parse_shift()
        while self.accept("&"):
            node = Binary("&", node, self.parse_shift())
        return node

    def parse_shift(self) -> Node:
        node = self.parse_additive()
        while True:
            op = self.accept("<<", ">>")
            if not op:
                return node
            node = Binary(op, node, self.parse_additive())

    def parse_additive(self) -> Node:
        node = self.parse_term()
        while True:
            op = self.accept("+", "-")
            if not op:
                return node
            node = Binary(op, node, self.parse_term())

    def parse_term(self) -> Node:
        node = self.parse_unary()
        while True:
            op = self.accept("*", "/", "%")
            if not op:
                return node
            node = Binary(op, node, self.parse_unary())

    def parse_unary(self) -> Node:
        op = self.accept("-", "+", "~", "!")
        if op:
            return Unary("not" if op == "!" else op, self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> Node:
        node = self.parse_atom()
        while True:
            if self.accept("."):
                tok = self.peek()
                if tok is None or tok[0] != "name":
                    raise ExpressionError("expected attribute name after '.'")
                self.i += 1
                node = Attr(node, tok[1])
            elif self.accept("["):
                index = self.parse_or()
                self.expect("]")
                node = Index(node, index)
            else:
                return node

    def parse_atom(self) -> Node:
        tok = self.peek()
        if tok is None:
            raise ExpressionError("unexpected end of expression")
        kind, value = tok
        self.i += 1
        if kind == "num":
            return Const(_parse_number(value))
        if kind == "str":
            return Const(_unquote(value))
        if kind == "kw" and value in ("true", "false"):
            return Const(value == "true")
        if kind == "name":
            if self.accept("::"):
                label = self.peek()
                if label is None or label[0] not in ("name", "kw"):
                    raise ExpressionError(f"expected enum label after '{value}::'")
                self.i += 1
                return EnumRef(value, label[1])
            return Name(value)
        if value == "(":
            node = self.parse_or()
            self.expect(")")
            return node
        if value == "[":
            items: list[Node] = []
            if not self.accept("]"):
                items.append(self.parse_or())
                while self.accept(","):
                    items.append(self.parse_or())
                self.expect("]")
            return ListLit(tuple(items))
        raise ExpressionError(f"unexpected token {value!r}")


@lru_cache(maxsize=4096)
def compile_expression(text: str) -> Node:
    """Parse expression text into an AST. Results are memoized."""
    return _Parser(tokenize(str(text))).parse()


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------


def evaluate(expr: str | int | bool, scope: Scope) -> Any:
    """Evaluate an expression. Raises ExpressionError on any failure."""
    if isinstance(expr, (bool, int)):
        return expr
    node = compile_expression(expr)
    try:
        return _eval(node, scope)
    except ExpressionError:
        raise
    except IndexError as e:
        raise ExpressionError(f"index out of range in {expr!r}: {e}") from None
    except LookupError as e:
        raise ExpressionError(f"unresolved name {e.args[0] if e.args else ''!s}") from None
    except (TypeError, ValueError, ZeroDivisionError, OverflowError, AttributeError) as e:
        raise ExpressionError(f"cannot evaluate {expr!r}: {e}") from None


def evaluate_or_unknown(expr: str | int | bool, scope: Scope) -> Any:
    try:
        return evaluate(expr, scope)
    except ExpressionError:
        return UNKNOWN


def _eval(node: Node, scope: Scope) -> Any:
    if isinstance(node, Const):
        return node.value
    if isinstance(node, Name):
        return _check(scope.resolve(node.name), node.name)
    if isinstance(node, EnumRef):
        return scope.resolve_enum(node.enum, node.label)
    if isinstance(node, Attr):
        return _attribute(_eval(node.obj, scope), node.name)
    if isinstance(node, Index):
        obj = _eval(node.obj, scope)
        idx = _eval(node.index, scope)
        if not isinstance(obj, (list, tuple, bytes, str)):
            raise ExpressionError(f"cannot index {type(obj).__name__}")
        return obj[int(idx)]
    if isinstance(node, ListLit):
        items = [_eval(item, scope) for item in node.items]
        if all(isinstance(v, int) and not isinstance(v, bool) and 0 <= v < 256 for v in items):
            return bytes(items)
        return items
    if isinstance(node, Unary):
        value = _eval(node.operand, scope)
        if node.op == "not":
            return not as_bool(value)
        if node.op == "-":
            return -value
        if node.op == "~":
            return ~value
        return +value
    if isinstance(node, Binary):
        return _binary(node, scope)
    raise ExpressionError(f"unsupported node {node!r}")  # pragma: no cover


def _check(value: Any, name: str) -> Any:
    if value is UNKNOWN:
        raise ExpressionError(f"'{name}' is unknown")
    return value


def _attribute(obj: Any, name: str) -> Any:
    if obj is None or obj is UNKNOWN:
        raise ExpressionError(f"attribute '{name}' of null value")
    resolve = getattr(obj, "resolve", None)
    if resolve is not None and callable(resolve):
        return _check(resolve(name), name)
    if name in ("length", "size") and isinstance(obj, (bytes, bytearray, str, list, tuple)):
        return len(obj)
    if name == "to_i":
        if isinstance(obj, str):
            return int(obj.strip(), 0)
        return int(obj)
    if name == "to_s":
        return str(obj)
    if name in ("first", "last") and isinstance(obj, (list, tuple, bytes)):
        return obj[0] if name == "first" else obj[-1]
    if name == "label" and hasattr(obj, "label"):
        return obj.label
    raise ExpressionError(f"unknown attribute '{name}' on {type(obj).__name__}")


def _binary(node: Binary, scope: Scope) -> Any:
    op = node.op
    if op == "and":
        return as_bool(_eval(node.left, scope)) and as_bool(_eval(node.right, scope))
    if op == "or":
        return as_bool(_eval(node.left, scope)) or as_bool(_eval(node.right, scope))

    left = _eval(node.left, scope)
    right = _eval(node.right, scope)
    if op in _COMPARISONS:
        left, right = _comparable(left), _comparable(right)
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        if isinstance(left, int) and isinstance(right, int):
            # Truncating integer division
            q = abs(left) // abs(right)
            return q if (left >= 0) == (right >= 0) else -q
        return left / right
    if op == "%":
        return left % right
    if op == "&":
        return left & right
    if op == "|":
        return left | right
    if op == "^":
        return left ^ right
    if op == "<<":
        return left << right
    if op == ">>":
        return left >> right
    raise ExpressionError(f"unsupported operator {op!r}")  # pragma: no cover


def _comparable(value: Any) -> Any:
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value
