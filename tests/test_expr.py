from __future__ import annotations

import pytest

from bytelens.core.expr import (
    UNKNOWN,
    DictScope,
    ExpressionError,
    as_bool,
    as_int,
    compile_expression,
    evaluate,
    evaluate_or_unknown,
    tokenize,
)
from bytelens.core.schema import EnumValue


def ev(text: str, **values):
    return evaluate(text, DictScope(values))


def test_arithmetic_precedence() -> None:
    assert ev("1 + 2 * 3") == 7
    assert ev("(1 + 2) * 3") == 9
    assert ev("10 - 4 - 3") == 3
    assert ev("-2 * 3") == -6


def test_integer_division_truncates_toward_zero() -> None:
    assert ev("7 / 2") == 3
    assert ev("-7 / 2") == -3
    assert ev("7.0 / 2") == 3.5


def test_bitwise_and_shifts() -> None:
    assert ev("0xF0 & 0x3C") == 0x30
    assert ev("1 << 4 | 1") == 17
    assert ev("0x80 >> 7") == 1
    assert ev("~0 & 0xFF") == 0xFF
    assert ev("5 ^ 1") == 4


def test_number_literals() -> None:
    assert ev("0x10") == 16
    assert ev("0b101") == 5
    assert ev("0o17") == 15
    assert ev("1_000") == 1000


def test_comparisons_and_logic() -> None:
    assert ev("1 < 2 and 2 <= 2") is True
    assert ev("1 > 2 or not false") is True
    assert ev("!true") is False
    assert ev("x == 3", x=3) is True
    assert ev("x != 3", x=3) is False


def test_strings_and_bytes() -> None:
    assert ev('"IEND"') == "IEND"
    assert ev("'raw\\n'") == "raw\\n"
    assert ev('"a\\tb"') == "a\tb"
    assert ev("[0x50, 0x4b]") == b"PK"
    assert ev("magic == [0x50, 0x4b]", magic=b"PK") is True


def test_names_and_attributes() -> None:
    assert ev("len - 4", len=10) == 6
    assert ev("data.length", data=b"abcd") == 4
    assert ev("items.size", items=[1, 2, 3]) == 3
    assert ev("items[1]", items=[1, 2, 3]) == 2
    assert ev("items.first + items.last", items=[1, 2, 3]) == 4
    assert ev('"0x1f".to_i') == 31
    assert ev("n.to_s", n=12) == "12"


def test_enum_value_label() -> None:
    code = EnumValue(6, "truecolor_alpha", "color_type")
    assert ev("c.label", c=code) == "truecolor_alpha"
    assert ev("c == 6", c=code) is True


def test_parent_and_root() -> None:
    root = DictScope({"version": 2})
    child = DictScope({"n": 1}, parent=root)
    leaf = DictScope({}, parent=child)
    assert evaluate("_parent.n", leaf) == 1
    assert evaluate("_root.version", leaf) == 2
    assert evaluate("_parent._parent.version", leaf) == 2


def test_enum_refs_resolve_through_parents() -> None:
    root = DictScope(enums={"kind": {"ok": 0, "bad": 1}})
    child = DictScope(parent=root)
    assert evaluate("kind::bad", child) == 1
    with pytest.raises(ExpressionError):
        evaluate("kind::nope", child)


def test_unknown_name_raises_expression_error() -> None:
    with pytest.raises(ExpressionError):
        ev("missing + 1")


def test_evaluate_or_unknown() -> None:
    assert evaluate_or_unknown("missing", DictScope()) is UNKNOWN
    assert evaluate_or_unknown("1 / 0", DictScope()) is UNKNOWN
    assert evaluate_or_unknown("items[5]", DictScope({"items": [1]})) is UNKNOWN
    assert evaluate_or_unknown("2 + 2", DictScope()) == 4


def test_unknown_value_is_not_usable() -> None:
    scope = DictScope({"x": UNKNOWN})
    with pytest.raises(ExpressionError):
        evaluate("x + 1", scope)


def test_literal_ints_and_bools_pass_through() -> None:
    assert evaluate(5, DictScope()) == 5
    assert evaluate(True, DictScope()) is True


@pytest.mark.parametrize("text", ["1 +", "(1", "a..b", "1 $ 2", "[1, 2", "x::"])
def test_malformed_expressions(text: str) -> None:
    with pytest.raises(ExpressionError):
        compile_expression(text)


def test_compile_is_memoized() -> None:
    assert compile_expression("a + b") is compile_expression("a + b")


def test_tokenize_keywords() -> None:
    kinds = [k for k, _ in tokenize("a and not b")]
    assert kinds == ["name", "kw", "kw", "name"]


def test_coercions() -> None:
    assert as_int(UNKNOWN) == 0
    assert as_int(None) == 0
    assert as_int(True) == 1
    assert as_int(3.9) == 3
    assert as_int("0x10") == 16
    assert as_int("junk") == 0
    assert as_int(float("nan")) == 0
    assert as_int(float("-inf")) == 0
    assert as_bool(UNKNOWN) is False
    assert as_bool(1) is True
    assert bool(UNKNOWN) is False
