"""Endianness support: names, resolution, and primitive type tables."""

from __future__ import annotations

import re
from typing import Literal

# Type alias for endianness, spelled the way schema documents spell it
Endian = Literal["le", "be"]

# Source of endianness for debugging/UI
EndianSource = Literal["field", "type", "parent", "root", "default"]

_ALIASES = {"le": "le", "little": "le", "be": "be", "big": "be"}

# u1..u8 / s1..s8 / f4 / f8 with an optional le/be suffix
_NUMERIC_RE = re.compile(r"^(?P<kind>[usf])(?P<width>[1248])(?P<endian>le|be)?$")
_BITS_RE = re.compile(r"^b(?P<bits>[1-9][0-9]*)(?P<endian>le|be)?$")


def normalize_endian(value: str | None) -> Endian | None:
    """Normalize an endian value from a schema.

    Args:
        value: String value from YAML (or None)

    Returns:
        "le" or "be", or None if input was None

    Raises:
        ValueError: If value is not one of le/be/little/big
    """
    if value is None:
        return None

    key = str(value).lower()
    if key not in _ALIASES:
        raise ValueError(f"Invalid endian '{value}'. Expected 'le' or 'be'.")

    return _ALIASES[key]  # type: ignore[return-value]


def resolve_endian(
    field_endian: Endian | None,
    type_endian: Endian | None,
    parent_endian: Endian | None,
    root_endian: Endian | None,
) -> tuple[Endian, EndianSource]:
    """Resolve effective endianness using hierarchical rules.

    Resolution order (highest priority first):
    1. field_endian (le/be suffix on the primitive, e.g. u4be)
    2. type_endian (meta.endian of the enclosing user type)
    3. parent_endian (inherited from the enclosing type's parent)
    4. root_endian (schema meta)
    5. default fallback: "le"
    """
    if field_endian is not None:
        return field_endian, "field"
    if type_endian is not None:
        return type_endian, "type"
    if parent_endian is not None:
        return parent_endian, "parent"
    if root_endian is not None:
        return root_endian, "root"
    return "le", "default"


def parse_numeric_type(type_name: str) -> tuple[str, int, Endian | None] | None:
    """Split a numeric primitive name into (kind, width, endian).

    `kind` is "u", "s" or "f". Returns None for anything that is not a
    numeric primitive. `f1`/`f2` are not valid float widths.
    """
    m = _NUMERIC_RE.match(type_name)
    if m is None:
        return None
    kind = m.group("kind")
    width = int(m.group("width"))
    if kind == "f" and width not in (4, 8):
        return None
    return kind, width, m.group("endian")  # type: ignore[return-value]


def parse_bits_type(type_name: str) -> int | None:
    """Return the bit count for `bN` types (b1..b64), else None."""
    m = _BITS_RE.match(type_name)
    if m is None:
        return None
    bits = int(m.group("bits"))
    if bits > 64:
        return None
    return bits


def is_primitive(type_name: str) -> bool:
    return (
        type_name in ("str", "strz", "bytes")
        or parse_numeric_type(type_name) is not None
        or parse_bits_type(type_name) is not None
    )


def needs_endian(type_name: str) -> bool:
    """True for multi-byte numeric primitives written without a suffix."""
    parsed = parse_numeric_type(type_name)
    return parsed is not None and parsed[1] > 1 and parsed[2] is None
