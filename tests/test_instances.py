from __future__ import annotations

import textwrap

from bytelens.core.engine import ParsedNode, collect_findings, parse_schema
from bytelens.core.findings import OUT_OF_BOUNDS, UNRESOLVED_EXPRESSION
from bytelens.core.schema import EnumValue, compile_schema


def run(text: str, data: bytes) -> ParsedNode:
    return parse_schema(compile_schema(textwrap.dedent(text).lstrip()), data)


def test_value_instance() -> None:
    root = run(
        """
        meta:
          id: i
        seq:
          - id: a
            type: u1
          - id: b
            type: u1
        instances:
          total:
            value: a + b
          is_big:
            value: a + b > 10
        """,
        b"\x03\x04",
    )
    total = root.child("total")
    assert total.value == 7
    assert total.type == "value"
    assert total.length == 0
    assert root.child("is_big").value is False
    assert [c.name for c in root.children] == ["a", "b", "total", "is_big"]


def test_value_instance_with_enum() -> None:
    root = run(
        """
        meta:
          id: i
        instances:
          kind:
            value: 2
            enum: kind
        enums:
          kind:
            2: two
        """,
        b"",
    )
    kind = root.child("kind").value
    assert isinstance(kind, EnumValue)
    assert kind.label == "two"


def test_pos_instance_restores_cursor() -> None:
    root = run(
        """
        meta:
          id: i
          endian: be
        seq:
          - id: first
            type: u1
          - id: second
            type: u1
        instances:
          trailer:
            pos: 4
            type: u2
        """,
        b"\x01\x02\x00\x00\xbe\xef",
    )
    trailer = root.child("trailer")
    assert trailer.value == 0xBEEF
    assert (trailer.offset, trailer.length) == (4, 2)
    assert root.child("second").value == 2


def test_instance_used_before_sequence_reaches_it() -> None:
    root = run(
        """
        meta:
          id: i
        seq:
          - id: body
            size: body_len
        instances:
          body_len:
            pos: 5
            type: u1
        """,
        b"abcde\x03",
    )
    assert root.child("body").value == b"abc"
    assert root.child("body_len").value == 3


def test_instances_are_evaluated_once() -> None:
    root = run(
        """
        meta:
          id: i
        seq:
          - id: a
            size: n
          - id: b
            size: n
        instances:
          n:
            pos: 0
            type: u1
        """,
        b"\x01\x02",
    )
    assert root.child("a").value == b"\x01"
    assert root.child("b").value == b"\x02"
    assert [c.name for c in root.children].count("n") == 1


def test_cyclic_instances_resolve_to_unknown() -> None:
    root = run(
        """
        meta:
          id: i
        instances:
          a:
            value: b + 1
          b:
            value: a + 1
        """,
        b"",
    )
    assert root.child("a").value is None
    assert UNRESOLVED_EXPRESSION in {f.kind for f in collect_findings(root)}


def test_conditional_instance() -> None:
    root = run(
        """
        meta:
          id: i
        seq:
          - id: flag
            type: u1
        instances:
          extra:
            pos: 1
            type: u1
            if: flag != 0
        """,
        b"\x00\x09",
    )
    assert root.child("extra") is None


def test_pos_outside_buffer() -> None:
    root = run(
        """
        meta:
          id: i
        instances:
          far:
            pos: 100
            type: u1
        """,
        b"\x00",
    )
    far = root.child("far")
    assert far.value is None
    assert OUT_OF_BOUNDS in {f.kind for f in far.findings}


def test_pos_is_relative_to_enclosing_region() -> None:
    root = run(
        """
        meta:
          id: i
        seq:
          - id: skip
            size: 2
          - id: block
            type: block
            size: 3
        types:
          block:
            instances:
              last:
                pos: _io.size - 1
                type: u1
        """,
        b"\x00\x00\x0a\x0b\x0c",
    )
    last = root.find("block.last")
    assert last.value == 0x0C
    assert last.offset == 4


def test_repeated_pos_instance() -> None:
    root = run(
        """
        meta:
          id: i
          endian: le
        seq:
          - id: count
            type: u1
          - id: ofs
            type: u1
        instances:
          entries:
            pos: ofs
            type: u2
            repeat: expr
            repeat-expr: count
        """,
        b"\x02\x04\xff\xff\x01\x00\x02\x00",
    )
    assert [c.value for c in root.child("entries").children] == [1, 2]


def test_root_instance_first_used_inside_sized_subtype() -> None:
    root = run(
        """
        meta:
          id: i
        seq:
          - id: skip
            size: 4
          - id: sub
            type: inner
            size: 2
        instances:
          tail:
            pos: 7
            type: u1
        types:
          inner:
            seq:
              - id: a
                type: u1
              - id: flag
                type: u1
                if: _root.tail == 0x99
        """,
        b"\x00\x00\x00\x00\x01\x02\x00\x99",
    )
    tail = root.child("tail")
    assert tail.offset == 7
    assert tail.value == 0x99
    assert root.find("sub.flag").value == 2
    assert not collect_findings(root)


def test_instance_position_is_relative_to_its_own_substream() -> None:
    root = run(
        """
        meta:
          id: i
        seq:
          - id: head
            type: u1
          - id: sub
            type: inner
            size: 4
          - id: after
            type: u1
            if: sub.third == 0x33
        types:
          inner:
            seq:
              - id: a
                type: u1
            instances:
              third:
                pos: 2
                type: u1
        """,
        b"\xaa\x11\x22\x33\x44\x55",
    )
    third = root.find("sub.third")
    assert third.offset == 3
    assert root.child("after").value == 0x55
