"""Property tests: the engine terminates and never raises on hostile input."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from bytelens.core.engine import collect_findings, parse_schema
from bytelens.core.findings import FINDING_KINDS
from bytelens.core.profiles import EngineLimits
from bytelens.core.runtime import Runtime
from bytelens.core.schema import compile_schema

from samples import BMP, ELF64, GIF, MZ, PNG, ZIP

LIMITS = EngineLimits(max_repeat_items=500, max_depth=16)

HOSTILE = {
    "never_until": """\
meta:
  id: never_until
seq:
  - id: items
    type: u1
    repeat: until
    repeat-until: _ == 256
""",
    "zero_width_eos": """\
meta:
  id: zero_width_eos
seq:
  - id: items
    type: empty
    repeat: eos
types:
  empty: {}
""",
    "self_recursive": """\
meta:
  id: self_recursive
seq:
  - id: node
    type: node
types:
  node:
    seq:
      - id: flag
        type: u1
      - id: next
        type: node
        if: flag != 0
""",
    "length_prefixed": """\
meta:
  id: length_prefixed
  endian: be
seq:
  - id: records
    type: record
    repeat: eos
types:
  record:
    seq:
      - id: len
        type: u2be
      - id: body
        size: len
      - id: again
        type: record
        size: len / 2
        if: len > 4
""",
    "pos_loop": """\
meta:
  id: pos_loop
seq:
  - id: first
    type: u1
instances:
  jump:
    pos: first
    type: hop
types:
  hop:
    seq:
      - id: target
        type: u1
    instances:
      again:
        pos: target
        type: hop
""",
}

COMPILED = {name: compile_schema(text) for name, text in HOSTILE.items()}

RUNTIME = Runtime()
RUNTIME.registry.register(HOSTILE["length_prefixed"])


def _check(root, size: int) -> None:
    for node in root.walk():
        assert node.length >= 0
    for finding in collect_findings(root):
        assert finding.kind in FINDING_KINDS
    assert root.offset == 0
    assert root.end <= size


@pytest.mark.parametrize("name", sorted(HOSTILE))
@settings(max_examples=60, deadline=None)
@given(data=st.binary(max_size=256))
def test_hostile_schemas_terminate(name: str, data: bytes) -> None:
    root = parse_schema(COMPILED[name], data, limits=LIMITS)
    _check(root, len(data))


@settings(max_examples=40, deadline=None)
@given(data=st.binary(max_size=64), cut=st.integers(min_value=0, max_value=96))
def test_truncated_and_patched_samples(data: bytes, cut: int) -> None:
    runtime = RUNTIME
    for sample in (PNG, ZIP, ELF64, MZ, GIF, BMP):
        mutated = sample[:cut] + data
        root = runtime.parse(mutated)
        assert root is not None
        for finding in collect_findings(root):
            assert finding.kind in FINDING_KINDS


@settings(max_examples=40, deadline=None)
@given(data=st.binary(min_size=1, max_size=512), a=st.integers(0, 600), b=st.integers(0, 600))
def test_parse_range_results_overlap(data: bytes, a: int, b: int) -> None:
    runtime = RUNTIME
    start, end = min(a, b), max(a, b)
    for node in runtime.parse_range(data, start, end, format_id="length_prefixed"):
        assert node.offset < min(end, len(data))
        assert node.end > start
