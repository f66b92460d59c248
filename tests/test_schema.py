"""Tests for KSY compilation and linting."""

from __future__ import annotations

import textwrap

import pytest

from bytelens.core.schema import (
    CompileError,
    EnumValue,
    Signature,
    SwitchSpec,
    compile_schema,
    lint_schema,
    peek_meta,
    source_fingerprint,
)


def ksy(text: str) -> str:
    return textwrap.dedent(text).lstrip()


NESTED = ksy(
    """
    meta:
      id: nested
      endian: le
    seq:
      - id: outer
        type: outer
    types:
      outer:
        seq:
          - id: kind
            type: u1
            enum: kind
          - id: body
            type: inner
        types:
          inner:
            seq:
              - id: x
                type: u2
        enums:
          kind:
            0: empty
            1: full
    """
)


class TestCompile:
    def test_nested_types_are_flattened(self) -> None:
        schema = compile_schema(NESTED)
        assert schema.id == "nested"
        assert set(schema.types) == {"outer", "outer.inner"}
        assert set(schema.enums) == {"outer.kind"}
        body = schema.types["outer"].seq[1]
        assert body.type == "outer.inner"
        assert schema.types["outer"].seq[0].enum == "outer.kind"

    def test_type_refs_resolve_outwards(self) -> None:
        text = ksy(
            """
            meta:
              id: scoped
            seq:
              - id: a
                type: a
            types:
              a:
                seq:
                  - id: b
                    type: b
                types:
                  c:
                    seq:
                      - id: back
                        type: b
              b:
                seq:
                  - id: v
                    type: u1
            """
        )
        schema = compile_schema(text)
        assert schema.types["a"].seq[0].type == "b"
        assert schema.types["a.c"].seq[0].type == "b"

    def test_path_reference_with_double_colon(self) -> None:
        text = NESTED.replace("type: outer\n", "type: outer\n  - id: direct\n    type: outer::inner\n", 1)
        schema = compile_schema(text)
        assert schema.seq[1].type == "outer.inner"

    def test_switch_cases_kept_as_expression_text(self) -> None:
        text = ksy(
            """
            meta:
              id: sw
            seq:
              - id: code
                type: u1
              - id: body
                size: 4
                type:
                  switch-on: code
                  cases:
                    0: a
                    0x10: b
                    _: a
            types:
              a: {}
              b: {}
            """
        )
        schema = compile_schema(text)
        sw = schema.seq[1].type
        assert isinstance(sw, SwitchSpec)
        assert sw.switch_on == "code"
        assert sw.cases == (("0", "a"), ("16", "b"))
        assert sw.default == "a"

    def test_strz_defaults_terminator(self) -> None:
        text = ksy(
            """
            meta:
              id: s
            seq:
              - id: name
                type: strz
                encoding: ASCII
            """
        )
        assert compile_schema(text).seq[0].terminator == 0

    def test_unnamed_contents_field(self) -> None:
        text = ksy(
            """
            meta:
              id: c
            seq:
              - contents: "AB"
              - id: v
                type: u1
            """
        )
        schema = compile_schema(text)
        assert schema.seq[0].id == "_unnamed0"
        assert schema.seq[0].contents == b"AB"

    def test_signature_inferred_from_leading_contents(self) -> None:
        text = ksy(
            """
            meta:
              id: sig
            seq:
              - id: m1
                contents: [0x7f, "EL"]
              - id: m2
                contents: "F"
              - id: rest
                type: u1
            """
        )
        assert compile_schema(text).signature == Signature(b"\x7fELF")

    def test_explicit_signature_with_offset_and_mask(self) -> None:
        text = ksy(
            """
            meta:
              id: sig2
              signature:
                bytes: "00 FF"
                offset: 2
                mask: [0x00, 0xF0]
            seq:
              - id: v
                type: u1
            """
        )
        sig = compile_schema(text).signature
        assert sig == Signature(b"\x00\xff", 2, b"\x00\xf0")
        assert sig.matches(b"..\x12\xf3")
        assert not sig.matches(b"..\x12\x03")
        assert not sig.matches(b"..\x12")

    def test_source_hash_tracks_text(self) -> None:
        a = compile_schema(NESTED)
        b = compile_schema(NESTED + "\n")
        assert a.source_hash == source_fingerprint(NESTED)
        assert a.source_hash != b.source_hash

    def test_enum_lookup(self) -> None:
        kind = compile_schema(NESTED).find_enum("kind")
        assert kind is not None
        full = kind.lookup(1)
        assert isinstance(full, EnumValue)
        assert full == 1 and full.label == "full"
        assert kind.lookup(9) == 9
        assert not isinstance(kind.lookup(9), EnumValue)
        assert kind.value_of("empty") == 0


class TestErrors:
    @pytest.mark.parametrize(
        "text, fragment",
        [
            ("seq: []", 'Missing required "meta"'),
            ("meta:\n  id: Bad-Id\n", "Invalid meta.id"),
            ("meta:\n  id: x\n  endian: middle\n", "meta.endian"),
            ("meta:\n  id: x\nseq:\n  - type: u1\n", 'missing required field "id"'),
            ("meta:\n  id: x\nseq:\n  - id: a\n    repeat: forever\n", "repeat"),
            ("meta:\n  id: x\nseq:\n  - id: a\n    repeat: expr\n", "repeat-expr"),
            ("meta:\n  id: x\nseq:\n  - id: a\n    repeat: until\n", "repeat-until"),
            ("meta:\n  id: x\nseq:\n  - id: a\n    terminator: 300\n", "terminator"),
            ("meta:\n  id: x\nseq:\n  - id: a\n    process: base64\n", "process"),
            ("meta:\n  id: x\nseq:\n  - id: a\n    value: 1\n", "only allowed on instances"),
            ("meta:\n  id: x\nseq:\n  - id: a\n    type:\n      cases: {}\n", "switch-on"),
            ("meta:\n  id: x\nseq:\n  - id: a\n    type: u1\n  - id: a\n    type: u1\n", "duplicate"),
            ("meta:\n  id: x\nseq: {}\n", "seq"),
        ],
    )
    def test_structural_errors(self, text: str, fragment: str) -> None:
        with pytest.raises(CompileError) as exc:
            compile_schema(text)
        assert any(fragment in e for e in exc.value.errors), exc.value.errors

    def test_malformed_yaml(self) -> None:
        with pytest.raises(CompileError) as exc:
            compile_schema("meta: [unclosed")
        assert "YAML" in exc.value.errors[0]

    def test_not_a_mapping(self) -> None:
        with pytest.raises(CompileError):
            compile_schema("- just\n- a list\n")


class TestWarnings:
    def test_missing_endian_warns_and_defaults(self) -> None:
        result = lint_schema("meta:\n  id: w\nseq:\n  - id: a\n    type: u4\n")
        assert result.success
        assert any("little-endian" in w for w in result.warnings)

    def test_single_byte_fields_need_no_endian(self) -> None:
        result = lint_schema("meta:\n  id: w\nseq:\n  - id: a\n    type: u1\n")
        assert result.warnings == []

    def test_unknown_type_is_a_warning(self) -> None:
        result = lint_schema("meta:\n  id: w\nseq:\n  - id: a\n    type: nowhere\n")
        assert result.success
        assert any("unknown type" in w for w in result.warnings)

    def test_malformed_expression_is_a_warning(self) -> None:
        result = lint_schema("meta:\n  id: w\nseq:\n  - id: a\n    size: (1 +\n")
        assert result.success
        assert any("malformed expression" in w for w in result.warnings)

    def test_no_structure(self) -> None:
        result = lint_schema("meta:\n  id: w\n")
        assert result.success
        assert any("No structure" in w for w in result.warnings)

    def test_lint_reports_errors_without_raising(self) -> None:
        result = lint_schema("meta:\n  id: 9bad\n")
        assert not result.success
        assert result.schema is None
        assert result.errors


def test_peek_meta_reads_only_meta() -> None:
    text = ksy(
        """
        meta:
          id: lazy
          title: Lazy format
          file-extension: [LZ, .lzy]
        seq:
          - id: magic
            contents: "LZ"
          - id: body
            type: definitely_not_defined(
        """
    )
    meta = peek_meta(text)
    assert meta.id == "lazy"
    assert meta.title == "Lazy format"
    assert meta.file_extensions == ("lz", "lzy")
    assert meta.signature == Signature(b"LZ")
