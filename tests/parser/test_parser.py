# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the CDDL recursive-descent parser."""

import pytest

from cddlgen.model.ast import (
    ArrayDef,
    ChoiceDef,
    ControlDef,
    EnumerationDef,
    LiteralDef,
    MapDef,
    RuleDef,
    Schema,
    SocketRef,
    TaggedDef,
    TypeName,
    UnwrapDef,
    ValueKind,
)
from cddlgen.parser import ParseError, parse, parse_comment_metadata

# ###############
# Test Helpers
# ###############


def _rule(source: str) -> RuleDef:
    """Parse a single-rule document and return the rule."""
    schema = parse(source)
    assert len(schema.rules) == 1
    return schema.rules[0]


# ###############
# Type Rules
# ###############


class TestTypeRules:
    def test_map_record(self) -> None:
        rule = _rule("Point = { x: int, y: int }")
        assert rule.name == "Point"
        assert rule.assign == "="
        assert isinstance(rule.type, MapDef)
        entries = rule.type.group.choices[0].entries
        assert [e.key.name for e in entries if e.key] == ["x", "y"]
        assert all(isinstance(e.value, TypeName) and e.value.name == "int" for e in entries)

    def test_array_record(self) -> None:
        rule = _rule("pair = [int, tstr]")
        assert isinstance(rule.type, ArrayDef)
        entries = rule.type.group.choices[0].entries
        assert [e.key for e in entries] == [None, None]
        assert [e.value.name for e in entries if isinstance(e.value, TypeName)] == ["int", "tstr"]

    def test_type_choice_keeps_declaration_order(self) -> None:
        rule = _rule("Shape = Circle / Square / Triangle")
        assert isinstance(rule.type, ChoiceDef)
        assert [a.name for a in rule.type.alternatives if isinstance(a, TypeName)] == ["Circle", "Square", "Triangle"]

    def test_literal_values(self) -> None:
        schema = parse('a = 1\nb = -2\nc = 1.5\nd = "x"\ne = h\'ff\'')
        values = [r.type.value for r in schema.rules if isinstance(r.type, LiteralDef)]
        assert [v.kind for v in values] == [
            ValueKind.UINT,
            ValueKind.NINT,
            ValueKind.FLOAT,
            ValueKind.TEXT,
            ValueKind.BYTES,
        ]
        assert [v.value for v in values] == [1, -2, 1.5, "x", "ff"]

    def test_hex_integer_literal(self) -> None:
        rule = _rule("a = 0x10")
        assert isinstance(rule.type, LiteralDef)
        assert rule.type.value.value == 16

    def test_range(self) -> None:
        rule = _rule("port = 0..65535")
        assert isinstance(rule.type, ControlDef)
        assert rule.type.operator == ".."
        assert isinstance(rule.type.argument, LiteralDef)
        assert rule.type.argument.value.value == 65535

    def test_control_operator(self) -> None:
        rule = _rule("hash = bstr .size 32")
        assert isinstance(rule.type, ControlDef)
        assert rule.type.operator == "size"
        assert isinstance(rule.type.target, TypeName)
        assert rule.type.target.name == "bstr"

    def test_tagged_type(self) -> None:
        rule = _rule("wrapped = #6.24(bstr)")
        assert isinstance(rule.type, TaggedDef)
        assert rule.type.tag == 24
        assert isinstance(rule.type.inner, TypeName)

    def test_untyped_hash_is_rejected(self) -> None:
        with pytest.raises(ParseError, match="not supported"):
            parse("any-item = #")

    def test_unwrap_and_enumeration(self) -> None:
        schema = parse("a = ~header\nb = &colors")
        assert isinstance(schema.rules[0].type, UnwrapDef)
        assert schema.rules[0].type.name == "header"
        assert isinstance(schema.rules[1].type, EnumerationDef)
        assert schema.rules[1].type.name == "colors"

    def test_parenthesized_type(self) -> None:
        rule = _rule("a = (int / tstr)")
        assert rule.group is None
        assert isinstance(rule.type, ChoiceDef)


# ###############
# Group Rules
# ###############


class TestGroupRules:
    def test_parenthesized_group(self) -> None:
        rule = _rule("header = (id: uint, name: tstr)")
        assert rule.type is None
        assert rule.group is not None
        assert len(rule.group.choices[0].entries) == 2

    def test_bare_group_ends_at_next_rule(self) -> None:
        schema = parse("header = id: uint, name: tstr\nnext = uint")
        assert [r.name for r in schema.rules] == ["header", "next"]
        assert schema.rules[0].group is not None
        assert len(schema.rules[0].group.choices[0].entries) == 2

    def test_group_choice(self) -> None:
        rule = _rule("m = { a: int // b: tstr }")
        assert isinstance(rule.type, MapDef)
        assert len(rule.type.group.choices) == 2

    def test_value_keys(self) -> None:
        rule = _rule('m = { 1: int, "b": tstr }')
        assert isinstance(rule.type, MapDef)
        keys = [e.key for e in rule.type.group.choices[0].entries]
        assert [k.kind for k in keys if k] == ["value", "value"]
        assert [k.value.value for k in keys if k and k.value] == [1, "b"]

    def test_type_key_with_occurrence(self) -> None:
        rule = _rule("table = { * tstr => int }")
        assert isinstance(rule.type, MapDef)
        entry = rule.type.group.choices[0].entries[0]
        assert (entry.occurrence.min, entry.occurrence.max) == (0, None)
        assert entry.key is not None
        assert entry.key.kind == "type"
        assert isinstance(entry.key.type, TypeName)
        assert entry.key.type.name == "tstr"

    @pytest.mark.parametrize(
        "source,bounds",
        [
            ("[? int]", (0, 1)),
            ("[+ int]", (1, None)),
            ("[* int]", (0, None)),
            ("[1*3 int]", (1, 3)),
            ("[*5 int]", (0, 5)),
            ("[2* int]", (2, None)),
        ],
    )
    def test_occurrence(self, source: str, bounds: tuple[int, int | None]) -> None:
        rule = _rule(f"a = {source}")
        assert isinstance(rule.type, ArrayDef)
        occurrence = rule.type.group.choices[0].entries[0].occurrence
        assert (occurrence.min, occurrence.max) == bounds

    def test_invalid_occurrence_bounds(self) -> None:
        with pytest.raises(ParseError, match="Invalid occurrence bounds"):
            parse("a = [3*1 int]")


# ###############
# Generics and Sockets
# ###############


class TestGenericsAndSockets:
    def test_generic_parameters(self) -> None:
        rule = _rule("pair<A, B> = [first: A, second: B]")
        assert [p.name for p in rule.generic_params] == ["A", "B"]
        assert isinstance(rule.type, ArrayDef)

    def test_generic_arguments(self) -> None:
        rule = _rule("ints = pair<int, tstr>")
        assert isinstance(rule.type, TypeName)
        assert [a.name for a in rule.type.generic_args if isinstance(a, TypeName)] == ["int", "tstr"]

    def test_type_plug(self) -> None:
        schema = parse('kind = $kind\n$kind /= "a"\n$kind /= "b"')
        assert isinstance(schema.rules[0].type, SocketRef)
        assert schema.rules[0].type.is_group is False
        plugs = schema.rules[1:]
        assert [r.assign for r in plugs] == ["/=", "/="]
        assert all(r.is_plug for r in plugs)

    def test_group_plug(self) -> None:
        schema = parse("m = { a: int, $$ext }\n$$ext //= b: tstr")
        plug = schema.rules[1]
        assert plug.name == "$$ext"
        assert plug.assign == "//="
        assert plug.group is not None
        entry = plug.group.choices[0].entries[0]
        assert entry.key is not None and entry.key.name == "b"


# ###############
# Comments
# ###############


class TestComments:
    def test_leading_comments_attach_to_rule(self) -> None:
        rule = _rule("; A point.\n; In the plane.\nPoint = { x: int }")
        assert rule.comments == [" A point.", " In the plane."]

    def test_blank_line_ends_leading_comments(self) -> None:
        """A preamble separated from the first rule by a blank line is not its documentation."""
        schema = parse("; Shapes schema.\n; Version 2.\n\n; A point.\nPoint = { x: int }\n\n; Orphan.\n\nb = uint")
        assert schema.rules[0].comments == [" A point."]
        assert schema.rules[1].comments == []

    def test_blank_line_ends_entry_comments(self) -> None:
        rule = _rule("Point = {\n  ; unrelated\n\n  ; horizontal\n  x: int,\n}")
        assert isinstance(rule.type, MapDef)
        assert rule.type.group.choices[0].entries[0].comments == [" horizontal"]

    def test_trailing_comment_attaches_to_rule_not_next(self) -> None:
        schema = parse("a = int ; counter\nb = uint")
        assert schema.rules[0].trailing_comments == [" counter"]
        assert schema.rules[1].comments == []

    def test_entry_comment_after_comma(self) -> None:
        rule = _rule("Point = {\n  x: int, ; horizontal\n  y: int\n}")
        assert isinstance(rule.type, MapDef)
        entries = rule.type.group.choices[0].entries
        assert entries[0].comments == [" horizontal"]
        assert entries[1].comments == []

    def test_comment_metadata(self) -> None:
        metadata = parse_comment_metadata([" The radius.", " @name radius_mm"], [" @newtype"])
        assert metadata.name == "radius_mm"
        assert metadata.is_newtype is True
        assert metadata.doc == (" The radius.",)


# ###############
# Documents
# ###############


class TestDocuments:
    def test_source_name_is_recorded(self) -> None:
        schema = parse("a = int", source_name="types.cddl")
        assert schema.rules[0].source == "types.cddl"

    def test_rule_location(self) -> None:
        schema = parse("a = int\n\nb = uint")
        assert (schema.rules[1].location.line, schema.rules[1].location.column) == (3, 1)

    def test_merge_keeps_document_order(self) -> None:
        merged = parse("a = int").merge(parse("b = uint"))
        assert isinstance(merged, Schema)
        assert [r.name for r in merged.rules] == ["a", "b"]

    def test_empty_document(self) -> None:
        assert parse("; only a comment\n").rules == []


# ###############
# Errors
# ###############


class TestErrors:
    def test_missing_type_reports_end_of_input(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse("a = ")
        assert exc_info.value.found == "end of input"

    def test_unclosed_map(self) -> None:
        with pytest.raises(ParseError):
            parse("a = { x: int")

    def test_missing_assignment(self) -> None:
        with pytest.raises(ParseError, match="Expected"):
            parse("a int")

    def test_error_location_and_source(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse("a = int\nb = )", source_name="bad.cddl")
        assert exc_info.value.line == 2
        assert exc_info.value.column == 5
        assert exc_info.value.source == "bad.cddl"
