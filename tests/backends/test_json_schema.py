# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the JSON Schema backend."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from cddlgen.backends import BackendOptions
from cddlgen.backends.json_schema import JSON_SCHEMA_DIALECT, build_json_schema, render
from cddlgen.compiler.encoding import plan_encoding
from cddlgen.compiler.type_graph import build_type_graph
from cddlgen.model.plan import EncodingPolicy
from cddlgen.parser import parse

EXAMPLE = Path(__file__).parent.parent / "data" / "example.cddl"

UINT = {"type": "integer", "minimum": 0, "maximum": 2**64 - 1}
INT = {"type": "integer", "minimum": -(2**64), "maximum": 2**64 - 1}


def _schema(text: str, policy: EncodingPolicy | None = None) -> dict[str, Any]:
    graph = build_type_graph(parse(text))
    return build_json_schema(graph, plan_encoding(graph, policy), "test")


def _definitions(text: str, policy: EncodingPolicy | None = None) -> dict[str, Any]:
    return _schema(text, policy)["definitions"]


class TestDocument:
    def test_render_path_and_header(self) -> None:
        graph = build_type_graph(parse("A = uint"))
        artifacts = render(graph, plan_encoding(graph), BackendOptions(lib_name="shapes"))
        document = json.loads(artifacts["schema/shapes.schema.json"])
        assert document["$schema"] == JSON_SCHEMA_DIALECT
        assert document["title"] == "shapes"

    def test_roots_are_offered(self) -> None:
        document = _schema("A = { b: B }\nB = uint")
        assert document["anyOf"] == [{"$ref": "#/definitions/A"}, {"$ref": "#/definitions/B"}]


class TestRecords:
    def test_map_record(self) -> None:
        point = _definitions(EXAMPLE.read_text(encoding="utf-8"))["Point"]
        assert point == {
            "description": "A point in the plane.",
            "type": "object",
            "properties": {
                "x": {**INT, "description": "horizontal"},
                "y": {**INT, "description": "vertical"},
            },
            "required": ["x", "y"],
            "additionalProperties": False,
        }

    def test_optional_and_default_fields(self) -> None:
        canvas = _definitions(EXAMPLE.read_text(encoding="utf-8"))["Canvas"]
        assert canvas["required"] == ["name", "shapes", "tags"]
        assert canvas["properties"]["background"] == {"$ref": "#/definitions/Color"}
        assert canvas["properties"]["scale"] == {**UINT, "default": 1}
        assert canvas["properties"]["shapes"] == {"type": "array", "items": {"$ref": "#/definitions/Shape"}}
        assert canvas["properties"]["tags"] == {"type": "object", "additionalProperties": {"type": "string"}}

    def test_unknown_keys_allowed_by_policy(self) -> None:
        record = _definitions("R = { a: uint }", EncodingPolicy(reject_unknown_keys=False))["R"]
        assert "additionalProperties" not in record

    def test_fixed_field_is_const(self) -> None:
        record = _definitions('R = { kind: "r", value: uint }')["R"]
        assert record["properties"]["kind"] == {"const": "r"}
        assert record["required"] == ["kind", "value"]

    def test_array_record(self) -> None:
        tree = _definitions(EXAMPLE.read_text(encoding="utf-8"))["Tree"]
        assert tree == {
            "type": "array",
            "items": [INT, {"type": "array", "items": {"$ref": "#/definitions/Tree"}}],
            "additionalItems": False,
            "minItems": 2,
            "maxItems": 2,
        }


class TestOtherShapes:
    def test_literal_enum(self) -> None:
        assert _definitions(EXAMPLE.read_text(encoding="utf-8"))["Color"] == {"enum": ["red", "green", "blue"]}

    def test_choice(self) -> None:
        shape = _definitions(EXAMPLE.read_text(encoding="utf-8"))["Shape"]
        assert shape["anyOf"] == [{"$ref": "#/definitions/Circle"}, {"$ref": "#/definitions/Square"}]
        assert shape["description"] == "A drawable shape."

    def test_multi_line_description_is_trimmed(self) -> None:
        definitions = _definitions("; First line.\n;   Second line.\nM = uint")
        assert definitions["M"]["description"] == "First line.\nSecond line."

    def test_nullable_alias(self) -> None:
        assert _definitions("M = int / null")["M"] == {"anyOf": [INT, {"type": "null"}]}

    def test_value_constraint(self) -> None:
        assert _definitions("Small = 1..10")["Small"] == {**UINT, "minimum": 1, "maximum": 10}

    def test_length_constraint(self) -> None:
        name = _definitions("Name = tstr .size (1..16)")["Name"]
        assert name == {"type": "string", "minLength": 1, "maxLength": 16}

    def test_generic_instance_definition(self) -> None:
        definitions = _definitions(EXAMPLE.read_text(encoding="utf-8"))
        assert definitions["Labelled"] == {"$ref": "#/definitions/PairTextPoint"}
        assert definitions["PairTextPoint"]["items"][1] == {"$ref": "#/definitions/Point"}
