# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the Python backend: the generated module is imported and exercised."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType

import cbor2
import pytest

from cddlgen.backends import BackendOptions
from cddlgen.backends.python import render
from cddlgen.compiler.encoding import plan_encoding
from cddlgen.compiler.type_graph import build_type_graph
from cddlgen.model.plan import EncodingPolicy, KeyOrder, LengthEncoding
from cddlgen.parser import parse

EXAMPLE = Path(__file__).parent.parent / "data" / "example.cddl"

# ###############
# Test Helpers
# ###############


def _source(text: str, policy: EncodingPolicy | None = None, lib_name: str = "codec") -> str:
    graph = build_type_graph(parse(text))
    artifacts = render(graph, plan_encoding(graph, policy), BackendOptions(lib_name=lib_name))
    return artifacts[f"python/{lib_name}.py"]


@pytest.fixture
def load(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Return a function that renders a schema and imports the generated module."""
    counter = iter(range(1000))

    def _load(text: str, policy: EncodingPolicy | None = None) -> ModuleType:
        name = f"generated_codec_{next(counter)}"
        path = tmp_path / f"{name}.py"
        path.write_text(_source(text, policy), encoding="utf-8")
        spec = importlib.util.spec_from_file_location(name, path)
        assert spec is not None and spec.loader is not None
        module = importlib.util.module_from_spec(spec)
        monkeypatch.setitem(sys.modules, name, module)
        spec.loader.exec_module(module)
        return module

    return _load


# ###############
# Module layout
# ###############


class TestModuleText:
    def test_single_artifact_named_after_library(self) -> None:
        graph = build_type_graph(parse("A = uint"))
        artifacts = render(graph, plan_encoding(graph), BackendOptions(lib_name="my-protocol"))
        assert list(artifacts) == ["python/my_protocol.py"]

    def test_header_and_docstrings(self) -> None:
        source = _source(EXAMPLE.read_text(encoding="utf-8"))
        assert source.startswith("# This file was generated by cddlgen")
        assert '"""A point in the plane."""' in source
        assert "class Point(_CborType):" in source


# ###############
# Records
# ###############


class TestRecords:
    def test_map_record_encodes_canonically(self, load) -> None:
        codec = load("Point = { x: int, y: int }")
        assert codec.Point(x=1, y=-2).to_cbor_bytes() == bytes.fromhex("a2617801617921")

    def test_map_record_round_trip(self, load) -> None:
        codec = load("Point = { x: int, y: int }")
        point = codec.Point(x=10, y=20)
        assert codec.Point.from_cbor_bytes(point.to_cbor_bytes()) == point

    def test_key_order_follows_policy(self, load) -> None:
        text = "R = { 1000: uint, b: uint }"
        length_first = load(text).R(key_1000=1, b=2).to_cbor_bytes()
        bytewise = load(text, EncodingPolicy(key_order=KeyOrder.BYTEWISE)).R(key_1000=1, b=2).to_cbor_bytes()
        assert length_first == bytes.fromhex("a26162021903e801")
        assert bytewise == bytes.fromhex("a21903e801616202")

    def test_optional_and_default_fields(self, load) -> None:
        codec = load("R = { name: tstr, ? note: tstr, ? count: uint .default 3 }")
        record = codec.R(name="a")
        assert record.note is None
        assert record.count == 3
        assert cbor2.loads(record.to_cbor_bytes()) == {"name": "a"}
        assert cbor2.loads(codec.R(name="a", count=4).to_cbor_bytes()) == {"name": "a", "count": 4}
        assert codec.R.from_cbor_bytes(cbor2.dumps({"name": "a"})) == record

    def test_fixed_fields_are_not_stored(self, load) -> None:
        codec = load('R = { kind: "r", value: uint }')
        assert cbor2.loads(codec.R(value=1).to_cbor_bytes()) == {"kind": "r", "value": 1}
        with pytest.raises(codec.DecodeError, match="expected 'r'"):
            codec.R.from_cbor_bytes(cbor2.dumps({"kind": "x", "value": 1}))

    def test_array_record_with_trailing_optional(self, load) -> None:
        codec = load("E = [name: tstr, ? count: uint]")
        assert cbor2.loads(codec.E(name="a").to_cbor_bytes()) == ["a"]
        assert cbor2.loads(codec.E(name="a", count=2).to_cbor_bytes()) == ["a", 2]
        assert codec.E.from_cbor_bytes(cbor2.dumps(["a"])) == codec.E(name="a")

    def test_missing_key_reports_path(self, load) -> None:
        codec = load("Point = { x: int, y: int }")
        with pytest.raises(codec.DecodeError) as exc_info:
            codec.Point.from_cbor_bytes(cbor2.dumps({"x": 1}))
        assert exc_info.value.path == ("y",)
        assert str(exc_info.value) == "y: missing key 'y'"

    def test_unknown_key_is_rejected(self, load) -> None:
        codec = load("Point = { x: int, y: int }")
        with pytest.raises(codec.DecodeError, match="unknown key 'z'"):
            codec.Point.from_cbor_bytes(cbor2.dumps({"x": 1, "y": 2, "z": 3}))

    def test_unknown_key_is_ignored_when_allowed(self, load) -> None:
        codec = load("Point = { x: int, y: int }", EncodingPolicy(reject_unknown_keys=False))
        assert codec.Point.from_cbor_bytes(cbor2.dumps({"x": 1, "y": 2, "z": 3})) == codec.Point(x=1, y=2)

    def test_trailing_bytes_are_rejected(self, load) -> None:
        codec = load("Point = { x: int, y: int }")
        with pytest.raises(codec.DecodeError, match="trailing bytes"):
            codec.Point.from_cbor_bytes(codec.Point(x=1, y=2).to_cbor_bytes() + b"\x00")

    def test_indefinite_lengths(self, load) -> None:
        codec = load("Point = { x: int, y: int }", EncodingPolicy(length_encoding=LengthEncoding.INDEFINITE))
        data = codec.Point(x=1, y=2).to_cbor_bytes()
        assert data[0] == 0xBF and data[-1] == 0xFF
        assert codec.Point.from_cbor_bytes(data) == codec.Point(x=1, y=2)

    def test_integer_range_is_checked(self, load) -> None:
        codec = load("R = { port: 0..65535 }")
        with pytest.raises(codec.DecodeError, match="out of range"):
            codec.R.from_cbor_bytes(cbor2.dumps({"port": 70000}))
        with pytest.raises(ValueError):
            codec.R(port=-1).to_cbor_bytes()

    def test_tagged_map_record_round_trip(self, load) -> None:
        codec = load("R = #6.1000({a: uint})")
        record = codec.R(a=1)
        item = cbor2.loads(record.to_cbor_bytes())
        assert item.tag == 1000
        assert dict(item.value) == {"a": 1}
        assert codec.R.from_cbor_bytes(record.to_cbor_bytes()) == record

    def test_tagged_array_record_round_trip(self, load) -> None:
        codec = load("R = #6.1000([a: uint, b: tstr])")
        record = codec.R(a=1, b="x")
        assert codec.R.from_cbor_bytes(record.to_cbor_bytes()) == record

    def test_tagged_list_field_round_trip(self, load) -> None:
        codec = load("R = { l: #6.1000([* uint]) }")
        record = codec.R(l=[1, 2])
        decoded = codec.R.from_cbor_bytes(record.to_cbor_bytes())
        assert decoded == record
        assert decoded.l == [1, 2]


# ###############
# Choices
# ###############


class TestChoices:
    SHAPES = "Shape = Circle / Square\nCircle = { radius: uint }\nSquare = { side: uint }"

    def test_attempt_in_order(self, load) -> None:
        codec = load(self.SHAPES)
        circle = codec.Shape.circle(codec.Circle(radius=3))
        assert cbor2.loads(circle.to_cbor_bytes()) == {"radius": 3}
        assert codec.Shape.from_cbor_bytes(circle.to_cbor_bytes()) == circle
        decoded = codec.Shape.from_cbor_bytes(cbor2.dumps({"side": 4}))
        assert decoded.kind == codec.ShapeKind.SQUARE
        assert decoded.value == codec.Square(side=4)

    def test_no_alternative_matches(self, load) -> None:
        codec = load(self.SHAPES)
        with pytest.raises(codec.DecodeError, match="no alternative of Shape matched"):
            codec.Shape.from_cbor_bytes(cbor2.dumps({"edge": 1}))

    def test_literal_enum(self, load) -> None:
        codec = load('Color = "red" / "green" / "blue"')
        assert codec.Color.GREEN.to_cbor_bytes() == cbor2.dumps("green")
        assert codec.Color.from_cbor_bytes(cbor2.dumps("blue")) is codec.Color.BLUE
        with pytest.raises(codec.DecodeError, match="is not a value of Color"):
            codec.Color.from_cbor_bytes(cbor2.dumps("pink"))

    def test_leading_literal(self, load) -> None:
        codec = load("Msg = Ping / Pong\nPing = [0, nonce: uint]\nPong = [1, nonce: uint]")
        assert codec.Msg.ping(codec.Ping(nonce=5)).to_cbor_bytes() == cbor2.dumps([0, 5])
        decoded = codec.Msg.from_cbor_bytes(cbor2.dumps([1, 7]))
        assert decoded == codec.Msg.pong(codec.Pong(nonce=7))
        with pytest.raises(codec.DecodeError, match="discriminant 2"):
            codec.Msg.from_cbor_bytes(cbor2.dumps([2, 7]))

    def test_cbor_tags(self, load) -> None:
        codec = load("C = A / B\nA = #6.1000(tstr)\nB = #6.1001(uint)")
        assert codec.C.a("x").to_cbor_bytes() == cbor2.dumps(cbor2.CBORTag(1000, "x"))
        assert codec.C.from_cbor_bytes(cbor2.dumps(cbor2.CBORTag(1001, 5))) == codec.C.b(5)

    def test_first_declared_alternative_wins(self, load) -> None:
        """Input matching several alternatives decodes as the earliest one."""
        codec = load("S = A / B / C\nA = { z: tstr }\nB = { x: uint, ? y: uint }\nC = { x: uint }")
        decoded = codec.S.from_cbor_bytes(cbor2.dumps({"x": 1}))
        assert decoded.kind == codec.SKind.B
        assert decoded.value == codec.B(x=1)

    def test_tagged_record_alternatives(self, load) -> None:
        codec = load("C = A / B\nA = #6.1000({a: uint})\nB = #6.1001([b: tstr])")
        for choice in (codec.C.a(codec.A(a=1)), codec.C.b(codec.B(b="x"))):
            assert codec.C.from_cbor_bytes(choice.to_cbor_bytes()) == choice

    def test_literals_equal_in_python_stay_distinct(self, load) -> None:
        codec = load("E = 1 / true")
        assert len(codec.E) == 2
        assert [member.to_cbor_bytes() for member in codec.E] == [cbor2.dumps(1), cbor2.dumps(True)]
        assert codec.E.from_cbor_bytes(cbor2.dumps(True)).literal is True
        assert codec.E.from_cbor_bytes(cbor2.dumps(1)).literal == 1


# ###############
# Example schema
# ###############


class TestExample:
    def test_canvas_round_trip(self, load) -> None:
        codec = load(EXAMPLE.read_text(encoding="utf-8"))
        canvas = codec.Canvas(
            name="c",
            background=codec.Color.RED,
            shapes=[codec.Shape.circle(codec.Circle(radius=1)), codec.Shape.square(codec.Square(side=2))],
            tags={"k": "v"},
        )
        assert cbor2.loads(canvas.to_cbor_bytes()) == {
            "name": "c",
            "background": "red",
            "shapes": [{"radius": 1}, {"side": 2}],
            "tags": {"k": "v"},
        }
        assert codec.Canvas.from_cbor_bytes(canvas.to_cbor_bytes()) == canvas

    def test_recursive_tree(self, load) -> None:
        codec = load(EXAMPLE.read_text(encoding="utf-8"))
        tree = codec.Tree(value=1, children=[codec.Tree(value=2, children=[])])
        assert cbor2.loads(tree.to_cbor_bytes()) == [1, [[2, []]]]
        assert codec.Tree.from_cbor_bytes(tree.to_cbor_bytes()) == tree

    def test_generic_instance(self, load) -> None:
        codec = load(EXAMPLE.read_text(encoding="utf-8"))
        labelled = codec.Labelled(first="origin", second=codec.Point(x=0, y=0))
        assert cbor2.loads(labelled.to_cbor_bytes()) == ["origin", {"x": 0, "y": 0}]

    def test_socket_alternatives(self, load) -> None:
        codec = load(EXAMPLE.read_text(encoding="utf-8"))
        message = codec.Message.from_cbor_bytes(cbor2.dumps([1, 9]))
        assert message.value == codec.Pong(nonce=9)

    def test_alias_functions(self, load) -> None:
        codec = load("Wrapped = #6.1000(tstr)")
        assert codec.wrapped_to_cbor_bytes("x") == cbor2.dumps(cbor2.CBORTag(1000, "x"))
        assert codec.wrapped_from_cbor_bytes(cbor2.dumps(cbor2.CBORTag(1000, "y"))) == "y"
