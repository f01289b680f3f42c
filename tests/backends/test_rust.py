# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the native Rust backend."""

from __future__ import annotations

from pathlib import Path

import pytest

from cddlgen.backends import BackendOptions
from cddlgen.backends.rust import render, rust_field_name, rust_string
from cddlgen.compiler.encoding import plan_encoding
from cddlgen.compiler.type_graph import build_type_graph
from cddlgen.model.plan import EncodingPolicy, LengthEncoding
from cddlgen.parser import parse

EXAMPLE = Path(__file__).parent.parent / "data" / "example.cddl"

# ###############
# Test Helpers
# ###############


def _render(text: str, policy: EncodingPolicy | None = None, **options: str) -> dict[str, str]:
    graph = build_type_graph(parse(text))
    return render(graph, plan_encoding(graph, policy), BackendOptions(**options))


def _lib(text: str) -> str:
    return _render(text)["src/lib.rs"]


# ###############
# Crate layout
# ###############


class TestCrate:
    def test_artifacts(self) -> None:
        artifacts = _render("A = uint")
        assert set(artifacts) == {"Cargo.toml", "src/lib.rs", "src/serialization.rs", "src/error.rs"}

    def test_manifest_uses_library_name(self) -> None:
        manifest = _render("A = uint", lib_name="my-protocol", version="1.2.3")["Cargo.toml"]
        assert 'name = "my-protocol"' in manifest
        assert 'name = "my_protocol"' in manifest
        assert 'version = "1.2.3"' in manifest
        assert "cbor_event" in manifest

    def test_generated_header(self) -> None:
        lib = _render("A = uint", generator_version="9.9.9")["src/lib.rs"]
        assert lib.startswith("// This file was generated by cddlgen 9.9.9. Do not edit.")

    def test_output_is_deterministic(self) -> None:
        text = EXAMPLE.read_text(encoding="utf-8")
        assert _render(text) == _render(text)


# ###############
# Types
# ###############


class TestTypes:
    def test_struct_fields(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub struct Point {" in lib
        assert "    pub x: i64," in lib
        assert "A point in the plane." in lib

    def test_optional_default_and_collections(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "    pub background: Option<Color>," in lib
        assert "    pub scale: u64," in lib
        assert "    pub shapes: Vec<Shape>," in lib
        assert "    pub tags: BTreeMap<String, String>," in lib

    def test_constructor_takes_required_fields(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub fn new(name: String, shapes: Vec<Shape>, tags: BTreeMap<String, String>) -> Self" in lib

    def test_choice_enum(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub enum Shape {" in lib
        assert "    Circle(Circle)," in lib
        assert "pub fn new_circle(value: Circle) -> Self" in lib

    def test_literal_enum_is_copy(self) -> None:
        lib = _lib('Color = "red" / "green"')
        assert "#[derive(Clone, Copy, Debug, PartialEq, Eq, PartialOrd, Ord, Hash)]" in lib
        assert "    Red," in lib

    def test_aliases(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub type Labelled = PairTextPoint;" in lib
        assert "pub struct PairTextPoint {" in lib

    def test_recursion_inside_vec_is_not_boxed(self) -> None:
        assert "    pub children: Vec<Tree>," in _lib(EXAMPLE.read_text(encoding="utf-8"))

    def test_direct_recursion_is_boxed(self) -> None:
        assert "    pub next: Option<Box<Node>>," in _lib("Node = { value: uint, ? next: Node }")

    def test_floats_prevent_ord(self) -> None:
        lib = _lib("P = { x: float }")
        assert "#[derive(Clone, Debug, PartialEq)]" in lib

    def test_newtype_with_range_check(self) -> None:
        lib = _lib("Small = 1..10")
        assert "pub struct Small(u64);" in lib
        assert "pub fn new(inner: u64) -> Result<Self, DeserializeError>" in lib
        assert "if inner < 1 || inner > 10 {" in lib

    def test_keyword_field_names(self) -> None:
        lib = _lib("R = { type: uint, self: uint }")
        assert "    pub r#type: u64," in lib
        assert "    pub self_: u64," in lib


# ###############
# Serialization
# ###############


class TestSerialization:
    def test_impls_for_every_type(self) -> None:
        serialization = _render(EXAMPLE.read_text(encoding="utf-8"))["src/serialization.rs"]
        for name in ("Point", "Shape", "Canvas", "Tree", "PairTextPoint"):
            assert f"impl ToCbor for {name} {{" in serialization
            assert f"impl FromCbor for {name} {{" in serialization

    def test_tagged_record_writes_tag(self) -> None:
        serialization = _render("R = #6.1001({ a: uint })")["src/serialization.rs"]
        assert "serializer.write_tag(1001)?;" in serialization

    def test_length_encoding_follows_policy(self) -> None:
        definite = _render("R = { a: uint }")["src/serialization.rs"]
        indefinite = _render("R = { a: uint }", EncodingPolicy(length_encoding=LengthEncoding.INDEFINITE))[
            "src/serialization.rs"
        ]
        assert "write_break(serializer, false)?;" in definite
        assert "write_break(serializer, true)?;" in indefinite

    def test_copy_fields_are_written_by_value(self) -> None:
        serialization = _render("R = { count: uint, on: bool, type: int, counts: [* uint] }")["src/serialization.rs"]
        assert "serializer.write_unsigned_integer(self.count as u64)?;" in serialization
        assert "serializer.write_special(Special::Bool(self.on))?;" in serialization
        assert "write_int(serializer, self.r#type as i64)?;" in serialization
        assert "serializer.write_unsigned_integer(*item as u64)?;" in serialization
        assert "*&" not in serialization


# ###############
# Helpers
# ###############


@pytest.mark.parametrize(
    "name,expected",
    [("value", "value"), ("type", "r#type"), ("match", "r#match"), ("self", "self_"), ("crate", "crate_")],
)
def test_rust_field_name(name: str, expected: str) -> None:
    assert rust_field_name(name) == expected


def test_rust_string_escapes() -> None:
    assert rust_string('a "b"\n\\') == '"a \\"b\\"\\n\\\\"'
    assert rust_string("\x01") == '"\\u{1}"'
