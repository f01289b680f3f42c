# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the wasm-bindgen bridge crate."""

from __future__ import annotations

from pathlib import Path

from cddlgen.backends import BackendOptions
from cddlgen.backends.wasm import render
from cddlgen.compiler.encoding import plan_encoding
from cddlgen.compiler.type_graph import build_type_graph
from cddlgen.parser import parse

EXAMPLE = Path(__file__).parent.parent / "data" / "example.cddl"

# ###############
# Test Helpers
# ###############


def _render(text: str, **options: str) -> dict[str, str]:
    graph = build_type_graph(parse(text))
    return render(graph, plan_encoding(graph), BackendOptions(**options))


def _lib(text: str) -> str:
    return _render(text)["wasm/src/lib.rs"]


# ###############
# Tests
# ###############


class TestManifest:
    def test_artifacts(self) -> None:
        assert set(_render("A = { x: uint }")) == {"wasm/Cargo.toml", "wasm/src/lib.rs"}

    def test_depends_on_native_crate(self) -> None:
        manifest = _render("A = uint", lib_name="my-protocol")["wasm/Cargo.toml"]
        assert 'name = "my-protocol-wasm"' in manifest
        assert 'native = { package = "my-protocol", path = ".." }' in manifest
        assert "wasm-bindgen" in manifest


class TestBridge:
    def test_prelude(self) -> None:
        lib = _render("A = { x: uint }", generator_version="2.0.0")["wasm/src/lib.rs"]
        assert lib.startswith("// This file was generated by cddlgen 2.0.0. Do not edit.")
        assert "use wasm_bindgen::prelude::*;" in lib
        assert "fn to_js_error(error: native::DeserializeError) -> JsError {" in lib

    def test_record_wrapper(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub struct Point(native::Point);" in lib
        assert "impl From<native::Point> for Point {" in lib
        assert "pub fn new(x: i64, y: i64) -> Point {" in lib
        assert "pub fn x(&self) -> i64 {" in lib
        assert "pub fn to_cbor_bytes(&self) -> Vec<u8> {" in lib
        assert "pub fn from_cbor_bytes(data: &[u8]) -> Result<Point, JsError> {" in lib

    def test_small_integers_are_widened(self) -> None:
        lib = _lib("Server = { port: 0..65535 }")
        assert "pub fn new(port: u32) -> Result<Server, JsError> {" in lib
        assert "pub fn port(&self) -> u32 {" in lib
        assert "u16::try_from(port)" in lib

    def test_optional_field_setter(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub fn background(&self) -> Option<Color> {" in lib
        assert "pub fn set_background(&mut self, background: Option<Color>) {" in lib

    def test_collection_wrappers(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub struct ShapeList(Vec<native::Shape>);" in lib
        assert "pub struct MapTextToText(BTreeMap<String, String>);" in lib
        assert "pub fn keys(&self) -> TextList {" in lib
        assert "pub fn shapes(&self) -> ShapeList {" in lib

    def test_c_style_enum(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub enum Color {" in lib
        assert "pub fn color_to_cbor_bytes(value: Color) -> Vec<u8> {" in lib

    def test_payload_choice(self) -> None:
        lib = _lib(EXAMPLE.read_text(encoding="utf-8"))
        assert "pub struct Shape(native::Shape);" in lib
        assert "pub enum ShapeKind {" in lib
        assert "pub fn new_circle(value: Circle) -> Shape {" in lib
        assert "pub fn as_circle(&self) -> Option<Circle> {" in lib
        assert "pub fn kind(&self) -> ShapeKind {" in lib

    def test_recursive_field_is_unboxed_for_the_host(self) -> None:
        lib = _lib("Node = { value: uint, ? next: Node }")
        assert "pub fn next(&self) -> Option<Node> {" in lib
        assert "Node::from(*value)" in lib
