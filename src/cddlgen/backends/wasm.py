# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""WebAssembly bridge: wasm-bindgen wrappers around the native crate.

Every generated type gets a host-facing counterpart holding the native
value, so encoding and decoding always run in the native code. Host
types differ from native ones where JavaScript cannot represent a Rust
type: small integers widen to 32 bits, and arrays and tables become
wrapper classes (``TextList``, ``MapTextToU64``) with accessor methods.
"""

from __future__ import annotations

import logging

from cddlgen.backends.options import BackendOptions
from cddlgen.backends.rust import RustTypes, alias_structure, rust_field_name, rust_string, stores_default
from cddlgen.backends.writer import CodeWriter, render_template
from cddlgen.compiler.naming import NameAllocator, snake_case
from cddlgen.model.ast import ValueKind
from cddlgen.model.graph import (
    ArrayRef,
    FixedRef,
    MapRef,
    NamedRef,
    OptionalRef,
    Primitive,
    PrimitiveRef,
    ResolvedType,
    Shape,
    TypeGraph,
    TypeRef,
)
from cddlgen.model.plan import EncodingPlan, Presence, RecordPlan

logger = logging.getLogger(__name__)

# ###############
# Public Interface
# ###############


def render(graph: TypeGraph, plan: EncodingPlan, options: BackendOptions) -> dict[str, str]:
    """Render the wasm crate under ``wasm/``."""
    bridge = _WasmBridge(graph, plan, options)
    return {
        "wasm/Cargo.toml": render_template(
            "wasm/Cargo.toml.j2",
            generator_version=options.generator_version,
            wasm_crate_name=options.wasm_crate_name,
            crate_name=options.crate_name,
            version=options.version,
        ),
        "wasm/src/lib.rs": bridge.lib(),
    }


# ################
# Implementation
# ################

_NATIVE = "native::"

_WIDENED = {
    Primitive.U8: "u32",
    Primitive.U16: "u32",
    Primitive.I8: "i32",
    Primitive.I16: "i32",
}

_LABELS = {
    "u8": "U8",
    "u16": "U16",
    "u32": "U32",
    "u64": "U64",
    "i8": "I8",
    "i16": "I16",
    "i32": "I32",
    "i64": "I64",
    "f32": "F32",
    "f64": "F64",
    "bool": "Bool",
    "String": "Text",
    "Vec<u8>": "Bytes",
    "()": "Null",
}


class _WasmBridge:
    def __init__(self, graph: TypeGraph, plan: EncodingPlan, options: BackendOptions) -> None:
        self._graph = graph
        self._plan = plan
        self._options = options
        self._types = RustTypes(graph)
        self._collection_names = NameAllocator({self._types.name(node.name) for node in graph})
        # label -> (wrapper name, structural reference), in registration order
        self._collections: dict[str, tuple[str, TypeRef]] = {}

    def lib(self) -> str:
        body = CodeWriter()
        for node in self._graph:
            if node.shape == Shape.RECORD:
                self._record(body, node)
            elif node.shape == Shape.CHOICE and self._is_c_style(node):
                self._c_style_enum(body, node)
            elif node.shape == Shape.CHOICE:
                self._payload_choice(body, node)
            elif node.shape == Shape.WRAPPED_PRIMITIVE:
                self._newtype(body, node)
            elif node.shape in (Shape.ARRAY, Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
                self._alias_functions(body, node)
        emitted: set[str] = set()
        while len(emitted) < len(self._collections):
            for label, (name, ref) in list(self._collections.items()):
                if label in emitted:
                    continue
                emitted.add(label)
                if isinstance(ref, ArrayRef):
                    self._list(body, name, ref)
                else:
                    assert isinstance(ref, MapRef)
                    self._table(body, name, ref)
        logger.debug("Wasm bridge: %d collection wrappers", len(self._collections))

        w = CodeWriter()
        w.line(f"// This file was generated by cddlgen {self._options.generator_version}. Do not edit.")
        w.line(f"//! WebAssembly bindings of {self._options.lib_name}.")
        w.line()
        w.line("#![allow(clippy::new_without_default, clippy::len_without_is_empty)]")
        w.line()
        w.line("use std::collections::BTreeMap;")
        w.line()
        w.line("use native::{FromCbor, ToCbor};")
        w.line("use wasm_bindgen::prelude::*;")
        w.line()
        with w.block("fn to_js_error(error: native::DeserializeError) -> JsError"):
            w.line("JsError::new(&error.to_string())")
        return w.render() + body.render()

    # ------------------------------------------------------------------
    # Wrappers
    # ------------------------------------------------------------------

    def _wrapper_struct(self, w: CodeWriter, node: ResolvedType) -> str:
        name = self._types.name(node.name)
        w.line()
        w.doc(node.doc, "/// ")
        w.line("#[wasm_bindgen]")
        w.line("#[derive(Clone, Debug)]")
        w.line(f"pub struct {name}({_NATIVE}{name});")
        w.line()
        with w.block(f"impl From<{_NATIVE}{name}> for {name}"):
            with w.block(f"fn from(native: {_NATIVE}{name}) -> Self"):
                w.line("Self(native)")
        w.line()
        with w.block(f"impl From<{name}> for {_NATIVE}{name}"):
            with w.block(f"fn from(wrapper: {name}) -> Self"):
                w.line("wrapper.0")
        w.line()
        return name

    def _cbor_methods(self, w: CodeWriter, name: str) -> None:
        with w.block("pub fn to_cbor_bytes(&self) -> Vec<u8>"):
            w.line("self.0.to_cbor_bytes()")
        w.line()
        with w.block(f"pub fn from_cbor_bytes(data: &[u8]) -> Result<{name}, JsError>"):
            w.line(f"{_NATIVE}{name}::from_cbor_bytes(data).map(Self).map_err(to_js_error)")

    def _record(self, w: CodeWriter, node: ResolvedType) -> None:
        plan = self._plan[node.name]
        assert isinstance(plan, RecordPlan)
        name = self._wrapper_struct(w, node)
        descriptors = {f.name: f for f in node.fields}
        stored = [f for f in plan.fields if f.presence != Presence.FIXED]
        required = [f for f in stored if f.presence == Presence.REQUIRED]

        params, arguments, fallible = [], [], False
        for field_plan in required:
            ref = descriptors[field_plan.name].type
            field_name = rust_field_name(field_plan.name)
            if self._is_null(ref):
                arguments.append("()")
                continue
            params.append(f"{field_name}: {self._host_type(ref, node.name)}")
            arguments.append(self._to_native(ref, field_name, node.name))
            fallible = fallible or self._fallible(ref)

        w.line("#[wasm_bindgen]")
        with w.block(f"impl {name}"):
            w.line("#[wasm_bindgen(constructor)]")
            result = f"Result<{name}, JsError>" if fallible else name
            with w.block(f"pub fn new({', '.join(params)}) -> {result}"):
                construct = f"Self({_NATIVE}{name}::new({', '.join(arguments)}))"
                w.line(f"Ok({construct})" if fallible else construct)
            for field_plan in stored:
                descriptor = descriptors[field_plan.name]
                field_name = rust_field_name(field_plan.name)
                ref = descriptor.type
                if field_plan.presence != Presence.REQUIRED and not stores_default(
                    self._graph, descriptor, field_plan
                ):
                    ref = OptionalRef(inner=ref)
                w.line()
                w.doc(descriptor.doc, "/// ")
                with w.block(f"pub fn {field_name}(&self) -> {self._host_type(ref, node.name)}"):
                    w.line(self._to_host(ref, f"self.0.{field_name}.clone()", node.name))
                if field_plan.presence == Presence.REQUIRED:
                    continue
                w.line()
                setter = f"set_{field_plan.name}"
                signature = f"pub fn {setter}(&mut self, {field_name}: {self._host_type(ref, node.name)})"
                if self._fallible(ref):
                    with w.block(f"{signature} -> Result<(), JsError>"):
                        w.line(f"self.0.{field_name} = {self._to_native(ref, field_name, node.name)};")
                        w.line("Ok(())")
                else:
                    with w.block(signature):
                        w.line(f"self.0.{field_name} = {self._to_native(ref, field_name, node.name)};")
            w.line()
            self._cbor_methods(w, name)

    def _c_style_enum(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._types.name(node.name)
        variants = [a.name for a in node.alternatives]
        w.line()
        w.doc(node.doc, "/// ")
        w.line("#[wasm_bindgen]")
        w.line("#[derive(Clone, Copy, Debug, PartialEq, Eq)]")
        with w.block(f"pub enum {name}"):
            for alternative in node.alternatives:
                w.doc(alternative.doc, "/// ")
                w.line(f"{alternative.name},")
        w.line()
        with w.block(f"impl From<{_NATIVE}{name}> for {name}"):
            with w.block(f"fn from(native: {_NATIVE}{name}) -> Self"):
                with w.block("match native"):
                    for variant in variants:
                        w.line(f"{_NATIVE}{name}::{variant} => Self::{variant},")
        w.line()
        with w.block(f"impl From<{name}> for {_NATIVE}{name}"):
            with w.block(f"fn from(wrapper: {name}) -> Self"):
                with w.block("match wrapper"):
                    for variant in variants:
                        w.line(f"{name}::{variant} => Self::{variant},")
        function = snake_case(name)
        w.line()
        w.line("#[wasm_bindgen]")
        with w.block(f"pub fn {function}_to_cbor_bytes(value: {name}) -> Vec<u8>"):
            w.line(f"{_NATIVE}{name}::from(value).to_cbor_bytes()")
        w.line()
        w.line("#[wasm_bindgen]")
        with w.block(f"pub fn {function}_from_cbor_bytes(data: &[u8]) -> Result<{name}, JsError>"):
            w.line(f"{_NATIVE}{name}::from_cbor_bytes(data).map({name}::from).map_err(to_js_error)")

    def _payload_choice(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._wrapper_struct(w, node)
        kind = self._collection_names.allocate(f"{name}Kind")
        w.line("#[wasm_bindgen]")
        w.line("#[derive(Clone, Copy, Debug, PartialEq, Eq)]")
        with w.block(f"pub enum {kind}"):
            for alternative in node.alternatives:
                w.line(f"{alternative.name},")
        w.line()
        w.line("#[wasm_bindgen]")
        methods = NameAllocator({"kind", "to_cbor_bytes", "from_cbor_bytes"})
        with w.block(f"impl {name}"):
            for alternative in node.alternatives:
                variant = f"{_NATIVE}{name}::{alternative.name}"
                constructor = methods.allocate(f"new_{snake_case(alternative.name)}")
                w.doc(alternative.doc, "/// ")
                if isinstance(self._graph.resolve(alternative.type), FixedRef):
                    with w.block(f"pub fn {constructor}() -> {name}"):
                        w.line(f"Self({variant})")
                    w.line()
                    continue
                ref = alternative.type
                host = self._host_type(ref, node.name)
                value = self._to_native(ref, "value", node.name)
                if self._fallible(ref):
                    with w.block(f"pub fn {constructor}(value: {host}) -> Result<{name}, JsError>"):
                        w.line(f"Ok(Self({variant}({value})))")
                else:
                    with w.block(f"pub fn {constructor}(value: {host}) -> {name}"):
                        w.line(f"Self({variant}({value}))")
                w.line()
                accessor = methods.allocate(f"as_{snake_case(alternative.name)}")
                with w.block(f"pub fn {accessor}(&self) -> Option<{host}>"):
                    with w.block("match &self.0"):
                        converted = self._to_host(ref, "value.clone()", node.name)
                        w.line(f"{variant}(value) => Some({converted}),")
                        if len(node.alternatives) > 1:
                            w.line("_ => None,")
                w.line()
            with w.block(f"pub fn kind(&self) -> {kind}"):
                with w.block("match &self.0"):
                    for alternative in node.alternatives:
                        pattern = alternative.name
                        if not isinstance(self._graph.resolve(alternative.type), FixedRef):
                            pattern += "(_)"
                        w.line(f"{_NATIVE}{name}::{pattern} => {kind}::{alternative.name},")
            w.line()
            self._cbor_methods(w, name)

    def _newtype(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._wrapper_struct(w, node)
        assert node.target is not None
        host = self._host_type(node.target, node.name)
        native = self._to_native(node.target, "inner", node.name)
        constrained = node.constraint is not None
        w.line("#[wasm_bindgen]")
        with w.block(f"impl {name}"):
            w.line("#[wasm_bindgen(constructor)]")
            if constrained or self._fallible(node.target):
                with w.block(f"pub fn new(inner: {host}) -> Result<{name}, JsError>"):
                    if constrained:
                        w.line(f"{_NATIVE}{name}::new({native}).map(Self).map_err(to_js_error)")
                    else:
                        w.line(f"Ok(Self({_NATIVE}{name}::new({native})))")
            else:
                with w.block(f"pub fn new(inner: {host}) -> {name}"):
                    w.line(f"Self({_NATIVE}{name}::new({native}))")
            w.line()
            with w.block(f"pub fn get(&self) -> {host}"):
                w.line(self._to_host(node.target, "self.0.get().clone()", node.name))
            w.line()
            self._cbor_methods(w, name)

    def _alias_functions(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._types.name(node.name)
        function = snake_case(name)
        host = self._host_type(NamedRef(name=node.name), None)
        w.line()
        w.line("#[wasm_bindgen]")
        with w.block(f"pub fn {function}_to_cbor_bytes(value: &{host}) -> Vec<u8>"):
            w.line(f"native::serialization::{function}_to_cbor_bytes(&value.0)")
        w.line()
        w.line("#[wasm_bindgen]")
        with w.block(f"pub fn {function}_from_cbor_bytes(data: &[u8]) -> Result<{host}, JsError>"):
            w.line(f"native::serialization::{function}_from_cbor_bytes(data).map({host}).map_err(to_js_error)")

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _list(self, w: CodeWriter, name: str, ref: ArrayRef) -> None:
        native = self._types.type_of(ref, None, _NATIVE, False)
        element = self._host_type(ref.element, None)
        w.line()
        w.line("#[wasm_bindgen]")
        w.line("#[derive(Clone, Debug, Default)]")
        w.line(f"pub struct {name}({native});")
        w.line()
        w.line("#[wasm_bindgen]")
        with w.block(f"impl {name}"):
            w.line("#[wasm_bindgen(constructor)]")
            with w.block(f"pub fn new() -> {name}"):
                w.line("Self(Vec::new())")
            w.line()
            with w.block("pub fn len(&self) -> usize"):
                w.line("self.0.len()")
            w.line()
            with w.block(f"pub fn get(&self, index: usize) -> Option<{element}>"):
                w.line(f"self.0.get(index).cloned().map(|item| {self._to_host(ref.element, 'item', None, False)})")
            w.line()
            converted = self._to_native(ref.element, "item", None, False)
            if self._fallible(ref.element):
                with w.block(f"pub fn add(&mut self, item: {element}) -> Result<(), JsError>"):
                    w.line(f"self.0.push({converted});")
                    w.line("Ok(())")
            else:
                with w.block(f"pub fn add(&mut self, item: {element})"):
                    w.line(f"self.0.push({converted});")

    def _table(self, w: CodeWriter, name: str, ref: MapRef) -> None:
        native = self._types.type_of(ref, None, _NATIVE, False)
        key = self._host_type(ref.key, None)
        value = self._host_type(ref.value, None)
        keys = self._host_type(ArrayRef(element=ref.key), None)
        native_key = self._to_native(ref.key, "key", None, False)
        native_value = self._to_native(ref.value, "value", None, False)
        key_fallible = self._fallible(ref.key)
        w.line()
        w.line("#[wasm_bindgen]")
        w.line("#[derive(Clone, Debug, Default)]")
        w.line(f"pub struct {name}({native});")
        w.line()
        w.line("#[wasm_bindgen]")
        with w.block(f"impl {name}"):
            w.line("#[wasm_bindgen(constructor)]")
            with w.block(f"pub fn new() -> {name}"):
                w.line("Self(BTreeMap::new())")
            w.line()
            with w.block("pub fn len(&self) -> usize"):
                w.line("self.0.len()")
            w.line()
            if key_fallible or self._fallible(ref.value):
                with w.block(f"pub fn insert(&mut self, key: {key}, value: {value}) -> Result<(), JsError>"):
                    w.line(f"self.0.insert({native_key}, {native_value});")
                    w.line("Ok(())")
            else:
                with w.block(f"pub fn insert(&mut self, key: {key}, value: {value})"):
                    w.line(f"self.0.insert({native_key}, {native_value});")
            w.line()
            lookup = f"self.0.get(&{native_key}).cloned().map(|value| {self._to_host(ref.value, 'value', None, False)})"
            if key_fallible:
                with w.block(f"pub fn get(&self, key: {key}) -> Result<Option<{value}>, JsError>"):
                    w.line(f"Ok({lookup})")
            else:
                with w.block(f"pub fn get(&self, key: {key}) -> Option<{value}>"):
                    w.line(lookup)
            w.line()
            with w.block(f"pub fn keys(&self) -> {keys}"):
                w.line(f"{keys}(self.0.keys().cloned().collect())")

    def _collection(self, ref: ArrayRef | MapRef) -> str:
        label = self._label(ref)
        if label not in self._collections:
            self._collections[label] = (self._collection_names.allocate(label), ref)
        return self._collections[label][0]

    def _label(self, ref: TypeRef) -> str:
        """Return a name fragment that is equal for refs with equal native types."""
        if isinstance(ref, (PrimitiveRef, FixedRef)):
            return _LABELS[self._types.type_of(ref)]
        if isinstance(ref, NamedRef):
            if self._types.is_alias(ref.name):
                return self._label(alias_structure(self._graph[ref.name]))
            return self._types.name(ref.name)
        if isinstance(ref, ArrayRef):
            return f"{self._label(ref.element)}List"
        if isinstance(ref, MapRef):
            return f"Map{self._label(ref.key)}To{self._label(ref.value)}"
        if isinstance(ref, OptionalRef):
            return f"Optional{self._label(ref.inner)}"
        return self._label(ref.inner)

    # ------------------------------------------------------------------
    # Host types and conversions
    # ------------------------------------------------------------------

    def _host_type(self, ref: TypeRef, owner: str | None) -> str:
        if isinstance(ref, PrimitiveRef):
            if ref.primitive == Primitive.NULL:
                return "JsValue"
            return _WIDENED.get(ref.primitive, self._types.type_of(ref))
        if isinstance(ref, FixedRef):
            return "JsValue" if ref.value.kind == ValueKind.NULL else self._types.type_of(ref)
        if isinstance(ref, NamedRef):
            if self._types.is_alias(ref.name):
                return self._host_type(alias_structure(self._graph[ref.name]), owner)
            return self._types.name(ref.name)
        if isinstance(ref, (ArrayRef, MapRef)):
            return self._collection(ref)
        if isinstance(ref, OptionalRef):
            return f"Option<{self._host_type(ref.inner, owner)}>"
        return self._host_type(ref.inner, owner)

    def _to_host(self, ref: TypeRef, expr: str, owner: str | None, boxable: bool = True) -> str:
        """Convert an owned native value to its host representation."""
        if isinstance(ref, PrimitiveRef):
            if ref.primitive == Primitive.NULL:
                return "JsValue::NULL"
            widened = _WIDENED.get(ref.primitive)
            return f"{widened}::from({expr})" if widened else expr
        if isinstance(ref, FixedRef):
            return "JsValue::NULL" if ref.value.kind == ValueKind.NULL else expr
        if isinstance(ref, NamedRef):
            if self._types.is_alias(ref.name):
                return self._to_host(alias_structure(self._graph[ref.name]), expr, None, False)
            name = self._types.name(ref.name)
            if boxable and self._types.is_boxed(ref, owner):
                return f"{name}::from(*{expr})"
            return f"{name}::from({expr})"
        if isinstance(ref, (ArrayRef, MapRef)):
            return f"{self._collection(ref)}({expr})"
        if isinstance(ref, OptionalRef):
            return f"({expr}).map(|value| {self._to_host(ref.inner, 'value', owner, boxable)})"
        return self._to_host(ref.inner, expr, owner, boxable)

    def _to_native(self, ref: TypeRef, expr: str, owner: str | None, boxable: bool = True) -> str:
        """Convert an owned host value to the native type; may use ``?`` with JsError."""
        if isinstance(ref, PrimitiveRef):
            if ref.primitive == Primitive.NULL:
                return "()"
            if ref.primitive in _WIDENED:
                native = self._types.type_of(ref)
                message = rust_string(f"value out of range for {native}")
                return f"{native}::try_from({expr}).map_err(|_| JsError::new({message}))?"
            return expr
        if isinstance(ref, FixedRef):
            return "()" if ref.value.kind == ValueKind.NULL else expr
        if isinstance(ref, NamedRef):
            if self._types.is_alias(ref.name):
                return self._to_native(alias_structure(self._graph[ref.name]), expr, None, False)
            converted = f"{_NATIVE}{self._types.name(ref.name)}::from({expr})"
            if boxable and self._types.is_boxed(ref, owner):
                return f"Box::new({converted})"
            return converted
        if isinstance(ref, (ArrayRef, MapRef)):
            return f"{expr}.0"
        if isinstance(ref, OptionalRef):
            inner = self._to_native(ref.inner, "value", owner, boxable)
            return f"match {expr} {{ Some(value) => Some({inner}), None => None }}"
        return self._to_native(ref.inner, expr, owner, boxable)

    def _fallible(self, ref: TypeRef) -> bool:
        if isinstance(ref, PrimitiveRef):
            return ref.primitive in _WIDENED
        if isinstance(ref, NamedRef):
            if self._types.is_alias(ref.name):
                return self._fallible(alias_structure(self._graph[ref.name]))
            return False
        if isinstance(ref, OptionalRef):
            return self._fallible(ref.inner)
        if isinstance(ref, (ArrayRef, MapRef, FixedRef)):
            return False
        return self._fallible(ref.inner)

    def _is_null(self, ref: TypeRef) -> bool:
        resolved = self._graph.resolve(ref)
        return isinstance(resolved, PrimitiveRef) and resolved.primitive == Primitive.NULL

    def _is_c_style(self, node: ResolvedType) -> bool:
        return all(isinstance(self._graph.resolve(a.type), FixedRef) for a in node.alternatives)
