# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Native Rust backend: data types plus cbor_event encoders and decoders.

The crate layout is::

    Cargo.toml
    src/lib.rs              structs, enums, newtypes and type aliases
    src/serialization.rs    ToCbor / FromCbor implementations
    src/error.rs            DeserializeError with the path of the failure

Every decision about the wire format is read from the encoding plan; the
generator only translates it into code.
"""

from __future__ import annotations

import logging
import re

from cddlgen.backends.options import BackendOptions
from cddlgen.backends.writer import CodeWriter, render_template
from cddlgen.compiler.naming import NameAllocator, snake_case
from cddlgen.model.ast import FixedValue, ValueKind
from cddlgen.model.graph import (
    ArrayRef,
    CborBytesRef,
    FieldDescriptor,
    FixedRef,
    MapRef,
    NamedRef,
    OptionalRef,
    Primitive,
    PrimitiveRef,
    ResolvedType,
    Shape,
    TaggedRef,
    TypeGraph,
    TypeRef,
)
from cddlgen.model.plan import (
    ArrayPlan,
    ChoicePlan,
    ChoiceStrategy,
    Container,
    EncodingPlan,
    FieldPlan,
    KeyOrder,
    LengthEncoding,
    Presence,
    RecordPlan,
    TablePlan,
)

logger = logging.getLogger(__name__)

# ###############
# Public Interface
# ###############


def render(graph: TypeGraph, plan: EncodingPlan, options: BackendOptions) -> dict[str, str]:
    """Render the native crate."""
    generator = _RustGenerator(graph, plan, options)
    context = {
        "generator_version": options.generator_version,
        "crate_name": options.crate_name,
        "module_name": options.module_name,
        "version": options.version,
    }
    return {
        "Cargo.toml": render_template("rust/Cargo.toml.j2", **context),
        "src/lib.rs": generator.lib(),
        "src/serialization.rs": render_template(
            "rust/serialization.rs.j2", blocks=generator.serialization_blocks(), **context
        ),
        "src/error.rs": render_template("rust/error.rs.j2", **context),
    }


class RustTypes:
    """Rust names and types of graph nodes, shared by the native and wasm backends.

    References to a node in the same strongly connected component as the
    owner are boxed unless they sit inside a ``Vec`` or ``BTreeMap``, which
    already provide indirection.
    """

    def __init__(self, graph: TypeGraph) -> None:
        self._graph = graph
        allocator = NameAllocator(set(_RESERVED_TYPE_NAMES))
        self._names = {node.name: allocator.allocate(node.ident) for node in graph}
        self._component = {
            name: index for index, component in enumerate(graph.strongly_connected_components()) for name in component
        }
        self._orderable: dict[str, bool] = {}

    def name(self, stable: str) -> str:
        return self._names[stable]

    def is_alias(self, stable: str) -> bool:
        """Return True for nodes emitted as ``pub type`` aliases."""
        return self._graph[stable].shape in _ALIAS_SHAPES

    def is_boxed(self, ref: NamedRef, owner: str | None) -> bool:
        if owner is None or not self._graph[owner].recursive:
            return False
        return self._component[ref.name] == self._component[owner]

    def type_of(self, ref: TypeRef, owner: str | None = None, prefix: str = "", boxable: bool = True) -> str:
        """Return the Rust type of ``ref`` as used inside node ``owner``."""
        if isinstance(ref, PrimitiveRef):
            return _PRIMITIVE_TYPES[ref.primitive]
        if isinstance(ref, NamedRef):
            name = f"{prefix}{self._names[ref.name]}"
            return f"Box<{name}>" if boxable and self.is_boxed(ref, owner) else name
        if isinstance(ref, ArrayRef):
            return f"Vec<{self.type_of(ref.element, owner, prefix, False)}>"
        if isinstance(ref, MapRef):
            return f"BTreeMap<{self.type_of(ref.key, owner, prefix, False)}, {self.type_of(ref.value, owner, prefix, False)}>"
        if isinstance(ref, OptionalRef):
            return f"Option<{self.type_of(ref.inner, owner, prefix, boxable)}>"
        if isinstance(ref, FixedRef):
            return _LITERAL_TYPES[ref.value.kind]
        return self.type_of(ref.inner, owner, prefix, boxable)

    def alias_target(self, node: ResolvedType, prefix: str = "") -> str:
        """Return the right-hand side of the ``pub type`` of an alias node."""
        if node.shape == Shape.ARRAY:
            assert node.target is not None
            return f"Vec<{self.type_of(node.target, None, prefix)}>"
        if node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
            assert node.key_type is not None and node.value_type is not None
            return f"BTreeMap<{self.type_of(node.key_type, None, prefix)}, {self.type_of(node.value_type, None, prefix)}>"
        assert node.target is not None
        return self.type_of(node.target, None, prefix)

    def is_orderable(self, stable: str) -> bool:
        """Return True if the node can derive ``Eq``, ``Ord`` and ``Hash`` (no floats inside)."""
        if stable not in self._orderable:
            self._orderable[stable] = True
            node = self._graph[stable]
            if node.shape == Shape.CHOICE and all(
                isinstance(self._graph.resolve(a.type), FixedRef) for a in node.alternatives
            ):
                result = True
            else:
                refs = [f.type for f in node.fields] + [a.type for a in node.alternatives]
                refs += [r for r in (node.target, node.key_type, node.value_type) if r is not None]
                result = all(self._ref_orderable(r) for r in refs)
            self._orderable[stable] = result
        return self._orderable[stable]

    def _ref_orderable(self, ref: TypeRef) -> bool:
        if isinstance(ref, PrimitiveRef):
            return ref.primitive not in (Primitive.FLOAT32, Primitive.FLOAT64)
        if isinstance(ref, FixedRef):
            return ref.value.kind != ValueKind.FLOAT
        if isinstance(ref, NamedRef):
            return self.is_orderable(ref.name)
        if isinstance(ref, MapRef):
            return self._ref_orderable(ref.key) and self._ref_orderable(ref.value)
        if isinstance(ref, ArrayRef):
            return self._ref_orderable(ref.element)
        return self._ref_orderable(ref.inner)


def rust_field_name(name: str) -> str:
    """Escape a snake_case name that is a Rust keyword."""
    if name in _UNRAWABLE_KEYWORDS:
        return f"{name}_"
    return f"r#{name}" if name in _RUST_KEYWORDS else name


def rust_string(text: str) -> str:
    """Return ``text`` as a Rust string literal."""
    escaped = []
    for char in text:
        if char in _STRING_ESCAPES:
            escaped.append(_STRING_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            escaped.append(f"\\u{{{ord(char):x}}}")
        else:
            escaped.append(char)
    return '"' + "".join(escaped) + '"'


def alias_structure(node: ResolvedType) -> TypeRef:
    """Return the structural reference an alias, array or table node stands for."""
    if node.shape == Shape.ARRAY:
        assert node.target is not None
        occurrence = node.occurrence
        return ArrayRef(
            element=node.target,
            min_items=occurrence.min if occurrence else 0,
            max_items=occurrence.max if occurrence else None,
        )
    if node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
        assert node.key_type is not None and node.value_type is not None
        return MapRef(key=node.key_type, value=node.value_type)
    assert node.target is not None
    return node.target


def stores_default(graph: TypeGraph, descriptor: FieldDescriptor, field_plan: FieldPlan) -> bool:
    """Return True if an omit-if-default field keeps its plain type instead of ``Option``.

    Only primitive fields are stored unwrapped with their default value.
    """
    return (
        field_plan.presence == Presence.OMIT_IF_DEFAULT
        and field_plan.default is not None
        and isinstance(graph.resolve(descriptor.type), PrimitiveRef)
    )


# ################
# Implementation
# ################

_ALIAS_SHAPES = (Shape.ALIAS, Shape.ARRAY, Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS)

_RESERVED_TYPE_NAMES = {
    "Box",
    "BTreeMap",
    "DeserializeError",
    "DeserializeFailure",
    "Deserializer",
    "FromCbor",
    "KeyOrder",
    "Len",
    "Literal",
    "Option",
    "Result",
    "Self",
    "Serializer",
    "Special",
    "String",
    "ToCbor",
    "Type",
    "Vec",
}

_RUST_KEYWORDS = {
    "as", "async", "await", "box", "break", "const", "continue", "do", "dyn", "else", "enum", "extern", "false",
    "final", "fn", "for", "if", "impl", "in", "let", "loop", "macro", "match", "mod", "move", "mut", "override",
    "priv", "pub", "ref", "return", "static", "struct", "trait", "true", "try", "type", "typeof", "unsafe",
    "unsized", "use", "virtual", "where", "while", "yield",
}  # fmt: skip

_UNRAWABLE_KEYWORDS = {"self", "super", "crate", "_"}

_STRING_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t", "\0": "\\0"}

_PRIMITIVE_TYPES = {
    Primitive.UINT: "u64",
    Primitive.NINT: "i64",
    Primitive.INT: "i64",
    Primitive.U8: "u8",
    Primitive.U16: "u16",
    Primitive.U32: "u32",
    Primitive.U64: "u64",
    Primitive.I8: "i8",
    Primitive.I16: "i16",
    Primitive.I32: "i32",
    Primitive.I64: "i64",
    Primitive.TEXT: "String",
    Primitive.BYTES: "Vec<u8>",
    Primitive.BOOL: "bool",
    Primitive.FLOAT32: "f32",
    Primitive.FLOAT64: "f64",
    Primitive.NULL: "()",
}

_LITERAL_TYPES = {
    ValueKind.UINT: "u64",
    ValueKind.NINT: "i64",
    ValueKind.FLOAT: "f64",
    ValueKind.TEXT: "String",
    ValueKind.BYTES: "Vec<u8>",
    ValueKind.BOOL: "bool",
    ValueKind.NULL: "()",
}

# Integers that are read through `narrow` with these Rust bounds.
_NARROWED = {
    Primitive.INT: ("i64", -(2**63), 2**63 - 1),
    Primitive.I64: ("i64", -(2**63), 2**63 - 1),
    Primitive.U8: ("u8", 0, 2**8 - 1),
    Primitive.U16: ("u16", 0, 2**16 - 1),
    Primitive.U32: ("u32", 0, 2**32 - 1),
    Primitive.I8: ("i8", -(2**7), 2**7 - 1),
    Primitive.I16: ("i16", -(2**15), 2**15 - 1),
    Primitive.I32: ("i32", -(2**31), 2**31 - 1),
}

_UNSIGNED = (Primitive.UINT, Primitive.U8, Primitive.U16, Primitive.U32, Primitive.U64)

_KEY_ORDERS = {
    KeyOrder.LENGTH_FIRST: "KeyOrder::LengthFirst",
    KeyOrder.BYTEWISE: "KeyOrder::Bytewise",
    KeyOrder.DECLARATION: "KeyOrder::Declaration",
}


class _RustGenerator:
    def __init__(self, graph: TypeGraph, plan: EncodingPlan, options: BackendOptions) -> None:
        self._graph = graph
        self._plan = plan
        self._options = options
        self._types = RustTypes(graph)
        self._indefinite = "true" if plan.policy.length_encoding == LengthEncoding.INDEFINITE else "false"

    # ------------------------------------------------------------------
    # src/lib.rs
    # ------------------------------------------------------------------

    def lib(self) -> str:
        w = CodeWriter()
        w.line(f"// This file was generated by cddlgen {self._options.generator_version}. Do not edit.")
        w.line(f"//! CBOR data types of {self._options.lib_name}.")
        w.line()
        w.line("#![allow(clippy::too_many_arguments, clippy::new_without_default, clippy::large_enum_variant)]")
        w.line()
        w.line("pub mod error;")
        w.line("pub mod serialization;")
        w.line()
        w.line("use std::collections::BTreeMap;")
        w.line()
        w.line("pub use error::{DeserializeError, DeserializeFailure};")
        w.line("pub use serialization::{FromCbor, ToCbor};")
        for node in self._graph:
            w.line()
            w.doc(node.doc, "/// ")
            if node.shape in _ALIAS_SHAPES:
                w.line(f"pub type {self._types.name(node.name)} = {self._types.alias_target(node)};")
            elif node.shape == Shape.RECORD:
                self._struct(w, node)
            elif node.shape == Shape.CHOICE:
                self._enum(w, node)
            else:
                self._newtype(w, node)
        return w.render()

    def _derives(self, node: ResolvedType, copy: bool = False) -> str:
        derives = ["Clone"] + (["Copy"] if copy else []) + ["Debug", "PartialEq"]
        if self._types.is_orderable(node.name):
            derives += ["Eq", "PartialOrd", "Ord", "Hash"]
        return f"#[derive({', '.join(derives)})]"

    def _struct(self, w: CodeWriter, node: ResolvedType) -> None:
        plan = self._record_plan(node)
        name = self._types.name(node.name)
        descriptors = {f.name: f for f in node.fields}
        stored = [f for f in plan.fields if f.presence != Presence.FIXED]
        w.line(self._derives(node))
        with w.block(f"pub struct {name}"):
            for field_plan in stored:
                descriptor = descriptors[field_plan.name]
                w.doc(descriptor.doc, "/// ")
                w.line(f"pub {rust_field_name(field_plan.name)}: {self._field_type(node, descriptor, field_plan)},")
        w.line()
        required = [f for f in stored if f.presence == Presence.REQUIRED]
        params = ", ".join(
            f"{rust_field_name(f.name)}: {self._types.type_of(descriptors[f.name].type, node.name)}" for f in required
        )
        with w.block(f"impl {name}"):
            with w.block(f"pub fn new({params}) -> Self"):
                with w.block("Self"):
                    for field_plan in stored:
                        field_name = rust_field_name(field_plan.name)
                        if field_plan.presence == Presence.REQUIRED:
                            w.line(f"{field_name},")
                        elif self._has_rust_default(descriptors[field_plan.name], field_plan):
                            assert field_plan.default is not None
                            w.line(f"{field_name}: {_rust_value(field_plan.default)},")
                        else:
                            w.line(f"{field_name}: None,")

    def _enum(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._types.name(node.name)
        unit = [self._is_unit(a.type) for a in node.alternatives]
        w.line(self._derives(node, copy=all(unit)))
        with w.block(f"pub enum {name}"):
            for alternative, is_unit in zip(node.alternatives, unit):
                w.doc(alternative.doc, "/// ")
                if is_unit:
                    w.line(f"{alternative.name},")
                else:
                    w.line(f"{alternative.name}({self._types.type_of(alternative.type, node.name)}),")
        if all(unit):
            return
        w.line()
        constructors = NameAllocator()
        with w.block(f"impl {name}"):
            for index, (alternative, is_unit) in enumerate(zip(node.alternatives, unit)):
                if index:
                    w.line()
                function = constructors.allocate(f"new_{snake_case(alternative.name)}")
                if is_unit:
                    with w.block(f"pub fn {function}() -> Self"):
                        w.line(f"Self::{alternative.name}")
                    continue
                inner = self._types.type_of(alternative.type, node.name, boxable=False)
                value = "value"
                if isinstance(alternative.type, NamedRef) and self._types.is_boxed(alternative.type, node.name):
                    value = "Box::new(value)"
                with w.block(f"pub fn {function}(value: {inner}) -> Self"):
                    w.line(f"Self::{alternative.name}({value})")

    def _newtype(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._types.name(node.name)
        assert node.target is not None
        inner = self._types.type_of(node.target, node.name)
        w.line(self._derives(node))
        w.line(f"pub struct {name}({inner});")
        w.line()
        checks = self._constraint_checks(node)
        with w.block(f"impl {name}"):
            if checks:
                with w.block(f"pub fn new(inner: {inner}) -> Result<Self, DeserializeError>"):
                    w.lines(checks)
                    w.line("Ok(Self(inner))")
            else:
                with w.block(f"pub fn new(inner: {inner}) -> Self"):
                    w.line("Self(inner)")
            w.line()
            with w.block(f"pub fn get(&self) -> &{inner}"):
                w.line("&self.0")
        w.line()
        with w.block(f"impl From<{name}> for {inner}"):
            with w.block(f"fn from(wrapper: {name}) -> Self"):
                w.line("wrapper.0")

    def _constraint_checks(self, node: ResolvedType) -> list[str]:
        """Return the statements rejecting values outside the node's constraint."""
        constraint = node.constraint
        if constraint is None or node.target is None:
            return []
        target = self._graph.resolve(node.target)
        name = self._types.name(node.name)
        if constraint.applies_to == "length":
            subject = "inner.len() as u64"
            low, high = constraint.min or 0, constraint.max
            bounds: tuple[int | None, int | None] = (0, None)
        else:
            subject = "inner"
            low, high = constraint.min, constraint.max
            bounds = target.primitive.bounds if isinstance(target, PrimitiveRef) else (None, None)
        conditions = []
        if low is not None and low != bounds[0]:
            conditions.append(f"{subject} < {low}")
        if high is not None and high != bounds[1]:
            conditions.append(f"{subject} > {high}")
        if not conditions:
            return []
        return [
            f"if {' || '.join(conditions)} {{",
            f"    return Err(DeserializeError::new({rust_string(name)}, DeserializeFailure::OutOfRange {{",
            f'        value: format!("{{:?}}", {subject}),',
            f"        min: {rust_string(str(low))}.to_owned(),",
            f"        max: {rust_string(str(high))}.to_owned(),",
            "    }));",
            "}",
        ]

    # ------------------------------------------------------------------
    # src/serialization.rs
    # ------------------------------------------------------------------

    def serialization_blocks(self) -> list[str]:
        blocks: list[str] = []
        for node in self._graph:
            w = CodeWriter()
            if node.shape in _ALIAS_SHAPES:
                self._alias_functions(w, node)
            elif node.shape == Shape.RECORD:
                self._record_impls(w, node)
            elif node.shape == Shape.CHOICE:
                self._choice_impls(w, node)
            else:
                self._newtype_impls(w, node)
            blocks.append(w.render().rstrip("\n"))
        logger.debug("Rust serialization: %d implementations", len(blocks))
        return blocks

    def _write_header(self, w: CodeWriter, name: str) -> None:
        w.line(f"impl ToCbor for {name} {{")
        w.line("    fn write_cbor<W: Write>(&self, serializer: &mut Serializer<W>) -> cbor_event::Result<()> {")

    def _read_open(self, w: CodeWriter, name: str) -> None:
        w.line(f"impl FromCbor for {name} {{")
        w.line("    fn read_cbor<R: BufRead + Seek>(raw: &mut Deserializer<R>) -> Result<Self, DeserializeError> {")
        w.line("        (|| -> Result<Self, DeserializeError> {")

    def _read_close(self, w: CodeWriter, name: str) -> None:
        w.line("        })()")
        w.line(f"        .map_err(|e| e.annotate({rust_string(name)}))")
        w.line("    }")
        w.line("}")

    def _record_impls(self, w: CodeWriter, node: ResolvedType) -> None:
        plan = self._record_plan(node)
        name = self._types.name(node.name)
        descriptors = {f.name: f for f in node.fields}
        by_name = {f.name: f for f in plan.fields}

        self._write_header(w, name)
        with w.indented(), w.indented():
            if plan.tag is not None:
                w.line(f"serializer.write_tag({plan.tag})?;")
            if plan.container == Container.MAP:
                self._write_map_record(w, node, plan, descriptors, by_name)
            else:
                self._write_array_record(w, node, plan, descriptors)
            w.line(f"write_break(serializer, {self._indefinite})?;")
            w.line("Ok(())")
        w.line("    }")
        w.line("}")
        w.line()
        self._read_open(w, name)
        with w.indented(), w.indented(), w.indented():
            if plan.tag is not None:
                w.line(f"expect_tag(raw, {plan.tag})?;")
            if plan.container == Container.MAP:
                self._read_map_record(w, node, plan, descriptors)
            else:
                self._read_array_record(w, node, plan, descriptors)
        self._read_close(w, name)

    def _write_map_record(
        self,
        w: CodeWriter,
        node: ResolvedType,
        plan: RecordPlan,
        descriptors: dict[str, FieldDescriptor],
        by_name: dict[str, FieldPlan],
    ) -> None:
        fixed_count = sum(1 for f in plan.fields if f.presence in (Presence.REQUIRED, Presence.FIXED))
        w.line(f"let mut len = {fixed_count}u64;")
        for field_plan in plan.fields:
            condition = self._present_condition(node, descriptors[field_plan.name], field_plan)
            if condition is not None:
                w.line(f"if {condition} {{")
                w.line("    len += 1;")
                w.line("}")
        w.line(f"write_map_header(serializer, len, {self._indefinite})?;")
        for field_name in plan.emission_order:
            field_plan = by_name[field_name]
            descriptor = descriptors[field_name]
            assert field_plan.key is not None
            access = f"&self.{rust_field_name(field_name)}"
            if field_plan.presence == Presence.FIXED:
                assert field_plan.value is not None
                w.line(_write_fixed(field_plan.key))
                w.line(_write_fixed(field_plan.value))
            elif field_plan.presence == Presence.REQUIRED:
                w.line(_write_fixed(field_plan.key))
                self._emit_write(w, descriptor.type, access, node.name)
            elif self._has_rust_default(descriptor, field_plan):
                condition = self._present_condition(node, descriptor, field_plan)
                with w.block(f"if {condition}"):
                    w.line(_write_fixed(field_plan.key))
                    self._emit_write(w, descriptor.type, access, node.name)
            else:
                with w.block(f"if let Some(value) = {access}"):
                    w.line(_write_fixed(field_plan.key))
                    self._emit_write(w, descriptor.type, "value", node.name)

    def _write_array_record(
        self, w: CodeWriter, node: ResolvedType, plan: RecordPlan, descriptors: dict[str, FieldDescriptor]
    ) -> None:
        leading = [f for f in plan.fields if f.presence in (Presence.REQUIRED, Presence.FIXED)]
        trailing = [f for f in plan.fields if f.presence not in (Presence.REQUIRED, Presence.FIXED)]
        if trailing:
            # Optional fields are written up to the last one present.
            for count in range(len(trailing), 0, -1):
                field_plan = trailing[count - 1]
                condition = self._present_condition(node, descriptors[field_plan.name], field_plan)
                keyword = "let trailing = if" if count == len(trailing) else "} else if"
                w.line(f"{keyword} {condition} {{")
                w.line(f"    {count}")
            w.line("} else {")
            w.line("    0")
            w.line("};")
            w.line(f"write_array_header(serializer, {len(leading)} + trailing, {self._indefinite})?;")
        else:
            w.line(f"write_array_header(serializer, {len(leading)}, {self._indefinite})?;")
        for field_plan in leading:
            if field_plan.presence == Presence.FIXED:
                assert field_plan.value is not None
                w.line(_write_fixed(field_plan.value))
            else:
                access = f"&self.{rust_field_name(field_plan.name)}"
                self._emit_write(w, descriptors[field_plan.name].type, access, node.name)
        for index, field_plan in enumerate(trailing):
            descriptor = descriptors[field_plan.name]
            access = f"&self.{rust_field_name(field_plan.name)}"
            with w.block(f"if trailing > {index}"):
                if self._has_rust_default(descriptor, field_plan):
                    self._emit_write(w, descriptor.type, access, node.name)
                    continue
                with w.block(f"match {access}"):
                    with w.block("Some(value) =>"):
                        self._emit_write(w, descriptor.type, "value", node.name)
                    with w.block("None =>"):
                        message = f"field '{field_plan.name}' must be set when a later field is set"
                        w.line(f"return Err(cbor_event::Error::CustomError({rust_string(message)}.to_owned()));")

    def _read_map_record(
        self, w: CodeWriter, node: ResolvedType, plan: RecordPlan, descriptors: dict[str, FieldDescriptor]
    ) -> None:
        max_length = f"Some({plan.max_length})" if plan.reject_unknown_keys else "None"
        w.line(f"let len = read_map_len(raw, {plan.min_length}, {max_length})?;")
        for field_plan in plan.fields:
            variable = _local(field_plan.name)
            if field_plan.presence == Presence.FIXED:
                w.line(f"let mut {variable}_seen = false;")
            else:
                field_type = self._types.type_of(descriptors[field_plan.name].type, node.name)
                w.line(f"let mut {variable}: Option<{field_type}> = None;")
        w.line("let mut read = 0u64;")
        with w.block("while has_next(raw, len, read)?"):
            w.line("let key = read_literal(raw)?;")
            for index, field_plan in enumerate(plan.fields):
                assert field_plan.key is not None
                keyword = "if" if index == 0 else "} else if"
                w.line(f"{keyword} key == {_literal_expr(field_plan.key)} {{")
                with w.indented():
                    self._read_map_field(w, node, descriptors[field_plan.name], field_plan)
            unknown = (
                "return Err(DeserializeFailure::UnknownKey(format!(\"{:?}\", key)).into());"
                if plan.reject_unknown_keys
                else "skip_item(raw)?;"
            )
            if plan.fields:
                w.line("} else {")
                w.line(f"    {unknown}")
                w.line("}")
            else:
                w.line(unknown)
            w.line("read += 1;")
        w.line(f"finish(raw, len, read, {plan.min_length}, {max_length})?;")
        assignments = []
        for field_plan in plan.fields:
            variable = _local(field_plan.name)
            descriptor = descriptors[field_plan.name]
            missing = (
                f"DeserializeError::new({rust_string(field_plan.name)}, "
                f"DeserializeFailure::MissingKey({rust_string(field_plan.name)}.to_owned()))"
            )
            if field_plan.presence == Presence.FIXED:
                with w.block(f"if !{variable}_seen"):
                    w.line(f"return Err({missing});")
                continue
            if field_plan.presence == Presence.REQUIRED:
                w.line(f"let {variable} = {variable}.ok_or_else(|| {missing})?;")
            elif self._has_rust_default(descriptor, field_plan):
                assert field_plan.default is not None
                w.line(f"let {variable} = {variable}.unwrap_or_else(|| {_rust_value(field_plan.default)});")
            assignments.append(f"{rust_field_name(field_plan.name)}: {variable}")
        w.line(f"Ok(Self {{ {', '.join(assignments)} }})" if assignments else "Ok(Self {})")

    def _read_map_field(
        self, w: CodeWriter, node: ResolvedType, descriptor: FieldDescriptor, field_plan: FieldPlan
    ) -> None:
        variable = _local(field_plan.name)
        duplicate = f"return Err(DeserializeFailure::DuplicateKey({rust_string(field_plan.name)}.to_owned()).into());"
        if field_plan.presence == Presence.FIXED:
            assert field_plan.value is not None
            with w.block(f"if {variable}_seen"):
                w.line(duplicate)
            w.line(
                f"read_field(raw, {rust_string(field_plan.name)}, "
                f"|raw| expect_literal(raw, &{_literal_expr(field_plan.value)}))?;"
            )
            w.line(f"{variable}_seen = true;")
            return
        with w.block(f"if {variable}.is_some()"):
            w.line(duplicate)
        expression = self._read(descriptor.type, node.name)
        w.line(f"{variable} = Some(read_field(raw, {rust_string(field_plan.name)}, |raw| Ok({expression}))?);")

    def _read_array_record(
        self, w: CodeWriter, node: ResolvedType, plan: RecordPlan, descriptors: dict[str, FieldDescriptor]
    ) -> None:
        w.line(f"let len = read_array_len(raw, {plan.min_length}, Some({plan.max_length}))?;")
        w.line("let mut read = 0u64;")
        assignments = []
        for field_plan in plan.fields:
            variable = _local(field_plan.name)
            label = rust_string(field_plan.name)
            descriptor = descriptors[field_plan.name]
            if field_plan.presence == Presence.FIXED:
                assert field_plan.value is not None
                w.line(f"read_field(raw, {label}, |raw| expect_literal(raw, &{_literal_expr(field_plan.value)}))?;")
                w.line("read += 1;")
                continue
            assignments.append(f"{rust_field_name(field_plan.name)}: {variable}")
            expression = f"read_field(raw, {label}, |raw| Ok({self._read(descriptor.type, node.name)}))?"
            if field_plan.presence == Presence.REQUIRED:
                w.line(f"let {variable} = {expression};")
                w.line("read += 1;")
                continue
            absent = "None"
            present = f"Some({expression})"
            if self._has_rust_default(descriptor, field_plan):
                assert field_plan.default is not None
                absent = _rust_value(field_plan.default)
                present = expression
            w.line(f"let {variable} = if has_next(raw, len, read)? {{")
            with w.indented():
                w.line("read += 1;")
                w.line(present)
            w.line("} else {")
            with w.indented():
                w.line(absent)
            w.line("};")
        w.line(f"finish(raw, len, read, {plan.min_length}, Some({plan.max_length}))?;")
        w.line(f"Ok(Self {{ {', '.join(assignments)} }})" if assignments else "Ok(Self {})")

    def _choice_impls(self, w: CodeWriter, node: ResolvedType) -> None:
        plan = self._plan[node.name]
        assert isinstance(plan, ChoicePlan)
        name = self._types.name(node.name)
        alternatives = {a.name: a for a in node.alternatives}

        self._write_header(w, name)
        with w.indented(), w.indented():
            if plan.tag is not None:
                w.line(f"serializer.write_tag({plan.tag})?;")
            with w.block("match self"):
                for alternative in node.alternatives:
                    if self._is_unit(alternative.type):
                        value = self._graph.resolve(alternative.type)
                        assert isinstance(value, FixedRef)
                        with w.block(f"{name}::{alternative.name} =>"):
                            w.line(_write_fixed(value.value))
                    else:
                        with w.block(f"{name}::{alternative.name}(value) =>"):
                            self._emit_write(w, alternative.type, "value", node.name)
            w.line("Ok(())")
        w.line("    }")
        w.line("}")
        w.line()
        self._read_open(w, name)
        with w.indented(), w.indented(), w.indented():
            if plan.tag is not None:
                w.line(f"expect_tag(raw, {plan.tag})?;")
            if plan.strategy == ChoiceStrategy.ENUM_VALUE:
                w.line("let value = read_literal(raw)?;")
                for variant in plan.variants:
                    assert variant.discriminant is not None
                    with w.block(f"if value == {_literal_expr(variant.discriminant)}"):
                        w.line(f"return Ok(Self::{variant.name});")
            elif plan.strategy == ChoiceStrategy.CBOR_TAG:
                with w.block("match peek_tag(raw)?"):
                    for variant in plan.variants:
                        alternative = alternatives[variant.name]
                        expression = self._variant_value(node, alternative.name, alternative.type)
                        w.line(f"Some({variant.cbor_tag}) => return Ok({expression}),")
                    w.line("_ => {}")
            elif plan.strategy == ChoiceStrategy.LEADING_TAG:
                if plan.discriminant_key is None:
                    w.line("let leading = peek_leading_literal(raw)?;")
                else:
                    w.line(f"let leading = peek_map_literal(raw, &{_literal_expr(plan.discriminant_key)})?;")
                for variant in plan.variants:
                    assert variant.discriminant is not None
                    alternative = alternatives[variant.name]
                    with w.block(f"if leading == Some({_literal_expr(variant.discriminant)})"):
                        w.line(f"return Ok({self._variant_value(node, alternative.name, alternative.type)});")
            else:
                for alternative in node.alternatives:
                    if self._is_unit(alternative.type):
                        value = self._graph.resolve(alternative.type)
                        assert isinstance(value, FixedRef)
                        condition = f"attempt(raw, |raw| expect_literal(raw, &{_literal_expr(value.value)}))?.is_some()"
                        with w.block(f"if {condition}"):
                            w.line(f"return Ok(Self::{alternative.name});")
                    else:
                        expression = self._read(alternative.type, node.name)
                        with w.block(f"if let Some(value) = attempt(raw, |raw| Ok({expression}))?"):
                            w.line(f"return Ok(Self::{alternative.name}(value));")
            w.line("Err(DeserializeFailure::NoVariantMatched.into())")
        self._read_close(w, name)

    def _variant_value(self, node: ResolvedType, variant: str, ref: TypeRef) -> str:
        if self._is_unit(ref):
            value = self._graph.resolve(ref)
            assert isinstance(value, FixedRef)
            return f"{{ expect_literal(raw, &{_literal_expr(value.value)})?; Self::{variant} }}"
        return f"Self::{variant}({self._read(ref, node.name)})"

    def _newtype_impls(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._types.name(node.name)
        assert node.target is not None
        self._write_header(w, name)
        with w.indented(), w.indented():
            if node.tag is not None:
                w.line(f"serializer.write_tag({node.tag})?;")
            self._emit_write(w, node.target, "&self.0", node.name)
            w.line("Ok(())")
        w.line("    }")
        w.line("}")
        w.line()
        self._read_open(w, name)
        with w.indented(), w.indented(), w.indented():
            if node.tag is not None:
                w.line(f"expect_tag(raw, {node.tag})?;")
            w.line(f"let inner = {self._read(node.target, node.name)};")
            w.line("Self::new(inner)" if self._constraint_checks(node) else "Ok(Self::new(inner))")
        self._read_close(w, name)

    def _alias_functions(self, w: CodeWriter, node: ResolvedType) -> None:
        name = self._types.name(node.name)
        function = snake_case(name)
        ref = alias_structure(node)
        w.line(
            f"pub fn encode_{function}<W: Write>(serializer: &mut Serializer<W>, value: &{name}) "
            "-> cbor_event::Result<()> {"
        )
        with w.indented():
            if node.tag is not None and node.shape != Shape.ALIAS:
                w.line(f"serializer.write_tag({node.tag})?;")
            self._emit_write(w, ref, "value", None)
            w.line("Ok(())")
        w.line("}")
        w.line()
        w.line(
            f"pub fn decode_{function}<R: BufRead + Seek>(raw: &mut Deserializer<R>) "
            f"-> Result<{name}, DeserializeError> {{"
        )
        with w.indented():
            if node.tag is not None and node.shape != Shape.ALIAS:
                w.line(f"expect_tag(raw, {node.tag})?;")
            w.line(f"Ok({self._read(ref, None, node_plan=self._plan[node.name])})")
        w.line("}")
        w.line()
        with w.block(f"pub fn {function}_to_cbor_bytes(value: &{name}) -> Vec<u8>"):
            w.line("let mut serializer = Serializer::new_vec();")
            w.line(f'encode_{function}(&mut serializer, value).expect("writing to a Vec cannot fail");')
            w.line("serializer.finalize()")
        w.line()
        with w.block(f"pub fn {function}_from_cbor_bytes(data: &[u8]) -> Result<{name}, DeserializeError>"):
            w.line("let mut raw = Deserializer::from(Cursor::new(data.to_vec()));")
            w.line(f"let value = decode_{function}(&mut raw)?;")
            w.line("ensure_consumed(&mut raw)?;")
            w.line("Ok(value)")

    # ------------------------------------------------------------------
    # Encoding and decoding of references
    # ------------------------------------------------------------------

    def _emit_write(self, w: CodeWriter, ref: TypeRef, expr: str, owner: str | None) -> None:
        """Write statements encoding ``expr`` (an expression of type ``&T``)."""
        if isinstance(ref, PrimitiveRef):
            w.line(_write_primitive(ref.primitive, expr))
        elif isinstance(ref, NamedRef):
            if self._types.is_alias(ref.name):
                w.line(f"encode_{snake_case(self._types.name(ref.name))}(serializer, {expr})?;")
            else:
                w.line(f"{_receiver(expr)}.write_cbor(serializer)?;")
        elif isinstance(ref, ArrayRef):
            w.line(f"write_vec(serializer, {expr}, {self._indefinite}, |serializer, item| {{")
            with w.indented():
                self._emit_write(w, ref.element, "item", owner)
                w.line("Ok(())")
            w.line("})?;")
        elif isinstance(ref, MapRef):
            order = _KEY_ORDERS[self._plan.policy.key_order]
            w.line("write_table(")
            with w.indented():
                w.line("serializer,")
                w.line(f"{expr},")
                w.line(f"{order},")
                w.line(f"{self._indefinite},")
                w.line("|serializer, key| {")
                with w.indented():
                    self._emit_write(w, ref.key, "key", owner)
                    w.line("Ok(())")
                w.line("},")
                w.line("|serializer, value| {")
                with w.indented():
                    self._emit_write(w, ref.value, "value", owner)
                    w.line("Ok(())")
                w.line("},")
            w.line(")?;")
        elif isinstance(ref, OptionalRef):
            with w.block(f"match {expr}"):
                with w.block("Some(value) =>"):
                    self._emit_write(w, ref.inner, "value", owner)
                with w.block("None =>"):
                    w.line("serializer.write_special(Special::Null)?;")
        elif isinstance(ref, TaggedRef):
            w.line(f"serializer.write_tag({ref.tag})?;")
            self._emit_write(w, ref.inner, expr, owner)
        elif isinstance(ref, FixedRef):
            w.line(_write_fixed(ref.value))
        else:
            w.line("write_cbor_bytes(serializer, |serializer| {")
            with w.indented():
                self._emit_write(w, ref.inner, expr, owner)
                w.line("Ok(())")
            w.line("})?;")

    def _read(
        self, ref: TypeRef, owner: str | None, boxable: bool = True, node_plan: object | None = None
    ) -> str:
        """Return an expression decoding ``ref`` from ``raw`` (errors propagate with ``?``)."""
        if isinstance(ref, PrimitiveRef):
            return _read_primitive(ref.primitive)
        if isinstance(ref, NamedRef):
            name = self._types.name(ref.name)
            if self._types.is_alias(ref.name):
                expression = f"decode_{snake_case(name)}(raw)?"
            else:
                expression = f"{name}::read_cbor(raw)?"
            return f"Box::new({expression})" if boxable and self._types.is_boxed(ref, owner) else expression
        if isinstance(ref, ArrayRef):
            low, high = ref.min_items, ref.max_items
            if isinstance(node_plan, ArrayPlan):
                low, high = node_plan.min_items, node_plan.max_items
            element = self._read(ref.element, owner, False)
            return f"read_vec(raw, {low}, {_option(high)}, |raw| Ok({element}))?"
        if isinstance(ref, MapRef):
            low, high = 0, None
            if isinstance(node_plan, TablePlan):
                low, high = node_plan.min_entries, node_plan.max_entries
            key = self._read(ref.key, owner, False)
            value = self._read(ref.value, owner, False)
            return f"read_table(raw, {low}, {_option(high)}, |raw| Ok({key}), |raw| Ok({value}))?"
        if isinstance(ref, OptionalRef):
            return f"read_nullable(raw, |raw| Ok({self._read(ref.inner, owner, boxable)}))?"
        if isinstance(ref, TaggedRef):
            return f"{{ expect_tag(raw, {ref.tag})?; {self._read(ref.inner, owner, boxable)} }}"
        if isinstance(ref, FixedRef):
            return f"{{ expect_literal(raw, &{_literal_expr(ref.value)})?; {_rust_value(ref.value)} }}"
        return f"read_cbor_bytes(raw, |raw| Ok({self._read(ref.inner, owner, boxable)}))?"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_plan(self, node: ResolvedType) -> RecordPlan:
        plan = self._plan[node.name]
        assert isinstance(plan, RecordPlan)
        return plan

    def _is_unit(self, ref: TypeRef) -> bool:
        return isinstance(self._graph.resolve(ref), FixedRef)

    def _has_rust_default(self, descriptor: FieldDescriptor, field_plan: FieldPlan) -> bool:
        return stores_default(self._graph, descriptor, field_plan)

    def _field_type(self, node: ResolvedType, descriptor: FieldDescriptor, field_plan: FieldPlan) -> str:
        field_type = self._types.type_of(descriptor.type, node.name)
        if field_plan.presence == Presence.REQUIRED or self._has_rust_default(descriptor, field_plan):
            return field_type
        return f"Option<{field_type}>"

    def _present_condition(self, node: ResolvedType, descriptor: FieldDescriptor, field_plan: FieldPlan) -> str | None:
        """Return the Rust condition under which an optional field is written."""
        access = f"self.{rust_field_name(field_plan.name)}"
        if field_plan.presence in (Presence.REQUIRED, Presence.FIXED):
            return None
        if self._has_rust_default(descriptor, field_plan):
            assert field_plan.default is not None
            return f"{access} != {_rust_value(field_plan.default)}"
        return f"{access}.is_some()"


def _local(name: str) -> str:
    return f"field_{name}"


def _receiver(expr: str) -> str:
    return expr if expr.isidentifier() else f"({expr})"


def _option(value: int | None) -> str:
    return "None" if value is None else f"Some({value})"


def _deref(expr: str) -> str:
    """Return the value behind the reference ``expr`` of a ``Copy`` type."""
    if expr.startswith("&") and re.fullmatch(r"[\w.#]+", expr[1:]):
        return expr[1:]
    return f"*{expr}"


def _write_primitive(primitive: Primitive, expr: str) -> str:
    if primitive in _UNSIGNED:
        return f"serializer.write_unsigned_integer({_deref(expr)} as u64)?;"
    if primitive.is_integer:
        return f"write_int(serializer, {_deref(expr)} as i64)?;"
    if primitive == Primitive.TEXT:
        return f"serializer.write_text({expr})?;"
    if primitive == Primitive.BYTES:
        return f"serializer.write_bytes({expr})?;"
    if primitive == Primitive.BOOL:
        return f"serializer.write_special(Special::Bool({_deref(expr)}))?;"
    if primitive == Primitive.NULL:
        return "serializer.write_special(Special::Null)?;"
    return f"serializer.write_special(Special::Float({_deref(expr)} as f64))?;"


def _read_primitive(primitive: Primitive) -> str:
    if primitive in (Primitive.UINT, Primitive.U64):
        return "read_uint(raw)?"
    if primitive == Primitive.NINT:
        return "read_nint(raw)?"
    if primitive in _NARROWED:
        rust_type, low, high = _NARROWED[primitive]
        return f"narrow::<{rust_type}>(read_integer(raw)?, {low}, {high})?"
    if primitive == Primitive.TEXT:
        return "read_text(raw)?"
    if primitive == Primitive.BYTES:
        return "read_bytes(raw)?"
    if primitive == Primitive.BOOL:
        return "read_bool(raw)?"
    if primitive == Primitive.NULL:
        return "read_null(raw)?"
    if primitive == Primitive.FLOAT32:
        return "(read_float(raw)? as f32)"
    return "read_float(raw)?"


def _byte_list(value: FixedValue) -> str:
    data = bytes.fromhex(str(value.value))
    return ", ".join(f"0x{b:02x}" for b in data)


def _float(value: FixedValue) -> str:
    text = repr(float(value.value))  # type: ignore[arg-type]
    return text if any(c in text for c in ".e") else f"{text}.0"


def _write_fixed(value: FixedValue) -> str:
    """Return a statement writing a literal value."""
    if value.kind == ValueKind.UINT:
        return f"serializer.write_unsigned_integer({value.value})?;"
    if value.kind == ValueKind.NINT:
        return f"serializer.write_negative_integer({value.value})?;"
    if value.kind == ValueKind.TEXT:
        return f"serializer.write_text({rust_string(str(value.value))})?;"
    if value.kind == ValueKind.BYTES:
        return f"serializer.write_bytes(&[{_byte_list(value)}])?;"
    if value.kind == ValueKind.BOOL:
        return f"serializer.write_special(Special::Bool({'true' if value.value else 'false'}))?;"
    if value.kind == ValueKind.NULL:
        return "serializer.write_special(Special::Null)?;"
    return f"serializer.write_special(Special::Float({_float(value)}))?;"


def _literal_expr(value: FixedValue) -> str:
    """Return a ``Literal`` constructor for comparison with decoded values."""
    if value.kind == ValueKind.UINT:
        return f"Literal::Uint({value.value})"
    if value.kind == ValueKind.NINT:
        return f"Literal::Nint({value.value})"
    if value.kind == ValueKind.TEXT:
        return f"Literal::Text({rust_string(str(value.value))}.to_owned())"
    if value.kind == ValueKind.BYTES:
        return f"Literal::Bytes(vec![{_byte_list(value)}])"
    if value.kind == ValueKind.BOOL:
        return f"Literal::Bool({'true' if value.value else 'false'})"
    if value.kind == ValueKind.NULL:
        return "Literal::Null"
    return f"Literal::Float({_float(value)})"


def _rust_value(value: FixedValue) -> str:
    """Return a Rust expression of the literal's natural type."""
    if value.kind in (ValueKind.UINT, ValueKind.NINT):
        return str(value.value)
    if value.kind == ValueKind.TEXT:
        return f"{rust_string(str(value.value))}.to_owned()"
    if value.kind == ValueKind.BYTES:
        return f"vec![{_byte_list(value)}]"
    if value.kind == ValueKind.BOOL:
        return "true" if value.value else "false"
    if value.kind == ValueKind.NULL:
        return "()"
    return _float(value)
