# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Python backend: a self-contained reference codec built on cbor2.

The generated module holds one dataclass or enum per node of the type graph.
Records and choices are described by layout tables that a small runtime,
shipped in the same module, interprets exactly as the encoding plan says.
"""

from __future__ import annotations

import keyword
import logging

from cddlgen.backends.options import BackendOptions
from cddlgen.backends.writer import CodeWriter, render_template
from cddlgen.compiler.naming import NameAllocator, screaming_snake_case, snake_case
from cddlgen.model.ast import FixedValue, ValueKind
from cddlgen.model.graph import (
    ArrayRef,
    CborBytesRef,
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
    EncodingPlan,
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
    """Render the Python module ``python/<module>.py``."""
    return {f"python/{options.module_name}.py": _PythonGenerator(graph, plan, options).module()}


# ################
# Implementation
# ################

_RUNTIME_NAMES = {"DecodeError", "Mapping", "cbor2", "dataclass", "enum", "io"}

_METHOD_NAMES = {"to_cbor_value", "from_cbor_value", "to_cbor_bytes", "from_cbor_bytes"}

_PRESENCE_CONSTANTS = {
    Presence.REQUIRED: "_REQUIRED",
    Presence.OMIT_IF_ABSENT: "_OMIT_IF_ABSENT",
    Presence.OMIT_IF_DEFAULT: "_OMIT_IF_DEFAULT",
    Presence.FIXED: "_FIXED",
}

_PYTHON_TYPES = {
    Primitive.TEXT: "str",
    Primitive.BYTES: "bytes",
    Primitive.BOOL: "bool",
    Primitive.FLOAT32: "float",
    Primitive.FLOAT64: "float",
    Primitive.NULL: "None",
}


class _PythonGenerator:
    def __init__(self, graph: TypeGraph, plan: EncodingPlan, options: BackendOptions) -> None:
        self._graph = graph
        self._plan = plan
        self._options = options
        allocator = NameAllocator(set(_RUNTIME_NAMES))
        self._class_names = {node.name: allocator.allocate(node.ident) for node in graph}
        self._indefinite = plan.policy.length_encoding == LengthEncoding.INDEFINITE

    def module(self) -> str:
        definitions: list[str] = []
        aliases: list[str] = []
        for node in self._graph:
            if node.shape in (Shape.ALIAS, Shape.ARRAY, Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
                aliases.append(self._alias(node))
            elif node.shape == Shape.RECORD:
                definitions.append(self._record(node))
            elif node.shape == Shape.CHOICE:
                definitions.append(self._choice(node))
            else:
                definitions.append(self._wrapped(node))
        logger.debug("Python module: %d classes, %d aliases", len(definitions), len(aliases))
        return render_template(
            "python/module.py.j2",
            generator_version=self._options.generator_version,
            lib_name=self._options.lib_name,
            definitions=definitions,
            aliases=aliases,
        )

    # ------------------------------------------------------------------
    # Node kinds
    # ------------------------------------------------------------------

    def _record(self, node: ResolvedType) -> str:
        plan = self._plan[node.name]
        assert isinstance(plan, RecordPlan)
        name = self._class_names[node.name]
        layout = f"_{screaming_snake_case(name)}_LAYOUT"
        attributes = _attribute_names([f.name for f in node.fields])
        descriptors = {f.name: f for f in node.fields}

        w = CodeWriter()
        w.line(f"{layout} = _RecordLayout(")
        with w.indented():
            w.line(f"{name!r},")
            w.line(f"{plan.container.value!r},")
            w.line("(")
            with w.indented():
                for field_plan in plan.fields:
                    descriptor = descriptors[field_plan.name]
                    arguments = [repr(attributes[field_plan.name]), self._codec(descriptor.type)]
                    if field_plan.presence != Presence.REQUIRED:
                        arguments.append(f"presence={_PRESENCE_CONSTANTS[field_plan.presence]}")
                    if field_plan.key is not None:
                        arguments.append(f"key={_literal(field_plan.key)}")
                    if field_plan.value is not None:
                        arguments.append(f"value={_literal(field_plan.value)}")
                    if field_plan.default is not None:
                        arguments.append(f"default={_literal(field_plan.default)}")
                    w.line(f"_FieldLayout({', '.join(arguments)}),")
            w.line("),")
            order = ", ".join(repr(attributes[n]) for n in plan.emission_order)
            w.line(f"emission_order=({order}{',' if len(plan.emission_order) == 1 else ''}),")
            w.line(f"min_length={plan.min_length},")
            w.line(f"max_length={plan.max_length},")
            w.line(f"reject_unknown_keys={plan.reject_unknown_keys},")
            w.line(f"tag={plan.tag},")
            w.line(f"indefinite={self._indefinite},")
        w.line(")")
        w.line()
        w.line()
        w.line("@_register")
        w.line("@dataclass(kw_only=True)")
        w.line(f"class {name}(_CborType):")
        with w.indented():
            self._docstring(w, node.doc)
            stored = [f for f in plan.fields if f.presence != Presence.FIXED]
            for field_plan in stored:
                descriptor = descriptors[field_plan.name]
                w.doc(descriptor.doc, "#: ")
                annotation = self._annotation(descriptor.type)
                attribute = attributes[field_plan.name]
                if field_plan.presence == Presence.OMIT_IF_DEFAULT and field_plan.default is not None:
                    w.line(f"{attribute}: {annotation} = {_literal(field_plan.default)}")
                elif field_plan.presence == Presence.OMIT_IF_ABSENT:
                    w.line(f"{attribute}: {_optional(annotation)} = None")
                else:
                    w.line(f"{attribute}: {annotation}")
            if stored:
                w.line()
            w.line("def to_cbor_value(self):")
            with w.indented():
                w.line(f"return _encode_record(self, {layout})")
            w.line()
            w.line("@classmethod")
            w.line("def from_cbor_value(cls, item, path=()):")
            with w.indented():
                w.line(f"return cls(**_decode_record(item, path, {layout}))")
        return w.render()

    def _choice(self, node: ResolvedType) -> str:
        plan = self._plan[node.name]
        assert isinstance(plan, ChoicePlan)
        name = self._class_names[node.name]
        if plan.strategy == ChoiceStrategy.ENUM_VALUE:
            return self._literal_enum(node, plan, name)

        kind = f"{name}Kind"
        layout = f"_{screaming_snake_case(name)}_LAYOUT"
        members = _member_names([a.name for a in node.alternatives])
        constructors = NameAllocator(set(_METHOD_NAMES) | {"kind", "value"})
        alternatives = {a.name: a for a in node.alternatives}

        w = CodeWriter()
        w.line(f"class {kind}(enum.Enum):")
        with w.indented():
            for alternative in node.alternatives:
                w.line(f"{members[alternative.name]} = {alternative.name!r}")
        w.line()
        w.line()
        w.line(f"{layout} = _ChoiceLayout(")
        with w.indented():
            w.line(f"{name!r},")
            w.line(f"{plan.strategy.value!r},")
            w.line("(")
            with w.indented():
                for variant in plan.variants:
                    arguments = [f"{kind}.{members[variant.name]}", self._codec(alternatives[variant.name].type)]
                    if variant.discriminant is not None:
                        arguments.append(f"discriminant={_literal(variant.discriminant)}")
                    if variant.cbor_tag is not None:
                        arguments.append(f"cbor_tag={variant.cbor_tag}")
                    w.line(f"_VariantLayout({', '.join(arguments)}),")
            w.line("),")
            if plan.discriminant_key is not None:
                w.line(f"discriminant_key={_literal(plan.discriminant_key)},")
            w.line(f"tag={plan.tag},")
        w.line(")")
        w.line()
        w.line()
        w.line("@_register")
        w.line("@dataclass(frozen=True)")
        w.line(f"class {name}(_CborType):")
        with w.indented():
            self._docstring(w, node.doc)
            w.line(f"kind: {kind}")
            w.line("value: object = None")
            for alternative in node.alternatives:
                w.line()
                constructor = constructors.allocate(_identifier(snake_case(alternative.name)))
                member = f"{kind}.{members[alternative.name]}"
                w.line("@classmethod")
                if isinstance(self._graph.resolve(alternative.type), FixedRef):
                    w.line(f"def {constructor}(cls):")
                    with w.indented():
                        self._docstring(w, alternative.doc)
                        w.line(f"return cls(kind={member})")
                else:
                    w.line(f"def {constructor}(cls, value):")
                    with w.indented():
                        self._docstring(w, alternative.doc)
                        w.line(f"return cls(kind={member}, value=value)")
            w.line()
            w.line("def to_cbor_value(self):")
            with w.indented():
                w.line(f"return _encode_choice(self, {layout})")
            w.line()
            w.line("@classmethod")
            w.line("def from_cbor_value(cls, item, path=()):")
            with w.indented():
                w.line(f"return _decode_choice(cls, item, path, {layout})")
        return w.render()

    def _literal_enum(self, node: ResolvedType, plan: ChoicePlan, name: str) -> str:
        members = _member_names([v.name for v in plan.variants])
        w = CodeWriter()
        w.line("@_register")
        w.line(f"class {name}(_CborType, enum.Enum):")
        with w.indented():
            self._docstring(w, node.doc)
            for position, variant in enumerate(plan.variants):
                assert variant.discriminant is not None
                w.line(f"{members[variant.name]} = {position}, {_literal(variant.discriminant)}")
            w.line()
            w.line("def __init__(self, position, literal):")
            with w.indented():
                w.line("self.literal = literal")
            w.line()
            w.line("def to_cbor_value(self):")
            with w.indented():
                w.line(f"return _encode_literal(self, {plan.tag})")
            w.line()
            w.line("@classmethod")
            w.line("def from_cbor_value(cls, item, path=()):")
            with w.indented():
                w.line(f"return _decode_literal(cls, item, path, {plan.tag})")
        return w.render()

    def _wrapped(self, node: ResolvedType) -> str:
        name = self._class_names[node.name]
        codec = f"_{screaming_snake_case(name)}_CODEC"
        assert node.target is not None
        w = CodeWriter()
        w.line(f"{codec} = {self._node_codec(node)}")
        w.line()
        w.line()
        w.line("@_register")
        w.line("@dataclass(frozen=True)")
        w.line(f"class {name}(_CborType):")
        with w.indented():
            self._docstring(w, node.doc)
            w.line(f"value: {self._annotation(node.target)}")
            w.line()
            w.line("def to_cbor_value(self):")
            with w.indented():
                w.line(f"return {codec}.encode(self.value)")
            w.line()
            w.line("@classmethod")
            w.line("def from_cbor_value(cls, item, path=()):")
            with w.indented():
                w.line(f"return cls(value={codec}.decode(item, path))")
        return w.render()

    def _alias(self, node: ResolvedType) -> str:
        name = self._class_names[node.name]
        function = snake_case(name)
        w = CodeWriter()
        w.doc(node.doc, "# ")
        w.line(f"{name} = {self._expand(node, frozenset({node.name}))}")
        w.line(f"_ALIASES[{name!r}] = {self._node_codec(node)}")
        w.line()
        w.line()
        w.line(f"def {function}_to_cbor_bytes(value):")
        with w.indented():
            w.line(f"return _dumps(_ALIASES[{name!r}].encode(value))")
        w.line()
        w.line()
        w.line(f"def {function}_from_cbor_bytes(data):")
        with w.indented():
            w.line(f"return _ALIASES[{name!r}].decode(_loads(data), ())")
        return w.render()

    # ------------------------------------------------------------------
    # Codecs
    # ------------------------------------------------------------------

    def _node_codec(self, node: ResolvedType) -> str:
        """Return the codec expression of an alias, array, table or wrapped node."""
        plan = self._plan[node.name]
        if node.shape == Shape.ARRAY:
            assert isinstance(plan, ArrayPlan) and node.target is not None
            codec = f"_Array({self._codec(node.target)}, {plan.min_items}, {plan.max_items}, {self._indefinite})"
        elif node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
            assert isinstance(plan, TablePlan) and node.key_type is not None and node.value_type is not None
            allowed = "None"
            if plan.allowed_keys:
                allowed = "(" + ", ".join(_literal(k) for k in plan.allowed_keys) + ",)"
            codec = (
                f"_Table({self._codec(node.key_type)}, {self._codec(node.value_type)}, "
                f"{plan.min_entries}, {plan.max_entries}, {allowed}, {plan.key_order.value!r}, {self._indefinite})"
            )
        elif node.shape == Shape.WRAPPED_PRIMITIVE and node.constraint is not None:
            assert node.target is not None
            codec = self._constrained_codec(node)
        else:
            assert node.target is not None
            codec = self._codec(node.target)
        if node.tag is not None and node.shape != Shape.ALIAS:
            codec = f"_Tagged({node.tag}, {codec})"
        return codec

    def _constrained_codec(self, node: ResolvedType) -> str:
        constraint = node.constraint
        assert constraint is not None and node.target is not None
        target = self._graph.resolve(node.target)
        if constraint.applies_to == "length" and isinstance(target, PrimitiveRef):
            python_type = _PYTHON_TYPES.get(target.primitive, "bytes")
            return f"_Sized({python_type}, {constraint.min or 0}, {constraint.max})"
        low, high = target.primitive.bounds if isinstance(target, PrimitiveRef) else (None, None)
        low = constraint.min if constraint.min is not None else low
        high = constraint.max if constraint.max is not None else high
        return f"_Int({low}, {high})"

    def _codec(self, ref: TypeRef) -> str:
        """Return a Python expression building the codec of ``ref``."""
        if isinstance(ref, PrimitiveRef):
            return _primitive_codec(ref.primitive)
        if isinstance(ref, NamedRef):
            return f"_Ref({self._class_names[ref.name]!r})"
        if isinstance(ref, ArrayRef):
            return f"_Array({self._codec(ref.element)}, {ref.min_items}, {ref.max_items}, {self._indefinite})"
        if isinstance(ref, MapRef):
            return (
                f"_Table({self._codec(ref.key)}, {self._codec(ref.value)}, "
                f"order={self._plan.policy.key_order.value!r}, indefinite={self._indefinite})"
            )
        if isinstance(ref, OptionalRef):
            return f"_Optional({self._codec(ref.inner)})"
        if isinstance(ref, TaggedRef):
            return f"_Tagged({ref.tag}, {self._codec(ref.inner)})"
        if isinstance(ref, FixedRef):
            return f"_Fixed({_literal(ref.value)})"
        return f"_CborBytes({self._codec(ref.inner)})"

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def _annotation(self, ref: TypeRef, seen: frozenset[str] = frozenset()) -> str:
        """Return the Python type of ``ref``, expanding aliases into their structure."""
        if isinstance(ref, PrimitiveRef):
            return _PYTHON_TYPES.get(ref.primitive, "int")
        if isinstance(ref, NamedRef):
            node = self._graph[ref.name]
            if node.shape in (Shape.RECORD, Shape.CHOICE, Shape.WRAPPED_PRIMITIVE):
                return self._class_names[ref.name]
            if ref.name in seen:
                return "object"
            return self._expand(node, seen | {ref.name})
        if isinstance(ref, ArrayRef):
            return f"list[{self._annotation(ref.element, seen)}]"
        if isinstance(ref, MapRef):
            return f"dict[{self._annotation(ref.key, seen)}, {self._annotation(ref.value, seen)}]"
        if isinstance(ref, OptionalRef):
            return _optional(self._annotation(ref.inner, seen))
        if isinstance(ref, FixedRef):
            return _literal_type(ref.value)
        return self._annotation(ref.inner, seen)

    def _expand(self, node: ResolvedType, seen: frozenset[str]) -> str:
        if node.shape == Shape.ARRAY:
            assert node.target is not None
            return f"list[{self._annotation(node.target, seen)}]"
        if node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
            assert node.key_type is not None and node.value_type is not None
            return f"dict[{self._annotation(node.key_type, seen)}, {self._annotation(node.value_type, seen)}]"
        assert node.target is not None
        return self._annotation(node.target, seen)

    @staticmethod
    def _docstring(w: CodeWriter, doc: tuple[str, ...]) -> None:
        if not doc:
            return
        lines = [line.replace("\\", "\\\\").replace('"""', '\\"\\"\\"') for line in doc]
        if len(lines) == 1:
            w.line(f'"""{lines[0].strip()}"""')
        else:
            w.line(f'"""{lines[0].strip()}')
            w.lines(lines[1:])
            w.line('"""')
        w.line()


def _primitive_codec(primitive: Primitive) -> str:
    if primitive.is_integer:
        low, high = primitive.bounds
        return f"_Int({low}, {high})"
    if primitive == Primitive.TEXT:
        return "_Sized(str)"
    if primitive == Primitive.BYTES:
        return "_Sized(bytes)"
    if primitive == Primitive.BOOL:
        return "_Bool()"
    if primitive == Primitive.NULL:
        return "_Null()"
    return "_Float()"


def _literal(value: FixedValue) -> str:
    return repr(value.python_value())


def _literal_type(value: FixedValue) -> str:
    return {
        ValueKind.UINT: "int",
        ValueKind.NINT: "int",
        ValueKind.FLOAT: "float",
        ValueKind.TEXT: "str",
        ValueKind.BYTES: "bytes",
        ValueKind.BOOL: "bool",
        ValueKind.NULL: "None",
    }[value.kind]


def _optional(annotation: str) -> str:
    if annotation == "None" or annotation.endswith("| None"):
        return annotation
    return f"{annotation} | None"


def _identifier(name: str) -> str:
    return f"{name}_" if keyword.iskeyword(name) else name


def _attribute_names(field_names: list[str]) -> dict[str, str]:
    """Map record field names to unique Python attribute names."""
    allocator = NameAllocator(set(_METHOD_NAMES))
    return {name: allocator.allocate(_identifier(name)) for name in field_names}


def _member_names(variant_names: list[str]) -> dict[str, str]:
    allocator = NameAllocator()
    result: dict[str, str] = {}
    for name in variant_names:
        member = screaming_snake_case(name).lstrip("_") or "VALUE"
        if member[0].isdigit():
            member = f"V{member}"
        result[name] = allocator.allocate(member)
    return result
