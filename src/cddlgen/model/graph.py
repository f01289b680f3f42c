# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Resolved type graph produced by the type graph builder.

Nodes reference each other by stable name (:class:`NamedRef`), never by
ownership, so recursive and mutually recursive types are plain cycles in the
graph. Anonymous structure (arrays, maps, optionals, tags, literals) is kept
inline as structural references.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import Field as _Field

from cddlgen.errors import UnresolvedReference
from cddlgen.model.ast import FixedValue, Occurrence

# ###############
# Public Interface
# ###############


class Primitive(Enum):
    """Scalar types every backend knows how to encode."""

    UINT = "uint"
    NINT = "nint"
    INT = "int"
    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    TEXT = "text"
    BYTES = "bytes"
    BOOL = "bool"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    NULL = "null"

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_BOUNDS

    @property
    def bounds(self) -> tuple[int | None, int | None]:
        """Inclusive value bounds for integer primitives, ``None`` when open."""
        return _INTEGER_BOUNDS.get(self, (None, None))


class Shape(Enum):
    """Structural category of a resolved type."""

    RECORD = "record"
    ARRAY = "array"
    CHOICE = "choice"
    WRAPPED_PRIMITIVE = "wrapped_primitive"
    MAP_FIXED_KEYS = "map_fixed_keys"
    MAP_VARIABLE_KEYS = "map_variable_keys"
    ALIAS = "alias"


class Representation(Enum):
    """Container a record was declared with: ``[...]`` or ``{...}``."""

    ARRAY = "array"
    MAP = "map"


class PrimitiveRef(BaseModel):
    """Reference to a primitive type."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["primitive"] = "primitive"
    primitive: Primitive


class NamedRef(BaseModel):
    """Reference to another node of the graph by stable name."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["named"] = "named"
    name: str


class ArrayRef(BaseModel):
    """An anonymous homogeneous array."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["array"] = "array"
    element: TypeRef
    min_items: int = 0
    max_items: int | None = None


class MapRef(BaseModel):
    """An anonymous table map."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["map"] = "map"
    key: TypeRef
    value: TypeRef


class OptionalRef(BaseModel):
    """``T / null``: a value that may be encoded as null."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["optional"] = "optional"
    inner: TypeRef


class TaggedRef(BaseModel):
    """A value wrapped in CBOR tag ``tag``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["tagged"] = "tagged"
    tag: int
    inner: TypeRef


class FixedRef(BaseModel):
    """A single literal value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["fixed"] = "fixed"
    value: FixedValue


class CborBytesRef(BaseModel):
    """A byte string holding the CBOR encoding of ``inner`` (``bytes .cbor T``)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cbor"] = "cbor"
    inner: TypeRef


# A type reference. The `kind` discriminator keeps (de)serialization unambiguous.
TypeRef = Annotated[
    PrimitiveRef | NamedRef | ArrayRef | MapRef | OptionalRef | TaggedRef | FixedRef | CborBytesRef,
    _Field(discriminator="kind"),
]


class Constraint(BaseModel):
    """Inclusive bounds on a value or on a length."""

    model_config = ConfigDict(frozen=True)

    min: int | None = None
    max: int | None = None
    applies_to: Literal["value", "length"] = "value"

    def admits(self, amount: int) -> bool:
        return (self.min is None or amount >= self.min) and (self.max is None or amount <= self.max)


class FieldDescriptor(BaseModel):
    """One field of a record.

    Attributes:
        name: Field identifier (snake_case, unique within the record).
        type: Target type reference.
        optional: True if the field may be absent.
        occurrence: Occurrence range exactly as declared.
        key: Map key for fields of map records; ``None`` in array records.
        default: Value assumed when an optional field is absent.
        doc: Documentation lines from schema comments.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: TypeRef
    optional: bool = False
    occurrence: Occurrence = Occurrence()
    key: FixedValue | None = None
    default: FixedValue | None = None
    doc: tuple[str, ...] = ()


class Alternative(BaseModel):
    """One alternative of a choice, in declaration order."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: TypeRef
    doc: tuple[str, ...] = ()


class GenericInstantiation(BaseModel):
    """A generic rule bound to concrete arguments; the monomorphization key."""

    model_config = ConfigDict(frozen=True)

    rule: str
    args: tuple[str, ...]

    @property
    def stable_name(self) -> str:
        return f"{self.rule}<{', '.join(self.args)}>"


class ResolvedType(BaseModel):
    """A fully resolved, immutable node of the type graph.

    Which attributes are populated depends on ``shape``:

    * RECORD: ``fields`` and ``representation``.
    * ARRAY: ``target`` (element) and ``occurrence`` (length bounds).
    * CHOICE: ``alternatives``.
    * WRAPPED_PRIMITIVE: ``target`` and optionally ``constraint``.
    * MAP_FIXED_KEYS / MAP_VARIABLE_KEYS: ``key_type``, ``value_type`` and
      ``occurrence`` (entry count bounds).
    * ALIAS: ``target``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    ident: str
    shape: Shape
    fields: tuple[FieldDescriptor, ...] = ()
    representation: Representation | None = None
    alternatives: tuple[Alternative, ...] = ()
    target: TypeRef | None = None
    key_type: TypeRef | None = None
    value_type: TypeRef | None = None
    occurrence: Occurrence | None = None
    constraint: Constraint | None = None
    tag: int | None = None
    doc: tuple[str, ...] = ()
    instantiation: GenericInstantiation | None = None
    recursive: bool = False
    synthesized: bool = False
    origin: str | None = None


def ref_key(ref: TypeRef) -> str:
    """Return the canonical text of a type reference.

    The key is used to name generic instances and to deduplicate them, so two
    references produce the same key exactly when they denote the same type.
    """
    if isinstance(ref, PrimitiveRef):
        return ref.primitive.value
    if isinstance(ref, NamedRef):
        return ref.name
    if isinstance(ref, ArrayRef):
        if (ref.min_items, ref.max_items) == (0, None):
            occurrence = "* "
        elif (ref.min_items, ref.max_items) == (1, None):
            occurrence = "+ "
        else:
            occurrence = f"{ref.min_items}*{'' if ref.max_items is None else ref.max_items} "
        return f"[{occurrence}{ref_key(ref.element)}]"
    if isinstance(ref, MapRef):
        return f"{{* {ref_key(ref.key)} => {ref_key(ref.value)}}}"
    if isinstance(ref, OptionalRef):
        return f"{ref_key(ref.inner)} / null"
    if isinstance(ref, TaggedRef):
        return f"#6.{ref.tag}({ref_key(ref.inner)})"
    if isinstance(ref, FixedRef):
        return ref.value.describe()
    return f"bytes .cbor {ref_key(ref.inner)}"


def named_references(ref: TypeRef) -> list[str]:
    """Return the stable names referenced by ``ref``, outermost first."""
    if isinstance(ref, NamedRef):
        return [ref.name]
    if isinstance(ref, ArrayRef):
        return named_references(ref.element)
    if isinstance(ref, MapRef):
        return named_references(ref.key) + named_references(ref.value)
    if isinstance(ref, (OptionalRef, TaggedRef, CborBytesRef)):
        return named_references(ref.inner)
    return []


def node_references(node: ResolvedType) -> list[TypeRef]:
    """Return every type reference held directly by ``node``."""
    refs: list[TypeRef] = [f.type for f in node.fields]
    refs.extend(a.type for a in node.alternatives)
    refs.extend(r for r in (node.target, node.key_type, node.value_type) if r is not None)
    return refs


class TypeGraph:
    """Closed, immutable mapping from stable name to resolved type.

    Every :class:`NamedRef` reachable from any node names a node of the graph.
    The graph is safe to share between concurrently running backends.
    """

    def __init__(
        self,
        nodes: Mapping[str, ResolvedType],
        roots: Sequence[str],
        instantiations: Mapping[GenericInstantiation, str] | None = None,
        back_references: Sequence[str] = (),
    ) -> None:
        self._nodes: Mapping[str, ResolvedType] = MappingProxyType(dict(nodes))
        self._roots = tuple(roots)
        self._instantiations: Mapping[GenericInstantiation, str] = MappingProxyType(dict(instantiations or {}))
        self._back_references = frozenset(back_references)
        self._check_closed()

    @property
    def nodes(self) -> Mapping[str, ResolvedType]:
        return self._nodes

    @property
    def roots(self) -> tuple[str, ...]:
        return self._roots

    @property
    def instantiations(self) -> Mapping[GenericInstantiation, str]:
        return self._instantiations

    @property
    def back_references(self) -> frozenset[str]:
        return self._back_references

    def __getitem__(self, name: str) -> ResolvedType:
        return self._nodes[name]

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[ResolvedType]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def instance(self, rule: str, *args: str) -> ResolvedType:
        """Return the node monomorphized for ``rule`` with argument keys ``args``."""
        return self._nodes[self._instantiations[GenericInstantiation(rule=rule, args=tuple(args))]]

    def resolve(self, ref: TypeRef) -> TypeRef:
        """Follow named references through alias nodes.

        Returns the first reference that is not a NamedRef to an alias: either
        a structural reference or a NamedRef to a non-alias node.
        """
        seen: set[str] = set()
        while isinstance(ref, NamedRef) and ref.name not in seen:
            node = self._nodes[ref.name]
            if node.shape != Shape.ALIAS or node.target is None:
                return ref
            seen.add(ref.name)
            ref = node.target
        return ref

    def dependencies(self, name: str) -> list[str]:
        """Return the distinct stable names ``name`` refers to, in field order."""
        result: list[str] = []
        for ref in node_references(self._nodes[name]):
            for dep in named_references(ref):
                if dep not in result:
                    result.append(dep)
        return result

    def strongly_connected_components(self) -> list[list[str]]:
        """Return the strongly connected components of the reference graph.

        Components are listed in reverse topological order (dependencies
        first), which is the order in which Tarjan's algorithm completes them.
        """
        index_of: dict[str, int] = {}
        low_link: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        components: list[list[str]] = []

        def visit(name: str) -> None:
            index_of[name] = low_link[name] = len(index_of)
            stack.append(name)
            on_stack.add(name)
            for dep in self.dependencies(name):
                if dep not in index_of:
                    visit(dep)
                    low_link[name] = min(low_link[name], low_link[dep])
                elif dep in on_stack:
                    low_link[name] = min(low_link[name], index_of[dep])
            if low_link[name] == index_of[name]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == name:
                        break
                components.append(component)

        for name in self._nodes:
            if name not in index_of:
                visit(name)
        return components

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def _check_closed(self) -> None:
        """Raise UnresolvedReference if any node references a missing name."""
        for node in self._nodes.values():
            for ref in node_references(node):
                for dep in named_references(ref):
                    if dep not in self._nodes:
                        raise UnresolvedReference(dep, node.name)
        for root in self._roots:
            if root not in self._nodes:
                raise UnresolvedReference(root, None)


# ################
# Implementation
# ################

_INTEGER_BOUNDS: dict[Primitive, tuple[int | None, int | None]] = {
    Primitive.UINT: (0, 2**64 - 1),
    Primitive.NINT: (-(2**64), -1),
    Primitive.INT: (-(2**64), 2**64 - 1),
    Primitive.U8: (0, 2**8 - 1),
    Primitive.U16: (0, 2**16 - 1),
    Primitive.U32: (0, 2**32 - 1),
    Primitive.U64: (0, 2**64 - 1),
    Primitive.I8: (-(2**7), 2**7 - 1),
    Primitive.I16: (-(2**15), 2**15 - 1),
    Primitive.I32: (-(2**31), 2**31 - 1),
    Primitive.I64: (-(2**63), 2**63 - 1),
}

# Resolve forward references for models that use TypeRef.
ArrayRef.model_rebuild()
MapRef.model_rebuild()
OptionalRef.model_rebuild()
TaggedRef.model_rebuild()
CborBytesRef.model_rebuild()
FieldDescriptor.model_rebuild()
Alternative.model_rebuild()
ResolvedType.model_rebuild()
