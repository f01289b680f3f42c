# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Data model: the parsed schema, the resolved type graph and the encoding plan."""

from cddlgen.model.ast import FixedValue, Occurrence, RuleDef, Schema, ValueKind
from cddlgen.model.graph import (
    Alternative,
    ArrayRef,
    CborBytesRef,
    Constraint,
    FieldDescriptor,
    FixedRef,
    GenericInstantiation,
    MapRef,
    NamedRef,
    OptionalRef,
    Primitive,
    PrimitiveRef,
    Representation,
    ResolvedType,
    Shape,
    TaggedRef,
    TypeGraph,
    TypeRef,
)
from cddlgen.model.plan import (
    ChoicePlan,
    ChoiceStrategy,
    Container,
    EncodingPlan,
    EncodingPolicy,
    FieldPlan,
    KeyOrder,
    LengthEncoding,
    NodePlan,
    Presence,
    RecordPlan,
)

__all__ = [
    # Parsed schema
    "FixedValue",
    "Occurrence",
    "RuleDef",
    "Schema",
    "ValueKind",
    # Type graph
    "Alternative",
    "ArrayRef",
    "CborBytesRef",
    "Constraint",
    "FieldDescriptor",
    "FixedRef",
    "GenericInstantiation",
    "MapRef",
    "NamedRef",
    "OptionalRef",
    "Primitive",
    "PrimitiveRef",
    "Representation",
    "ResolvedType",
    "Shape",
    "TaggedRef",
    "TypeGraph",
    "TypeRef",
    # Encoding plan
    "ChoicePlan",
    "ChoiceStrategy",
    "Container",
    "EncodingPlan",
    "EncodingPolicy",
    "FieldPlan",
    "KeyOrder",
    "LengthEncoding",
    "NodePlan",
    "Presence",
    "RecordPlan",
]
