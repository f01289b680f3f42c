# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Draft-07 JSON Schema describing the generated types.

The schema describes the JSON view of the values: map records become
objects, array records become tuples, byte strings become hex text and
CBOR tags are transparent.
"""

from __future__ import annotations

import json
from typing import Any

from cddlgen.backends.options import BackendOptions
from cddlgen.compiler.naming import NameAllocator
from cddlgen.model.ast import FixedValue, ValueKind
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
from cddlgen.model.plan import Container, EncodingPlan, Presence, RecordPlan

# ###############
# Public Interface
# ###############

JSON_SCHEMA_DIALECT = "http://json-schema.org/draft-07/schema#"


def render(graph: TypeGraph, plan: EncodingPlan, options: BackendOptions) -> dict[str, str]:
    schema = build_json_schema(graph, plan, options.lib_name)
    return {f"schema/{options.lib_name}.schema.json": json.dumps(schema, indent=2) + "\n"}


def build_json_schema(graph: TypeGraph, plan: EncodingPlan, title: str) -> dict[str, Any]:
    """Return the JSON Schema document as a dict."""
    return _SchemaBuilder(graph, plan).document(title)


# ################
# Implementation
# ################

_PRIMITIVE_SCHEMAS: dict[Primitive, dict[str, Any]] = {
    Primitive.TEXT: {"type": "string"},
    Primitive.BYTES: {"type": "string", "contentEncoding": "base16"},
    Primitive.BOOL: {"type": "boolean"},
    Primitive.FLOAT32: {"type": "number"},
    Primitive.FLOAT64: {"type": "number"},
    Primitive.NULL: {"type": "null"},
}


class _SchemaBuilder:
    def __init__(self, graph: TypeGraph, plan: EncodingPlan) -> None:
        self._graph = graph
        self._plan = plan
        names = NameAllocator()
        self._names = {node.name: names.allocate(node.ident) for node in graph}

    def document(self, title: str) -> dict[str, Any]:
        d: dict[str, Any] = {
            "$schema": JSON_SCHEMA_DIALECT,
            "title": title,
            "definitions": {self._names[node.name]: self._node(node) for node in self._graph},
        }
        if self._graph.roots:
            d["anyOf"] = [self._reference(root) for root in self._graph.roots]
        return d

    def _reference(self, name: str) -> dict[str, Any]:
        return {"$ref": f"#/definitions/{self._names[name]}"}

    def _node(self, node: ResolvedType) -> dict[str, Any]:
        if node.shape == Shape.RECORD:
            schema = self._record(node)
        elif node.shape == Shape.CHOICE:
            literals = [self._graph.resolve(a.type) for a in node.alternatives]
            if all(isinstance(literal, FixedRef) for literal in literals):
                schema = {"enum": [_json_value(r.value) for r in literals if isinstance(r, FixedRef)]}
            else:
                schema = {"anyOf": [self._ref(a.type) for a in node.alternatives]}
        elif node.shape == Shape.ARRAY:
            assert node.target is not None
            occurrence = node.occurrence
            schema = self._ref(
                ArrayRef(
                    element=node.target,
                    min_items=occurrence.min if occurrence else 0,
                    max_items=occurrence.max if occurrence else None,
                )
            )
        elif node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
            assert node.key_type is not None and node.value_type is not None
            schema = self._ref(MapRef(key=node.key_type, value=node.value_type))
            if node.occurrence is not None:
                schema["minProperties"] = node.occurrence.min
                if node.occurrence.max is not None:
                    schema["maxProperties"] = node.occurrence.max
        else:
            assert node.target is not None
            schema = self._ref(node.target)
            if node.constraint is not None:
                self._constrain(schema, node)
        if node.doc:
            schema = {"description": _description(node.doc), **schema}
        return schema

    def _record(self, node: ResolvedType) -> dict[str, Any]:
        plan = self._plan[node.name]
        assert isinstance(plan, RecordPlan)
        descriptors = {f.name: f for f in node.fields}
        if plan.container == Container.ARRAY:
            items = []
            for field_plan in plan.fields:
                if field_plan.presence == Presence.FIXED and field_plan.value is not None:
                    items.append({"const": _json_value(field_plan.value)})
                else:
                    items.append(self._ref(descriptors[field_plan.name].type))
            return {
                "type": "array",
                "items": items,
                "additionalItems": False,
                "minItems": plan.min_length,
                "maxItems": plan.max_length,
            }
        properties: dict[str, Any] = {}
        required = []
        for field_plan in plan.fields:
            assert field_plan.key is not None
            key = str(field_plan.key.value)
            descriptor = descriptors[field_plan.name]
            if field_plan.presence == Presence.FIXED and field_plan.value is not None:
                properties[key] = {"const": _json_value(field_plan.value)}
            else:
                properties[key] = self._ref(descriptor.type)
            if field_plan.default is not None:
                properties[key]["default"] = _json_value(field_plan.default)
            if descriptor.doc:
                properties[key]["description"] = _description(descriptor.doc)
            if field_plan.presence in (Presence.REQUIRED, Presence.FIXED):
                required.append(key)
        d: dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            d["required"] = required
        if plan.reject_unknown_keys:
            d["additionalProperties"] = False
        return d

    def _constrain(self, schema: dict[str, Any], node: ResolvedType) -> None:
        constraint = node.constraint
        assert constraint is not None
        if constraint.applies_to == "length":
            is_text = schema.get("type") == "string"
            low, high = ("minLength", "maxLength") if is_text else ("minItems", "maxItems")
        else:
            low, high = "minimum", "maximum"
        if constraint.min is not None:
            schema[low] = constraint.min
        if constraint.max is not None:
            schema[high] = constraint.max

    def _ref(self, ref: TypeRef) -> dict[str, Any]:
        """Return a fresh schema for a type reference."""
        if isinstance(ref, PrimitiveRef):
            if ref.primitive.is_integer:
                low, high = ref.primitive.bounds
                schema: dict[str, Any] = {"type": "integer"}
                if low is not None:
                    schema["minimum"] = low
                if high is not None:
                    schema["maximum"] = high
                return schema
            return dict(_PRIMITIVE_SCHEMAS[ref.primitive])
        if isinstance(ref, NamedRef):
            return self._reference(ref.name)
        if isinstance(ref, ArrayRef):
            d: dict[str, Any] = {"type": "array", "items": self._ref(ref.element)}
            if ref.min_items:
                d["minItems"] = ref.min_items
            if ref.max_items is not None:
                d["maxItems"] = ref.max_items
            return d
        if isinstance(ref, MapRef):
            d = {"type": "object", "additionalProperties": self._ref(ref.value)}
            key = self._graph.resolve(ref.key)
            if isinstance(key, PrimitiveRef) and key.primitive.is_integer:
                d["propertyNames"] = {"pattern": "^-?[0-9]+$"}
            return d
        if isinstance(ref, OptionalRef):
            return {"anyOf": [self._ref(ref.inner), {"type": "null"}]}
        if isinstance(ref, FixedRef):
            return {"const": _json_value(ref.value)}
        return self._ref(ref.inner)


def _json_value(value: FixedValue) -> Any:
    if value.kind == ValueKind.BYTES:
        return str(value.value)
    return value.value


def _description(doc: tuple[str, ...]) -> str:
    return "\n".join(line.strip() for line in doc)
