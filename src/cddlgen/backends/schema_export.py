# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Export of the resolved type graph as a versioned JSON document.

The export lists every node with its shape, fields (by reference),
optionality, occurrence, keys and alternatives, together with the
encoding strategy chosen by the planner. It is stored compactly and
versioned so consumers can detect format changes; :func:`read_graph_export`
rebuilds an equivalent :class:`TypeGraph`.
"""

from __future__ import annotations

import json
from typing import Any

from cddlgen.backends.options import BackendOptions
from cddlgen.model.ast import FixedValue, Occurrence, ValueKind
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
from cddlgen.model.plan import ChoicePlan, EncodingPlan, RecordPlan

# ###############
# Public Interface
# ###############

GRAPH_EXPORT_VERSION = "1"


def render(graph: TypeGraph, plan: EncodingPlan, options: BackendOptions) -> dict[str, str]:
    return {"schema/graph.json": export_graph(graph, plan)}


def export_graph(graph: TypeGraph, plan: EncodingPlan | None = None) -> str:
    """Serialize a type graph (and optionally its encoding plan) to compact JSON."""
    return json.dumps(_graph_to_dict(graph, plan), separators=(",", ":"))


def read_graph_export(data: str) -> TypeGraph:
    """Rebuild a type graph from a document produced by :func:`export_graph`.

    Raises:
        ValueError: If the export format version is not recognised.
    """
    obj = json.loads(data)
    version = obj.get("v")
    if version != GRAPH_EXPORT_VERSION:
        raise ValueError(f"Unsupported graph export version: {version!r}")
    nodes = [_node_from_dict(n) for n in obj.get("nodes", [])]
    instantiations = {
        GenericInstantiation(rule=i["rule"], args=tuple(i["args"])): i["node"] for i in obj.get("instantiations", [])
    }
    return TypeGraph(
        {node.name: node for node in nodes},
        obj.get("roots", []),
        instantiations,
        obj.get("back_references", []),
    )


# ################
# Implementation
# ################


def _graph_to_dict(graph: TypeGraph, plan: EncodingPlan | None) -> dict[str, Any]:
    nodes = []
    for node in graph:
        d = _node_to_dict(node)
        if plan is not None and node.name in plan:
            d["encoding"] = _encoding_to_dict(plan, node.name)
        nodes.append(d)
    return {
        "v": GRAPH_EXPORT_VERSION,
        "roots": list(graph.roots),
        "back_references": sorted(graph.back_references),
        "instantiations": [
            {"rule": i.rule, "args": list(i.args), "node": name} for i, name in graph.instantiations.items()
        ],
        "nodes": nodes,
    }


def _encoding_to_dict(plan: EncodingPlan, name: str) -> dict[str, Any]:
    """Summarize the plan of one node: its strategy and the field presences."""
    node_plan = plan[name]
    d: dict[str, Any] = {"kind": node_plan.kind}
    if isinstance(node_plan, RecordPlan):
        d["container"] = node_plan.container.value
        d["presence"] = {f.name: f.presence.value for f in node_plan.fields}
        if node_plan.emission_order:
            d["order"] = list(node_plan.emission_order)
    elif isinstance(node_plan, ChoicePlan):
        d["strategy"] = node_plan.strategy.value
        if node_plan.overlaps:
            d["overlaps"] = [list(pair) for pair in node_plan.overlaps]
    return d


def _node_to_dict(node: ResolvedType) -> dict[str, Any]:
    d: dict[str, Any] = {"name": node.name, "ident": node.ident, "shape": node.shape.value}
    if node.fields:
        d["fields"] = [_field_to_dict(f) for f in node.fields]
    if node.representation is not None:
        d["repr"] = node.representation.value
    if node.alternatives:
        d["alternatives"] = [_alternative_to_dict(a) for a in node.alternatives]
    for key, ref in (("target", node.target), ("key", node.key_type), ("value", node.value_type)):
        if ref is not None:
            d[key] = _type_ref_to_dict(ref)
    if node.occurrence is not None:
        d["occ"] = _occurrence_to_dict(node.occurrence)
    if node.constraint is not None:
        d["constraint"] = {"min": node.constraint.min, "max": node.constraint.max, "on": node.constraint.applies_to}
    if node.tag is not None:
        d["tag"] = node.tag
    if node.doc:
        d["doc"] = list(node.doc)
    if node.instantiation is not None:
        d["instance"] = {"rule": node.instantiation.rule, "args": list(node.instantiation.args)}
    if node.recursive:
        d["recursive"] = True
    if node.synthesized:
        d["synthesized"] = True
    if node.origin is not None:
        d["origin"] = node.origin
    return d


def _node_from_dict(obj: dict[str, Any]) -> ResolvedType:
    constraint = obj.get("constraint")
    instance = obj.get("instance")
    return ResolvedType(
        name=obj["name"],
        ident=obj["ident"],
        shape=Shape(obj["shape"]),
        fields=tuple(_field_from_dict(f) for f in obj.get("fields", [])),
        representation=Representation(obj["repr"]) if "repr" in obj else None,
        alternatives=tuple(_alternative_from_dict(a) for a in obj.get("alternatives", [])),
        target=_type_ref_from_dict(obj["target"]) if "target" in obj else None,
        key_type=_type_ref_from_dict(obj["key"]) if "key" in obj else None,
        value_type=_type_ref_from_dict(obj["value"]) if "value" in obj else None,
        occurrence=_occurrence_from_dict(obj["occ"]) if "occ" in obj else None,
        constraint=(
            Constraint(min=constraint["min"], max=constraint["max"], applies_to=constraint["on"])
            if constraint is not None
            else None
        ),
        tag=obj.get("tag"),
        doc=tuple(obj.get("doc", [])),
        instantiation=(
            GenericInstantiation(rule=instance["rule"], args=tuple(instance["args"])) if instance is not None else None
        ),
        recursive=obj.get("recursive", False),
        synthesized=obj.get("synthesized", False),
        origin=obj.get("origin"),
    )


def _field_to_dict(f: FieldDescriptor) -> dict[str, Any]:
    d: dict[str, Any] = {"name": f.name, "type": _type_ref_to_dict(f.type)}
    if f.optional:
        d["optional"] = True
    if f.occurrence != Occurrence():
        d["occ"] = _occurrence_to_dict(f.occurrence)
    if f.key is not None:
        d["key"] = _value_to_dict(f.key)
    if f.default is not None:
        d["default"] = _value_to_dict(f.default)
    if f.doc:
        d["doc"] = list(f.doc)
    return d


def _field_from_dict(obj: dict[str, Any]) -> FieldDescriptor:
    return FieldDescriptor(
        name=obj["name"],
        type=_type_ref_from_dict(obj["type"]),
        optional=obj.get("optional", False),
        occurrence=_occurrence_from_dict(obj["occ"]) if "occ" in obj else Occurrence(),
        key=_value_from_dict(obj["key"]) if "key" in obj else None,
        default=_value_from_dict(obj["default"]) if "default" in obj else None,
        doc=tuple(obj.get("doc", [])),
    )


def _alternative_to_dict(a: Alternative) -> dict[str, Any]:
    d: dict[str, Any] = {"name": a.name, "type": _type_ref_to_dict(a.type)}
    if a.doc:
        d["doc"] = list(a.doc)
    return d


def _alternative_from_dict(obj: dict[str, Any]) -> Alternative:
    return Alternative(name=obj["name"], type=_type_ref_from_dict(obj["type"]), doc=tuple(obj.get("doc", [])))


def _occurrence_to_dict(occurrence: Occurrence) -> dict[str, Any]:
    return {"min": occurrence.min, "max": occurrence.max}


def _occurrence_from_dict(obj: dict[str, Any]) -> Occurrence:
    return Occurrence(min=obj["min"], max=obj["max"])


def _value_to_dict(value: FixedValue) -> dict[str, Any]:
    return {"k": value.kind.value, "v": value.value}


def _value_from_dict(obj: dict[str, Any]) -> FixedValue:
    return FixedValue(kind=ValueKind(obj["k"]), value=obj.get("v"))


def _type_ref_to_dict(ref: TypeRef) -> dict[str, Any]:
    """Encode a TypeRef as a tagged dict with compact keys."""
    if isinstance(ref, PrimitiveRef):
        return {"k": "primitive", "t": ref.primitive.value}
    if isinstance(ref, NamedRef):
        return {"k": "named", "n": ref.name}
    if isinstance(ref, ArrayRef):
        d: dict[str, Any] = {"k": "array", "e": _type_ref_to_dict(ref.element)}
        if (ref.min_items, ref.max_items) != (0, None):
            d["min"] = ref.min_items
            d["max"] = ref.max_items
        return d
    if isinstance(ref, MapRef):
        return {"k": "map", "key": _type_ref_to_dict(ref.key), "val": _type_ref_to_dict(ref.value)}
    if isinstance(ref, OptionalRef):
        return {"k": "optional", "i": _type_ref_to_dict(ref.inner)}
    if isinstance(ref, TaggedRef):
        return {"k": "tagged", "tag": ref.tag, "i": _type_ref_to_dict(ref.inner)}
    if isinstance(ref, FixedRef):
        return {"k": "fixed", "value": _value_to_dict(ref.value)}
    # CborBytesRef is the only remaining variant.
    assert isinstance(ref, CborBytesRef)
    return {"k": "cbor", "i": _type_ref_to_dict(ref.inner)}


def _type_ref_from_dict(obj: dict[str, Any]) -> TypeRef:
    """Decode a TypeRef from a tagged dict."""
    kind = obj["k"]
    if kind == "primitive":
        return PrimitiveRef(primitive=Primitive(obj["t"]))
    if kind == "named":
        return NamedRef(name=obj["n"])
    if kind == "array":
        return ArrayRef(element=_type_ref_from_dict(obj["e"]), min_items=obj.get("min", 0), max_items=obj.get("max"))
    if kind == "map":
        return MapRef(key=_type_ref_from_dict(obj["key"]), value=_type_ref_from_dict(obj["val"]))
    if kind == "optional":
        return OptionalRef(inner=_type_ref_from_dict(obj["i"]))
    if kind == "tagged":
        return TaggedRef(tag=obj["tag"], inner=_type_ref_from_dict(obj["i"]))
    if kind == "fixed":
        return FixedRef(value=_value_from_dict(obj["value"]))
    if kind == "cbor":
        return CborBytesRef(inner=_type_ref_from_dict(obj["i"]))
    raise ValueError(f"Unknown type ref kind: {kind!r}")
