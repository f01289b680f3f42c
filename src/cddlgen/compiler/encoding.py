# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Encoding planner: decides the canonical CBOR layout of every resolved type.

Plans are derived purely from the type graph and the global
:class:`EncodingPolicy`; they can be recomputed at any time and are cached per
node by :class:`EncodingPlanner`.
"""

from __future__ import annotations

import logging
from itertools import combinations

from cddlgen.compiler.cbor import bytewise_key, encode_fixed_value, length_first_key, value_class
from cddlgen.errors import UnsupportedConstruct
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
    Representation,
    ResolvedType,
    Shape,
    TaggedRef,
    TypeGraph,
    TypeRef,
)
from cddlgen.model.plan import (
    AliasPlan,
    ArrayPlan,
    ChoicePlan,
    ChoiceStrategy,
    Container,
    EncodingPlan,
    EncodingPolicy,
    FieldPlan,
    KeyKind,
    KeyOrder,
    NodePlan,
    Presence,
    RecordPlan,
    ScalarPlan,
    TablePlan,
    VariantPlan,
)

logger = logging.getLogger(__name__)

# ###############
# Public Interface
# ###############


def plan_encoding(graph: TypeGraph, policy: EncodingPolicy | None = None) -> EncodingPlan:
    """Compute the encoding plan of every node of ``graph``.

    Args:
        graph: The resolved type graph.
        policy: Global encoding options. Defaults to definite lengths,
            length-first canonical key order and rejection of unknown keys.

    Returns:
        The complete encoding plan.

    Raises:
        UnsupportedConstruct: If a record layout cannot be encoded
            unambiguously (e.g. an optional field before a required one in an
            array record, or duplicate map keys).
    """
    return EncodingPlanner(graph, policy).plan_all()


class EncodingPlanner:
    """Computes node plans on demand and caches them."""

    def __init__(self, graph: TypeGraph, policy: EncodingPolicy | None = None) -> None:
        self._graph = graph
        self._policy = policy or EncodingPolicy()
        self._cache: dict[str, NodePlan] = {}

    @property
    def policy(self) -> EncodingPolicy:
        return self._policy

    def plan_for(self, name: str) -> NodePlan:
        """Return the plan of node ``name``, computing it on first use."""
        if name not in self._cache:
            self._cache[name] = self._plan_node(self._graph[name])
        return self._cache[name]

    def plan_all(self) -> EncodingPlan:
        for node in self._graph:
            self.plan_for(node.name)
        strategies: dict[str, int] = {}
        for plan in self._cache.values():
            if isinstance(plan, ChoicePlan):
                strategies[plan.strategy.value] = strategies.get(plan.strategy.value, 0) + 1
        logger.debug("Planned %d types; choice strategies: %s", len(self._cache), strategies or "none")
        return EncodingPlan({node.name: self._cache[node.name] for node in self._graph}, self._policy)

    def data_item_classes(self, ref: TypeRef) -> frozenset[str]:
        """Return the classes of CBOR data items ``ref`` can encode to.

        Classes are ``uint``, ``nint``, ``bytes``, ``text``, ``array``,
        ``map``, ``bool``, ``null``, ``float`` and ``tag:N``.
        """
        return self._classes(ref, frozenset())

    # ------------------------------------------------------------------
    # Node plans
    # ------------------------------------------------------------------

    def _plan_node(self, node: ResolvedType) -> NodePlan:
        if node.shape == Shape.RECORD:
            return self._plan_record(node)
        if node.shape == Shape.ARRAY:
            occurrence = node.occurrence
            return ArrayPlan(
                min_items=occurrence.min if occurrence else 0,
                max_items=occurrence.max if occurrence else None,
                length_encoding=self._policy.length_encoding,
                tag=node.tag,
            )
        if node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
            return self._plan_table(node)
        if node.shape == Shape.CHOICE:
            return self._plan_choice(node)
        if node.shape == Shape.WRAPPED_PRIMITIVE:
            return ScalarPlan(constraint=node.constraint, tag=node.tag)
        return AliasPlan()

    def _plan_record(self, node: ResolvedType) -> RecordPlan:
        """Plan field presence, positions, keys and emission order of a record."""
        fields: list[FieldPlan] = []
        for position, field in enumerate(node.fields):
            resolved = self._graph.resolve(field.type)
            fixed = resolved.value if isinstance(resolved, FixedRef) and not field.optional else None
            if fixed is not None:
                presence = Presence.FIXED
            elif field.optional and field.default is not None:
                presence = Presence.OMIT_IF_DEFAULT
            elif field.optional:
                presence = Presence.OMIT_IF_ABSENT
            else:
                presence = Presence.REQUIRED
            encoded_key = encode_fixed_value(field.key).hex() if field.key is not None else None
            fields.append(
                FieldPlan(
                    name=field.name,
                    presence=presence,
                    position=position if node.representation == Representation.ARRAY else None,
                    key=field.key,
                    encoded_key=encoded_key,
                    value=fixed,
                    default=field.default,
                )
            )

        required = sum(1 for f in fields if f.presence in (Presence.REQUIRED, Presence.FIXED))
        if node.representation == Representation.ARRAY:
            self._check_trailing_optionals(node, fields)
            return RecordPlan(
                container=Container.ARRAY,
                fields=tuple(fields),
                emission_order=tuple(f.name for f in fields),
                min_length=required,
                max_length=len(fields),
                length_encoding=self._policy.length_encoding,
                reject_unknown_keys=True,
                tag=node.tag,
            )

        seen: dict[str, str] = {}
        for field_plan in fields:
            assert field_plan.encoded_key is not None
            if field_plan.encoded_key in seen:
                raise UnsupportedConstruct(
                    node.name,
                    f"fields '{seen[field_plan.encoded_key]}' and '{field_plan.name}' use the same map key",
                )
            seen[field_plan.encoded_key] = field_plan.name
        return RecordPlan(
            container=Container.MAP,
            fields=tuple(fields),
            emission_order=tuple(f.name for f in self._order_keys(fields)),
            key_kind=_key_kind([f.key for f in fields if f.key is not None]),
            min_length=required,
            max_length=len(fields),
            length_encoding=self._policy.length_encoding,
            reject_unknown_keys=self._policy.reject_unknown_keys,
            tag=node.tag,
        )

    def _check_trailing_optionals(self, node: ResolvedType, fields: list[FieldPlan]) -> None:
        """Positional records can only leave out fields at the end."""
        optional_seen: str | None = None
        for field_plan in fields:
            if field_plan.presence in (Presence.OMIT_IF_ABSENT, Presence.OMIT_IF_DEFAULT):
                optional_seen = optional_seen or field_plan.name
            elif optional_seen is not None:
                raise UnsupportedConstruct(
                    node.name,
                    f"optional field '{optional_seen}' is followed by required field '{field_plan.name}' "
                    "in an array record",
                )

    def _order_keys(self, fields: list[FieldPlan]) -> list[FieldPlan]:
        order = self._policy.key_order
        if order == KeyOrder.DECLARATION:
            return list(fields)
        sort_key = length_first_key if order == KeyOrder.LENGTH_FIRST else bytewise_key
        return sorted(fields, key=lambda f: sort_key(bytes.fromhex(f.encoded_key or "")))

    def _plan_table(self, node: ResolvedType) -> TablePlan:
        allowed: tuple[FixedValue, ...] = ()
        if node.shape == Shape.MAP_FIXED_KEYS and node.key_type is not None:
            allowed = tuple(self._literal_values(node.key_type))
        occurrence = node.occurrence
        return TablePlan(
            min_entries=occurrence.min if occurrence else 0,
            max_entries=occurrence.max if occurrence else None,
            allowed_keys=allowed,
            sort_keys=self._policy.key_order != KeyOrder.DECLARATION,
            key_order=self._policy.key_order,
            length_encoding=self._policy.length_encoding,
            tag=node.tag,
        )

    def _literal_values(self, ref: TypeRef) -> list[FixedValue]:
        resolved = self._graph.resolve(ref)
        if isinstance(resolved, FixedRef):
            return [resolved.value]
        if isinstance(resolved, NamedRef):
            node = self._graph[resolved.name]
            return [a.type.value for a in node.alternatives if isinstance(a.type, FixedRef)]
        return []

    # ------------------------------------------------------------------
    # Choices
    # ------------------------------------------------------------------

    def _plan_choice(self, node: ResolvedType) -> ChoicePlan:
        """Pick the cheapest strategy that distinguishes every alternative."""
        alternatives = node.alternatives
        resolved = [self._graph.resolve(a.type) for a in alternatives]

        if all(isinstance(r, FixedRef) for r in resolved):
            values = [r.value for r in resolved]  # type: ignore[union-attr]
            overlaps = tuple(
                (alternatives[i].name, alternatives[j].name)
                for i, j in combinations(range(len(values)), 2)
                if _same_value(values[i], values[j])
            )
            return ChoicePlan(
                strategy=ChoiceStrategy.ENUM_VALUE,
                variants=tuple(VariantPlan(name=a.name, discriminant=v) for a, v in zip(alternatives, values)),
                overlaps=overlaps,
                tag=node.tag,
            )

        tags = [self._outer_tag(r) for r in resolved]
        if len(alternatives) > 1 and all(t is not None for t in tags) and len(set(tags)) == len(tags):
            return ChoicePlan(
                strategy=ChoiceStrategy.CBOR_TAG,
                variants=tuple(VariantPlan(name=a.name, cbor_tag=t) for a, t in zip(alternatives, tags)),
                tag=node.tag,
            )

        leading = self._leading_discriminants(resolved)
        if leading is not None and len(alternatives) > 1:
            key, values = leading
            return ChoicePlan(
                strategy=ChoiceStrategy.LEADING_TAG,
                variants=tuple(VariantPlan(name=a.name, discriminant=v) for a, v in zip(alternatives, values)),
                discriminant_key=key,
                tag=node.tag,
            )

        overlaps = tuple(
            (alternatives[i].name, alternatives[j].name)
            for i, j in combinations(range(len(alternatives)), 2)
            if self._may_overlap(resolved[i], resolved[j])
        )
        if overlaps:
            logger.debug("Choice '%s' has overlapping alternatives: %s", node.name, overlaps)
        return ChoicePlan(
            strategy=ChoiceStrategy.ATTEMPT_IN_ORDER,
            variants=tuple(VariantPlan(name=a.name) for a in alternatives),
            overlaps=overlaps,
            tag=node.tag,
        )

    def _outer_tag(self, ref: TypeRef) -> int | None:
        if isinstance(ref, TaggedRef):
            return ref.tag
        if isinstance(ref, NamedRef):
            return self._graph[ref.name].tag
        return None

    def _record_plan(self, ref: TypeRef) -> RecordPlan | None:
        """Return the record plan behind ``ref`` if it is an untagged record."""
        if not isinstance(ref, NamedRef):
            return None
        node = self._graph[ref.name]
        if node.shape != Shape.RECORD or node.tag is not None:
            return None
        plan = self.plan_for(ref.name)
        return plan if isinstance(plan, RecordPlan) else None

    def _leading_discriminants(
        self, resolved: list[TypeRef]
    ) -> tuple[FixedValue | None, list[FixedValue]] | None:
        """Find a fixed field that tells every alternative apart.

        For array records this is the field at position 0; for map records a
        key that every alternative fixes to a distinct literal.
        """
        records = [self._record_plan(r) for r in resolved]
        if any(r is None for r in records):
            return None
        plans: list[RecordPlan] = [r for r in records if r is not None]
        containers = {p.container for p in plans}
        if containers == {Container.ARRAY}:
            values: list[FixedValue] = []
            for plan in plans:
                if not plan.fields or plan.fields[0].presence != Presence.FIXED or plan.fields[0].value is None:
                    return None
                values.append(plan.fields[0].value)
            return (None, values) if _all_distinct(values) else None
        if containers == {Container.MAP}:
            candidates = [f for f in plans[0].fields if f.presence == Presence.FIXED]
            for candidate in candidates:
                values = []
                for plan in plans:
                    match = next(
                        (f for f in plan.fields if f.encoded_key == candidate.encoded_key and f.presence == Presence.FIXED),
                        None,
                    )
                    if match is None or match.value is None:
                        break
                    values.append(match.value)
                else:
                    if _all_distinct(values):
                        return candidate.key, values
        return None

    def _may_overlap(self, first: TypeRef, second: TypeRef) -> bool:
        """Return True if some encoding could be decoded as both ``first`` and ``second``."""
        if not self.data_item_classes(first) & self.data_item_classes(second):
            return False
        first_record = self._record_plan(first)
        second_record = self._record_plan(second)
        if first_record is None or second_record is None:
            return True
        if first_record.container != second_record.container:
            return False
        if first_record.container == Container.ARRAY:
            if first_record.max_length < second_record.min_length or second_record.max_length < first_record.min_length:
                return False
            return not _fixed_conflict(first_record, second_record, by_key=False)
        if _fixed_conflict(first_record, second_record, by_key=True):
            return False
        if not self._policy.reject_unknown_keys:
            return True
        first_keys = {f.encoded_key for f in first_record.fields}
        second_keys = {f.encoded_key for f in second_record.fields}
        first_required = {f.encoded_key for f in first_record.fields if f.presence in (Presence.REQUIRED, Presence.FIXED)}
        second_required = {
            f.encoded_key for f in second_record.fields if f.presence in (Presence.REQUIRED, Presence.FIXED)
        }
        return first_required <= second_keys and second_required <= first_keys

    def _classes(self, ref: TypeRef, visiting: frozenset[str]) -> frozenset[str]:
        if isinstance(ref, PrimitiveRef):
            return _PRIMITIVE_CLASSES[ref.primitive]
        if isinstance(ref, FixedRef):
            return frozenset({value_class(ref.value)})
        if isinstance(ref, ArrayRef):
            return frozenset({"array"})
        if isinstance(ref, MapRef):
            return frozenset({"map"})
        if isinstance(ref, CborBytesRef):
            return frozenset({"bytes"})
        if isinstance(ref, TaggedRef):
            return frozenset({f"tag:{ref.tag}"})
        if isinstance(ref, OptionalRef):
            return self._classes(ref.inner, visiting) | {"null"}
        if ref.name in visiting:
            return frozenset()
        node = self._graph[ref.name]
        if node.tag is not None:
            return frozenset({f"tag:{node.tag}"})
        inner_visiting = visiting | {ref.name}
        if node.shape == Shape.RECORD:
            return frozenset({"array" if node.representation == Representation.ARRAY else "map"})
        if node.shape == Shape.ARRAY:
            return frozenset({"array"})
        if node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
            return frozenset({"map"})
        if node.shape == Shape.CHOICE:
            result: frozenset[str] = frozenset()
            for alternative in node.alternatives:
                result |= self._classes(alternative.type, inner_visiting)
            return result
        assert node.target is not None
        return self._classes(node.target, inner_visiting)


# ################
# Implementation
# ################

_INTEGER = frozenset({"uint", "nint"})

_PRIMITIVE_CLASSES: dict[Primitive, frozenset[str]] = {
    Primitive.UINT: frozenset({"uint"}),
    Primitive.NINT: frozenset({"nint"}),
    Primitive.INT: _INTEGER,
    Primitive.U8: frozenset({"uint"}),
    Primitive.U16: frozenset({"uint"}),
    Primitive.U32: frozenset({"uint"}),
    Primitive.U64: frozenset({"uint"}),
    Primitive.I8: _INTEGER,
    Primitive.I16: _INTEGER,
    Primitive.I32: _INTEGER,
    Primitive.I64: _INTEGER,
    Primitive.TEXT: frozenset({"text"}),
    Primitive.BYTES: frozenset({"bytes"}),
    Primitive.BOOL: frozenset({"bool"}),
    Primitive.FLOAT32: frozenset({"float"}),
    Primitive.FLOAT64: frozenset({"float"}),
    Primitive.NULL: frozenset({"null"}),
}


def _same_value(first: FixedValue, second: FixedValue) -> bool:
    return encode_fixed_value(first) == encode_fixed_value(second)


def _all_distinct(values: list[FixedValue]) -> bool:
    encoded = [encode_fixed_value(v) for v in values]
    return len(set(encoded)) == len(encoded)


def _key_kind(keys: list[FixedValue]) -> KeyKind:
    kinds = {key.kind for key in keys}
    if not kinds:
        return KeyKind.NONE
    if kinds <= {ValueKind.UINT}:
        return KeyKind.UINT
    if kinds <= {ValueKind.TEXT}:
        return KeyKind.TEXT
    return KeyKind.MIXED


def _fixed_conflict(first: RecordPlan, second: RecordPlan, by_key: bool) -> bool:
    """Return True if both records fix the same slot to different literals."""
    def slots(plan: RecordPlan) -> dict[object, FixedValue]:
        return {
            (f.encoded_key if by_key else f.position): f.value
            for f in plan.fields
            if f.presence == Presence.FIXED and f.value is not None
        }

    first_slots = slots(first)
    second_slots = slots(second)
    return any(
        slot in second_slots and not _same_value(value, second_slots[slot]) for slot, value in first_slots.items()
    )
