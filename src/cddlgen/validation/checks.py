# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Validation checks on a resolved type graph and its encoding plan.

These checks run after the graph is built and planned. They catch schemas
that are well-formed but cannot produce a usable library, and flag
constructs that are legal but probably unintentional.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from cddlgen.model.graph import (
    ArrayRef,
    FixedRef,
    MapRef,
    NamedRef,
    OptionalRef,
    PrimitiveRef,
    ResolvedType,
    Shape,
    TypeGraph,
    TypeRef,
)
from cddlgen.model.plan import ChoicePlan, ChoiceStrategy, EncodingPlan

logger = logging.getLogger(__name__)

# ###############
# Public Interface
# ###############


@dataclass(frozen=True)
class ValidationWarning:
    """A non-fatal finding: generation proceeds, but the schema deserves a look.

    Attributes:
        message: Human-readable description of the warning.
    """

    message: str


@dataclass(frozen=True)
class ValidationError:
    """A fatal finding: no library can be generated for the schema.

    Attributes:
        message: Human-readable description of the error.
    """

    message: str


@dataclass
class ValidationResult:
    """Result of running validation checks.

    Attributes:
        warnings: Non-fatal issues found during validation.
        errors: Fatal errors that prevent generation.
    """

    warnings: list[ValidationWarning] = field(default_factory=list)
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Return True if any fatal validation errors were found."""
        return len(self.errors) > 0


def validate(graph: TypeGraph, plan: EncodingPlan, defined_rules: Iterable[str] = ()) -> ValidationResult:
    """Run all validation checks.

    Checks performed:

    1. **Types without finite values** (error): a recursive type whose every
       path back to itself is mandatory (no optional field, possibly empty
       array or table, or non-recursive choice alternative) has no finite
       value and cannot be constructed.

    2. **Overlapping alternatives** (warning): alternatives of an
       attempt-in-order choice whose encodings can coincide. The first
       declared alternative wins when decoding.

    3. **Unreachable rules** (warning): type rules in ``defined_rules`` that
       are not reachable from the roots produce no code.

    Args:
        graph: The resolved type graph.
        plan: The encoding plan of ``graph``.
        defined_rules: Names of the type rules defined in the schema.

    Returns:
        A :class:`ValidationResult`; an empty result means the schema is fine.
    """
    warnings: list[ValidationWarning] = []
    errors: list[ValidationError] = []

    errors.extend(_check_finite_values(graph))
    warnings.extend(_check_choice_overlaps(graph, plan))
    warnings.extend(_check_unreachable_rules(graph, defined_rules))

    for warning in warnings:
        logger.warning(warning.message)
    return ValidationResult(warnings=warnings, errors=errors)


# ################
# Implementation
# ################


def _detect_cycle(graph: dict[str, list[str]]) -> list[str] | None:
    """Return a cycle of ``graph`` with the start node repeated at the end, or None."""
    WHITE, GREY, BLACK = 0, 1, 2
    color: dict[str, int] = {}
    path: list[str] = []

    def _dfs(node: str) -> list[str] | None:
        color[node] = GREY
        path.append(node)
        for neighbor in graph.get(node, []):
            state = color.get(neighbor, WHITE)
            if state == GREY:
                cycle_start = path.index(neighbor)
                return path[cycle_start:] + [neighbor]
            if state == WHITE:
                result = _dfs(neighbor)
                if result is not None:
                    return result
        path.pop()
        color[node] = BLACK
        return None

    for node in graph:
        if color.get(node, WHITE) == WHITE:
            result = _dfs(node)
            if result is not None:
                return result
    return None


def _finite_nodes(graph: TypeGraph) -> set[str]:
    """Return the nodes that have at least one finite value (least fixpoint)."""
    finite: set[str] = set()

    def ref_finite(ref: TypeRef) -> bool:
        if isinstance(ref, (PrimitiveRef, FixedRef, MapRef)):
            return True
        if isinstance(ref, NamedRef):
            return ref.name in finite
        if isinstance(ref, ArrayRef):
            return ref.min_items == 0 or ref_finite(ref.element)
        if isinstance(ref, OptionalRef):
            return True
        return ref_finite(ref.inner)

    def node_finite(node: ResolvedType) -> bool:
        if node.shape == Shape.RECORD:
            return all(ref_finite(f.type) for f in node.fields if not f.optional)
        if node.shape == Shape.CHOICE:
            return any(ref_finite(a.type) for a in node.alternatives)
        empty_allowed = node.occurrence is not None and node.occurrence.min == 0
        if node.shape == Shape.ARRAY:
            assert node.target is not None
            return empty_allowed or ref_finite(node.target)
        if node.shape in (Shape.MAP_FIXED_KEYS, Shape.MAP_VARIABLE_KEYS):
            assert node.key_type is not None and node.value_type is not None
            return empty_allowed or (ref_finite(node.key_type) and ref_finite(node.value_type))
        assert node.target is not None
        return ref_finite(node.target)

    changed = True
    while changed:
        changed = False
        for node in graph:
            if node.name not in finite and node_finite(node):
                finite.add(node.name)
                changed = True
    return finite


def _check_finite_values(graph: TypeGraph) -> list[ValidationError]:
    """Return one error per strongly connected group of types without finite values."""
    finite = _finite_nodes(graph)
    if len(finite) == len(graph):
        return []
    errors: list[ValidationError] = []
    infinite = {node.name for node in graph} - finite
    for component in graph.strongly_connected_components():
        members = [name for name in component if name in infinite]
        if not members:
            continue
        edges = {name: [dep for dep in graph.dependencies(name) if dep in members] for name in members}
        cycle = _detect_cycle(edges)
        if cycle is None:
            continue
        cycle_str = " -> ".join(cycle)
        errors.append(ValidationError(message=f"Type '{cycle[0]}' has no finite value: {cycle_str}."))
    return errors


def _check_choice_overlaps(graph: TypeGraph, plan: EncodingPlan) -> list[ValidationWarning]:
    warnings: list[ValidationWarning] = []
    for name, node_plan in plan.items():
        if not isinstance(node_plan, ChoicePlan) or node_plan.strategy != ChoiceStrategy.ATTEMPT_IN_ORDER:
            continue
        for first, second in node_plan.overlaps:
            warnings.append(
                ValidationWarning(
                    message=(
                        f"Choice '{graph[name].ident}': alternatives '{first}' and '{second}' may overlap; "
                        f"'{first}' wins when decoding."
                    )
                )
            )
    return warnings


def _check_unreachable_rules(graph: TypeGraph, defined_rules: Iterable[str]) -> list[ValidationWarning]:
    return [
        ValidationWarning(message=f"Rule '{rule}' is not reachable from the roots and generates no code.")
        for rule in defined_rules
        if rule not in graph
    ]
