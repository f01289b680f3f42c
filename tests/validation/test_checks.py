# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the validation checks on resolved schemas."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import pytest

from cddlgen.compiler.encoding import plan_encoding
from cddlgen.compiler.type_graph import build_type_graph
from cddlgen.model.plan import EncodingPolicy
from cddlgen.parser import parse
from cddlgen.validation.checks import (
    ValidationError,
    ValidationResult,
    ValidationWarning,
    validate,
)

# ###############
# Test Helpers
# ###############


def _validate(
    source: str,
    roots: Sequence[str] | None = None,
    policy: EncodingPolicy | None = None,
    defined_rules: Sequence[str] = (),
) -> ValidationResult:
    """Build, plan and validate ``source``."""
    graph = build_type_graph(parse(source), roots)
    return validate(graph, plan_encoding(graph, policy), defined_rules)


def _messages(findings: Sequence[ValidationWarning] | Sequence[ValidationError]) -> list[str]:
    return [f.message for f in findings]


# ###############
# Result
# ###############


class TestValidationResult:
    def test_empty_result(self) -> None:
        result = ValidationResult()
        assert result.warnings == []
        assert result.errors == []
        assert not result.has_errors

    def test_errors_are_fatal(self) -> None:
        assert ValidationResult(errors=[ValidationError(message="x")]).has_errors

    def test_warnings_alone_are_not_fatal(self) -> None:
        assert not ValidationResult(warnings=[ValidationWarning(message="x")]).has_errors


# ###############
# Finite values
# ###############


class TestFiniteValues:
    def test_plain_records_are_fine(self) -> None:
        assert not _validate("Point = { x: int, y: int }").has_errors

    def test_direct_self_reference(self) -> None:
        result = _validate("Loop = [next: Loop]")
        assert _messages(result.errors) == ["Type 'Loop' has no finite value: Loop -> Loop."]

    def test_mutual_reference(self) -> None:
        result = _validate("A = [b: B]\nB = [a: A]")
        assert len(result.errors) == 1
        assert result.errors[0].message in (
            "Type 'A' has no finite value: A -> B -> A.",
            "Type 'B' has no finite value: B -> A -> B.",
        )

    def test_optional_field_breaks_the_cycle(self) -> None:
        assert not _validate("Node = { value: uint, ? next: Node }").has_errors

    def test_possibly_empty_array_breaks_the_cycle(self) -> None:
        assert not _validate("Tree = [value: int, children: [* Tree]]").has_errors

    def test_non_empty_array_does_not_break_the_cycle(self) -> None:
        result = _validate("Tree = [value: int, children: [+ Tree]]")
        assert _messages(result.errors) == ["Type 'Tree' has no finite value: Tree -> Tree."]

    def test_table_breaks_the_cycle(self) -> None:
        assert not _validate("Dir = { entries: { * tstr => Dir } }").has_errors

    def test_choice_with_base_case(self) -> None:
        source = "Expr = Lit / Add\nLit = uint\nAdd = [left: Expr, right: Expr]"
        assert not _validate(source).has_errors

    def test_choice_without_base_case(self) -> None:
        source = "Expr = Neg / Add\nNeg = [inner: Expr]\nAdd = [left: Expr, right: Expr]"
        result = _validate(source)
        assert len(result.errors) == 1
        assert "has no finite value" in result.errors[0].message


# ###############
# Choice overlaps
# ###############


class TestChoiceOverlaps:
    def test_disjoint_records_do_not_warn(self) -> None:
        source = "Shape = Circle / Square\nCircle = { radius: uint }\nSquare = { side: uint }"
        assert _validate(source).warnings == []

    def test_overlapping_records_warn(self) -> None:
        source = "Shape = Circle / Square\nCircle = { radius: uint }\nSquare = { side: uint }"
        result = _validate(source, policy=EncodingPolicy(reject_unknown_keys=False))
        assert _messages(result.warnings) == [
            "Choice 'Shape': alternatives 'Circle' and 'Square' may overlap; 'Circle' wins when decoding."
        ]
        assert not result.has_errors

    def test_inline_choice_is_named_by_its_ident(self) -> None:
        result = _validate("V = { value: uint / int }")
        assert _messages(result.warnings) == [
            "Choice 'UintOrInt': alternatives 'Uint' and 'Int' may overlap; 'Uint' wins when decoding."
        ]

    def test_repeated_enum_values_do_not_warn(self) -> None:
        assert _validate("Level = 1 / 2 / 1").warnings == []

    def test_warnings_are_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="cddlgen.validation.checks"):
            _validate("V = { value: uint / int }")
        assert "may overlap" in caplog.text


# ###############
# Unreachable rules
# ###############


class TestUnreachableRules:
    def test_unreachable_rule_warns(self) -> None:
        result = _validate("A = { b: uint }\nC = tstr", roots=["A"], defined_rules=["A", "C"])
        assert _messages(result.warnings) == ["Rule 'C' is not reachable from the roots and generates no code."]

    def test_reachable_rules_do_not_warn(self) -> None:
        result = _validate("A = { b: B }\nB = tstr", roots=["A"], defined_rules=["A", "B"])
        assert result.warnings == []

    def test_default_roots_reach_every_rule(self) -> None:
        assert _validate("A = uint\nB = tstr", defined_rules=["A", "B"]).warnings == []
