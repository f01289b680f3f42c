# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for identifier conventions."""

import pytest

from cddlgen.compiler.naming import NameAllocator, camel_case, screaming_snake_case, snake_case


@pytest.mark.parametrize(
    "name,expected",
    [
        ("transaction-body", "TransactionBody"),
        ("point", "Point"),
        ("bigUInt", "BigUInt"),
        ("$message", "Message"),
        ("1st-entry", "T1stEntry"),
        ("--", "T"),
    ],
)
def test_camel_case(name: str, expected: str) -> None:
    assert camel_case(name) == expected


@pytest.mark.parametrize(
    "name,expected",
    [
        ("TransactionBody", "transaction_body"),
        ("transaction-body", "transaction_body"),
        ("HTTPServer", "http_server"),
        ("ValueNeg2", "value_neg2"),
        ("2fa", "_2fa"),
        ("", "field"),
    ],
)
def test_snake_case(name: str, expected: str) -> None:
    assert snake_case(name) == expected


def test_screaming_snake_case() -> None:
    assert screaming_snake_case("IntOrText") == "INT_OR_TEXT"


class TestNameAllocator:
    def test_first_occurrence_keeps_its_name(self) -> None:
        names = NameAllocator()
        assert names.allocate("Point") == "Point"
        assert "Point" in names

    def test_repeated_camel_case_names_get_a_number(self) -> None:
        names = NameAllocator()
        assert [names.allocate("Point") for _ in range(3)] == ["Point", "Point2", "Point3"]

    def test_repeated_snake_case_names_get_a_separator(self) -> None:
        names = NameAllocator()
        assert [names.allocate("value") for _ in range(2)] == ["value", "value_2"]
        assert [names.allocate("key_1") for _ in range(2)] == ["key_1", "key_1_2"]

    def test_reserved_names_are_never_handed_out(self) -> None:
        names = NameAllocator({"Vec"})
        assert names.allocate("Vec") == "Vec2"

    def test_numbered_names_skip_taken_ones(self) -> None:
        names = NameAllocator({"Point", "Point2"})
        assert names.allocate("Point") == "Point3"
