# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Identifier conventions shared by the builder and the backends."""

from __future__ import annotations

import re

# ###############
# Public Interface
# ###############


def camel_case(name: str) -> str:
    """Convert a CDDL name such as ``transaction-body`` to ``TransactionBody``.

    Existing inner capitals are preserved, so ``bigUInt`` becomes ``BigUInt``.
    Names that would start with a digit get a ``T`` prefix.
    """
    parts = [p for p in _SEPARATORS.split(name) if p]
    result = "".join(p[0].upper() + p[1:] for p in parts)
    if not result:
        return "T"
    if result[0].isdigit():
        result = "T" + result
    return result


def snake_case(name: str) -> str:
    """Convert a CDDL or CamelCase name to ``snake_case``."""
    spaced = _CAMEL_BOUNDARY.sub(r"\1_\2", name)
    spaced = _ACRONYM_BOUNDARY.sub(r"\1_\2", spaced)
    parts = [p for p in _SEPARATORS.split(spaced) if p]
    result = "_".join(p.lower() for p in parts)
    if not result:
        return "field"
    if result[0].isdigit():
        result = "_" + result
    return result


def screaming_snake_case(name: str) -> str:
    """Convert a name to ``SCREAMING_SNAKE_CASE`` (used for enum members)."""
    return snake_case(name).upper()


class NameAllocator:
    """Hands out unique names, appending a number to repeated ones.

    The first occurrence keeps its name; later ones become ``name2``,
    ``name3`` and so on (with ``_`` before the number for snake_case names).
    """

    def __init__(self, reserved: set[str] | None = None) -> None:
        self._used: set[str] = set(reserved or ())

    def allocate(self, name: str) -> str:
        if name not in self._used:
            self._used.add(name)
            return name
        separator = "_" if "_" in name or name.islower() else ""
        counter = 2
        while f"{name}{separator}{counter}" in self._used:
            counter += 1
        unique = f"{name}{separator}{counter}"
        self._used.add(unique)
        return unique

    def __contains__(self, name: object) -> bool:
        return name in self._used


# ################
# Implementation
# ################

_SEPARATORS = re.compile(r"[^0-9A-Za-z]+")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z])([A-Z][a-z])")
