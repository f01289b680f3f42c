# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Error taxonomy shared by every stage of the generation pipeline.

All errors raised while turning a schema into generated code derive from
:class:`CddlGenError`. Generation errors are fatal: the first one propagates
to the caller and no artifact is committed.
"""

from __future__ import annotations

# ###############
# Public Interface
# ###############


class CddlGenError(Exception):
    """Base class for all errors raised by cddlgen."""


class SchemaSyntaxError(CddlGenError):
    """Raised when schema text cannot be tokenized or parsed.

    Attributes:
        line: 1-based line number of the error.
        column: 1-based column number of the error.
        expected: Description of what the grammar expected, if known.
        found: The offending text, if known.
        source: Name of the schema document.
    """

    def __init__(
        self,
        message: str,
        line: int,
        column: int,
        *,
        expected: str | None = None,
        found: str | None = None,
        source: str | None = None,
    ) -> None:
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}Line {line}, column {column}: {message}")
        self.line = line
        self.column = column
        self.expected = expected
        self.found = found
        self.source = source


class UnresolvedReference(CddlGenError):
    """Raised when a rule references a name that is defined nowhere.

    Attributes:
        name: The undefined name.
        rule: The rule in which the reference occurs.
        line: 1-based line of the reference, if known.
        column: 1-based column of the reference, if known.
    """

    def __init__(self, name: str, rule: str | None, line: int | None = None, column: int | None = None) -> None:
        location = f" (line {line}, column {column})" if line is not None else ""
        where = f" in rule '{rule}'" if rule else ""
        super().__init__(f"Undefined reference '{name}'{where}{location}")
        self.name = name
        self.rule = rule
        self.line = line
        self.column = column


class GenericArityMismatch(CddlGenError):
    """Raised when a generic rule is instantiated with the wrong number of arguments."""

    def __init__(self, rule: str, expected: int, found: int) -> None:
        super().__init__(f"Generic rule '{rule}' expects {expected} argument(s), got {found}")
        self.rule = rule
        self.expected = expected
        self.found = found


class UnsupportedConstruct(CddlGenError):
    """Raised for schema constructs that are recognized but not representable.

    Attributes:
        rule: The rule containing the construct, if known.
        description: Human-readable description of the construct.
    """

    def __init__(self, rule: str | None, description: str) -> None:
        where = f"Rule '{rule}': " if rule else ""
        super().__init__(f"{where}{description}")
        self.rule = rule
        self.description = description
