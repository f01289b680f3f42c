# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Metadata directives embedded in schema comments.

Two directives are understood inside ``;`` comments:

``@name <identifier>``
    Names an otherwise anonymous field, choice variant or inline type.
``@newtype``
    Turns a plain alias into a distinct wrapped type.

Lines holding only directives are metadata; every other comment line is
documentation and is passed through verbatim.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# ###############
# Public Interface
# ###############


@dataclass(frozen=True)
class CommentMetadata:
    """Directives and documentation extracted from a list of comment lines."""

    name: str | None = None
    is_newtype: bool = False
    doc: tuple[str, ...] = ()


def parse_comment_metadata(*comment_groups: list[str]) -> CommentMetadata:
    """Extract directives and documentation from comment lines.

    Args:
        *comment_groups: Lists of raw comment lines (text after the ``;``).
            Earlier groups contribute documentation first; a later ``@name``
            overrides an earlier one.

    Returns:
        The combined metadata.
    """
    name: str | None = None
    is_newtype = False
    doc: list[str] = []
    for comments in comment_groups:
        for line in comments:
            stripped = line.strip()
            if not stripped.startswith("@"):
                doc.append(line)
                continue
            for match in _DIRECTIVE.finditer(stripped):
                if match.group("directive") == "name" and match.group("argument"):
                    name = match.group("argument")
                elif match.group("directive") == "newtype":
                    is_newtype = True
    return CommentMetadata(name=name, is_newtype=is_newtype, doc=tuple(doc))


# ################
# Implementation
# ################

_DIRECTIVE = re.compile(r"@(?P<directive>name|newtype)\b(?:\s+(?P<argument>[A-Za-z_][A-Za-z0-9_\-]*))?")
