# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Text building blocks for the backends: an indenting line writer and templates."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from functools import lru_cache

from jinja2 import Environment, PackageLoader, StrictUndefined, Template

# ###############
# Public Interface
# ###############


class CodeWriter:
    """Accumulates lines of generated source with managed indentation."""

    def __init__(self, indent: str = "    ") -> None:
        self._indent = indent
        self._level = 0
        self._lines: list[str] = []

    def line(self, text: str = "") -> None:
        self._lines.append(f"{self._indent * self._level}{text}" if text else "")

    def lines(self, texts: Iterable[str]) -> None:
        for text in texts:
            self.line(text)

    def doc(self, lines: Iterable[str], prefix: str) -> None:
        """Write documentation lines, each starting with ``prefix`` (e.g. ``/// ``)."""
        for text in lines:
            self.line(f"{prefix}{text}".rstrip())

    @contextmanager
    def indented(self) -> Iterator[None]:
        self._level += 1
        try:
            yield
        finally:
            self._level -= 1

    @contextmanager
    def block(self, header: str, closer: str = "}") -> Iterator[None]:
        """Write ``header {``, an indented body and ``closer``."""
        self.line(f"{header} {{")
        with self.indented():
            yield
        self.line(closer)

    def render(self) -> str:
        text = "\n".join(self._lines).rstrip("\n")
        return text + "\n" if text else ""


def render_template(name: str, **context: object) -> str:
    """Render the packaged template ``name`` with ``context``.

    Undefined variables are errors, so a template and its backend cannot
    silently drift apart.
    """
    return _load_template(name).render(**context)


# ################
# Implementation
# ################


@lru_cache(maxsize=1)
def _environment() -> Environment:
    return Environment(
        loader=PackageLoader("cddlgen", "templates"),
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        newline_sequence="\n",
    )


@lru_cache(maxsize=None)
def _load_template(name: str) -> Template:
    return _environment().get_template(name)
