# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Code generation backends.

Every backend is a pure function ``render(graph, plan, options)`` returning
a mapping from relative artifact path to file content.
"""

from __future__ import annotations

from collections.abc import Callable

from cddlgen.backends import json_schema, python, rust, schema_export, wasm
from cddlgen.backends.options import BackendOptions
from cddlgen.model.graph import TypeGraph
from cddlgen.model.plan import EncodingPlan

Backend = Callable[[TypeGraph, EncodingPlan, BackendOptions], dict[str, str]]

BACKENDS: dict[str, Backend] = {
    "rust": rust.render,
    "wasm": wasm.render,
    "graph": schema_export.render,
    "json-schema": json_schema.render,
    "python": python.render,
}

DEFAULT_BACKENDS = ("rust", "wasm", "graph")


def get_backend(name: str) -> Backend:
    """Return the backend registered under ``name``.

    Raises:
        KeyError: If no backend has that name; the message lists the known ones.
    """
    try:
        return BACKENDS[name]
    except KeyError:
        raise KeyError(f"Unknown backend '{name}' (known: {', '.join(sorted(BACKENDS))})") from None


__all__ = ["BACKENDS", "DEFAULT_BACKENDS", "Backend", "BackendOptions", "get_backend"]
