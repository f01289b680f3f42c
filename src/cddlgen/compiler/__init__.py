# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Compiler pipeline: type graph resolution and encoding planning.

The generation entry point lives in :mod:`cddlgen.compiler.build` and the
output sinks in :mod:`cddlgen.compiler.output`. Neither is re-exported here
because both depend on :mod:`cddlgen.backends`, which depends on this package.
"""

from cddlgen.compiler.encoding import EncodingPlanner, plan_encoding
from cddlgen.compiler.type_graph import build_type_graph

__all__ = [
    "EncodingPlanner",
    "build_type_graph",
    "plan_encoding",
]
