# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Options shared by all code generation backends."""

from __future__ import annotations

from dataclasses import dataclass

from cddlgen.compiler.naming import snake_case


@dataclass(frozen=True)
class BackendOptions:
    """Naming and packaging options of the generated libraries.

    Attributes:
        lib_name: Name of the generated library, e.g. ``my-protocol``.
        version: Version written into generated package manifests.
        generator_version: Version of cddlgen recorded in generated headers.
    """

    lib_name: str = "cddl-lib"
    version: str = "0.1.0"
    generator_version: str = "0.1.0"

    @property
    def crate_name(self) -> str:
        """Rust crate name (``my-protocol`` stays ``my-protocol``)."""
        return self.lib_name.replace("_", "-")

    @property
    def module_name(self) -> str:
        """Rust/Python module name (``my-protocol`` becomes ``my_protocol``)."""
        return snake_case(self.lib_name)

    @property
    def wasm_crate_name(self) -> str:
        return f"{self.crate_name}-wasm"
