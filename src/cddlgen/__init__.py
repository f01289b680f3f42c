# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Schema-driven CBOR code generator for CDDL schemas."""

__version__ = "0.1.0"
