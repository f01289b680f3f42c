# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""The standard prelude of RFC 8610 (Appendix D) mapped onto graph references."""

from __future__ import annotations

from cddlgen.model.ast import FixedValue, ValueKind
from cddlgen.model.graph import FixedRef, Primitive, PrimitiveRef, TaggedRef, TypeRef

# ###############
# Public Interface
# ###############


def prelude_ref(name: str) -> TypeRef | None:
    """Return the reference a prelude name denotes, or None if it is not one.

    Prelude names without a fixed representation also return None; check
    them with :func:`is_unsupported_prelude`.
    """
    if name in _PRIMITIVES:
        return PrimitiveRef(primitive=_PRIMITIVES[name])
    if name in _FIXED:
        return FixedRef(value=_FIXED[name])
    if name in _TAGGED:
        tag, primitive = _TAGGED[name]
        return TaggedRef(tag=tag, inner=PrimitiveRef(primitive=primitive))
    return None


def is_unsupported_prelude(name: str) -> bool:
    """Return True for prelude names that have no fixed representation (``any`` etc.)."""
    return name in _UNSUPPORTED


# ################
# Implementation
# ################

_PRIMITIVES: dict[str, Primitive] = {
    "uint": Primitive.UINT,
    "unsigned": Primitive.UINT,
    "nint": Primitive.NINT,
    "int": Primitive.INT,
    "bstr": Primitive.BYTES,
    "bytes": Primitive.BYTES,
    "tstr": Primitive.TEXT,
    "text": Primitive.TEXT,
    "bool": Primitive.BOOL,
    "float": Primitive.FLOAT64,
    "float32": Primitive.FLOAT32,
    "float64": Primitive.FLOAT64,
    "float16-32": Primitive.FLOAT32,
    "float32-64": Primitive.FLOAT64,
    "null": Primitive.NULL,
    "nil": Primitive.NULL,
}

_FIXED: dict[str, FixedValue] = {
    "true": FixedValue(kind=ValueKind.BOOL, value=True),
    "false": FixedValue(kind=ValueKind.BOOL, value=False),
}

_TAGGED: dict[str, tuple[int, Primitive]] = {
    "tdate": (0, Primitive.TEXT),
    "time": (1, Primitive.INT),
    "biguint": (2, Primitive.BYTES),
    "bignint": (3, Primitive.BYTES),
    "encoded-cbor": (24, Primitive.BYTES),
    "uri": (32, Primitive.TEXT),
    "b64url": (33, Primitive.TEXT),
    "b64legacy": (34, Primitive.TEXT),
    "regexp": (35, Primitive.TEXT),
    "mime-message": (36, Primitive.TEXT),
}

_UNSUPPORTED: frozenset[str] = frozenset(
    {
        "any",
        "undefined",
        "number",
        "integer",
        "bigint",
        "float16",
        "decfrac",
        "bigfloat",
        "eb64url",
        "eb64legacy",
        "eb16",
        "cbor-any",
    }
)
