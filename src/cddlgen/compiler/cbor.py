# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Minimal CBOR knowledge needed at generation time.

The planner never encodes user data. It only needs the encoded form of
literal map keys (to order them canonically) and the class of data item a
type can produce (to tell choice alternatives apart).
"""

from __future__ import annotations

import struct
from enum import IntEnum

from cddlgen.model.ast import FixedValue, ValueKind

# ###############
# Public Interface
# ###############


class MajorType(IntEnum):
    """CBOR major types (RFC 8949, section 3.1)."""

    UNSIGNED = 0
    NEGATIVE = 1
    BYTES = 2
    TEXT = 3
    ARRAY = 4
    MAP = 5
    TAG = 6
    SIMPLE = 7


def encode_head(major: MajorType, argument: int) -> bytes:
    """Encode a data item head with the shortest argument encoding."""
    initial = major << 5
    if argument < 24:
        return bytes([initial | argument])
    if argument < 2**8:
        return bytes([initial | 24, argument])
    if argument < 2**16:
        return bytes([initial | 25]) + argument.to_bytes(2, "big")
    if argument < 2**32:
        return bytes([initial | 26]) + argument.to_bytes(4, "big")
    return bytes([initial | 27]) + argument.to_bytes(8, "big")


def encode_fixed_value(value: FixedValue) -> bytes:
    """Return the deterministic CBOR encoding of a literal value.

    Raises:
        ValueError: If an integer does not fit in 64 bits.
    """
    if value.kind == ValueKind.UINT:
        number = int(value.value)  # type: ignore[arg-type]
        if number >= 2**64:
            raise ValueError(f"Integer {number} does not fit in 64 bits")
        return encode_head(MajorType.UNSIGNED, number)
    if value.kind == ValueKind.NINT:
        number = -1 - int(value.value)  # type: ignore[arg-type]
        if number >= 2**64:
            raise ValueError(f"Integer {value.value} does not fit in 64 bits")
        return encode_head(MajorType.NEGATIVE, number)
    if value.kind == ValueKind.TEXT:
        data = str(value.value).encode("utf-8")
        return encode_head(MajorType.TEXT, len(data)) + data
    if value.kind == ValueKind.BYTES:
        data = bytes.fromhex(str(value.value))
        return encode_head(MajorType.BYTES, len(data)) + data
    if value.kind == ValueKind.BOOL:
        return bytes([0xF5 if value.value else 0xF4])
    if value.kind == ValueKind.NULL:
        return bytes([0xF6])
    return b"\xfb" + struct.pack(">d", float(value.value))  # type: ignore[arg-type]


def length_first_key(encoded: bytes) -> tuple[int, bytes]:
    """Sort key for RFC 7049 canonical order: shorter first, then bytewise."""
    return (len(encoded), encoded)


def bytewise_key(encoded: bytes) -> bytes:
    """Sort key for RFC 8949 core deterministic order: bytewise lexicographic."""
    return encoded


def value_class(value: FixedValue) -> str:
    """Return the class of data item a literal encodes to, e.g. "uint" or "text"."""
    return {
        ValueKind.UINT: "uint",
        ValueKind.NINT: "nint",
        ValueKind.TEXT: "text",
        ValueKind.BYTES: "bytes",
        ValueKind.BOOL: "bool",
        ValueKind.NULL: "null",
        ValueKind.FLOAT: "float",
    }[value.kind]
