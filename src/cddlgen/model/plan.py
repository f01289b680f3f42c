# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Encoding plan: how each resolved type maps onto canonical CBOR."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import Field as _Field

from cddlgen.model.ast import FixedValue
from cddlgen.model.graph import Constraint

# ###############
# Public Interface
# ###############


class KeyOrder(Enum):
    """Order in which map keys are emitted."""

    LENGTH_FIRST = "length-first"
    BYTEWISE = "bytewise"
    DECLARATION = "declaration"


class LengthEncoding(Enum):
    """Length encoding of arrays and maps."""

    DEFINITE = "definite"
    INDEFINITE = "indefinite"


class EncodingPolicy(BaseModel):
    """Global encoding options, fixed for one generation run."""

    model_config = ConfigDict(frozen=True)

    key_order: KeyOrder = KeyOrder.LENGTH_FIRST
    length_encoding: LengthEncoding = LengthEncoding.DEFINITE
    reject_unknown_keys: bool = True


class Container(Enum):
    """CBOR container used for a record."""

    ARRAY = "array"
    MAP = "map"


class Presence(Enum):
    """When a record field appears in the encoding."""

    REQUIRED = "required"
    OMIT_IF_ABSENT = "omit-if-absent"
    OMIT_IF_DEFAULT = "omit-if-default"
    FIXED = "fixed"


class KeyKind(Enum):
    """The kinds of keys used by a map record."""

    NONE = "none"
    UINT = "uint"
    TEXT = "text"
    MIXED = "mixed"


class ChoiceStrategy(Enum):
    """How a decoder tells the alternatives of a choice apart."""

    ENUM_VALUE = "enum-value"
    LEADING_TAG = "leading-tag"
    CBOR_TAG = "cbor-tag"
    ATTEMPT_IN_ORDER = "attempt-in-order"


class FieldPlan(BaseModel):
    """Encoding of one record field.

    Attributes:
        name: Field name, as in the graph.
        presence: When the field is written.
        position: Index in an array record; None in map records.
        key: Map key; None in array records.
        encoded_key: Hex of the CBOR-encoded map key.
        value: The literal written for FIXED fields.
        default: The value assumed for an absent OMIT_IF_DEFAULT field.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    presence: Presence
    position: int | None = None
    key: FixedValue | None = None
    encoded_key: str | None = None
    value: FixedValue | None = None
    default: FixedValue | None = None


class RecordPlan(BaseModel):
    """Encoding of a record as a positional array or a keyed map."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["record"] = "record"
    container: Container
    fields: tuple[FieldPlan, ...] = ()
    emission_order: tuple[str, ...] = ()
    key_kind: KeyKind = KeyKind.NONE
    min_length: int = 0
    max_length: int = 0
    length_encoding: LengthEncoding = LengthEncoding.DEFINITE
    reject_unknown_keys: bool = True
    tag: int | None = None

    def field(self, name: str) -> FieldPlan:
        for field_plan in self.fields:
            if field_plan.name == name:
                return field_plan
        raise KeyError(name)


class ArrayPlan(BaseModel):
    """Encoding of a homogeneous array."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["array"] = "array"
    min_items: int = 0
    max_items: int | None = None
    length_encoding: LengthEncoding = LengthEncoding.DEFINITE
    tag: int | None = None


class TablePlan(BaseModel):
    """Encoding of a map with keys drawn from a key type."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["table"] = "table"
    min_entries: int = 0
    max_entries: int | None = None
    allowed_keys: tuple[FixedValue, ...] = ()
    sort_keys: bool = True
    key_order: KeyOrder = KeyOrder.LENGTH_FIRST
    length_encoding: LengthEncoding = LengthEncoding.DEFINITE
    tag: int | None = None


class VariantPlan(BaseModel):
    """How one alternative of a choice is recognized."""

    model_config = ConfigDict(frozen=True)

    name: str
    discriminant: FixedValue | None = None
    cbor_tag: int | None = None


class ChoicePlan(BaseModel):
    """Encoding of a choice.

    Attributes:
        strategy: The discrimination strategy.
        variants: Variants in declaration order.
        discriminant_key: For LEADING_TAG on map records, the common key
            holding the discriminant; None when it is array position 0.
        overlaps: Pairs of variant names whose encodings can coincide. The
            earlier variant of each pair wins when decoding.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["choice"] = "choice"
    strategy: ChoiceStrategy
    variants: tuple[VariantPlan, ...] = ()
    discriminant_key: FixedValue | None = None
    overlaps: tuple[tuple[str, str], ...] = ()
    tag: int | None = None


class ScalarPlan(BaseModel):
    """Encoding of a wrapped primitive."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["scalar"] = "scalar"
    constraint: Constraint | None = None
    tag: int | None = None


class AliasPlan(BaseModel):
    """Aliases are transparent: they encode exactly like their target."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["alias"] = "alias"


# The plan of one node. The `kind` discriminator keeps (de)serialization unambiguous.
NodePlan = Annotated[
    RecordPlan | ArrayPlan | TablePlan | ChoicePlan | ScalarPlan | AliasPlan,
    _Field(discriminator="kind"),
]


class EncodingPlan:
    """Immutable mapping from stable name to node plan, plus the policy used."""

    def __init__(self, plans: Mapping[str, NodePlan], policy: EncodingPolicy) -> None:
        self._plans: Mapping[str, NodePlan] = MappingProxyType(dict(plans))
        self._policy = policy

    @property
    def policy(self) -> EncodingPolicy:
        return self._policy

    def __getitem__(self, name: str) -> NodePlan:
        return self._plans[name]

    def __contains__(self, name: object) -> bool:
        return name in self._plans

    def __iter__(self) -> Iterator[str]:
        return iter(self._plans)

    def __len__(self) -> int:
        return len(self._plans)

    def items(self) -> Iterator[tuple[str, NodePlan]]:
        return iter(self._plans.items())
