# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Abstract syntax tree for parsed CDDL documents.

The AST mirrors the surface syntax closely: names are unresolved strings,
generic arguments are unbound type expressions, and comments are kept on the
nodes they annotate. Resolution happens in the type graph builder.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import Field as _Field

# ###############
# Public Interface
# ###############


class ValueKind(Enum):
    """Kinds of literal values that can appear in a schema."""

    UINT = "uint"
    NINT = "nint"
    FLOAT = "float"
    TEXT = "text"
    BYTES = "bytes"
    BOOL = "bool"
    NULL = "null"


class FixedValue(BaseModel):
    """A literal value. Byte strings are stored as lowercase hex text."""

    model_config = ConfigDict(frozen=True)

    kind: ValueKind
    value: int | float | str | bool | None = None

    def python_value(self) -> int | float | str | bytes | bool | None:
        """Return the value as the Python object it denotes."""
        if self.kind == ValueKind.BYTES:
            return bytes.fromhex(str(self.value))
        return self.value

    def describe(self) -> str:
        """Return the value in CDDL surface syntax."""
        if self.kind == ValueKind.TEXT:
            return f'"{self.value}"'
        if self.kind == ValueKind.BYTES:
            return f"h'{self.value}'"
        if self.kind == ValueKind.BOOL:
            return "true" if self.value else "false"
        if self.kind == ValueKind.NULL:
            return "null"
        return str(self.value)


class Occurrence(BaseModel):
    """How many times a group entry may occur. ``max=None`` means unbounded."""

    model_config = ConfigDict(frozen=True)

    min: int = 1
    max: int | None = 1

    @property
    def is_optional(self) -> bool:
        return self.min == 0 and self.max == 1

    @property
    def is_repeated(self) -> bool:
        return self.max is None or self.max > 1


class Location(BaseModel):
    """Source position of a node."""

    model_config = ConfigDict(frozen=True)

    line: int = 0
    column: int = 0


class LiteralDef(BaseModel):
    """A literal value used as a type, e.g. ``0`` or ``"circle"``."""

    kind: Literal["literal"] = "literal"
    value: FixedValue
    location: Location = Location()


class TypeName(BaseModel):
    """A reference to a named rule, prelude type or generic parameter."""

    kind: Literal["name"] = "name"
    name: str
    generic_args: list[TypeExpr] = _Field(default_factory=list)
    location: Location = Location()


class SocketRef(BaseModel):
    """A reference to a type socket ``$name`` or group socket ``$$name``."""

    kind: Literal["socket"] = "socket"
    name: str
    is_group: bool = False
    location: Location = Location()


class ChoiceDef(BaseModel):
    """A type choice ``A / B / C`` with alternatives in declaration order."""

    kind: Literal["choice"] = "choice"
    alternatives: list[TypeExpr]
    location: Location = Location()


class ArrayDef(BaseModel):
    """An array ``[ group ]``."""

    kind: Literal["array"] = "array"
    group: GroupDef
    location: Location = Location()


class MapDef(BaseModel):
    """A map ``{ group }``."""

    kind: Literal["map"] = "map"
    group: GroupDef
    location: Location = Location()


class ControlDef(BaseModel):
    """A range (``..``, ``...``) or control operator (``.size`` and friends)."""

    kind: Literal["control"] = "control"
    operator: str
    target: TypeExpr
    argument: TypeExpr
    location: Location = Location()


class TaggedDef(BaseModel):
    """Tagged data ``#6.N(type)``. ``tag`` is None for an untagged ``#6(type)``."""

    kind: Literal["tagged"] = "tagged"
    major: int = 6
    tag: int | None = None
    inner: TypeExpr | None = None
    location: Location = Location()


class UnwrapDef(BaseModel):
    """An unwrap ``~name``."""

    kind: Literal["unwrap"] = "unwrap"
    name: str
    generic_args: list[TypeExpr] = _Field(default_factory=list)
    location: Location = Location()


class EnumerationDef(BaseModel):
    """A choice built from a group, ``&( ... )`` or ``&name``."""

    kind: Literal["enumeration"] = "enumeration"
    group: GroupDef | None = None
    name: str | None = None
    location: Location = Location()


class InlineGroupDef(BaseModel):
    """A parenthesized group used as an entry inside another group."""

    kind: Literal["inline_group"] = "inline_group"
    group: GroupDef
    location: Location = Location()


# A type expression. The `kind` discriminator keeps (de)serialization unambiguous.
TypeExpr = Annotated[
    LiteralDef
    | TypeName
    | SocketRef
    | ChoiceDef
    | ArrayDef
    | MapDef
    | ControlDef
    | TaggedDef
    | UnwrapDef
    | EnumerationDef
    | InlineGroupDef,
    _Field(discriminator="kind"),
]


class MemberKey(BaseModel):
    """The key of a group entry.

    ``bareword`` keys (``name:``) and ``value`` keys (``1:``, ``"a":``) are
    fixed; ``type`` keys (``tstr => ...``) describe a key domain.
    """

    kind: Literal["bareword", "value", "type"]
    name: str | None = None
    value: FixedValue | None = None
    type: TypeExpr | None = None
    cut: bool = False


class GroupEntry(BaseModel):
    """One entry of a group."""

    occurrence: Occurrence = Occurrence()
    key: MemberKey | None = None
    value: TypeExpr
    comments: list[str] = _Field(default_factory=list)
    location: Location = Location()


class GroupChoice(BaseModel):
    """A sequence of entries; one branch of a group choice."""

    entries: list[GroupEntry] = _Field(default_factory=list)
    comments: list[str] = _Field(default_factory=list)


class GroupDef(BaseModel):
    """A group layout: one or more group choices separated by ``//``."""

    kind: Literal["group"] = "group"
    choices: list[GroupChoice] = _Field(default_factory=list)
    location: Location = Location()


class GenericParam(BaseModel):
    """A formal parameter of a generic rule."""

    name: str


class RuleDef(BaseModel):
    """A top-level rule.

    Attributes:
        name: The defined name (sockets keep their ``$`` prefix).
        assign: ``=`` for a definition, ``/=`` or ``//=`` for a plug.
        generic_params: Formal parameters, empty for non-generic rules.
        type: The right-hand side for type rules.
        group: The right-hand side for group rules.
        comments: Leading comment lines, verbatim.
        trailing_comments: Comments on the line where the rule ends.
        source: Name of the document the rule came from.
    """

    name: str
    assign: Literal["=", "/=", "//="] = "="
    generic_params: list[GenericParam] = _Field(default_factory=list)
    type: TypeExpr | None = None
    group: GroupDef | None = None
    comments: list[str] = _Field(default_factory=list)
    trailing_comments: list[str] = _Field(default_factory=list)
    source: str = "<schema>"
    location: Location = Location()

    @property
    def is_group_rule(self) -> bool:
        return self.group is not None

    @property
    def is_plug(self) -> bool:
        return self.assign != "="


class Schema(BaseModel):
    """A parsed collection of rules in declaration order."""

    rules: list[RuleDef] = _Field(default_factory=list)

    def merge(self, other: Schema) -> Schema:
        """Return a schema with this schema's rules followed by ``other``'s."""
        return Schema(rules=[*self.rules, *other.rules])


# Resolve forward references for models that use TypeExpr and GroupDef.
TypeName.model_rebuild()
ChoiceDef.model_rebuild()
ArrayDef.model_rebuild()
MapDef.model_rebuild()
ControlDef.model_rebuild()
TaggedDef.model_rebuild()
UnwrapDef.model_rebuild()
EnumerationDef.model_rebuild()
InlineGroupDef.model_rebuild()
MemberKey.model_rebuild()
GroupEntry.model_rebuild()
GroupChoice.model_rebuild()
GroupDef.model_rebuild()
RuleDef.model_rebuild()
Schema.model_rebuild()
