# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Type graph builder: resolves a parsed schema into a closed type graph.

Resolution runs in two passes. The first pass collects every base
definition, group rule and socket plug by name, across all documents and in
declaration order. The second pass resolves lazily, starting at the roots:
each ``(rule, generic arguments)`` pair is resolved at most once and memoized,
and a reference to a pair that is still being resolved becomes a named
back-reference, which is how recursive rules terminate.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from cddlgen.compiler.naming import NameAllocator, camel_case, snake_case
from cddlgen.compiler.prelude import is_unsupported_prelude, prelude_ref
from cddlgen.errors import GenericArityMismatch, UnresolvedReference, UnsupportedConstruct
from cddlgen.model.ast import (
    ArrayDef,
    ChoiceDef,
    ControlDef,
    EnumerationDef,
    FixedValue,
    GroupDef,
    GroupEntry,
    InlineGroupDef,
    LiteralDef,
    MapDef,
    MemberKey,
    Occurrence,
    RuleDef,
    Schema,
    SocketRef,
    TaggedDef,
    TypeExpr,
    TypeName,
    UnwrapDef,
    ValueKind,
)
from cddlgen.model.graph import (
    Alternative,
    ArrayRef,
    CborBytesRef,
    Constraint,
    FieldDescriptor,
    FixedRef,
    GenericInstantiation,
    MapRef,
    NamedRef,
    OptionalRef,
    Primitive,
    PrimitiveRef,
    Representation,
    ResolvedType,
    Shape,
    TaggedRef,
    TypeGraph,
    TypeRef,
    ref_key,
)
from cddlgen.parser.comments import CommentMetadata, parse_comment_metadata

logger = logging.getLogger(__name__)

# ###############
# Public Interface
# ###############


def build_type_graph(schema: Schema | Sequence[RuleDef], roots: Sequence[str] | None = None) -> TypeGraph:
    """Resolve a schema into an immutable type graph.

    Args:
        schema: A parsed schema, or the rules of several documents in
            declaration order.
        roots: Names of the rules to generate. Everything they reach is
            resolved as well. Defaults to every non-generic type rule.

    Returns:
        The closed type graph.

    Raises:
        UnresolvedReference: If a rule references an undefined name.
        GenericArityMismatch: If a generic rule is used with the wrong number
            of arguments.
        UnsupportedConstruct: If the schema uses a construct that has no
            representation in generated code.
    """
    rules = schema.rules if isinstance(schema, Schema) else list(schema)
    return _TypeGraphBuilder(rules).build(roots)


def literal_ident(value: FixedValue) -> str:
    """Return a CamelCase identifier describing a literal value."""
    if value.kind == ValueKind.TEXT:
        text = str(value.value)
        return camel_case(text) if any(c.isalnum() for c in text) else "Text"
    if value.kind == ValueKind.UINT:
        return f"Value{value.value}"
    if value.kind == ValueKind.NINT:
        return f"ValueNeg{abs(int(value.value))}"  # type: ignore[arg-type]
    if value.kind == ValueKind.FLOAT:
        return "Float" + camel_case(str(value.value).replace("-", "Neg"))
    if value.kind == ValueKind.BYTES:
        return f"Bytes{str(value.value)[:8].upper()}"
    if value.kind == ValueKind.BOOL:
        return "True" if value.value else "False"
    return "Null"


# ################
# Implementation
# ################

_NO_METADATA = CommentMetadata()

# Fixed-width integer primitives, narrowest first.
_SIZED_INTEGERS: tuple[Primitive, ...] = (
    Primitive.U8,
    Primitive.U16,
    Primitive.U32,
    Primitive.U64,
    Primitive.I8,
    Primitive.I16,
    Primitive.I32,
    Primitive.I64,
)


@dataclass
class _RuleSet:
    """The base definition and the plugs collected for one name."""

    name: str
    base: RuleDef | None = None
    plugs: list[RuleDef] = field(default_factory=list)

    @property
    def first(self) -> RuleDef:
        return self.base if self.base is not None else self.plugs[0]

    @property
    def is_group(self) -> bool:
        return self.first.is_group_rule

    @property
    def generic_params(self) -> list[str]:
        return [p.name for p in self.first.generic_params]

    def definitions(self) -> list[RuleDef]:
        return ([self.base] if self.base is not None else []) + self.plugs


@dataclass
class _Scope:
    """Resolution context: the node being built and its generic bindings."""

    rule: str | None
    bindings: dict[str, TypeRef] = field(default_factory=dict)


class _TypeGraphBuilder:
    """Two-pass resolver producing a TypeGraph."""

    def __init__(self, rules: list[RuleDef]) -> None:
        self._rule_list = rules
        self._rules: dict[str, _RuleSet] = {}
        self._nodes: dict[str, ResolvedType] = {}
        self._memo: dict[tuple[str, tuple[str, ...]], NamedRef] = {}
        self._in_progress: set[tuple[str, tuple[str, ...]]] = set()
        self._back_references: list[str] = []
        self._instantiations: dict[GenericInstantiation, str] = {}
        self._idents = NameAllocator()
        self._ident_by_name: dict[str, str] = {}
        self._synthesized_choices: dict[str, NamedRef] = {}
        self._group_records: dict[tuple[str, Representation], NamedRef] = {}
        self._splicing: list[str] = []
        self._scopes: list[_Scope] = []

    def build(self, roots: Sequence[str] | None) -> TypeGraph:
        """Collect all definitions, then resolve from the roots."""
        self._collect()
        root_names = list(roots) if roots is not None else self._default_roots()
        for name in root_names:
            ruleset = self._rules.get(name)
            if ruleset is None:
                raise UnresolvedReference(name, None)
            if ruleset.is_group:
                raise UnsupportedConstruct(name, "a group rule cannot be a root type")
            if ruleset.generic_params:
                raise GenericArityMismatch(name, len(ruleset.generic_params), 0)
            self._instantiate(name, [])
        nodes = self._mark_recursive()
        graph = TypeGraph(nodes, root_names, self._instantiations, self._back_references)
        logger.debug(
            "Resolved %d types (%d generic instances) from %d rules",
            len(graph),
            len(self._instantiations),
            len(self._rule_list),
        )
        return graph

    # ------------------------------------------------------------------
    # Pass 1: collection
    # ------------------------------------------------------------------

    def _collect(self) -> None:
        """Group rules by name; plugs keep their declaration order."""
        for rule in self._rule_list:
            ruleset = self._rules.setdefault(rule.name, _RuleSet(rule.name))
            if rule.is_plug:
                if rule.generic_params:
                    raise UnsupportedConstruct(rule.name, "generic parameters on a plug ('/=' or '//=')")
                ruleset.plugs.append(rule)
            elif ruleset.base is not None:
                raise UnsupportedConstruct(
                    rule.name,
                    f"duplicate definition (first defined at line {ruleset.base.location.line} "
                    f"of {ruleset.base.source})",
                )
            else:
                ruleset.base = rule
        for ruleset in self._rules.values():
            kinds = {d.is_group_rule for d in ruleset.definitions()}
            if len(kinds) > 1:
                raise UnsupportedConstruct(ruleset.name, "mixes type and group definitions")
            if ruleset.base is None and ruleset.plugs and ruleset.plugs[0].generic_params:
                raise UnsupportedConstruct(ruleset.name, "generic parameters on a plug")
            if ruleset.is_group and ruleset.generic_params:
                raise UnsupportedConstruct(ruleset.name, "generic group rules are not supported")

    def _default_roots(self) -> list[str]:
        return [
            name
            for name, rs in self._rules.items()
            if not rs.is_group and not rs.generic_params and not name.startswith("$")
        ]

    # ------------------------------------------------------------------
    # Pass 2: resolution of named rules
    # ------------------------------------------------------------------

    @property
    def _scope(self) -> _Scope:
        return self._scopes[-1] if self._scopes else _Scope(rule=None)

    def _instantiate(self, name: str, args: list[TypeRef]) -> NamedRef:
        """Resolve rule ``name`` bound to ``args``, memoized by argument keys."""
        ruleset = self._rules[name]
        params = ruleset.generic_params
        if len(params) != len(args):
            raise GenericArityMismatch(name, len(params), len(args))
        arg_keys = tuple(ref_key(a) for a in args)
        key = (name, arg_keys)
        if key in self._memo:
            return self._memo[key]

        instantiation = GenericInstantiation(rule=name, args=arg_keys) if params else None
        stable = instantiation.stable_name if instantiation is not None else name
        ref = NamedRef(name=stable)
        if key in self._in_progress:
            if stable not in self._back_references:
                self._back_references.append(stable)
            return ref

        self._in_progress.add(key)
        ident = self._idents.allocate(camel_case(name) + "".join(self._ref_ident(a) for a in args))
        self._ident_by_name[stable] = ident
        self._scopes.append(_Scope(rule=stable, bindings=dict(zip(params, args))))
        try:
            node = self._build_rule_node(ruleset, stable, ident)
        finally:
            self._scopes.pop()
            self._in_progress.discard(key)
        if instantiation is not None:
            node = node.model_copy(update={"instantiation": instantiation})
            self._instantiations[instantiation] = stable
        self._nodes[stable] = node
        self._memo[key] = ref
        return ref

    def _build_rule_node(self, ruleset: _RuleSet, stable: str, ident: str) -> ResolvedType:
        """Build the node for a type rule, merging plugs into a choice."""
        base = ruleset.base
        meta = (
            parse_comment_metadata(base.comments, base.trailing_comments)
            if base is not None
            else parse_comment_metadata(ruleset.first.comments)
        )
        if not ruleset.plugs:
            assert base is not None and base.type is not None
            return self._node_from_type(stable, ident, base.type, meta, origin=ruleset.name)

        alternatives: list[tuple[TypeExpr, CommentMetadata]] = []
        for definition in ruleset.definitions():
            assert definition.type is not None
            plug_meta = (
                parse_comment_metadata(definition.comments, definition.trailing_comments)
                if definition is not base
                else _NO_METADATA
            )
            exprs = _choice_alternatives(definition.type)
            for expr in exprs:
                alt_meta = plug_meta if len(exprs) == 1 else CommentMetadata(doc=plug_meta.doc)
                alternatives.append((expr, alt_meta))
        logger.debug("Type '%s' has %d alternative(s) from %d plug(s)", stable, len(alternatives), len(ruleset.plugs))
        return self._choice_node(stable, ident, alternatives, meta.doc, tag=None, origin=ruleset.name)

    # ------------------------------------------------------------------
    # Node construction
    # ------------------------------------------------------------------

    def _node_from_type(
        self,
        stable: str,
        ident: str,
        expr: TypeExpr,
        meta: CommentMetadata,
        *,
        tag: int | None = None,
        synthesized: bool = False,
        origin: str | None = None,
    ) -> ResolvedType:
        """Build a node whose definition is the type expression ``expr``."""
        origin = origin or self._scope.rule
        common = {"name": stable, "ident": ident, "doc": meta.doc, "synthesized": synthesized, "origin": origin}
        if isinstance(expr, ChoiceDef):
            return self._choice_node(
                stable, ident, [(a, _NO_METADATA) for a in expr.alternatives], meta.doc, tag, synthesized, origin
            )
        if isinstance(expr, MapDef):
            return self._map_node(expr.group, tag, common)
        if isinstance(expr, ArrayDef):
            return self._array_node(expr.group, tag, common)
        if isinstance(expr, EnumerationDef):
            return self._enumeration_node(expr, tag, common)
        if isinstance(expr, TaggedDef):
            tag_number, inner = self._tag_parts(expr)
            if tag is not None:
                target = TaggedRef(tag=tag, inner=TaggedRef(tag=tag_number, inner=self._type_ref(inner, ident)))
                return ResolvedType(shape=Shape.ALIAS, target=target, **common)
            return self._node_from_type(
                stable, ident, inner, meta, tag=tag_number, synthesized=synthesized, origin=origin
            )
        if isinstance(expr, ControlDef) and expr.operator != "default":
            base, constraint = self._constrain(expr)
            if constraint is not None:
                return ResolvedType(
                    shape=Shape.WRAPPED_PRIMITIVE, target=base, constraint=constraint, tag=tag, **common
                )
            return self._alias_node(base, meta, tag, common)
        if isinstance(expr, (UnwrapDef, InlineGroupDef)):
            self._type_ref(expr, ident)  # raises UnsupportedConstruct
        return self._alias_node(self._type_ref(expr, ident + "Value"), meta, tag, common)

    def _alias_node(self, target: TypeRef, meta: CommentMetadata, tag: int | None, common: dict) -> ResolvedType:
        if meta.is_newtype:
            return ResolvedType(shape=Shape.WRAPPED_PRIMITIVE, target=target, tag=tag, **common)
        if tag is not None:
            target = TaggedRef(tag=tag, inner=target)
        return ResolvedType(shape=Shape.ALIAS, target=target, **common)

    def _choice_node(
        self,
        stable: str,
        ident: str,
        alternatives: list[tuple[TypeExpr, CommentMetadata]],
        doc: tuple[str, ...],
        tag: int | None,
        synthesized: bool = False,
        origin: str | None = None,
    ) -> ResolvedType:
        """Build a choice node; ``T / null`` becomes an optional alias."""
        origin = origin or self._scope.rule
        common = {"name": stable, "ident": ident, "doc": doc, "synthesized": synthesized, "origin": origin}
        non_null = [(e, m) for e, m in alternatives if not self._is_null(e)]
        if tag is None and len(non_null) == 1 and len(alternatives) == 2:
            inner = self._type_ref(non_null[0][0], ident + "Value")
            return ResolvedType(shape=Shape.ALIAS, target=OptionalRef(inner=inner), **common)

        refs = [self._type_ref(expr, f"{ident}{i}") for i, (expr, _) in enumerate(alternatives)]
        names = [m.name for _, m in alternatives]
        docs = [m.doc for _, m in alternatives]
        return ResolvedType(
            shape=Shape.CHOICE, alternatives=self._alternatives(refs, names, docs), tag=tag, **common
        )

    def _alternatives(
        self,
        refs: list[TypeRef],
        names: list[str | None] | None = None,
        docs: list[tuple[str, ...]] | None = None,
    ) -> tuple[Alternative, ...]:
        """Name choice alternatives; literal alternatives are stored resolved."""
        allocator = NameAllocator()
        result: list[Alternative] = []
        for index, ref in enumerate(refs):
            explicit = names[index] if names else None
            variant = allocator.allocate(camel_case(explicit) if explicit else self._ref_ident(ref))
            resolved = self._resolve_alias(ref)
            stored = resolved if isinstance(resolved, FixedRef) else ref
            result.append(Alternative(name=variant, type=stored, doc=docs[index] if docs else ()))
        return tuple(result)

    def _map_node(self, group: GroupDef, tag: int | None, common: dict) -> ResolvedType:
        """Build a record, table or group-choice node from ``{ group }``."""
        if len(group.choices) > 1:
            return self._group_choice_node(group, Representation.MAP, tag, common)
        entries = self._expand_entries(group.choices[0].entries)
        if len(entries) == 1 and _is_table_entry(entries[0]):
            entry = entries[0]
            assert entry.key is not None and entry.key.type is not None
            ident = common["ident"]
            key_ref = self._type_ref(entry.key.type, ident + "Key")
            value_ref = self._type_ref(entry.value, ident + "Value")
            shape = Shape.MAP_FIXED_KEYS if self._is_finite(key_ref) else Shape.MAP_VARIABLE_KEYS
            return ResolvedType(
                shape=shape, key_type=key_ref, value_type=value_ref, occurrence=entry.occurrence, tag=tag, **common
            )
        fields = self._record_fields(common["name"], common["ident"], entries, Representation.MAP)
        return ResolvedType(
            shape=Shape.RECORD, representation=Representation.MAP, fields=fields, tag=tag, **common
        )

    def _array_node(self, group: GroupDef, tag: int | None, common: dict) -> ResolvedType:
        """Build a record, homogeneous array or group-choice node from ``[ group ]``."""
        if len(group.choices) > 1:
            return self._group_choice_node(group, Representation.ARRAY, tag, common)
        entries = self._expand_entries(group.choices[0].entries)
        if len(entries) == 1 and entries[0].occurrence.is_repeated:
            entry = entries[0]
            element = self._type_ref(entry.value, common["ident"] + "Item")
            return ResolvedType(shape=Shape.ARRAY, target=element, occurrence=entry.occurrence, tag=tag, **common)
        fields = self._record_fields(common["name"], common["ident"], entries, Representation.ARRAY)
        return ResolvedType(
            shape=Shape.RECORD, representation=Representation.ARRAY, fields=fields, tag=tag, **common
        )

    def _group_choice_node(
        self, group: GroupDef, representation: Representation, tag: int | None, common: dict
    ) -> ResolvedType:
        """Build a choice over synthesized records, one per group choice."""
        refs: list[TypeRef] = []
        names: list[str | None] = []
        docs: list[tuple[str, ...]] = []
        for index, choice in enumerate(group.choices):
            meta = parse_comment_metadata(choice.comments)
            group_name = self._single_group_reference(choice.entries)
            if group_name is not None and meta.name is None:
                refs.append(self._group_record(group_name, representation))
                names.append(None)
            else:
                hint = meta.name or f"{common['ident']}{index}"
                stable, ident = self._allocate_synthesized(hint)
                entries = self._expand_entries(choice.entries)
                fields = self._record_fields(stable, ident, entries, representation)
                self._nodes[stable] = ResolvedType(
                    name=stable,
                    ident=ident,
                    shape=Shape.RECORD,
                    representation=representation,
                    fields=fields,
                    doc=meta.doc,
                    synthesized=True,
                    origin=common["origin"],
                )
                refs.append(NamedRef(name=stable))
                names.append(ident)
            docs.append(meta.doc)
        return ResolvedType(
            shape=Shape.CHOICE, alternatives=self._alternatives(refs, names, docs), tag=tag, **common
        )

    def _group_record(self, group_name: str, representation: Representation) -> NamedRef:
        """Return the record synthesized from a named group, shared between uses."""
        memo_key = (group_name, representation)
        if memo_key in self._group_records and not self._scope.bindings:
            return self._group_records[memo_key]
        stable, ident = self._allocate_synthesized(group_name)
        group_rule = self._rules[group_name].first
        meta = parse_comment_metadata(group_rule.comments, group_rule.trailing_comments)
        entries = self._expand_entries([GroupEntry(value=TypeName(name=group_name))])
        fields = self._record_fields(stable, ident, entries, representation)
        self._nodes[stable] = ResolvedType(
            name=stable,
            ident=ident,
            shape=Shape.RECORD,
            representation=representation,
            fields=fields,
            doc=meta.doc,
            synthesized=True,
            origin=group_name,
        )
        ref = NamedRef(name=stable)
        if not self._scope.bindings:
            self._group_records[memo_key] = ref
        return ref

    def _enumeration_node(self, expr: EnumerationDef, tag: int | None, common: dict) -> ResolvedType:
        """Build a literal choice from ``&( group )`` or ``&groupname``."""
        if expr.group is not None:
            group = expr.group
        else:
            assert expr.name is not None
            ruleset = self._rules.get(expr.name)
            if ruleset is None:
                raise UnresolvedReference(expr.name, self._scope.rule, expr.location.line, expr.location.column)
            if not ruleset.is_group:
                raise UnsupportedConstruct(self._scope.rule, f"'&{expr.name}' requires a group")
            group = _merged_group(ruleset)
        if len(group.choices) != 1:
            raise UnsupportedConstruct(self._scope.rule, "enumeration of a group with group choices")
        refs: list[TypeRef] = []
        names: list[str | None] = []
        for entry in self._expand_entries(group.choices[0].entries):
            ref = self._resolve_alias(self._type_ref(entry.value, common["ident"]))
            if not isinstance(ref, FixedRef):
                raise UnsupportedConstruct(self._scope.rule, "enumerations may only contain literal values")
            refs.append(ref)
            names.append(entry.key.name if entry.key is not None and entry.key.kind == "bareword" else None)
        return ResolvedType(shape=Shape.CHOICE, alternatives=self._alternatives(refs, names), tag=tag, **common)

    # ------------------------------------------------------------------
    # Groups and fields
    # ------------------------------------------------------------------

    def _single_group_reference(self, entries: list[GroupEntry]) -> str | None:
        """Return the group name if ``entries`` is exactly one plain group reference."""
        if len(entries) != 1:
            return None
        entry = entries[0]
        if entry.key is not None or entry.occurrence != Occurrence():
            return None
        value = entry.value
        if isinstance(value, TypeName) and self._is_group_name(value.name):
            return value.name
        return None

    def _is_group_name(self, name: str) -> bool:
        ruleset = self._rules.get(name)
        return ruleset is not None and ruleset.is_group and name not in self._scope.bindings

    def _expand_entries(self, entries: list[GroupEntry]) -> list[GroupEntry]:
        """Splice group references and inline groups into a flat entry list."""
        result: list[GroupEntry] = []
        for entry in entries:
            value = entry.value
            if entry.key is not None:
                result.append(entry)
                continue
            if isinstance(value, TypeName) and self._is_group_name(value.name):
                if value.generic_args:
                    raise UnsupportedConstruct(self._scope.rule, f"generic arguments on group '{value.name}'")
                group = _merged_group(self._rules[value.name])
                spliced = self._splice(value.name, group, entry.occurrence)
            elif isinstance(value, InlineGroupDef):
                spliced = self._splice(None, value.group, entry.occurrence)
            elif isinstance(value, SocketRef) and value.is_group:
                ruleset = self._rules.get(value.name)
                if ruleset is None:
                    logger.debug("Group socket '%s' has no plugs; splicing nothing", value.name)
                    continue
                raise UnsupportedConstruct(self._scope.rule, f"group socket '{value.name}' with plugs")
            else:
                result.append(entry)
                continue
            result.extend(spliced)
        return result

    def _splice(self, name: str | None, group: GroupDef, occurrence: Occurrence) -> list[GroupEntry]:
        """Return the entries of ``group``, made optional for an optional reference."""
        label = f"group '{name}'" if name else "an inline group"
        if len(group.choices) != 1:
            raise UnsupportedConstruct(self._scope.rule, f"{label} with group choices cannot be spliced")
        if occurrence.is_repeated:
            raise UnsupportedConstruct(self._scope.rule, f"repeated {label}")
        if name is not None:
            if name in self._splicing:
                raise UnsupportedConstruct(self._scope.rule, f"recursive group '{name}'")
            self._splicing.append(name)
        try:
            entries = self._expand_entries(group.choices[0].entries)
        finally:
            if name is not None:
                self._splicing.pop()
        if occurrence.min == 0:
            entries = [e.model_copy(update={"occurrence": Occurrence(min=0, max=e.occurrence.max)}) for e in entries]
        return entries

    def _record_fields(
        self, owner: str, owner_ident: str, entries: list[GroupEntry], representation: Representation
    ) -> tuple[FieldDescriptor, ...]:
        """Turn group entries into field descriptors."""
        allocator = NameAllocator()
        fields: list[FieldDescriptor] = []
        for index, entry in enumerate(entries):
            if entry.occurrence.is_repeated:
                raise UnsupportedConstruct(
                    owner,
                    f"repeated entry at position {index}; repetition is only supported as the sole entry "
                    "of an array or map",
                )
            meta = parse_comment_metadata(entry.comments)
            value_expr, default = self._split_default(entry.value)
            key = self._field_key(owner, entry.key) if representation == Representation.MAP else None
            name = allocator.allocate(snake_case(meta.name or self._field_name(entry, index)))
            fields.append(
                FieldDescriptor(
                    name=name,
                    type=self._type_ref(value_expr, owner_ident + camel_case(name)),
                    optional=entry.occurrence.min == 0,
                    occurrence=entry.occurrence,
                    key=key,
                    default=default,
                    doc=meta.doc,
                )
            )
        return tuple(fields)

    def _field_key(self, owner: str, key: MemberKey | None) -> FixedValue:
        """Return the fixed map key of a record field."""
        if key is None:
            raise UnsupportedConstruct(owner, "map entries need a member key")
        if key.kind == "bareword":
            return FixedValue(kind=ValueKind.TEXT, value=key.name)
        if key.kind == "value" and key.value is not None:
            return key.value
        if isinstance(key.type, LiteralDef):
            return key.type.value
        raise UnsupportedConstruct(
            owner, "map records need fixed keys; use a single '* key => value' entry for a table"
        )

    def _field_name(self, entry: GroupEntry, index: int) -> str:
        """Derive a field name from the key or the type of an entry."""
        key = entry.key
        if key is not None:
            if key.kind == "bareword" and key.name:
                return key.name
            literal = key.value if key.kind == "value" else key.type.value if isinstance(key.type, LiteralDef) else None
            if literal is not None:
                if literal.kind == ValueKind.TEXT and any(c.isalnum() for c in str(literal.value)):
                    return str(literal.value)
                if literal.kind in (ValueKind.UINT, ValueKind.NINT):
                    return f"key_{literal.value}".replace("-", "neg")
            return f"key_{index}"
        value = entry.value
        if isinstance(value, ControlDef) and value.operator == "default":
            value = value.target
        if isinstance(value, TypeName) and value.name in self._rules:
            return value.name
        if isinstance(value, SocketRef):
            return value.name.lstrip("$")
        if isinstance(value, ArrayDef) and len(value.group.choices) == 1 and len(value.group.choices[0].entries) == 1:
            inner = value.group.choices[0].entries[0].value
            if isinstance(inner, TypeName) and inner.name in self._rules:
                return inner.name + "s"
        return f"index_{index}"

    def _split_default(self, expr: TypeExpr) -> tuple[TypeExpr, FixedValue | None]:
        """Separate ``T .default v`` into ``T`` and the default literal."""
        if not isinstance(expr, ControlDef) or expr.operator != "default":
            return expr, None
        value = self._resolve_alias(self._type_ref(expr.argument, "Default"))
        if not isinstance(value, FixedRef):
            raise UnsupportedConstruct(self._scope.rule, ".default requires a literal value")
        return expr.target, value.value

    # ------------------------------------------------------------------
    # Type references
    # ------------------------------------------------------------------

    def _type_ref(self, expr: TypeExpr, hint: str) -> TypeRef:
        """Resolve a type expression to a reference, synthesizing anonymous nodes."""
        if isinstance(expr, LiteralDef):
            return FixedRef(value=expr.value)
        if isinstance(expr, TypeName):
            return self._name_ref(expr, hint)
        if isinstance(expr, SocketRef):
            if expr.is_group:
                raise UnsupportedConstruct(self._scope.rule, f"group socket '{expr.name}' used as a type")
            if expr.name not in self._rules:
                raise UnsupportedConstruct(self._scope.rule, f"socket '{expr.name}' has no plugs")
            return self._instantiate(expr.name, [])
        if isinstance(expr, ChoiceDef):
            return self._inline_choice(expr, hint)
        if isinstance(expr, ArrayDef):
            return self._inline_array(expr, hint)
        if isinstance(expr, MapDef):
            return self._inline_map(expr, hint)
        if isinstance(expr, ControlDef):
            if expr.operator == "default":
                raise UnsupportedConstruct(self._scope.rule, ".default is only supported on optional fields")
            base, constraint = self._constrain(expr)
            if constraint is None:
                return base
            stable, ident = self._allocate_synthesized(hint)
            self._nodes[stable] = ResolvedType(
                name=stable,
                ident=ident,
                shape=Shape.WRAPPED_PRIMITIVE,
                target=base,
                constraint=constraint,
                synthesized=True,
                origin=self._scope.rule,
            )
            return NamedRef(name=stable)
        if isinstance(expr, TaggedDef):
            tag, inner = self._tag_parts(expr)
            return TaggedRef(tag=tag, inner=self._type_ref(inner, hint))
        if isinstance(expr, EnumerationDef):
            return self._synthesize(expr, hint)
        if isinstance(expr, UnwrapDef):
            raise UnsupportedConstruct(self._scope.rule, f"unwrap operator '~{expr.name}'")
        raise UnsupportedConstruct(self._scope.rule, "a group used where a type is expected")

    def _name_ref(self, expr: TypeName, hint: str) -> TypeRef:
        """Resolve a name: generic parameter, rule, or prelude type."""
        scope = self._scope
        if expr.name in scope.bindings:
            if expr.generic_args:
                raise UnsupportedConstruct(scope.rule, f"generic parameter '{expr.name}' takes no arguments")
            return scope.bindings[expr.name]
        ruleset = self._rules.get(expr.name)
        if ruleset is not None:
            if ruleset.is_group:
                raise UnsupportedConstruct(scope.rule, f"group '{expr.name}' used where a type is expected")
            args = [self._type_ref(arg, f"{hint}Arg{i}") for i, arg in enumerate(expr.generic_args)]
            return self._instantiate(expr.name, args)
        ref = prelude_ref(expr.name)
        if ref is not None:
            if expr.generic_args:
                raise GenericArityMismatch(expr.name, 0, len(expr.generic_args))
            return ref
        if is_unsupported_prelude(expr.name):
            raise UnsupportedConstruct(scope.rule, f"prelude type '{expr.name}' has no fixed representation")
        raise UnresolvedReference(expr.name, scope.rule, expr.location.line, expr.location.column)

    def _inline_choice(self, expr: ChoiceDef, hint: str) -> TypeRef:
        """Resolve an anonymous type choice appearing inside another type."""
        non_null = [a for a in expr.alternatives if not self._is_null(a)]
        if len(non_null) < len(expr.alternatives):
            if not non_null:
                return PrimitiveRef(primitive=Primitive.NULL)
            inner_expr = non_null[0] if len(non_null) == 1 else ChoiceDef(alternatives=non_null, location=expr.location)
            return OptionalRef(inner=self._type_ref(inner_expr, hint))

        refs = [self._type_ref(a, f"{hint}{i}") for i, a in enumerate(expr.alternatives)]
        memo_key = " / ".join(ref_key(r) for r in refs)
        if memo_key in self._synthesized_choices:
            return self._synthesized_choices[memo_key]
        nameable = all(isinstance(r, (PrimitiveRef, NamedRef, FixedRef)) for r in refs)
        name = "Or".join(self._ref_ident(r) for r in refs) if nameable else hint
        stable, ident = self._allocate_synthesized(name)
        self._nodes[stable] = ResolvedType(
            name=stable,
            ident=ident,
            shape=Shape.CHOICE,
            alternatives=self._alternatives(refs),
            synthesized=True,
            origin=self._scope.rule,
        )
        ref = NamedRef(name=stable)
        self._synthesized_choices[memo_key] = ref
        return ref

    def _inline_array(self, expr: ArrayDef, hint: str) -> TypeRef:
        if len(expr.group.choices) == 1:
            entries = self._expand_entries(expr.group.choices[0].entries)
            if len(entries) == 1 and entries[0].occurrence.is_repeated:
                occurrence = entries[0].occurrence
                element = self._type_ref(entries[0].value, hint + "Item")
                return ArrayRef(element=element, min_items=occurrence.min, max_items=occurrence.max)
        return self._synthesize(expr, hint)

    def _inline_map(self, expr: MapDef, hint: str) -> TypeRef:
        if len(expr.group.choices) == 1:
            entries = self._expand_entries(expr.group.choices[0].entries)
            if len(entries) == 1 and _is_table_entry(entries[0]) and entries[0].occurrence == Occurrence(max=None, min=0):
                entry = entries[0]
                assert entry.key is not None and entry.key.type is not None
                return MapRef(
                    key=self._type_ref(entry.key.type, hint + "Key"),
                    value=self._type_ref(entry.value, hint + "Value"),
                )
        return self._synthesize(expr, hint)

    def _synthesize(self, expr: TypeExpr, hint: str) -> NamedRef:
        """Create a named node for an anonymous aggregate."""
        stable, ident = self._allocate_synthesized(hint)
        self._ident_by_name[stable] = ident
        self._nodes[stable] = self._node_from_type(stable, ident, expr, _NO_METADATA, synthesized=True)
        return NamedRef(name=stable)

    def _allocate_synthesized(self, hint: str) -> tuple[str, str]:
        """Return a fresh (stable name, identifier) pair for a synthesized node."""
        ident = self._idents.allocate(camel_case(hint))
        while ident in self._rules or ident in self._nodes:
            ident = self._idents.allocate(camel_case(hint))
        self._ident_by_name[ident] = ident
        return ident, ident

    # ------------------------------------------------------------------
    # Controls, tags and literals
    # ------------------------------------------------------------------

    def _tag_parts(self, expr: TaggedDef) -> tuple[int, TypeExpr]:
        if expr.major != 6 or expr.inner is None:
            raise UnsupportedConstruct(self._scope.rule, f"major type #{expr.major} data items")
        if expr.tag is None:
            raise UnsupportedConstruct(self._scope.rule, "tagged data without a tag number")
        return expr.tag, expr.inner

    def _constrain(self, expr: ControlDef) -> tuple[TypeRef, Constraint | None]:
        """Interpret a range or control operator.

        Returns the base reference and the constraint still to be enforced,
        which is None when the base reference already captures it exactly
        (a machine-width integer, or ``bytes .cbor T``).
        """
        rule = self._scope.rule
        if expr.operator == "cbor":
            base = self._resolve_alias(self._type_ref(expr.target, "Bytes"))
            if base != PrimitiveRef(primitive=Primitive.BYTES):
                raise UnsupportedConstruct(rule, ".cbor applies to byte strings only")
            return CborBytesRef(inner=self._type_ref(expr.argument, "Embedded")), None

        if expr.operator in ("..", "..."):
            low = self._literal_int(expr.target)
            high = self._literal_int(expr.argument)
            if expr.operator == "...":
                high -= 1
            primitive = Primitive.UINT if low >= 0 else Primitive.INT
            return _integer_constraint(primitive, low, high)

        base_ref = self._resolve_alias(self._type_ref(expr.target, "Base"))
        if not isinstance(base_ref, PrimitiveRef):
            raise UnsupportedConstruct(rule, f".{expr.operator} on a non-primitive type")
        primitive = base_ref.primitive
        if expr.operator == "size":
            low, high = self._size_bounds(expr.argument)
            if primitive in (Primitive.TEXT, Primitive.BYTES):
                return base_ref, Constraint(min=low, max=high, applies_to="length")
            if primitive in (Primitive.UINT, Primitive.U64):
                return _integer_constraint(Primitive.UINT, 0, 256**high - 1)
            raise UnsupportedConstruct(rule, f".size on '{primitive.value}'")
        if not primitive.is_integer:
            raise UnsupportedConstruct(rule, f".{expr.operator} on '{primitive.value}'")
        bound = self._literal_int(expr.argument)
        lowest, highest = primitive.bounds
        if expr.operator == "le":
            return _integer_constraint(primitive, lowest, bound)
        if expr.operator == "lt":
            return _integer_constraint(primitive, lowest, bound - 1)
        if expr.operator == "ge":
            return _integer_constraint(primitive, bound, highest)
        if expr.operator == "gt":
            return _integer_constraint(primitive, bound + 1, highest)
        if expr.operator == "eq":
            return _integer_constraint(primitive, bound, bound)
        raise UnsupportedConstruct(rule, f"control operator '.{expr.operator}'")

    def _size_bounds(self, argument: TypeExpr) -> tuple[int, int]:
        if isinstance(argument, ControlDef) and argument.operator in ("..", "..."):
            low = self._literal_int(argument.target)
            high = self._literal_int(argument.argument)
            return low, high - 1 if argument.operator == "..." else high
        size = self._literal_int(argument)
        return size, size

    def _literal_int(self, expr: TypeExpr) -> int:
        ref = self._resolve_alias(self._type_ref(expr, "Bound"))
        if isinstance(ref, FixedRef) and ref.value.kind in (ValueKind.UINT, ValueKind.NINT):
            return int(ref.value.value)  # type: ignore[arg-type]
        raise UnsupportedConstruct(self._scope.rule, "range bounds and sizes must be integer literals")

    def _is_null(self, expr: TypeExpr) -> bool:
        return (
            isinstance(expr, TypeName)
            and expr.name in ("null", "nil")
            and expr.name not in self._rules
            and expr.name not in self._scope.bindings
        )

    def _is_finite(self, ref: TypeRef) -> bool:
        """Return True if ``ref`` admits a fixed, finite set of literal values."""
        resolved = self._resolve_alias(ref)
        if isinstance(resolved, FixedRef):
            return True
        if isinstance(resolved, NamedRef) and resolved.name in self._nodes:
            node = self._nodes[resolved.name]
            return node.shape == Shape.CHOICE and all(isinstance(a.type, FixedRef) for a in node.alternatives)
        return False

    def _resolve_alias(self, ref: TypeRef) -> TypeRef:
        """Follow named references through already-built alias nodes."""
        seen: set[str] = set()
        while isinstance(ref, NamedRef) and ref.name in self._nodes and ref.name not in seen:
            node = self._nodes[ref.name]
            if node.shape != Shape.ALIAS or node.target is None:
                break
            seen.add(ref.name)
            ref = node.target
        return ref

    def _ref_ident(self, ref: TypeRef) -> str:
        """Return a CamelCase identifier fragment describing ``ref``."""
        if isinstance(ref, PrimitiveRef):
            return camel_case(ref.primitive.value)
        if isinstance(ref, NamedRef):
            return self._ident_by_name.get(ref.name, camel_case(ref.name))
        if isinstance(ref, FixedRef):
            return literal_ident(ref.value)
        if isinstance(ref, ArrayRef):
            return self._ref_ident(ref.element) + "List"
        if isinstance(ref, MapRef):
            return f"Map{self._ref_ident(ref.key)}To{self._ref_ident(ref.value)}"
        if isinstance(ref, OptionalRef):
            return "Optional" + self._ref_ident(ref.inner)
        if isinstance(ref, TaggedRef):
            return "Tagged" + self._ref_ident(ref.inner)
        return "Cbor" + self._ref_ident(ref.inner)

    # ------------------------------------------------------------------
    # Recursion
    # ------------------------------------------------------------------

    def _mark_recursive(self) -> dict[str, ResolvedType]:
        """Flag every node that lies on a reference cycle."""
        provisional = TypeGraph(self._nodes, ())
        recursive: set[str] = set()
        for component in provisional.strongly_connected_components():
            if len(component) > 1 or component[0] in provisional.dependencies(component[0]):
                recursive.update(component)
        if recursive:
            logger.debug("Recursive types: %s", ", ".join(sorted(recursive)))
        return {
            name: node.model_copy(update={"recursive": True}) if name in recursive else node
            for name, node in self._nodes.items()
        }


def _choice_alternatives(expr: TypeExpr) -> list[TypeExpr]:
    return list(expr.alternatives) if isinstance(expr, ChoiceDef) else [expr]


def _merged_group(ruleset: _RuleSet) -> GroupDef:
    """Return a group rule's base choices followed by its ``//=`` plugs."""
    choices = []
    for definition in ruleset.definitions():
        assert definition.group is not None
        choices.extend(definition.group.choices)
    return GroupDef(choices=choices, location=ruleset.first.location)


def _is_table_entry(entry: GroupEntry) -> bool:
    """Return True for an entry of the form ``K => V`` with a non-literal key type."""
    key = entry.key
    return key is not None and key.kind == "type" and not isinstance(key.type, LiteralDef)


def _integer_constraint(primitive: Primitive, low: int | None, high: int | None) -> tuple[TypeRef, Constraint | None]:
    """Map integer bounds onto a machine-width primitive when they match one exactly."""
    for sized in _SIZED_INTEGERS:
        if sized.bounds == (low, high):
            return PrimitiveRef(primitive=sized), None
    if (low, high) == primitive.bounds:
        return PrimitiveRef(primitive=primitive), None
    return PrimitiveRef(primitive=primitive), Constraint(min=low, max=high, applies_to="value")
