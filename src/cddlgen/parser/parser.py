# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Recursive-descent parser for CDDL documents.

Converts a token stream produced by the lexer into a :class:`Schema` AST.
Comments attached to tokens are distributed onto rules and group entries:
the comment lines immediately preceding a rule become its leading comments,
and comments on the line where a rule or entry ends become its trailing
comments.
"""

from cddlgen.errors import SchemaSyntaxError
from cddlgen.model.ast import (
    ArrayDef,
    ChoiceDef,
    ControlDef,
    EnumerationDef,
    FixedValue,
    GenericParam,
    GroupChoice,
    GroupDef,
    GroupEntry,
    InlineGroupDef,
    LiteralDef,
    Location,
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
from cddlgen.parser.lexer import Token, TokenType, tokenize

# ###############
# Public Interface
# ###############


class ParseError(SchemaSyntaxError):
    """Raised when the parser encounters a syntactically invalid construct."""


def parse(source: str, source_name: str = "<schema>") -> Schema:
    """Parse CDDL source text into a schema AST.

    Args:
        source: The full text of a CDDL document.
        source_name: Name recorded on every rule and reported in errors.

    Returns:
        A Schema holding the rules in declaration order.

    Raises:
        LexerError: If the source contains invalid characters or unterminated literals.
        ParseError: If the source is syntactically invalid.
    """
    tokens = tokenize(source, source_name)
    return _Parser(tokens, source_name).parse()


# ################
# Implementation
# ################

_ASSIGN_TYPES: tuple[TokenType, ...] = (TokenType.ASSIGN, TokenType.TYPE_PLUG, TokenType.GROUP_PLUG)

_LITERAL_TYPES: tuple[TokenType, ...] = (TokenType.INTEGER, TokenType.FLOAT, TokenType.TEXT, TokenType.BYTES)

_GROUP_END_TYPES: tuple[TokenType, ...] = (
    TokenType.RPAREN,
    TokenType.RBRACKET,
    TokenType.RBRACE,
    TokenType.DOUBLE_SLASH,
    TokenType.EOF,
)

_OPENERS: dict[TokenType, TokenType] = {
    TokenType.LPAREN: TokenType.RPAREN,
    TokenType.LBRACKET: TokenType.RBRACKET,
    TokenType.LBRACE: TokenType.RBRACE,
    TokenType.LANGLE: TokenType.RANGLE,
}


def _parse_integer(text: str) -> int:
    """Convert decimal, 0x hex or 0b binary integer text (with optional sign)."""
    sign = -1 if text.startswith("-") else 1
    digits = text.lstrip("-")
    if digits[:2] in ("0x", "0X"):
        return sign * int(digits[2:], 16)
    if digits[:2] in ("0b", "0B"):
        return sign * int(digits[2:], 2)
    return sign * int(digits, 10)


class _Parser:
    """Recursive-descent parser for CDDL token streams."""

    def __init__(self, tokens: list[Token], source_name: str) -> None:
        self._tokens = tokens
        self._source_name = source_name
        self._pos = 0

    def parse(self) -> Schema:
        """Parse the full token stream and return a Schema."""
        rules: list[RuleDef] = []
        while not self._at_end():
            rules.append(self._parse_rule())
        return Schema(rules=rules)

    # ------------------------------------------------------------------
    # Token access helpers
    # ------------------------------------------------------------------

    def _current(self) -> Token:
        """Return the current (un-consumed) token."""
        return self._tokens[self._pos]

    def _peek_type(self, offset: int = 0) -> TokenType:
        """Return the type of the token ``offset`` positions ahead (clamped to EOF)."""
        index = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[index].type

    def _at_end(self) -> bool:
        """Return True if the current token is the EOF token."""
        return self._peek_type() == TokenType.EOF

    def _advance(self) -> Token:
        """Consume and return the current token, stopping at EOF."""
        tok = self._tokens[self._pos]
        if self._pos < len(self._tokens) - 1:
            self._pos += 1
        return tok

    def _expect(self, *types: TokenType) -> Token:
        """Consume the current token if it matches any of the given types.

        Raises ParseError if the current token does not match.
        """
        tok = self._current()
        if tok.type not in types:
            expected = ", ".join(repr(t.value) for t in types)
            raise self._error(f"Expected {expected}, got {tok.value!r}", tok, expected=expected)
        return self._advance()

    def _check(self, *types: TokenType) -> bool:
        """Return True if the current token matches any of the given types (without
        consuming).
        """
        return self._peek_type() in types

    def _error(self, message: str, tok: Token, expected: str | None = None) -> ParseError:
        """Build a ParseError located at ``tok``."""
        found = tok.value if tok.type != TokenType.EOF else "end of input"
        return ParseError(message, tok.line, tok.column, expected=expected, found=found, source=self._source_name)

    def _location(self) -> Location:
        tok = self._current()
        return Location(line=tok.line, column=tok.column)

    def _adjacent(self, offset: int) -> bool:
        """Return True if the token at ``offset`` directly follows the one before it."""
        if self._pos + offset >= len(self._tokens) or self._pos + offset < 1:
            return False
        before = self._tokens[self._pos + offset - 1]
        after = self._tokens[self._pos + offset]
        return before.line == after.line and after.column == before.column + len(before.value)

    def _matching_close(self, index: int) -> int:
        """Return the index of the token closing the bracket at ``index``."""
        depth = 0
        for i in range(index, len(self._tokens)):
            tok_type = self._tokens[i].type
            if tok_type in _OPENERS:
                depth += 1
            elif tok_type in _OPENERS.values():
                depth -= 1
                if depth == 0:
                    return i
            elif tok_type == TokenType.EOF:
                break
        tok = self._tokens[index]
        raise self._error(f"Unbalanced {tok.value!r}", tok, expected=_OPENERS[tok.type].value)

    # ------------------------------------------------------------------
    # Comment distribution
    # ------------------------------------------------------------------

    def _leading_comments(self, index: int) -> list[str]:
        """The run of comment lines ending on the line just above token ``index``.

        A blank line ends the run, so a document preamble separated from the
        first rule does not become that rule's documentation.
        """
        tok = self._tokens[index]
        prev_line = self._tokens[index - 1].line if index > 0 else 0
        run: list[str] = []
        expected_line = tok.line - 1
        for comment in reversed(tok.comments):
            if comment.line != expected_line or comment.line == prev_line:
                break
            run.append(comment.text)
            expected_line -= 1
        return run[::-1]

    def _trailing_comments(self) -> list[str]:
        """Comments on the same line as the most recently consumed token."""
        if self._pos == 0:
            return []
        prev_line = self._tokens[self._pos - 1].line
        return [c.text for c in self._current().comments if c.line == prev_line]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _at_rule_start(self) -> bool:
        """Return True if the current position begins a new rule."""
        if not self._check(TokenType.IDENTIFIER):
            return False
        if self._peek_type(1) in _ASSIGN_TYPES:
            return True
        if self._peek_type(1) == TokenType.LANGLE:
            close = self._matching_close(self._pos + 1)
            return close + 1 < len(self._tokens) and self._tokens[close + 1].type in _ASSIGN_TYPES
        return False

    def _parse_rule(self) -> RuleDef:
        """Parse: name [<params>] (= | /= | //=) (type | group)"""
        start = self._pos
        location = self._location()
        name_tok = self._expect(TokenType.IDENTIFIER)
        comments = self._leading_comments(start)
        params: list[GenericParam] = []
        if self._check(TokenType.LANGLE):
            params = self._parse_generic_params()
        assign_tok = self._expect(*_ASSIGN_TYPES)

        rule = RuleDef(
            name=name_tok.value,
            assign=assign_tok.value,
            generic_params=params,
            comments=comments,
            source=self._source_name,
            location=location,
        )
        if assign_tok.type == TokenType.GROUP_PLUG:
            rule.group = self._parse_group(top_level=True)
        elif self._check(TokenType.LPAREN) and self._rhs_is_parenthesized_group():
            self._advance()  # (
            rule.group = self._parse_group()
            self._expect(TokenType.RPAREN)
        elif self._rhs_is_bare_group():
            rule.group = self._parse_group(top_level=True)
        else:
            rule.type = self._parse_type()
        rule.trailing_comments = self._trailing_comments()
        return rule

    def _parse_generic_params(self) -> list[GenericParam]:
        """Parse: < name (, name)* >"""
        self._expect(TokenType.LANGLE)
        params = [GenericParam(name=self._expect(TokenType.IDENTIFIER).value)]
        while self._check(TokenType.COMMA):
            self._advance()  # ,
            params.append(GenericParam(name=self._expect(TokenType.IDENTIFIER).value))
        self._expect(TokenType.RANGLE)
        return params

    def _rhs_is_parenthesized_group(self) -> bool:
        """Return True if the parenthesized right-hand side is a group, not a type."""
        if not self._paren_is_group():
            return False
        close = self._matching_close(self._pos)
        after = self._tokens[close + 1].type if close + 1 < len(self._tokens) else TokenType.EOF
        return after not in (
            TokenType.SLASH,
            TokenType.CTLOP,
            TokenType.RANGE_INCLUSIVE,
            TokenType.RANGE_EXCLUSIVE,
        )

    def _rhs_is_bare_group(self) -> bool:
        """Return True if an unparenthesized right-hand side starts with a group entry."""
        if self._check(TokenType.QUESTION, TokenType.PLUS, TokenType.STAR):
            return True
        if self._check(TokenType.INTEGER) and self._peek_type(1) == TokenType.STAR and self._adjacent(1):
            return True
        return self._check(TokenType.IDENTIFIER, *_LITERAL_TYPES) and self._peek_type(1) == TokenType.COLON

    def _paren_is_group(self) -> bool:
        """Decide whether the '(' at the current position opens a group.

        A parenthesized construct is a group if, directly inside it, there is
        a member key, an entry separator, a group choice or an occurrence
        indicator, or if it is empty.
        """
        close = self._matching_close(self._pos)
        inner = self._tokens[self._pos + 1 : close]
        if not inner:
            return True
        if inner[0].type in (TokenType.QUESTION, TokenType.PLUS, TokenType.STAR):
            return True
        if inner[0].type == TokenType.INTEGER and len(inner) > 1 and inner[1].type == TokenType.STAR:
            return True
        depth = 0
        for tok in inner:
            if tok.type in _OPENERS:
                depth += 1
            elif tok.type in _OPENERS.values():
                depth -= 1
            elif depth == 0 and tok.type in (
                TokenType.COMMA,
                TokenType.COLON,
                TokenType.ARROW,
                TokenType.DOUBLE_SLASH,
            ):
                return True
            elif depth == 0 and tok.type == TokenType.IDENTIFIER and tok.value.startswith("$$"):
                return True
        return False

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def _parse_type(self) -> TypeExpr:
        """Parse: type1 (/ type1)*"""
        return self._continue_type(self._parse_type1())

    def _continue_type(self, first: TypeExpr) -> TypeExpr:
        """Collect further type choices after an already-parsed first alternative."""
        if not self._check(TokenType.SLASH):
            return first
        alternatives = [first]
        while self._check(TokenType.SLASH):
            self._advance()  # /
            alternatives.append(self._parse_type1())
        return ChoiceDef(alternatives=alternatives, location=first.location)

    def _parse_type1(self) -> TypeExpr:
        """Parse: type2 [(.. | ... | .ctlop) type2]"""
        base = self._parse_type2()
        if self._check(TokenType.RANGE_INCLUSIVE, TokenType.RANGE_EXCLUSIVE, TokenType.CTLOP):
            op_tok = self._advance()
            argument = self._parse_type2()
            return ControlDef(operator=op_tok.value, target=base, argument=argument, location=base.location)
        return base

    def _parse_type2(self) -> TypeExpr:
        """Parse a single type term."""
        tok = self._current()
        location = self._location()
        if tok.type in _LITERAL_TYPES:
            return LiteralDef(value=self._parse_value(), location=location)
        if tok.type == TokenType.IDENTIFIER:
            self._advance()
            if tok.value.startswith("$"):
                return SocketRef(name=tok.value, is_group=tok.value.startswith("$$"), location=location)
            args = self._parse_generic_args() if self._check(TokenType.LANGLE) else []
            return TypeName(name=tok.value, generic_args=args, location=location)
        if tok.type == TokenType.LPAREN:
            self._advance()  # (
            inner = self._parse_type()
            self._expect(TokenType.RPAREN)
            return inner
        if tok.type == TokenType.LBRACE:
            self._advance()  # {
            group = self._parse_group()
            self._expect(TokenType.RBRACE)
            return MapDef(group=group, location=location)
        if tok.type == TokenType.LBRACKET:
            self._advance()  # [
            group = self._parse_group()
            self._expect(TokenType.RBRACKET)
            return ArrayDef(group=group, location=location)
        if tok.type == TokenType.TILDE:
            self._advance()  # ~
            name_tok = self._expect(TokenType.IDENTIFIER)
            args = self._parse_generic_args() if self._check(TokenType.LANGLE) else []
            return UnwrapDef(name=name_tok.value, generic_args=args, location=location)
        if tok.type == TokenType.AMPERSAND:
            self._advance()  # &
            if self._check(TokenType.LPAREN):
                self._advance()  # (
                group = self._parse_group()
                self._expect(TokenType.RPAREN)
                return EnumerationDef(group=group, location=location)
            name_tok = self._expect(TokenType.IDENTIFIER)
            return EnumerationDef(name=name_tok.value, location=location)
        if tok.type == TokenType.TAG:
            return self._parse_tagged()
        raise self._error(f"Expected a type, got {tok.value!r}", tok, expected="type")

    def _parse_tagged(self) -> TypeExpr:
        """Parse: #major[.tag] [( type )]"""
        tok = self._advance()
        location = Location(line=tok.line, column=tok.column)
        if not tok.value:
            raise self._error("Untyped '#' (any data item) is not supported", tok, expected="#6.N")
        major_text, _, tag_text = tok.value.partition(".")
        tagged = TaggedDef(major=int(major_text), tag=int(tag_text) if tag_text else None, location=location)
        if tagged.major == 6:
            self._expect(TokenType.LPAREN)
            tagged.inner = self._parse_type()
            self._expect(TokenType.RPAREN)
        return tagged

    def _parse_generic_args(self) -> list[TypeExpr]:
        """Parse: < type1 (, type1)* >"""
        self._expect(TokenType.LANGLE)
        args = [self._parse_type1()]
        while self._check(TokenType.COMMA):
            self._advance()  # ,
            args.append(self._parse_type1())
        self._expect(TokenType.RANGLE)
        return args

    def _parse_value(self) -> FixedValue:
        """Parse a literal token into a FixedValue."""
        tok = self._expect(*_LITERAL_TYPES)
        if tok.type == TokenType.INTEGER:
            value = _parse_integer(tok.value)
            return FixedValue(kind=ValueKind.NINT if value < 0 else ValueKind.UINT, value=value)
        if tok.type == TokenType.FLOAT:
            return FixedValue(kind=ValueKind.FLOAT, value=float(tok.value))
        if tok.type == TokenType.TEXT:
            return FixedValue(kind=ValueKind.TEXT, value=tok.value)
        return FixedValue(kind=ValueKind.BYTES, value=tok.value)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def _at_group_end(self, top_level: bool) -> bool:
        if self._check(*_GROUP_END_TYPES):
            return True
        return top_level and self._at_rule_start()

    def _parse_group(self, top_level: bool = False) -> GroupDef:
        """Parse: grpchoice (// grpchoice)*

        Args:
            top_level: True for unparenthesized groups on the right-hand side
                of a rule, which end where the next rule begins.
        """
        location = self._location()
        choices = [self._parse_group_choice(top_level)]
        while self._check(TokenType.DOUBLE_SLASH):
            self._advance()  # //
            choices.append(self._parse_group_choice(top_level))
        return GroupDef(choices=choices, location=location)

    def _parse_group_choice(self, top_level: bool) -> GroupChoice:
        """Parse a comma-separated (commas optional) sequence of group entries."""
        choice = GroupChoice(comments=self._trailing_comments())
        while not self._at_group_end(top_level):
            choice.entries.append(self._parse_group_entry())
        return choice

    def _parse_group_entry(self) -> GroupEntry:
        """Parse: [occurrence] [member key] (type | group name | ( group )) [,]"""
        start = self._pos
        location = self._location()
        leading = self._leading_comments(start)
        occurrence = self._parse_occurrence()
        key: MemberKey | None = None
        value: TypeExpr

        tok = self._current()
        if (
            tok.type == TokenType.IDENTIFIER
            and not tok.value.startswith("$")
            and self._peek_type(1) == TokenType.COLON
        ):
            self._advance()  # name
            self._advance()  # :
            key = MemberKey(kind="bareword", name=tok.value)
        elif tok.type in _LITERAL_TYPES and self._peek_type(1) == TokenType.COLON:
            literal = self._parse_value()
            self._advance()  # :
            key = MemberKey(kind="value", value=literal)

        if key is not None:
            value = self._parse_type()
        elif self._check(TokenType.LPAREN) and self._paren_is_group():
            group_location = self._location()
            self._advance()  # (
            group = self._parse_group()
            self._expect(TokenType.RPAREN)
            value = InlineGroupDef(group=group, location=group_location)
        else:
            first = self._parse_type1()
            if self._check(TokenType.CARET, TokenType.ARROW):
                cut = False
                if self._check(TokenType.CARET):
                    self._advance()  # ^
                    cut = True
                self._expect(TokenType.ARROW)
                key = MemberKey(kind="type", type=first, cut=cut)
                value = self._parse_type()
            else:
                value = self._continue_type(first)

        comments = leading + self._trailing_comments()
        if self._check(TokenType.COMMA):
            self._advance()  # ,
            comments += self._trailing_comments()
        return GroupEntry(occurrence=occurrence, key=key, value=value, comments=comments, location=location)

    def _parse_occurrence(self) -> Occurrence:
        """Parse: ? | + | [n]*[m]  (absent means exactly once)"""
        if self._check(TokenType.QUESTION):
            self._advance()
            return Occurrence(min=0, max=1)
        if self._check(TokenType.PLUS):
            self._advance()
            return Occurrence(min=1, max=None)
        lower = 0
        if self._check(TokenType.INTEGER) and self._peek_type(1) == TokenType.STAR and self._adjacent(1):
            lower = _parse_integer(self._advance().value)
        if not self._check(TokenType.STAR):
            return Occurrence()
        self._advance()  # *
        upper: int | None = None
        if self._check(TokenType.INTEGER) and self._adjacent(0) and not self._current().value.startswith("-"):
            upper = _parse_integer(self._advance().value)
        if lower < 0 or (upper is not None and upper < lower):
            tok = self._tokens[self._pos - 1]
            raise self._error("Invalid occurrence bounds", tok, expected="n*m with 0 <= n <= m")
        return Occurrence(min=lower, max=upper)
