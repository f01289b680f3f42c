# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the CDDL lexical scanner."""

import pytest

from cddlgen.parser.lexer import LexerError, Token, TokenType, tokenize

# ###############
# Test Helpers
# ###############


def _tokens_no_eof(source: str) -> list[Token]:
    """Return all tokens except the terminal EOF token."""
    result = tokenize(source)
    assert result[-1].type == TokenType.EOF
    return result[:-1]


def _types(source: str) -> list[TokenType]:
    """Return the token types for all tokens except EOF."""
    return [tok.type for tok in _tokens_no_eof(source)]


def _values(source: str) -> list[str]:
    """Return the token values for all tokens except EOF."""
    return [tok.value for tok in _tokens_no_eof(source)]


# ###############
# EOF Handling
# ###############


class TestEof:
    def test_empty_string_produces_eof(self) -> None:
        tokens = tokenize("")
        assert len(tokens) == 1
        assert tokens[0].type == TokenType.EOF
        assert (tokens[0].line, tokens[0].column) == (1, 1)

    def test_whitespace_only_produces_eof(self) -> None:
        tokens = tokenize("  \t\n\r\n ")
        assert [tok.type for tok in tokens] == [TokenType.EOF]


# ###############
# Symbols and Operators
# ###############


class TestSymbols:
    @pytest.mark.parametrize(
        "source,expected",
        [
            ("=", TokenType.ASSIGN),
            ("/=", TokenType.TYPE_PLUG),
            ("//=", TokenType.GROUP_PLUG),
            ("/", TokenType.SLASH),
            ("//", TokenType.DOUBLE_SLASH),
            ("=>", TokenType.ARROW),
            ("..", TokenType.RANGE_INCLUSIVE),
            ("...", TokenType.RANGE_EXCLUSIVE),
            ("^", TokenType.CARET),
            ("~", TokenType.TILDE),
            ("&", TokenType.AMPERSAND),
            ("?", TokenType.QUESTION),
            ("*", TokenType.STAR),
            ("+", TokenType.PLUS),
        ],
    )
    def test_operator(self, source: str, expected: TokenType) -> None:
        assert _types(source) == [expected]

    def test_brackets(self) -> None:
        assert _types("( ) { } [ ] < >") == [
            TokenType.LPAREN,
            TokenType.RPAREN,
            TokenType.LBRACE,
            TokenType.RBRACE,
            TokenType.LBRACKET,
            TokenType.RBRACKET,
            TokenType.LANGLE,
            TokenType.RANGLE,
        ]

    def test_range_between_integers(self) -> None:
        assert _types("0..10") == [TokenType.INTEGER, TokenType.RANGE_INCLUSIVE, TokenType.INTEGER]
        assert _values("0...10") == ["0", "...", "10"]

    def test_control_operator_keeps_name_without_dot(self) -> None:
        tokens = _tokens_no_eof("bstr .size 32")
        assert [t.type for t in tokens] == [TokenType.IDENTIFIER, TokenType.CTLOP, TokenType.INTEGER]
        assert tokens[1].value == "size"

    def test_dot_without_operator_name_is_an_error(self) -> None:
        with pytest.raises(LexerError):
            tokenize("uint . 3")

    def test_tag_with_number(self) -> None:
        assert _types("#6.24(bstr)") == [
            TokenType.TAG,
            TokenType.LPAREN,
            TokenType.IDENTIFIER,
            TokenType.RPAREN,
        ]
        assert _values("#6.24")[0] == "6.24"


# ###############
# Identifiers
# ###############


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["point", "Point", "field_name", "tx-body", "$socket", "$$group-socket", "@x"])
    def test_identifier(self, name: str) -> None:
        tokens = _tokens_no_eof(name)
        assert len(tokens) == 1
        assert tokens[0].type == TokenType.IDENTIFIER
        assert tokens[0].value == name

    def test_trailing_dash_is_not_part_of_name(self) -> None:
        assert _values("a -1") == ["a", "-1"]

    def test_identifier_location(self) -> None:
        tokens = _tokens_no_eof("a =\n  b")
        assert (tokens[2].line, tokens[2].column) == (2, 3)


# ###############
# String Literals
# ###############


class TestTextLiterals:
    def test_plain_text(self) -> None:
        tokens = _tokens_no_eof('"circle"')
        assert tokens[0].type == TokenType.TEXT
        assert tokens[0].value == "circle"

    def test_escapes_are_decoded(self) -> None:
        assert _values(r'"a\"b\\c\nA"') == ['a"b\\c\nA']

    def test_unterminated_text_raises(self) -> None:
        with pytest.raises(LexerError, match="Unterminated text literal"):
            tokenize('"abc')

    def test_newline_in_text_raises(self) -> None:
        with pytest.raises(LexerError):
            tokenize('"ab\ncd"')

    def test_invalid_escape_raises(self) -> None:
        with pytest.raises(LexerError, match="Invalid escape"):
            tokenize(r'"\q"')


class TestByteLiterals:
    def test_hex_bytes(self) -> None:
        tokens = _tokens_no_eof("h'00 FF'")
        assert tokens[0].type == TokenType.BYTES
        assert tokens[0].value == "00ff"

    def test_utf8_bytes(self) -> None:
        assert _values("'abc'") == ["616263"]

    def test_base64url_bytes(self) -> None:
        assert _values("b64'AQI'") == ["0102"]

    def test_invalid_hex_raises(self) -> None:
        with pytest.raises(LexerError, match="byte string"):
            tokenize("h'zz'")

    def test_unterminated_bytes_raise(self) -> None:
        with pytest.raises(LexerError, match="Unterminated byte string"):
            tokenize("'abc")


# ###############
# Number Literals
# ###############


class TestNumberLiterals:
    @pytest.mark.parametrize("source", ["0", "42", "-7", "0x1F", "-0x10", "0b101"])
    def test_integer(self, source: str) -> None:
        tokens = _tokens_no_eof(source)
        assert tokens[0].type == TokenType.INTEGER
        assert tokens[0].value == source

    @pytest.mark.parametrize("source", ["1.5", "-0.25", "1e3", "2.5E-2"])
    def test_float(self, source: str) -> None:
        tokens = _tokens_no_eof(source)
        assert tokens[0].type == TokenType.FLOAT
        assert tokens[0].value == source

    def test_hex_prefix_without_digits_raises(self) -> None:
        with pytest.raises(LexerError, match="Malformed integer"):
            tokenize("0x")

    def test_occurrence_bounds(self) -> None:
        assert _types("1*3") == [TokenType.INTEGER, TokenType.STAR, TokenType.INTEGER]


# ###############
# Comments
# ###############


class TestComments:
    def test_comment_attaches_to_following_token(self) -> None:
        tokens = tokenize("; a point\n; in the plane\npoint = 1")
        assert [c.text for c in tokens[0].comments] == [" a point", " in the plane"]
        assert (tokens[0].comments[0].line, tokens[0].comments[0].column) == (1, 1)
        assert tokens[1].comments == ()

    def test_trailing_comment_attaches_to_eof(self) -> None:
        tokens = tokenize("a = 1 ; the end")
        assert tokens[-1].type == TokenType.EOF
        assert [c.text for c in tokens[-1].comments] == [" the end"]

    def test_comment_is_kept_verbatim(self) -> None:
        tokens = tokenize(";@name Foo  \r\nx")
        assert tokens[0].comments[0].text == "@name Foo  "

    def test_semicolon_inside_text_is_not_a_comment(self) -> None:
        assert _values('"a;b"') == ["a;b"]


# ###############
# Errors
# ###############


class TestErrors:
    def test_unexpected_character_reports_location(self) -> None:
        with pytest.raises(LexerError) as exc_info:
            tokenize("a = \n  !")
        assert exc_info.value.line == 2
        assert exc_info.value.column == 3
        assert exc_info.value.found == "!"

    def test_source_name_is_part_of_message(self) -> None:
        with pytest.raises(LexerError, match="schema.cddl: Line 1, column 1"):
            tokenize("`", source_name="schema.cddl")
