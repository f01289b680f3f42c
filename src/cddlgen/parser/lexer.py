# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Lexical scanner for CDDL schema documents.

Converts raw source text into a sequence of tokens for subsequent parsing.
Comments are not discarded: every run of ``;`` comments is attached to the
token that follows it, so the parser can turn them into documentation and
metadata.
"""

import base64
import binascii
import enum
from dataclasses import dataclass

from cddlgen.errors import SchemaSyntaxError

# ###############
# Public Interface
# ###############


class TokenType(enum.Enum):
    """All token types produced by the CDDL lexer."""

    # Assignment operators
    ASSIGN = "="
    TYPE_PLUG = "/="
    GROUP_PLUG = "//="

    # Symbols and operators
    SLASH = "/"
    DOUBLE_SLASH = "//"
    LPAREN = "("
    RPAREN = ")"
    LBRACE = "{"
    RBRACE = "}"
    LBRACKET = "["
    RBRACKET = "]"
    LANGLE = "<"
    RANGLE = ">"
    COMMA = ","
    COLON = ":"
    ARROW = "=>"
    CARET = "^"
    QUESTION = "?"
    STAR = "*"
    PLUS = "+"
    TILDE = "~"
    AMPERSAND = "&"
    RANGE_INCLUSIVE = ".."
    RANGE_EXCLUSIVE = "..."

    # Control operators such as .size (value holds the name without the dot)
    CTLOP = "CTLOP"

    # Tags such as #6.24 (value holds the text after '#')
    TAG = "TAG"

    # Literals
    TEXT = "TEXT"
    BYTES = "BYTES"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"

    # Identifiers (including $socket and $$group-socket names)
    IDENTIFIER = "IDENTIFIER"

    # End of file
    EOF = "EOF"


@dataclass(frozen=True)
class Comment:
    """A single ``;`` comment.

    Attributes:
        text: Everything after the ``;`` up to the end of the line, verbatim.
        line: 1-based line number of the ``;``.
        column: 1-based column number of the ``;``.
    """

    text: str
    line: int
    column: int


@dataclass(frozen=True)
class Token:
    """A lexical token with its source location.

    Attributes:
        type: The kind of token.
        value: The raw text of the token. TEXT tokens hold the decoded string
            content, BYTES tokens the lowercase hex of the decoded bytes.
        line: 1-based line number where the token starts.
        column: 1-based column number where the token starts.
        comments: Comments appearing between the previous token and this one.
    """

    type: TokenType
    value: str
    line: int
    column: int
    comments: tuple[Comment, ...] = ()


class LexerError(SchemaSyntaxError):
    """Raised when the scanner encounters an invalid character or unterminated literal."""


def tokenize(source: str, source_name: str | None = None) -> list[Token]:
    """Tokenize CDDL source text into a sequence of tokens.

    Returns a list of tokens. The final token is always an EOF token, which
    carries any comments that trail the last rule.

    Args:
        source: The full text of a CDDL document.
        source_name: Document name reported in errors.

    Returns:
        A list of Token objects ending with a single EOF token.

    Raises:
        LexerError: On unexpected characters, malformed numbers, or
            unterminated text and byte string literals.
    """
    return _Lexer(source, source_name).tokenize()


# ################
# Implementation
# ################

_SINGLE_CHAR_TOKENS: dict[str, TokenType] = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "<": TokenType.LANGLE,
    ">": TokenType.RANGLE,
    ",": TokenType.COMMA,
    ":": TokenType.COLON,
    "^": TokenType.CARET,
    "?": TokenType.QUESTION,
    "*": TokenType.STAR,
    "+": TokenType.PLUS,
    "~": TokenType.TILDE,
    "&": TokenType.AMPERSAND,
}

_TEXT_ESCAPES: dict[str, str] = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


def _is_name_start(ch: str) -> bool:
    return ch.isalpha() or ch in "@_$"


def _is_name_char(ch: str) -> bool:
    return ch.isalnum() or ch in "@_$"


class _Lexer:
    """Internal scanner state machine."""

    def __init__(self, source: str, source_name: str | None = None) -> None:
        self._source = source
        self._source_name = source_name
        self._pos = 0
        self._line = 1
        self._column = 1
        self._tokens: list[Token] = []
        self._pending_comments: list[Comment] = []

    def tokenize(self) -> list[Token]:
        """Run the scanner and return all tokens including the terminal EOF."""
        while self._pos < len(self._source):
            self._skip_whitespace_and_comments()
            if self._pos >= len(self._source):
                break
            self._scan_token()
        self._emit(TokenType.EOF, "", self._line, self._column)
        return self._tokens

    # ------------------------------------------------------------------
    # Low-level character access helpers
    # ------------------------------------------------------------------

    def _current(self) -> str:
        """Return the character at the current position, or '' at end of input."""
        if self._pos < len(self._source):
            return self._source[self._pos]
        return ""

    def _peek(self, offset: int = 1) -> str:
        """Return the character ``offset`` positions ahead, or '' past the end."""
        if self._pos + offset < len(self._source):
            return self._source[self._pos + offset]
        return ""

    def _advance(self) -> str:
        """Consume the current character, update position tracking, and return it."""
        ch = self._source[self._pos]
        self._pos += 1
        if ch == "\n":
            self._line += 1
            self._column = 1
        else:
            self._column += 1
        return ch

    def _error(self, message: str, line: int, col: int, **details: str) -> LexerError:
        """Build a LexerError located in the current document."""
        return LexerError(message, line, col, source=self._source_name, **details)

    def _emit(self, token_type: TokenType, value: str, line: int, col: int) -> None:
        """Append a token, attaching the comments collected since the previous one."""
        self._tokens.append(Token(token_type, value, line, col, tuple(self._pending_comments)))
        self._pending_comments = []

    # ------------------------------------------------------------------
    # Whitespace and comment collection
    # ------------------------------------------------------------------

    def _skip_whitespace_and_comments(self) -> None:
        """Skip whitespace and collect comment runs at the current position."""
        while self._pos < len(self._source):
            ch = self._current()
            if ch in " \t\r\n":
                self._advance()
            elif ch == ";":
                self._scan_comment()
            else:
                break

    def _scan_comment(self) -> None:
        """Consume from ';' through end-of-line (exclusive of the newline itself)."""
        line = self._line
        col = self._column
        self._advance()  # ;
        start = self._pos
        while self._pos < len(self._source) and self._current() != "\n":
            self._advance()
        text = self._source[start : self._pos].rstrip("\r")
        self._pending_comments.append(Comment(text, line, col))

    # ------------------------------------------------------------------
    # Token scanning dispatcher
    # ------------------------------------------------------------------

    def _scan_token(self) -> None:
        """Dispatch to the appropriate handler based on the current character."""
        ch = self._current()
        line = self._line
        col = self._column

        if ch in _SINGLE_CHAR_TOKENS:
            self._advance()
            self._emit(_SINGLE_CHAR_TOKENS[ch], ch, line, col)
        elif ch == "=":
            self._advance()
            if self._current() == ">":
                self._advance()
                self._emit(TokenType.ARROW, "=>", line, col)
            else:
                self._emit(TokenType.ASSIGN, "=", line, col)
        elif ch == "/":
            self._scan_slash(line, col)
        elif ch == ".":
            self._scan_dot(line, col)
        elif ch == "#":
            self._scan_tag(line, col)
        elif ch == '"':
            self._scan_text(line, col)
        elif ch == "'":
            self._scan_quoted_bytes(line, col)
        elif ch.isdigit() or (ch == "-" and self._peek().isdigit()):
            self._scan_number(line, col)
        elif _is_name_start(ch):
            self._scan_identifier(line, col)
        else:
            raise self._error(f"Unexpected character: {ch!r}", line, col, found=ch)

    def _scan_slash(self, line: int, col: int) -> None:
        """Scan '/', '/=', '//' or '//='."""
        self._advance()  # /
        if self._current() == "/":
            self._advance()  # /
            if self._current() == "=":
                self._advance()
                self._emit(TokenType.GROUP_PLUG, "//=", line, col)
            else:
                self._emit(TokenType.DOUBLE_SLASH, "//", line, col)
        elif self._current() == "=":
            self._advance()
            self._emit(TokenType.TYPE_PLUG, "/=", line, col)
        else:
            self._emit(TokenType.SLASH, "/", line, col)

    def _scan_dot(self, line: int, col: int) -> None:
        """Scan a range operator or a control operator such as '.size'."""
        if self._peek() == ".":
            self._advance()
            self._advance()
            if self._current() == ".":
                self._advance()
                self._emit(TokenType.RANGE_EXCLUSIVE, "...", line, col)
            else:
                self._emit(TokenType.RANGE_INCLUSIVE, "..", line, col)
            return
        if not _is_name_start(self._peek()):
            raise self._error("Expected control operator name after '.'", line, col, found=".")
        self._advance()  # .
        start = self._pos
        self._consume_name()
        self._emit(TokenType.CTLOP, self._source[start : self._pos], line, col)

    def _scan_tag(self, line: int, col: int) -> None:
        """Scan '#', '#6' or '#6.N'."""
        self._advance()  # #
        start = self._pos
        while self._current().isdigit():
            self._advance()
        if self._pos > start and self._current() == "." and self._peek().isdigit():
            self._advance()  # .
            while self._current().isdigit():
                self._advance()
        self._emit(TokenType.TAG, self._source[start : self._pos], line, col)

    # ------------------------------------------------------------------
    # Literal scanners
    # ------------------------------------------------------------------

    def _scan_text(self, line: int, col: int) -> None:
        """Scan a double-quoted text literal with JSON-style escape sequences."""
        self._advance()  # opening "
        chars: list[str] = []
        while self._pos < len(self._source):
            ch = self._current()
            if ch == '"':
                self._advance()  # closing "
                self._emit(TokenType.TEXT, "".join(chars), line, col)
                return
            if ch == "\n":
                raise self._error("Unterminated text literal", line, col, expected='"')
            if ch == "\\":
                self._advance()
                if self._pos >= len(self._source):
                    raise self._error("Unterminated text literal", line, col, expected='"')
                chars.append(self._scan_escape())
            else:
                chars.append(ch)
                self._advance()
        raise self._error("Unterminated text literal", line, col, expected='"')

    def _scan_escape(self) -> str:
        """Decode the escape sequence following a backslash."""
        esc = self._current()
        if esc in _TEXT_ESCAPES:
            self._advance()
            return _TEXT_ESCAPES[esc]
        if esc == "u":
            self._advance()
            digits = self._source[self._pos : self._pos + 4]
            if len(digits) != 4 or any(d not in "0123456789abcdefABCDEF" for d in digits):
                raise self._error("Invalid unicode escape", self._line, self._column, found=digits)
            for _ in range(4):
                self._advance()
            return chr(int(digits, 16))
        raise self._error(f"Invalid escape sequence: '\\{esc}'", self._line, self._column, found=esc)

    def _read_quoted(self, line: int, col: int) -> str:
        """Consume a single-quoted literal body and return its raw content."""
        self._advance()  # opening '
        start = self._pos
        while self._pos < len(self._source) and self._current() != "'":
            if self._current() == "\n":
                raise self._error("Unterminated byte string literal", line, col, expected="'")
            self._advance()
        if self._pos >= len(self._source):
            raise self._error("Unterminated byte string literal", line, col, expected="'")
        content = self._source[start : self._pos]
        self._advance()  # closing '
        return content

    def _scan_quoted_bytes(self, line: int, col: int) -> None:
        """Scan a UTF-8 byte string literal such as 'abc'."""
        content = self._read_quoted(line, col)
        self._emit(TokenType.BYTES, content.encode("utf-8").hex(), line, col)

    def _scan_prefixed_bytes(self, prefix: str, line: int, col: int) -> None:
        """Scan h'..' (base16) or b64'..' (base64url) byte string literals."""
        content = "".join(self._read_quoted(line, col).split())
        try:
            if prefix == "h":
                data = bytes.fromhex(content)
            else:
                data = base64.urlsafe_b64decode(content + "=" * (-len(content) % 4))
        except (ValueError, binascii.Error) as exc:
            raise self._error(f"Invalid {prefix}'' byte string: {exc}", line, col, found=content) from exc
        self._emit(TokenType.BYTES, data.hex(), line, col)

    def _scan_number(self, line: int, col: int) -> None:
        """Scan an integer or floating-point literal.

        Integers may be decimal, hexadecimal (0x) or binary (0b) and carry a
        leading '-'. A float requires at least one digit on both sides of the
        decimal point, so '0..10' scans as an integer followed by a range.
        """
        start = self._pos
        if self._current() == "-":
            self._advance()
        if self._current() == "0" and self._peek() in ("x", "b"):
            self._advance()  # 0
            base_char = self._advance()
            valid = "0123456789abcdefABCDEF" if base_char == "x" else "01"
            digits_start = self._pos
            while self._current() and self._current() in valid:
                self._advance()
            if self._pos == digits_start:
                raise self._error("Malformed integer literal", line, col, found=self._source[start : self._pos])
            self._emit(TokenType.INTEGER, self._source[start : self._pos], line, col)
            return

        while self._current().isdigit():
            self._advance()
        is_float = False
        if self._current() == "." and self._peek().isdigit():
            is_float = True
            self._advance()  # consume the '.'
            while self._current().isdigit():
                self._advance()
        if self._current() in ("e", "E") and (
            self._peek().isdigit() or (self._peek() in "+-" and self._peek(2).isdigit())
        ):
            is_float = True
            self._advance()  # e
            if self._current() in "+-":
                self._advance()
            while self._current().isdigit():
                self._advance()
        value = self._source[start : self._pos]
        self._emit(TokenType.FLOAT if is_float else TokenType.INTEGER, value, line, col)

    def _consume_name(self) -> None:
        """Consume identifier characters, allowing inner '-' and '.' separators."""
        while self._pos < len(self._source):
            ch = self._current()
            if _is_name_char(ch):
                self._advance()
            elif ch in "-." and _is_name_char(self._peek()):
                self._advance()
            else:
                break

    def _scan_identifier(self, line: int, col: int) -> None:
        """Scan an identifier, or a prefixed byte string such as h'00ff'."""
        start = self._pos
        self._consume_name()
        value = self._source[start : self._pos]
        if value in ("h", "b64") and self._current() == "'":
            self._scan_prefixed_bytes(value, line, col)
            return
        self._emit(TokenType.IDENTIFIER, value, line, col)
