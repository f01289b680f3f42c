# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Lexer and parser for CDDL schema documents."""

from cddlgen.parser.comments import CommentMetadata, parse_comment_metadata
from cddlgen.parser.lexer import LexerError, Token, TokenType, tokenize
from cddlgen.parser.parser import ParseError, parse

__all__ = [
    "CommentMetadata",
    "LexerError",
    "ParseError",
    "Token",
    "TokenType",
    "parse",
    "parse_comment_metadata",
    "tokenize",
]
