"""Lexer for the formula mini-language."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

from portfolio_analytics.core.errors import ExpressionSyntaxError


class TokenKind(str, enum.Enum):
    IDENT = "IDENT"
    NUMBER = "NUMBER"
    STRING = "STRING"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    COMMA = "COMMA"
    PLUS = "PLUS"
    MINUS = "MINUS"
    STAR = "STAR"
    SLASH = "SLASH"
    COMPARE = "COMPARE"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: int

    def is_keyword(self, word: str) -> bool:
        return self.kind is TokenKind.IDENT and self.text.upper() == word

    @property
    def number(self) -> float:
        return float(self.text)


_TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>\d+(?:\.\d*)?|\.\d+)
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<string>"[^"]*"|'[^']*')
    |(?P<compare>>=|<=|!=|<>|==|=|>|<)
    |(?P<single>[()+\-*/,])
    """,
    re.VERBOSE,
)

_SINGLE_KINDS = {
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    ",": TokenKind.COMMA,
    "+": TokenKind.PLUS,
    "-": TokenKind.MINUS,
    "*": TokenKind.STAR,
    "/": TokenKind.SLASH,
}


def tokenize(expression: str) -> list[Token]:
    """Split an expression into tokens, dropping whitespace."""

    tokens: list[Token] = []
    position = 0
    length = len(expression)
    while position < length:
        match = _TOKEN_PATTERN.match(expression, position)
        if match is None:
            raise ExpressionSyntaxError(
                f"Unexpected character {expression[position]!r} at position {position}",
                expression,
                position,
            )
        group = match.lastgroup
        text = match.group()
        if group == "number":
            tokens.append(Token(TokenKind.NUMBER, text, position))
        elif group == "ident":
            tokens.append(Token(TokenKind.IDENT, text, position))
        elif group == "string":
            tokens.append(Token(TokenKind.STRING, text[1:-1], position))
        elif group == "compare":
            tokens.append(Token(TokenKind.COMPARE, text, position))
        elif group == "single":
            tokens.append(Token(_SINGLE_KINDS[text], text, position))
        position = match.end()
    return tokens


def render(tokens: list[Token]) -> str:
    """Rebuild a readable source fragment from tokens."""

    parts: list[str] = []
    for token in tokens:
        if token.kind is TokenKind.STRING:
            parts.append(f'"{token.text}"')
        else:
            parts.append(token.text)
    text = " ".join(parts)
    return text.replace("( ", "(").replace(" )", ")")


__all__ = ["Token", "TokenKind", "tokenize", "render"]
