"""Recursive-descent parser for the formula mini-language.

Grammar, loosest binding first::

    expression := division | additive
    division   := additive "/" additive ["* 100"]
    additive   := term (("+" | "-") term)*
    term       := SUM(row) | AVG(row) | COUNT(*) | COUNT(CASE WHEN ...)
                | "(" expression ")" | row        (a bare row is summed)
    row        := CASE WHEN status = "X" THEN field ELSE number END
                | field ("+" field)+ | field "-" field | field ("*" field)+
                | field

Only one whole-expression pair of parentheses is stripped. The division
operator is accepted at paren depth 0, or at depth 1 when the expression is a
``* 100`` percentage, so ``(SUM(a) / SUM(b)) * 100`` still reads as a ratio.
A ``NULLIF(x, 0)`` denominator is unwrapped to ``x``; the evaluator guards the
zero case itself. Fragments outside the grammar become ``Unsupported`` nodes.
"""

from __future__ import annotations

from typing import Sequence

from portfolio_analytics.core.errors import ExpressionSyntaxError
from portfolio_analytics.expressions.ast import (
    Avg,
    BinaryOp,
    CaseWhenStatusEquals,
    Count,
    CountCaseWhen,
    Div100Percent,
    FieldRef,
    Node,
    Sum,
    Unsupported,
)
from portfolio_analytics.expressions.tokenizer import Token, TokenKind, render, tokenize

Tokens = Sequence[Token]

MAX_NESTING = 64

_KEYWORDS = {"CASE", "WHEN", "THEN", "ELSE", "END", "NULLIF", "WHERE", "SUM", "AVG", "COUNT"}
_CASE_SHAPE = 'only CASE WHEN status="X" THEN field ELSE number END is supported'


def parse(expression: str) -> Node:
    """Parse ``expression`` into an AST."""

    text = (expression or "").strip()
    if not text:
        raise ExpressionSyntaxError("Expression is empty", expression)
    tokens = tokenize(text)
    _check_nesting(tokens, text)
    return FormulaParser(text).expression(tokens)


# Token helpers

def _check_nesting(tokens: Tokens, source: str) -> None:
    depth = 0
    for token in tokens:
        if token.kind is TokenKind.LPAREN:
            depth += 1
            if depth > MAX_NESTING:
                raise ExpressionSyntaxError(
                    f"Parentheses nested deeper than {MAX_NESTING} levels", source, token.position
                )
        elif token.kind is TokenKind.RPAREN:
            depth -= 1


def _matching_paren(tokens: Tokens, start: int) -> int | None:
    depth = 0
    for index in range(start, len(tokens)):
        kind = tokens[index].kind
        if kind is TokenKind.LPAREN:
            depth += 1
        elif kind is TokenKind.RPAREN:
            depth -= 1
            if depth == 0:
                return index
    return None


def _strip_outer_parens(tokens: Tokens) -> list[Token]:
    if len(tokens) >= 2 and tokens[0].kind is TokenKind.LPAREN and tokens[-1].kind is TokenKind.RPAREN:
        inner = tokens[1:-1]
        depth = 0
        for token in inner:
            if token.kind is TokenKind.LPAREN:
                depth += 1
            elif token.kind is TokenKind.RPAREN:
                depth -= 1
            if depth < 0:
                return list(tokens)
        if depth == 0:
            return list(inner)
    return list(tokens)


def _trim_unbalanced(tokens: Tokens) -> list[Token]:
    """Drop unmatched parentheses left over at either end of a fragment."""

    stack: list[int] = []
    unmatched: set[int] = set()
    for index, token in enumerate(tokens):
        if token.kind is TokenKind.LPAREN:
            stack.append(index)
        elif token.kind is TokenKind.RPAREN:
            if stack:
                stack.pop()
            else:
                unmatched.add(index)
    unmatched.update(stack)
    if not unmatched:
        return list(tokens)
    start, end = 0, len(tokens)
    while start < end and start in unmatched and tokens[start].kind is TokenKind.LPAREN:
        start += 1
    while end > start and (end - 1) in unmatched and tokens[end - 1].kind is TokenKind.RPAREN:
        end -= 1
    return list(tokens[start:end])


def _is_times_100(tokens: Tokens, index: int) -> bool:
    return (
        tokens[index].kind is TokenKind.STAR
        and index + 1 < len(tokens)
        and tokens[index + 1].kind is TokenKind.NUMBER
        and tokens[index + 1].number == 100
    )


def _has_times_100(tokens: Tokens) -> bool:
    return any(_is_times_100(tokens, index) for index in range(len(tokens)))


def _remove_times_100(tokens: Tokens) -> list[Token]:
    result: list[Token] = []
    index = 0
    while index < len(tokens):
        if _is_times_100(tokens, index):
            index += 2
            continue
        result.append(tokens[index])
        index += 1
    return result


def _find_division(tokens: Tokens, allow_nested: bool) -> int | None:
    depth = 0
    for index, token in enumerate(tokens):
        if token.kind is TokenKind.LPAREN:
            depth += 1
        elif token.kind is TokenKind.RPAREN:
            depth -= 1
        elif token.kind is TokenKind.SLASH and (depth == 0 or (allow_nested and depth == 1)):
            return index
    return None


def _split_top_level(tokens: Tokens, kinds: set[TokenKind]) -> tuple[list[list[Token]], list[Token]]:
    """Split on operators at depth 0; a leading (unary) operator stays in its part."""

    parts: list[list[Token]] = []
    operators: list[Token] = []
    current: list[Token] = []
    depth = 0
    for token in tokens:
        if token.kind is TokenKind.LPAREN:
            depth += 1
        elif token.kind is TokenKind.RPAREN:
            depth -= 1
        if depth == 0 and token.kind in kinds and current:
            parts.append(current)
            operators.append(token)
            current = []
            continue
        current.append(token)
    parts.append(current)
    return parts, operators


def _unwrap_nullif(tokens: Tokens) -> list[Token]:
    for index, token in enumerate(tokens):
        if not token.is_keyword("NULLIF"):
            continue
        if index + 1 >= len(tokens) or tokens[index + 1].kind is not TokenKind.LPAREN:
            continue
        close = _matching_paren(tokens, index + 1)
        if close is None:
            continue
        arguments, _ = _split_top_level(tokens[index + 2:close], {TokenKind.COMMA})
        if (
            len(arguments) == 2
            and len(arguments[1]) == 1
            and arguments[1][0].kind is TokenKind.NUMBER
            and arguments[1][0].number == 0
        ):
            return list(arguments[0])
    return list(tokens)


class FormulaParser:
    """Builds AST nodes from token lists of a single source expression."""

    def __init__(self, source: str):
        self.source = source

    def expression(self, tokens: Tokens) -> Node:
        tokens = _strip_outer_parens(tokens)
        if not tokens:
            return Unsupported("", "empty expression")
        percent = _has_times_100(tokens)
        division = _find_division(tokens, allow_nested=percent)
        if division is None:
            return self.additive(tokens)

        numerator_tokens = _trim_unbalanced(_remove_times_100(tokens[:division]))
        denominator_tokens = _remove_times_100(tokens[division + 1:])
        denominator_tokens = _trim_unbalanced(_unwrap_nullif(denominator_tokens))
        numerator = self.additive(numerator_tokens)
        denominator = self.additive(denominator_tokens)
        if percent:
            return Div100Percent(numerator, denominator)
        return BinaryOp("/", numerator, denominator)

    def additive(self, tokens: Tokens) -> Node:
        parts, operators = _split_top_level(tokens, {TokenKind.PLUS, TokenKind.MINUS})
        node = self.term(parts[0])
        for operator, part in zip(operators, parts[1:]):
            node = BinaryOp(operator.text, node, self.term(part))
        return node

    def term(self, tokens: Tokens) -> Node:
        if not tokens:
            return Unsupported("", "empty term")

        call = self._as_call(tokens)
        if call is not None:
            name, inner = call
            if name == "SUM":
                return Sum(self.row(inner))
            if name == "AVG":
                return Avg(self.row(inner))
            if name == "COUNT":
                return self.count(inner)
            return Unsupported(render(list(tokens)), f"function {name} is not supported")

        if len(tokens) == 1 and tokens[0].kind is TokenKind.IDENT and tokens[0].text.upper() not in _KEYWORDS:
            return Sum(FieldRef(tokens[0].text))

        if tokens[0].kind is TokenKind.LPAREN and _matching_paren(tokens, 0) == len(tokens) - 1:
            return self.expression(tokens)

        trimmed = _trim_unbalanced(tokens)
        if trimmed and len(trimmed) < len(tokens):
            return self.term(trimmed)

        # a bare per-record expression such as ``a * b`` is summed like a bare field
        row = self.row(tokens)
        if not isinstance(row, Unsupported):
            return Sum(row)

        return Unsupported(render(list(tokens)), "expected an aggregate, a field name or a group")

    def row(self, tokens: Tokens) -> Node:
        if not tokens:
            return Unsupported("", "empty aggregate argument")
        if tokens[0].is_keyword("CASE"):
            return self.case_when(tokens)

        parts, _ = _split_top_level(tokens, {TokenKind.PLUS})
        if len(parts) > 1:
            node = self.operand(parts[0])
            for part in parts[1:]:
                node = BinaryOp("+", node, self.operand(part))
            return node

        parts, _ = _split_top_level(tokens, {TokenKind.MINUS})
        if len(parts) > 1:
            # one subtraction level: anything after a second "-" is ignored
            return BinaryOp("-", self.operand(parts[0]), self.operand(parts[1]))

        parts, _ = _split_top_level(tokens, {TokenKind.STAR})
        if len(parts) > 1:
            node = self.operand(parts[0])
            for part in parts[1:]:
                node = BinaryOp("*", node, self.operand(part))
            return node

        return self.operand(tokens)

    def operand(self, tokens: Tokens) -> Node:
        if len(tokens) == 1 and tokens[0].kind is TokenKind.IDENT:
            return FieldRef(tokens[0].text)
        return Unsupported(render(list(tokens)), "operand must be a field name")

    def case_when(self, tokens: Tokens) -> Node:
        text = render(list(tokens))
        shape = [token.kind for token in tokens]
        expected = [
            TokenKind.IDENT,  # CASE
            TokenKind.IDENT,  # WHEN
            TokenKind.IDENT,  # status
            TokenKind.COMPARE,
            TokenKind.STRING,
            TokenKind.IDENT,  # THEN
            TokenKind.IDENT,  # field
            TokenKind.IDENT,  # ELSE
        ]
        if shape[: len(expected)] != expected:
            return Unsupported(text, _CASE_SHAPE)
        if not (
            tokens[1].is_keyword("WHEN")
            and tokens[2].text == "status"
            and tokens[3].text in ("=", "==")
            and tokens[5].is_keyword("THEN")
            and tokens[7].is_keyword("ELSE")
        ):
            return Unsupported(text, _CASE_SHAPE)

        rest = list(tokens[len(expected):])
        sign = 1.0
        if rest and rest[0].kind is TokenKind.MINUS:
            sign = -1.0
            rest = rest[1:]
        if len(rest) != 2 or rest[0].kind is not TokenKind.NUMBER or not rest[1].is_keyword("END"):
            return Unsupported(text, _CASE_SHAPE)
        return CaseWhenStatusEquals(
            status=tokens[4].text,
            then_field=tokens[6].text,
            else_value=sign * rest[0].number,
        )

    def count(self, tokens: Tokens) -> Node:
        if len(tokens) == 1 and tokens[0].kind is TokenKind.STAR:
            return Count()
        text = render(list(tokens))
        if (
            len(tokens) >= 7
            and tokens[0].is_keyword("CASE")
            and tokens[1].is_keyword("WHEN")
            and tokens[2].text == "status"
            and tokens[3].kind is TokenKind.COMPARE
            and tokens[3].text in ("=", "==")
            and tokens[4].kind is TokenKind.STRING
            and tokens[5].is_keyword("THEN")
            and tokens[6].kind is TokenKind.NUMBER
            and tokens[6].number == 1
        ):
            return CountCaseWhen(tokens[4].text)
        return Unsupported(f"COUNT({text})", 'only COUNT(*) and COUNT(CASE WHEN status="X" THEN 1 ...) are supported')

    @staticmethod
    def _as_call(tokens: Tokens) -> tuple[str, list[Token]] | None:
        if len(tokens) < 3 or tokens[0].kind is not TokenKind.IDENT or tokens[1].kind is not TokenKind.LPAREN:
            return None
        if _matching_paren(tokens, 1) != len(tokens) - 1:
            return None
        return tokens[0].text.upper(), list(tokens[2:-1])


__all__ = ["MAX_NESTING", "FormulaParser", "parse"]
