"""Formula mini-language: tokenizer, AST, parser and evaluator."""

from portfolio_analytics.expressions.evaluator import (
    EvaluationMode,
    FormulaEvaluator,
    evaluate_formula,
    guarded_ratio,
)
from portfolio_analytics.expressions.parser import FormulaParser, parse
from portfolio_analytics.expressions.tokenizer import Token, TokenKind, tokenize

__all__ = [
    "EvaluationMode",
    "FormulaEvaluator",
    "FormulaParser",
    "Token",
    "TokenKind",
    "evaluate_formula",
    "guarded_ratio",
    "parse",
    "tokenize",
]
