"""Tree-walking interpreter for parsed formulas."""

from __future__ import annotations

import enum
import logging
from typing import Any, Sequence

from portfolio_analytics.core.errors import (
    ExpressionEvaluationError,
    ExpressionSyntaxError,
    FormulaError,
)
from portfolio_analytics.core.instruments import formula_fallbacks
from portfolio_analytics.core.logging import ErrorSink, LoggingErrorSink
from portfolio_analytics.expressions.ast import (
    Avg,
    BinaryOp,
    CaseWhenStatusEquals,
    Count,
    CountCaseWhen,
    Div100Percent,
    FieldRef,
    Literal,
    Node,
    Sum,
    Unsupported,
)
from portfolio_analytics.expressions.parser import parse
from portfolio_analytics.schemas.records import Record

logger = logging.getLogger(__name__)


class EvaluationMode(str, enum.Enum):
    LENIENT = "lenient"
    STRICT = "strict"

    @classmethod
    def coerce(cls, value: "EvaluationMode | str | None") -> "EvaluationMode":
        if value is None:
            return cls.LENIENT
        return value if isinstance(value, cls) else cls(str(value).lower())


def guarded_ratio(numerator: float, denominator: float) -> float:
    """Divide, yielding 0 whenever the denominator is not positive."""

    return numerator / denominator if denominator > 0 else 0.0


class FormulaEvaluator:
    """Evaluates formula strings against a record collection.

    In lenient mode (the dashboard default) unsupported fragments count as
    zero and any failure degrades the whole formula to ``0.0`` after being
    reported to the error sink. Strict mode raises instead.
    """

    def __init__(
        self,
        mode: EvaluationMode | str | None = EvaluationMode.LENIENT,
        error_sink: ErrorSink | None = None,
    ):
        self.mode = EvaluationMode.coerce(mode)
        self.error_sink = error_sink or LoggingErrorSink(logger)

    @property
    def strict(self) -> bool:
        return self.mode is EvaluationMode.STRICT

    def evaluate(self, expression: str, records: Sequence[Record], *, formula_id: Any = None) -> float:
        try:
            node = parse(expression)
            return self.evaluate_node(node, records)
        except FormulaError as exc:
            if self.strict:
                raise
            self._fallback(expression, formula_id, exc)
            return 0.0
        except (ArithmeticError, TypeError, ValueError) as exc:
            if self.strict:
                raise ExpressionEvaluationError(str(exc), expression) from exc
            self._fallback(expression, formula_id, exc)
            return 0.0
        except RecursionError as exc:
            error = ExpressionEvaluationError("Expression is nested too deeply", expression)
            if self.strict:
                raise error from exc
            self._fallback(expression, formula_id, error)
            return 0.0

    def evaluate_node(self, node: Node, records: Sequence[Record]) -> float:
        if isinstance(node, Sum):
            return float(sum(self.row_value(node.operand, record) for record in records))
        if isinstance(node, Avg):
            if not records:
                return 0.0
            return float(sum(self.row_value(node.operand, record) for record in records)) / len(records)
        if isinstance(node, Count):
            return float(len(records))
        if isinstance(node, CountCaseWhen):
            return float(sum(1 for record in records if record.lookup("status") == node.status))
        if isinstance(node, Div100Percent):
            numerator = self.evaluate_node(node.numerator, records)
            denominator = self.evaluate_node(node.denominator, records)
            return guarded_ratio(numerator, denominator) * 100
        if isinstance(node, BinaryOp):
            left = self.evaluate_node(node.left, records)
            right = self.evaluate_node(node.right, records)
            return self._apply(node.op, left, right)
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, (FieldRef, CaseWhenStatusEquals)):
            return float(sum(self.row_value(node, record) for record in records))
        if isinstance(node, Unsupported):
            return self._unsupported(node)
        raise ExpressionEvaluationError(f"Unknown node type {type(node).__name__}")

    def row_value(self, node: Node, record: Record) -> float:
        if isinstance(node, FieldRef):
            return record.number(node.name)
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, CaseWhenStatusEquals):
            if record.lookup("status") == node.status:
                return record.number(node.then_field)
            return node.else_value
        if isinstance(node, BinaryOp):
            return self._apply(node.op, self.row_value(node.left, record), self.row_value(node.right, record))
        if isinstance(node, Unsupported):
            return self._unsupported(node)
        raise ExpressionEvaluationError(f"{node} cannot be used inside a per-record expression")

    @staticmethod
    def _apply(op: str, left: float, right: float) -> float:
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            return guarded_ratio(left, right)
        raise ExpressionEvaluationError(f"Unknown operator {op!r}")

    def _unsupported(self, node: Unsupported) -> float:
        if self.strict:
            raise ExpressionSyntaxError(f"Unsupported expression {node.text!r}: {node.reason}")
        logger.debug("Unsupported fragment %r counted as 0 (%s)", node.text, node.reason)
        return 0.0

    def _fallback(self, expression: str, formula_id: Any, exc: Exception) -> None:
        formula_fallbacks.add(1)
        self.error_sink.log_error(
            {
                "message": "Formula evaluation failed",
                "formula_id": formula_id,
                "expression": expression,
                "error": str(exc),
            }
        )


def evaluate_formula(
    expression: str,
    records: Sequence[Record],
    *,
    mode: EvaluationMode | str | None = EvaluationMode.LENIENT,
    error_sink: ErrorSink | None = None,
) -> float:
    """Evaluate ``expression`` over ``records``; see :class:`FormulaEvaluator`."""

    return FormulaEvaluator(mode, error_sink).evaluate(expression, records)


__all__ = ["EvaluationMode", "FormulaEvaluator", "evaluate_formula", "guarded_ratio"]
