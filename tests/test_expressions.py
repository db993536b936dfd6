"""Tokenizer, parser and evaluator tests for the formula language."""

from __future__ import annotations

import pytest

from portfolio_analytics.core.errors import ExpressionEvaluationError, ExpressionSyntaxError
from portfolio_analytics.core.logging import RecordingErrorSink
from portfolio_analytics.expressions import (
    EvaluationMode,
    FormulaEvaluator,
    TokenKind,
    evaluate_formula,
    parse,
    tokenize,
)
from portfolio_analytics.expressions.ast import (
    BinaryOp,
    CaseWhenStatusEquals,
    Count,
    CountCaseWhen,
    Div100Percent,
    FieldRef,
    Literal,
    Sum,
    Unsupported,
)
from portfolio_analytics.expressions.parser import MAX_NESTING
from portfolio_analytics.schemas import Record


def _records(*rows: dict) -> list[Record]:
    return [Record(id=index, data=row) for index, row in enumerate(rows, start=1)]


def test_tokenize_keeps_positions_and_kinds():
    tokens = tokenize("a >= 10")
    assert [token.kind for token in tokens] == [TokenKind.IDENT, TokenKind.COMPARE, TokenKind.NUMBER]
    assert [token.position for token in tokens] == [0, 2, 5]


def test_tokenize_rejects_unknown_characters():
    with pytest.raises(ExpressionSyntaxError) as excinfo:
        tokenize("SUM(a $ b)")
    assert excinfo.value.position == 6


def test_parse_case_when_inside_sum():
    node = parse('SUM(CASE WHEN status="NPL" THEN outstanding_balance ELSE 0 END)')
    assert node == Sum(CaseWhenStatusEquals(status="NPL", then_field="outstanding_balance", else_value=0.0))


def test_parse_percentage_with_nullif_denominator():
    node = parse("SUM(a) / NULLIF(SUM(b), 0) * 100")
    assert node == Div100Percent(Sum(FieldRef("a")), Sum(FieldRef("b")))


def test_parse_parenthesised_ratio_times_100():
    node = parse("(SUM(a) / SUM(b)) * 100")
    assert node == Div100Percent(Sum(FieldRef("a")), Sum(FieldRef("b")))


def test_parse_count_forms():
    assert parse("COUNT(*)") == Count()
    assert parse('COUNT(CASE WHEN status = "NPL" THEN 1 END)') == CountCaseWhen("NPL")


def test_parse_plain_division_and_addition():
    assert parse("SUM(a) / SUM(b)") == BinaryOp("/", Sum(FieldRef("a")), Sum(FieldRef("b")))
    assert parse("SUM(a) + b") == BinaryOp("+", Sum(FieldRef("a")), Sum(FieldRef("b")))


def test_parse_unknown_function_is_unsupported():
    node = parse("MEDIAN(x)")
    assert isinstance(node, Unsupported)
    assert "MEDIAN" in node.reason


def test_parse_empty_expression_raises():
    with pytest.raises(ExpressionSyntaxError):
        parse("   ")


def test_missing_field_sums_to_zero():
    records = _records({"other": 5}, {})
    assert evaluate_formula("SUM(f)", records) == 0


def test_zero_denominator_percentage_is_zero():
    records = _records({"a": 10, "b": 0}, {"a": 5})
    assert evaluate_formula("SUM(a) / SUM(b) * 100", records) == 0
    assert evaluate_formula("SUM(a) / SUM(b)", records) == 0


def test_row_subtraction():
    assert evaluate_formula("field1 - field2", _records({"field1": 10, "field2": 3})) == 7


def test_row_product():
    assert evaluate_formula("field1 * field2 * field3", _records({"field1": 2, "field2": 3, "field3": 4})) == 24


def test_count_matches_record_count():
    assert evaluate_formula("COUNT(*)", []) == 0
    assert evaluate_formula("COUNT(*)", _records({}, {}, {"a": 1})) == 3


def test_case_when_and_count_case_when():
    records = _records(
        {"status": "NPL", "balance": 40},
        {"status": "Performing", "balance": 60},
        {"status": "NPL", "balance": 10},
    )
    assert evaluate_formula('SUM(CASE WHEN status="NPL" THEN balance ELSE 0 END)', records) == 50
    assert evaluate_formula('SUM(CASE WHEN status="NPL" THEN balance ELSE -1 END)', records) == 49
    ratio = evaluate_formula('COUNT(CASE WHEN status = "NPL" THEN 1 END) / COUNT(*) * 100', records)
    assert ratio == pytest.approx(200 / 3)


def test_average_and_per_record_arithmetic():
    records = _records({"pd": 0.1, "lgd": 0.5, "ead": 1000}, {"pd": 0.2, "lgd": 0.5, "ead": 500})
    assert evaluate_formula("SUM(pd * lgd * ead)", records) == pytest.approx(100.0)
    assert evaluate_formula("AVG(ead)", records) == pytest.approx(750.0)
    assert evaluate_formula("AVG(ead)", []) == 0
    assert evaluate_formula("SUM(ead - pd)", records) == pytest.approx(1499.7)


def test_numeric_text_and_amount_column():
    records = [Record(id=1, amount=5, data={"x": "12.5", "flag": True, "label": "n/a"})]
    assert evaluate_formula("SUM(x)", records) == 12.5
    assert evaluate_formula("SUM(flag) + SUM(label)", records) == 0
    assert evaluate_formula("SUM(amount)", records) == 5


def test_lenient_failure_reports_to_sink():
    sink = RecordingErrorSink()
    evaluator = FormulaEvaluator(EvaluationMode.LENIENT, sink)
    assert evaluator.evaluate("SUM(a $ b)", _records({"a": 1}), formula_id=42) == 0.0
    assert sink.entries[0]["message"] == "Formula evaluation failed"
    assert sink.entries[0]["formula_id"] == 42
    assert sink.entries[0]["expression"] == "SUM(a $ b)"


def test_lenient_unsupported_fragment_counts_as_zero():
    records = _records({"a": 3})
    assert evaluate_formula("SUM(a) + MEDIAN(a)", records) == 3


def test_strict_mode_raises_for_unsupported():
    evaluator = FormulaEvaluator("strict")
    with pytest.raises(ExpressionSyntaxError):
        evaluator.evaluate("MEDIAN(x)", _records({"x": 1}))
    with pytest.raises(ExpressionSyntaxError):
        evaluator.evaluate("SUM(a $ b)", [])


def test_literal_nodes_evaluate_to_their_value():
    evaluator = FormulaEvaluator()
    node = BinaryOp("*", Sum(FieldRef("a")), Literal(2.0))

    assert evaluator.evaluate_node(node, _records({"a": 3}, {"a": 4})) == 14.0
    assert str(node) == "SUM(a) * 2"


def test_deeply_nested_parentheses_fall_back_to_zero():
    sink = RecordingErrorSink()
    expression = "(" * 600 + "SUM(a)" + ")" * 600

    assert evaluate_formula(expression, _records({"a": 2}), error_sink=sink) == 0.0
    assert sink.entries[0]["message"] == "Formula evaluation failed"
    assert "nested deeper" in sink.entries[0]["error"]
    with pytest.raises(ExpressionSyntaxError):
        FormulaEvaluator("strict").evaluate(expression, _records({"a": 2}))


def test_nesting_up_to_the_limit_still_parses():
    # SUM( adds one level of its own
    depth = MAX_NESTING - 1
    expression = "(" * depth + "SUM(a)" + ")" * depth

    assert parse(expression) == Sum(FieldRef("a"))
    assert evaluate_formula(expression, _records({"a": 2}, {"a": 3})) == 5


def test_overlong_operator_chain_falls_back_to_zero():
    sink = RecordingErrorSink()
    expression = " + ".join(["SUM(a)"] * 5000)

    assert evaluate_formula(expression, _records({"a": 1}), error_sink=sink) == 0.0
    assert sink.entries[0]["error"] == "Expression is nested too deeply"
    with pytest.raises(ExpressionEvaluationError):
        FormulaEvaluator("strict").evaluate(expression, _records({"a": 1}))
