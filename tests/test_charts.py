import pytest

from portfolio_analytics.expressions import FormulaEvaluator
from portfolio_analytics.schemas import Aggregation, Record, WidgetConfig
from portfolio_analytics.services import InMemoryCustomerDirectory
from portfolio_analytics.services.charts import (
    NPL_AMOUNT_COLUMN,
    TableAssembler,
    bar_chart,
    format_label,
    heatmap,
    line_chart,
    parse_metric,
    pd_bucket,
    pie_chart,
)


def _records(*rows: dict, amounts: list[float] | None = None) -> list[Record]:
    amounts = amounts or [0.0] * len(rows)
    return [
        Record(id=index + 1, product_id=1, amount=amounts[index], data=row)
        for index, row in enumerate(rows)
    ]


def test_pie_chart_groups_and_drops_zero_values():
    records = _records(
        {"sector": "Agriculture", "outstanding_balance": 100},
        {"sector": "Agriculture", "outstanding_balance": 50},
        {"sector": "Trade", "outstanding_balance": 0},
    )
    config = WidgetConfig(group_by="sector", metric="SUM(outstanding_balance)", aggregation="SUM")

    result = pie_chart(records, config)

    assert result == {"data": [{"label": "Agriculture", "value": 150.0}]}
    assert pie_chart(records, config) == result


def test_pie_chart_skips_missing_and_null_keys():
    records = _records(
        {"sector": "Trade", "outstanding_balance": 30},
        {"outstanding_balance": 70},
        {"sector": "null", "outstanding_balance": 40},
        {"sector": "", "outstanding_balance": 40},
    )

    assert pie_chart(records, WidgetConfig(group_by="sector"))["data"] == [{"label": "Trade", "value": 30.0}]


def test_labels_follow_field_rules():
    assert format_label("collateral_type", "micro_finance") == "Micro Finance"
    assert format_label("currency", "usd") == "USD"
    assert format_label("sector", "AGRICULTURE") == "Agriculture"
    assert format_label("loan_purpose", "working_capital") == "Working Capital"


def test_metric_parsing_applies_aliases():
    assert parse_metric("SUM(amount)", None).field == "outstanding_balance"
    assert parse_metric("COUNT(*)", None).field is None
    assert parse_metric("COUNT(*)", None).aggregation is Aggregation.COUNT
    assert parse_metric("principal_amount", Aggregation.AVG).field == "outstanding_balance"
    assert parse_metric("principal_amount", None, aliases=False).field == "principal_amount"
    assert parse_metric(None, None).field == "outstanding_balance"


def test_pd_buckets():
    assert pd_bucket(0.01) == "Low Risk (≤1%)"
    assert pd_bucket(0.03) == "Medium Risk (1-5%)"
    assert pd_bucket(0.15) == "High Risk (5-15%)"
    assert pd_bucket(0.20) == "Very High Risk (>15%)"


def test_pie_chart_by_pd_bucket(loan_records):
    extra = Record(id=4, product_id=1, data={"pd": 0, "outstanding_balance": 300})

    result = pie_chart([*loan_records, extra], WidgetConfig(group_by="pd"))

    assert result["data"] == [
        {"label": "Very High Risk (>15%)", "value": 200.0},
        {"label": "Low Risk (≤1%)", "value": 100.0},
        {"label": "Medium Risk (1-5%)", "value": 50.0},
    ]


def test_bar_chart_defaults_to_count_by_credit_rating(loan_records):
    result = bar_chart(loan_records, WidgetConfig())

    assert result["data"] == [{"label": "A", "value": 2.0}, {"label": "B", "value": 1.0}]


def test_bar_chart_average(loan_records):
    config = WidgetConfig(x_axis="branch_code", y_axis="AVG(outstanding_balance)")

    assert bar_chart(loan_records, config)["data"] == [
        {"label": "NDL02", "value": 200.0},
        {"label": "LSK01", "value": 75.0},
    ]


def test_line_chart_buckets_by_month(loan_records):
    result = line_chart(loan_records, WidgetConfig())

    assert result["data"] == [{"x": "2024-01", "y": 150.0}, {"x": "2024-02", "y": 200.0}]


def test_line_chart_yearly_count(loan_records):
    config = WidgetConfig(metric="COUNT(*)", date_format="Y")

    assert line_chart(loan_records, config)["data"] == [{"x": "2024", "y": 3.0}]


def test_heatmap_accumulates_amount_in_first_seen_order():
    records = _records(
        {"branch_code": "lsk01", "sector": "trade"},
        {"branch_code": "ndl02", "sector": "agriculture"},
        {"branch_code": "lsk01", "sector": "trade"},
        {"branch_code": "", "sector": "trade"},
        {"branch_code": "kit03", "sector": "trade"},
        amounts=[100, 40, 25, 80, 0],
    )

    assert heatmap(records, WidgetConfig())["data"] == [
        {"x": "LSK01", "y": "Trade", "value": 125.0},
        {"x": "NDL02", "y": "Agriculture", "value": 40.0},
    ]


def test_row_table_adds_customer_names(loan_records):
    assembler = TableAssembler(FormulaEvaluator(), InMemoryCustomerDirectory({"C-1": "Mwila Banda"}))
    config = WidgetConfig(columns=["customer_id", "outstanding_balance"], limit=2)

    result = assembler.build(loan_records, config)

    assert result["columns"] == ["customer_id", "customer_name", "outstanding_balance"]
    assert result["total"] == 3
    assert [row["customer_name"] for row in result["data"]] == ["Mwila Banda", "Unknown Customer"]
    assert result["data"][0]["outstanding_balance"] == 100


def test_grouped_table_aggregates_columns():
    records = _records(
        {"sector": "Agriculture", "outstanding_balance": 100, "days_past_due": 95},
        {"sector": "Agriculture", "outstanding_balance": 50, "days_past_due": 0},
        {"sector": "Trade", "outstanding_balance": 200, "days_past_due": 120},
        amounts=[100, 50, 200],
    )
    columns = ["sector", "COUNT(*)", "SUM(outstanding_balance)", "MAX(outstanding_balance)", NPL_AMOUNT_COLUMN]
    assembler = TableAssembler(FormulaEvaluator())

    result = assembler.build(records, WidgetConfig(group_by="sector", columns=columns))

    assert result["columns"] == columns[:4] + ["NPL_Amount"]
    assert result["total"] == 2
    assert result["data"][0] == {
        "sector": "Agriculture",
        "COUNT(*)": "2.00",
        "SUM(outstanding_balance)": "150.00",
        "MAX(outstanding_balance)": "100.00",
        "NPL_Amount": "100.00",
    }
    assert result["data"][1]["NPL_Amount"] == "200.00"


def test_grouped_table_without_group_by_has_one_row(loan_records):
    result = TableAssembler(FormulaEvaluator()).build(loan_records, WidgetConfig(columns=["SUM(outstanding_balance)"]))

    assert result["data"] == [{"SUM(outstanding_balance)": "350.00"}]
    assert result["total"] == 1


@pytest.mark.parametrize("builder", [pie_chart, bar_chart, line_chart, heatmap])
def test_empty_records_give_empty_data(builder):
    assert builder([], WidgetConfig()) == {"data": []}
