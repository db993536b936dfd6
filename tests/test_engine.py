import pytest

from portfolio_analytics.schemas import Formula, Record
from portfolio_analytics.services import DashboardEngine, InMemoryFormulaRepository, InMemoryRecordStore


class ExplodingStore:
    def fetch(self, product_id, filters=None):
        raise RuntimeError("boom")

    def fetch_many(self, product_ids, filters=None):
        raise RuntimeError("boom")


def test_kpi_from_named_formula(engine):
    result = engine.compute_kpi({"formula_name": "Total Balance"}, 1)

    assert result == {"value": 350.0, "format": "number", "precision": 2, "color": "#007bff"}


def test_kpi_named_formula_respects_filters(engine):
    assert engine.compute_kpi({"formula_name": "Total Balance"}, 1, {"status": "NPL"})["value"] == 50.0


def test_kpi_missing_or_inactive_formula(engine):
    assert engine.compute_kpi({"formula_name": "Missing"}, 1) == {
        "error": "Formula 'Missing' not found for product 1"
    }
    assert engine.compute_kpi({"formula_name": "Retired"}, 1) == {
        "error": "Formula 'Retired' not found for product 1"
    }


def test_kpi_reserved_formula_name(engine):
    assert engine.compute_kpi({"formula_name": "NPL Ratio"}, 1)["value"] == pytest.approx(14.29)


def test_kpi_canonical_metric(engine):
    result = engine.compute_kpi({"metric": "SUM(outstanding_balance WHERE days_past_due >= 30)"}, 1)

    assert result["value"] == pytest.approx(71.43)


def test_kpi_metric_matching_stored_expression(engine):
    assert engine.compute_kpi({"metric": "SUM(outstanding_balance)"}, 1)["value"] == 350.0


def test_kpi_generic_metric(engine):
    assert engine.compute_kpi({}, 1)["value"] == 3.0
    # generic metrics read the unfiltered record set
    assert engine.compute_kpi({"metric": "COUNT(*)"}, 1, {"status": "NPL"})["value"] == 3.0
    assert engine.compute_kpi({"metric": "AVG(principal_amount)", "precision": 1}, 1)["value"] == 143.3


def test_kpi_formatted_value_with_suffix(engine):
    result = engine.compute_kpi(
        {"metric": "SUM(days_past_due)", "suffix": " days", "precision": 0, "color": "danger"}, 1
    )

    assert result["formatted_value"] == "130 days"
    assert result["color"] == "danger"


def test_invalid_formula_is_lenient_by_default(engine, error_sink):
    assert engine.compute_kpi({"metric": "SUM(a $ b)"}, 1)["value"] == 0.0
    assert error_sink.entries[0]["message"] == "Formula evaluation failed"


def test_invalid_formula_in_strict_mode(engine):
    result = engine.compute_kpi({"metric": "MEDIAN(x)"}, 1, mode="strict")

    assert result["error"].startswith("Invalid formula:")


def test_evaluate_formula_entry_points(engine, loan_records):
    assert engine.evaluate_formula("SUM(outstanding_balance)", loan_records) == 350.0
    assert "error" in engine.evaluate_formula("SUM(a $ b)", loan_records, mode="strict")
    nested = "SUM(outstanding_balance) + " + "(" * 600 + "SUM(outstanding_balance)" + ")" * 600
    assert engine.evaluate_formula(nested, loan_records) == 0.0
    assert engine.evaluate_formula(nested, loan_records, mode="strict")["error"].startswith("Invalid formula:")
    assert engine.evaluate_product_formula("SUM(outstanding_balance)", 1, {"sector": "Trade"}) == {
        "value": 200.0,
        "record_count": 1,
    }


def test_evaluate_named_formula_uses_store(engine):
    formula = Formula(id=9, name="Trade Sector Loans", expression="unused")

    assert engine.evaluate_named_formula(formula, 1) == 1.0
    assert engine.evaluate_named_formula(formula, 2) == 1.0


def test_compute_chart_dispatches_case_insensitively(engine):
    result = engine.compute_chart("piechart", {"group_by": "branch_code"}, 1)

    assert result == {"data": [{"label": "NDL02", "value": 200.0}, {"label": "LSK01", "value": 150.0}]}


def test_compute_chart_kpi_and_table(engine):
    assert engine.compute_chart("KPI", {}, 2)["value"] == 1.0
    table = engine.compute_chart("Table", {"columns": ["loan_id", "customer_id"]}, 1, {"status": "NPL"})
    assert table["data"] == [{"loan_id": "L-2", "customer_id": "C-2", "customer_name": "Chanda Phiri"}]


def test_unknown_widget_type(engine):
    assert engine.compute_chart("Gauge", {}, 1) == {"error": "Unknown widget type: Gauge"}


def test_unexpected_failures_are_reported(settings, error_sink):
    engine = DashboardEngine(ExplodingStore(), InMemoryFormulaRepository(), settings=settings, error_sink=error_sink)

    assert engine.compute_chart("PieChart", {}, 1) == {"error": "Pie chart data failed: boom"}
    assert error_sink.entries[-1]["message"] == "Pie chart data failed"
    assert engine.compute_cross_product_chart("BarChart", {}, [1]) == {"error": "Cross-product data failed: boom"}


def test_global_formulas_are_shared(settings, loan_records):
    formulas = InMemoryFormulaRepository([Formula(id=1, name="Book", expression="SUM(principal_amount)")])
    store_records = [*loan_records, Record(id=5, product_id=3, data={"principal_amount": 9})]
    engine = DashboardEngine(InMemoryRecordStore(store_records), formulas, settings=settings)

    assert engine.compute_kpi({"formula_name": "Book"}, 1)["value"] == 430.0
    assert engine.compute_kpi({"formula_name": "Book"}, 3)["value"] == 9.0
