"""Built-in portfolio calculations that bypass the formula language.

Reserved formula names and canonical metric strings map onto plain Python
functions here. Each calculation guards its own denominator and returns
``0.0`` for an empty record collection.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Callable, Mapping, Sequence

from portfolio_analytics.expressions.evaluator import FormulaEvaluator, guarded_ratio
from portfolio_analytics.schemas.records import Formula, Record

NamedCalculation = Callable[[Sequence[Record]], float]

NPL_DAYS_PAST_DUE = 90
DEFAULT_DAYS_PAST_DUE = 30


def _delinquency_ratio(records: Sequence[Record], threshold: int) -> float:
    tagged = [record for record in records if record.has("npl_status")]
    if tagged:
        flagged = sum(1 for record in tagged if record.lookup("npl_status") == "NPL")
        return guarded_ratio(flagged, len(tagged)) * 100

    total = 0.0
    overdue = 0.0
    for record in records:
        balance = record.number("outstanding_balance")
        total += balance
        if record.number("days_past_due") >= threshold:
            overdue += balance
    return guarded_ratio(overdue, total) * 100


def npl_ratio(records: Sequence[Record]) -> float:
    """Share of non-performing loans, in percent.

    Uses the ``npl_status`` tag when any record carries it, otherwise the
    balance share of loans at least 90 days past due.
    """

    return _delinquency_ratio(records, NPL_DAYS_PAST_DUE)


def default_rate(records: Sequence[Record]) -> float:
    """Like :func:`npl_ratio` with a 30 day delinquency threshold."""

    return _delinquency_ratio(records, DEFAULT_DAYS_PAST_DUE)


def capital_at_risk(records: Sequence[Record]) -> float:
    return sum(record.number("ead") * record.number("risk_weight") / 100 for record in records)


def count_matching(field: str, value: str, records: Sequence[Record]) -> float:
    return float(sum(1 for record in records if record.lookup(field) == value))


def cross_product_npl_count(records: Sequence[Record]) -> int:
    """NPL count for portfolio-wide views: an explicit ``status == "NPL"`` tag."""

    return sum(1 for record in records if record.lookup("status") == "NPL")


@dataclass(frozen=True)
class CategoryFamily:
    """Category-count formulas that all filter on one record field.

    The value matched is derived from the formula name by removing the
    family's suffixes in order, e.g. ``"Agriculture Sector Loans"`` matches
    ``sector == "Agriculture"``.
    """

    field: str
    suffixes: tuple[str, ...]
    names: tuple[str, ...]

    def value_for(self, name: str) -> str:
        value = name
        for suffix in self.suffixes:
            value = value.replace(suffix, "")
        return value.strip()


CATEGORY_FAMILIES: tuple[CategoryFamily, ...] = (
    CategoryFamily(
        field="risk_rating",
        suffixes=(" Loans Count", " Risk"),
        names=("High Risk Loans Count", "Medium Risk Loans Count", "Low Risk Loans Count"),
    ),
    CategoryFamily(
        field="sector",
        suffixes=(" Sector Loans",),
        names=(
            "Agriculture Sector Loans",
            "Manufacturing Sector Loans",
            "Services Sector Loans",
            "Trade Sector Loans",
            "Construction Sector Loans",
            "Technology Sector Loans",
        ),
    ),
    CategoryFamily(
        field="loan_purpose",
        suffixes=(" Loans",),
        names=(
            "Working Capital Loans",
            "Equipment Purchase Loans",
            "Business Expansion Loans",
            "Inventory Loans",
            "Real Estate Loans",
        ),
    ),
    CategoryFamily(
        field="repayment_frequency",
        suffixes=(" Repayment Loans",),
        names=(
            "Monthly Repayment Loans",
            "Quarterly Repayment Loans",
            "Semi-Annual Repayment Loans",
            "Annual Repayment Loans",
        ),
    ),
    CategoryFamily(
        field="guarantee_type",
        suffixes=(" Loans Count", " Loans"),
        names=(
            "Secured Loans Count",
            "Unsecured Loans Count",
            "Personal Guarantee Loans",
            "Group Guarantee Loans",
        ),
    ),
)


def _build_registry() -> dict[str, NamedCalculation]:
    registry: dict[str, NamedCalculation] = {
        "NPL Ratio": npl_ratio,
        "Default Rate": default_rate,
        "Capital at Risk": capital_at_risk,
    }
    for family in CATEGORY_FAMILIES:
        for name in family.names:
            registry[name] = partial(count_matching, family.field, family.value_for(name))
    return registry


NAMED_CALCULATIONS: Mapping[str, NamedCalculation] = _build_registry()

# Metric strings recognised verbatim; the WHERE clause is not parsed.
CANONICAL_METRICS: Mapping[str, NamedCalculation] = {
    "SUM(outstanding_balance WHERE days_past_due >= 90)": npl_ratio,
    "SUM(outstanding_balance WHERE days_past_due >= 30)": default_rate,
    "SUM(ead * (risk_weight / 100))": capital_at_risk,
}


def named_calculation(name: str) -> NamedCalculation | None:
    return NAMED_CALCULATIONS.get(name)


def canonical_metric(metric: str | None) -> NamedCalculation | None:
    if not metric:
        return None
    return CANONICAL_METRICS.get(metric.strip())


def evaluate_named_formula(
    formula: Formula,
    records: Sequence[Record],
    evaluator: FormulaEvaluator,
) -> float:
    """Evaluate a stored formula, routing reserved names to their calculation."""

    calculation = named_calculation(formula.name)
    if calculation is not None:
        return float(calculation(records))
    return evaluator.evaluate(formula.expression, records, formula_id=formula.id)


__all__ = [
    "CANONICAL_METRICS",
    "CATEGORY_FAMILIES",
    "CategoryFamily",
    "NAMED_CALCULATIONS",
    "NamedCalculation",
    "canonical_metric",
    "capital_at_risk",
    "count_matching",
    "cross_product_npl_count",
    "default_rate",
    "evaluate_named_formula",
    "named_calculation",
    "npl_ratio",
]
