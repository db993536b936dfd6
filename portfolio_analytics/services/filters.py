"""Dashboard filters applied to record collections.

Filters arrive as the dashboard sends them: a mapping of filter key to a
scalar, a list of alternatives, a ``{start, end}``/``{min, max}`` mapping or
a named date preset. Empty values and unknown keys are ignored.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Iterable, Mapping

import pandas as pd

from portfolio_analytics.schemas.records import Record, is_blank, numeric

logger = logging.getLogger(__name__)

DATE_FIELD = "disbursement_date"

DATE_PRESETS: dict[str, pd.DateOffset] = {
    "last_30_days": pd.DateOffset(days=30),
    "last_90_days": pd.DateOffset(days=90),
    "last_6_months": pd.DateOffset(months=6),
    "last_12_months": pd.DateOffset(months=12),
    "last_24_months": pd.DateOffset(months=24),
}

SELECT_FILTERS: dict[str, str] = {
    "branch": "branch_code",
    "sector": "sector",
    "credit_rating": "credit_rating",
    "currency": "currency",
    "collateral_type": "collateral_type",
    "status": "status",
    "account_officer": "account_officer",
}

RANGE_FILTERS: dict[str, str] = {
    "outstanding_balance_range": "outstanding_balance",
    "days_past_due_range": "days_past_due",
}

RecordPredicate = Callable[[Record], bool]


def _is_empty(value: Any) -> bool:
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return is_blank(value)


def _to_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def date_window(value: Any, today: date | None = None) -> tuple[date, date] | None:
    """Resolve a ``date_range`` filter into inclusive start and end dates."""

    if isinstance(value, Mapping):
        if value.get("start") is None or value.get("end") is None:
            return None
        start, end = _to_date(value["start"]), _to_date(value["end"])
        if start is None or end is None:
            logger.warning("Ignoring unparseable date range %s", dict(value))
            return None
        return start, end
    if isinstance(value, str):
        offset = DATE_PRESETS.get(value)
        if offset is None:
            return None
        end = pd.Timestamp(today or date.today())
        return (end - offset).date(), end.date()
    return None


def _date_predicate(value: Any, today: date | None) -> RecordPredicate | None:
    window = date_window(value, today)
    if window is None:
        return None
    start, end = window

    def predicate(record: Record) -> bool:
        disbursed = _to_date(record.lookup(DATE_FIELD))
        return disbursed is not None and start <= disbursed <= end

    return predicate


def _matches(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    return actual == expected or str(actual) == str(expected)


def _select_predicate(field: str, value: Any) -> RecordPredicate | None:
    if isinstance(value, (list, tuple, set)):
        choices = [choice for choice in value if not _is_empty(choice)]
    else:
        choices = [value]
    if not choices:
        return None
    return lambda record: any(_matches(record.lookup(field), choice) for choice in choices)


def _range_predicate(field: str, value: Any) -> RecordPredicate | None:
    if not isinstance(value, Mapping):
        return None
    low = value.get("min")
    high = value.get("max")
    checks: list[RecordPredicate] = []
    if not _is_empty(low):
        checks.append(lambda record: record.number(field) >= numeric(low))
    if not _is_empty(high):
        checks.append(lambda record: record.number(field) <= numeric(high))
    if not checks:
        return None
    return lambda record: record.has(field) and all(check(record) for check in checks)


def build_predicates(filters: Mapping[str, Any] | None, today: date | None = None) -> list[RecordPredicate]:
    predicates: list[RecordPredicate] = []
    for key, value in (filters or {}).items():
        if _is_empty(value):
            continue
        if key == "date_range":
            predicate = _date_predicate(value, today)
        elif key in SELECT_FILTERS:
            predicate = _select_predicate(SELECT_FILTERS[key], value)
        elif key in RANGE_FILTERS:
            predicate = _range_predicate(RANGE_FILTERS[key], value)
        else:
            logger.debug("Ignoring unknown filter %s", key)
            continue
        if predicate is not None:
            predicates.append(predicate)
    return predicates


def apply_filters(
    records: Iterable[Record],
    filters: Mapping[str, Any] | None,
    *,
    today: date | None = None,
) -> list[Record]:
    """Return the records satisfying every filter (list values are OR-ed)."""

    predicates = build_predicates(filters, today)
    if not predicates:
        return list(records)
    return [record for record in records if all(predicate(record) for predicate in predicates)]


def _joined(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(item) for item in value)
    return str(value)


def _thousands(value: Any) -> str:
    return f"{round(numeric(value)):,}"


def summarize_filters(filters: Mapping[str, Any] | None, currency_symbol: str = "ZMW") -> list[str]:
    """Human readable labels for the active filters, in input order."""

    labels = {
        "branch": "Branch",
        "sector": "Sector",
        "credit_rating": "Credit Rating",
        "status": "Status",
    }
    summary: list[str] = []
    for key, value in (filters or {}).items():
        if _is_empty(value):
            continue
        if key == "date_range":
            if isinstance(value, Mapping) and value.get("start") is not None and value.get("end") is not None:
                summary.append(f"Date: {value['start']} to {value['end']}")
            elif isinstance(value, str):
                summary.append("Date: " + value.replace("_", " ").title())
        elif key in labels:
            summary.append(f"{labels[key]}: {_joined(value)}")
        elif key == "currency":
            summary.append(f"Currency: {value}")
        elif key == "outstanding_balance_range" and isinstance(value, Mapping):
            if value.get("min") is not None and value.get("max") is not None:
                summary.append(
                    f"Balance: {currency_symbol}{_thousands(value['min'])}"
                    f" - {currency_symbol}{_thousands(value['max'])}"
                )
        elif key == "days_past_due_range" and isinstance(value, Mapping):
            if value.get("min") is not None and value.get("max") is not None:
                summary.append(f"Days Past Due: {value['min']} - {value['max']} days")
    return summary


__all__ = [
    "DATE_PRESETS",
    "RANGE_FILTERS",
    "SELECT_FILTERS",
    "apply_filters",
    "build_predicates",
    "date_window",
    "summarize_filters",
]
