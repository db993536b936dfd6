"""Chart and table assembly over decoded record collections.

Every assembler takes an already filtered record sequence plus the widget
configuration and returns a ``{"data": [...]}`` payload. Grouped charts share
one pipeline: pick a group key per record, aggregate the value field per
group with pandas, format labels, drop empty or non-positive groups, sort.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable, Sequence

import pandas as pd

from portfolio_analytics.expressions.evaluator import FormulaEvaluator
from portfolio_analytics.schemas.records import Record, is_blank
from portfolio_analytics.schemas.widgets import Aggregation, WidgetConfig
from portfolio_analytics.services.stores import CustomerDirectory

logger = logging.getLogger(__name__)

VALUE_FIELD_ALIASES: dict[str, str] = {
    "amount": "outstanding_balance",
    "principal": "outstanding_balance",
    "balance": "outstanding_balance",
    "value": "outstanding_balance",
    "exposure": "outstanding_balance",
    "principal_amount": "outstanding_balance",
}

UPPERCASE_FIELDS = {"credit_rating", "branch_code", "currency"}
EMPTY_LABELS = {"", "null", "NULL"}

PD_FIELD = "pd"
PD_BUCKETS: tuple[tuple[float, str], ...] = (
    (0.01, "Low Risk (≤1%)"),
    (0.05, "Medium Risk (1-5%)"),
    (0.15, "High Risk (5-15%)"),
)
PD_TOP_BUCKET = "Very High Risk (>15%)"

NPL_AMOUNT_COLUMN = "SUM(CASE WHEN days_past_due >= 90 THEN amount ELSE 0 END)"
NPL_AMOUNT_KEY = "NPL_Amount"
AGGREGATE_MARKERS = ("COUNT(", "SUM(", "AVG(", "MAX(", "MIN(")
DEFAULT_TABLE_COLUMNS = ["loan_id", "customer_id", "outstanding_balance"]
UNKNOWN_CUSTOMER = "Unknown Customer"

DATE_FORMATS = {"Y-m": "%Y-%m", "Y": "%Y", "Y-m-d": "%Y-%m-%d"}

_PANDAS_AGGREGATES = {
    Aggregation.SUM: "sum",
    Aggregation.COUNT: "size",
    Aggregation.AVG: "mean",
    Aggregation.MAX: "max",
    Aggregation.MIN: "min",
}

_METRIC_CALL = re.compile(r"\b(SUM|AVG|MAX|MIN|COUNT)\s*\(\s*([^)]+?)\s*\)", re.IGNORECASE)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MIN_MAX_COLUMN = re.compile(r"^\s*(MAX|MIN)\s*\(\s*([A-Za-z_][A-Za-z0-9_]*)\s*\)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class MetricSpec:
    """What a metric string asks for: an aggregation over one value field.

    ``field`` is ``None`` for ``COUNT(*)``.
    """

    aggregation: Aggregation
    field: str | None


def parse_metric(metric: str | None, aggregation: Aggregation | None, *, aliases: bool = True) -> MetricSpec:
    """Extract the value field and aggregation from a metric string.

    Accepts ``SUM(x)``, ``AVG(x)``, ``MAX(x)``, ``MIN(x)``, ``COUNT(*)`` or a
    bare field name. An explicit ``aggregation`` wins over the function name.
    With ``aliases`` synonyms such as ``balance`` map to ``outstanding_balance``.
    """

    function: str | None = None
    field: str | None = "outstanding_balance"
    text = (metric or "").strip()
    match = _METRIC_CALL.search(text)
    if match:
        function = match.group(1).upper()
        inner = match.group(2)
        field = None if inner == "*" else inner
    elif _IDENTIFIER.match(text):
        field = text

    if field is not None and aliases:
        field = VALUE_FIELD_ALIASES.get(field, field)
    if aggregation is None:
        aggregation = Aggregation(function) if function else Aggregation.SUM
    return MetricSpec(aggregation=aggregation, field=field)


def _ucwords(text: str) -> str:
    return re.sub(r"(^|\s)(\S)", lambda match: match.group(1) + match.group(2).upper(), text)


def format_label(field: str | None, value: Any) -> str:
    """Presentation label for a group key of ``field``."""

    label = key_text(value).strip()
    if field in UPPERCASE_FIELDS:
        return label.upper()
    if field == "sector":
        return _ucwords(label.lower())
    return _ucwords(label.replace("_", " "))


def key_text(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def pd_bucket(pd_value: float) -> str:
    for threshold, label in PD_BUCKETS:
        if pd_value <= threshold:
            return label
    return PD_TOP_BUCKET


def round_value(value: float, precision: int) -> float:
    """Round half away from zero, the way dashboard figures are displayed."""

    if not math.isfinite(value):
        return value
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def number_format(value: float, decimals: int = 2) -> str:
    return f"{round_value(value, decimals):,.{decimals}f}"


def aggregate_groups(
    pairs: Iterable[tuple[Any, float]],
    aggregation: Aggregation,
) -> list[tuple[Any, float]]:
    """Aggregate ``(key, value)`` pairs per key, keeping first-seen key order."""

    frame = pd.DataFrame(list(pairs), columns=["key", "value"])
    if frame.empty:
        return []
    grouped = frame.groupby("key", sort=False)["value"].agg(_PANDAS_AGGREGATES[aggregation])
    return [(key, float(value)) for key, value in grouped.items()]


def _labelled(groups: Sequence[tuple[Any, float]], field: str | None, *, format_labels: bool = True) -> list[dict[str, Any]]:
    points = []
    for key, value in groups:
        raw = key_text(key).strip()
        label = format_label(field, key) if format_labels else raw
        if raw in EMPTY_LABELS or label in EMPTY_LABELS or value <= 0:
            continue
        points.append({"label": label, "value": value})
    return points


def _pd_points(records: Sequence[Record], spec: MetricSpec) -> list[dict[str, Any]]:
    value_field = spec.field or "outstanding_balance"
    pairs = []
    for record in records:
        if not record.has(PD_FIELD) or not record.has(value_field):
            continue
        pd_value = record.number(PD_FIELD)
        value = record.number(value_field)
        if pd_value <= 0 or value <= 0:
            continue
        pairs.append((pd_bucket(pd_value), value))

    groups = aggregate_groups(pairs, spec.aggregation)
    if spec.aggregation in (Aggregation.SUM, Aggregation.AVG):
        groups = [(key, round_value(value, 2)) for key, value in groups]
    points = _labelled(groups, PD_FIELD, format_labels=False)
    return sorted(points, key=lambda point: point["value"], reverse=True)


def grouped_points(records: Sequence[Record], group_field: str, spec: MetricSpec) -> list[dict[str, Any]]:
    if group_field == PD_FIELD:
        return _pd_points(records, spec)

    pairs = []
    for record in records:
        key = record.lookup(group_field)
        if key is None:
            continue
        if spec.field is None:
            pairs.append((key_text(key), 1.0))
            continue
        if not record.has(spec.field):
            continue
        pairs.append((key_text(key), record.number(spec.field)))

    points = _labelled(aggregate_groups(pairs, spec.aggregation), group_field)
    return sorted(points, key=lambda point: point["value"], reverse=True)


def pie_chart(records: Sequence[Record], config: WidgetConfig) -> dict[str, Any]:
    group_field = config.group_by or config.x_axis or "sector"
    spec = parse_metric(config.metric or config.y_axis or "SUM(outstanding_balance)", config.aggregation)
    return {"data": grouped_points(records, group_field, spec)}


def bar_chart(records: Sequence[Record], config: WidgetConfig) -> dict[str, Any]:
    group_field = config.x_axis or config.group_by or "credit_rating"
    spec = parse_metric(config.y_axis or config.metric or "COUNT(*)", config.aggregation)
    return {"data": grouped_points(records, group_field, spec)}


def period_key(record: Record, date_field: str, date_format: str = "Y-m") -> str | None:
    """Period bucket for a record, falling back to ``created_at``."""

    pattern = DATE_FORMATS.get(date_format, DATE_FORMATS["Y-m"])
    raw = record.lookup(date_field)
    if raw not in (None, ""):
        parsed = pd.to_datetime(raw, errors="coerce")
        if not pd.isna(parsed):
            return parsed.strftime(pattern)
        logger.debug("Unparseable %s %r on record %s", date_field, raw, record.id)
    if record.created_at is not None:
        return record.created_at.strftime(pattern)
    return None


def line_chart(records: Sequence[Record], config: WidgetConfig) -> dict[str, Any]:
    date_field = config.x_axis or config.group_by or "disbursement_date"
    spec = parse_metric(config.y_axis or config.metric or "SUM(outstanding_balance)", config.aggregation)
    value_field = spec.field

    pairs = []
    for record in records:
        period = period_key(record, date_field, config.date_format)
        if period is None:
            continue
        value = record.number(value_field) if value_field else 1.0
        pairs.append((period, value))

    groups = sorted(aggregate_groups(pairs, spec.aggregation), key=lambda group: group[0])
    return {"data": [{"x": period, "y": value} for period, value in groups if value > 0]}


def heatmap(records: Sequence[Record], config: WidgetConfig) -> dict[str, Any]:
    """Accumulate the ``amount`` column per ``(x, y)`` pair, in first-seen order."""

    x_field = config.x_axis or "branch_code"
    y_field = config.y_axis or "sector"
    cells: dict[tuple[str, str], float] = {}
    for record in records:
        if record.amount <= 0:
            continue
        x_value = record.lookup(x_field)
        y_value = record.lookup(y_field)
        if is_blank(x_value) or is_blank(y_value):
            continue
        key = (key_text(x_value), key_text(y_value))
        cells[key] = cells.get(key, 0.0) + record.amount

    data = [
        {"x": format_label(x_field, x_value), "y": format_label(y_field, y_value), "value": value}
        for (x_value, y_value), value in cells.items()
        if value > 0
    ]
    return {"data": data}


def is_aggregate_column(column: str) -> bool:
    return any(marker in column for marker in AGGREGATE_MARKERS)


def npl_amount(records: Sequence[Record]) -> float:
    """Sum of ``amount`` over records at least 90 days past due."""

    return sum(record.amount for record in records if record.number("days_past_due") >= 90)


def _cell(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return number_format(float(value))
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return value
        return number_format(parsed) if math.isfinite(parsed) else value
    return value


class TableAssembler:
    """Row-level and grouped tables."""

    def __init__(
        self,
        evaluator: FormulaEvaluator,
        customers: CustomerDirectory | None = None,
        *,
        default_limit: int = 50,
    ):
        self.evaluator = evaluator
        self.customers = customers
        self.default_limit = default_limit

    def build(self, records: Sequence[Record], config: WidgetConfig) -> dict[str, Any]:
        columns = [str(column) for column in (config.columns or DEFAULT_TABLE_COLUMNS)]
        if config.group_by or any(is_aggregate_column(column) for column in columns):
            return self.aggregated(records, config, columns)
        return self.rows(records, config, columns)

    def rows(self, records: Sequence[Record], config: WidgetConfig, columns: list[str]) -> dict[str, Any]:
        limit = config.limit or self.default_limit
        data = []
        for record in records[:limit]:
            row = {column: record.lookup(column) for column in columns}
            if record.has("customer_id"):
                row["customer_name"] = self._customer_name(record.lookup("customer_id"))
            data.append(row)

        final_columns = list(columns)
        if "customer_id" in final_columns and "customer_name" not in final_columns:
            final_columns.insert(final_columns.index("customer_id") + 1, "customer_name")
        return {"data": data, "columns": final_columns, "total": len(records)}

    def aggregated(self, records: Sequence[Record], config: WidgetConfig, columns: list[str]) -> dict[str, Any]:
        limit = config.limit or self.default_limit
        group_field = config.group_by
        groups: dict[Any, list[Record]] = {}
        if group_field:
            for record in records:
                groups.setdefault(record.lookup(group_field), []).append(record)
        elif records:
            groups[None] = list(records)

        data = []
        for key, members in list(groups.items())[:limit]:
            row: dict[str, Any] = {}
            for column in columns:
                if column == group_field:
                    row[column] = _cell(key)
                elif NPL_AMOUNT_COLUMN in column:
                    row[NPL_AMOUNT_KEY] = _cell(npl_amount(members))
                elif is_aggregate_column(column):
                    row[column] = _cell(self._aggregate(column, members))
                else:
                    row[column] = _cell(members[0].lookup(column))
            data.append(row)

        final_columns = [NPL_AMOUNT_KEY if NPL_AMOUNT_COLUMN in column else column for column in columns]
        return {"data": data, "columns": final_columns, "total": len(data)}

    def _aggregate(self, column: str, records: Sequence[Record]) -> float:
        match = _MIN_MAX_COLUMN.match(column)
        if match:
            values = [record.number(match.group(2)) for record in records if record.has(match.group(2))]
            if not values:
                return 0.0
            return max(values) if match.group(1).upper() == "MAX" else min(values)
        return self.evaluator.evaluate(column, records)

    def _customer_name(self, customer_id: Any) -> str:
        if self.customers is None:
            return UNKNOWN_CUSTOMER
        return self.customers.display_name(customer_id) or UNKNOWN_CUSTOMER


ChartBuilder = Callable[[Sequence[Record], WidgetConfig], dict[str, Any]]


__all__ = [
    "ChartBuilder",
    "MetricSpec",
    "PD_BUCKETS",
    "TableAssembler",
    "VALUE_FIELD_ALIASES",
    "aggregate_groups",
    "bar_chart",
    "format_label",
    "grouped_points",
    "heatmap",
    "is_aggregate_column",
    "key_text",
    "line_chart",
    "npl_amount",
    "number_format",
    "parse_metric",
    "pd_bucket",
    "period_key",
    "pie_chart",
    "round_value",
]
