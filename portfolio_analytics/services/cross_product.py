"""Portfolio-wide widgets computed over several products at once."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Sequence

import pandas as pd

from portfolio_analytics.core.errors import UnknownWidgetTypeError
from portfolio_analytics.expressions.evaluator import FormulaEvaluator, guarded_ratio
from portfolio_analytics.schemas.records import Record
from portfolio_analytics.schemas.widgets import Aggregation, ValueFormat, WidgetConfig, WidgetType
from portfolio_analytics.services.calculations import cross_product_npl_count
from portfolio_analytics.services.charts import (
    MetricSpec,
    grouped_points,
    key_text,
    number_format,
    parse_metric,
    round_value,
)
from portfolio_analytics.services.stores import CurrencyFormatter, ProductCatalog, RecordStore

logger = logging.getLogger(__name__)

PRODUCT_NAME = "product_name"
UNKNOWN_GROUP = "Unknown"
DEFAULT_TABLE_COLUMNS = ["sector", "loan_count", "total_value", "average_size", "npl_count", "npl_ratio"]


def _aggregate(values: Sequence[float], aggregation: Aggregation) -> float:
    """Aggregate one group where missing fields already count as ``0``."""

    if aggregation is Aggregation.COUNT:
        return float(len(values))
    if not values:
        return 0.0
    series = pd.Series(values, dtype="float64")
    if aggregation is Aggregation.AVG:
        return float(series.mean())
    if aggregation is Aggregation.MAX:
        return float(series.max())
    if aggregation is Aggregation.MIN:
        return float(series.min())
    return float(series.sum())


class CrossProductAggregator:
    """Widgets over the union of several products' records.

    NPL here means an explicit ``status == "NPL"`` tag, unlike the
    per-product days-past-due rule.
    """

    def __init__(
        self,
        store: RecordStore,
        catalog: ProductCatalog,
        currency: CurrencyFormatter,
        evaluator: FormulaEvaluator,
        *,
        default_precision: int = 2,
        kpi_color: str = "primary",
    ):
        self.store = store
        self.catalog = catalog
        self.currency = currency
        self.evaluator = evaluator
        self.default_precision = default_precision
        self.kpi_color = kpi_color
        self._builders: dict[WidgetType, Callable[[WidgetConfig, Sequence[int]], dict[str, Any]]] = {
            WidgetType.KPI: self.kpi,
            WidgetType.TABLE: self.table,
            WidgetType.PIE_CHART: self.pie_chart,
            WidgetType.BAR_CHART: self.bar_chart,
            WidgetType.LINE_CHART: self.line_chart,
        }

    def compute(self, widget_type: WidgetType | str, config: WidgetConfig, product_ids: Sequence[int]) -> dict[str, Any]:
        kind = WidgetType.parse(widget_type, cross_product=True)
        builder = self._builders.get(kind)
        if builder is None:
            raise UnknownWidgetTypeError(kind.value, cross_product=True)
        return builder(config, product_ids)

    def _per_product(self, product_ids: Sequence[int]) -> dict[int, Sequence[Record]]:
        return self.store.fetch_many(product_ids, None)

    def _union(self, product_ids: Sequence[int]) -> list[Record]:
        per_product = self._per_product(product_ids)
        return [record for product_id in product_ids for record in per_product.get(product_id, [])]

    def kpi(self, config: WidgetConfig, product_ids: Sequence[int]) -> dict[str, Any]:
        metric = config.metric or "COUNT(*)"
        precision = config.precision if config.precision is not None else self.default_precision
        value = round_value(self.evaluator.evaluate(metric, self._union(product_ids)), precision)
        return {
            "value": value,
            "formatted_value": self.render(value, config, precision),
            "format": config.format.value,
            "precision": precision,
            "color": config.color or self.kpi_color,
        }

    def render(self, value: float, config: WidgetConfig, precision: int) -> str:
        """Format a KPI value for display.

        Percentages are stored as fractions, so they are scaled by 100.
        """

        percentage = config.format is ValueFormat.PERCENTAGE
        if not config.prefix and not config.suffix:
            if config.format is ValueFormat.CURRENCY:
                return self.currency.format_amount(value)
            if percentage:
                return f"{number_format(value * 100, precision)}%"
            return number_format(value, precision)
        shown = value * 100 if percentage else value
        return f"{config.prefix}{number_format(shown, precision)}{config.suffix}"

    def pie_chart(self, config: WidgetConfig, product_ids: Sequence[int]) -> dict[str, Any]:
        group_by = config.group_by or PRODUCT_NAME
        value_field = config.value_field or "principal_amount"
        aggregation = config.aggregation or Aggregation.SUM

        if group_by != PRODUCT_NAME:
            spec = MetricSpec(aggregation=aggregation, field=value_field)
            return {"data": grouped_points(self._union(product_ids), group_by, spec)}

        names = self.catalog.product_names(product_ids)
        per_product = self._per_product(product_ids)
        data = []
        for product_id in product_ids:
            records = per_product.get(product_id, [])
            values = [record.number(value_field) for record in records]
            data.append(
                {
                    "label": names.get(product_id, f"Product {product_id}"),
                    "value": _aggregate(values, aggregation),
                }
            )
        return {"data": data}

    def bar_chart(self, config: WidgetConfig, product_ids: Sequence[int]) -> dict[str, Any]:
        x_field = config.x_axis or "credit_rating"
        spec = parse_metric(config.y_axis or "COUNT(*)", config.aggregation or Aggregation.COUNT, aliases=False)

        groups: dict[str, list[float]] = defaultdict(list)
        for record in self._union(product_ids):
            key = record.lookup(x_field)
            label = UNKNOWN_GROUP if key is None else key_text(key)
            groups[label].append(record.number(spec.field) if spec.field else 0.0)
        return {"data": [{"x": label, "y": _aggregate(values, spec.aggregation)} for label, values in groups.items()]}

    def table(self, config: WidgetConfig, product_ids: Sequence[int]) -> dict[str, Any]:
        columns = [str(column) for column in (config.columns or DEFAULT_TABLE_COLUMNS)]
        sectors: dict[str, list[Record]] = defaultdict(list)
        for record in self._union(product_ids):
            sector = record.lookup("sector")
            sectors[UNKNOWN_GROUP if sector is None else key_text(sector)].append(record)

        rows = []
        for sector, records in sectors.items():
            loan_count = len(records)
            total_value = sum(record.number("principal_amount") for record in records)
            npl_count = cross_product_npl_count(records)
            metrics: dict[str, Any] = {
                "sector": sector,
                "loan_count": loan_count,
                "total_value": total_value,
                "average_size": guarded_ratio(total_value, loan_count),
                "npl_count": npl_count,
                "npl_ratio": guarded_ratio(npl_count, loan_count) * 100,
            }
            rows.append({column: metrics.get(column, 0) for column in columns})
        return {"data": rows, "columns": columns}

    def line_chart(self, config: WidgetConfig, product_ids: Sequence[int]) -> dict[str, Any]:
        spec = parse_metric(config.y_axis or "SUM(principal_amount)", config.aggregation, aliases=False)
        months: dict[str, list[float]] = defaultdict(list)
        for record in self._union(product_ids):
            raw = record.lookup("disbursement_date")
            parsed = pd.to_datetime(raw, errors="coerce") if raw not in (None, "") else pd.NaT
            if pd.isna(parsed):
                if record.created_at is None:
                    continue
                parsed = pd.Timestamp(record.created_at)
            months[parsed.strftime("%Y-%m")].append(record.number(spec.field) if spec.field else 0.0)

        data = [{"x": month, "y": _aggregate(values, spec.aggregation)} for month, values in months.items()]
        return {"data": sorted(data, key=lambda point: point["x"])}


__all__ = ["CrossProductAggregator"]
