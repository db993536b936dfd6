"""Public entry points of the analytics engine.

Every operation here either returns its payload or an ``{"error": message}``
mapping; exceptions never cross this boundary, so one failing widget cannot
take a whole dashboard down.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence, TypeVar

from portfolio_analytics.config import AppSettings, get_settings
from portfolio_analytics.core.errors import EngineError, FormulaError
from portfolio_analytics.core.instruments import tracer
from portfolio_analytics.core.logging import ErrorSink, LoggingErrorSink
from portfolio_analytics.expressions.evaluator import EvaluationMode, FormulaEvaluator
from portfolio_analytics.schemas.records import Formula, Record
from portfolio_analytics.schemas.widgets import WidgetConfig, WidgetType
from portfolio_analytics.services import charts
from portfolio_analytics.services.calculations import evaluate_named_formula
from portfolio_analytics.services.cross_product import CrossProductAggregator
from portfolio_analytics.services.kpi import KpiResolver
from portfolio_analytics.services.stores import (
    CurrencyFormatter,
    CustomerDirectory,
    FormulaRepository,
    InMemoryProductCatalog,
    ProductCatalog,
    RecordStore,
    SymbolCurrencyFormatter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHART_BUILDERS: dict[WidgetType, charts.ChartBuilder] = {
    WidgetType.PIE_CHART: charts.pie_chart,
    WidgetType.BAR_CHART: charts.bar_chart,
    WidgetType.LINE_CHART: charts.line_chart,
    WidgetType.HEATMAP: charts.heatmap,
}

FAILURE_LABELS: dict[WidgetType, str] = {
    WidgetType.KPI: "KPI calculation failed",
    WidgetType.TABLE: "Table data failed",
    WidgetType.PIE_CHART: "Pie chart data failed",
    WidgetType.BAR_CHART: "Bar chart data failed",
    WidgetType.LINE_CHART: "Line chart data failed",
    WidgetType.HEATMAP: "Heatmap data failed",
}


def _as_config(config: WidgetConfig | Mapping[str, Any] | None) -> WidgetConfig:
    if isinstance(config, WidgetConfig):
        return config
    return WidgetConfig.model_validate(dict(config or {}))


class DashboardEngine:
    """Formula evaluation, KPI resolution and chart assembly behind one facade."""

    def __init__(
        self,
        store: RecordStore,
        formulas: FormulaRepository,
        *,
        catalog: ProductCatalog | None = None,
        customers: CustomerDirectory | None = None,
        currency: CurrencyFormatter | None = None,
        settings: AppSettings | None = None,
        error_sink: ErrorSink | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.formulas = formulas
        self.catalog = catalog or InMemoryProductCatalog()
        self.customers = customers
        self.currency = currency or SymbolCurrencyFormatter(
            self.settings.currency_symbol,
            position=self.settings.currency_symbol_position,
            decimal_places=self.settings.currency_decimal_places,
        )
        self.error_sink = error_sink or LoggingErrorSink(logger)
        self.mode = EvaluationMode.coerce(self.settings.formula_mode)

    def evaluator(self, mode: EvaluationMode | str | None = None) -> FormulaEvaluator:
        return FormulaEvaluator(mode or self.mode, self.error_sink)

    # Formula operations

    def evaluate_formula(
        self,
        expression: str,
        records: Sequence[Record],
        *,
        mode: EvaluationMode | str | None = None,
    ) -> float | dict[str, str]:
        """Evaluate ``expression`` over ``records``.

        Lenient mode always yields a float; strict mode reports an invalid
        formula as ``{"error": "Invalid formula: ..."}``.
        """

        return self._guarded(
            "formula.evaluate",
            "Formula evaluation failed",
            lambda: self.evaluator(mode).evaluate(expression, records),
            {"formula.expression": expression},
        )

    def evaluate_product_formula(
        self,
        expression: str,
        product_id: int,
        filters: Mapping[str, Any] | None = None,
        *,
        mode: EvaluationMode | str | None = None,
    ) -> dict[str, Any]:
        def run() -> dict[str, Any]:
            records = self.store.fetch(product_id, filters)
            return {"value": self.evaluator(mode).evaluate(expression, records), "record_count": len(records)}

        return self._guarded(
            "formula.evaluate",
            "Formula evaluation failed",
            run,
            {"formula.expression": expression, "product.id": product_id},
        )

    def evaluate_named_formula(
        self,
        formula: Formula,
        product_id: int,
        records: Sequence[Record] | None = None,
        *,
        mode: EvaluationMode | str | None = None,
    ) -> float | dict[str, str]:
        def run() -> float:
            rows = records if records is not None else self.store.fetch(product_id, None)
            return evaluate_named_formula(formula, rows, self.evaluator(mode))

        return self._guarded(
            "formula.evaluate_named",
            "Formula evaluation failed",
            run,
            {"formula.name": formula.name, "product.id": product_id},
        )

    # Widgets

    def compute_kpi(
        self,
        config: WidgetConfig | Mapping[str, Any] | None,
        product_id: int,
        filters: Mapping[str, Any] | None = None,
        *,
        mode: EvaluationMode | str | None = None,
    ) -> dict[str, Any]:
        return self._guarded(
            "widget.compute_kpi",
            FAILURE_LABELS[WidgetType.KPI],
            lambda: self._kpi(mode).compute(_as_config(config), product_id, filters),
            {"widget.type": WidgetType.KPI.value, "product.id": product_id},
        )

    def compute_chart(
        self,
        widget_type: WidgetType | str,
        config: WidgetConfig | Mapping[str, Any] | None,
        product_id: int,
        filters: Mapping[str, Any] | None = None,
        *,
        mode: EvaluationMode | str | None = None,
    ) -> dict[str, Any]:
        def run() -> dict[str, Any]:
            kind = WidgetType.parse(widget_type)
            widget_config = _as_config(config)
            if kind is WidgetType.KPI:
                return self._kpi(mode).compute(widget_config, product_id, filters)
            records = self.store.fetch(product_id, filters)
            if kind is WidgetType.TABLE:
                return self._tables(mode).build(records, widget_config)
            return CHART_BUILDERS[kind](records, widget_config)

        return self._guarded(
            "widget.compute_chart",
            self._failure_label(widget_type),
            run,
            {"widget.type": str(getattr(widget_type, "value", widget_type)), "product.id": product_id},
        )

    def compute_cross_product_chart(
        self,
        widget_type: WidgetType | str,
        config: WidgetConfig | Mapping[str, Any] | None,
        product_ids: Sequence[int],
        *,
        mode: EvaluationMode | str | None = None,
    ) -> dict[str, Any]:
        return self._guarded(
            "widget.compute_cross_product_chart",
            "Cross-product data failed",
            lambda: self._cross_product(mode).compute(widget_type, _as_config(config), list(product_ids)),
            {"widget.type": str(getattr(widget_type, "value", widget_type)), "product.ids": list(product_ids)},
        )

    # Helpers

    def _kpi(self, mode: EvaluationMode | str | None) -> KpiResolver:
        return KpiResolver(
            self.store,
            self.formulas,
            self.evaluator(mode),
            default_precision=self.settings.kpi_default_precision,
            default_color=self.settings.kpi_default_color,
        )

    def _tables(self, mode: EvaluationMode | str | None) -> charts.TableAssembler:
        return charts.TableAssembler(
            self.evaluator(mode),
            self.customers,
            default_limit=self.settings.table_row_limit,
        )

    def _cross_product(self, mode: EvaluationMode | str | None) -> CrossProductAggregator:
        return CrossProductAggregator(
            self.store,
            self.catalog,
            self.currency,
            self.evaluator(mode),
            default_precision=self.settings.kpi_default_precision,
            kpi_color=self.settings.cross_product_kpi_color,
        )

    @staticmethod
    def _failure_label(widget_type: WidgetType | str) -> str:
        try:
            return FAILURE_LABELS[WidgetType.parse(widget_type)]
        except EngineError:
            return "Widget data failed"

    def _guarded(
        self,
        span_name: str,
        failure_label: str,
        operation: Callable[[], T],
        attributes: Mapping[str, Any],
    ) -> T | dict[str, str]:
        with tracer.start_as_current_span(span_name) as span:
            for key, value in attributes.items():
                span.set_attribute(key, value)
            try:
                return operation()
            except FormulaError as exc:
                span.record_exception(exc)
                logger.info("Rejected invalid formula %r: %s", exc.expression, exc)
                return {"error": f"Invalid formula: {exc}"}
            except EngineError as exc:
                span.record_exception(exc)
                logger.warning("%s: %s", span_name, exc)
                return {"error": str(exc)}
            except Exception as exc:  # noqa: BLE001 - widget failures are reported, not raised
                span.record_exception(exc)
                logger.exception("%s", failure_label)
                self.error_sink.log_error(
                    {"message": failure_label, "operation": span_name, "error": str(exc), **attributes}
                )
                return {"error": f"{failure_label}: {exc}"}


__all__ = ["CHART_BUILDERS", "DashboardEngine"]
