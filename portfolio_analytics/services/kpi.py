"""KPI value resolution.

A KPI configuration is resolved in a fixed order, first match wins:

1. ``formula_name``: the named stored formula (missing means an error).
2. ``metric`` equal to a canonical metric string: the built-in calculation.
3. ``metric`` equal to a stored formula's expression: that formula.
4. Otherwise ``metric`` itself, counted or evaluated over the product's
   unfiltered records.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from portfolio_analytics.core.errors import MissingFormulaError
from portfolio_analytics.expressions.evaluator import FormulaEvaluator
from portfolio_analytics.schemas.widgets import ValueFormat, WidgetConfig
from portfolio_analytics.services.calculations import canonical_metric, evaluate_named_formula
from portfolio_analytics.services.charts import number_format, round_value
from portfolio_analytics.services.stores import FormulaRepository, RecordStore

logger = logging.getLogger(__name__)

DEFAULT_KPI_METRIC = "COUNT(*)"
_COUNT_METRICS = {"COUNT", "COUNT(*)"}


class KpiResolver:
    def __init__(
        self,
        store: RecordStore,
        formulas: FormulaRepository,
        evaluator: FormulaEvaluator,
        *,
        default_precision: int = 2,
        default_color: str = "#007bff",
    ):
        self.store = store
        self.formulas = formulas
        self.evaluator = evaluator
        self.default_precision = default_precision
        self.default_color = default_color

    def value(self, config: WidgetConfig, product_id: int, filters: Mapping[str, Any] | None = None) -> float:
        """Raw, unrounded KPI value."""

        if config.formula_name:
            formula = self.formulas.find_by_name(config.formula_name, product_id)
            if formula is None:
                raise MissingFormulaError(config.formula_name, product_id)
            logger.debug("KPI via formula %s for product %s", formula.name, product_id)
            return evaluate_named_formula(formula, self.store.fetch(product_id, filters), self.evaluator)

        metric = (config.metric or DEFAULT_KPI_METRIC).strip()
        calculation = canonical_metric(metric)
        if calculation is not None:
            return float(calculation(self.store.fetch(product_id, filters)))

        formula = self.formulas.find_by_expression(metric, product_id)
        if formula is not None:
            return evaluate_named_formula(formula, self.store.fetch(product_id, filters), self.evaluator)

        records = self.store.fetch(product_id, {})
        if metric.upper() in _COUNT_METRICS:
            return float(len(records))
        return self.evaluator.evaluate(metric, records)

    def compute(self, config: WidgetConfig, product_id: int, filters: Mapping[str, Any] | None = None) -> dict[str, Any]:
        precision = config.precision if config.precision is not None else self.default_precision
        value = round_value(self.value(config, product_id, filters), precision)
        payload: dict[str, Any] = {
            "value": value,
            "format": config.format.value,
            "precision": precision,
            "color": config.color or self.default_color,
        }
        if config.prefix or config.suffix:
            shown = value * 100 if config.format is ValueFormat.PERCENTAGE else value
            payload["formatted_value"] = f"{config.prefix}{number_format(shown, precision)}{config.suffix}"
        return payload


__all__ = ["DEFAULT_KPI_METRIC", "KpiResolver"]
