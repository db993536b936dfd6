"""Exception hierarchy for the analytics engine.

Internal helpers raise these; the public engine operations catch them at the
boundary and turn them into ``{"error": message}`` payloads.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every failure the engine knows how to report."""


class FormulaError(EngineError):
    """Problems with a formula expression."""

    def __init__(self, message: str, expression: str | None = None):
        super().__init__(message)
        self.expression = expression


class ExpressionSyntaxError(FormulaError):
    """The expression could not be tokenized or uses an unsupported shape."""

    def __init__(self, message: str, expression: str | None = None, position: int | None = None):
        super().__init__(message, expression)
        self.position = position


class ExpressionEvaluationError(FormulaError):
    """The expression parsed but failed while being evaluated."""


class MissingFormulaError(EngineError):
    def __init__(self, name: str, product_id: int | None):
        super().__init__(f"Formula '{name}' not found for product {product_id}")
        self.name = name
        self.product_id = product_id


class UnknownWidgetTypeError(EngineError):
    def __init__(self, widget_type: str, *, cross_product: bool = False):
        if cross_product:
            message = f"Cross-product data not supported for widget type: {widget_type}"
        else:
            message = f"Unknown widget type: {widget_type}"
        super().__init__(message)
        self.widget_type = widget_type


class DataDecodeError(EngineError):
    """A record payload could not be decoded into a flat mapping."""

    def __init__(self, message: str, record_id: object | None = None):
        super().__init__(message)
        self.record_id = record_id


class RecordStoreError(EngineError):
    """The record store collaborator failed to return records."""


__all__ = [
    "EngineError",
    "FormulaError",
    "ExpressionSyntaxError",
    "ExpressionEvaluationError",
    "MissingFormulaError",
    "UnknownWidgetTypeError",
    "DataDecodeError",
    "RecordStoreError",
]
