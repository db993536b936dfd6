"""Pydantic schemas exposed by the analytics engine."""

from .records import FieldKind, Formula, Record, ReturnType, decode_payload, numeric
from .requests import CrossProductWidgetRequest, FormulaEvaluationRequest, WidgetDataRequest
from .widgets import Aggregation, ValueFormat, WidgetConfig, WidgetType

__all__ = [
    "Aggregation",
    "CrossProductWidgetRequest",
    "FieldKind",
    "Formula",
    "FormulaEvaluationRequest",
    "Record",
    "ReturnType",
    "ValueFormat",
    "WidgetConfig",
    "WidgetDataRequest",
    "WidgetType",
    "decode_payload",
    "numeric",
]
