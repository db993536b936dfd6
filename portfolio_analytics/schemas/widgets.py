"""Widget configuration schemas."""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from portfolio_analytics.core.errors import UnknownWidgetTypeError


class WidgetType(str, enum.Enum):
    KPI = "KPI"
    TABLE = "Table"
    PIE_CHART = "PieChart"
    BAR_CHART = "BarChart"
    LINE_CHART = "LineChart"
    HEATMAP = "Heatmap"

    @classmethod
    def parse(cls, value: "WidgetType | str", *, cross_product: bool = False) -> "WidgetType":
        if isinstance(value, cls):
            return value
        candidate = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == candidate:
                return member
        raise UnknownWidgetTypeError(str(value), cross_product=cross_product)


class Aggregation(str, enum.Enum):
    SUM = "SUM"
    COUNT = "COUNT"
    AVG = "AVG"
    MAX = "MAX"
    MIN = "MIN"


class ValueFormat(str, enum.Enum):
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DECIMAL = "decimal"


class WidgetConfig(BaseModel):
    """Per-call widget configuration.

    Both the older ``group_by``/``metric`` keys and the newer
    ``x_axis``/``y_axis`` keys are accepted; unknown keys are kept.
    """

    metric: Optional[str] = None
    y_axis: Optional[str] = None
    group_by: Optional[str] = None
    x_axis: Optional[str] = None
    aggregation: Optional[Aggregation] = None
    format: ValueFormat = ValueFormat.NUMBER
    precision: Optional[int] = Field(default=None, ge=0, le=10)
    prefix: str = ""
    suffix: str = ""
    color: Optional[str] = None
    formula_name: Optional[str] = None
    value_field: Optional[str] = None
    columns: Optional[list[str]] = None
    limit: Optional[int] = Field(default=None, ge=1)
    date_format: str = "Y-m"

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "group_by": "sector",
                "metric": "SUM(outstanding_balance)",
                "aggregation": "SUM",
                "format": "currency",
                "precision": 2,
            }
        }

    @field_validator("aggregation", mode="before")
    @classmethod
    def _normalise_aggregation(cls, value: Any) -> Any:
        if value is None or isinstance(value, Aggregation):
            return value
        candidate = str(value).strip().upper()
        return candidate if candidate in Aggregation.__members__ else None

    @field_validator("format", mode="before")
    @classmethod
    def _normalise_format(cls, value: Any) -> Any:
        if value is None:
            return ValueFormat.NUMBER
        if isinstance(value, ValueFormat):
            return value
        candidate = str(value).strip().lower()
        known = {member.value for member in ValueFormat}
        return candidate if candidate in known else ValueFormat.NUMBER

    @field_validator("prefix", "suffix", mode="before")
    @classmethod
    def _empty_string(cls, value: Any) -> str:
        return "" if value is None else str(value)


__all__ = ["Aggregation", "ValueFormat", "WidgetConfig", "WidgetType"]
