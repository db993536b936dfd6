"""Request bodies for the HTTP surface."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from portfolio_analytics.schemas.widgets import WidgetConfig


class FormulaEvaluationRequest(BaseModel):
    expression: str = Field(..., examples=["SUM(outstanding_balance)"])
    product_id: int
    filters: dict[str, Any] = Field(default_factory=dict)
    mode: Optional[Literal["lenient", "strict"]] = None


class WidgetDataRequest(BaseModel):
    product_id: int
    configuration: WidgetConfig = Field(default_factory=WidgetConfig)
    filters: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "product_id": 7,
                "configuration": {"group_by": "sector", "metric": "SUM(outstanding_balance)"},
                "filters": {"branch": ["LSK01"]},
            }
        }


class CrossProductWidgetRequest(BaseModel):
    product_ids: list[int] = Field(..., min_length=1)
    configuration: WidgetConfig = Field(default_factory=WidgetConfig)


__all__ = ["FormulaEvaluationRequest", "WidgetDataRequest", "CrossProductWidgetRequest"]
