"""Widget data routes.

Failures stay in the ``{"error": ...}`` body with a 200 status so a dashboard
can render the widgets that did succeed.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from portfolio_analytics.schemas import CrossProductWidgetRequest, WidgetDataRequest
from portfolio_analytics.services.engine import DashboardEngine


def get_widget_router(engine: DashboardEngine) -> APIRouter:
    router = APIRouter()

    @router.post("/cross-product/{widget_type}/data")
    def cross_product_widget_data(widget_type: str, payload: CrossProductWidgetRequest) -> dict[str, Any]:
        return engine.compute_cross_product_chart(widget_type, payload.configuration, payload.product_ids)

    @router.post("/{widget_type}/data")
    def widget_data(widget_type: str, payload: WidgetDataRequest) -> dict[str, Any]:
        return engine.compute_chart(widget_type, payload.configuration, payload.product_id, payload.filters)

    return router


__all__ = ["get_widget_router"]
