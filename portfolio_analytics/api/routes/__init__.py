"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from portfolio_analytics.services.engine import DashboardEngine

from .formulas import get_formula_router
from .widgets import get_widget_router


def get_api_router(engine: DashboardEngine) -> APIRouter:
    api_router = APIRouter()
    api_router.include_router(get_formula_router(engine), prefix="/formulas", tags=["formulas"])
    api_router.include_router(get_widget_router(engine), prefix="/widgets", tags=["widgets"])
    return api_router


__all__ = ["get_api_router"]
