"""Formula preview routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from portfolio_analytics.schemas import FormulaEvaluationRequest
from portfolio_analytics.services.engine import DashboardEngine


def get_formula_router(engine: DashboardEngine) -> APIRouter:
    router = APIRouter()

    @router.post("/evaluate")
    def evaluate(payload: FormulaEvaluationRequest) -> dict[str, Any]:
        """Evaluate an expression over a product's (filtered) records."""

        return engine.evaluate_product_formula(
            payload.expression,
            payload.product_id,
            payload.filters,
            mode=payload.mode,
        )

    return router


__all__ = ["get_formula_router"]
