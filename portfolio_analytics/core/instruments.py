"""Tracer and metric instruments used by the engine.

Only the OpenTelemetry API is touched here; without an SDK configured by
``setup_telemetry`` these are no-ops.
"""

from __future__ import annotations

from opentelemetry import metrics, trace

tracer = trace.get_tracer("portfolio_analytics")
meter = metrics.get_meter("portfolio_analytics")

formula_fallbacks = meter.create_counter(
    "formula.fallbacks",
    unit="1",
    description="Formula evaluations that degraded to 0.0 in lenient mode",
)

__all__ = ["tracer", "meter", "formula_fallbacks"]
