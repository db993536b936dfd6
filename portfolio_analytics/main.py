"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI

from portfolio_analytics.api.routes import get_api_router
from portfolio_analytics.config import AppSettings, get_settings
from portfolio_analytics.core.logging import ErrorSink, LoggingErrorSink, setup_logging
from portfolio_analytics.core.telemetry import setup_telemetry
from portfolio_analytics.db import Database
from portfolio_analytics.services.engine import DashboardEngine
from portfolio_analytics.services.sql_stores import (
    SqlCustomerDirectory,
    SqlFormulaRepository,
    SqlProductCatalog,
    SqlRecordStore,
)

logger = logging.getLogger(__name__)


def build_sql_engine(
    database: Database,
    settings: AppSettings,
    error_sink: ErrorSink | None = None,
) -> DashboardEngine:
    """Wire the engine to the SQL-backed collaborators."""

    error_sink = error_sink or LoggingErrorSink(logger)
    return DashboardEngine(
        SqlRecordStore(database, error_sink),
        SqlFormulaRepository(database),
        catalog=SqlProductCatalog(database),
        customers=SqlCustomerDirectory(database),
        settings=settings,
        error_sink=error_sink,
    )


def create_app(
    engine: DashboardEngine | None = None,
    settings: AppSettings | None = None,
    database: Database | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    logger.info("Portfolio analytics configuration", extra=settings.dict_for_logging())

    if engine is None:
        database = database or Database(settings.database_url)
        engine = build_sql_engine(database, settings)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        if database is not None:
            database.create_all()
        yield

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=_lifespan)
    setup_telemetry(app, settings, engine=database.engine if database is not None else None)
    app.include_router(get_api_router(engine))

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        """Return service readiness metadata."""

        return {
            "status": "ok",
            "service": settings.app_name,
            "formula_mode": engine.mode.value,
            "timestamp": datetime.now().isoformat(),
        }

    return app


__all__ = ["build_sql_engine", "create_app"]
