"""Application configuration and environment helpers."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings
from sqlalchemy.engine import make_url

DEFAULT_BASE_CURRENCY = "ZMW"
DEFAULT_DATABASE_URL = "sqlite:///./portfolio_analytics.db"


class AppSettings(BaseSettings):
    """Configuration options for the portfolio analytics engine."""

    app_name: str = Field(default="Portfolio Analytics Engine")
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL,
        description="SQLAlchemy database URL for the record store.",
    )

    base_currency: str = Field(default=DEFAULT_BASE_CURRENCY)
    currency_symbol: str = Field(default=DEFAULT_BASE_CURRENCY)
    currency_symbol_position: Literal["before", "after"] = Field(default="before")
    currency_decimal_places: int = Field(default=2, ge=0, le=6)

    kpi_default_precision: int = Field(default=2, ge=0, le=10)
    kpi_default_color: str = Field(default="#007bff")
    cross_product_kpi_color: str = Field(default="primary")
    table_row_limit: int = Field(default=50, ge=1)

    formula_mode: Literal["lenient", "strict"] = Field(
        default="lenient",
        description="lenient degrades broken formulas to 0.0, strict reports them as errors.",
    )

    log_level: str = Field(default="INFO")

    telemetry_enabled: bool = Field(default=False)
    telemetry_service_name: str = Field(default="portfolio-analytics")
    telemetry_otlp_endpoint: str | None = Field(default=None)
    telemetry_otlp_insecure: bool = Field(default=True)
    telemetry_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)

    class Config:
        env_prefix = "PORTFOLIO_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def dict_for_logging(self) -> dict[str, Any]:
        """Return a sanitized dict for logging purposes."""

        values = self.model_dump()
        values["database_url"] = make_url(self.database_url).render_as_string(hide_password=True)
        return values


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> AppSettings:
    """Return cached application settings with optional overrides."""

    if overrides:
        return AppSettings(**overrides)
    return AppSettings()


__all__ = [
    "AppSettings",
    "DEFAULT_BASE_CURRENCY",
    "DEFAULT_DATABASE_URL",
    "get_settings",
]
