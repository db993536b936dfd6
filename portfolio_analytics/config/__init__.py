"""Configuration package for the portfolio analytics engine."""

from .settings import DEFAULT_BASE_CURRENCY, DEFAULT_DATABASE_URL, AppSettings, get_settings

__all__ = ["AppSettings", "DEFAULT_BASE_CURRENCY", "DEFAULT_DATABASE_URL", "get_settings"]
