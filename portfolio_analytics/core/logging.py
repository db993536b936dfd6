import logging
import sys
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure logging to output to stdout with proper formatting."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(getattr(existing, "_portfolio_analytics", False) for existing in root_logger.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler._portfolio_analytics = True  # type: ignore[attr-defined]
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Set lower log levels for some noisy libraries
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class ErrorSink(Protocol):
    """Receives structured failure context from the engine."""

    def log_error(self, context: Mapping[str, Any]) -> None:
        ...


class LoggingErrorSink:
    """Error sink that forwards failure context to the standard logger."""

    def __init__(self, target: logging.Logger | None = None):
        self._logger = target or logger

    def log_error(self, context: Mapping[str, Any]) -> None:
        message = context.get("message", "Engine failure")
        details = {key: value for key, value in context.items() if key != "message"}
        self._logger.error("%s: %s", message, details)


class RecordingErrorSink:
    """Keeps reported failures in memory; useful for tests and previews."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    def log_error(self, context: Mapping[str, Any]) -> None:
        self.entries.append(dict(context))


__all__ = ["setup_logging", "ErrorSink", "LoggingErrorSink", "RecordingErrorSink"]
