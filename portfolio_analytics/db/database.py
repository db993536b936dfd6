"""Synchronous SQLAlchemy engine and session helper."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from portfolio_analytics.config import DEFAULT_DATABASE_URL
from portfolio_analytics.db.base import Base


class Database:
    """Configure an engine and session factory for the record store."""

    def __init__(self, url: str | None = None):
        self._url = url or DEFAULT_DATABASE_URL
        self._engine = create_engine(self._url, future=True, echo=False)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        """Create all tables defined on the declarative metadata."""

        # Import models so the metadata knows every table.
        import portfolio_analytics.models  # noqa: F401  # pylint: disable=unused-import

        Base.metadata.create_all(self._engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self._session_factory() as session:
            yield session

    def dispose(self) -> None:
        self._engine.dispose()


__all__ = ["Database"]
