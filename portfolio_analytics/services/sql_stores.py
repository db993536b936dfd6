"""SQLAlchemy-backed collaborators for the engine."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from portfolio_analytics.core.errors import DataDecodeError, RecordStoreError
from portfolio_analytics.core.logging import ErrorSink, LoggingErrorSink
from portfolio_analytics.db import Database
from portfolio_analytics.models import Customer, FormulaRecord, Product, ProductData
from portfolio_analytics.schemas.records import Formula, Record, decode_payload
from portfolio_analytics.services.filters import apply_filters

logger = logging.getLogger(__name__)


def _to_record(row: ProductData, data: dict[str, Any]) -> Record:
    return Record(
        id=row.id,
        product_id=row.product_id,
        customer_id=row.customer_id,
        amount=float(row.amount or 0),
        data=data,
        effective_date=row.effective_date,
        created_at=row.created_at,
        status=row.status,
    )


def _to_formula(row: FormulaRecord) -> Formula:
    return Formula(
        id=row.id,
        name=row.name,
        expression=row.expression,
        return_type=row.return_type,
        product_id=row.product_id,
        is_active=row.is_active,
        description=row.description,
    )


class SqlRecordStore:
    """Loads ``product_data`` rows and applies dashboard filters to them."""

    def __init__(self, database: Database, error_sink: ErrorSink | None = None):
        self.database = database
        self.error_sink = error_sink or LoggingErrorSink(logger)

    def _decode(self, row: ProductData) -> dict[str, Any]:
        try:
            return decode_payload(row.data, row.id)
        except DataDecodeError as exc:
            self.error_sink.log_error(
                {
                    "message": "Record payload could not be decoded",
                    "record_id": row.id,
                    "product_id": row.product_id,
                    "error": str(exc),
                }
            )
            return {}

    def _load(self, product_ids: Sequence[int]) -> list[Record]:
        statement = (
            select(ProductData)
            .where(ProductData.product_id.in_(list(product_ids)))
            .order_by(ProductData.id)
        )
        try:
            with self.database.session() as session:
                rows = session.scalars(statement).all()
                return [_to_record(row, self._decode(row)) for row in rows]
        except SQLAlchemyError as exc:
            logger.exception("Failed to load records for products %s", list(product_ids))
            raise RecordStoreError(f"Failed to load records: {exc}") from exc

    def fetch(self, product_id: int, filters: Mapping[str, Any] | None = None) -> list[Record]:
        return apply_filters(self._load([product_id]), filters)

    def fetch_many(
        self,
        product_ids: Sequence[int],
        filters: Mapping[str, Any] | None = None,
    ) -> dict[int, list[Record]]:
        grouped: dict[int, list[Record]] = {product_id: [] for product_id in product_ids}
        for record in apply_filters(self._load(product_ids), filters):
            grouped.setdefault(record.product_id, []).append(record)
        return grouped


class SqlFormulaRepository:
    """Active formula lookups; a product's own formula wins over a global one."""

    def __init__(self, database: Database):
        self.database = database

    def _first(self, product_id: int | None, *criteria: Any) -> Formula | None:
        scope = FormulaRecord.product_id.is_(None)
        if product_id is not None:
            scope = scope | (FormulaRecord.product_id == product_id)
        statement = (
            select(FormulaRecord)
            .where(FormulaRecord.is_active.is_(True), scope, *criteria)
            .order_by(FormulaRecord.product_id.is_(None), FormulaRecord.id)
            .limit(1)
        )
        try:
            with self.database.session() as session:
                row = session.scalars(statement).first()
                return _to_formula(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Failed to load formulas: {exc}") from exc

    def find_by_name(self, name: str, product_id: int | None) -> Formula | None:
        return self._first(product_id, FormulaRecord.name == name)

    def find_by_expression(self, expression: str, product_id: int | None) -> Formula | None:
        return self._first(product_id, FormulaRecord.expression == expression)


class SqlProductCatalog:
    def __init__(self, database: Database):
        self.database = database

    def product_names(self, product_ids: Sequence[int]) -> dict[int, str]:
        statement = select(Product.id, Product.name).where(Product.id.in_(list(product_ids)))
        try:
            with self.database.session() as session:
                return {product_id: name for product_id, name in session.execute(statement)}
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Failed to load products: {exc}") from exc


class SqlCustomerDirectory:
    def __init__(self, database: Database):
        self.database = database

    def display_name(self, customer_id: Any) -> str | None:
        if customer_id is None:
            return None
        statement = select(Customer.name).where(Customer.customer_id == str(customer_id))
        try:
            with self.database.session() as session:
                return session.scalars(statement).first()
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Failed to load customer {customer_id}: {exc}") from exc


__all__ = [
    "SqlCustomerDirectory",
    "SqlFormulaRepository",
    "SqlProductCatalog",
    "SqlRecordStore",
]
