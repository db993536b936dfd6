"""Collaborator contracts consumed by the engine, with in-memory versions.

The SQL-backed implementations live in :mod:`portfolio_analytics.services.sql_stores`;
the in-memory ones here are handy for tests, notebooks and previews.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable, Mapping, Protocol, Sequence

from portfolio_analytics.schemas.records import Formula, Record
from portfolio_analytics.services.filters import apply_filters


class RecordStore(Protocol):
    """Supplies the filtered record set for one or many products."""

    def fetch(self, product_id: int, filters: Mapping[str, Any] | None = None) -> Sequence[Record]:
        ...

    def fetch_many(
        self,
        product_ids: Sequence[int],
        filters: Mapping[str, Any] | None = None,
    ) -> dict[int, Sequence[Record]]:
        ...


class FormulaRepository(Protocol):
    """Lookup of active formulas by name or by exact expression text."""

    def find_by_name(self, name: str, product_id: int | None) -> Formula | None:
        ...

    def find_by_expression(self, expression: str, product_id: int | None) -> Formula | None:
        ...


class CurrencyFormatter(Protocol):
    def format_amount(self, value: float) -> str:
        ...


class ProductCatalog(Protocol):
    def product_names(self, product_ids: Sequence[int]) -> dict[int, str]:
        ...


class CustomerDirectory(Protocol):
    def display_name(self, customer_id: Any) -> str | None:
        ...


class InMemoryRecordStore:
    """Record store over a plain list of records."""

    def __init__(self, records: Iterable[Record | Mapping[str, Any]] = ()):
        self._by_product: dict[int | None, list[Record]] = defaultdict(list)
        for item in records:
            self.add(item)

    def add(self, item: Record | Mapping[str, Any]) -> Record:
        record = item if isinstance(item, Record) else Record.model_validate(item)
        self._by_product[record.product_id].append(record)
        return record

    def fetch(self, product_id: int, filters: Mapping[str, Any] | None = None) -> list[Record]:
        return apply_filters(self._by_product.get(product_id, []), filters)

    def fetch_many(
        self,
        product_ids: Sequence[int],
        filters: Mapping[str, Any] | None = None,
    ) -> dict[int, list[Record]]:
        return {product_id: self.fetch(product_id, filters) for product_id in product_ids}


class InMemoryFormulaRepository:
    """Formula lookups over a list; product formulas win over global ones."""

    def __init__(self, formulas: Iterable[Formula] = ()):
        self._formulas = list(formulas)

    def add(self, formula: Formula) -> Formula:
        self._formulas.append(formula)
        return formula

    def _first(self, product_id: int | None, **criteria: str) -> Formula | None:
        candidates = [
            formula
            for formula in self._formulas
            if formula.is_active
            and all(getattr(formula, key) == value for key, value in criteria.items())
            and formula.product_id in (product_id, None)
        ]
        candidates.sort(key=lambda formula: formula.product_id is None)
        return candidates[0] if candidates else None

    def find_by_name(self, name: str, product_id: int | None) -> Formula | None:
        return self._first(product_id, name=name)

    def find_by_expression(self, expression: str, product_id: int | None) -> Formula | None:
        return self._first(product_id, expression=expression)


class InMemoryProductCatalog:
    def __init__(self, names: Mapping[int, str] | None = None):
        self._names = dict(names or {})

    def product_names(self, product_ids: Sequence[int]) -> dict[int, str]:
        return {product_id: self._names[product_id] for product_id in product_ids if product_id in self._names}


class InMemoryCustomerDirectory:
    def __init__(self, names: Mapping[Any, str] | None = None):
        self._names = {str(key): value for key, value in (names or {}).items()}

    def display_name(self, customer_id: Any) -> str | None:
        if customer_id is None:
            return None
        return self._names.get(str(customer_id))


class SymbolCurrencyFormatter:
    """Formats amounts like ``ZMW1,234.50`` or ``1,234.50 ZMW``."""

    def __init__(
        self,
        symbol: str = "ZMW",
        *,
        position: str = "before",
        decimal_places: int = 2,
        decimal_separator: str = ".",
        thousands_separator: str = ",",
    ):
        self.symbol = symbol
        self.position = position
        self.decimal_places = decimal_places
        self.decimal_separator = decimal_separator
        self.thousands_separator = thousands_separator

    def format_number(self, value: float) -> str:
        text = f"{value:,.{self.decimal_places}f}"
        if (self.decimal_separator, self.thousands_separator) != (".", ","):
            text = text.replace(",", "\0").replace(".", self.decimal_separator)
            text = text.replace("\0", self.thousands_separator)
        return text

    def format_amount(self, value: float) -> str:
        formatted = self.format_number(value)
        if self.position == "before":
            return f"{self.symbol}{formatted}"
        return f"{formatted} {self.symbol}"


__all__ = [
    "CurrencyFormatter",
    "CustomerDirectory",
    "FormulaRepository",
    "InMemoryCustomerDirectory",
    "InMemoryFormulaRepository",
    "InMemoryProductCatalog",
    "InMemoryRecordStore",
    "ProductCatalog",
    "RecordStore",
    "SymbolCurrencyFormatter",
]
