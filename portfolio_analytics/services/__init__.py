"""Engine services: calculations, filters, collaborators and assemblers."""

from .engine import DashboardEngine
from .stores import (
    InMemoryCustomerDirectory,
    InMemoryFormulaRepository,
    InMemoryProductCatalog,
    InMemoryRecordStore,
    SymbolCurrencyFormatter,
)

__all__ = [
    "DashboardEngine",
    "InMemoryCustomerDirectory",
    "InMemoryFormulaRepository",
    "InMemoryProductCatalog",
    "InMemoryRecordStore",
    "SymbolCurrencyFormatter",
]
