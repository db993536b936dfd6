"""Database model exports."""

from .formula import FormulaRecord
from .product import Customer, Product, ProductData

__all__ = ["Customer", "FormulaRecord", "Product", "ProductData"]
