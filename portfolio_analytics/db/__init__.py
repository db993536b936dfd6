"""Database helpers."""

from .base import Base
from .database import Database

__all__ = ["Base", "Database"]
