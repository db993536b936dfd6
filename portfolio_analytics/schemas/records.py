"""Record and formula schemas shared by the evaluator and chart assemblers."""

from __future__ import annotations

import enum
import json
import logging
import math
from datetime import date, datetime
from typing import Any, Mapping

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from portfolio_analytics.core.errors import DataDecodeError

logger = logging.getLogger(__name__)


class FieldKind(str, enum.Enum):
    """Tagged variant for schema-less record values."""

    NUMBER = "number"
    TEXT = "text"
    BOOL = "bool"
    NULL = "null"


def classify(value: Any) -> FieldKind:
    if value is None:
        return FieldKind.NULL
    if isinstance(value, bool):
        return FieldKind.BOOL
    if isinstance(value, (int, float)):
        return FieldKind.NUMBER
    return FieldKind.TEXT


def numeric(value: Any) -> float:
    """Coerce a record value to a float for arithmetic.

    Numbers pass through and numeric text is parsed, since CSV imports keep
    figures as strings. Booleans, nulls, other text and non-finite values
    count as ``0``.
    """

    kind = classify(value)
    if kind is FieldKind.NUMBER:
        result = float(value)
    elif kind is FieldKind.TEXT:
        try:
            result = float(str(value).strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return result if math.isfinite(result) else 0.0


def is_blank(value: Any) -> bool:
    """True for values a grouping key can never be built from."""

    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value.strip() in ("", "0", "null", "NULL")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    return False


def decode_payload(raw: Any, record_id: object | None = None) -> dict[str, Any]:
    """Decode a record payload into a flat ``{field: scalar}`` mapping.

    Accepts already-decoded mappings and JSON text. Nested objects and arrays
    are kept as opaque JSON strings.
    """

    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DataDecodeError(f"Record payload is not valid JSON: {exc.msg}", record_id) from exc
    if not isinstance(raw, Mapping):
        raise DataDecodeError(
            f"Record payload must decode to an object, got {type(raw).__name__}", record_id
        )
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, (Mapping, list, tuple)):
            value = json.dumps(value, default=str)
        flat[str(key)] = value
    return flat


class Record(BaseModel):
    """One row of portfolio data: a fixed ``amount`` plus a free-form payload."""

    id: int | str | None = None
    product_id: int | None = None
    customer_id: int | str | None = None
    amount: float = 0.0
    data: dict[str, Any] = Field(default_factory=dict)
    effective_date: date | None = None
    created_at: datetime | None = None
    status: str | None = None

    class Config:
        frozen = True

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float:
        return numeric(value)

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, value: Any, info: ValidationInfo) -> dict[str, Any]:
        record_id = info.data.get("id")
        try:
            return decode_payload(value, record_id)
        except DataDecodeError as exc:
            logger.warning("Treating payload of record %s as empty: %s", record_id, exc)
            return {}

    def lookup(self, name: str) -> Any:
        """Return the raw payload value; ``amount`` falls back to the column."""

        if name in self.data:
            return self.data[name]
        if name == "amount":
            return self.amount
        return None

    def has(self, name: str) -> bool:
        return self.lookup(name) is not None

    def number(self, name: str) -> float:
        return numeric(self.lookup(name))


class ReturnType(str, enum.Enum):
    NUMERIC = "numeric"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"


class Formula(BaseModel):
    """A named, reusable expression owned by a product (or global when unowned)."""

    id: int | None = None
    name: str
    expression: str
    return_type: ReturnType = ReturnType.NUMERIC
    product_id: int | None = None
    is_active: bool = True
    description: str | None = None


__all__ = [
    "FieldKind",
    "Formula",
    "Record",
    "ReturnType",
    "classify",
    "decode_payload",
    "is_blank",
    "numeric",
]
