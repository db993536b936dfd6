"""AST node types for the formula mini-language.

Aggregate nodes (``Sum``, ``Avg``, ``Count``, ``CountCaseWhen``,
``Div100Percent``) produce one number for a whole record collection. Row nodes
(``FieldRef``, ``Literal``, ``CaseWhenStatusEquals``) produce one number per
record and only appear inside ``Sum``/``Avg``. ``BinaryOp`` appears at both
levels and takes the level of its parent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Literal:
    value: float

    def __str__(self) -> str:
        return f"{self.value:g}"


@dataclass(frozen=True)
class FieldRef:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Unsupported:
    """A fragment the grammar cannot express; evaluates to 0 unless strict."""

    text: str
    reason: str

    def __str__(self) -> str:
        return f"<unsupported {self.text!r}>"


@dataclass(frozen=True)
class CaseWhenStatusEquals:
    status: str
    then_field: str
    else_value: float

    def __str__(self) -> str:
        return f'CASE WHEN status="{self.status}" THEN {self.then_field} ELSE {self.else_value:g} END'


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"

    def __str__(self) -> str:
        return f"{self.left} {self.op} {self.right}"


@dataclass(frozen=True)
class Sum:
    operand: "Node"

    def __str__(self) -> str:
        return f"SUM({self.operand})"


@dataclass(frozen=True)
class Avg:
    operand: "Node"

    def __str__(self) -> str:
        return f"AVG({self.operand})"


@dataclass(frozen=True)
class Count:
    def __str__(self) -> str:
        return "COUNT(*)"


@dataclass(frozen=True)
class CountCaseWhen:
    status: str

    def __str__(self) -> str:
        return f'COUNT(CASE WHEN status="{self.status}" THEN 1 END)'


@dataclass(frozen=True)
class Div100Percent:
    """``numerator / denominator * 100`` with a zero-denominator guard."""

    numerator: "Node"
    denominator: "Node"

    def __str__(self) -> str:
        return f"{self.numerator} / {self.denominator} * 100"


Node = Union[
    Literal,
    FieldRef,
    Unsupported,
    CaseWhenStatusEquals,
    BinaryOp,
    Sum,
    Avg,
    Count,
    CountCaseWhen,
    Div100Percent,
]


__all__ = [
    "Avg",
    "BinaryOp",
    "CaseWhenStatusEquals",
    "Count",
    "CountCaseWhen",
    "Div100Percent",
    "FieldRef",
    "Literal",
    "Node",
    "Sum",
    "Unsupported",
]
