from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

# Internal precision for intermediate amounts; cents only at the output boundary.
INTERNAL = Decimal("0.0001")
CENTS = Decimal("0.01")


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps 0.1 as 0.1 instead of its binary expansion
        return Decimal(str(value))
    return Decimal(value)


def quantize(value: Number) -> Decimal:
    return to_decimal(value).quantize(INTERNAL, rounding=ROUND_HALF_UP)


def round_cents(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def percent_of(amount: Number, percent: Number) -> Decimal:
    return quantize(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def total(values: Iterable[Number]) -> Decimal:
    return sum((to_decimal(v) for v in values), ZERO)


def floor_zero(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
