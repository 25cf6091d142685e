"""
Fixed-point money helpers.

Every amount that is stored, compared against a threshold or shown to a
customer goes through these functions. Values are ``Decimal`` with two
decimal places, rounded half-up like the storefront's ``toFixed(2)`` display.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

MoneyLike = Union[Decimal, int, float, str]

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: MoneyLike) -> Decimal:
    """Parse a value into a finite Decimal (not yet rounded)."""
    if isinstance(value, bool):
        raise ValueError("Money amount cannot be a boolean")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        # repr gives the shortest string that round-trips, so 0.1 -> "0.1"
        amount = Decimal(repr(value))
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid money amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Money amount must be finite: {value!r}")
    return amount


def round2(value: MoneyLike) -> Decimal:
    """Round to cents, half-up."""
    try:
        return to_money(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Money amount out of range: {value!r}")


def clamp_non_negative(value: MoneyLike) -> Decimal:
    rounded = round2(value)
    return rounded if rounded > ZERO else ZERO


def format_money(value: MoneyLike) -> str:
    return f"${round2(value):,.2f}"
