"""
Exact money arithmetic.

Amounts cross the boundary as two-decimal strings, live in models as
Decimal, and are stored and summed as integer cents.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Union

TWO_PLACES = Decimal("0.01")

AmountLike = Union[Decimal, str, int]


def to_cents(amount: AmountLike) -> int:
    """
    Convert an amount with at most two fraction digits to integer cents.

    Raises:
        ValueError: if the amount is not a finite number or would lose
            precision (more than two fraction digits)
    """
    try:
        value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Not a valid amount: {amount!r}")
    if value.as_tuple().exponent < -2 and value != value.quantize(TWO_PLACES):
        raise ValueError(f"Amount has more than two decimal places: {amount!r}")
    return int(value.quantize(TWO_PLACES).scaleb(2))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(TWO_PLACES)


def format_cents(cents: int) -> str:
    """Render integer cents as a two-decimal string, e.g. 1850 -> '18.50'."""
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(cents), 100)
    return f"{sign}{whole}.{fraction:02d}"


def format_amount(amount: AmountLike) -> str:
    return format_cents(to_cents(amount))


def sum_cents(amounts: Iterable[AmountLike]) -> int:
    total = 0
    for amount in amounts:
        total += to_cents(amount)
    return total
