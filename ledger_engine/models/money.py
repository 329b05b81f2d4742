"""
Money helpers.

All balances and amounts are fixed-point decimals with two places.
Floats never enter the ledger: values are converted through str().
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, float, str]


def to_money(value: MoneyLike) -> Decimal:
    """Convert a value to a 2-place Decimal, rounding half-up."""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal, symbol: str = "₹") -> str:
    """Human-readable amount for log lines and messages."""
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(to_money(amount)):,.2f}"
