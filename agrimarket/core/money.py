from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")

Number = Union[Decimal, int, str, float]


def to_money(value: Number) -> Decimal:
    """Quantize to two fractional digits, rounding half up."""
    if isinstance(value, float):
        # floats come back from some SQL aggregates; go through str to keep the printed value
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def commission_for(subtotal: Number, rate: Number) -> Decimal:
    """Platform fee owed on an order subtotal."""
    return to_money(Decimal(str(subtotal)) * Decimal(str(rate)))
