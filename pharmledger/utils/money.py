# FILE: pharmledger/utils/money.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY = Decimal("0.01")
PRICE = Decimal("0.0001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def D(value) -> Decimal:
    """
    Decimal from anything numeric-ish. Floats go through str() so 12.5
    becomes Decimal("12.5"), not its binary expansion.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO


def round_money(value: Decimal) -> Decimal:
    return D(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def round_price(value: Decimal) -> Decimal:
    return D(value).quantize(PRICE, rounding=ROUND_HALF_UP)
