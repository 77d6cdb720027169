# affiliate_system/utils/money.py
from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN

ZERO = Decimal("0")
CENT = Decimal("0.01")


def toDecimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    """Round to cents, half up."""
    return toDecimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def moneyDown(value) -> Decimal:
    """Round to cents, never up. Used where a cap must not be exceeded."""
    return toDecimal(value).quantize(CENT, rounding=ROUND_DOWN)


def formatMoney(value) -> str:
    return f"{money(value):.2f}"
