"""
Money helpers
"""
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    """Round to cents, half up"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def whole_units(value) -> Decimal:
    """Round to whole currency units, half up (withholding tax)"""
    return to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
