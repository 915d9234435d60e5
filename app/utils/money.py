from decimal import Decimal, ROUND_HALF_UP

TWOPLACES = Decimal("0.01")


def to_money(value) -> Decimal:
    d = Decimal(str(value))
    return d.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def to_minor_units(value) -> int:
    """Convert a money amount to integer cents for the payment processor."""
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))
