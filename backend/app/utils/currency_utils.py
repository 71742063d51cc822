from decimal import Decimal, ROUND_HALF_EVEN


def round_half_even(value: Decimal) -> int:
    """Round a Decimal to the nearest integer, ties to even (banker's rounding)."""
    return int(value.to_integral_value(rounding=ROUND_HALF_EVEN))


def to_minor_units(amount: Decimal, exponent: int = 2) -> int:
    """
    Convert a major-unit amount (e.g. Decimal("12.34") USD) into integer
    minor units (1234 cents). Sub-minor precision is rounded half-even.
    """
    return round_half_even(Decimal(amount) * (Decimal(10) ** exponent))


def from_minor_units(amount: int, exponent: int = 2) -> Decimal:
    """Convert integer minor units back into a Decimal quantized to the currency precision."""
    quantum = Decimal(1).scaleb(-exponent)
    return (Decimal(amount) / (Decimal(10) ** exponent)).quantize(quantum)


def percentage_of(amount: int, percentage: Decimal) -> Decimal:
    """Exact (unrounded) share of a minor-unit amount."""
    return Decimal(amount) * Decimal(percentage) / Decimal(100)
