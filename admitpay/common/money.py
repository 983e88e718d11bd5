"""Amount coercion for fee figures pulled out of loosely typed JSON."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
MINOR_UNITS = Decimal("100")


def to_decimal(value) -> Decimal | None:
    """Parse a number, numeric string, or Decimal. Anything else gives None."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        parsed = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def first_amount(*candidates) -> Decimal:
    """First candidate that parses to a non-zero amount, else zero."""

    for candidate in candidates:
        parsed = to_decimal(candidate)
        if parsed:
            return parsed
    return ZERO


def json_amount(value: Decimal) -> int | float:
    """Render a Decimal the way it should appear inside a JSON document."""

    if value == value.to_integral_value():
        return int(value)
    return float(value)


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (rupees) to gateway minor units (paise)."""

    parsed = to_decimal(amount)
    if parsed is None:
        raise ValueError(f"invalid amount: {amount!r}")
    return int((parsed * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value) -> Decimal | None:
    parsed = to_decimal(value)
    if parsed is None:
        return None
    return parsed / MINOR_UNITS
