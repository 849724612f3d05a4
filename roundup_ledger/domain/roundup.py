"""Round-up calculation - the single source of truth for rounding semantics"""

from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Quantize a major-unit amount to the currency's minor unit (2 places)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_round_up(amount: Decimal) -> int:
    """
    Round-up for a purchase, in cents.

    roundUp(amount) = ceil(|amount|) - |amount|, at cent precision.

    Examples:
        4.60  -> 40
        20.00 -> 0   (already a whole unit, ineligible)
        0.01  -> 99
    """
    absolute = abs(Decimal(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    whole = absolute.to_integral_value(rounding=ROUND_CEILING)
    return to_cents(whole - absolute)


def is_eligible_round_up(round_up_cents: int) -> bool:
    """Zero-value round-ups never create records"""
    return round_up_cents > 0
