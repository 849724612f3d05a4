"""Fee and tax breakdown for round-up settlements"""

from decimal import Decimal, ROUND_HALF_UP

from roundup_ledger.config import settings
from roundup_ledger.domain.exceptions import ValidationFailed
from roundup_ledger.domain.models import FeeBreakdown


def _percent_of(amount_cents: int, rate: float) -> int:
    # str() keeps the configured rate exact (0.0175 stays 0.0175)
    return int((Decimal(amount_cents) * Decimal(str(rate))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_fees(
    base_amount_cents: int,
    cover_fees: bool,
    platform_fee_percent: float | None = None,
    processor_fee_percent: float | None = None,
    processor_fixed_fee_cents: int | None = None,
    fee_tax_percent: float | None = None,
) -> FeeBreakdown:
    """
    Split a settlement amount into fees, tax, net-to-cause and total charged.

    - Platform fee: base x platform %
    - Processor fee: base x processor % + fixed fee
    - Tax applies to the fee component only
    - cover_fees=True: donor pays base + fees, cause receives the full base
    - cover_fees=False: donor pays base, fees come out of the cause's share

    Example (defaults, base $12.00, donor covers fees):
        platform 60 + processor 51 (21 + 30) + tax 11 -> charged $13.22, cause nets $12.00

    Raises:
        ValidationFailed: base is not positive, or fees would consume the whole donation
    """
    if base_amount_cents <= 0:
        raise ValidationFailed("Settlement amount must be positive")

    platform_rate = settings.platform_fee_percent if platform_fee_percent is None else platform_fee_percent
    processor_rate = settings.processor_fee_percent if processor_fee_percent is None else processor_fee_percent
    fixed_fee = settings.processor_fixed_fee_cents if processor_fixed_fee_cents is None else processor_fixed_fee_cents
    tax_rate = settings.fee_tax_percent if fee_tax_percent is None else fee_tax_percent

    platform_fee = _percent_of(base_amount_cents, platform_rate)
    processor_fee = _percent_of(base_amount_cents, processor_rate) + fixed_fee
    tax = _percent_of(platform_fee + processor_fee, tax_rate)
    total_fee = platform_fee + processor_fee + tax

    if cover_fees:
        total_charged = base_amount_cents + total_fee
        net_to_cause = base_amount_cents
    else:
        total_charged = base_amount_cents
        net_to_cause = base_amount_cents - total_fee
        if net_to_cause <= 0:
            raise ValidationFailed(
                f"Donation of {base_amount_cents} cents does not cover {total_fee} cents in fees"
            )

    return FeeBreakdown(
        base_amount_cents=base_amount_cents,
        platform_fee_cents=platform_fee,
        processor_fee_cents=processor_fee,
        tax_cents=tax,
        total_fee_cents=total_fee,
        net_to_cause_cents=net_to_cause,
        total_charged_cents=total_charged,
        cover_fees=cover_fees,
    )
