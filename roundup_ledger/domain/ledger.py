"""Accumulation rules for round-up configurations - threshold, monthly reset, settlement periods"""

from datetime import datetime
from typing import Optional

from roundup_ledger.config import settings
from roundup_ledger.domain.exceptions import ValidationFailed


def validate_threshold(threshold_cents: Optional[int]) -> Optional[int]:
    """None means "no limit"; otherwise the threshold must sit within the configured range"""
    if threshold_cents is None:
        return None
    low = settings.min_monthly_threshold_cents
    high = settings.max_monthly_threshold_cents
    if not low <= threshold_cents <= high:
        raise ValidationFailed(
            f'Monthly threshold must be "no-limit" or between {low / 100:.2f} and {high / 100:.2f}'
        )
    return threshold_cents


def threshold_reached(current_month_total_cents: int, threshold_cents: Optional[int]) -> bool:
    return threshold_cents is not None and current_month_total_cents >= threshold_cents


def needs_monthly_reset(last_reset: Optional[datetime], now: datetime) -> bool:
    """True once the calendar month has rolled over since the last reset"""
    if last_reset is None:
        return True
    return (last_reset.year, last_reset.month) != (now.year, now.month)


def settlement_period(now: datetime) -> str:
    return f"{now.year:04d}-{now.month:02d}"


def previous_settlement_period(now: datetime) -> str:
    if now.month == 1:
        return f"{now.year - 1:04d}-12"
    return f"{now.year:04d}-{now.month - 1:02d}"


def settlement_key(round_up_config_id, period: str) -> str:
    """At most one live donation per config and period"""
    return f"{round_up_config_id}:{period}"


def apply_monthly_reset(config, now: datetime) -> bool:
    """
    Zero the month counter once the calendar month rolls over.

    Unsettled transactions from the previous month keep their status and are
    still picked up by the next settlement; only the counter restarts.
    """
    if not needs_monthly_reset(config.last_month_reset, now):
        return False
    config.current_month_total_cents = 0
    config.last_month_reset = now
    return True
