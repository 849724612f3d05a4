"""Charity switch cooldown policy"""

from datetime import datetime, timedelta
from typing import Optional

from roundup_ledger.domain.exceptions import CooldownActive, ValidationFailed
from roundup_ledger.domain.models import CauseInfo
from roundup_ledger.utils.date_utils import days_between

RECEIVABLE_CAUSE_STATUSES = frozenset({"verified"})


def cooldown_days_remaining(last_switch: Optional[datetime], now: datetime, cooldown_days: int = 30) -> int:
    """
    Whole days left before the destination may change again; 0 when allowed.

    A switch is allowed once more than `cooldown_days` have elapsed since the
    last one (or if there never was one). Otherwise the remaining time is
    cooldown_days - floor(elapsed days), never reported as less than one day.
    """
    if last_switch is None:
        return 0
    if now - last_switch > timedelta(days=cooldown_days):
        return 0
    return max(cooldown_days - days_between(last_switch, now), 1)


def ensure_can_switch(last_switch: Optional[datetime], now: datetime, cooldown_days: int = 30) -> None:
    remaining = cooldown_days_remaining(last_switch, now, cooldown_days)
    if remaining:
        raise CooldownActive(remaining)


def ensure_receivable_destination(cause: CauseInfo, organization_id: str, organization_receivable: bool) -> None:
    """
    Raises:
        ValidationFailed: cause belongs elsewhere, is not verified, or the organization cannot receive payouts
    """
    if str(cause.organization_id) != str(organization_id):
        raise ValidationFailed("Cause does not belong to the specified organization")
    if cause.status not in RECEIVABLE_CAUSE_STATUSES:
        raise ValidationFailed(
            f"Cannot donate to cause with status: {cause.status}. Only verified causes can receive donations."
        )
    if not organization_receivable:
        raise ValidationFailed("Organization has not set up payment receiving")
