"""Switching a round-up's donation destination"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from roundup_ledger.config import settings
from roundup_ledger.domain.charity import ensure_can_switch, ensure_receivable_destination
from roundup_ledger.domain.exceptions import InvalidState, NotFound
from roundup_ledger.domain.models import RoundUpStatus
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.database.models import RoundUpConfig
from roundup_ledger.infrastructure.database.repositories import RoundUpConfigRepository
from roundup_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


async def switch_charity(
    db: Session,
    directory: DirectoryClient,
    round_up_config_id,
    new_organization_id: str,
    new_cause_id: str,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RoundUpConfig:
    """
    Point future settlements at a different cause.

    Raises:
        NotFound: Unknown config, cause or organization
        InvalidState: Config is cancelled
        CooldownActive: Last switch was within the cooldown window
        ValidationFailed: New cause is not verified, belongs elsewhere, or cannot receive payouts
    """
    now = now or utcnow()
    configs = RoundUpConfigRepository(db)
    config = configs.get(round_up_config_id)
    if config is None or (user_id is not None and config.user_id != user_id):
        raise NotFound("Round-up configuration not found")
    if config.status == RoundUpStatus.CANCELLED or not config.is_active:
        raise InvalidState("Cannot switch charity on a cancelled round-up")

    cooldown = settings.charity_switch_cooldown_days
    ensure_can_switch(config.last_charity_switch, now, cooldown)

    cause = await directory.get_cause(new_cause_id)
    receivable = await directory.get_organization_payout_status(new_organization_id)
    ensure_receivable_destination(cause, new_organization_id, receivable)

    config = configs.lock(config.id)
    if not config.is_active:
        raise InvalidState("Cannot switch charity on a cancelled round-up")
    # Re-checked under the row lock: a concurrent switch may have committed meanwhile
    ensure_can_switch(config.last_charity_switch, now, cooldown)

    previous = (config.organization_id, config.cause_id)
    config.organization_id = new_organization_id
    config.cause_id = new_cause_id
    config.last_charity_switch = now
    db.commit()

    logger.info(
        "Charity switched",
        extra={
            "round_up_config_id": str(config.id),
            "previous_organization_id": previous[0],
            "previous_cause_id": previous[1],
            "organization_id": new_organization_id,
            "cause_id": new_cause_id,
        },
    )
    return config
