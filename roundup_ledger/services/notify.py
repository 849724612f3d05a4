"""Best-effort user notifications from service code"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from roundup_ledger.infrastructure.clients.notifications import NotificationClient

logger = logging.getLogger(__name__)

ROUND_UP_CANCELLED = "round_up.cancelled"
CONNECTION_ERROR = "bank_connection.error"
CONNECTION_CLOSED = "bank_connection.closed"
SETTLEMENT_FAILED = "round_up.settlement_failed"
SETTLEMENT_COMPLETED = "round_up.settlement_completed"


@dataclass(frozen=True)
class Notification:
    """A user-facing event held back until the ledger change is committed"""

    event: str
    user_id: str
    payload: Dict[str, Any]


async def notify_user(
    notifier: Optional[NotificationClient], event: str, user_id: str, payload: Dict[str, Any]
) -> bool:
    """Deliver a notification; delivery failure is logged and never undoes the ledger change"""
    if notifier is None:
        return False
    try:
        await notifier.send(event, user_id, payload)
    except httpx.HTTPError as e:
        logger.warning(
            "Notification delivery failed",
            extra={"event": event, "user_id": user_id, "error": str(e)},
        )
        return False
    return True


async def deliver_notifications(notifier: Optional[NotificationClient], notifications: List[Notification]) -> int:
    """Send deferred notifications in order; returns how many were delivered"""
    delivered = 0
    for notification in notifications:
        if await notify_user(notifier, notification.event, notification.user_id, notification.payload):
            delivered += 1
    return delivered
