"""Bank connection consent state machine"""

from dataclasses import dataclass
from typing import Optional

from roundup_ledger.domain.events import EventKind
from roundup_ledger.domain.models import ConnectionEvent, ConsentStatus

TERMINAL_STATES = frozenset({ConsentStatus.REVOKED, ConsentStatus.EXPIRED})

# account.updated statuses that end the consent for that account
CLOSED_ACCOUNT_STATUSES = frozenset({"deleted", "inactive", "closed", "unavailable"})


@dataclass(frozen=True)
class Transition:
    """Outcome of applying an event to a connection"""

    new_state: str
    cancels_round_ups: bool
    reason: str
    error_code: Optional[str] = None


def transition(current: str, event: ConnectionEvent) -> Optional[Transition]:
    """
    Next consent state for an event, or None when the event does not change state.

    There is no transition back to active: recovery needs a new consent flow
    and therefore a new connection record.
    """
    if current in TERMINAL_STATES:
        return None

    kind = event.kind

    if kind in (EventKind.CONNECTION_INVALIDATED, EventKind.CONSENT_REVOKED, EventKind.USER_DELETED):
        return Transition(
            new_state=ConsentStatus.REVOKED,
            cancels_round_ups=True,
            reason=event.reason or "Bank connection revoked",
            error_code=event.error_code,
        )

    if kind == EventKind.CONSENT_EXPIRED:
        return Transition(
            new_state=ConsentStatus.EXPIRED,
            cancels_round_ups=True,
            reason=event.reason or "Bank connection expired. Please reconnect.",
        )

    if kind == EventKind.ACCOUNT_UPDATED:
        if (event.account_status or "") not in CLOSED_ACCOUNT_STATUSES:
            return None
        return Transition(
            new_state=ConsentStatus.REVOKED,
            cancels_round_ups=True,
            reason=event.reason or f"Account {event.account_status}",
        )

    if kind in (EventKind.LOGIN_REQUIRED, EventKind.CONNECTION_ERROR):
        if current == ConsentStatus.ERROR:
            return None
        return Transition(
            new_state=ConsentStatus.ERROR,
            cancels_round_ups=False,
            reason=event.reason or "Bank connection error",
            error_code=event.error_code,
        )

    return None


def allows_ingestion(state: str) -> bool:
    """Ingestion and settlement run only against an active consent"""
    return state == ConsentStatus.ACTIVE
