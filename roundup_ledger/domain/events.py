"""
Webhook normalization.

Plaid and Basiq report consent and transaction changes with different shapes.
Both are mapped onto a small set of event kinds so that a single state-machine
transition function handles them. Payment processor callbacks are mapped the
same way onto charge.succeeded / charge.failed.

Nothing here raises on unknown input: unrecognized events become UNKNOWN.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from roundup_ledger.domain.models import ConnectionEvent, PaymentEvent
from roundup_ledger.domain.normalizer import BASIQ, PLAID


class EventKind:
    TRANSACTIONS_UPDATED = "transactions.updated"
    CONNECTION_INVALIDATED = "connection.invalidated"
    CONSENT_REVOKED = "consent.revoked"
    CONSENT_EXPIRED = "consent.expired"
    ACCOUNT_UPDATED = "account.updated"
    USER_DELETED = "user.deleted"
    LOGIN_REQUIRED = "login.required"
    CONNECTION_ERROR = "connection.error"
    UNKNOWN = "unknown"


class PaymentEventKind:
    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_FAILED = "charge.failed"
    UNKNOWN = "unknown"


PLAID_TRANSACTION_CODES = {"SYNC_UPDATES_AVAILABLE", "DEFAULT_UPDATE", "INITIAL_UPDATE", "HISTORICAL_UPDATE"}
PLAID_LOGIN_ERRORS = {"ITEM_LOGIN_REQUIRED", "INVALID_CREDENTIALS", "INSUFFICIENT_CREDENTIALS", "MFA_SETUP_REQUIRED"}
PLAID_INVALIDATING_ERRORS = {"INVALID_ACCESS_TOKEN", "ITEM_NOT_FOUND", "ACCESS_NOT_GRANTED", "NO_ACCOUNTS"}

BASIQ_EVENT_KINDS = {
    "transactions.updated": EventKind.TRANSACTIONS_UPDATED,
    "transaction.created": EventKind.TRANSACTIONS_UPDATED,
    "connection.invalidated": EventKind.CONNECTION_INVALIDATED,
    "consent.revoked": EventKind.CONSENT_REVOKED,
    "consent.expired": EventKind.CONSENT_EXPIRED,
    "account.updated": EventKind.ACCOUNT_UPDATED,
    "user.deleted": EventKind.USER_DELETED,
}

# /users/{userId}[/connections/{connectionId}][/accounts/{accountId}]
BASIQ_ENTITY = re.compile(
    r"/users/(?P<user>[^/]+)(?:/connections/(?P<connection>[^/]+))?(?:/accounts/(?P<account>[^/]+))?"
)

PAYMENT_EVENT_KINDS = {
    "charge.succeeded": PaymentEventKind.CHARGE_SUCCEEDED,
    "payment_intent.succeeded": PaymentEventKind.CHARGE_SUCCEEDED,
    "charge.failed": PaymentEventKind.CHARGE_FAILED,
    "payment_intent.payment_failed": PaymentEventKind.CHARGE_FAILED,
    "payment_intent.canceled": PaymentEventKind.CHARGE_FAILED,
}


class PlaidError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    error_code: Optional[str] = None
    error_message: Optional[str] = None
    display_message: Optional[str] = None


class PlaidWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    webhook_type: str
    webhook_code: str
    item_id: Optional[str] = None
    account_id: Optional[str] = None
    error: Optional[PlaidError] = None


class BasiqLinks(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    event_entity: Optional[str] = Field(None, alias="eventEntity")


class BasiqWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    event_type_id: str = Field(..., alias="eventTypeId")
    links: Optional[BasiqLinks] = None
    data: Optional[Dict[str, Any]] = None


def _unknown(provider: str, reason: str) -> ConnectionEvent:
    return ConnectionEvent(kind=EventKind.UNKNOWN, provider=provider, reason=reason)


def normalize_plaid_webhook(payload: Dict[str, Any]) -> ConnectionEvent:
    try:
        hook = PlaidWebhook.model_validate(payload)
    except ValidationError as e:
        return _unknown(PLAID, f"malformed: {e.error_count()} errors")

    webhook_type = hook.webhook_type.upper()
    code = hook.webhook_code.upper()
    error_code = hook.error.error_code if hook.error else None
    message = None
    if hook.error:
        message = hook.error.display_message or hook.error.error_message

    def event(kind: str, **kwargs) -> ConnectionEvent:
        return ConnectionEvent(kind=kind, provider=PLAID, connection_ref=hook.item_id, **kwargs)

    if webhook_type == "TRANSACTIONS" and code in PLAID_TRANSACTION_CODES:
        return event(EventKind.TRANSACTIONS_UPDATED)

    if webhook_type == "ITEM":
        if code == "USER_PERMISSION_REVOKED":
            return event(EventKind.CONSENT_REVOKED, reason="User permission revoked")
        if code == "USER_ACCOUNT_REVOKED":
            return event(
                EventKind.ACCOUNT_UPDATED,
                account_ref=hook.account_id,
                account_status="deleted",
                reason="Account access revoked",
            )
        if code in ("LOGIN_REQUIRED", "ITEM_LOGIN_REQUIRED"):
            return event(
                EventKind.LOGIN_REQUIRED,
                error_code=error_code or "ITEM_LOGIN_REQUIRED",
                reason="Login required - user needs to re-authenticate",
            )
        if code == "ERROR":
            if error_code in PLAID_LOGIN_ERRORS:
                return event(EventKind.LOGIN_REQUIRED, error_code=error_code, reason=message or "Login required")
            if error_code in PLAID_INVALIDATING_ERRORS:
                return event(
                    EventKind.CONNECTION_INVALIDATED,
                    error_code=error_code,
                    reason=message or "Connection invalidated",
                )
            return event(EventKind.CONNECTION_ERROR, error_code=error_code, reason=message or "An error occurred")

    return _unknown(PLAID, f"{webhook_type}/{code}")


def normalize_basiq_webhook(payload: Dict[str, Any]) -> ConnectionEvent:
    # Basiq wraps the event in a "body" envelope on some deliveries
    body = payload.get("body") if isinstance(payload.get("body"), dict) else payload
    try:
        hook = BasiqWebhook.model_validate(body)
    except ValidationError as e:
        return _unknown(BASIQ, f"malformed: {e.error_count()} errors")

    kind = BASIQ_EVENT_KINDS.get(hook.event_type_id)
    if kind is None:
        return _unknown(BASIQ, hook.event_type_id)

    entity = hook.links.event_entity if hook.links else None
    match = BASIQ_ENTITY.search(entity or "")
    if not match:
        return _unknown(BASIQ, f"{hook.event_type_id}: no entity link")

    data = hook.data or {}
    account_status = None
    if kind == EventKind.ACCOUNT_UPDATED:
        account_status = str(data.get("status") or body.get("status") or "").lower() or None

    reason_by_kind = {
        EventKind.CONNECTION_INVALIDATED: "Bank connection invalidated",
        EventKind.CONSENT_REVOKED: "Consent revoked",
        EventKind.CONSENT_EXPIRED: "Consent expired",
        EventKind.ACCOUNT_UPDATED: f"Account {account_status or 'updated'}",
        EventKind.USER_DELETED: "Aggregator user deleted",
    }

    return ConnectionEvent(
        kind=kind,
        provider=BASIQ,
        connection_ref=match.group("connection"),
        account_ref=match.group("account"),
        user_ref=match.group("user"),
        account_status=account_status,
        reason=reason_by_kind.get(kind),
    )


def normalize_connection_event(provider: str, payload: Dict[str, Any]) -> ConnectionEvent:
    if provider == PLAID:
        return normalize_plaid_webhook(payload)
    if provider == BASIQ:
        return normalize_basiq_webhook(payload)
    return _unknown(provider, "unsupported provider")


def normalize_payment_event(payload: Dict[str, Any]) -> PaymentEvent:
    """Stripe-style (data.object.metadata) or flat {type, donation_id, charge_id} payloads"""
    kind = PAYMENT_EVENT_KINDS.get(str(payload.get("type", "")), PaymentEventKind.UNKNOWN)

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        obj = payload

    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    donation_id = metadata.get("donation_id") or metadata.get("donationId") or payload.get("donation_id")
    charge_id = obj.get("payment_intent") or obj.get("charge_id") or obj.get("id") or payload.get("charge_id")

    failure_reason = payload.get("failure_reason")
    last_error = obj.get("last_payment_error")
    if isinstance(last_error, dict):
        failure_reason = last_error.get("message") or failure_reason
    failure_reason = failure_reason or obj.get("failure_message") or obj.get("cancellation_reason")

    return PaymentEvent(
        kind=kind,
        donation_id=str(donation_id) if donation_id else None,
        charge_id=str(charge_id) if charge_id else None,
        failure_reason=failure_reason,
    )
