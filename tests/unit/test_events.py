"""Unit tests for webhook normalization"""

from roundup_ledger.domain.events import (
    EventKind,
    PaymentEventKind,
    normalize_connection_event,
    normalize_payment_event,
)


def test_plaid_sync_updates_available():
    """Test Plaid transaction webhooks become transactions.updated"""
    event = normalize_connection_event(
        "plaid", {"webhook_type": "TRANSACTIONS", "webhook_code": "SYNC_UPDATES_AVAILABLE", "item_id": "item_1"}
    )

    assert event.kind == EventKind.TRANSACTIONS_UPDATED
    assert event.connection_ref == "item_1"


def test_plaid_permission_revoked():
    event = normalize_connection_event(
        "plaid", {"webhook_type": "ITEM", "webhook_code": "USER_PERMISSION_REVOKED", "item_id": "item_1"}
    )

    assert event.kind == EventKind.CONSENT_REVOKED


def test_plaid_item_error_split_by_code():
    """Test login errors vs invalidating errors vs anything else"""
    login = normalize_connection_event(
        "plaid",
        {
            "webhook_type": "ITEM",
            "webhook_code": "ERROR",
            "item_id": "item_1",
            "error": {"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login"},
        },
    )
    invalidated = normalize_connection_event(
        "plaid",
        {"webhook_type": "ITEM", "webhook_code": "ERROR", "item_id": "item_1", "error": {"error_code": "ITEM_NOT_FOUND"}},
    )
    other = normalize_connection_event(
        "plaid",
        {"webhook_type": "ITEM", "webhook_code": "ERROR", "item_id": "item_1", "error": {"error_code": "RATE_LIMIT"}},
    )

    assert login.kind == EventKind.LOGIN_REQUIRED
    assert login.error_code == "ITEM_LOGIN_REQUIRED"
    assert invalidated.kind == EventKind.CONNECTION_INVALIDATED
    assert other.kind == EventKind.CONNECTION_ERROR


def test_plaid_account_revoked_carries_account():
    event = normalize_connection_event(
        "plaid",
        {"webhook_type": "ITEM", "webhook_code": "USER_ACCOUNT_REVOKED", "item_id": "item_1", "account_id": "acc_1"},
    )

    assert event.kind == EventKind.ACCOUNT_UPDATED
    assert event.account_ref == "acc_1"
    assert event.account_status == "deleted"


def test_basiq_entity_link_parsed():
    """Test user, connection and account refs come from links.eventEntity"""
    event = normalize_connection_event(
        "basiq",
        {
            "eventTypeId": "account.updated",
            "links": {"eventEntity": "https://au-api.basiq.io/users/u_1/connections/c_1/accounts/a_1"},
            "data": {"status": "closed"},
        },
    )

    assert event.kind == EventKind.ACCOUNT_UPDATED
    assert event.user_ref == "u_1"
    assert event.connection_ref == "c_1"
    assert event.account_ref == "a_1"
    assert event.account_status == "closed"


def test_basiq_body_envelope():
    event = normalize_connection_event(
        "basiq",
        {"body": {"eventTypeId": "consent.expired", "links": {"eventEntity": "/users/u_1/connections/c_1"}}},
    )

    assert event.kind == EventKind.CONSENT_EXPIRED
    assert event.connection_ref == "c_1"


def test_unknown_events_never_raise():
    """Test unrecognized and malformed payloads become unknown"""
    assert normalize_connection_event("plaid", {"webhook_type": "HOLDINGS", "webhook_code": "X"}).kind == EventKind.UNKNOWN
    assert normalize_connection_event("plaid", {"nonsense": True}).kind == EventKind.UNKNOWN
    assert normalize_connection_event("basiq", {"eventTypeId": "job.completed"}).kind == EventKind.UNKNOWN
    assert normalize_connection_event("basiq", {"eventTypeId": "consent.revoked"}).kind == EventKind.UNKNOWN
    assert normalize_connection_event("yodlee", {}).kind == EventKind.UNKNOWN


def test_payment_event_stripe_shape():
    """Test donation id read from the charge metadata"""
    event = normalize_payment_event(
        {
            "type": "payment_intent.payment_failed",
            "data": {
                "object": {
                    "id": "pi_1",
                    "metadata": {"donation_id": "d_1"},
                    "last_payment_error": {"message": "Card declined"},
                }
            },
        }
    )

    assert event.kind == PaymentEventKind.CHARGE_FAILED
    assert event.donation_id == "d_1"
    assert event.charge_id == "pi_1"
    assert event.failure_reason == "Card declined"


def test_payment_event_flat_shape():
    event = normalize_payment_event({"type": "charge.succeeded", "donation_id": "d_2", "charge_id": "ch_2"})

    assert event.kind == PaymentEventKind.CHARGE_SUCCEEDED
    assert event.donation_id == "d_2"
    assert event.charge_id == "ch_2"


def test_payment_event_unknown_type():
    assert normalize_payment_event({"type": "charge.refunded"}).kind == PaymentEventKind.UNKNOWN
