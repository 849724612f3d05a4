"""Unit tests for provider transaction normalization"""

from datetime import date
from decimal import Decimal
from roundup_ledger.domain.models import NormalizedTransaction, Rejection
from roundup_ledger.domain.normalizer import (
    BASIQ,
    PLAID,
    canonical_tag,
    extract_transaction_id,
    normalize_transaction,
)


def test_plaid_positive_amount_is_debit():
    """Test Plaid sign convention and category tags"""
    txn = normalize_transaction(
        PLAID,
        {
            "transaction_id": "tx_1",
            "amount": "4.60",
            "iso_currency_code": "AUD",
            "date": "2026-10-14",
            "name": "Corner Cafe",
            "merchant_name": "Corner Cafe",
            "personal_finance_category": {"primary": "FOOD_AND_DRINK", "detailed": "FOOD_AND_DRINK_COFFEE"},
            "category": ["Food and Drink"],
            "transaction_type": "place",
        },
    )

    assert isinstance(txn, NormalizedTransaction)
    assert txn.is_debit is True
    assert txn.amount == Decimal("4.60")
    assert txn.date == date(2026, 10, 14)
    assert "FOOD_AND_DRINK" in txn.categories
    assert txn.transaction_type == "place"


def test_plaid_negative_amount_is_credit():
    txn = normalize_transaction(PLAID, {"transaction_id": "tx_2", "amount": "-50.00", "date": "2026-10-14"})

    assert txn.is_debit is False
    assert txn.amount == Decimal("50.00")


def test_plaid_payment_channel_fills_missing_type():
    """Test online payments without transaction_type become digital"""
    txn = normalize_transaction(
        PLAID,
        {"transaction_id": "tx_3", "amount": "9.99", "date": "2026-10-14", "payment_channel": "online"},
    )

    assert txn.transaction_type == "digital"


def test_basiq_negative_amount_is_debit():
    """Test Basiq sign convention, status and class mapping"""
    txn = normalize_transaction(
        BASIQ,
        {
            "id": "btx_1",
            "amount": "-12.35",
            "currency": "AUD",
            "status": "posted",
            "description": "WOOLWORTHS 1234",
            "class": "payment",
            "postDate": "2026-10-13T00:00:00Z",
        },
    )

    assert txn.is_debit is True
    assert txn.amount == Decimal("12.35")
    assert txn.transaction_type == "purchase"
    assert txn.date == date(2026, 10, 13)
    assert txn.pending is False


def test_basiq_direction_wins_over_sign():
    txn = normalize_transaction(
        BASIQ,
        {"id": "btx_2", "amount": "12.35", "direction": "debit", "class": "payment", "postDate": "2026-10-13"},
    )

    assert txn.is_debit is True


def test_basiq_class_mapped_to_category():
    """Test transfer class becomes the TRANSFER tag"""
    txn = normalize_transaction(
        BASIQ,
        {"id": "btx_3", "amount": "-100.00", "class": "transfer", "postDate": "2026-10-13"},
    )

    assert "TRANSFER" in txn.categories


def test_basiq_pending_status():
    txn = normalize_transaction(
        BASIQ,
        {"id": "btx_4", "amount": "-3.20", "status": "pending", "class": "payment", "transactionDate": "2026-10-13"},
    )

    assert txn.pending is True


def test_malformed_payload_rejected_not_raised():
    """Test missing amount yields a malformed rejection"""
    result = normalize_transaction(PLAID, {"transaction_id": "tx_bad", "date": "2026-10-14"})

    assert isinstance(result, Rejection)
    assert result.reason == "malformed"
    assert result.provider_transaction_id == "tx_bad"


def test_basiq_without_dates_is_malformed():
    result = normalize_transaction(BASIQ, {"id": "btx_5", "amount": "-3.20"})

    assert isinstance(result, Rejection)
    assert result.reason == "malformed"


def test_extract_transaction_id_per_provider():
    assert extract_transaction_id(PLAID, {"transaction_id": "a"}) == "a"
    assert extract_transaction_id(BASIQ, {"id": "b"}) == "b"
    assert extract_transaction_id(PLAID, {}) is None


def test_canonical_tag():
    assert canonical_tag("Bank Fees") == "BANK_FEES"
    assert canonical_tag("cash-withdrawal") == "CASH_WITHDRAWAL"
