"""Unit tests for round-up eligibility rules"""

from datetime import date
from decimal import Decimal
from roundup_ledger.domain.eligibility import check_eligibility
from roundup_ledger.domain.models import NormalizedTransaction


def make_txn(**overrides) -> NormalizedTransaction:
    fields = dict(
        provider_transaction_id="tx_1",
        amount=Decimal("4.60"),
        currency="AUD",
        date=date(2026, 10, 14),
        name="Corner Cafe",
        merchant="Corner Cafe",
        categories=["FOOD_AND_DRINK"],
        is_debit=True,
        transaction_type="place",
        pending=False,
    )
    fields.update(overrides)
    return NormalizedTransaction(**fields)


def test_purchase_is_eligible():
    assert check_eligibility(make_txn()) is None


def test_pending_rejected_first():
    """Test pending wins over every other rule"""
    rejection = check_eligibility(make_txn(pending=True, is_debit=False, categories=["TRANSFER"]))

    assert rejection.reason == "pending"


def test_credit_rejected():
    assert check_eligibility(make_txn(is_debit=False)).reason == "credit"


def test_excluded_category_rejected():
    rejection = check_eligibility(make_txn(categories=["TRANSFER_OUT"]))

    assert rejection.reason == "excluded_category"
    assert "TRANSFER_OUT" in rejection.detail


def test_description_keyword_rejected():
    """Test keyword screen on the description"""
    assert check_eligibility(make_txn(name="ATM WITHDRAWAL 123 MAIN ST")).reason == "excluded_category"
    assert check_eligibility(make_txn(name="Monthly account fee")).reason == "excluded_category"


def test_keyword_screen_respects_word_boundaries():
    """Test COFFEE does not match FEE"""
    assert check_eligibility(make_txn(name="COFFEE HOUSE")) is None


def test_ineligible_type_rejected():
    rejection = check_eligibility(make_txn(transaction_type="special"))

    assert rejection.reason == "ineligible_type"


def test_digital_and_purchase_types_are_eligible():
    assert check_eligibility(make_txn(transaction_type="digital")) is None
    assert check_eligibility(make_txn(transaction_type="purchase")) is None
