"""Unit tests for settlement fee breakdown"""

import pytest
from roundup_ledger.domain.fees import compute_fees
from roundup_ledger.domain.exceptions import ValidationFailed


def test_donor_covers_fees():
    """Test default rates on $12.00 with the donor paying fees on top"""
    fees = compute_fees(1200, cover_fees=True)

    assert fees.platform_fee_cents == 60  # 5%
    assert fees.processor_fee_cents == 51  # 1.75% + 30c
    assert fees.tax_cents == 11  # 10% of 111, half-up
    assert fees.total_fee_cents == 122
    assert fees.total_charged_cents == 1322
    assert fees.net_to_cause_cents == 1200


def test_fees_deducted_from_cause():
    """Test cause absorbs fees when the donor does not cover them"""
    fees = compute_fees(1200, cover_fees=False)

    assert fees.total_charged_cents == 1200
    assert fees.net_to_cause_cents == 1200 - 122


def test_fees_larger_than_donation_rejected():
    """Test a small base that fees would wipe out"""
    with pytest.raises(ValidationFailed):
        compute_fees(30, cover_fees=False)


def test_non_positive_base_rejected():
    with pytest.raises(ValidationFailed):
        compute_fees(0, cover_fees=True)


def test_explicit_rates_override_settings():
    """Test rates passed in win over configured defaults"""
    fees = compute_fees(
        10000,
        cover_fees=True,
        platform_fee_percent=0.0,
        processor_fee_percent=0.0,
        processor_fixed_fee_cents=0,
        fee_tax_percent=0.0,
    )

    assert fees.total_fee_cents == 0
    assert fees.total_charged_cents == 10000
