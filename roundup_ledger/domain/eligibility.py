"""Eligibility rules deciding whether a normalized transaction may generate a round-up"""

import re
from typing import Optional

from roundup_ledger.domain.models import NormalizedTransaction, Rejection

# Canonical category tags that never round up: transfers, cash, bank fees,
# loan and credit-card payments, refunds, deposits, income/interest/dividends
EXCLUDED_CATEGORIES = frozenset(
    {
        "TRANSFER",
        "TRANSFER_IN",
        "TRANSFER_OUT",
        "ATM",
        "CASH_WITHDRAWAL",
        "WITHDRAWAL",
        "BANK_FEES",
        "BANK_SERVICE",
        "FEES",
        "LOAN_PAYMENTS",
        "LOAN_PAYMENTS_CREDIT_CARD_PAYMENT",
        "CREDIT_CARD",
        "PAYMENT",
        "REFUND",
        "DEPOSIT",
        "INCOME",
        "INCOME_DIVIDENDS",
        "INCOME_INTEREST_EARNED",
        "INTEREST",
        "INTEREST_EARNED",
    }
)

ELIGIBLE_TRANSACTION_TYPES = frozenset({"debit", "purchase", "place", "digital"})

# Word boundaries so that e.g. "COFFEE" does not trip "FEE"
EXCLUDED_DESCRIPTION = re.compile(
    r"\b(ATM|TRANSFER|BPAY|WITHDRAWAL|REFUND|REVERSAL|INTEREST|FEES?)\b",
    re.IGNORECASE,
)


def check_eligibility(txn: NormalizedTransaction) -> Optional[Rejection]:
    """
    Apply the rejection rules in order; None means the transaction is eligible.

    1. pending at the provider (retried on a later sync)
    2. credit rather than a debit/purchase
    3. excluded category, or an excluded keyword in the description
    4. transaction type outside the eligible set
    """
    txn_id = txn.provider_transaction_id

    if txn.pending:
        return Rejection(txn_id, "pending")

    if not txn.is_debit:
        return Rejection(txn_id, "credit")

    excluded = EXCLUDED_CATEGORIES.intersection(txn.categories)
    if excluded:
        return Rejection(txn_id, "excluded_category", ",".join(sorted(excluded)))

    match = EXCLUDED_DESCRIPTION.search(txn.name or "")
    if match:
        return Rejection(txn_id, "excluded_category", match.group(1).upper())

    if txn.transaction_type not in ELIGIBLE_TRANSACTION_TYPES:
        return Rejection(txn_id, "ineligible_type", txn.transaction_type)

    return None
