"""
Transaction normalization.

Each aggregator reports transactions in its own shape. The payloads are parsed
into one of two pydantic models (a tagged variant keyed by provider) and then
converted into a NormalizedTransaction that the rest of the pipeline consumes.
Pure: no IO, no database access.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from roundup_ledger.config import settings
from roundup_ledger.domain.models import NormalizedTransaction, Rejection

PLAID = "plaid"
BASIQ = "basiq"
PROVIDERS = (PLAID, BASIQ)

# Basiq transaction classes onto canonical category tags
BASIQ_CLASS_CATEGORIES: Dict[str, str] = {
    "transfer": "TRANSFER",
    "cash-withdrawal": "ATM",
    "bank-fee": "BANK_FEES",
    "loan-repayment": "LOAN_PAYMENTS",
    "loan-interest": "LOAN_PAYMENTS",
    "interest": "INCOME_INTEREST_EARNED",
    "refund": "REFUND",
    "direct-credit": "DEPOSIT",
}

PLAID_PAYMENT_CHANNEL_TYPES = {"in store": "place", "online": "digital"}


def canonical_tag(label: str) -> str:
    """'Bank Fees' -> 'BANK_FEES'"""
    return "_".join(label.strip().upper().replace("-", " ").split())


class PlaidCategory(BaseModel):
    model_config = ConfigDict(extra="ignore")

    primary: Optional[str] = None
    detailed: Optional[str] = None


class PlaidTransactionPayload(BaseModel):
    """Plaid /transactions/sync entry. Positive amount = money out."""

    model_config = ConfigDict(extra="ignore")

    provider: Literal["plaid"] = PLAID
    transaction_id: str = Field(..., min_length=1)
    amount: Decimal
    iso_currency_code: Optional[str] = None
    unofficial_currency_code: Optional[str] = None
    date: dt.date
    name: str = ""
    merchant_name: Optional[str] = None
    pending: bool = False
    category: Optional[List[str]] = None
    personal_finance_category: Optional[PlaidCategory] = None
    transaction_type: Optional[str] = None
    payment_channel: Optional[str] = None

    def to_normalized(self) -> NormalizedTransaction:
        categories: List[str] = []
        if self.personal_finance_category:
            for label in (self.personal_finance_category.primary, self.personal_finance_category.detailed):
                if label:
                    categories.append(canonical_tag(label))
        for label in self.category or []:
            categories.append(canonical_tag(label))

        transaction_type = self.transaction_type
        if not transaction_type:
            transaction_type = PLAID_PAYMENT_CHANNEL_TYPES.get(self.payment_channel or "", "debit")

        return NormalizedTransaction(
            provider_transaction_id=self.transaction_id,
            amount=abs(self.amount),
            currency=self.iso_currency_code or self.unofficial_currency_code or settings.currency,
            date=self.date,
            name=self.name,
            merchant=self.merchant_name,
            categories=categories,
            is_debit=self.amount > 0,
            transaction_type=transaction_type.lower(),
            pending=self.pending,
        )


class BasiqSubClass(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    code: Optional[str] = None


class BasiqTransactionPayload(BaseModel):
    """Basiq transaction resource. Negative amount = money out."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    provider: Literal["basiq"] = BASIQ
    id: str = Field(..., min_length=1)
    amount: Decimal
    currency: Optional[str] = None
    direction: Optional[str] = None
    status: str = "posted"
    description: str = ""
    transaction_class: Optional[str] = Field(None, alias="class")
    sub_class: Optional[BasiqSubClass] = Field(None, alias="subClass")
    post_date: Optional[str] = Field(None, alias="postDate")
    transaction_date: Optional[str] = Field(None, alias="transactionDate")

    def to_normalized(self) -> NormalizedTransaction:
        raw_date = self.post_date or self.transaction_date
        if not raw_date:
            raise ValueError("Basiq transaction has no postDate or transactionDate")

        if self.direction:
            is_debit = self.direction.lower() == "debit"
        else:
            is_debit = self.amount < 0

        categories: List[str] = []
        tx_class = (self.transaction_class or "").lower()
        if tx_class in BASIQ_CLASS_CATEGORIES:
            categories.append(BASIQ_CLASS_CATEGORIES[tx_class])
        if self.sub_class and self.sub_class.title:
            categories.append(canonical_tag(self.sub_class.title))

        if tx_class == "payment":
            transaction_type = "purchase"
        else:
            transaction_type = tx_class or "debit"

        return NormalizedTransaction(
            provider_transaction_id=self.id,
            amount=abs(self.amount),
            currency=self.currency or settings.currency,
            date=dt.date.fromisoformat(raw_date[:10]),
            name=self.description,
            merchant=None,
            categories=categories,
            is_debit=is_debit,
            transaction_type=transaction_type,
            pending=self.status.lower() == "pending",
        )


ProviderTransaction = Union[PlaidTransactionPayload, BasiqTransactionPayload]

_PAYLOAD_MODELS = {PLAID: PlaidTransactionPayload, BASIQ: BasiqTransactionPayload}


def extract_transaction_id(provider: str, payload: Dict[str, Any]) -> Optional[str]:
    """Provider transaction id, read before parsing so duplicates short-circuit early"""
    key = "transaction_id" if provider == PLAID else "id"
    value = payload.get(key)
    return str(value) if value else None


def parse_provider_transaction(provider: str, payload: Dict[str, Any]) -> ProviderTransaction:
    """
    Parse a raw payload into the provider's model.

    Raises:
        ValueError: unknown provider
        pydantic.ValidationError: malformed payload
    """
    model = _PAYLOAD_MODELS.get(provider)
    if model is None:
        raise ValueError(f"Unknown provider: {provider}")
    return model.model_validate(payload)


def normalize_transaction(provider: str, payload: Dict[str, Any]) -> Union[NormalizedTransaction, Rejection]:
    """Convert a provider payload into canonical form, or reject it as malformed"""
    try:
        return parse_provider_transaction(provider, payload).to_normalized()
    except (ValidationError, ValueError, ArithmeticError) as e:
        return Rejection(
            provider_transaction_id=extract_transaction_id(provider, payload),
            reason="malformed",
            detail=str(e),
        )
