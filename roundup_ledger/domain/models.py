"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional


class ConsentStatus:
    """Bank connection consent states"""

    ACTIVE = "active"
    ERROR = "error"
    REVOKED = "revoked"
    EXPIRED = "expired"


class RoundUpStatus:
    """Round-up configuration lifecycle"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionStatus:
    PROCESSED = "processed"
    PROCESSING = "processing"
    DONATED = "donated"
    FAILED = "failed"


class DonationStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class NormalizedTransaction:
    """Provider transaction in canonical shape"""

    provider_transaction_id: str
    amount: Decimal  # absolute value, major units
    currency: str
    date: date
    name: str
    merchant: Optional[str]
    categories: List[str]
    is_debit: bool
    transaction_type: str
    pending: bool = False


@dataclass(frozen=True)
class Rejection:
    """Why a transaction did not produce a round-up"""

    provider_transaction_id: Optional[str]
    reason: str  # pending | credit | excluded_category | ineligible_type | zero_round_up | malformed
    detail: str = ""


@dataclass(frozen=True)
class FeeBreakdown:
    """Deterministic split of a settlement amount"""

    base_amount_cents: int
    platform_fee_cents: int
    processor_fee_cents: int
    tax_cents: int
    total_fee_cents: int
    net_to_cause_cents: int
    total_charged_cents: int
    cover_fees: bool


@dataclass(frozen=True)
class ConnectionEvent:
    """Provider webhook translated into one of the aggregator-agnostic event kinds"""

    kind: str
    provider: str
    connection_ref: Optional[str] = None
    account_ref: Optional[str] = None
    user_ref: Optional[str] = None
    account_status: Optional[str] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class PaymentEvent:
    """Asynchronous charge confirmation from the payment processor"""

    kind: str  # charge.succeeded | charge.failed | unknown
    donation_id: Optional[str] = None
    charge_id: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass
class ProviderAccount:
    """Account returned by an aggregator"""

    account_id: str
    name: str
    account_type: Optional[str]
    institution_name: Optional[str]


@dataclass
class LinkedItem:
    """Result of exchanging a provider auth artifact"""

    connection_id: str
    access_token: Optional[str]
    user_ref: Optional[str]
    institution_name: Optional[str] = None


@dataclass
class ChargeResult:
    charge_id: str
    status: str


@dataclass
class CauseInfo:
    cause_id: str
    status: str
    organization_id: str


@dataclass
class IngestionResult:
    """Outcome of one ingestion batch"""

    processed: int = 0
    duplicates: int = 0
    rejected: Dict[str, int] = field(default_factory=dict)
    round_up_cents: int = 0
    settlement: Optional["SettlementResult"] = None

    def reject(self, reason: str) -> None:
        self.rejected[reason] = self.rejected.get(reason, 0) + 1


@dataclass
class SettlementResult:
    """Outcome of a settlement attempt"""

    outcome: str  # initiated | duplicate | nothing_to_settle | unknown | failed
    round_up_config_id: str
    donation_id: Optional[str] = None
    base_amount_cents: int = 0
    total_charged_cents: int = 0
    transaction_count: int = 0
    charge_id: Optional[str] = None
