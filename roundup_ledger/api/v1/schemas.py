"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Union

from roundup_ledger.domain.roundup import to_cents

NO_LIMIT = "no-limit"


class LinkBankAccountRequest(BaseModel):
    """Request body for POST /v1/bank-connections"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    provider: Literal["plaid", "basiq"]
    auth_artifact: str = Field(..., min_length=1, description="Plaid public token or Basiq connection id")
    account_id: Optional[str] = Field(None, description="Provider account to link; defaults to the first transactional one")
    provider_user_id: Optional[str] = Field(None, description="Aggregator-side user id (required for Basiq)")


class UserActionRequest(BaseModel):
    """Body for user-initiated actions on an existing resource"""

    user_id: str = Field(..., min_length=1)


class BankConnectionResponse(BaseModel):
    id: str
    user_id: str
    provider: str
    provider_account_id: str
    account_name: Optional[str] = None
    institution_name: Optional[str] = None
    consent_status: str
    is_active: bool
    error_code: Optional[str] = None
    status_reason: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class IngestTransactionsRequest(BaseModel):
    """Raw provider transaction payloads for one connection"""

    transactions: List[dict] = Field(..., description="Provider-shaped transaction objects")


class SettlementResponse(BaseModel):
    outcome: str
    round_up_config_id: str
    donation_id: Optional[str] = None
    base_amount_cents: int = 0
    total_charged_cents: int = 0
    transaction_count: int = 0
    charge_id: Optional[str] = None


class IngestionResponse(BaseModel):
    processed: int
    duplicates: int
    rejected: Dict[str, int]
    round_up_cents: int
    settlement: Optional[SettlementResponse] = None


class CreateRoundUpRequest(BaseModel):
    """Request body for POST /v1/round-ups"""

    user_id: str = Field(..., min_length=1)
    bank_connection_id: str
    organization_id: str = Field(..., min_length=1)
    cause_id: str = Field(..., min_length=1)
    payment_method_id: str = Field(..., min_length=1)
    monthly_threshold: Union[Literal["no-limit"], Decimal, None] = Field(
        None, description='Dollar amount, or "no-limit" to settle only at month end'
    )
    cover_fees: bool = True
    special_message: Optional[str] = Field(None, max_length=250)

    def threshold_cents(self) -> Optional[int]:
        if self.monthly_threshold is None or self.monthly_threshold == NO_LIMIT:
            return None
        return to_cents(self.monthly_threshold)


class SwitchCharityRequest(BaseModel):
    """Request body for POST /v1/round-ups/{id}/switch-charity"""

    user_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    cause_id: str = Field(..., min_length=1)


class RoundUpResponse(BaseModel):
    id: str
    user_id: str
    bank_connection_id: str
    organization_id: str
    cause_id: str
    monthly_threshold_cents: Optional[int] = None
    cover_fees: bool
    current_month_total_cents: int
    total_accumulated_cents: int
    enabled: bool
    is_active: bool
    status: str
    cancel_reason: Optional[str] = None
    last_charity_switch: Optional[datetime] = None
    last_successful_donation: Optional[datetime] = None


class WebhookAck(BaseModel):
    """Webhooks are always acknowledged; `outcome` says what happened"""

    received: bool = True
    outcome: str
