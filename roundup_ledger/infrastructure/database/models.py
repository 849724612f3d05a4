"""SQLAlchemy ORM models for connections, round-up configs, transactions and settlements"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from roundup_ledger.domain.models import ConsentStatus, RoundUpStatus, TransactionStatus, DonationStatus
from roundup_ledger.utils.date_utils import utcnow

Base = declarative_base()


class BankConnection(Base):
    """Consent to read one bank account through an aggregator"""

    __tablename__ = "bank_connection"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    provider_user_id = Column(Text, nullable=True, index=True)
    provider_connection_id = Column(Text, nullable=False, index=True)
    provider_account_id = Column(Text, nullable=False)
    account_name = Column(Text, nullable=True)
    account_type = Column(Text, nullable=True)
    institution_name = Column(Text, nullable=True)
    access_token_encrypted = Column(Text, nullable=True)
    consent_status = Column(String(20), nullable=False, default=ConsentStatus.ACTIVE)
    is_active = Column(Boolean, nullable=False, default=True)
    # "<user>:<provider>:<account>" while active, NULL afterwards: one active record per account
    active_account_key = Column(Text, nullable=True, unique=True)
    error_code = Column(Text, nullable=True)
    status_reason = Column(Text, nullable=True)
    consent_given_at = Column(DateTime, nullable=False, default=utcnow)
    last_synced_at = Column(DateTime, nullable=True)
    last_sync_cursor = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    round_ups = relationship("RoundUpConfig", back_populates="bank_connection")


class RoundUpConfig(Base):
    """Per-user, per-connection accumulator; the single owner of the round-up counters"""

    __tablename__ = "round_up_config"
    __table_args__ = (
        CheckConstraint("current_month_total_cents >= 0", name="ck_round_up_month_total_non_negative"),
        CheckConstraint("total_accumulated_cents >= 0", name="ck_round_up_total_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    organization_id = Column(Text, nullable=False, index=True)
    cause_id = Column(Text, nullable=False)
    bank_connection_id = Column(
        UUID(as_uuid=True), ForeignKey("bank_connection.id"), nullable=False, index=True
    )
    # Mirrors bank_connection_id while active, NULL once cancelled: one active config per connection
    active_connection_id = Column(UUID(as_uuid=True), nullable=True, unique=True)
    payment_method_id = Column(Text, nullable=False)
    monthly_threshold_cents = Column(BigInteger, nullable=True)  # NULL = no limit
    cover_fees = Column(Boolean, nullable=False, default=True)
    special_message = Column(Text, nullable=True)
    current_month_total_cents = Column(BigInteger, nullable=False, default=0)
    total_accumulated_cents = Column(BigInteger, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default=RoundUpStatus.PENDING)
    cancel_reason = Column(Text, nullable=True)
    last_month_reset = Column(DateTime, nullable=False, default=utcnow)
    last_charity_switch = Column(DateTime, nullable=True)
    last_donation_attempt = Column(DateTime, nullable=True)
    last_successful_donation = Column(DateTime, nullable=True)
    last_donation_failure = Column(DateTime, nullable=True)
    last_donation_failure_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Optimistic lock: a stale read-modify-write raises StaleDataError instead of overwriting counters
    __mapper_args__ = {"version_id_col": version}

    bank_connection = relationship("BankConnection", back_populates="round_ups")
    transactions = relationship("RoundUpTransaction", back_populates="round_up_config")


class RoundUpTransaction(Base):
    """One accepted provider transaction and its round-up amount"""

    __tablename__ = "round_up_transaction"
    __table_args__ = (
        Index("ix_round_up_transaction_config_status", "round_up_config_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    bank_connection_id = Column(UUID(as_uuid=True), ForeignKey("bank_connection.id"), nullable=False)
    round_up_config_id = Column(UUID(as_uuid=True), ForeignKey("round_up_config.id"), nullable=False)
    # Storage-level dedup for at-least-once webhook delivery
    provider_transaction_id = Column(Text, nullable=False, unique=True)
    original_amount_cents = Column(BigInteger, nullable=False)
    round_up_amount_cents = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    transaction_date = Column(Date, nullable=False)
    transaction_name = Column(Text, nullable=True)
    transaction_category = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=TransactionStatus.PROCESSED)
    donation_id = Column(UUID(as_uuid=True), ForeignKey("round_up_donation.id"), nullable=True, index=True)
    donation_attempted_at = Column(DateTime, nullable=True)
    last_failure_reason = Column(Text, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    round_up_config = relationship("RoundUpConfig", back_populates="transactions")
    donation = relationship("RoundUpDonation", back_populates="transactions")


class RoundUpDonation(Base):
    """Settlement record: the authoritative financial outcome for its transactions"""

    __tablename__ = "round_up_donation"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    round_up_config_id = Column(UUID(as_uuid=True), ForeignKey("round_up_config.id"), nullable=False, index=True)
    organization_id = Column(Text, nullable=False)
    cause_id = Column(Text, nullable=False)
    settlement_period = Column(String(7), nullable=False)
    # "<config>:<period>" while pending/processing/completed, NULL once failed
    active_settlement_key = Column(Text, nullable=True, unique=True)
    transaction_ids = Column(JSON, nullable=False)
    base_amount_cents = Column(BigInteger, nullable=False)
    platform_fee_cents = Column(BigInteger, nullable=False, default=0)
    processor_fee_cents = Column(BigInteger, nullable=False, default=0)
    tax_cents = Column(BigInteger, nullable=False, default=0)
    total_fee_cents = Column(BigInteger, nullable=False, default=0)
    net_to_cause_cents = Column(BigInteger, nullable=False)
    total_charged_cents = Column(BigInteger, nullable=False)
    cover_fees = Column(Boolean, nullable=False)
    reserved_amount_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default=DonationStatus.PENDING, index=True)
    processor_charge_id = Column(Text, nullable=True, index=True)
    charge_requested_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    transactions = relationship("RoundUpTransaction", back_populates="donation")
