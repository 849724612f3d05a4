"""Data access layer for round-up entities"""

import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from roundup_ledger.infrastructure.database.models import (
    BankConnection,
    RoundUpConfig,
    RoundUpTransaction,
    RoundUpDonation,
)
from roundup_ledger.domain.models import ConsentStatus, DonationStatus, TransactionStatus


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def account_key(user_id: str, provider: str, provider_account_id: str) -> str:
    return f"{user_id}:{provider}:{provider_account_id}"


class BankConnectionRepository:
    """Repository for bank connections"""

    def __init__(self, db: Session):
        self.db = db

    def create_connection(
        self,
        user_id: str,
        provider: str,
        provider_connection_id: str,
        provider_account_id: str,
        access_token_encrypted: Optional[str],
        provider_user_id: Optional[str] = None,
        account_name: Optional[str] = None,
        account_type: Optional[str] = None,
        institution_name: Optional[str] = None,
    ) -> BankConnection:
        """Persist a new active connection"""
        connection = BankConnection(
            user_id=user_id,
            provider=provider,
            provider_user_id=provider_user_id,
            provider_connection_id=provider_connection_id,
            provider_account_id=provider_account_id,
            account_name=account_name,
            account_type=account_type,
            institution_name=institution_name,
            access_token_encrypted=access_token_encrypted,
            consent_status=ConsentStatus.ACTIVE,
            is_active=True,
            active_account_key=account_key(user_id, provider, provider_account_id),
        )
        self.db.add(connection)
        self.db.flush()
        return connection

    def get(self, connection_id) -> Optional[BankConnection]:
        connection_id = _as_uuid(connection_id)
        if connection_id is None:
            return None
        return self.db.get(BankConnection, connection_id)

    def get_active_for_account(
        self, user_id: str, provider: str, provider_account_id: str
    ) -> Optional[BankConnection]:
        return (
            self.db.query(BankConnection)
            .filter(BankConnection.active_account_key == account_key(user_id, provider, provider_account_id))
            .first()
        )

    def find_by_provider_connection(
        self, provider: str, provider_connection_id: str, provider_account_id: Optional[str] = None
    ) -> List[BankConnection]:
        """All connection records behind one provider item, optionally narrowed to one account"""
        query = self.db.query(BankConnection).filter(
            BankConnection.provider == provider,
            BankConnection.provider_connection_id == provider_connection_id,
        )
        if provider_account_id:
            query = query.filter(BankConnection.provider_account_id == provider_account_id)
        return query.order_by(BankConnection.created_at.desc()).all()

    def find_by_provider_user(self, provider: str, provider_user_id: str) -> List[BankConnection]:
        return (
            self.db.query(BankConnection)
            .filter(
                BankConnection.provider == provider,
                BankConnection.provider_user_id == provider_user_id,
            )
            .all()
        )

    def find_by_provider_account(self, provider: str, provider_account_id: str) -> List[BankConnection]:
        return (
            self.db.query(BankConnection)
            .filter(
                BankConnection.provider == provider,
                BankConnection.provider_account_id == provider_account_id,
            )
            .all()
        )

    def deactivate(self, connection: BankConnection, state: str, reason: str, error_code: Optional[str] = None):
        """Move to a terminal state; the record is kept for history"""
        connection.consent_status = state
        connection.is_active = False
        connection.active_account_key = None
        connection.status_reason = reason
        if error_code:
            connection.error_code = error_code
        self.db.flush()


class RoundUpConfigRepository:
    """Repository for round-up configurations"""

    def __init__(self, db: Session):
        self.db = db

    def create_config(
        self,
        user_id: str,
        bank_connection_id: uuid.UUID,
        organization_id: str,
        cause_id: str,
        payment_method_id: str,
        monthly_threshold_cents: Optional[int],
        cover_fees: bool,
        special_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RoundUpConfig:
        config = RoundUpConfig(
            user_id=user_id,
            bank_connection_id=bank_connection_id,
            active_connection_id=bank_connection_id,
            organization_id=organization_id,
            cause_id=cause_id,
            payment_method_id=payment_method_id,
            monthly_threshold_cents=monthly_threshold_cents,
            cover_fees=cover_fees,
            special_message=special_message,
            current_month_total_cents=0,
            total_accumulated_cents=0,
        )
        if now is not None:
            config.last_month_reset = now
        self.db.add(config)
        self.db.flush()
        return config

    def get(self, config_id) -> Optional[RoundUpConfig]:
        config_id = _as_uuid(config_id)
        if config_id is None:
            return None
        return self.db.get(RoundUpConfig, config_id)

    def lock(self, config_id) -> Optional[RoundUpConfig]:
        """Load the config row with SELECT ... FOR UPDATE, refreshing any identity-map copy"""
        config_id = _as_uuid(config_id)
        if config_id is None:
            return None
        return (
            self.db.query(RoundUpConfig)
            .filter(RoundUpConfig.id == config_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_active_for_connection(self, connection_id: uuid.UUID) -> Optional[RoundUpConfig]:
        return (
            self.db.query(RoundUpConfig)
            .filter(RoundUpConfig.active_connection_id == connection_id)
            .first()
        )

    def list_active_for_connection(self, connection_id: uuid.UUID) -> List[RoundUpConfig]:
        return (
            self.db.query(RoundUpConfig)
            .filter(
                RoundUpConfig.bank_connection_id == connection_id,
                RoundUpConfig.is_active.is_(True),
            )
            .all()
        )

    def list_sweep_candidates(self) -> List[RoundUpConfig]:
        """Active, enabled configs that still hold unsettled transactions"""
        unsettled = (
            self.db.query(RoundUpTransaction.round_up_config_id)
            .filter(
                RoundUpTransaction.status == TransactionStatus.PROCESSED,
                RoundUpTransaction.donation_id.is_(None),
            )
            .distinct()
        )
        return (
            self.db.query(RoundUpConfig)
            .filter(
                RoundUpConfig.is_active.is_(True),
                RoundUpConfig.enabled.is_(True),
                RoundUpConfig.id.in_(unsettled),
            )
            .all()
        )


class RoundUpTransactionRepository:
    """Repository for accepted round-up transactions"""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, provider_transaction_id: str) -> bool:
        return (
            self.db.query(RoundUpTransaction.id)
            .filter(RoundUpTransaction.provider_transaction_id == provider_transaction_id)
            .first()
            is not None
        )

    def insert_if_new(self, transaction: RoundUpTransaction) -> bool:
        """
        Insert inside a SAVEPOINT so a concurrent duplicate only unwinds this row.

        Returns:
            False when the provider transaction id is already stored
        """
        try:
            with self.db.begin_nested():
                self.db.add(transaction)
        except IntegrityError:
            return False
        return True

    def list_unsettled(self, config_id: uuid.UUID) -> List[RoundUpTransaction]:
        return (
            self.db.query(RoundUpTransaction)
            .filter(
                RoundUpTransaction.round_up_config_id == config_id,
                RoundUpTransaction.status == TransactionStatus.PROCESSED,
                RoundUpTransaction.donation_id.is_(None),
            )
            .order_by(RoundUpTransaction.created_at, RoundUpTransaction.transaction_date)
            .all()
        )

    def sum_unsettled(self, config_id: uuid.UUID) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(RoundUpTransaction.round_up_amount_cents), 0))
            .filter(
                RoundUpTransaction.round_up_config_id == config_id,
                RoundUpTransaction.status == TransactionStatus.PROCESSED,
                RoundUpTransaction.donation_id.is_(None),
            )
            .scalar()
        )
        return int(total or 0)

    def list_for_donation(self, donation_id: uuid.UUID) -> List[RoundUpTransaction]:
        return (
            self.db.query(RoundUpTransaction)
            .filter(RoundUpTransaction.donation_id == donation_id)
            .all()
        )


class DonationRepository:
    """Repository for settlement records"""

    def __init__(self, db: Session):
        self.db = db

    def create_donation(self, **fields) -> RoundUpDonation:
        donation = RoundUpDonation(status=DonationStatus.PENDING, **fields)
        self.db.add(donation)
        self.db.flush()
        return donation

    def get(self, donation_id) -> Optional[RoundUpDonation]:
        donation_id = _as_uuid(donation_id)
        if donation_id is None:
            return None
        return self.db.get(RoundUpDonation, donation_id)

    def get_by_charge_id(self, charge_id: str) -> Optional[RoundUpDonation]:
        return (
            self.db.query(RoundUpDonation)
            .filter(RoundUpDonation.processor_charge_id == charge_id)
            .first()
        )

    def get_by_settlement_key(self, key: str) -> Optional[RoundUpDonation]:
        return (
            self.db.query(RoundUpDonation)
            .filter(RoundUpDonation.active_settlement_key == key)
            .first()
        )

    def list_stale_pending(self, older_than: datetime) -> List[RoundUpDonation]:
        return (
            self.db.query(RoundUpDonation)
            .filter(
                RoundUpDonation.status == DonationStatus.PENDING,
                RoundUpDonation.created_at < older_than,
            )
            .order_by(RoundUpDonation.created_at)
            .all()
        )
