"""Round-up configuration lifecycle and transaction ingestion"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roundup_ledger.domain.charity import ensure_receivable_destination
from roundup_ledger.domain.connection_state import allows_ingestion
from roundup_ledger.domain.eligibility import check_eligibility
from roundup_ledger.domain.exceptions import DomainException, InvalidState, NotFound, ProcessorError
from roundup_ledger.domain.ledger import apply_monthly_reset, threshold_reached, validate_threshold
from roundup_ledger.domain.models import (
    IngestionResult,
    Rejection,
    RoundUpStatus,
    SettlementResult,
)
from roundup_ledger.domain.normalizer import extract_transaction_id, normalize_transaction
from roundup_ledger.domain.roundup import calculate_round_up, is_eligible_round_up, to_cents
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.database.models import BankConnection, RoundUpConfig, RoundUpTransaction
from roundup_ledger.infrastructure.database.repositories import (
    BankConnectionRepository,
    RoundUpConfigRepository,
    RoundUpTransactionRepository,
)
from roundup_ledger.infrastructure.observability.logging import log_ingestion
from roundup_ledger.infrastructure.observability.metrics import roundup_cents_counter, roundup_ingested_counter
from roundup_ledger.services.notify import ROUND_UP_CANCELLED, notify_user
from roundup_ledger.services.settlement import trigger_settlement
from roundup_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def _owned_config(db: Session, round_up_config_id, user_id: Optional[str]) -> RoundUpConfig:
    config = RoundUpConfigRepository(db).get(round_up_config_id)
    if config is None or (user_id is not None and config.user_id != user_id):
        raise NotFound("Round-up configuration not found")
    return config


def _active_connection(db: Session, bank_connection_id, user_id: Optional[str] = None) -> BankConnection:
    connection = BankConnectionRepository(db).get(bank_connection_id)
    if connection is None or (user_id is not None and connection.user_id != user_id):
        raise NotFound("Bank connection not found")
    if not connection.is_active or not allows_ingestion(connection.consent_status):
        raise InvalidState(f"Bank connection is {connection.consent_status}")
    return connection


async def create_round_up_config(
    db: Session,
    directory: DirectoryClient,
    user_id: str,
    bank_connection_id,
    organization_id: str,
    cause_id: str,
    monthly_threshold_cents: Optional[int],
    payment_method_id: str,
    cover_fees: bool = True,
    special_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RoundUpConfig:
    """
    Start round-ups for one bank connection.

    Raises:
        NotFound: Connection, cause or organization does not exist
        InvalidState: Connection not active, or it already has an active round-up
        ValidationFailed: Threshold out of range or destination cannot receive funds
    """
    now = now or utcnow()
    connection = _active_connection(db, bank_connection_id, user_id)
    threshold = validate_threshold(monthly_threshold_cents)

    configs = RoundUpConfigRepository(db)
    if configs.get_active_for_connection(connection.id) is not None:
        raise InvalidState("This bank connection already has an active round-up")

    cause = await directory.get_cause(cause_id)
    receivable = await directory.get_organization_payout_status(organization_id)
    ensure_receivable_destination(cause, organization_id, receivable)

    config = configs.create_config(
        user_id=user_id,
        bank_connection_id=connection.id,
        organization_id=organization_id,
        cause_id=cause_id,
        payment_method_id=payment_method_id,
        monthly_threshold_cents=threshold,
        cover_fees=cover_fees,
        special_message=special_message,
        now=now,
    )
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise InvalidState("This bank connection already has an active round-up") from e

    logger.info(
        "Round-up configuration created",
        extra={"round_up_config_id": str(config.id), "bank_connection_id": str(connection.id)},
    )
    return config


async def ingest_provider_transactions(
    db: Session,
    bank_connection_id,
    payloads: Iterable[Dict[str, Any]],
    payments: PaymentProcessorClient,
    directory: DirectoryClient,
    notifier: Optional[NotificationClient] = None,
    now: Optional[datetime] = None,
) -> IngestionResult:
    """
    Turn provider transactions into round-ups on the connection's active config.

    Idempotent per provider transaction id. Each accepted transaction is
    committed together with its counter update under the config's row lock.
    The transaction that reaches the monthly threshold is accepted and
    settlement is triggered straight after its commit; the rest of the batch
    keeps accumulating.

    Raises:
        NotFound: Unknown connection
        InvalidState: Connection not active, or no active, enabled round-up
    """
    now = now or utcnow()
    connection = _active_connection(db, bank_connection_id)
    provider = connection.provider

    configs = RoundUpConfigRepository(db)
    transactions = RoundUpTransactionRepository(db)
    config = configs.get_active_for_connection(connection.id)
    if config is None:
        raise InvalidState("No active round-up for this bank connection")
    if not config.enabled:
        raise InvalidState("Round-up is paused")
    config_id = config.id
    result = IngestionResult()

    for payload in payloads:
        provider_transaction_id = extract_transaction_id(provider, payload)
        if provider_transaction_id and transactions.exists(provider_transaction_id):
            result.duplicates += 1
            roundup_ingested_counter.labels(outcome="duplicate").inc()
            continue

        normalized = normalize_transaction(provider, payload)
        rejection = normalized if isinstance(normalized, Rejection) else check_eligibility(normalized)
        if rejection is None:
            round_up_cents = calculate_round_up(normalized.amount)
            if not is_eligible_round_up(round_up_cents):
                rejection = Rejection(normalized.provider_transaction_id, "zero_round_up")
        if rejection is not None:
            result.reject(rejection.reason)
            roundup_ingested_counter.labels(outcome=rejection.reason).inc()
            continue

        config = configs.lock(config_id)
        if config is None or not config.is_active or not config.enabled:
            db.rollback()
            raise InvalidState("Round-up is no longer active")
        apply_monthly_reset(config, now)

        row = RoundUpTransaction(
            user_id=connection.user_id,
            bank_connection_id=connection.id,
            round_up_config_id=config.id,
            provider_transaction_id=normalized.provider_transaction_id,
            original_amount_cents=to_cents(normalized.amount),
            round_up_amount_cents=round_up_cents,
            currency=normalized.currency,
            transaction_date=normalized.date,
            transaction_name=normalized.merchant or normalized.name,
            transaction_category=list(normalized.categories),
        )
        if not transactions.insert_if_new(row):
            db.commit()
            result.duplicates += 1
            roundup_ingested_counter.labels(outcome="duplicate").inc()
            continue

        config.current_month_total_cents += round_up_cents
        config.total_accumulated_cents += round_up_cents
        if config.status == RoundUpStatus.COMPLETED:
            config.status = RoundUpStatus.PENDING
        crossed = threshold_reached(config.current_month_total_cents, config.monthly_threshold_cents)
        db.commit()

        result.processed += 1
        result.round_up_cents += round_up_cents
        roundup_ingested_counter.labels(outcome="accepted").inc()
        roundup_cents_counter.inc(round_up_cents)

        if crossed and result.settlement is None:
            result.settlement = await _settle_on_threshold(db, config_id, payments, directory, notifier, now)

    log_ingestion(
        str(connection.id), str(config_id), result.processed, result.duplicates, result.rejected, result.round_up_cents
    )
    return result


async def _settle_on_threshold(
    db: Session,
    config_id,
    payments: PaymentProcessorClient,
    directory: DirectoryClient,
    notifier: Optional[NotificationClient],
    now: datetime,
) -> SettlementResult:
    """A failed settlement is recorded on the config; the accumulated round-ups stay committed"""
    try:
        return await trigger_settlement(db, config_id, payments, directory, notifier, now=now)
    except ProcessorError:
        return SettlementResult(outcome="failed", round_up_config_id=str(config_id))
    except DomainException as e:
        db.rollback()
        logger.warning(
            "Threshold settlement not started",
            extra={"round_up_config_id": str(config_id), "error": str(e), "error_type": type(e).__name__},
        )
        return SettlementResult(outcome="failed", round_up_config_id=str(config_id))


def _cancel(config: RoundUpConfig, reason: str) -> None:
    config.status = RoundUpStatus.CANCELLED
    config.is_active = False
    config.enabled = False
    config.active_connection_id = None
    config.cancel_reason = reason


def cancel_configs_for_connection(db: Session, connection: BankConnection, reason: str) -> list:
    """Cancel every active config on a connection without committing; balances are kept as they are"""
    configs = RoundUpConfigRepository(db)
    cancelled = []
    for config in configs.list_active_for_connection(connection.id):
        locked = configs.lock(config.id)
        if locked is not None and locked.is_active:
            _cancel(locked, reason)
            cancelled.append(locked)
    return cancelled


def pause_round_up(db: Session, round_up_config_id, user_id: Optional[str] = None) -> RoundUpConfig:
    """
    Raises:
        NotFound: Unknown config
        InvalidState: Config is cancelled
    """
    config = RoundUpConfigRepository(db).lock(_owned_config(db, round_up_config_id, user_id).id)
    if config.status == RoundUpStatus.CANCELLED:
        raise InvalidState("Round-up is cancelled")
    if config.enabled:
        config.enabled = False
    else:
        logger.info("Round-up already paused", extra={"round_up_config_id": str(config.id)})
    db.commit()
    return config


def resume_round_up(db: Session, round_up_config_id, user_id: Optional[str] = None) -> RoundUpConfig:
    """
    Raises:
        NotFound: Unknown config
        InvalidState: Config is cancelled or its bank connection is no longer active
    """
    config = RoundUpConfigRepository(db).lock(_owned_config(db, round_up_config_id, user_id).id)
    if config.status == RoundUpStatus.CANCELLED or not config.is_active:
        raise InvalidState("A cancelled round-up cannot be resumed")
    connection = config.bank_connection
    if connection is None or not connection.is_active or not allows_ingestion(connection.consent_status):
        raise InvalidState("Bank connection is not active")
    config.enabled = True
    if config.status == RoundUpStatus.FAILED:
        config.status = RoundUpStatus.PENDING
    db.commit()
    return config


async def cancel_round_up(
    db: Session,
    round_up_config_id,
    user_id: Optional[str] = None,
    reason: str = "Cancelled by user",
    notifier: Optional[NotificationClient] = None,
) -> RoundUpConfig:
    """Terminal; cancelling twice returns the already cancelled config"""
    config = RoundUpConfigRepository(db).lock(_owned_config(db, round_up_config_id, user_id).id)
    if config.status == RoundUpStatus.CANCELLED:
        db.commit()
        logger.info("Round-up already cancelled", extra={"round_up_config_id": str(config.id)})
        return config
    _cancel(config, reason)
    db.commit()
    await notify_user(
        notifier, ROUND_UP_CANCELLED, config.user_id, {"round_up_config_id": str(config.id), "reason": reason}
    )
    return config


def get_round_up_config(db: Session, round_up_config_id, user_id: Optional[str] = None) -> RoundUpConfig:
    return _owned_config(db, round_up_config_id, user_id)
