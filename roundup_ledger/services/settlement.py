"""
Settlement orchestration: threshold and month-end settlements, charge
reconciliation and recovery of settlements whose charge outcome is unknown.

Every settlement is a two-phase write around the processor call. Phase 1
commits the pending donation, the transactions assigned to it and the amount
reserved from the month counter. Phase 2 records whatever the processor said.
A crash or timeout between the two leaves a pending donation that the payment
webhook or `recover_stale_settlements` resolves using the same idempotency key.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from roundup_ledger.config import settings
from roundup_ledger.domain.charity import ensure_receivable_destination
from roundup_ledger.domain.connection_state import allows_ingestion
from roundup_ledger.domain.events import PaymentEventKind
from roundup_ledger.domain.exceptions import (
    ChargeOutcomeUnknown,
    DomainException,
    DuplicateEvent,
    InvalidState,
    NotFound,
    ProcessorError,
)
from roundup_ledger.domain.fees import compute_fees
from roundup_ledger.domain.ledger import (
    apply_monthly_reset,
    previous_settlement_period,
    settlement_key,
    settlement_period,
)
from roundup_ledger.domain.models import (
    ChargeResult,
    DonationStatus,
    PaymentEvent,
    RoundUpStatus,
    SettlementResult,
    TransactionStatus,
)
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.database.models import RoundUpConfig, RoundUpDonation
from roundup_ledger.infrastructure.database.repositories import (
    DonationRepository,
    RoundUpConfigRepository,
    RoundUpTransactionRepository,
)
from roundup_ledger.infrastructure.observability.logging import log_settlement
from roundup_ledger.infrastructure.observability.metrics import record_settlement
from roundup_ledger.services.notify import SETTLEMENT_COMPLETED, SETTLEMENT_FAILED, Notification, notify_user
from roundup_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PaymentWebhookResult:
    """What a payment callback changed"""

    outcome: str  # completed | failed | duplicate | ignored
    notifications: List[Notification] = field(default_factory=list)


def _ensure_can_settle(config: Optional[RoundUpConfig]) -> RoundUpConfig:
    if config is None:
        raise NotFound("Round-up configuration not found")
    if not config.is_active or config.status == RoundUpStatus.CANCELLED:
        raise InvalidState("Round-up is cancelled")
    if not config.enabled:
        raise InvalidState("Round-up is paused")
    connection = config.bank_connection
    if connection is None or not connection.is_active or not allows_ingestion(connection.consent_status):
        raise InvalidState("Bank connection is not active")
    return config


def _result(outcome: str, config_id, donation: Optional[RoundUpDonation] = None) -> SettlementResult:
    if donation is None:
        return SettlementResult(outcome=outcome, round_up_config_id=str(config_id))
    return SettlementResult(
        outcome=outcome,
        round_up_config_id=str(config_id),
        donation_id=str(donation.id),
        base_amount_cents=donation.base_amount_cents,
        total_charged_cents=donation.total_charged_cents,
        transaction_count=len(donation.transaction_ids or []),
        charge_id=donation.processor_charge_id,
    )


def _duplicate(config_id, period: str, donation_id: str) -> SettlementResult:
    logger.info(
        "Settlement already exists for period",
        extra={"round_up_config_id": str(config_id), "settlement_period": period, "donation_id": donation_id},
    )
    record_settlement("duplicate")
    return _result("duplicate", config_id)


def _reserve(db: Session, config_id, period: str, now: datetime) -> Optional[RoundUpDonation]:
    """
    Phase 1: create the pending donation, assign the unsettled transactions to it
    and reserve their amount from the month counter, all in one commit.

    Returns:
        The pending donation, or None when there is nothing to settle

    Raises:
        DuplicateEvent: a live donation already holds this config's settlement key
    """
    configs = RoundUpConfigRepository(db)
    transactions = RoundUpTransactionRepository(db)
    donations = DonationRepository(db)

    config = _ensure_can_settle(configs.lock(config_id))
    apply_monthly_reset(config, now)

    key = settlement_key(config.id, period)
    existing = donations.get_by_settlement_key(key)
    if existing is not None:
        db.commit()
        raise DuplicateEvent(str(existing.id))

    unsettled = transactions.list_unsettled(config.id)
    base = sum(t.round_up_amount_cents for t in unsettled)
    if not unsettled or base <= 0:
        db.commit()
        return None

    fees = compute_fees(base, config.cover_fees)
    reserved = min(config.current_month_total_cents, base)

    donation = donations.create_donation(
        user_id=config.user_id,
        round_up_config_id=config.id,
        organization_id=config.organization_id,
        cause_id=config.cause_id,
        settlement_period=period,
        active_settlement_key=key,
        transaction_ids=[str(t.id) for t in unsettled],
        base_amount_cents=fees.base_amount_cents,
        platform_fee_cents=fees.platform_fee_cents,
        processor_fee_cents=fees.processor_fee_cents,
        tax_cents=fees.tax_cents,
        total_fee_cents=fees.total_fee_cents,
        net_to_cause_cents=fees.net_to_cause_cents,
        total_charged_cents=fees.total_charged_cents,
        cover_fees=fees.cover_fees,
        reserved_amount_cents=reserved,
        currency=settings.currency,
        created_at=now,
    )
    for txn in unsettled:
        txn.donation_id = donation.id
        txn.donation_attempted_at = now

    config.current_month_total_cents -= reserved
    config.last_donation_attempt = now

    try:
        db.commit()
    except IntegrityError:
        # A concurrent settlement committed the same key first
        db.rollback()
        raise DuplicateEvent(key)
    return donation


async def _request_charge(
    db: Session, donation: RoundUpDonation, payment_method_id: str, payments: PaymentProcessorClient, now: datetime
) -> ChargeResult:
    if donation.charge_requested_at is None:
        donation.charge_requested_at = now
        db.commit()
    return await payments.create_charge(
        payment_method_ref=payment_method_id,
        amount_cents=donation.total_charged_cents,
        currency=donation.currency,
        metadata={
            "donation_id": str(donation.id),
            "round_up_config_id": str(donation.round_up_config_id),
            "settlement_period": donation.settlement_period,
            "type": "round_up",
        },
        idempotency_key=str(donation.id),
    )


def _mark_processing(db: Session, donation: RoundUpDonation, charge: ChargeResult) -> None:
    """Phase 2 after the processor accepted the charge; never regresses a confirmed donation"""
    config = RoundUpConfigRepository(db).lock(donation.round_up_config_id)
    db.refresh(donation)
    if donation.status != DonationStatus.PENDING:
        db.commit()
        return
    donation.status = DonationStatus.PROCESSING
    donation.processor_charge_id = charge.charge_id
    for txn in RoundUpTransactionRepository(db).list_for_donation(donation.id):
        txn.status = TransactionStatus.PROCESSING
    if config is not None and config.is_active:
        config.status = RoundUpStatus.PROCESSING
    db.commit()


def _release(db: Session, donation: RoundUpDonation, reason: str, now: datetime) -> bool:
    """
    Fail a settlement: release the key, return its transactions to the
    unsettled pool and restore the reserved amount to the month it came from.
    """
    config = RoundUpConfigRepository(db).lock(donation.round_up_config_id)
    db.refresh(donation)
    if donation.status in (DonationStatus.FAILED, DonationStatus.COMPLETED):
        db.commit()
        return False

    donation.status = DonationStatus.FAILED
    donation.active_settlement_key = None
    donation.failure_reason = reason

    for txn in RoundUpTransactionRepository(db).list_for_donation(donation.id):
        txn.status = TransactionStatus.PROCESSED
        txn.donation_id = None
        txn.last_failure_reason = reason
        txn.last_failure_at = now

    if config is not None and config.is_active:
        apply_monthly_reset(config, now)
        if settlement_period(donation.created_at) == settlement_period(now):
            config.current_month_total_cents += donation.reserved_amount_cents
        config.status = RoundUpStatus.FAILED
        config.last_donation_failure = now
        config.last_donation_failure_reason = reason

    db.commit()
    return True


def _complete(db: Session, donation: RoundUpDonation, charge_id: Optional[str], now: datetime) -> None:
    config = RoundUpConfigRepository(db).lock(donation.round_up_config_id)
    donation.status = DonationStatus.COMPLETED
    donation.completed_at = now
    if charge_id and not donation.processor_charge_id:
        donation.processor_charge_id = charge_id
    for txn in RoundUpTransactionRepository(db).list_for_donation(donation.id):
        txn.status = TransactionStatus.DONATED
    if config is not None and config.is_active:
        config.status = RoundUpStatus.COMPLETED
        config.last_successful_donation = now
    db.commit()


async def trigger_settlement(
    db: Session,
    round_up_config_id,
    payments: PaymentProcessorClient,
    directory: DirectoryClient,
    notifier: Optional[NotificationClient] = None,
    period: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SettlementResult:
    """
    Settle every unsettled transaction of a config; the single entry point for
    threshold crossings and the month-end sweep.

    Args:
        period: settlement month (YYYY-MM), defaults to the current month

    Returns:
        SettlementResult with outcome initiated, duplicate, nothing_to_settle or unknown

    Raises:
        NotFound: Unknown config
        InvalidState: Config cancelled or paused, or its connection is not active
        ValidationFailed: Destination cannot receive funds, or fees exceed the amount
        ProcessorError: Charge rejected; the settlement has been rolled back
    """
    now = now or utcnow()
    period = period or settlement_period(now)
    configs = RoundUpConfigRepository(db)

    config = _ensure_can_settle(configs.get(round_up_config_id))
    config_id = config.id
    payment_method_id = config.payment_method_id

    held = DonationRepository(db).get_by_settlement_key(settlement_key(config_id, period))
    if held is not None:
        return _duplicate(config_id, period, str(held.id))
    if RoundUpTransactionRepository(db).sum_unsettled(config_id) <= 0:
        record_settlement("nothing_to_settle")
        return _result("nothing_to_settle", config_id)

    cause = await directory.get_cause(config.cause_id)
    receivable = await directory.get_organization_payout_status(config.organization_id)
    ensure_receivable_destination(cause, config.organization_id, receivable)

    try:
        donation = _reserve(db, config_id, period, now)
    except DuplicateEvent as e:
        return _duplicate(config_id, period, str(e))
    if donation is None:
        record_settlement("nothing_to_settle")
        return _result("nothing_to_settle", config_id)

    try:
        charge = await _request_charge(db, donation, payment_method_id, payments, now)
    except ChargeOutcomeUnknown as e:
        record_settlement("unknown")
        log_settlement(str(config_id), "unknown", str(donation.id), donation.base_amount_cents,
                       donation.total_charged_cents, detail=str(e))
        return _result("unknown", config_id, donation)
    except ProcessorError as e:
        _release(db, donation, str(e), now)
        record_settlement("failed")
        log_settlement(str(config_id), "failed", str(donation.id), donation.base_amount_cents,
                       donation.total_charged_cents, detail=str(e))
        await notify_user(
            notifier,
            SETTLEMENT_FAILED,
            donation.user_id,
            {"donation_id": str(donation.id), "round_up_config_id": str(config_id), "reason": str(e)},
        )
        raise

    _mark_processing(db, donation, charge)
    record_settlement("initiated", donation.base_amount_cents)
    log_settlement(str(config_id), "initiated", str(donation.id), donation.base_amount_cents,
                   donation.total_charged_cents)
    return _result("initiated", config_id, donation)


async def handle_payment_webhook(
    db: Session,
    event: PaymentEvent,
    now: Optional[datetime] = None,
) -> PaymentWebhookResult:
    """
    Apply a charge confirmation to its donation.

    Returns:
        PaymentWebhookResult with outcome completed, failed, duplicate or
        ignored, plus the user notifications to deliver. Re-deliveries and
        unmatched events are absorbed, never raised.
    """
    now = now or utcnow()
    if event.kind == PaymentEventKind.UNKNOWN:
        logger.info("Ignoring payment event", extra={"charge_id": event.charge_id})
        return PaymentWebhookResult("ignored")

    donations = DonationRepository(db)
    donation = donations.get(event.donation_id) if event.donation_id else None
    if donation is None and event.charge_id:
        donation = donations.get_by_charge_id(event.charge_id)
    if donation is None:
        logger.warning(
            "Payment event for unknown donation",
            extra={"donation_id": event.donation_id, "charge_id": event.charge_id, "event_kind": event.kind},
        )
        return PaymentWebhookResult("ignored")

    if event.kind == PaymentEventKind.CHARGE_SUCCEEDED:
        if donation.status == DonationStatus.COMPLETED:
            logger.info("Duplicate charge confirmation", extra={"donation_id": str(donation.id)})
            return PaymentWebhookResult("duplicate")
        if donation.status == DonationStatus.FAILED:
            logger.warning("Charge succeeded for a failed donation", extra={"donation_id": str(donation.id)})
            return PaymentWebhookResult("ignored")
        _complete(db, donation, event.charge_id, now)
        record_settlement("completed", donation.base_amount_cents)
        log_settlement(str(donation.round_up_config_id), "completed", str(donation.id),
                       donation.base_amount_cents, donation.total_charged_cents)
        notice = Notification(
            SETTLEMENT_COMPLETED,
            donation.user_id,
            {"donation_id": str(donation.id), "net_to_cause_cents": donation.net_to_cause_cents},
        )
        return PaymentWebhookResult("completed", [notice])

    if donation.status == DonationStatus.COMPLETED:
        logger.warning("Charge failure for a completed donation", extra={"donation_id": str(donation.id)})
        return PaymentWebhookResult("ignored")
    reason = event.failure_reason or "Payment failed"
    if not _release(db, donation, reason, now):
        logger.info("Duplicate charge failure", extra={"donation_id": str(donation.id)})
        return PaymentWebhookResult("duplicate")
    record_settlement("failed")
    log_settlement(str(donation.round_up_config_id), "failed", str(donation.id),
                   donation.base_amount_cents, donation.total_charged_cents, detail=reason)
    notice = Notification(SETTLEMENT_FAILED, donation.user_id, {"donation_id": str(donation.id), "reason": reason})
    return PaymentWebhookResult("failed", [notice])


async def recover_stale_settlements(
    db: Session,
    payments: PaymentProcessorClient,
    notifier: Optional[NotificationClient] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Resolve donations stuck in pending past the configured timeout.

    Donations whose charge was never requested are released if their config or
    connection is no longer active; everything else is re-issued with the
    original idempotency key, so the processor returns the first outcome
    instead of charging twice.
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=settings.settlement_pending_timeout_seconds)
    outcomes: Counter = Counter()

    for donation in DonationRepository(db).list_stale_pending(cutoff):
        try:
            config = RoundUpConfigRepository(db).get(donation.round_up_config_id)
            connection = config.bank_connection if config is not None else None
            active = (
                config is not None
                and config.is_active
                and config.enabled
                and connection is not None
                and connection.is_active
                and allows_ingestion(connection.consent_status)
            )
            if config is None or (donation.charge_requested_at is None and not active):
                _release(db, donation, "Round-up no longer active", now)
                outcomes["released"] += 1
                continue

            try:
                charge = await _request_charge(db, donation, config.payment_method_id, payments, now)
            except ChargeOutcomeUnknown:
                outcomes["still_pending"] += 1
                continue
            except ProcessorError as e:
                _release(db, donation, str(e), now)
                await notify_user(
                    notifier, SETTLEMENT_FAILED, donation.user_id, {"donation_id": str(donation.id), "reason": str(e)}
                )
                outcomes["failed"] += 1
                continue

            _mark_processing(db, donation, charge)
            outcomes["reissued"] += 1

        except (DomainException, SQLAlchemyError):
            db.rollback()
            logger.exception("Settlement recovery failed", extra={"donation_id": str(donation.id)})
            outcomes["error"] += 1

    logger.info("Settlement recovery finished", extra={"outcomes": dict(outcomes)})
    return dict(outcomes)


async def run_month_end_sweep(
    db: Session,
    payments: PaymentProcessorClient,
    directory: DirectoryClient,
    notifier: Optional[NotificationClient] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Settle the previous month for every active config holding unsettled transactions"""
    now = now or utcnow()
    period = previous_settlement_period(now)
    config_ids = [config.id for config in RoundUpConfigRepository(db).list_sweep_candidates()]
    outcomes: Counter = Counter()

    for config_id in config_ids:
        try:
            result = await trigger_settlement(db, config_id, payments, directory, notifier, period=period, now=now)
            outcomes[result.outcome] += 1
        except ProcessorError:
            outcomes["failed"] += 1
        except (DomainException, SQLAlchemyError):
            db.rollback()
            logger.exception("Month-end settlement failed", extra={"round_up_config_id": str(config_id)})
            outcomes["error"] += 1

    logger.info("Month-end sweep finished", extra={"settlement_period": period, "outcomes": dict(outcomes)})
    return dict(outcomes)
