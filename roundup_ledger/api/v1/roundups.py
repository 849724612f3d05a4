"""/v1/round-ups - configuration lifecycle, settlement and charity switching"""

import logging
from dataclasses import asdict
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from roundup_ledger.api.v1.schemas import (
    CreateRoundUpRequest,
    RoundUpResponse,
    SettlementResponse,
    SwitchCharityRequest,
    UserActionRequest,
)
from roundup_ledger.api.v1.errors import http_error, parse_uuid
from roundup_ledger.api.dependencies import (
    get_directory_client,
    get_notification_client,
    get_payment_client,
    get_request_id,
)
from roundup_ledger.domain.exceptions import DomainException, ProcessorError
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.database.models import RoundUpConfig
from roundup_ledger.infrastructure.database.session import get_db
from roundup_ledger.services.charity import switch_charity
from roundup_ledger.services.ledger import (
    cancel_round_up,
    create_round_up_config,
    get_round_up_config,
    pause_round_up,
    resume_round_up,
)
from roundup_ledger.services.settlement import trigger_settlement

router = APIRouter()


def round_up_response(config: RoundUpConfig) -> RoundUpResponse:
    return RoundUpResponse(
        id=str(config.id),
        user_id=config.user_id,
        bank_connection_id=str(config.bank_connection_id),
        organization_id=config.organization_id,
        cause_id=config.cause_id,
        monthly_threshold_cents=config.monthly_threshold_cents,
        cover_fees=config.cover_fees,
        current_month_total_cents=config.current_month_total_cents,
        total_accumulated_cents=config.total_accumulated_cents,
        enabled=config.enabled,
        is_active=config.is_active,
        status=config.status,
        cancel_reason=config.cancel_reason,
        last_charity_switch=config.last_charity_switch,
        last_successful_donation=config.last_successful_donation,
    )


@router.post("/round-ups", response_model=RoundUpResponse, status_code=201)
async def create_round_up(
    request_body: CreateRoundUpRequest,
    request: Request,
    db: Session = Depends(get_db),
    directory: DirectoryClient = Depends(get_directory_client),
):
    """
    Start round-ups on a bank connection.

    Errors:
    - 404: connection, cause or organization not found
    - 409: connection not active, or already has an active round-up
    - 422: threshold out of range, or destination cannot receive donations
    """
    request_id = get_request_id(request)
    try:
        config = await create_round_up_config(
            db,
            directory,
            user_id=request_body.user_id,
            bank_connection_id=parse_uuid(request_body.bank_connection_id, "connection"),
            organization_id=request_body.organization_id,
            cause_id=request_body.cause_id,
            monthly_threshold_cents=request_body.threshold_cents(),
            payment_method_id=request_body.payment_method_id,
            cover_fees=request_body.cover_fees,
            special_message=request_body.special_message,
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Round-up creation rejected: {e}", extra={"request_id": request_id})
        raise http_error(e)
    return round_up_response(config)


@router.get("/round-ups/{config_id}", response_model=RoundUpResponse)
def get_round_up(config_id: str, user_id: str, db: Session = Depends(get_db)):
    try:
        config = get_round_up_config(db, parse_uuid(config_id, "round-up"), user_id)
    except DomainException as e:
        raise http_error(e)
    return round_up_response(config)


@router.post("/round-ups/{config_id}/settle", response_model=SettlementResponse)
async def settle_round_up(
    config_id: str,
    request_body: UserActionRequest,
    request: Request,
    db: Session = Depends(get_db),
    payments: PaymentProcessorClient = Depends(get_payment_client),
    directory: DirectoryClient = Depends(get_directory_client),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Settle everything accumulated so far for the current month"""
    request_id = get_request_id(request)
    config_uuid = parse_uuid(config_id, "round-up")
    try:
        get_round_up_config(db, config_uuid, request_body.user_id)
        result = await trigger_settlement(db, config_uuid, payments, directory, notifier)
    except ProcessorError as e:
        logging.error(f"Settlement charge failed: {e}", extra={"request_id": request_id})
        raise http_error(e)
    except DomainException as e:
        db.rollback()
        raise http_error(e)
    return SettlementResponse(**asdict(result))


@router.post("/round-ups/{config_id}/switch-charity", response_model=RoundUpResponse)
async def switch_round_up_charity(
    config_id: str,
    request_body: SwitchCharityRequest,
    db: Session = Depends(get_db),
    directory: DirectoryClient = Depends(get_directory_client),
):
    """429 with `days_remaining` while the switch cooldown is active"""
    try:
        config = await switch_charity(
            db,
            directory,
            parse_uuid(config_id, "round-up"),
            request_body.organization_id,
            request_body.cause_id,
            user_id=request_body.user_id,
        )
    except DomainException as e:
        db.rollback()
        raise http_error(e)
    return round_up_response(config)


@router.post("/round-ups/{config_id}/pause", response_model=RoundUpResponse)
def pause(config_id: str, request_body: UserActionRequest, db: Session = Depends(get_db)):
    try:
        config = pause_round_up(db, parse_uuid(config_id, "round-up"), request_body.user_id)
    except DomainException as e:
        db.rollback()
        raise http_error(e)
    return round_up_response(config)


@router.post("/round-ups/{config_id}/resume", response_model=RoundUpResponse)
def resume(config_id: str, request_body: UserActionRequest, db: Session = Depends(get_db)):
    try:
        config = resume_round_up(db, parse_uuid(config_id, "round-up"), request_body.user_id)
    except DomainException as e:
        db.rollback()
        raise http_error(e)
    return round_up_response(config)


@router.post("/round-ups/{config_id}/cancel", response_model=RoundUpResponse)
async def cancel(
    config_id: str,
    request_body: UserActionRequest,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Cancellation is terminal; accumulated balances are kept for history"""
    try:
        config = await cancel_round_up(
            db, parse_uuid(config_id, "round-up"), request_body.user_id, notifier=notifier
        )
    except DomainException as e:
        db.rollback()
        raise http_error(e)
    return round_up_response(config)
