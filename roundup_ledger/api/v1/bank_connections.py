"""/v1/bank-connections - linking, revocation, sync and direct ingestion"""

import logging
from dataclasses import asdict
from typing import Callable
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from roundup_ledger.api.v1.schemas import (
    BankConnectionResponse,
    IngestionResponse,
    IngestTransactionsRequest,
    LinkBankAccountRequest,
    SettlementResponse,
    UserActionRequest,
)
from roundup_ledger.api.v1.errors import http_error, parse_uuid
from roundup_ledger.api.dependencies import (
    get_aggregator_factory,
    get_directory_client,
    get_notification_client,
    get_payment_client,
    get_request_id,
    get_token_encryption,
)
from roundup_ledger.domain.exceptions import DomainException
from roundup_ledger.domain.models import IngestionResult
from roundup_ledger.infrastructure.clients.bank import AggregatorClient
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.database.models import BankConnection
from roundup_ledger.infrastructure.database.repositories import BankConnectionRepository
from roundup_ledger.infrastructure.database.session import get_db
from roundup_ledger.infrastructure.security.encryption import TokenEncryption
from roundup_ledger.services.connections import link_bank_account, revoke_consent, sync_connection
from roundup_ledger.services.ledger import ingest_provider_transactions

router = APIRouter()


def connection_response(connection: BankConnection) -> BankConnectionResponse:
    return BankConnectionResponse(
        id=str(connection.id),
        user_id=connection.user_id,
        provider=connection.provider,
        provider_account_id=connection.provider_account_id,
        account_name=connection.account_name,
        institution_name=connection.institution_name,
        consent_status=connection.consent_status,
        is_active=connection.is_active,
        error_code=connection.error_code,
        status_reason=connection.status_reason,
        last_synced_at=connection.last_synced_at,
    )


def ingestion_response(result: IngestionResult) -> IngestionResponse:
    settlement = SettlementResponse(**asdict(result.settlement)) if result.settlement else None
    return IngestionResponse(
        processed=result.processed,
        duplicates=result.duplicates,
        rejected=result.rejected,
        round_up_cents=result.round_up_cents,
        settlement=settlement,
    )


@router.post("/bank-connections", response_model=BankConnectionResponse, status_code=201)
async def link_account(
    request_body: LinkBankAccountRequest,
    request: Request,
    db: Session = Depends(get_db),
    aggregator_factory: Callable[[str], AggregatorClient] = Depends(get_aggregator_factory),
    tokens: TokenEncryption = Depends(get_token_encryption),
):
    """Exchange a consent artifact and store the linked account"""
    request_id = get_request_id(request)
    try:
        connection = await link_bank_account(
            db,
            aggregator_factory(request_body.provider),
            user_id=request_body.user_id,
            auth_artifact=request_body.auth_artifact,
            account_id=request_body.account_id,
            provider_user_id=request_body.provider_user_id,
            tokens=tokens,
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Bank link failed: {e}", extra={"request_id": request_id})
        raise http_error(e)
    return connection_response(connection)


@router.post("/bank-connections/{connection_id}/revoke", response_model=BankConnectionResponse)
async def revoke_connection(
    connection_id: str,
    request_body: UserActionRequest,
    db: Session = Depends(get_db),
    aggregator_factory: Callable[[str], AggregatorClient] = Depends(get_aggregator_factory),
    tokens: TokenEncryption = Depends(get_token_encryption),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Revoke consent; every round-up on the connection is cancelled"""
    connection_uuid = parse_uuid(connection_id, "connection")
    connection = BankConnectionRepository(db).get(connection_uuid)
    if connection is None or connection.user_id != request_body.user_id:
        raise HTTPException(status_code=404, detail="Bank connection not found")
    try:
        connection = await revoke_consent(
            db,
            aggregator_factory(connection.provider),
            request_body.user_id,
            connection_uuid,
            tokens=tokens,
            notifier=notifier,
        )
    except DomainException as e:
        db.rollback()
        raise http_error(e)
    return connection_response(connection)


@router.post("/bank-connections/{connection_id}/sync", response_model=IngestionResponse)
async def sync_account(
    connection_id: str,
    db: Session = Depends(get_db),
    aggregator_factory: Callable[[str], AggregatorClient] = Depends(get_aggregator_factory),
    payments: PaymentProcessorClient = Depends(get_payment_client),
    directory: DirectoryClient = Depends(get_directory_client),
    notifier: NotificationClient = Depends(get_notification_client),
    tokens: TokenEncryption = Depends(get_token_encryption),
):
    """Pull and ingest transactions since the last sync"""
    connection_uuid = parse_uuid(connection_id, "connection")
    connection = BankConnectionRepository(db).get(connection_uuid)
    if connection is None:
        raise HTTPException(status_code=404, detail="Bank connection not found")
    try:
        result = await sync_connection(
            db,
            aggregator_factory(connection.provider),
            connection_uuid,
            payments,
            directory,
            notifier,
            tokens=tokens,
        )
    except DomainException as e:
        db.rollback()
        raise http_error(e)
    return ingestion_response(result)


@router.post("/bank-connections/{connection_id}/transactions", response_model=IngestionResponse)
async def ingest_transactions(
    connection_id: str,
    request_body: IngestTransactionsRequest,
    request: Request,
    db: Session = Depends(get_db),
    payments: PaymentProcessorClient = Depends(get_payment_client),
    directory: DirectoryClient = Depends(get_directory_client),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Ingest provider-shaped transactions for a connection.

    Safe to repeat: already stored transaction ids are counted as duplicates.
    """
    request_id = get_request_id(request)
    connection_uuid = parse_uuid(connection_id, "connection")
    try:
        result = await ingest_provider_transactions(
            db, connection_uuid, request_body.transactions, payments, directory, notifier
        )
    except DomainException as e:
        db.rollback()
        logging.warning(f"Ingestion rejected: {e}", extra={"request_id": request_id})
        raise http_error(e)
    return ingestion_response(result)
