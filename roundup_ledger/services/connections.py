"""Bank connection lifecycle: linking, consent webhooks, revocation and background sync"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roundup_ledger.domain.connection_state import TERMINAL_STATES, allows_ingestion, transition
from roundup_ledger.domain.events import EventKind
from roundup_ledger.domain.exceptions import AggregatorError, InvalidState, NotFound
from roundup_ledger.domain.models import ConnectionEvent, ConsentStatus, IngestionResult, ProviderAccount
from roundup_ledger.infrastructure.clients.bank import AggregatorClient
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.database.models import BankConnection
from roundup_ledger.infrastructure.database.repositories import BankConnectionRepository, RoundUpConfigRepository
from roundup_ledger.infrastructure.observability.logging import log_connection_transition
from roundup_ledger.infrastructure.observability.metrics import connection_transition_counter, webhook_event_counter
from roundup_ledger.infrastructure.security.encryption import TokenEncryption
from roundup_ledger.services.ledger import cancel_configs_for_connection, ingest_provider_transactions
from roundup_ledger.services.notify import (
    CONNECTION_CLOSED,
    CONNECTION_ERROR,
    ROUND_UP_CANCELLED,
    Notification,
    deliver_notifications,
)
from roundup_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

TRANSACTIONAL_ACCOUNT_TYPES = ("checking", "transaction", "everyday", "debit")

# Re-read a few days behind the sync marker so late-posting transactions are not missed
SYNC_OVERLAP_DAYS = 3


@dataclass
class ConnectionWebhookResult:
    """What a connection webhook changed"""

    event_kind: str
    transitioned: List[str] = field(default_factory=list)
    to_sync: List[str] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)


def _closure_notifications(connection: BankConnection, cancelled: list, reason: Optional[str]) -> List[Notification]:
    """Connection-level notice first, then one per cancelled round-up"""
    notifications = [
        Notification(
            CONNECTION_CLOSED,
            connection.user_id,
            {"bank_connection_id": str(connection.id), "state": connection.consent_status, "reason": reason},
        )
    ]
    for config in cancelled:
        notifications.append(
            Notification(ROUND_UP_CANCELLED, connection.user_id, {"round_up_config_id": str(config.id), "reason": reason})
        )
    return notifications


def _pick_account(accounts: List[ProviderAccount], account_id: Optional[str]) -> ProviderAccount:
    if not accounts:
        raise NotFound("No accounts available on this bank connection")
    if account_id:
        for account in accounts:
            if account.account_id == account_id:
                return account
        raise NotFound("Account not found on this bank connection")
    for account in accounts:
        if (account.account_type or "").lower() in TRANSACTIONAL_ACCOUNT_TYPES:
            return account
    return accounts[0]


def _credential(connection: BankConnection, tokens: TokenEncryption) -> str:
    """Plaid reads with the item access token, Basiq with the aggregator user id"""
    return tokens.decrypt(connection.access_token_encrypted) or connection.provider_user_id


async def link_bank_account(
    db: Session,
    aggregator: AggregatorClient,
    user_id: str,
    auth_artifact: str,
    account_id: Optional[str] = None,
    provider_user_id: Optional[str] = None,
    tokens: Optional[TokenEncryption] = None,
) -> BankConnection:
    """
    Exchange a consent artifact for a stored, active connection.

    Linking an account that already has an active connection for this user
    returns the existing record.

    Raises:
        AggregatorError: Exchange or account listing failed
        NotFound: The requested account is not part of the consent
    """
    tokens = tokens or TokenEncryption()
    provider = aggregator.provider
    item = await aggregator.exchange_auth_artifact(auth_artifact, provider_user_id)
    accounts = await aggregator.list_accounts(item.access_token or item.user_ref)
    account = _pick_account(accounts, account_id)

    repo = BankConnectionRepository(db)
    existing = repo.get_active_for_account(user_id, provider, account.account_id)
    if existing is not None:
        logger.info("Bank account already linked", extra={"bank_connection_id": str(existing.id)})
        return existing

    connection = repo.create_connection(
        user_id=user_id,
        provider=provider,
        provider_connection_id=item.connection_id,
        provider_account_id=account.account_id,
        access_token_encrypted=tokens.encrypt(item.access_token),
        provider_user_id=item.user_ref,
        account_name=account.name,
        account_type=account.account_type,
        institution_name=account.institution_name or item.institution_name,
    )
    try:
        db.commit()
    except IntegrityError:
        # Concurrent link of the same account won the unique active key
        db.rollback()
        existing = repo.get_active_for_account(user_id, provider, account.account_id)
        if existing is None:
            raise
        return existing

    logger.info(
        "Bank account linked",
        extra={"bank_connection_id": str(connection.id), "provider": provider, "user_id": user_id},
    )
    return connection


def _match_connections(repo: BankConnectionRepository, event: ConnectionEvent) -> List[BankConnection]:
    if event.kind == EventKind.USER_DELETED:
        return repo.find_by_provider_user(event.provider, event.user_ref) if event.user_ref else []
    if event.kind == EventKind.ACCOUNT_UPDATED and event.account_ref:
        matches = repo.find_by_provider_account(event.provider, event.account_ref)
        if event.connection_ref:
            matches = [c for c in matches if c.provider_connection_id == event.connection_ref]
        return matches
    if not event.connection_ref:
        return []
    return repo.find_by_provider_connection(event.provider, event.connection_ref)


async def handle_connection_webhook(db: Session, event: ConnectionEvent) -> ConnectionWebhookResult:
    """
    Apply a normalized aggregator event to the connections it refers to.

    Unknown, malformed or unmatched events are logged and ignored. For
    transactions.updated the active connections to sync are returned and
    nothing changes state. User notifications are returned on the result for
    the caller to deliver after responding.
    """
    webhook_event_counter.labels(source=event.provider, kind=event.kind).inc()
    result = ConnectionWebhookResult(event_kind=event.kind)

    if event.kind == EventKind.UNKNOWN:
        logger.info("Ignoring aggregator event", extra={"provider": event.provider, "reason": event.reason})
        return result

    repo = BankConnectionRepository(db)
    connections = _match_connections(repo, event)
    if not connections:
        logger.warning(
            "Aggregator event matched no connection",
            extra={"provider": event.provider, "event_kind": event.kind, "connection_ref": event.connection_ref},
        )
        return result

    if event.kind == EventKind.TRANSACTIONS_UPDATED:
        result.to_sync = [str(c.id) for c in connections if c.is_active and allows_ingestion(c.consent_status)]
        return result

    for connection in connections:
        previous = connection.consent_status
        step = transition(previous, event)
        if step is None:
            continue

        cancelled = []
        if step.cancels_round_ups:
            cancelled = cancel_configs_for_connection(db, connection, step.reason)
            repo.deactivate(connection, step.new_state, step.reason, step.error_code)
        else:
            connection.consent_status = step.new_state
            connection.error_code = step.error_code
            connection.status_reason = step.reason
        db.commit()

        result.transitioned.append(str(connection.id))
        connection_transition_counter.labels(state=step.new_state).inc()
        log_connection_transition(str(connection.id), previous, step.new_state, event.kind, step.reason)

        if step.cancels_round_ups:
            result.notifications.extend(_closure_notifications(connection, cancelled, step.reason))
        else:
            result.notifications.append(
                Notification(
                    CONNECTION_ERROR,
                    connection.user_id,
                    {"bank_connection_id": str(connection.id), "error_code": step.error_code, "reason": step.reason},
                )
            )

    return result


async def revoke_consent(
    db: Session,
    aggregator: AggregatorClient,
    user_id: str,
    bank_connection_id,
    tokens: Optional[TokenEncryption] = None,
    notifier: Optional[NotificationClient] = None,
) -> BankConnection:
    """
    User-initiated revocation. Round-ups on the connection are cancelled first;
    removing the item at the aggregator is best effort.

    Raises:
        NotFound: Unknown connection or not owned by the user
    """
    tokens = tokens or TokenEncryption()
    repo = BankConnectionRepository(db)
    connection = repo.get(bank_connection_id)
    if connection is None or connection.user_id != user_id:
        raise NotFound("Bank connection not found")
    if connection.consent_status in TERMINAL_STATES:
        logger.info("Bank connection already closed", extra={"bank_connection_id": str(connection.id)})
        return connection

    reason = "Consent revoked by user"
    previous = connection.consent_status
    cancelled = cancel_configs_for_connection(db, connection, reason)
    repo.deactivate(connection, ConsentStatus.REVOKED, reason)
    db.commit()
    connection_transition_counter.labels(state=ConsentStatus.REVOKED).inc()
    log_connection_transition(str(connection.id), previous, ConsentStatus.REVOKED, "user.revoked", reason)

    siblings = [
        c for c in repo.find_by_provider_connection(connection.provider, connection.provider_connection_id)
        if c.is_active
    ]
    if not siblings:
        try:
            await aggregator.remove_connection(_credential(connection, tokens), connection.provider_connection_id)
        except (AggregatorError, ValueError) as e:
            logger.warning(
                "Aggregator connection removal failed",
                extra={"bank_connection_id": str(connection.id), "error": str(e)},
            )

    await deliver_notifications(notifier, _closure_notifications(connection, cancelled, reason))
    return connection


async def sync_connection(
    db: Session,
    aggregator: AggregatorClient,
    bank_connection_id,
    payments: PaymentProcessorClient,
    directory: DirectoryClient,
    notifier: Optional[NotificationClient] = None,
    tokens: Optional[TokenEncryption] = None,
    now: Optional[datetime] = None,
) -> IngestionResult:
    """
    Pull transactions since the last sync marker and ingest them.

    Raises:
        NotFound: Unknown connection
        InvalidState: Connection is not active
        AggregatorError: Transaction listing failed; the marker is not advanced
    """
    now = now or utcnow()
    tokens = tokens or TokenEncryption()
    repo = BankConnectionRepository(db)
    connection = repo.get(bank_connection_id)
    if connection is None:
        raise NotFound("Bank connection not found")
    if not connection.is_active or not allows_ingestion(connection.consent_status):
        raise InvalidState(f"Bank connection is {connection.consent_status}")

    since = None
    if connection.last_synced_at is not None:
        since = connection.last_synced_at.date() - timedelta(days=SYNC_OVERLAP_DAYS)
    payloads = await aggregator.list_transactions(
        _credential(connection, tokens), connection.provider_account_id, since
    )

    result = IngestionResult()
    config = RoundUpConfigRepository(db).get_active_for_connection(connection.id)
    if config is not None and config.enabled:
        result = await ingest_provider_transactions(
            db, connection.id, payloads, payments, directory, notifier, now=now
        )
    else:
        logger.info("No enabled round-up; sync marker advanced only", extra={"bank_connection_id": str(connection.id)})

    connection = repo.get(connection.id)
    connection.last_synced_at = now
    connection.last_sync_cursor = now.date().isoformat()
    db.commit()
    return result
