"""Job entry points shared by the CLI and API background tasks; each opens its own session"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator

from sqlalchemy.orm import Session

from roundup_ledger.domain.exceptions import DomainException, NotFound
from roundup_ledger.domain.models import IngestionResult
from roundup_ledger.infrastructure.clients.bank import get_aggregator_client
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.database.repositories import BankConnectionRepository
from roundup_ledger.infrastructure.database.session import SessionLocal
from roundup_ledger.services.connections import sync_connection
from roundup_ledger.services.settlement import recover_stale_settlements, run_month_end_sweep

logger = logging.getLogger(__name__)


@contextmanager
def session_scope() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def sync_one(connection_id: str) -> IngestionResult:
    """
    Raises:
        NotFound: Unknown connection
        InvalidState: Connection is not active
        AggregatorError: Provider unavailable
    """
    with session_scope() as db:
        connection = BankConnectionRepository(db).get(connection_id)
        if connection is None:
            raise NotFound("Bank connection not found")
        return await sync_connection(
            db,
            get_aggregator_client(connection.provider),
            connection_id,
            PaymentProcessorClient(),
            DirectoryClient(),
            NotificationClient(),
        )


async def sync_connection_job(connection_id: str) -> None:
    """Background variant of `sync_one`: domain errors are logged, a webhook retry or the next sync picks up"""
    try:
        result = await sync_one(connection_id)
    except DomainException as e:
        logger.warning(
            "Background sync failed",
            extra={"bank_connection_id": connection_id, "error": str(e), "error_type": type(e).__name__},
        )
        return
    logger.info("Background sync finished", extra={"bank_connection_id": connection_id, "processed": result.processed})


async def month_end_sweep() -> Dict[str, int]:
    with session_scope() as db:
        return await run_month_end_sweep(db, PaymentProcessorClient(), DirectoryClient(), NotificationClient())


async def recover_settlements() -> Dict[str, int]:
    with session_scope() as db:
        return await recover_stale_settlements(db, PaymentProcessorClient(), NotificationClient())
