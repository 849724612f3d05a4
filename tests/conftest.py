"""Pytest fixtures for testing"""

import pytest
from datetime import datetime
from typing import Any, Callable, Dict, Generator
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from roundup_ledger.api.dependencies import (
    get_aggregator_factory,
    get_directory_client,
    get_notification_client,
    get_payment_client,
    get_sync_scheduler,
)
from roundup_ledger.api.main import create_app
from roundup_ledger.domain.models import CauseInfo, ChargeResult, LinkedItem, ProviderAccount
from roundup_ledger.infrastructure.clients.bank import AggregatorClient
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.database.models import Base, BankConnection, RoundUpConfig
from roundup_ledger.infrastructure.database.repositories import BankConnectionRepository, RoundUpConfigRepository
from roundup_ledger.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let SQLAlchemy emit it
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


NOW = datetime(2026, 10, 15, 12, 0, 0)
ORG_ID = "org_1"
CAUSE_ID = "cause_1"


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def payments() -> AsyncMock:
    """Payment processor that accepts every charge"""
    client = AsyncMock(spec=PaymentProcessorClient)
    client.create_charge.return_value = ChargeResult(charge_id="pi_test_1", status="processing")
    return client


@pytest.fixture
def directory() -> AsyncMock:
    """Directory where every cause is verified and belongs to ORG_ID"""
    client = AsyncMock(spec=DirectoryClient)
    client.get_cause.side_effect = lambda cause_id: CauseInfo(
        cause_id=cause_id, status="verified", organization_id=ORG_ID
    )
    client.get_organization_payout_status.return_value = True
    return client


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock(spec=NotificationClient)


@pytest.fixture
def aggregator() -> AsyncMock:
    """Plaid-like aggregator with one checking and one savings account"""
    client = AsyncMock(spec=AggregatorClient)
    client.provider = "plaid"
    client.exchange_auth_artifact.return_value = LinkedItem(
        connection_id="item_1", access_token="access-sandbox-1", user_ref=None
    )
    client.list_accounts.return_value = [
        ProviderAccount(account_id="acc_savings", name="Saver", account_type="savings", institution_name="Bank"),
        ProviderAccount(account_id="acc_checking", name="Everyday", account_type="checking", institution_name="Bank"),
    ]
    client.list_transactions.return_value = []
    return client


@pytest.fixture
def sync_scheduler() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(
    db: Session,
    payments: AsyncMock,
    directory: AsyncMock,
    notifier: AsyncMock,
    aggregator: AsyncMock,
    sync_scheduler: AsyncMock,
) -> TestClient:
    """Create FastAPI test client with test database and fake external services"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_client] = lambda: payments
    app.dependency_overrides[get_directory_client] = lambda: directory
    app.dependency_overrides[get_notification_client] = lambda: notifier
    app.dependency_overrides[get_aggregator_factory] = lambda: (lambda provider: aggregator)
    app.dependency_overrides[get_sync_scheduler] = lambda: sync_scheduler
    return TestClient(app)


@pytest.fixture
def make_connection(db: Session) -> Callable[..., BankConnection]:
    """Persist an active bank connection"""

    def _make(
        user_id: str = "user_1",
        provider: str = "plaid",
        connection_ref: str = "item_1",
        account_id: str = "acc_checking",
        provider_user_id: str | None = None,
    ) -> BankConnection:
        connection = BankConnectionRepository(db).create_connection(
            user_id=user_id,
            provider=provider,
            provider_connection_id=connection_ref,
            provider_account_id=account_id,
            access_token_encrypted=None,
            provider_user_id=provider_user_id,
        )
        db.commit()
        return connection

    return _make


@pytest.fixture
def make_round_up(db: Session, make_connection) -> Callable[..., RoundUpConfig]:
    """Persist an active round-up config (and a connection unless one is given)"""

    def _make(
        connection: BankConnection | None = None,
        threshold_cents: int | None = 1000,
        cover_fees: bool = True,
        now: datetime = NOW,
    ) -> RoundUpConfig:
        connection = connection or make_connection()
        config = RoundUpConfigRepository(db).create_config(
            user_id=connection.user_id,
            bank_connection_id=connection.id,
            organization_id=ORG_ID,
            cause_id=CAUSE_ID,
            payment_method_id="pm_card_1",
            monthly_threshold_cents=threshold_cents,
            cover_fees=cover_fees,
            now=now,
        )
        db.commit()
        return config

    return _make


@pytest.fixture
def plaid_txn() -> Callable[..., Dict[str, Any]]:
    """Plaid transaction payload builder"""

    def _make(transaction_id: str, amount: str, **overrides) -> Dict[str, Any]:
        payload = {
            "transaction_id": transaction_id,
            "amount": amount,
            "iso_currency_code": "AUD",
            "date": "2026-10-14",
            "name": "Corner Cafe",
            "merchant_name": "Corner Cafe",
            "pending": False,
            "category": ["Food and Drink", "Coffee Shop"],
            "transaction_type": "place",
        }
        payload.update(overrides)
        return payload

    return _make
