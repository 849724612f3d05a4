"""Dependency injection for FastAPI endpoints"""

from typing import Awaitable, Callable
from fastapi import Request
from roundup_ledger.infrastructure.clients.bank import AggregatorClient, get_aggregator_client
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient
from roundup_ledger.infrastructure.security.encryption import TokenEncryption
from roundup_ledger.jobs.runner import sync_connection_job


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_aggregator_factory() -> Callable[[str], AggregatorClient]:
    """Provide a provider-name -> aggregator client factory"""
    return get_aggregator_client


def get_payment_client() -> PaymentProcessorClient:
    return PaymentProcessorClient()


def get_directory_client() -> DirectoryClient:
    return DirectoryClient()


def get_notification_client() -> NotificationClient:
    return NotificationClient()


def get_token_encryption() -> TokenEncryption:
    return TokenEncryption()


def get_sync_scheduler() -> Callable[[str], Awaitable[None]]:
    """Background job run for each connection a transactions webhook points at"""
    return sync_connection_job
