"""Unit tests for outbound HTTP clients"""

import httpx
import json
import pytest
from roundup_ledger.domain.exceptions import (
    AggregatorError,
    ChargeOutcomeUnknown,
    DirectoryError,
    NotFound,
    ProcessorError,
)
from roundup_ledger.infrastructure.clients.bank import BasiqClient, PlaidClient, get_aggregator_client
from roundup_ledger.infrastructure.clients.directory import DirectoryClient
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.clients.payments import PaymentProcessorClient


def transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def payment_client(handler) -> PaymentProcessorClient:
    return PaymentProcessorClient(base_url="http://payments.test", api_key="sk_test", transport=transport(handler))


async def charge(client: PaymentProcessorClient):
    return await client.create_charge("pm_1", 1322, "AUD", {"donation_id": "d_1"}, idempotency_key="d_1")


async def test_create_charge_sends_idempotency_key():
    """Test request shape and the parsed result"""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "pi_1", "status": "processing"})

    result = await charge(payment_client(handler))

    assert result.charge_id == "pi_1"
    assert seen["headers"]["Idempotency-Key"] == "d_1"
    assert seen["headers"]["Authorization"] == "Bearer sk_test"
    assert seen["body"]["amount"] == 1322
    assert seen["body"]["currency"] == "aud"
    assert seen["body"]["metadata"] == {"donation_id": "d_1"}


async def test_create_charge_decline_is_definitive():
    """Test 4xx maps to ProcessorError with the processor's message"""

    def handler(request):
        return httpx.Response(402, json={"error": {"message": "Your card was declined."}})

    with pytest.raises(ProcessorError) as exc:
        await charge(payment_client(handler))

    assert not isinstance(exc.value, ChargeOutcomeUnknown)
    assert "declined" in str(exc.value)


async def test_create_charge_server_error_is_unknown():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(ChargeOutcomeUnknown):
        await charge(payment_client(handler))


async def test_create_charge_timeout_is_unknown():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ChargeOutcomeUnknown):
        await charge(payment_client(handler))


async def test_create_charge_connect_error_is_definitive():
    """Test a request that never reached the processor"""

    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProcessorError) as exc:
        await charge(payment_client(handler))

    assert not isinstance(exc.value, ChargeOutcomeUnknown)


async def test_directory_cause_lookup():
    def handler(request):
        assert request.url.path == "/causes/cause_1"
        return httpx.Response(200, json={"id": "cause_1", "status": "verified", "organization_id": "org_1"})

    client = DirectoryClient(base_url="http://directory.test", transport=transport(handler))
    cause = await client.get_cause("cause_1")

    assert cause.status == "verified"
    assert cause.organization_id == "org_1"


async def test_directory_missing_cause():
    client = DirectoryClient(base_url="http://directory.test", transport=transport(lambda r: httpx.Response(404)))

    with pytest.raises(NotFound):
        await client.get_cause("nope")


async def test_directory_unavailable():
    client = DirectoryClient(base_url="http://directory.test", transport=transport(lambda r: httpx.Response(500)))

    with pytest.raises(DirectoryError):
        await client.get_organization_payout_status("org_1")


async def test_directory_payout_status():
    def handler(request):
        assert request.url.path == "/organizations/org_1/payout-status"
        return httpx.Response(200, json={"receivable": True})

    client = DirectoryClient(base_url="http://directory.test", transport=transport(handler))

    assert await client.get_organization_payout_status("org_1") is True


async def test_plaid_exchange_and_accounts():
    """Test public token exchange and account listing"""

    def handler(request):
        if request.url.path == "/item/public_token/exchange":
            return httpx.Response(200, json={"item_id": "item_1", "access_token": "access-1"})
        return httpx.Response(
            200,
            json={
                "item": {"institution_name": "Bank"},
                "accounts": [{"account_id": "acc_1", "name": "Everyday", "type": "depository", "subtype": "checking"}],
            },
        )

    client = PlaidClient(base_url="http://plaid.test", transport=transport(handler))
    item = await client.exchange_auth_artifact("public-1")
    accounts = await client.list_accounts(item.access_token)

    assert item.connection_id == "item_1"
    assert item.access_token == "access-1"
    assert accounts[0].account_type == "checking"
    assert accounts[0].institution_name == "Bank"


async def test_plaid_transactions_paginate():
    """Test pages are followed until total_transactions is reached"""
    offsets = []

    def handler(request):
        offset = json.loads(request.content)["options"]["offset"]
        offsets.append(offset)
        page = [{"transaction_id": f"tx_{offset + i}"} for i in range(2)]
        return httpx.Response(200, json={"transactions": page, "total_transactions": 4})

    client = PlaidClient(base_url="http://plaid.test", transport=transport(handler))
    transactions = await client.list_transactions("access-1", "acc_1")

    assert len(transactions) == 4
    assert offsets == [0, 2]


async def test_aggregator_errors_mapped():
    """Test HTTP failures surface as AggregatorError"""
    client = PlaidClient(base_url="http://plaid.test", transport=transport(lambda r: httpx.Response(400)))

    with pytest.raises(AggregatorError):
        await client.list_accounts("access-1")


async def test_basiq_token_cached():
    """Test the server token is requested once for several calls"""
    token_calls = []

    def handler(request):
        if request.url.path == "/token":
            token_calls.append(request)
            return httpx.Response(200, json={"access_token": "srv_token"})
        assert request.headers["Authorization"] == "Bearer srv_token"
        return httpx.Response(200, json={"data": [{"id": "a_1", "name": "Everyday", "class": {"type": "transaction"}}]})

    client = BasiqClient(base_url="http://basiq.test", transport=transport(handler))
    await client.list_accounts("u_1")
    accounts = await client.list_accounts("u_1")

    assert len(token_calls) == 1
    assert accounts[0].account_type == "transaction"


async def test_basiq_link_requires_user():
    client = BasiqClient(base_url="http://basiq.test", transport=transport(lambda r: httpx.Response(200, json={})))

    with pytest.raises(AggregatorError):
        await client.exchange_auth_artifact("c_1")


def test_unknown_provider():
    with pytest.raises(ValueError):
        get_aggregator_client("yodlee")


async def test_notification_retries_then_succeeds():
    """Test 5xx is retried with backoff"""
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503 if len(attempts) < 3 else 200)

    client = NotificationClient(webhook_url="http://notify.test/hook", transport=transport(handler))
    client.backoff_base = 0
    await client.send("settlement.completed", "user_1", {"donation_id": "d_1"})

    assert len(attempts) == 3
    assert json.loads(attempts[0].content)["event"] == "settlement.completed"


async def test_notification_client_error_not_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(400)

    client = NotificationClient(webhook_url="http://notify.test/hook", transport=transport(handler))
    client.backoff_base = 0

    with pytest.raises(httpx.HTTPStatusError):
        await client.send("settlement.failed", "user_1", {})

    assert len(attempts) == 1
