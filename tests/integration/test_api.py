"""Integration tests for API endpoints"""

from fastapi.testclient import TestClient
from roundup_ledger.domain.exceptions import AggregatorError, ProcessorError
from roundup_ledger.infrastructure.database.models import RoundUpTransaction


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "roundup_transactions_total" in response.text
    assert "roundup_settlements_total" in response.text


def test_request_id_propagated(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_link_bank_account(client: TestClient):
    """Test POST /v1/bank-connections"""
    response = client.post(
        "/v1/bank-connections",
        json={"user_id": "user_1", "provider": "plaid", "auth_artifact": "public-sandbox-1"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["provider_account_id"] == "acc_checking"
    assert data["consent_status"] == "active"
    assert "access_token" not in str(data)


def test_link_unsupported_provider(client: TestClient):
    response = client.post(
        "/v1/bank-connections",
        json={"user_id": "user_1", "provider": "yodlee", "auth_artifact": "x"},
    )
    assert response.status_code == 422


def test_create_round_up(client: TestClient, make_connection):
    """Test POST /v1/round-ups with a dollar threshold"""
    connection = make_connection()

    response = client.post(
        "/v1/round-ups",
        json={
            "user_id": "user_1",
            "bank_connection_id": str(connection.id),
            "organization_id": "org_1",
            "cause_id": "cause_1",
            "payment_method_id": "pm_card_1",
            "monthly_threshold": "10.00",
        },
    )

    assert response.status_code == 201
    data = response.json()
    assert data["monthly_threshold_cents"] == 1000
    assert data["status"] == "pending"
    assert data["enabled"] is True


def test_create_round_up_errors(client: TestClient, make_connection):
    """Test 422 for a threshold below the minimum, 409 for a second round-up, 400 for a bad id"""
    connection = make_connection()
    body = {
        "user_id": "user_1",
        "bank_connection_id": str(connection.id),
        "organization_id": "org_1",
        "cause_id": "cause_1",
        "payment_method_id": "pm_card_1",
        "monthly_threshold": "no-limit",
    }

    assert client.post("/v1/round-ups", json={**body, "monthly_threshold": "2.99"}).status_code == 422

    created = client.post("/v1/round-ups", json=body)
    assert created.status_code == 201
    assert created.json()["monthly_threshold_cents"] is None

    assert client.post("/v1/round-ups", json=body).status_code == 409
    assert client.post("/v1/round-ups", json={**body, "bank_connection_id": "not-a-uuid"}).status_code == 400


def test_ingest_transactions(client: TestClient, db, make_round_up, plaid_txn):
    """Test POST /v1/bank-connections/{id}/transactions is safe to repeat"""
    config = make_round_up()
    url = f"/v1/bank-connections/{config.bank_connection_id}/transactions"
    body = {"transactions": [plaid_txn("tx_1", "4.60"), plaid_txn("tx_2", "-10.00")]}

    first = client.post(url, json=body)
    second = client.post(url, json=body)

    assert first.status_code == 200
    assert first.json()["processed"] == 1
    assert first.json()["round_up_cents"] == 40
    assert first.json()["rejected"] == {"credit": 1}
    assert second.json()["duplicates"] == 1
    assert db.query(RoundUpTransaction).count() == 1

    round_up = client.get(f"/v1/round-ups/{config.id}", params={"user_id": "user_1"}).json()
    assert round_up["current_month_total_cents"] == 40


def test_ingest_without_round_up(client: TestClient, make_connection, plaid_txn):
    connection = make_connection()

    response = client.post(
        f"/v1/bank-connections/{connection.id}/transactions", json={"transactions": [plaid_txn("tx_1", "4.60")]}
    )

    assert response.status_code == 409


def test_settle_round_up(client: TestClient, make_round_up, plaid_txn):
    """Test POST /v1/round-ups/{id}/settle"""
    config = make_round_up(threshold_cents=None)
    client.post(
        f"/v1/bank-connections/{config.bank_connection_id}/transactions",
        json={"transactions": [plaid_txn("tx_1", "4.60"), plaid_txn("tx_2", "3.25")]},
    )

    response = client.post(f"/v1/round-ups/{config.id}/settle", json={"user_id": "user_1"})

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "initiated"
    assert data["base_amount_cents"] == 115
    assert data["transaction_count"] == 2
    assert data["charge_id"] == "pi_test_1"


def test_settle_declined(client: TestClient, make_round_up, plaid_txn, payments):
    """Test a declined charge answers 502 and leaves the round-ups unsettled"""
    config = make_round_up(threshold_cents=None)
    client.post(
        f"/v1/bank-connections/{config.bank_connection_id}/transactions",
        json={"transactions": [plaid_txn("tx_1", "4.60")]},
    )
    payments.create_charge.side_effect = ProcessorError("Your card was declined.")

    response = client.post(f"/v1/round-ups/{config.id}/settle", json={"user_id": "user_1"})

    assert response.status_code == 502
    assert response.json()["detail"] == "payment failed, will retry"
    round_up = client.get(f"/v1/round-ups/{config.id}", params={"user_id": "user_1"}).json()
    assert round_up["status"] == "failed"
    assert round_up["current_month_total_cents"] == 40


def test_switch_charity_cooldown(client: TestClient, make_round_up):
    """Test the second switch inside the cooldown answers 429 with days remaining"""
    config = make_round_up()
    url = f"/v1/round-ups/{config.id}/switch-charity"
    body = {"user_id": "user_1", "organization_id": "org_1", "cause_id": "cause_2"}

    first = client.post(url, json=body)
    second = client.post(url, json={**body, "cause_id": "cause_3"})

    assert first.status_code == 200
    assert first.json()["cause_id"] == "cause_2"
    assert second.status_code == 429
    assert second.json()["detail"]["days_remaining"] == 30


def test_pause_resume_cancel(client: TestClient, make_round_up):
    """Test lifecycle endpoints and 409 once cancelled"""
    config = make_round_up()
    base = f"/v1/round-ups/{config.id}"
    user = {"user_id": "user_1"}

    assert client.post(f"{base}/pause", json=user).json()["enabled"] is False
    assert client.post(f"{base}/resume", json=user).json()["enabled"] is True

    cancelled = client.post(f"{base}/cancel", json=user)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.post(f"{base}/resume", json=user).status_code == 409


def test_round_up_not_found(client: TestClient, make_round_up):
    config = make_round_up()
    fake_uuid = "00000000-0000-0000-0000-000000000000"

    assert client.get(f"/v1/round-ups/{fake_uuid}", params={"user_id": "user_1"}).status_code == 404
    assert client.get(f"/v1/round-ups/{config.id}", params={"user_id": "user_2"}).status_code == 404


def test_revoke_connection(client: TestClient, make_round_up):
    """Test POST /v1/bank-connections/{id}/revoke cancels the round-up"""
    config = make_round_up()
    url = f"/v1/bank-connections/{config.bank_connection_id}/revoke"

    assert client.post(url, json={"user_id": "user_2"}).status_code == 404

    response = client.post(url, json={"user_id": "user_1"})
    assert response.status_code == 200
    assert response.json()["consent_status"] == "revoked"
    assert response.json()["is_active"] is False

    round_up = client.get(f"/v1/round-ups/{config.id}", params={"user_id": "user_1"}).json()
    assert round_up["status"] == "cancelled"


def test_sync_connection(client: TestClient, make_round_up, aggregator, plaid_txn):
    config = make_round_up()
    aggregator.list_transactions.return_value = [plaid_txn("tx_1", "4.60")]

    response = client.post(f"/v1/bank-connections/{config.bank_connection_id}/sync")

    assert response.status_code == 200
    assert response.json()["processed"] == 1


def test_sync_aggregator_down(client: TestClient, make_round_up, aggregator):
    config = make_round_up()
    aggregator.list_transactions.side_effect = AggregatorError("plaid API timeout")

    response = client.post(f"/v1/bank-connections/{config.bank_connection_id}/sync")

    assert response.status_code == 503
