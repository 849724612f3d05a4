"""Bank aggregator HTTP clients (Plaid and Basiq)"""

import httpx
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from roundup_ledger.domain.models import LinkedItem, ProviderAccount
from roundup_ledger.domain.exceptions import AggregatorError
from roundup_ledger.domain.normalizer import PLAID, BASIQ
from roundup_ledger.infrastructure.observability.metrics import aggregator_failures_counter
from roundup_ledger.config import settings

# How far back the first sync of a new connection reaches
INITIAL_SYNC_DAYS = 30


class AggregatorClient:
    """
    Common transport for bank data aggregators.

    `credential` is whatever the provider needs to address a user's data:
    the item access token for Plaid, the aggregator user id for Basiq.
    """

    provider = ""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def exchange_auth_artifact(self, auth_artifact: str, user_ref: Optional[str] = None) -> LinkedItem:
        raise NotImplementedError

    async def list_accounts(self, credential: str) -> List[ProviderAccount]:
        raise NotImplementedError

    async def list_transactions(
        self, credential: str, account_ref: str, since: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def remove_connection(self, credential: str, connection_ref: str) -> None:
        raise NotImplementedError

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Send one request and decode the JSON body.

        Raises:
            AggregatorError: On timeout, network or HTTP errors, or an undecodable response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, f"{self.base_url}{path}", **kwargs)
                response.raise_for_status()
                if not response.content:
                    return {}
                data = response.json()
                if not isinstance(data, dict):
                    raise TypeError(f"expected object, got {type(data).__name__}")
                return data

            except httpx.TimeoutException as e:
                aggregator_failures_counter.labels(provider=self.provider).inc()
                raise AggregatorError(f"{self.provider} API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                aggregator_failures_counter.labels(provider=self.provider).inc()
                raise AggregatorError(f"{self.provider} API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                aggregator_failures_counter.labels(provider=self.provider).inc()
                raise AggregatorError(f"{self.provider} API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                aggregator_failures_counter.labels(provider=self.provider).inc()
                raise AggregatorError(f"Invalid response from {self.provider}: {e}") from e


class PlaidClient(AggregatorClient):
    """Plaid: public token exchange, item-scoped access tokens"""

    provider = PLAID
    page_size = 500
    max_transactions = 2000

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or settings.plaid_api_base, **kwargs)

    def _auth(self) -> Dict[str, str]:
        return {"client_id": settings.plaid_client_id, "secret": settings.plaid_secret}

    async def exchange_auth_artifact(self, auth_artifact: str, user_ref: Optional[str] = None) -> LinkedItem:
        data = await self._request(
            "POST", "/item/public_token/exchange", json={**self._auth(), "public_token": auth_artifact}
        )
        try:
            return LinkedItem(connection_id=data["item_id"], access_token=data["access_token"], user_ref=user_ref)
        except KeyError as e:
            raise AggregatorError(f"Invalid response from plaid: missing {e}") from e

    async def list_accounts(self, credential: str) -> List[ProviderAccount]:
        data = await self._request("POST", "/accounts/get", json={**self._auth(), "access_token": credential})
        institution = (data.get("item") or {}).get("institution_name")
        return [
            ProviderAccount(
                account_id=account["account_id"],
                name=account.get("official_name") or account.get("name") or "",
                account_type=account.get("subtype") or account.get("type"),
                institution_name=institution,
            )
            for account in data.get("accounts", [])
        ]

    async def list_transactions(
        self, credential: str, account_ref: str, since: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        """Paginate /transactions/get for one account, capped at `max_transactions`"""
        end = date.today()
        start = since or end - timedelta(days=INITIAL_SYNC_DAYS)
        collected: List[Dict[str, Any]] = []
        while True:
            data = await self._request(
                "POST",
                "/transactions/get",
                json={
                    **self._auth(),
                    "access_token": credential,
                    "start_date": start.isoformat(),
                    "end_date": end.isoformat(),
                    "options": {
                        "count": self.page_size,
                        "offset": len(collected),
                        "account_ids": [account_ref],
                    },
                },
            )
            page = data.get("transactions", [])
            collected.extend(page)
            total = data.get("total_transactions", len(collected))
            if not page or len(collected) >= total or len(collected) >= self.max_transactions:
                return collected

    async def remove_connection(self, credential: str, connection_ref: str) -> None:
        await self._request("POST", "/item/remove", json={**self._auth(), "access_token": credential})


class BasiqClient(AggregatorClient):
    """Basiq: server-scoped bearer token, data addressed by aggregator user id"""

    provider = BASIQ
    api_version = "3.0"

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or settings.basiq_api_base, **kwargs)
        self._token: Optional[str] = None

    async def _server_token(self) -> str:
        if self._token is None:
            data = await self._request(
                "POST",
                "/token",
                data={"scope": "SERVER_ACCESS"},
                headers={"Authorization": f"Basic {settings.basiq_api_key}", "basiq-version": self.api_version},
            )
            try:
                self._token = data["access_token"]
            except KeyError as e:
                raise AggregatorError("Basiq token response missing access_token") from e
        return self._token

    async def _authorized(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        token = await self._server_token()
        headers = {"Authorization": f"Bearer {token}", "basiq-version": self.api_version}
        return await self._request(method, path, headers=headers, **kwargs)

    async def exchange_auth_artifact(self, auth_artifact: str, user_ref: Optional[str] = None) -> LinkedItem:
        """`auth_artifact` is the connection id reported back by the consent flow"""
        if not user_ref:
            raise AggregatorError("Basiq linking requires the aggregator user id")
        data = await self._authorized("GET", f"/users/{user_ref}/connections/{auth_artifact}")
        institution = (data.get("institution") or {}).get("name")
        return LinkedItem(
            connection_id=data.get("id", auth_artifact),
            access_token=None,
            user_ref=user_ref,
            institution_name=institution,
        )

    async def list_accounts(self, credential: str) -> List[ProviderAccount]:
        data = await self._authorized("GET", f"/users/{credential}/accounts")
        return [
            ProviderAccount(
                account_id=account["id"],
                name=account.get("name") or "",
                account_type=(account.get("class") or {}).get("type"),
                institution_name=account.get("institution"),
            )
            for account in data.get("data", [])
        ]

    async def list_transactions(
        self, credential: str, account_ref: str, since: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        start = since or date.today() - timedelta(days=INITIAL_SYNC_DAYS)
        data = await self._authorized(
            "GET",
            f"/users/{credential}/transactions",
            params={
                "limit": 500,
                "filter": f"account.id.eq('{account_ref}'),transaction.postDate.gteq('{start.isoformat()}')",
            },
        )
        return list(data.get("data", []))

    async def remove_connection(self, credential: str, connection_ref: str) -> None:
        await self._authorized("DELETE", f"/users/{credential}/connections/{connection_ref}")


def get_aggregator_client(provider: str) -> AggregatorClient:
    """
    Raises:
        ValueError: unknown provider name
    """
    if provider == PLAID:
        return PlaidClient()
    if provider == BASIQ:
        return BasiqClient()
    raise ValueError(f"Unsupported provider: {provider}")
