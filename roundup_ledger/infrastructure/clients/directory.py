"""Cause and organization directory client"""

import httpx
from typing import Any, Dict
from roundup_ledger.domain.models import CauseInfo
from roundup_ledger.domain.exceptions import DirectoryError, NotFound
from roundup_ledger.config import settings


class DirectoryClient:
    """Read-only lookups of donation destinations"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.directory_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def _get(self, path: str, missing: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(f"{self.base_url}{path}")
                if response.status_code == 404:
                    raise NotFound(missing)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                raise DirectoryError(f"Directory timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise DirectoryError(f"Directory error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise DirectoryError(f"Directory unreachable: {e}") from e
            except ValueError as e:
                raise DirectoryError(f"Invalid directory response: {e}") from e

    async def get_cause(self, cause_id: str) -> CauseInfo:
        """
        Raises:
            NotFound: Unknown cause
            DirectoryError: Directory unavailable or malformed response
        """
        data = await self._get(f"/causes/{cause_id}", "Cause not found")
        try:
            return CauseInfo(
                cause_id=str(data.get("id", cause_id)),
                status=data["status"],
                organization_id=str(data.get("organization_id") or data["organization"]),
            )
        except (KeyError, TypeError) as e:
            raise DirectoryError(f"Invalid cause data: {e}") from e

    async def get_organization_payout_status(self, organization_id: str) -> bool:
        """True when the organization has a connected account able to receive payouts"""
        data = await self._get(f"/organizations/{organization_id}/payout-status", "Organization not found")
        return bool(data.get("receivable"))
