"""Payment processor HTTP client"""

import httpx
from typing import Any, Dict
from roundup_ledger.domain.models import ChargeResult
from roundup_ledger.domain.exceptions import ProcessorError, ChargeOutcomeUnknown
from roundup_ledger.infrastructure.observability.metrics import processor_latency_histogram
from roundup_ledger.config import settings


class PaymentProcessorClient:
    """Client for creating off-session charges against a saved payment method"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.payment_api_base
        self.api_key = api_key if api_key is not None else settings.payment_api_key
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def create_charge(
        self,
        payment_method_ref: str,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, Any],
        idempotency_key: str,
    ) -> ChargeResult:
        """
        Request a charge. Never retried here: a repeat with the same
        idempotency key is left to reconciliation.

        Raises:
            ProcessorError: The processor rejected the charge or was never reached
            ChargeOutcomeUnknown: Timeout or 5xx after the request may have been accepted
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with processor_latency_histogram.time():
                    response = await client.post(
                        f"{self.base_url}/charges",
                        json={
                            "payment_method": payment_method_ref,
                            "amount": amount_cents,
                            "currency": currency.lower(),
                            "metadata": metadata,
                            "confirm": True,
                            "off_session": True,
                        },
                        headers={
                            "Authorization": f"Bearer {self.api_key}",
                            "Idempotency-Key": idempotency_key,
                        },
                    )
                response.raise_for_status()
                data = response.json()
                return ChargeResult(charge_id=data["id"], status=data.get("status", "processing"))

            except httpx.ConnectError as e:
                raise ProcessorError(f"Payment processor unreachable: {e}") from e
            except httpx.TimeoutException as e:
                raise ChargeOutcomeUnknown(f"Payment processor timeout after {self.timeout}s") from e
            except httpx.RequestError as e:
                raise ChargeOutcomeUnknown(f"Payment processor connection lost: {e}") from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status >= 500:
                    raise ChargeOutcomeUnknown(f"Payment processor error: {status}") from e
                raise ProcessorError(_decline_reason(e.response)) from e
            except (KeyError, ValueError, TypeError) as e:
                raise ChargeOutcomeUnknown(f"Invalid charge response: {e}") from e


def _decline_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Payment declined: {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or f"Payment declined: {response.status_code}"
    if isinstance(error, str):
        return error
    return f"Payment declined: {response.status_code}"
