"""Notification webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any
from roundup_ledger.config import settings
from roundup_ledger.infrastructure.observability.metrics import (
    notification_latency_histogram,
    notification_failure_counter,
)


class NotificationClient:
    """Client for sending user-facing events to the notification service"""

    def __init__(self, webhook_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = settings.notification_max_retries
        self.backoff_base = settings.notification_backoff_base
        self.transport = transport

    async def send(self, event: str, user_id: str, payload: Dict[str, Any]) -> None:
        """
        Deliver one notification with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on 5xx errors and network failures; 4xx is final
        - Tracks latency histogram and failure counter

        Raises:
            httpx.HTTPError: after the final failed attempt
        """
        body = {"event": event, "user_id": user_id, **payload}
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=body,
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    notification_failure_counter.inc()

                    client_error = isinstance(e, httpx.HTTPStatusError) and e.response.status_code < 500
                    if client_error or attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
