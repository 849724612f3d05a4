"""/v1/webhooks - aggregator and payment processor callbacks"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from roundup_ledger.api.v1.schemas import WebhookAck
from roundup_ledger.api.dependencies import get_notification_client, get_request_id, get_sync_scheduler
from roundup_ledger.domain.events import normalize_connection_event, normalize_payment_event
from roundup_ledger.domain.normalizer import BASIQ, PLAID
from roundup_ledger.infrastructure.clients.notifications import NotificationClient
from roundup_ledger.infrastructure.database.session import get_db
from roundup_ledger.infrastructure.observability.metrics import webhook_event_counter
from roundup_ledger.services.connections import handle_connection_webhook
from roundup_ledger.services.notify import deliver_notifications
from roundup_ledger.services.settlement import handle_payment_webhook

router = APIRouter()


async def _json_body(request: Request) -> Optional[Dict[str, Any]]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


async def _connection_webhook(
    provider: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session,
    notifier: NotificationClient,
    schedule_sync: Callable[[str], Awaitable[None]],
) -> WebhookAck:
    payload = await _json_body(request)
    if payload is None:
        logging.warning("Malformed aggregator webhook", extra={"provider": provider, "request_id": get_request_id(request)})
        return WebhookAck(outcome="ignored")

    event = normalize_connection_event(provider, payload)
    result = await handle_connection_webhook(db, event)
    if result.notifications:
        background_tasks.add_task(deliver_notifications, notifier, result.notifications)
    for connection_id in result.to_sync:
        background_tasks.add_task(schedule_sync, connection_id)

    if result.to_sync:
        outcome = "sync_scheduled"
    elif result.transitioned:
        outcome = "applied"
    else:
        outcome = "ignored"
    return WebhookAck(outcome=outcome)


@router.post("/webhooks/plaid", response_model=WebhookAck)
async def plaid_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
    schedule_sync: Callable[[str], Awaitable[None]] = Depends(get_sync_scheduler),
):
    return await _connection_webhook(PLAID, request, background_tasks, db, notifier, schedule_sync)


@router.post("/webhooks/basiq", response_model=WebhookAck)
async def basiq_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
    schedule_sync: Callable[[str], Awaitable[None]] = Depends(get_sync_scheduler),
):
    return await _connection_webhook(BASIQ, request, background_tasks, db, notifier, schedule_sync)


@router.post("/webhooks/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Charge confirmations; re-deliveries and unknown events are acknowledged without effect"""
    payload = await _json_body(request)
    if payload is None:
        logging.warning("Malformed payment webhook", extra={"request_id": get_request_id(request)})
        return WebhookAck(outcome="ignored")

    event = normalize_payment_event(payload)
    webhook_event_counter.labels(source="payments", kind=event.kind).inc()
    result = await handle_payment_webhook(db, event)
    if result.notifications:
        background_tasks.add_task(deliver_notifications, notifier, result.notifications)
    return WebhookAck(outcome=result.outcome)
