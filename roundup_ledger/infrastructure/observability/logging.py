"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from roundup_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_ingestion(
    bank_connection_id: str,
    round_up_config_id: Optional[str],
    processed: int,
    duplicates: int,
    rejected: Dict[str, int],
    round_up_cents: int,
) -> None:
    """Log one ingestion batch"""
    logging.info(
        "Ingestion completed",
        extra={
            "bank_connection_id": bank_connection_id,
            "round_up_config_id": round_up_config_id,
            "step": "ingestion_complete",
            "processed": processed,
            "duplicates": duplicates,
            "rejected": rejected,
            "round_up_cents": round_up_cents,
        },
    )


def log_settlement(
    round_up_config_id: str,
    outcome: str,
    donation_id: Optional[str] = None,
    base_amount_cents: int = 0,
    total_charged_cents: int = 0,
    detail: Optional[str] = None,
) -> None:
    """Log settlement outcome; failures are warnings"""
    level = logging.WARNING if outcome in ("failed", "unknown") else logging.INFO
    logging.log(
        level,
        "Settlement %s",
        outcome,
        extra={
            "round_up_config_id": round_up_config_id,
            "donation_id": donation_id,
            "step": "settlement",
            "settlement_outcome": outcome,
            "base_amount_cents": base_amount_cents,
            "total_charged_cents": total_charged_cents,
            "detail": detail,
        },
    )


def log_connection_transition(
    bank_connection_id: str,
    previous_state: str,
    new_state: str,
    event_kind: str,
    reason: Optional[str] = None,
) -> None:
    logging.info(
        "Connection state changed",
        extra={
            "bank_connection_id": bank_connection_id,
            "step": "connection_transition",
            "previous_state": previous_state,
            "new_state": new_state,
            "event_kind": event_kind,
            "reason": reason,
        },
    )
