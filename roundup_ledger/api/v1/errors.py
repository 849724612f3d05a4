"""Mapping of domain errors onto HTTP responses"""

import uuid
from fastapi import HTTPException

from roundup_ledger.domain.exceptions import (
    AggregatorError,
    CooldownActive,
    DirectoryError,
    DomainException,
    InvalidState,
    NotFound,
    ProcessorError,
    ValidationFailed,
)


def parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")


def http_error(e: DomainException) -> HTTPException:
    """HTTPException for a domain error raised by a service call"""
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidState):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationFailed):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, CooldownActive):
        return HTTPException(
            status_code=429,
            detail={"message": str(e), "days_remaining": e.days_remaining},
        )
    if isinstance(e, ProcessorError):
        return HTTPException(status_code=502, detail="payment failed, will retry")
    if isinstance(e, AggregatorError):
        return HTTPException(status_code=503, detail="Bank data provider unavailable")
    if isinstance(e, DirectoryError):
        return HTTPException(status_code=503, detail="Cause directory unavailable")
    return HTTPException(status_code=500, detail="Internal server error")
