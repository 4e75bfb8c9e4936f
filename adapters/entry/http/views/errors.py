from __future__ import annotations

from fastapi import HTTPException

from core.services.exceptions import (
    ConflictError,
    DAppBlockedError,
    NotFoundError,
    QuoteExpiredError,
    QuoteNotSettleableError,
)


def to_http_error(exc: Exception, *, action: str) -> HTTPException:
    """
    Map a use case error to the HTTP status the API returns for it.
    """
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ConflictError, QuoteExpiredError, QuoteNotSettleableError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, DAppBlockedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=f"Failed to {action}: {exc}")
