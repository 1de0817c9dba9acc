from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, OperationalError

from ..domain.errors import ErrorKind, ReservationError

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 1

# Exceptions every write endpoint turns into an HTTP response.
HANDLED_ERRORS = (ReservationError, OperationalError, IntegrityError)

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_INPUT: status.HTTP_422_UNPROCESSABLE_CONTENT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.CAPACITY_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorKind.WINDOW_VIOLATION: status.HTTP_409_CONFLICT,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
}


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, ReservationError):
        return HTTPException(status_code=_STATUS_BY_KIND[exc.kind], detail=exc.to_detail())
    if isinstance(exc, OperationalError):
        # Lock wait timeout, deadlock victim or lost connection: nothing was written.
        logger.warning("transient database failure: %s", exc.orig)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "code": "temporarily_unavailable",
                "kind": "unavailable",
                "message": "please retry",
                "retryable": True,
            },
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    if isinstance(exc, IntegrityError):
        logger.info("integrity conflict: %s", exc.orig)
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "conflict",
                "kind": ErrorKind.CONFLICT.value,
                "message": "the request conflicts with the current state",
                "retryable": False,
            },
        )
    raise TypeError(f"unhandled exception type: {type(exc).__name__}")
