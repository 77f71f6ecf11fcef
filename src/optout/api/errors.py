"""Map ``OptOutError`` subclasses onto HTTP errors."""

from __future__ import annotations

import logging

from fastapi import HTTPException

from optout.exceptions import (
    AlreadyRunningError,
    BrowserActionError,
    BrowserUnavailable,
    CatalogError,
    InvalidRunRequestError,
    NoActiveRecordingError,
    NoActiveRunError,
    OptOutError,
    PlaybookNotFoundError,
    PlaybookSignatureError,
    PlaybookValidationError,
    RecordingActiveError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[OptOutError], int], ...] = (
    (AlreadyRunningError, 409),
    (RecordingActiveError, 409),
    (PlaybookValidationError, 422),
    (PlaybookSignatureError, 422),
    (InvalidRunRequestError, 422),
    (NoActiveRunError, 404),
    (NoActiveRecordingError, 404),
    (PlaybookNotFoundError, 404),
    (BrowserUnavailable, 503),
    (BrowserActionError, 502),
    (CatalogError, 502),
)


def http_error(exc: OptOutError) -> HTTPException:
    """Return the ``HTTPException`` a route should raise for *exc*."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        logger.error("Unmapped error in API call: %s", exc)
        status_code = 500

    if isinstance(exc, PlaybookValidationError):
        return HTTPException(status_code=status_code, detail={"message": str(exc), "problems": exc.problems})
    return HTTPException(status_code=status_code, detail=str(exc))
