"""
Mapping of engine and storage errors onto HTTP responses.
"""

import logging

from fastapi import HTTPException, status

from ..followup.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from ..storage.exceptions import DatabaseUnavailableError

logger = logging.getLogger("churnflow.api.errors")

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DatabaseUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http(error: Exception) -> HTTPException:
    """HTTPException for an engine or storage error."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(code, str(error))
    logger.error("Unhandled %s: %s", type(error).__name__, error)
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Storage operation failed")
