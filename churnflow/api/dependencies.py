"""
FastAPI dependencies for caller resolution and service injection.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..followup.service import ChurnService, get_churn_service
from ..followup.visibility import Caller
from ..storage.exceptions import DatabaseUnavailableError

logger = logging.getLogger("churnflow.api.dependencies")


def get_service() -> ChurnService:
    """FastAPI dependency that provides the churn service."""
    return get_churn_service()


async def get_caller(
    x_user_email: Optional[str] = Header(default=None),
    service: ChurnService = Depends(get_service),
) -> Caller:
    """
    Resolve the acting caller from the X-User-Email header.

    Raises:
        HTTPException: 401 if the header is missing, 403 if the email is
            not an active roster member, 503 if the roster cannot be read
    """
    email = (x_user_email or "").strip()
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Email header is required",
        )

    try:
        caller = await service.visibility.resolve_caller(email)
    except DatabaseUnavailableError as e:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))

    if caller is None:
        logger.warning("Rejected unknown or inactive caller %s", email)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{email} is not an active user",
        )
    return caller
