"""
Maintenance endpoints for churn record consistency.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ..followup.exceptions import ChurnError
from ..followup.service import ChurnService
from ..followup.visibility import Caller, Role
from ..storage.exceptions import StorageError
from .dependencies import get_caller, get_service
from .errors import to_http

logger = logging.getLogger("churnflow.api.admin")

router = APIRouter(prefix="/admin/churn", tags=["admin"])


@router.post("/heal")
async def heal_all_records(
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    """Run a full consistency sweep now."""
    if caller.role != Role.ADMIN:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Only admins can run a full heal")
    try:
        report = await service.heal_all()
    except (ChurnError, StorageError) as e:
        raise to_http(e)
    logger.info("Manual heal by %s corrected %d records", caller.email, report.corrected_count)
    return report.to_dict()


@router.post("/{rid}/heal")
async def heal_one_record(
    rid: str,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    """Fix the status of a single visible record."""
    try:
        return await service.heal_one(caller, rid)
    except (ChurnError, StorageError) as e:
        raise to_http(e)
