"""
REST API for churn records and their follow-up workflow.

Endpoints:
- GET   /churn                          -- categorized, paginated listing
- GET   /churn/statistics               -- completion statistics
- GET   /churn/follow-ups/active        -- records awaiting a call
- GET   /churn/follow-ups/overdue       -- records whose reminder passed
- POST  /churn/import                   -- ingest validated records
- GET   /churn/upload-history           -- past imports by uploader (admin)
- GET   /churn/{rid}/follow-up          -- record with workflow status
- PATCH /churn/{rid}/reason             -- set the churn reason
- POST  /churn/{rid}/call-attempts      -- log a call attempt
- PATCH /churn/{rid}/follow-up-timing   -- move the next reminder
- POST  /churn/{rid}/call-complete      -- close the follow-up by hand
- POST  /churn/{rid}/mail-sent          -- confirm the churn mail went out

All endpoints act on behalf of the X-User-Email caller and only see the
records that caller's role allows.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..followup.exceptions import ChurnError
from ..followup.service import ChurnService
from ..followup.visibility import Caller
from ..storage.exceptions import StorageError
from ..storage.models import ChurnRecord
from .dependencies import get_caller, get_service
from .errors import to_http

logger = logging.getLogger("churnflow.api.churn")

router = APIRouter(prefix="/churn", tags=["churn"])


class ReasonUpdateRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    remarks: Optional[str] = Field(default=None, max_length=2000)
    mail_sent_confirmation: Optional[bool] = None


class CallAttemptRequest(BaseModel):
    response: str = Field(..., min_length=1, description="Connected, Busy, Requested Callback, No Answer, No Response")
    notes: Optional[str] = Field(default=None, max_length=2000)
    reason: Optional[str] = Field(default=None, max_length=500, description="Churn reason learned on the call")


class FollowUpTimingRequest(BaseModel):
    next_reminder_time: datetime


class MailSentRequest(BaseModel):
    mail_sent: bool = True


class ChurnRecordIn(BaseModel):
    rid: str = Field(..., min_length=1, max_length=64)
    kam: str = Field(..., min_length=1, max_length=255)
    date: str = Field(default="", max_length=32)
    restaurant_name: str = ""
    brand_name: str = ""
    owner_email: str = ""
    sync_days: str = ""
    zone: str = ""
    reason: str = Field(default="", max_length=500)
    remarks: str = ""

    def to_record(self) -> ChurnRecord:
        return ChurnRecord(
            rid=self.rid.strip(),
            kam=self.kam.strip(),
            record_date=self.date.strip(),
            restaurant_name=self.restaurant_name,
            brand_name=self.brand_name,
            owner_email=self.owner_email,
            sync_days=self.sync_days,
            zone=self.zone,
            reason=self.reason,
            remarks=self.remarks,
        )


class ImportRequest(BaseModel):
    records: list[ChurnRecordIn] = Field(..., min_length=1, max_length=10000)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

@router.get("")
async def list_churn_records(
    filter: Optional[str] = Query(
        default=None,
        description="Bucket: newCount, overdue, followUps, completed or all",
    ),
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, le=1000),
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    """Visible records with bucket counts for the report view."""
    try:
        return await service.list_records(
            caller, filter=filter, search=search, page=page, page_size=page_size
        )
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.get("/statistics")
async def churn_statistics(
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    try:
        return await service.statistics(caller)
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.get("/follow-ups/active")
async def active_follow_ups(
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    try:
        follow_ups = await service.list_active(caller)
    except (ChurnError, StorageError) as e:
        raise to_http(e)
    return {"follow_ups": follow_ups, "count": len(follow_ups)}


@router.get("/follow-ups/overdue")
async def overdue_follow_ups(
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    try:
        follow_ups = await service.list_overdue(caller)
    except (ChurnError, StorageError) as e:
        raise to_http(e)
    return {"follow_ups": follow_ups, "count": len(follow_ups)}


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

@router.post("/import")
async def import_churn_records(
    body: ImportRequest,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    """Ingest records. Existing rids and in-batch duplicates are skipped."""
    try:
        return await service.ingest(caller, [item.to_record() for item in body.records])
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.get("/upload-history")
async def upload_history(
    limit: int = Query(default=100, ge=1, le=1000),
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    try:
        history = await service.upload_history(caller, limit=limit)
    except (ChurnError, StorageError) as e:
        raise to_http(e)
    return {"uploads": history, "count": len(history)}


# ---------------------------------------------------------------------------
# Single record
# ---------------------------------------------------------------------------

@router.get("/{rid}/follow-up")
async def follow_up_status(
    rid: str,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    """Record detail with status as of now (due reminders read as ACTIVE)."""
    try:
        return await service.get_status(caller, rid)
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.patch("/{rid}/reason")
async def update_reason(
    rid: str,
    body: ReasonUpdateRequest,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    try:
        return await service.set_reason(
            caller,
            rid,
            body.reason,
            remarks=body.remarks,
            mail_sent_confirmation=body.mail_sent_confirmation,
        )
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.post("/{rid}/call-attempts")
async def add_call_attempt(
    rid: str,
    body: CallAttemptRequest,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    try:
        return await service.record_attempt(
            caller, rid, body.response, notes=body.notes, reason_at_call=body.reason
        )
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.patch("/{rid}/follow-up-timing")
async def update_follow_up_timing(
    rid: str,
    body: FollowUpTimingRequest,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    """Move the next reminder. Team leads and admins only."""
    try:
        return await service.reschedule_reminder(caller, rid, body.next_reminder_time)
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.post("/{rid}/call-complete")
async def complete_follow_up(
    rid: str,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    try:
        return await service.complete_follow_up(caller, rid)
    except (ChurnError, StorageError) as e:
        raise to_http(e)


@router.post("/{rid}/mail-sent")
async def mark_mail_sent(
    rid: str,
    body: Optional[MailSentRequest] = None,
    caller: Caller = Depends(get_caller),
    service: ChurnService = Depends(get_service),
):
    """Set mail_sent and its confirmation; the reason is left alone."""
    sent = body.mail_sent if body is not None else True
    try:
        return await service.mark_mail_sent(caller, rid, sent)
    except (ChurnError, StorageError) as e:
        raise to_http(e)
