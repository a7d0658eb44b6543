"""
Follow-up state machine.

Owns the lifecycle of one record's call-back sequence:

    INACTIVE --(no-response reason)--> ACTIVE
    ACTIVE/INACTIVE --(call attempt, more calls allowed)--> INACTIVE (+24h reminder)
    any --(terminal reason | attempt bound reached)--> COMPLETED

COMPLETED is absorbing. Transitions mutate the record they are given; the
caller is responsible for persisting it under a version check. `now` is
passed in so one logical operation sees a single clock reading.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..storage.models import CallAttempt, CallResponse, ChurnRecord, FollowUpStatus
from .exceptions import InvalidInputError
from .taxonomy import ReasonClass, ReasonTaxonomy

logger = logging.getLogger("churnflow.followup.state_machine")

MAX_REASON_LENGTH = 500
MAX_NOTES_LENGTH = 2000


@dataclass
class ReasonUpdate:
    """Result of applying a new churn reason."""

    reason_class: ReasonClass
    activated: bool
    completed: bool


@dataclass
class AttemptOutcome:
    """Result of recording a call attempt."""

    call_number: int
    next_call: int
    status: FollowUpStatus
    next_reminder_time: Optional[datetime]

    @property
    def completed(self) -> bool:
        return self.status == FollowUpStatus.COMPLETED


class FollowUpStateMachine:
    """Computes workflow transitions for a single churn record."""

    def __init__(
        self,
        taxonomy: ReasonTaxonomy,
        reminder_interval: timedelta = timedelta(hours=24),
        max_attempts: int = 3,
        attempt_ceiling: int = 4,
    ):
        self.taxonomy = taxonomy
        self.reminder_interval = reminder_interval
        self.max_attempts = max_attempts
        self.attempt_ceiling = attempt_ceiling

    @classmethod
    def from_settings(cls, taxonomy: ReasonTaxonomy) -> "FollowUpStateMachine":
        from ..config import settings

        cfg = settings.followup
        return cls(
            taxonomy,
            reminder_interval=timedelta(hours=cfg.reminder_interval_hours),
            max_attempts=cfg.max_attempts,
            attempt_ceiling=cfg.attempt_ceiling,
        )

    # -- Transitions ------------------------------------------------------

    def apply_reason(
        self,
        record: ChurnRecord,
        reason: Optional[str],
        now: datetime,
        remarks: Optional[str] = None,
        mail_sent_confirmation: Optional[bool] = None,
    ) -> ReasonUpdate:
        """Set a new churn reason and re-derive the workflow status."""
        reason = self._clean_reason(reason)
        reason_class = self.taxonomy.classify(reason)

        record.reason = reason
        record.controlled_status = self.taxonomy.controlled_status(reason).value
        record.date_time_filled = now
        if remarks:
            record.remarks = remarks
        if mail_sent_confirmation is not None:
            record.mail_sent_confirmation = mail_sent_confirmation
            record.mail_sent = mail_sent_confirmation

        if record.is_completed:
            logger.debug("RID %s already completed; reason change keeps it closed", record.rid)
            return ReasonUpdate(reason_class, activated=False, completed=True)

        if reason_class == ReasonClass.NO_RESPONSE:
            first_activation = not record.is_follow_up_active
            record.follow_up_status = FollowUpStatus.ACTIVE
            record.is_follow_up_active = True
            if first_activation:
                record.next_reminder_time = now + self.reminder_interval
            return ReasonUpdate(reason_class, activated=True, completed=False)

        if reason_class == ReasonClass.TERMINAL:
            self._complete(record, now)
            return ReasonUpdate(reason_class, activated=False, completed=True)

        # A real, non-final reason: idle, any pending reminder stays as is
        record.follow_up_status = FollowUpStatus.INACTIVE
        record.is_follow_up_active = False
        return ReasonUpdate(reason_class, activated=False, completed=False)

    def record_attempt(
        self,
        record: ChurnRecord,
        response: CallResponse,
        now: datetime,
        notes: Optional[str] = None,
        reason_at_call: Optional[str] = None,
    ) -> AttemptOutcome:
        """Append a call attempt and advance the workflow."""
        notes = (notes or "").strip()
        if len(notes) > MAX_NOTES_LENGTH:
            raise InvalidInputError(f"Notes exceed {MAX_NOTES_LENGTH} characters")
        reason_at_call = self._clean_reason(reason_at_call)

        if len(record.call_attempts) >= self.attempt_ceiling:
            raise InvalidInputError(
                f"RID {record.rid} already has {len(record.call_attempts)} call attempts "
                f"(limit {self.attempt_ceiling})"
            )

        call_number = record.current_call
        next_call = call_number + 1
        record.call_attempts.append(
            CallAttempt(
                call_number=call_number,
                timestamp=now,
                response=response.value,
                notes=notes,
                reason_at_call=reason_at_call,
            )
        )

        if record.is_completed:
            # Late attempt on a closed record: logged, workflow stays closed
            record.is_follow_up_active = False
            record.next_reminder_time = None
        elif self._should_continue(response, reason_at_call, call_number, next_call):
            record.follow_up_status = FollowUpStatus.INACTIVE
            record.is_follow_up_active = False
            record.next_reminder_time = now + self.reminder_interval
        else:
            self._complete(record, now)

        record.current_call = next_call
        if reason_at_call:
            record.reason = reason_at_call
            record.controlled_status = self.taxonomy.controlled_status(reason_at_call).value
            record.date_time_filled = now

        logger.info(
            "RID %s call %d (%s) -> %s",
            record.rid,
            call_number,
            response.value,
            record.follow_up_status.value,
        )
        return AttemptOutcome(
            call_number=call_number,
            next_call=next_call,
            status=record.follow_up_status,
            next_reminder_time=record.next_reminder_time,
        )

    def reschedule(self, record: ChurnRecord, when: datetime) -> None:
        """Move the next reminder of an open record."""
        if record.is_completed:
            raise InvalidInputError(f"RID {record.rid} is completed; nothing to reschedule")
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        record.follow_up_status = FollowUpStatus.INACTIVE
        record.is_follow_up_active = False
        record.next_reminder_time = when

    def complete(self, record: ChurnRecord, now: datetime) -> bool:
        """Force COMPLETED. Returns False if the record already was."""
        if record.is_completed:
            return False
        self._complete(record, now)
        return True

    # -- Read-time derivations -------------------------------------------

    def reminder_due(self, record: ChurnRecord, now: datetime) -> bool:
        """An INACTIVE record whose reminder has passed is due for a call."""
        return (
            record.follow_up_status == FollowUpStatus.INACTIVE
            and record.next_reminder_time is not None
            and record.next_reminder_time <= now
        )

    def effective_status(self, record: ChurnRecord, now: datetime) -> tuple[FollowUpStatus, bool]:
        """Status and active flag as consumers should see them at `now`."""
        if self.reminder_due(record, now):
            return FollowUpStatus.ACTIVE, True
        return record.follow_up_status, record.is_follow_up_active

    # -- Internals ---------------------------------------------------------

    def _should_continue(
        self,
        response: CallResponse,
        reason_at_call: str,
        call_number: int,
        next_call: int,
    ) -> bool:
        terminal_now = self.taxonomy.is_terminal(reason_at_call)
        return (
            (response != CallResponse.CONNECTED or not terminal_now)
            and next_call <= self.attempt_ceiling
            and call_number < self.max_attempts
        )

    def _complete(self, record: ChurnRecord, now: datetime) -> None:
        record.follow_up_status = FollowUpStatus.COMPLETED
        record.is_follow_up_active = False
        record.next_reminder_time = None
        if record.follow_up_completed_at is None:
            record.follow_up_completed_at = now

    def _clean_reason(self, reason: Optional[str]) -> str:
        if reason is not None and not isinstance(reason, str):
            raise InvalidInputError("Reason must be text")
        reason = (reason or "").strip()
        if len(reason) > MAX_REASON_LENGTH:
            raise InvalidInputError(f"Reason exceeds {MAX_REASON_LENGTH} characters")
        return reason
