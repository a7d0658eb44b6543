"""
Churn follow-up service.

Request-level operations used by the HTTP layer. Each operation:

1. resolves the caller's allowed owners,
2. reads the current record state,
3. computes the transition with one `now` reading,
4. writes conditioned on the version it read.

A lost conditional write is retried from step 1, so visibility is checked
again against the fresh row on every round.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from ..storage.models import CallResponse, ChurnRecord, FollowUpStatus
from .categorize import Bucket, Categorizer, parse_record_date
from .exceptions import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from .heal import HealReport, heal_and_persist, heal_record
from .state_machine import FollowUpStateMachine
from .taxonomy import ReasonTaxonomy, get_taxonomy
from .visibility import (
    Caller,
    Role,
    VisibilityResolver,
    ensure_can_access,
    filter_visible,
    owner_filter,
)

logger = logging.getLogger("churnflow.followup.service")

INGEST_BATCH_SIZE = 100
MAX_PAGE_SIZE = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChurnService:
    """Churn record workflow operations, scoped to a caller."""

    def __init__(
        self,
        repo=None,
        roster=None,
        taxonomy: Optional[ReasonTaxonomy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        from ..config import settings

        if repo is None:
            from ..storage.repositories.churn import get_churn_repo

            repo = get_churn_repo()
        self.repo = repo
        self.visibility = VisibilityResolver(roster)
        self.taxonomy = taxonomy or get_taxonomy()
        self.machine = FollowUpStateMachine.from_settings(self.taxonomy)
        self.categorizer = Categorizer.from_settings(self.taxonomy)
        self.max_conflict_retries = settings.followup.max_conflict_retries
        self.default_page_size = settings.followup.default_page_size
        self.heal_on_read = settings.auto_heal.on_read
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Listings
    # ------------------------------------------------------------------ #

    async def list_records(
        self,
        caller: Caller,
        filter: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> dict:
        """Visible records with bucket counts, one bucket filter and search."""
        page_size = page_size or self.default_page_size
        if page < 1:
            raise InvalidInputError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        try:
            bucket = Bucket.parse(filter)
        except ValueError as e:
            raise InvalidInputError(str(e))

        now = self._clock()
        allowed = await self.visibility.allowed_owners(caller)
        records = filter_visible(allowed, await self.repo.list_records(owner_filter(allowed)))

        if self.heal_on_read and records:
            await heal_and_persist(
                records,
                self.repo,
                self.taxonomy,
                now=now,
                max_attempts=self.machine.max_attempts,
            )

        categorization = self.categorizer.categorize(records, now)

        selected = [r for r in records if self.categorizer.predicate(bucket, now)(r)]
        if search:
            selected = [r for r in selected if _matches_search(r, search)]
        selected.sort(key=_newest_first)

        total = len(selected)
        total_pages = (total + page_size - 1) // page_size
        start = (page - 1) * page_size
        page_records = selected[start:start + page_size]

        logger.debug(
            "Listing for %s: %d visible, %d after filter=%s search=%r",
            caller.email, len(records), total, filter, search,
        )
        return {
            "records": [self._record_view(r, now) for r in page_records],
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
            "categorization": categorization.to_dict(),
            "missing_churn_reasons": categorization.missing_reasons,
            "user_role": caller.role.value,
        }

    async def list_active(self, caller: Caller) -> list[dict]:
        """Records whose stored status is ACTIVE."""
        allowed = await self.visibility.allowed_owners(caller)
        records = filter_visible(allowed, await self.repo.list_active(owner_filter(allowed)))
        return [self._follow_up_view(r) for r in records]

    async def list_overdue(self, caller: Caller) -> list[dict]:
        """INACTIVE records whose reminder time has passed."""
        now = self._clock()
        allowed = await self.visibility.allowed_owners(caller)
        records = filter_visible(allowed, await self.repo.list_overdue(now, owner_filter(allowed)))
        return [self._follow_up_view(r) for r in records if self.machine.reminder_due(r, now)]

    async def statistics(self, caller: Caller) -> dict:
        """Completion statistics over the visible records."""
        now = self._clock()
        allowed = await self.visibility.allowed_owners(caller)
        records = filter_visible(allowed, await self.repo.list_records(owner_filter(allowed)))

        total = len(records)
        missing = 0
        active = 0
        completed = 0
        reasons: dict[str, int] = {}
        controlled: dict[str, int] = {}
        zones: dict[str, dict[str, int]] = {}

        for record in records:
            has_reason = bool(record.reason.strip())
            if not has_reason:
                missing += 1
            if record.is_follow_up_active:
                active += 1
            if record.follow_up_status == FollowUpStatus.COMPLETED:
                completed += 1

            label = record.reason.strip() or "Not Specified"
            reasons[label] = reasons.get(label, 0) + 1
            controlled[record.controlled_status] = controlled.get(record.controlled_status, 0) + 1

            zone = zones.setdefault(record.zone or "Unassigned", {"total": 0, "completed": 0, "missing": 0})
            zone["total"] += 1
            if has_reason:
                zone["completed"] += 1
            else:
                zone["missing"] += 1

        with_reason = total - missing
        return {
            "total_records": total,
            "missing_churn_reasons": missing,
            "completed_churn_reasons": with_reason,
            "completion_percentage": round(with_reason * 100 / total) if total else 0,
            "active_follow_ups": active,
            "completed_follow_ups": completed,
            "churn_reason_breakdown": reasons,
            "controlled_breakdown": controlled,
            "zone_breakdown": zones,
            "categorization": self.categorizer.categorize(records, now).to_dict(),
            "user_role": caller.role.value,
            "user_team": caller.team_name,
        }

    # ------------------------------------------------------------------ #
    # Single record
    # ------------------------------------------------------------------ #

    async def get_status(self, caller: Caller, rid: str) -> dict:
        """Full record view with reminder elapse applied to the status."""
        record = await self._load(rid)
        allowed = await self.visibility.allowed_owners(caller)
        ensure_can_access(allowed, caller, record, "view")
        return self._record_view(record, self._clock())

    async def set_reason(
        self,
        caller: Caller,
        rid: str,
        reason: Optional[str],
        remarks: Optional[str] = None,
        mail_sent_confirmation: Optional[bool] = None,
    ) -> dict:
        now = self._clock()

        def transition(record: ChurnRecord):
            return self.machine.apply_reason(record, reason, now, remarks, mail_sent_confirmation)

        record, update = await self._mutate(caller, rid, "update reason for", transition)
        logger.info(
            "Reason for RID %s set by %s -> %s (%s)",
            rid, caller.email, record.follow_up_status.value, update.reason_class.value,
        )
        return {
            "rid": record.rid,
            "reason": record.reason,
            "status": record.follow_up_status.value,
            "controlled_status": record.controlled_status,
            "activated": update.activated,
            "next_reminder_time": _iso(record.next_reminder_time),
        }

    async def record_attempt(
        self,
        caller: Caller,
        rid: str,
        response: str,
        notes: Optional[str] = None,
        reason_at_call: Optional[str] = None,
    ) -> dict:
        try:
            parsed = CallResponse.parse(response)
        except ValueError as e:
            raise InvalidInputError(str(e))
        now = self._clock()

        def transition(record: ChurnRecord):
            return self.machine.record_attempt(record, parsed, now, notes, reason_at_call)

        record, outcome = await self._mutate(caller, rid, "record a call attempt for", transition)
        return {
            "rid": record.rid,
            "call_number": outcome.call_number,
            "next_call": outcome.next_call,
            "status": outcome.status.value,
            "is_active": record.is_follow_up_active,
            "next_reminder_time": _iso(outcome.next_reminder_time),
        }

    async def complete_follow_up(self, caller: Caller, rid: str) -> dict:
        """Close the follow-up by hand, whatever the reason and attempts say."""
        now = self._clock()

        def transition(record: ChurnRecord):
            return self.machine.complete(record, now)

        record, changed = await self._mutate(caller, rid, "complete", transition)
        if changed:
            logger.info("RID %s follow-up completed by %s", rid, caller.email)
        return {
            "rid": record.rid,
            "status": record.follow_up_status.value,
            "completed": changed,
            "follow_up_completed_at": _iso(record.follow_up_completed_at),
        }

    async def mark_mail_sent(self, caller: Caller, rid: str, sent: bool = True) -> dict:
        """Record that the churn mail went out. Reason and status are untouched."""

        def transition(record: ChurnRecord):
            record.mail_sent = sent
            record.mail_sent_confirmation = sent

        record, _ = await self._mutate(caller, rid, "mark mail sent for", transition)
        return {
            "rid": record.rid,
            "mail_sent": record.mail_sent,
            "mail_sent_confirmation": record.mail_sent_confirmation,
        }

    async def reschedule_reminder(self, caller: Caller, rid: str, when: datetime) -> dict:
        """Move the next reminder of an open record (team leads and admins)."""
        self._require_role(caller, (Role.ADMIN, Role.TEAM_LEAD), "reschedule follow-ups", rid)

        def transition(record: ChurnRecord):
            self.machine.reschedule(record, when)

        record, _ = await self._mutate(caller, rid, "reschedule", transition)
        logger.info("RID %s reminder moved to %s by %s", rid, record.next_reminder_time, caller.email)
        return {
            "rid": record.rid,
            "status": record.follow_up_status.value,
            "next_reminder_time": _iso(record.next_reminder_time),
        }

    # ------------------------------------------------------------------ #
    # Ingestion and maintenance
    # ------------------------------------------------------------------ #

    async def ingest(self, caller: Caller, records: Iterable[ChurnRecord]) -> dict:
        """
        Store new, already-validated records.

        Duplicates inside the batch and rids already stored are skipped.
        """
        self._require_role(caller, (Role.ADMIN, Role.TEAM_LEAD), "import churn records")
        now = self._clock()

        seen: set[str] = set()
        unique: list[ChurnRecord] = []
        duplicates = 0
        submitted = 0
        for record in records:
            submitted += 1
            if not record.rid.strip() or not record.kam.strip():
                raise InvalidInputError(f"Record #{submitted} is missing rid or kam")
            if record.rid in seen:
                duplicates += 1
                continue
            seen.add(record.rid)
            unique.append(record)

        existing = await self.repo.existing_rids(r.rid for r in unique)
        fresh = [r for r in unique if r.rid not in existing]
        for record in fresh:
            self._prepare_new(record, caller, now)

        result = (
            await self.repo.bulk_create(fresh, batch_size=INGEST_BATCH_SIZE)
            if fresh
            else {"successful": 0, "failed": 0, "errors": []}
        )
        logger.info(
            "Import by %s: %d submitted, %d imported, %d existing, %d duplicate",
            caller.email, submitted, result["successful"], len(existing), duplicates,
        )
        return {
            "submitted": submitted,
            "duplicates_in_batch": duplicates,
            "existing_skipped": len(existing),
            "existing_rids": sorted(existing),
            "imported": result["successful"],
            "failed": result["failed"],
            "errors": result["errors"],
        }

    async def heal_all(self) -> HealReport:
        """Heal every stored record."""
        records = await self.repo.list_records(None)
        return await heal_and_persist(
            records,
            self.repo,
            self.taxonomy,
            now=self._clock(),
            max_attempts=self.machine.max_attempts,
        )

    async def heal_one(self, caller: Caller, rid: str) -> dict:
        """Heal a single record the caller can see."""
        record = await self._load(rid)
        allowed = await self.visibility.allowed_owners(caller)
        ensure_can_access(allowed, caller, record, "fix")

        now = self._clock()
        corrected = False
        if heal_record(record, now, self.taxonomy, self.machine.max_attempts):
            corrected = await self.repo.mark_completed(rid, now)
            # Report what is stored, not the local copy
            record = await self._load(rid)
        return {
            "rid": rid,
            "corrected": corrected,
            "status": record.follow_up_status.value,
        }

    async def upload_history(self, caller: Caller, limit: int = 100) -> list[dict]:
        """Past imports grouped by uploader and upload time (admins only)."""
        self._require_role(caller, (Role.ADMIN,), "view upload history")
        history = await self.repo.upload_history(limit)
        return [
            {
                "uploaded_by": entry["uploaded_by"],
                "uploaded_at": _iso(entry["uploaded_at"]),
                "record_count": entry["record_count"],
            }
            for entry in history
        ]

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _load(self, rid: str) -> ChurnRecord:
        record = await self.repo.get_by_rid(rid)
        if record is None:
            raise NotFoundError(rid)
        return record

    async def _mutate(self, caller: Caller, rid: str, action: str, transition):
        """Read, check, transition and conditionally write one record."""
        rounds = self.max_conflict_retries + 1
        for attempt in range(1, rounds + 1):
            record = await self._load(rid)
            allowed = await self.visibility.allowed_owners(caller)
            ensure_can_access(allowed, caller, record, action)

            expected_version = record.version
            result = transition(record)
            if await self.repo.save(record, expected_version):
                return record, result

            logger.info("RID %s changed during %s (round %d/%d)", rid, action, attempt, rounds)

        raise ConflictError(rid, rounds)

    def _require_role(
        self,
        caller: Caller,
        roles: tuple[Role, ...],
        action: str,
        rid: Optional[str] = None,
    ) -> None:
        if caller.role not in roles:
            raise ForbiddenError(caller.email, rid, action)

    def _prepare_new(self, record: ChurnRecord, caller: Caller, now: datetime) -> None:
        record.reason = (record.reason or "").strip()
        record.controlled_status = self.taxonomy.controlled_status(record.reason).value
        record.follow_up_status = FollowUpStatus.INACTIVE
        record.is_follow_up_active = False
        record.current_call = 1
        record.call_attempts = []
        record.next_reminder_time = None
        record.follow_up_completed_at = None
        record.uploaded_by = caller.email
        record.uploaded_at = now
        record.created_at = now
        record.updated_at = now
        heal_record(record, now, self.taxonomy, self.machine.max_attempts)

    def _record_view(self, record: ChurnRecord, now: datetime) -> dict:
        status, is_active = self.machine.effective_status(record, now)
        view = record.to_dict()
        view.update(
            {
                "stored_follow_up_status": record.follow_up_status.value,
                "follow_up_status": status.value,
                "is_active": is_active,
                "reminder_due": self.machine.reminder_due(record, now),
                "bucket": _bucket_value(self.categorizer.bucket_for(record, now)),
            }
        )
        return view

    def _follow_up_view(self, record: ChurnRecord) -> dict:
        return {
            "rid": record.rid,
            "restaurant_name": record.restaurant_name,
            "kam": record.kam,
            "reason": record.reason,
            "current_call": record.current_call,
            "next_reminder_time": _iso(record.next_reminder_time),
            "call_attempts": [a.to_dict() for a in record.call_attempts],
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _bucket_value(bucket: Optional[Bucket]) -> str:
    return bucket.value if bucket else "invalid"


def _matches_search(record: ChurnRecord, search: str) -> bool:
    term = search.strip().lower()
    if not term:
        return True
    fields = (
        record.rid,
        record.restaurant_name,
        record.kam,
        record.reason,
        record.zone,
        record.owner_email,
    )
    return any(term in (value or "").lower() for value in fields)


def _newest_first(record: ChurnRecord):
    parsed = parse_record_date(record.record_date)
    # Unreadable dates sort last
    return (parsed is None, -parsed.toordinal() if parsed else 0)


_churn_service: Optional[ChurnService] = None


def get_churn_service() -> ChurnService:
    """Get the global churn service."""
    global _churn_service
    if _churn_service is None:
        _churn_service = ChurnService()
    return _churn_service
