"""
Consistency auto-heal.

Brings stored status in line with what the taxonomy implies: a record with
a terminal reason, or one that has used up its attempts, must be COMPLETED.
The pass only ever moves records towards COMPLETED, so running it again, or
alongside live writes, changes nothing that is already settled.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..storage.models import ChurnRecord, FollowUpStatus
from .taxonomy import ReasonTaxonomy

logger = logging.getLogger("churnflow.followup.heal")


def needs_completion(record: ChurnRecord, taxonomy: ReasonTaxonomy, max_attempts: int = 3) -> bool:
    if record.follow_up_status == FollowUpStatus.COMPLETED:
        return False
    return taxonomy.is_terminal(record.reason) or len(record.call_attempts) >= max_attempts


def heal_record(
    record: ChurnRecord,
    now: datetime,
    taxonomy: ReasonTaxonomy,
    max_attempts: int = 3,
) -> bool:
    """Correct one record in place. Returns True if it changed."""
    if not needs_completion(record, taxonomy, max_attempts):
        return False
    record.follow_up_status = FollowUpStatus.COMPLETED
    record.is_follow_up_active = False
    record.next_reminder_time = None
    if record.follow_up_completed_at is None:
        record.follow_up_completed_at = now
    return True


@dataclass
class HealReport:
    """What a heal pass did."""

    scanned: int = 0
    corrected: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def corrected_count(self) -> int:
        return len(self.corrected)

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "corrected": self.corrected_count,
            "corrected_rids": self.corrected,
            "failed_rids": self.failed,
        }


def heal(
    records: Iterable[ChurnRecord],
    taxonomy: ReasonTaxonomy,
    now: Optional[datetime] = None,
    max_attempts: int = 3,
) -> HealReport:
    """
    Heal records in memory.

    Never raises: a record that cannot be examined is logged and skipped.
    """
    now = now or datetime.now(timezone.utc)
    report = HealReport()
    for record in records:
        report.scanned += 1
        try:
            if heal_record(record, now, taxonomy, max_attempts):
                report.corrected.append(record.rid)
        except Exception as e:
            rid = getattr(record, "rid", "?")
            logger.warning("Auto-heal skipped RID %s: %s", rid, e)
            report.failed.append(str(rid))

    if report.corrected:
        logger.info("Auto-heal corrected %d of %d records", report.corrected_count, report.scanned)
    return report


async def heal_and_persist(
    records: list[ChurnRecord],
    repo,
    taxonomy: ReasonTaxonomy,
    now: Optional[datetime] = None,
    max_attempts: int = 3,
) -> HealReport:
    """
    Heal records in memory and write each correction through
    `repo.mark_completed`, which is a no-op for rows another writer already
    completed. A failed write is logged and the sweep moves on.
    """
    now = now or datetime.now(timezone.utc)
    report = heal(records, taxonomy, now=now, max_attempts=max_attempts)

    persisted = []
    for rid in report.corrected:
        try:
            if await repo.mark_completed(rid, now):
                persisted.append(rid)
            else:
                logger.debug("RID %s was already completed in storage", rid)
        except Exception as e:
            logger.error("Auto-heal could not persist RID %s: %s", rid, e)
            report.failed.append(rid)
    report.corrected = persisted
    return report
