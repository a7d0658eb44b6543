"""
Report bucket categorization.

Every record lands in exactly one bucket, decided in priority order:

1. completed   - terminal reason, COMPLETED status, or attempts used up
2. follow_ups  - someone has acted or a reminder is scheduled
3. new/overdue - untouched no-response records, split by record age

Records whose date cannot be parsed are counted as invalid instead. Totals
and bucket filters both call `bucket_for`, so the counts always add up.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from dateutil import parser as date_parser

from ..storage.models import ChurnRecord, FollowUpStatus
from .taxonomy import ReasonClass, ReasonTaxonomy

logger = logging.getLogger("churnflow.followup.categorize")

_DAY_FIRST = re.compile(r"^\s*(\d{1,2})[-/.](\d{1,2})[-/.](\d{2}|\d{4})\s*$")
_ISO = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(.*)$", re.DOTALL)
_ISO_TIME = re.compile(r"(?:[T ]\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?")


class Bucket(str, Enum):
    NEW = "newCount"
    OVERDUE = "overdue"
    FOLLOW_UPS = "followUps"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Bucket"]:
        """Bucket for a filter value; None or 'all' means no filter."""
        if value is None or value == "" or value == "all":
            return None
        for bucket in cls:
            if value in (bucket.value, bucket.name.lower()):
                return bucket
        raise ValueError(f"Unknown bucket filter: {value!r}")


def parse_record_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an ingested churn date.

    Dates arrive day-first (30-01-2026, 30/01/26, 30.01.2026) or as ISO
    (2026-01-30). Returns None when the value cannot be read as a date.
    """
    text = (value or "").strip()
    if not text:
        return None

    match = _ISO.match(text)
    if match:
        # Only a time of day may follow an ISO date
        if not _ISO_TIME.fullmatch(match.group(4)):
            return None
        year, month, day = (int(g) for g in match.groups()[:3])
    else:
        match = _DAY_FIRST.match(text)
        if match:
            day, month, year = (int(g) for g in match.groups())
            if year < 100:
                year += 2000
        else:
            try:
                return date_parser.parse(text, dayfirst=True).date()
            except (ValueError, OverflowError):
                return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


@dataclass
class Categorization:
    """Bucket counts for a record set."""

    new_count: int = 0
    overdue: int = 0
    follow_ups: int = 0
    completed: int = 0
    invalid: int = 0

    @property
    def total(self) -> int:
        return self.new_count + self.overdue + self.follow_ups + self.completed + self.invalid

    @property
    def missing_reasons(self) -> int:
        """Records still waiting for a first agent response."""
        return self.new_count + self.overdue

    def add(self, bucket: Optional[Bucket]) -> None:
        if bucket is None:
            self.invalid += 1
        elif bucket == Bucket.NEW:
            self.new_count += 1
        elif bucket == Bucket.OVERDUE:
            self.overdue += 1
        elif bucket == Bucket.FOLLOW_UPS:
            self.follow_ups += 1
        else:
            self.completed += 1

    def to_dict(self) -> dict[str, int]:
        return {
            "newCount": self.new_count,
            "overdue": self.overdue,
            "followUps": self.follow_ups,
            "completed": self.completed,
            "invalid": self.invalid,
        }


class Categorizer:
    """Assigns records to report buckets as of a given moment."""

    def __init__(
        self,
        taxonomy: ReasonTaxonomy,
        new_window: timedelta = timedelta(days=3),
        max_attempts: int = 3,
    ):
        self.taxonomy = taxonomy
        self.new_window = new_window
        self.max_attempts = max_attempts

    @classmethod
    def from_settings(cls, taxonomy: ReasonTaxonomy) -> "Categorizer":
        from ..config import settings

        return cls(
            taxonomy,
            new_window=timedelta(days=settings.followup.new_window_days),
            max_attempts=settings.followup.max_attempts,
        )

    def cutoff(self, as_of: Union[date, datetime]) -> date:
        day = as_of.date() if isinstance(as_of, datetime) else as_of
        return day - self.new_window

    def bucket_for(self, record: ChurnRecord, as_of: Union[date, datetime]) -> Optional[Bucket]:
        """The record's bucket, or None when its date is unreadable."""
        record_date = parse_record_date(record.record_date)
        if record_date is None:
            return None

        reason_class = self.taxonomy.classify(record.reason)
        attempts = len(record.call_attempts)

        if (
            reason_class == ReasonClass.TERMINAL
            or record.follow_up_status == FollowUpStatus.COMPLETED
            or attempts >= self.max_attempts
        ):
            return Bucket.COMPLETED

        has_real_reason = reason_class != ReasonClass.NO_RESPONSE and bool(record.reason.strip())
        if (
            attempts > 0
            or record.follow_up_status == FollowUpStatus.ACTIVE
            or record.is_follow_up_active
            or (
                record.follow_up_status == FollowUpStatus.INACTIVE
                and record.next_reminder_time is not None
            )
            or has_real_reason
        ):
            return Bucket.FOLLOW_UPS

        # Only untouched no-response records are left at this point
        if record_date >= self.cutoff(as_of):
            return Bucket.NEW
        return Bucket.OVERDUE

    def categorize(
        self,
        records: Iterable[ChurnRecord],
        as_of: Union[date, datetime],
    ) -> Categorization:
        result = Categorization()
        for record in records:
            result.add(self.bucket_for(record, as_of))
        if result.invalid:
            logger.warning("%d records have an unreadable churn date", result.invalid)
        return result

    def predicate(
        self,
        bucket: Optional[Bucket],
        as_of: Union[date, datetime],
    ) -> Callable[[ChurnRecord], bool]:
        """Filter predicate for one bucket. None selects every record."""
        if bucket is None:
            return lambda record: True
        return lambda record: self.bucket_for(record, as_of) == bucket
