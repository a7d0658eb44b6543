"""
Data models for churnflow storage.

These are plain dataclasses, not ORM models.
We use raw SQL with asyncpg and map rows onto these by hand.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp (datetime or ISO-8601 string) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FollowUpStatus(str, Enum):
    """Stored state of a record's call-back workflow."""

    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class CallResponse(str, Enum):
    """Outcome of a single call attempt."""

    CONNECTED = "Connected"
    BUSY = "Busy"
    REQUESTED_CALLBACK = "Requested Callback"
    NO_ANSWER = "No Answer"
    NO_RESPONSE = "No Response"

    @classmethod
    def parse(cls, value: str) -> "CallResponse":
        """Match a response label ignoring case, spaces and underscores.

        Raises ValueError for labels that are not a known response.
        """
        key = re.sub(r"[\s_-]+", "", (value or "")).lower()
        for member in cls:
            if re.sub(r"\s+", "", member.value).lower() == key:
                return member
        raise ValueError(f"Unknown call response: {value!r}")


@dataclass
class CallAttempt:
    """One logged call to the account owner."""

    call_number: int
    timestamp: datetime
    response: str
    notes: str = ""
    reason_at_call: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_number": self.call_number,
            "timestamp": self.timestamp.isoformat(),
            "response": self.response,
            "notes": self.notes,
            "reason_at_call": self.reason_at_call,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CallAttempt":
        return cls(
            call_number=int(data["call_number"]),
            timestamp=parse_timestamp(data["timestamp"]),
            response=data.get("response") or data.get("call_response") or "",
            notes=data.get("notes") or "",
            reason_at_call=data.get("reason_at_call") or data.get("churn_reason") or "",
        )


@dataclass
class ChurnRecord:
    """A tracked account-churn event and its follow-up workflow state."""

    rid: str
    kam: str
    record_date: str = ""
    restaurant_name: str = ""
    brand_name: str = ""
    owner_email: str = ""
    sync_days: str = ""
    zone: str = ""
    reason: str = ""
    remarks: str = ""
    controlled_status: str = "Unknown"
    follow_up_status: FollowUpStatus = FollowUpStatus.INACTIVE
    is_follow_up_active: bool = False
    current_call: int = 1
    call_attempts: list[CallAttempt] = field(default_factory=list)
    next_reminder_time: Optional[datetime] = None
    follow_up_completed_at: Optional[datetime] = None
    mail_sent: bool = False
    mail_sent_confirmation: bool = False
    date_time_filled: Optional[datetime] = None
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 1

    @property
    def is_completed(self) -> bool:
        return self.follow_up_status == FollowUpStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "rid": self.rid,
            "kam": self.kam,
            "record_date": self.record_date,
            "restaurant_name": self.restaurant_name,
            "brand_name": self.brand_name,
            "owner_email": self.owner_email,
            "sync_days": self.sync_days,
            "zone": self.zone,
            "reason": self.reason,
            "remarks": self.remarks,
            "controlled_status": self.controlled_status,
            "follow_up_status": self.follow_up_status.value,
            "is_follow_up_active": self.is_follow_up_active,
            "current_call": self.current_call,
            "call_attempts": [a.to_dict() for a in self.call_attempts],
            "next_reminder_time": _iso(self.next_reminder_time),
            "follow_up_completed_at": _iso(self.follow_up_completed_at),
            "mail_sent": self.mail_sent,
            "mail_sent_confirmation": self.mail_sent_confirmation,
            "date_time_filled": _iso(self.date_time_filled),
            "uploaded_by": self.uploaded_by,
            "uploaded_at": _iso(self.uploaded_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class RosterMember:
    """An owner identity from the external user roster."""

    email: str
    full_name: str
    role: str
    team_name: Optional[str] = None
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "team_name": self.team_name,
            "is_active": self.is_active,
        }
