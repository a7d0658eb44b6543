"""In-memory churn store, roster and fixed clock used across tests."""

import copy
from datetime import datetime, timezone
from typing import Iterable, Optional

from churnflow.storage.models import ChurnRecord, FollowUpStatus, RosterMember

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeChurnRepo:
    """Dict-backed stand-in for ChurnRepository with version-checked saves."""

    def __init__(self, records: Iterable[ChurnRecord] = ()):
        self.rows: dict[str, ChurnRecord] = {}
        self.conflicts_remaining = 0
        self.save_calls = 0
        self.completed_calls: list[str] = []
        self.fail_mark_completed: set[str] = set()
        for record in records:
            self.rows[record.rid] = copy.deepcopy(record)

    async def get_by_rid(self, rid: str) -> Optional[ChurnRecord]:
        row = self.rows.get(rid)
        return copy.deepcopy(row) if row else None

    async def list_records(self, owners=None) -> list[ChurnRecord]:
        return [
            copy.deepcopy(r)
            for r in self.rows.values()
            if owners is None or r.kam in owners
        ]

    async def list_active(self, owners=None) -> list[ChurnRecord]:
        return [
            r for r in await self.list_records(owners)
            if r.follow_up_status == FollowUpStatus.ACTIVE
        ]

    async def list_overdue(self, as_of, owners=None) -> list[ChurnRecord]:
        return [
            r for r in await self.list_records(owners)
            if r.follow_up_status == FollowUpStatus.INACTIVE
            and r.next_reminder_time is not None
            and r.next_reminder_time <= as_of
        ]

    async def save(self, record: ChurnRecord, expected_version: int) -> bool:
        self.save_calls += 1
        stored = self.rows[record.rid]
        if self.conflicts_remaining > 0:
            # Another writer slips in between read and write
            self.conflicts_remaining -= 1
            stored.version += 1
            return False
        if stored.version != expected_version:
            return False
        record.version = expected_version + 1
        self.rows[record.rid] = copy.deepcopy(record)
        return True

    async def mark_completed(self, rid: str, completed_at: datetime) -> bool:
        if rid in self.fail_mark_completed:
            raise RuntimeError("connection reset")
        self.completed_calls.append(rid)
        stored = self.rows[rid]
        if stored.follow_up_status == FollowUpStatus.COMPLETED:
            return False
        stored.follow_up_status = FollowUpStatus.COMPLETED
        stored.is_follow_up_active = False
        stored.next_reminder_time = None
        stored.follow_up_completed_at = stored.follow_up_completed_at or completed_at
        stored.version += 1
        return True

    async def existing_rids(self, rids: Iterable[str]) -> set[str]:
        return {rid for rid in rids if rid in self.rows}

    async def upload_history(self, limit: int = 100) -> list[dict]:
        groups: dict[tuple, int] = {}
        for r in self.rows.values():
            if r.uploaded_at is not None:
                key = (r.uploaded_by, r.uploaded_at)
                groups[key] = groups.get(key, 0) + 1
        ordered = sorted(groups.items(), key=lambda item: item[0][1], reverse=True)
        return [
            {"uploaded_by": by, "uploaded_at": at, "record_count": count}
            for (by, at), count in ordered[:limit]
        ]

    async def bulk_create(self, records: list[ChurnRecord], batch_size: int = 100) -> dict:
        for record in records:
            self.rows[record.rid] = copy.deepcopy(record)
        return {"successful": len(records), "failed": 0, "errors": []}


class FakeRoster:
    """In-memory roster keyed by email."""

    def __init__(self, members: Iterable[RosterMember] = ()):
        self.members = {m.email.lower(): m for m in members}

    async def get_by_email(self, email: str) -> Optional[RosterMember]:
        return self.members.get(email.lower())

    async def team_member_names(self, team_name: str) -> list[str]:
        return sorted(
            m.full_name
            for m in self.members.values()
            if m.team_name == team_name and m.is_active
        )


def make_record(rid: str = "R1", kam: str = "Asha Rao", **overrides) -> ChurnRecord:
    fields = {
        "rid": rid,
        "kam": kam,
        "record_date": "09-03-2026",
        "restaurant_name": f"Restaurant {rid}",
        "zone": "North",
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return ChurnRecord(**fields)


ROSTER = [
    RosterMember("admin@example.com", "Dev Admin", "admin", None),
    RosterMember("lead@example.com", "Lena Lead", "Team Lead", "alpha"),
    RosterMember("asha@example.com", "Asha Rao", "agent", "alpha"),
    RosterMember("ben@example.com", "Ben Okafor", "agent", "alpha"),
    RosterMember("cara@example.com", "Cara Singh", "agent", "beta"),
    RosterMember("gone@example.com", "Old Agent", "agent", "alpha", is_active=False),
    RosterMember("lone@example.com", "Lone Lead", "team_lead", None),
]


