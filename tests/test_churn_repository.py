"""
Unit tests for the churn and roster repositories.

Tests SQL-facing logic against a mocked pool, without a live database.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from churnflow.storage.database import parse_row_count
from churnflow.storage.exceptions import (
    DatabaseOperationError,
    DatabaseUnavailableError,
)
from churnflow.storage.models import FollowUpStatus
from churnflow.storage.repositories.churn import ChurnRepository
from churnflow.storage.repositories.roster import RosterRepository

from fakes import NOW, make_record

_PATCH_CHURN_POOL = "churnflow.storage.repositories.churn.get_db_pool"
_PATCH_ROSTER_POOL = "churnflow.storage.repositories.roster.get_db_pool"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_pool(*, is_initialized: bool = True, rows: list | None = None, count: int = 1):
    """Return a mock pool with async query methods."""
    pool = MagicMock()
    pool.is_initialized = is_initialized
    pool.fetch = AsyncMock(return_value=rows if rows is not None else [])
    pool.fetchrow = AsyncMock(return_value=rows[0] if rows else None)
    pool.execute = AsyncMock(return_value="INSERT 0 1")
    pool.execute_count = AsyncMock(return_value=count)
    return pool


def _row(**overrides) -> dict:
    row = {
        "rid": "R1",
        "record_date": "09-03-2026",
        "restaurant_name": "Spice Hub",
        "brand_name": None,
        "owner_email": "owner@example.com",
        "kam": "Asha Rao",
        "sync_days": None,
        "zone": "North",
        "reason": None,
        "remarks": None,
        "controlled_status": None,
        "follow_up_status": "INACTIVE",
        "is_follow_up_active": False,
        "current_call": 2,
        "call_attempts": json.dumps([
            {"call_number": 1, "timestamp": "2026-03-09T10:00:00Z", "call_response": "Busy", "notes": ""}
        ]),
        "next_reminder_time": datetime(2026, 3, 10, 10, tzinfo=timezone.utc),
        "follow_up_completed_at": None,
        "mail_sent": None,
        "mail_sent_confirmation": None,
        "date_time_filled": None,
        "uploaded_by": "lead@example.com",
        "uploaded_at": NOW,
        "created_at": NOW,
        "updated_at": NOW,
        "version": 4,
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestChurnReads:

    @pytest.mark.asyncio
    async def test_get_by_rid_maps_row(self):
        pool = _make_pool(rows=[_row()])
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            record = await ChurnRepository().get_by_rid("R1")

        assert record.rid == "R1"
        assert record.brand_name == ""
        assert record.controlled_status == "Unknown"
        assert record.version == 4
        assert record.call_attempts[0].response == "Busy"
        assert record.call_attempts[0].timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_by_rid_missing(self):
        pool = _make_pool(rows=[])
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            assert await ChurnRepository().get_by_rid("nope") is None

    @pytest.mark.asyncio
    async def test_unavailable(self):
        pool = _make_pool(is_initialized=False)
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            with pytest.raises(DatabaseUnavailableError):
                await ChurnRepository().list_records()

    @pytest.mark.asyncio
    async def test_owner_filter_passed_as_array(self):
        pool = _make_pool(rows=[_row()])
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            await ChurnRepository().list_records(frozenset({"B", "A"}))

        args = pool.fetch.call_args.args
        assert "kam = ANY($1::text[])" in args[0]
        assert args[1] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_unrestricted_passes_null(self):
        pool = _make_pool()
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            await ChurnRepository().list_active(None)

        args = pool.fetch.call_args.args
        assert args[1] is None
        assert "follow_up_status = 'ACTIVE'" in args[0]

    @pytest.mark.asyncio
    async def test_empty_owner_set_skips_query(self):
        pool = _make_pool()
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            assert await ChurnRepository().list_overdue(NOW, frozenset()) == []
        pool.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_failure_wrapped(self):
        pool = _make_pool()
        pool.fetch = AsyncMock(side_effect=RuntimeError("syntax"))
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            with pytest.raises(DatabaseOperationError):
                await ChurnRepository().list_records()

    @pytest.mark.asyncio
    async def test_upload_history_groups(self):
        uploaded = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
        pool = _make_pool(rows=[
            {"uploaded_by": "lead@example.com", "uploaded_at": uploaded, "record_count": 12},
        ])
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            history = await ChurnRepository().upload_history()

        assert history == [
            {"uploaded_by": "lead@example.com", "uploaded_at": uploaded, "record_count": 12},
        ]
        query = pool.fetch.call_args.args[0]
        assert "GROUP BY uploaded_by, uploaded_at" in query
        assert "ORDER BY uploaded_at DESC" in query
        assert pool.fetch.call_args.args[1] == 100


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestChurnWrites:

    @pytest.mark.asyncio
    async def test_save_conditioned_on_version(self):
        pool = _make_pool(count=1)
        record = make_record(version=3)
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            assert await ChurnRepository().save(record, 3)

        query, rid, expected = pool.execute_count.call_args.args[:3]
        assert "WHERE rid = $1 AND version = $2" in query
        assert (rid, expected) == ("R1", 3)
        assert record.version == 4

    @pytest.mark.asyncio
    async def test_save_lost_race(self):
        pool = _make_pool(count=0)
        record = make_record(version=3)
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            assert not await ChurnRepository().save(record, 3)
        assert record.version == 3

    @pytest.mark.asyncio
    async def test_mark_completed_skips_completed_rows(self):
        pool = _make_pool(count=0)
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            assert not await ChurnRepository().mark_completed("R1", NOW)

        query = pool.execute_count.call_args.args[0]
        assert "follow_up_status <> 'COMPLETED'" in query
        assert "COALESCE(follow_up_completed_at, $2)" in query

    @pytest.mark.asyncio
    async def test_existing_rids(self):
        pool = _make_pool(rows=[{"rid": "R2"}])
        with patch(_PATCH_CHURN_POOL, return_value=pool):
            found = await ChurnRepository().existing_rids(iter(["R1", "R2"]))

        assert found == {"R2"}
        assert pool.fetch.call_args.args[1] == ["R1", "R2"]

    @pytest.mark.asyncio
    async def test_bulk_create_batches(self):
        pool = _make_pool()
        conn = MagicMock()
        conn.executemany = AsyncMock(side_effect=[None, RuntimeError("bad row"), None])

        @asynccontextmanager
        async def transaction():
            yield conn

        pool.transaction = transaction
        records = [make_record(f"R{i}") for i in range(5)]

        with patch(_PATCH_CHURN_POOL, return_value=pool):
            result = await ChurnRepository().bulk_create(records, batch_size=2)

        assert result["successful"] == 3
        assert result["failed"] == 2
        assert result["errors"][0]["batch"] == "2-4"
        assert conn.executemany.await_count == 3

    @pytest.mark.asyncio
    async def test_insert_args_serialize_attempts(self):
        record = make_record(follow_up_status=FollowUpStatus.ACTIVE)
        args = ChurnRepository()._insert_args(record)

        assert args[0] == "R1"
        assert args[11] == "ACTIVE"
        assert json.loads(args[14]) == []


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------


class TestRosterRepository:

    @pytest.mark.asyncio
    async def test_get_by_email(self):
        row = {
            "email": "asha@example.com",
            "full_name": "Asha Rao",
            "role": "agent",
            "team_name": "alpha",
            "is_active": True,
        }
        pool = _make_pool(rows=[row])
        with patch(_PATCH_ROSTER_POOL, return_value=pool):
            member = await RosterRepository().get_by_email("ASHA@example.com")

        assert member.full_name == "Asha Rao"
        assert "lower(email) = lower($1)" in pool.fetchrow.call_args.args[0]

    @pytest.mark.asyncio
    async def test_team_member_names(self):
        pool = _make_pool(rows=[{"full_name": "Asha Rao"}, {"full_name": "Ben Okafor"}])
        with patch(_PATCH_ROSTER_POOL, return_value=pool):
            names = await RosterRepository().team_member_names("alpha")

        assert names == ["Asha Rao", "Ben Okafor"]


class TestParseRowCount:

    @pytest.mark.parametrize(
        "status, expected",
        [("UPDATE 1", 1), ("UPDATE 0", 0), ("INSERT 0 3", 3), ("", 0), (None, 0), ("BOGUS", 0)],
    )
    def test_parse(self, status, expected):
        assert parse_row_count(status) == expected
