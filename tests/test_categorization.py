"""Tests for report bucket categorization."""

from datetime import date, timedelta

import pytest

from churnflow.followup.categorize import Bucket, Categorizer, parse_record_date
from churnflow.followup.taxonomy import DEFAULT_TAXONOMY
from churnflow.storage.models import CallAttempt, FollowUpStatus

from fakes import NOW, make_record


@pytest.fixture
def categorizer():
    return Categorizer(DEFAULT_TAXONOMY)


def _sample():
    return [
        make_record("NEW", record_date="08-03-2026"),
        make_record("OLD", record_date="01-03-2026"),
        make_record("EDGE", record_date="07-03-2026"),
        make_record("PH", record_date="01-03-2026", reason="I don't know"),
        make_record("REAL", record_date="01-03-2026", reason="Price too high"),
        make_record("TERM", record_date="09-03-2026", reason="Ownership Transferred"),
        make_record("CALLED", call_attempts=[CallAttempt(1, NOW, "Busy")]),
        make_record("WAIT", next_reminder_time=NOW + timedelta(hours=4)),
        make_record("ACT", follow_up_status=FollowUpStatus.ACTIVE, is_follow_up_active=True),
        make_record("DONE", follow_up_status=FollowUpStatus.COMPLETED),
        make_record("BAD", record_date="not a date"),
        make_record("EMPTY", record_date=""),
    ]


class TestParseRecordDate:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("30-01-2026", date(2026, 1, 30)),
            ("30/01/26", date(2026, 1, 30)),
            ("30.01.2026", date(2026, 1, 30)),
            ("2026-01-30", date(2026, 1, 30)),
            ("2026-01-30T10:00:00Z", date(2026, 1, 30)),
            ("2026-01-30 10:00:00+05:30", date(2026, 1, 30)),
            ("30 Jan 2026", date(2026, 1, 30)),
        ],
    )
    def test_formats(self, value, expected):
        assert parse_record_date(value) == expected

    @pytest.mark.parametrize(
        "value",
        ["", None, "31-02-2026", "garbage", "2026-01-30garbage", "2026-01-30T10:00 extra"],
    )
    def test_unreadable(self, value):
        assert parse_record_date(value) is None


class TestBucketFor:

    def test_priority_order(self, categorizer):
        buckets = {r.rid: categorizer.bucket_for(r, NOW) for r in _sample()}

        assert buckets["NEW"] == Bucket.NEW
        assert buckets["EDGE"] == Bucket.NEW
        assert buckets["OLD"] == Bucket.OVERDUE
        assert buckets["PH"] == Bucket.OVERDUE
        assert buckets["REAL"] == Bucket.FOLLOW_UPS
        assert buckets["TERM"] == Bucket.COMPLETED
        assert buckets["CALLED"] == Bucket.FOLLOW_UPS
        assert buckets["WAIT"] == Bucket.FOLLOW_UPS
        assert buckets["ACT"] == Bucket.FOLLOW_UPS
        assert buckets["DONE"] == Bucket.COMPLETED
        assert buckets["BAD"] is None
        assert buckets["EMPTY"] is None

    def test_three_attempts_is_completed(self, categorizer):
        record = make_record(call_attempts=[CallAttempt(i, NOW, "Busy") for i in (1, 2, 3)])
        assert categorizer.bucket_for(record, NOW) == Bucket.COMPLETED

    def test_new_window_is_configurable(self):
        wide = Categorizer(DEFAULT_TAXONOMY, new_window=timedelta(days=30))
        assert wide.bucket_for(make_record(record_date="01-03-2026"), NOW) == Bucket.NEW


class TestCategorize:

    def test_partition_completeness(self, categorizer):
        records = _sample()
        result = categorizer.categorize(records, NOW)

        assert result.total == len(records)
        assert result.to_dict() == {
            "newCount": 2,
            "overdue": 2,
            "followUps": 4,
            "completed": 2,
            "invalid": 2,
        }
        assert result.missing_reasons == 4

    def test_filters_match_counts(self, categorizer):
        records = _sample()
        counts = categorizer.categorize(records, NOW).to_dict()

        for bucket in Bucket:
            selected = [r for r in records if categorizer.predicate(bucket, NOW)(r)]
            assert len(selected) == counts[bucket.value]

    def test_no_filter_selects_all(self, categorizer):
        records = _sample()
        assert all(categorizer.predicate(None, NOW)(r) for r in records)


class TestBucketParse:

    @pytest.mark.parametrize("value", [None, "", "all"])
    def test_no_filter(self, value):
        assert Bucket.parse(value) is None

    def test_names_and_values(self):
        assert Bucket.parse("followUps") == Bucket.FOLLOW_UPS
        assert Bucket.parse("overdue") == Bucket.OVERDUE
        assert Bucket.parse("new") == Bucket.NEW

    def test_unknown(self):
        with pytest.raises(ValueError):
            Bucket.parse("stale")
