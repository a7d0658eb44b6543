"""Tests for settings validation and the migration runner."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from churnflow.config import FollowUpConfig, Settings
from churnflow.storage.config import DatabaseConfig
from churnflow.storage.migrations import _migration_version, run_migrations


class TestSettings:

    def test_defaults(self):
        cfg = FollowUpConfig()
        assert cfg.reminder_interval_hours == 24
        assert cfg.max_attempts == 3
        assert cfg.attempt_ceiling == 4
        assert cfg.new_window_days == 3

    def test_ceiling_below_attempts_rejected(self):
        with pytest.raises(ValidationError):
            FollowUpConfig(max_attempts=5, attempt_ceiling=4)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CHURNFLOW_FOLLOWUP_MAX_CONFLICT_RETRIES", "7")
        assert FollowUpConfig().max_conflict_retries == 7

    def test_log_level_uppercased(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_db_pool_bounds(self):
        with pytest.raises(ValidationError):
            DatabaseConfig(min_pool_size=0)


class TestMigrations:

    def test_version_from_filename(self):
        assert _migration_version("001_churn_records.sql") == 1
        assert _migration_version("notes.sql") == 0

    @pytest.mark.asyncio
    async def test_applies_pending_once(self):
        pool = MagicMock()
        pool.execute = AsyncMock(return_value="OK")
        pool.fetch = AsyncMock(return_value=[])

        applied = await run_migrations(pool)

        assert applied == ["001_churn_records"]
        sql = [call.args[0] for call in pool.execute.call_args_list]
        assert any("CREATE TABLE IF NOT EXISTS churn_records" in s for s in sql)

    @pytest.mark.asyncio
    async def test_nothing_pending(self):
        pool = MagicMock()
        pool.execute = AsyncMock(return_value="OK")
        pool.fetch = AsyncMock(return_value=[{"name": "001_churn_records"}])

        assert await run_migrations(pool) == []
        assert pool.execute.await_count == 1
