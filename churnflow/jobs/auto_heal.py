"""
Periodic churn consistency sweep.

Completes every stored record whose reason is terminal or whose attempts
are used up. Safe to run while requests are writing: each correction is a
conditional write that skips rows already COMPLETED.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("churnflow.jobs.auto_heal")


class ChurnAutoHealJob:
    """One sweep over all churn records."""

    def __init__(self, service=None):
        self._service = service

    @property
    def service(self):
        if self._service is None:
            from ..followup.service import get_churn_service

            self._service = get_churn_service()
        return self._service

    async def run(self) -> dict:
        """Run the sweep and return a summary. Never raises."""
        from ..storage.database import get_db_pool

        started = time.monotonic()
        summary: dict = {
            "started_at": datetime.now(timezone.utc).isoformat(),
            "scanned": 0,
            "corrected": 0,
            "failed": 0,
            "error": None,
        }

        if not get_db_pool().is_initialized:
            summary["error"] = "Database not initialized"
            logger.debug("Skipping auto-heal: database not initialized")
            return summary

        try:
            report = await self.service.heal_all()
            summary["scanned"] = report.scanned
            summary["corrected"] = report.corrected_count
            summary["failed"] = len(report.failed)
        except Exception as e:
            logger.error("Auto-heal sweep failed: %s", e)
            summary["error"] = str(e)

        summary["duration_ms"] = int((time.monotonic() - started) * 1000)
        if summary["corrected"] or summary["failed"]:
            logger.info(
                "Auto-heal: %d scanned, %d corrected, %d failed in %dms",
                summary["scanned"], summary["corrected"], summary["failed"], summary["duration_ms"],
            )
        return summary


_job: Optional[ChurnAutoHealJob] = None


def get_auto_heal_job() -> ChurnAutoHealJob:
    global _job
    if _job is None:
        _job = ChurnAutoHealJob()
    return _job
