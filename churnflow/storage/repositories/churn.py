"""
Churn record repository.

Every workflow write goes through `save()`, which is conditioned on the
version the caller read. A `False` return means another writer got there
first and the caller must re-read and recompute.
"""

import json
import logging
from datetime import datetime
from typing import Iterable, Optional

from ..database import get_db_pool
from ..exceptions import DatabaseOperationError, DatabaseUnavailableError
from ..models import CallAttempt, ChurnRecord, FollowUpStatus, utcnow

logger = logging.getLogger("churnflow.storage.churn")

_COLUMNS = """
    rid, record_date, restaurant_name, brand_name, owner_email, kam,
    sync_days, zone, reason, remarks, controlled_status,
    follow_up_status, is_follow_up_active, current_call, call_attempts,
    next_reminder_time, follow_up_completed_at, mail_sent,
    mail_sent_confirmation, date_time_filled, uploaded_by, uploaded_at,
    created_at, updated_at, version
"""

_INSERT = f"""
    INSERT INTO churn_records ({_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
            $15::jsonb, $16, $17, $18, $19, $20, $21, $22, $23, $24, 1)
"""


class ChurnRepository:
    """Repository for churn record storage and retrieval."""

    async def get_by_rid(self, rid: str) -> Optional[ChurnRecord]:
        """Get a record by rid. Returns None if not found."""
        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("get churn record")

        try:
            row = await pool.fetchrow(
                f"SELECT {_COLUMNS} FROM churn_records WHERE rid = $1",
                rid,
            )
            return self._row_to_record(row) if row else None
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            raise DatabaseOperationError("get churn record", e)

    async def list_records(self, owners: Optional[frozenset[str]] = None) -> list[ChurnRecord]:
        """
        List records, optionally restricted to a set of owning KAMs.

        Args:
            owners: KAM names to include. None means no restriction; an
                empty set matches nothing.
        """
        return await self._select("list churn records", owners)

    async def list_active(self, owners: Optional[frozenset[str]] = None) -> list[ChurnRecord]:
        """Records whose stored status is ACTIVE."""
        return await self._select(
            "list active follow-ups",
            owners,
            condition="follow_up_status = 'ACTIVE'",
        )

    async def list_overdue(
        self,
        as_of: datetime,
        owners: Optional[frozenset[str]] = None,
    ) -> list[ChurnRecord]:
        """INACTIVE records whose next reminder is at or before `as_of`."""
        return await self._select(
            "list overdue follow-ups",
            owners,
            condition=(
                "follow_up_status = 'INACTIVE' AND next_reminder_time IS NOT NULL "
                "AND next_reminder_time <= $2"
            ),
            extra=[as_of],
            order_by="next_reminder_time ASC",
        )

    async def _select(
        self,
        operation: str,
        owners: Optional[frozenset[str]],
        condition: Optional[str] = None,
        extra: Optional[list] = None,
        order_by: str = "created_at DESC",
    ) -> list[ChurnRecord]:
        if owners is not None and not owners:
            return []

        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError(operation)

        # $1 is always the owner array (NULL = unrestricted)
        conditions = ["($1::text[] IS NULL OR kam = ANY($1::text[]))"]
        if condition:
            conditions.append(condition)
        params = [sorted(owners) if owners is not None else None, *(extra or [])]

        try:
            rows = await pool.fetch(
                f"""
                SELECT {_COLUMNS} FROM churn_records
                WHERE {" AND ".join(conditions)}
                ORDER BY {order_by}
                """,
                *params,
            )
            return [self._row_to_record(row) for row in rows]
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            raise DatabaseOperationError(operation, e)

    async def save(self, record: ChurnRecord, expected_version: int) -> bool:
        """
        Write the workflow fields of `record` if the stored version still
        equals `expected_version`.

        Returns True on success (and bumps `record.version`), False when the
        row changed underneath the caller.
        """
        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("save churn record")

        record.updated_at = utcnow()
        try:
            count = await pool.execute_count(
                """
                UPDATE churn_records
                SET reason = $3,
                    remarks = $4,
                    controlled_status = $5,
                    follow_up_status = $6,
                    is_follow_up_active = $7,
                    current_call = $8,
                    call_attempts = $9::jsonb,
                    next_reminder_time = $10,
                    follow_up_completed_at = $11,
                    mail_sent = $12,
                    mail_sent_confirmation = $13,
                    date_time_filled = $14,
                    updated_at = $15,
                    version = version + 1
                WHERE rid = $1 AND version = $2
                """,
                record.rid,
                expected_version,
                record.reason,
                record.remarks,
                record.controlled_status,
                record.follow_up_status.value,
                record.is_follow_up_active,
                record.current_call,
                json.dumps([a.to_dict() for a in record.call_attempts]),
                record.next_reminder_time,
                record.follow_up_completed_at,
                record.mail_sent,
                record.mail_sent_confirmation,
                record.date_time_filled,
                record.updated_at,
            )
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to save churn record %s: %s", record.rid, e)
            raise DatabaseOperationError("save churn record", e)

        if count == 0:
            logger.info(
                "Version conflict on churn record %s (expected v%d)",
                record.rid,
                expected_version,
            )
            return False

        record.version = expected_version + 1
        return True

    async def mark_completed(self, rid: str, completed_at: datetime) -> bool:
        """
        Force a record to COMPLETED unless it already is.

        Single atomic statement; keeps any existing completion timestamp.
        Returns True if the row was changed.
        """
        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("mark churn record completed")

        try:
            count = await pool.execute_count(
                """
                UPDATE churn_records
                SET follow_up_status = 'COMPLETED',
                    is_follow_up_active = FALSE,
                    next_reminder_time = NULL,
                    follow_up_completed_at = COALESCE(follow_up_completed_at, $2),
                    updated_at = $2,
                    version = version + 1
                WHERE rid = $1 AND follow_up_status <> 'COMPLETED'
                """,
                rid,
                completed_at,
            )
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            raise DatabaseOperationError("mark churn record completed", e)

        if count > 0:
            logger.info("Marked churn record %s COMPLETED", rid)
        return count > 0

    async def existing_rids(self, rids: Iterable[str]) -> set[str]:
        """Return the subset of `rids` that are already stored."""
        rids = list(rids)
        if not rids:
            return set()

        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("check existing rids")

        try:
            rows = await pool.fetch(
                "SELECT rid FROM churn_records WHERE rid = ANY($1::text[])",
                rids,
            )
            return {row["rid"] for row in rows}
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            raise DatabaseOperationError("check existing rids", e)

    async def upload_history(self, limit: int = 100) -> list[dict]:
        """Imports grouped by uploader and upload time, newest first."""
        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("get upload history")

        try:
            rows = await pool.fetch(
                """
                SELECT uploaded_by, uploaded_at, COUNT(*) AS record_count
                FROM churn_records
                WHERE uploaded_at IS NOT NULL
                GROUP BY uploaded_by, uploaded_at
                ORDER BY uploaded_at DESC
                LIMIT $1
                """,
                limit,
            )
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            raise DatabaseOperationError("get upload history", e)

        return [
            {
                "uploaded_by": row["uploaded_by"],
                "uploaded_at": row["uploaded_at"],
                "record_count": row["record_count"],
            }
            for row in rows
        ]

    async def bulk_create(self, records: list[ChurnRecord], batch_size: int = 100) -> dict:
        """
        Insert records in batches, one transaction per batch.

        A failed batch is counted and reported; later batches still run.
        """
        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("bulk create churn records")

        successful = 0
        failed = 0
        errors = []

        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            try:
                async with pool.transaction() as conn:
                    await conn.executemany(_INSERT, [self._insert_args(r) for r in batch])
                successful += len(batch)
            except Exception as e:
                logger.error("Bulk insert batch %d-%d failed: %s", start, start + len(batch), e)
                failed += len(batch)
                errors.append({"batch": f"{start}-{start + len(batch)}", "error": str(e)})

        logger.info("Bulk insert: %d imported, %d failed", successful, failed)
        return {"successful": successful, "failed": failed, "errors": errors}

    def _insert_args(self, record: ChurnRecord) -> tuple:
        return (
            record.rid,
            record.record_date,
            record.restaurant_name,
            record.brand_name,
            record.owner_email,
            record.kam,
            record.sync_days,
            record.zone,
            record.reason,
            record.remarks,
            record.controlled_status,
            record.follow_up_status.value,
            record.is_follow_up_active,
            record.current_call,
            json.dumps([a.to_dict() for a in record.call_attempts]),
            record.next_reminder_time,
            record.follow_up_completed_at,
            record.mail_sent,
            record.mail_sent_confirmation,
            record.date_time_filled,
            record.uploaded_by,
            record.uploaded_at,
            record.created_at,
            record.updated_at,
        )

    def _row_to_record(self, row) -> ChurnRecord:
        """Convert a database row to a ChurnRecord."""
        attempts = row["call_attempts"]
        if isinstance(attempts, str):
            attempts = json.loads(attempts)
        elif attempts is None:
            attempts = []

        return ChurnRecord(
            rid=row["rid"],
            kam=row["kam"],
            record_date=row["record_date"] or "",
            restaurant_name=row["restaurant_name"] or "",
            brand_name=row["brand_name"] or "",
            owner_email=row["owner_email"] or "",
            sync_days=row["sync_days"] or "",
            zone=row["zone"] or "",
            reason=row["reason"] or "",
            remarks=row["remarks"] or "",
            controlled_status=row["controlled_status"] or "Unknown",
            follow_up_status=FollowUpStatus(row["follow_up_status"] or "INACTIVE"),
            is_follow_up_active=bool(row["is_follow_up_active"]),
            current_call=row["current_call"] or 1,
            call_attempts=[CallAttempt.from_dict(a) for a in attempts],
            next_reminder_time=row["next_reminder_time"],
            follow_up_completed_at=row["follow_up_completed_at"],
            mail_sent=bool(row["mail_sent"]),
            mail_sent_confirmation=bool(row["mail_sent_confirmation"]),
            date_time_filled=row["date_time_filled"],
            uploaded_by=row["uploaded_by"],
            uploaded_at=row["uploaded_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
        )


_churn_repo: Optional[ChurnRepository] = None


def get_churn_repo() -> ChurnRepository:
    """Get the global churn repository."""
    global _churn_repo
    if _churn_repo is None:
        _churn_repo = ChurnRepository()
    return _churn_repo
