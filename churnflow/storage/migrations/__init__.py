"""
Database migrations for churnflow.

Tracks applied migrations in `schema_migrations` table to avoid re-running.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger("churnflow.storage.migrations")

MIGRATIONS_DIR = Path(__file__).parent


async def _ensure_migrations_table(pool) -> None:
    """Create the migrations tracking table if it doesn't exist."""
    await pool.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)


async def _get_applied_migrations(pool) -> set[str]:
    """Get set of already applied migration names (e.g. '001_churn_records')."""
    rows = await pool.fetch("SELECT name FROM schema_migrations")
    return {row["name"] for row in rows}


def _migration_version(filename: str) -> int:
    prefix = filename.split("_", 1)[0]
    match = re.match(r"\d+", prefix)
    return int(match.group()) if match else 0


async def run_migrations(pool) -> list[str]:
    """
    Run all pending migrations in filename order.

    Returns the names of the migrations applied by this call.
    """
    await _ensure_migrations_table(pool)
    applied = await _get_applied_migrations(pool)

    migration_files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    pending = [f for f in migration_files if f.stem not in applied]

    if not pending:
        logger.debug("All %d migrations already applied", len(migration_files))
        return []

    logger.info("Running %d pending migrations (of %d total)", len(pending), len(migration_files))

    done = []
    for migration_file in pending:
        logger.info("Running migration: %s", migration_file.name)
        try:
            await pool.execute(migration_file.read_text())
            await pool.execute(
                "INSERT INTO schema_migrations (version, name) VALUES ($1, $2) "
                "ON CONFLICT (version) DO NOTHING",
                _migration_version(migration_file.name),
                migration_file.stem,
            )
        except Exception as e:
            logger.error("Migration %s failed: %s", migration_file.name, e)
            raise
        done.append(migration_file.stem)

    return done
