"""
asyncpg pool shared by the churn and roster repositories.

Repositories check `is_initialized` and raise `DatabaseUnavailableError`
themselves; the pool methods only guard against use before startup.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from .config import db_settings

logger = logging.getLogger("churnflow.storage.database")


class DatabasePool:
    """Process-wide pool, opened in the app lifespan and migrated on open."""

    def __init__(self):
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def initialize(self) -> None:
        """Open the pool, then apply pending migrations if configured."""
        if self._pool is not None:
            return
        if not db_settings.enabled:
            logger.info("Churn store disabled; running without a database")
            return

        try:
            self._pool = await asyncpg.create_pool(
                host=db_settings.host,
                port=db_settings.port,
                database=db_settings.database,
                user=db_settings.user,
                password=db_settings.password,
                min_size=db_settings.min_pool_size,
                max_size=db_settings.max_pool_size,
                timeout=db_settings.connect_timeout,
                command_timeout=db_settings.command_timeout,
            )
        except Exception as e:
            logger.error(
                "Could not open churn store at %s:%d/%s: %s",
                db_settings.host, db_settings.port, db_settings.database, e,
            )
            raise
        logger.info(
            "Churn store pool open (%s:%d/%s, %d-%d connections)",
            db_settings.host,
            db_settings.port,
            db_settings.database,
            db_settings.min_pool_size,
            db_settings.max_pool_size,
        )

        if db_settings.run_migrations:
            from .migrations import run_migrations

            await run_migrations(self)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Churn store pool closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized")
        return self._pool

    async def execute(self, query: str, *args) -> str:
        """Run a statement and return its command status, e.g. 'UPDATE 1'."""
        return await self._require_pool().execute(query, *args)

    async def execute_count(self, query: str, *args) -> int:
        """Run a write and return the affected row count.

        Conditional writes (``... WHERE version = $n``) rely on this to tell
        a successful write from a lost race.
        """
        return parse_row_count(await self.execute(query, *args))

    async def fetch(self, query: str, *args) -> list:
        return await self._require_pool().fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        return await self._require_pool().fetchrow(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection inside a transaction; rolled back if the block raises."""
        async with self._require_pool().acquire() as conn:
            async with conn.transaction():
                yield conn


def parse_row_count(result: str) -> int:
    """Parse row count from a PostgreSQL command status like 'UPDATE 1'."""
    if not result:
        return 0
    try:
        return int(result.split()[-1])
    except (ValueError, IndexError):
        return 0


_db_pool: Optional[DatabasePool] = None


def get_db_pool() -> DatabasePool:
    global _db_pool
    if _db_pool is None:
        _db_pool = DatabasePool()
    return _db_pool


async def init_database() -> None:
    await get_db_pool().initialize()


async def close_database() -> None:
    await get_db_pool().close()
