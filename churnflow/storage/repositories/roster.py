"""
Owner roster repository.

Read-only view over the `user_profiles` table maintained by the identity
provider. Supplies caller roles and team membership to the visibility layer.
"""

import logging
from typing import Optional

from ..database import get_db_pool
from ..exceptions import DatabaseOperationError, DatabaseUnavailableError
from ..models import RosterMember

logger = logging.getLogger("churnflow.storage.roster")


class RosterRepository:
    """Repository for roster lookups."""

    async def get_by_email(self, email: str) -> Optional[RosterMember]:
        """Get a roster entry by email (case-insensitive)."""
        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("get roster member")

        try:
            row = await pool.fetchrow(
                """
                SELECT email, full_name, role, team_name, is_active
                FROM user_profiles
                WHERE lower(email) = lower($1)
                """,
                email,
            )
            return self._row_to_member(row) if row else None
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            raise DatabaseOperationError("get roster member", e)

    async def team_member_names(self, team_name: str) -> list[str]:
        """Full names of the active members of a team."""
        pool = get_db_pool()
        if not pool.is_initialized:
            raise DatabaseUnavailableError("get team members")

        try:
            rows = await pool.fetch(
                """
                SELECT full_name FROM user_profiles
                WHERE team_name = $1 AND is_active = TRUE
                ORDER BY full_name
                """,
                team_name,
            )
            return [row["full_name"] for row in rows]
        except DatabaseUnavailableError:
            raise
        except Exception as e:
            raise DatabaseOperationError("get team members", e)

    def _row_to_member(self, row) -> RosterMember:
        return RosterMember(
            email=row["email"],
            full_name=row["full_name"],
            role=row["role"],
            team_name=row["team_name"],
            is_active=bool(row["is_active"]),
        )


_roster_repo: Optional[RosterRepository] = None


def get_roster_repo() -> RosterRepository:
    """Get the global roster repository."""
    global _roster_repo
    if _roster_repo is None:
        _roster_repo = RosterRepository()
    return _roster_repo
