"""
Role-scoped visibility.

Resolves which record owners (KAM names) a caller may see or change:

- admin      -> everyone
- team lead  -> active members of the caller's team (nobody if no team)
- agent      -> the caller themself
- other      -> nobody

The same resolution guards reads and writes. Unknown roles and missing
teams resolve to an empty set, never to "everyone".
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

from ..storage.models import ChurnRecord, RosterMember
from .exceptions import ForbiddenError

logger = logging.getLogger("churnflow.followup.visibility")


class Role(str, Enum):
    ADMIN = "admin"
    TEAM_LEAD = "team_lead"
    AGENT = "agent"
    UNKNOWN = "unknown"


def normalize_role(role: Optional[str]) -> Role:
    """Normalize role spellings like 'Team Lead', 'team_lead', 'TeamLead'."""
    if not role:
        return Role.UNKNOWN
    key = role.lower().strip().replace("_", "").replace(" ", "").replace("-", "")
    if key == "admin":
        return Role.ADMIN
    if key == "teamlead":
        return Role.TEAM_LEAD
    if key == "agent":
        return Role.AGENT
    return Role.UNKNOWN


class _Unrestricted:
    """Marker for callers whose visibility has no owner filter."""

    def __repr__(self) -> str:
        return "UNRESTRICTED"

    def __bool__(self) -> bool:
        return True


UNRESTRICTED = _Unrestricted()

AllowedOwners = Union[frozenset, _Unrestricted]


@dataclass(frozen=True)
class Caller:
    """The identity a request acts on behalf of."""

    email: str
    full_name: str
    role: Role
    team_name: Optional[str] = None

    @classmethod
    def from_roster(cls, member: RosterMember) -> "Caller":
        return cls(
            email=member.email,
            full_name=member.full_name,
            role=normalize_role(member.role),
            team_name=member.team_name or None,
        )


def owner_filter(allowed: AllowedOwners) -> Optional[frozenset]:
    """Repository filter for `allowed`: None when unrestricted."""
    return None if allowed is UNRESTRICTED else allowed


def can_access(allowed: AllowedOwners, record: ChurnRecord) -> bool:
    return allowed is UNRESTRICTED or record.kam in allowed


def ensure_can_access(
    allowed: AllowedOwners,
    caller: Caller,
    record: ChurnRecord,
    action: str = "access",
) -> None:
    """Raise ForbiddenError unless `caller` may act on `record`."""
    if not can_access(allowed, record):
        logger.warning("Denied %s on RID %s for %s", action, record.rid, caller.email)
        raise ForbiddenError(caller.email, record.rid, action)


def filter_visible(allowed: AllowedOwners, records: Iterable[ChurnRecord]) -> list[ChurnRecord]:
    if allowed is UNRESTRICTED:
        return list(records)
    return [r for r in records if r.kam in allowed]


class VisibilityResolver:
    """Maps callers to their allowed owner set using the roster."""

    def __init__(self, roster=None):
        if roster is None:
            from ..storage.repositories.roster import get_roster_repo

            roster = get_roster_repo()
        self.roster = roster

    async def allowed_owners(self, caller: Caller) -> AllowedOwners:
        if caller.role == Role.ADMIN:
            return UNRESTRICTED

        if caller.role == Role.AGENT:
            return frozenset({caller.full_name})

        if caller.role == Role.TEAM_LEAD:
            if not caller.team_name:
                logger.warning("Team lead %s has no team; no records visible", caller.email)
                return frozenset()
            members = await self.roster.team_member_names(caller.team_name)
            return frozenset(members)

        logger.warning("Caller %s has unrecognized role; no records visible", caller.email)
        return frozenset()

    async def resolve_caller(self, email: str) -> Optional[Caller]:
        """Look up a caller by email. Inactive roster entries resolve to None."""
        member = await self.roster.get_by_email(email)
        if member is None or not member.is_active:
            return None
        return Caller.from_roster(member)
