"""Tests for role-scoped visibility."""

import pytest

from churnflow.followup.exceptions import ForbiddenError
from churnflow.followup.visibility import (
    UNRESTRICTED,
    Caller,
    Role,
    VisibilityResolver,
    can_access,
    ensure_can_access,
    filter_visible,
    normalize_role,
    owner_filter,
)

from fakes import make_record


class TestNormalizeRole:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("admin", Role.ADMIN),
            ("Admin", Role.ADMIN),
            ("Team Lead", Role.TEAM_LEAD),
            ("team_lead", Role.TEAM_LEAD),
            ("TeamLead", Role.TEAM_LEAD),
            ("agent", Role.AGENT),
            ("manager", Role.UNKNOWN),
            ("", Role.UNKNOWN),
            (None, Role.UNKNOWN),
        ],
    )
    def test_spellings(self, raw, expected):
        assert normalize_role(raw) == expected


class TestAllowedOwners:

    @pytest.mark.asyncio
    async def test_admin_unrestricted(self, roster, admin):
        assert await VisibilityResolver(roster).allowed_owners(admin) is UNRESTRICTED

    @pytest.mark.asyncio
    async def test_agent_sees_self(self, roster, asha):
        assert await VisibilityResolver(roster).allowed_owners(asha) == frozenset({"Asha Rao"})

    @pytest.mark.asyncio
    async def test_team_lead_sees_active_team(self, roster, lead):
        allowed = await VisibilityResolver(roster).allowed_owners(lead)
        assert allowed == frozenset({"Lena Lead", "Asha Rao", "Ben Okafor"})

    @pytest.mark.asyncio
    async def test_team_lead_without_team_sees_nothing(self, roster):
        lone = Caller("lone@example.com", "Lone Lead", Role.TEAM_LEAD, None)
        assert await VisibilityResolver(roster).allowed_owners(lone) == frozenset()

    @pytest.mark.asyncio
    async def test_unknown_role_sees_nothing(self, roster):
        stranger = Caller("x@example.com", "X", Role.UNKNOWN)
        assert await VisibilityResolver(roster).allowed_owners(stranger) == frozenset()


class TestResolveCaller:

    @pytest.mark.asyncio
    async def test_known_caller(self, roster):
        caller = await VisibilityResolver(roster).resolve_caller("LEAD@example.com")
        assert caller == Caller("lead@example.com", "Lena Lead", Role.TEAM_LEAD, "alpha")

    @pytest.mark.asyncio
    async def test_inactive_and_missing(self, roster):
        resolver = VisibilityResolver(roster)
        assert await resolver.resolve_caller("gone@example.com") is None
        assert await resolver.resolve_caller("nobody@example.com") is None


class TestChecks:

    def test_owner_filter(self):
        assert owner_filter(UNRESTRICTED) is None
        assert owner_filter(frozenset({"A"})) == frozenset({"A"})

    def test_filter_visible(self):
        records = [make_record("1", kam="A"), make_record("2", kam="B")]
        assert [r.rid for r in filter_visible(frozenset({"B"}), records)] == ["2"]
        assert len(filter_visible(UNRESTRICTED, records)) == 2
        assert filter_visible(frozenset(), records) == []

    def test_ensure_can_access(self, asha):
        mine = make_record("1", kam="Asha Rao")
        theirs = make_record("2", kam="Cara Singh")
        allowed = frozenset({"Asha Rao"})

        ensure_can_access(allowed, asha, mine)
        assert can_access(UNRESTRICTED, theirs)
        with pytest.raises(ForbiddenError, match="RID 2"):
            ensure_can_access(allowed, asha, theirs, "update")
