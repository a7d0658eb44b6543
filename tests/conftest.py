"""Shared fixtures."""

import pytest

from churnflow.followup.service import ChurnService
from churnflow.followup.taxonomy import DEFAULT_TAXONOMY
from churnflow.followup.visibility import Caller, Role

from fakes import NOW, ROSTER, FakeChurnRepo, FakeRoster


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def taxonomy():
    return DEFAULT_TAXONOMY


@pytest.fixture
def roster():
    return FakeRoster(ROSTER)


@pytest.fixture
def repo():
    return FakeChurnRepo()


@pytest.fixture
def service(repo, roster, taxonomy):
    return ChurnService(repo=repo, roster=roster, taxonomy=taxonomy, clock=lambda: NOW)


@pytest.fixture
def admin():
    return Caller("admin@example.com", "Dev Admin", Role.ADMIN)


@pytest.fixture
def lead():
    return Caller("lead@example.com", "Lena Lead", Role.TEAM_LEAD, "alpha")


@pytest.fixture
def asha():
    return Caller("asha@example.com", "Asha Rao", Role.AGENT, "alpha")


@pytest.fixture
def cara():
    return Caller("cara@example.com", "Cara Singh", Role.AGENT, "beta")
