"""
Repository classes for database access.

Repositories provide a clean interface for data access,
hiding the SQL implementation details.
"""

from .churn import ChurnRepository, get_churn_repo
from .roster import RosterRepository, get_roster_repo

__all__ = [
    "ChurnRepository",
    "RosterRepository",
    "get_churn_repo",
    "get_roster_repo",
]
