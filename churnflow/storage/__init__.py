"""
Storage module for churnflow.

Provides persistent storage for:
- Churn records and their follow-up workflow state
- The read-only owner roster
"""

from .config import DatabaseConfig, db_settings
from .database import DatabasePool, get_db_pool
from .exceptions import (
    StorageError,
    DatabaseUnavailableError,
    DatabaseOperationError,
)

__all__ = [
    "DatabaseConfig",
    "db_settings",
    "DatabasePool",
    "get_db_pool",
    "StorageError",
    "DatabaseUnavailableError",
    "DatabaseOperationError",
]
