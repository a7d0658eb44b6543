"""
Errors raised by the follow-up engine.

NotFound and Forbidden go to the caller as-is. Conflict is retried inside
the service and only escapes once the retry budget is spent.
"""

from typing import Optional


class ChurnError(Exception):
    """Base exception for follow-up engine errors."""

    pass


class NotFoundError(ChurnError):
    """Raised when a churn record does not exist."""

    def __init__(self, rid: str):
        self.rid = rid
        super().__init__(f"Churn record not found: {rid}")


class ForbiddenError(ChurnError):
    """Raised when the caller may not see or change a record."""

    def __init__(self, caller: str, rid: Optional[str] = None, action: str = "access"):
        self.caller = caller
        self.rid = rid
        self.action = action
        target = f" RID {rid}" if rid else ""
        super().__init__(f"Access denied: {caller} cannot {action}{target}")


class InvalidInputError(ChurnError):
    """Raised for malformed reasons, dates, responses or out-of-range values."""

    pass


class ConflictError(ChurnError):
    """Raised when a conditional write kept losing to concurrent writers."""

    def __init__(self, rid: str, attempts: int):
        self.rid = rid
        self.attempts = attempts
        super().__init__(
            f"Churn record {rid} changed concurrently; gave up after {attempts} attempts"
        )
