"""Errors raised by the churn store. The API maps them to 503/500."""


class StorageError(Exception):
    """Base class for churn store failures."""


class DatabaseUnavailableError(StorageError):
    """The pool is not open, so `operation` could not run."""

    def __init__(self, operation: str = "database operation"):
        self.operation = operation
        super().__init__(f"Churn store unavailable for {operation}")


class DatabaseOperationError(StorageError):
    """A query for `operation` failed; the driver error is kept as `cause`."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Churn store could not {operation}: {cause}")
