"""Error types shared across the logbook package."""

from typing import Optional


class LogbookError(Exception):
    """Base class for logbook errors."""


class RemoteError(LogbookError):
    """The remote store rejected or failed a request.

    ``retryable`` is False for rejections that will fail the same way on every
    attempt (validation and constraint errors), True for transient failures.
    """

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class ConnectivityError(RemoteError):
    """The remote store could not be reached."""

    def __init__(self, message: str):
        super().__init__(message, status=None, retryable=True)


class SettlementError(LogbookError):
    """Base class for settlement failures."""


class SettlementValidationError(SettlementError):
    """Settlement payload is invalid."""


class SettlementNotFoundError(SettlementError):
    """The transaction being settled does not exist."""
