from typing import Optional


class LendingError(Exception):
    """Base class for outcomes the caller is expected to see."""

    status_code = 400

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason


class NotFound(LendingError):
    status_code = 404


class Forbidden(LendingError):
    status_code = 403


class Rejected(LendingError):
    status_code = 400


class StoreFailure(LendingError):
    status_code = 503
