# app/domain/common/errors.py
from __future__ import annotations


class CoordinatorError(Exception):
    """Base error for the session coordinator. Carries a wire-friendly code."""

    code = "COORDINATOR_ERROR"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class TransportFailure(CoordinatorError):
    """Broadcast send was not acknowledged."""

    code = "TRANSPORT_FAILURE"


class StoreWriteFailure(CoordinatorError):
    """Insert/update rejected by the persisted store."""

    code = "STORE_WRITE_FAILURE"


class MalformedEvent(CoordinatorError):
    """Broadcast or notification payload is missing expected fields."""

    code = "MALFORMED_EVENT"


class AuthorityViolation(CoordinatorError):
    """A non-host replica tried to originate a pacing event."""

    code = "NOT_HOST"


class StoreReadFailure(CoordinatorError):
    """Persisted store could not be read."""

    code = "STORE_READ_FAILURE"
