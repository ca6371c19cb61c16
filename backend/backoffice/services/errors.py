# Overview: Typed error taxonomy shared by the reconciliation services.

"""
Every rejected operation raises one of these, before any row is written.
Callers catch by type and read `code` / `details`; they never parse messages.

    CoreError
    +-- ValidationError       bad input shape (missing reason code, empty lines, qty > returnable)
    |   +-- NotFoundError     referenced row does not exist
    +-- StateError            illegal transition; details carry `current_status`
    +-- ConsistencyError      would break a ledger/credit invariant
    +-- InfrastructureError   store failed mid-transaction; rolled back, not retried here
"""

from __future__ import annotations


class CoreError(Exception):
    """Base class for reconciliation core errors."""

    default_code = "CORE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CoreError):
    default_code = "VALIDATION_ERROR"


class NotFoundError(ValidationError):
    default_code = "NOT_FOUND"


class StateError(CoreError):
    default_code = "INVALID_STATUS"

    def __init__(self, message: str, *, current_status: str | None, code: str | None = None, details: dict | None = None):
        details = dict(details or {})
        details["current_status"] = current_status
        super().__init__(message, code=code, details=details)
        self.current_status = current_status


class ConsistencyError(CoreError):
    default_code = "CONSISTENCY_ERROR"


class InfrastructureError(CoreError):
    default_code = "INFRASTRUCTURE_ERROR"
    retryable = False
