"""
Base exception classes shared by domain apps.

Domain errors carry a human-readable message, a stable error code that
clients branch on, and an optional details mapping. Services turn them
into ServiceResult failures (see core.services); views map the error
code to an HTTP status.

Exception Hierarchy:
    BaseApplicationError
    └── ConflictError - state conflicts (illegal transitions, locks, versions)

Domain apps subclass these; payment errors live in payments.exceptions.

Usage:
    from core.exceptions import BaseApplicationError

    class RefundAmountExceededError(BaseApplicationError):
        default_error_code = "REFUND_AMOUNT_EXCEEDED"

    raise RefundAmountExceededError(
        "Refund amount 120.00 exceeds refundable amount 100.00",
        details={"refundable": "100.00"},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for application errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code; defaults to default_error_code
        details: Extra context (field errors, provider payloads, ids)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Error as an API payload.

        Example:
            {
                "error": "Transaction 'PF-1700000000-ABC123' not found",
                "error_code": "TRANSACTION_NOT_FOUND",
                "details": {"reference": "PF-1700000000-ABC123"}
            }
        """
        payload: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, error_code={self.error_code!r})"


class ConflictError(BaseApplicationError):
    """
    The operation conflicts with the current state of a record.

    Raised for illegal status transitions, stale versions and lock
    contention. Services let these propagate; views answer 409.
    """

    default_error_code: str = "CONFLICT"
