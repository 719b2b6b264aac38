"""
Service layer primitives.

ServiceResult is what orchestration code hands back to views: a success
flag plus either data or an error message and code. BaseService gives
services a class-scoped logger, an atomic() block and a uniform way to
turn a caught exception into a failed result.

Expected outcomes (declines, unsupported operations, unknown references)
come back as failed results. Lock contention and illegal state changes
raise ConflictError and are left for the view to answer with 409.

Usage:
    class RecurringProcessor(BaseService):
        def charge(self, token) -> ServiceResult[Transaction]:
            try:
                with self.atomic():
                    txn = self.store.create(...)
            except PaymentError as e:
                return self.handle_exception(e, "charge", log_level=logging.WARNING)
            return ServiceResult.success(txn)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call.

    Attributes:
        success: Whether the call succeeded
        data: Payload on success
        error: Message on failure
        error_code: Stable code clients and views branch on
        errors: Per-field messages when input was rejected
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        return cls(success=False, error=error, error_code=error_code, errors=errors)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Failed result for a caught exception.

        Application errors keep their code, and a dict under
        details["errors"] becomes the field errors. Other exceptions are
        coded by their upper-cased class name.
        """
        if not isinstance(exc, BaseApplicationError):
            return cls(
                success=False,
                error=str(exc),
                error_code=error_code or type(exc).__name__.upper(),
            )

        errors = exc.details.get("errors")
        return cls(
            success=False,
            error=exc.message,
            error_code=error_code or exc.error_code,
            errors=errors if isinstance(errors, dict) else None,
        )

    def to_response(self) -> dict[str, Any]:
        """Body for an API response."""
        if self.success:
            return {"success": True, "data": self.data}

        body: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            body["error_code"] = self.error_code
        if self.errors:
            body["errors"] = self.errors
        return body

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """Base class for payment services."""

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """Run the block in a database transaction."""
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log exc and return it as a failed ServiceResult.

        Tracebacks are logged only for exceptions that are not
        application errors.
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(
            log_level,
            message,
            extra={
                "error_code": getattr(exc, "error_code", type(exc).__name__),
                "details": getattr(exc, "details", None),
            },
            exc_info=not isinstance(exc, BaseApplicationError),
        )
        return ServiceResult.from_exception(exc)
