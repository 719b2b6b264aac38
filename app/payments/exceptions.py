"""
Payment-specific exceptions for gateway and transaction operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Entity lookup failures
    │   └── TransactionNotFoundError - No transaction for a reference
    │       └── TransactionNotFoundForCallbackError - Callback matched nothing
    ├── PaymentValidationError - Request validation failures (field map)
    │   ├── AmountOutOfRangeError - Amount outside gateway min..max
    │   ├── UnsupportedCurrencyError - Currency not accepted by gateway
    │   ├── RefundAmountExceededError - Refund larger than refundable balance
    │   ├── TransactionNotRefundableError - Status does not allow refunds
    │   └── RetryNotAllowedError - Retry guard rejected the transaction
    ├── GatewayLookupError
    │   ├── UnknownGatewayError - Name is not registered
    │   └── GatewayDisabledError - Registered but switched off
    ├── GatewayConfigurationError - Missing/invalid credentials
    ├── InvalidSignatureError - Callback signature mismatch
    ├── UnsupportedOperationError - Capability not offered by the provider
    └── PaymentProcessingError - Processing failures
        └── GatewayError - Provider returned an error (status + raw payload)
            ├── GatewayTimeoutError - Outcome unknown, must re-verify
            └── CardDeclinedError - Provider declined the payment

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from payments.exceptions import AmountOutOfRangeError

    raise AmountOutOfRangeError(
        "Amount 0.50 is outside the allowed range 1.00 - 100000.00",
        details={"amount": "0.50", "minimum": "1.00", "maximum": "100000.00"},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Root of the payment error taxonomy.

    PaymentOrchestrator catches these and returns them as failed
    ServiceResults; views then pick the status from error_code.
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """Raised when a payment entity cannot be found."""

    default_error_code: str = "PAYMENT_NOT_FOUND"


class TransactionNotFoundError(PaymentNotFoundError):
    """Raised when no transaction exists for a reference."""

    default_error_code: str = "TRANSACTION_NOT_FOUND"


class TransactionNotFoundForCallbackError(TransactionNotFoundError):
    """
    A provider callback matched no transaction.

    Logged, not raised: the orchestrator acknowledges such callbacks so
    providers stop redelivering them.
    """

    default_error_code: str = "TRANSACTION_NOT_FOUND_FOR_CALLBACK"


class PaymentValidationError(PaymentError):
    """
    A payment request or callback failed input checks.

    Field-level errors are kept under details["errors"] as a mapping of
    dotted field path to messages, e.g. {"customer.email": ["..."]}.
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        errors: dict[str, list[str]] | None = None,
    ):
        details = details or {}
        if errors:
            details["errors"] = errors
        super().__init__(message, error_code=error_code, details=details)

    @property
    def errors(self) -> dict[str, list[str]]:
        return self.details.get("errors", {})


class AmountOutOfRangeError(PaymentValidationError):
    """Raised when an amount falls outside the gateway's min..max range."""

    default_error_code: str = "AMOUNT_OUT_OF_RANGE"


class UnsupportedCurrencyError(PaymentValidationError):
    """Raised when a gateway does not accept the requested currency."""

    default_error_code: str = "UNSUPPORTED_CURRENCY"


class RefundAmountExceededError(PaymentValidationError):
    """Raised when a refund exceeds the transaction's refundable amount."""

    default_error_code: str = "REFUND_AMOUNT_EXCEEDED"


class TransactionNotRefundableError(PaymentValidationError):
    """Raised when refunding a transaction that is not completed."""

    default_error_code: str = "TRANSACTION_NOT_REFUNDABLE"


class RetryNotAllowedError(PaymentValidationError):
    """Raised when a transaction is not eligible for another attempt."""

    default_error_code: str = "RETRY_NOT_ALLOWED"


class GatewayLookupError(PaymentError):
    """Base for registry lookup failures."""

    default_error_code: str = "GATEWAY_LOOKUP_ERROR"


class UnknownGatewayError(GatewayLookupError):
    """Raised when resolving a gateway name that is not registered."""

    default_error_code: str = "UNKNOWN_GATEWAY"


class GatewayDisabledError(GatewayLookupError):
    """Raised when a registered gateway is switched off in configuration."""

    default_error_code: str = "GATEWAY_DISABLED"


class GatewayConfigurationError(PaymentError):
    """
    Raised when a gateway's configuration is incomplete.

    Example:
        raise GatewayConfigurationError(
            "PayFast merchant_id is not configured",
            details={"gateway": "payfast", "missing": ["merchant_id"]},
        )
    """

    default_error_code: str = "GATEWAY_CONFIGURATION_ERROR"


class InvalidSignatureError(PaymentError):
    """
    Raised when a callback signature does not match.

    Callbacks failing this check must never change transaction state.
    """

    default_error_code: str = "INVALID_SIGNATURE"


class UnsupportedOperationError(PaymentError):
    """Raised when a provider does not offer the requested capability."""

    default_error_code: str = "UNSUPPORTED_OPERATION"


class PaymentProcessingError(PaymentError):
    """Raised when payment processing fails."""

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentProcessingError):
    """
    Provider returned an error or an unusable response.

    Attributes:
        gateway: Gateway name
        status_code: HTTP status returned by the provider (if any)
        raw_response: Parsed provider body, preserved for diagnostics
        is_retryable: Whether the same request may be sent again

    Example:
        except GatewayError as e:
            if e.is_retryable:
                schedule_retry(e)
            logger.error("Provider error", extra={"raw": e.raw_response})
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway: str | None = None,
        status_code: int | None = None,
        raw_response: Any = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway:
            details["gateway"] = gateway
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway = gateway
        self.status_code = status_code
        self.raw_response = raw_response
        if status_code is not None and (status_code == 429 or status_code >= 500):
            self.is_retryable = True


class GatewayTimeoutError(GatewayError):
    """
    Provider did not answer in time.

    IMPORTANT: the operation may have succeeded on the provider's side.
    Treat the outcome as unknown and re-verify before retrying.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


class CardDeclinedError(GatewayError):
    """
    Provider declined the payment method.

    Permanent for the same card: do not retry automatically.
    """

    default_error_code: str = "CARD_DECLINED"

    def __init__(self, message: str, decline_code: str | None = None, **kwargs: Any):
        details = kwargs.pop("details", None) or {}
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, details=details, **kwargs)
        self.decline_code = decline_code


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    The transaction version moved on since the caller read it.

    Reload and retry, or give up.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    A refund or recurring batch lock is held elsewhere.

    Raised by DistributedLock.acquire(); details carry the Redis key.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Transaction.status cannot move to the requested status.

    Wraps django-fsm's TransitionNotAllowed with current and target
    status in details.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "TransactionNotFoundError",
    "TransactionNotFoundForCallbackError",
    "PaymentValidationError",
    "AmountOutOfRangeError",
    "UnsupportedCurrencyError",
    "RefundAmountExceededError",
    "TransactionNotRefundableError",
    "RetryNotAllowedError",
    "GatewayLookupError",
    "UnknownGatewayError",
    "GatewayDisabledError",
    "GatewayConfigurationError",
    "InvalidSignatureError",
    "UnsupportedOperationError",
    "PaymentProcessingError",
    # Gateway
    "GatewayError",
    "GatewayTimeoutError",
    "CardDeclinedError",
    # Concurrency control
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
