"""
Tests for payment exception codes and GatewayError retry hints.
"""

import pytest

from core.exceptions import BaseApplicationError, ConflictError
from core.services import ServiceResult
from payments import exceptions as exc


@pytest.mark.parametrize(
    "error_class,code",
    [
        (exc.PaymentNotFoundError, "PAYMENT_NOT_FOUND"),
        (exc.TransactionNotFoundError, "TRANSACTION_NOT_FOUND"),
        (exc.PaymentValidationError, "PAYMENT_VALIDATION_ERROR"),
        (exc.AmountOutOfRangeError, "AMOUNT_OUT_OF_RANGE"),
        (exc.UnsupportedCurrencyError, "UNSUPPORTED_CURRENCY"),
        (exc.RefundAmountExceededError, "REFUND_AMOUNT_EXCEEDED"),
        (exc.TransactionNotRefundableError, "TRANSACTION_NOT_REFUNDABLE"),
        (exc.RetryNotAllowedError, "RETRY_NOT_ALLOWED"),
        (exc.UnknownGatewayError, "UNKNOWN_GATEWAY"),
        (exc.GatewayDisabledError, "GATEWAY_DISABLED"),
        (exc.GatewayConfigurationError, "GATEWAY_CONFIGURATION_ERROR"),
        (exc.InvalidSignatureError, "INVALID_SIGNATURE"),
        (exc.UnsupportedOperationError, "UNSUPPORTED_OPERATION"),
        (exc.PaymentProcessingError, "PAYMENT_PROCESSING_ERROR"),
        (exc.GatewayError, "GATEWAY_ERROR"),
        (exc.GatewayTimeoutError, "GATEWAY_TIMEOUT"),
        (exc.CardDeclinedError, "CARD_DECLINED"),
        (exc.StaleRecordError, "STALE_RECORD"),
        (exc.LockAcquisitionError, "LOCK_ACQUISITION_FAILED"),
        (exc.InvalidStateTransitionError, "INVALID_STATE_TRANSITION"),
    ],
)
def test_default_error_codes(error_class, code):
    error = error_class("boom")

    assert error.error_code == code
    assert isinstance(error, BaseApplicationError)


def test_payment_errors_share_a_base():
    assert issubclass(exc.AmountOutOfRangeError, exc.PaymentValidationError)
    assert issubclass(exc.CardDeclinedError, exc.PaymentError)
    assert issubclass(exc.StaleRecordError, ConflictError)
    assert not issubclass(exc.StaleRecordError, exc.PaymentError)


class TestPaymentValidationError:
    def test_field_errors_live_in_details(self):
        error = exc.PaymentValidationError(
            "Invalid payment data",
            details={"gateway": "payfast"},
            errors={"customer.email": ["The customer.email field is required"]},
        )

        assert error.errors == {"customer.email": ["The customer.email field is required"]}
        assert error.to_dict()["details"]["gateway"] == "payfast"

    def test_service_result_keeps_field_errors(self):
        error = exc.AmountOutOfRangeError("Amount too large", errors={"amount": ["Amount too large"]})

        result = ServiceResult.from_exception(error)

        assert result.error_code == "AMOUNT_OUT_OF_RANGE"
        assert result.errors == {"amount": ["Amount too large"]}


class TestGatewayError:
    @pytest.mark.parametrize(
        "status_code,retryable",
        [(None, False), (400, False), (401, False), (429, True), (500, True), (503, True)],
    )
    def test_retryable_by_status(self, status_code, retryable):
        error = exc.GatewayError("paystack error", gateway="paystack", status_code=status_code)

        assert error.is_retryable is retryable

    def test_keeps_provider_context(self):
        error = exc.GatewayError(
            "paystack error: Invalid key",
            gateway="paystack",
            status_code=401,
            raw_response={"status": False, "message": "Invalid key"},
        )

        assert error.details == {"gateway": "paystack", "status_code": 401}
        assert error.raw_response["message"] == "Invalid key"

    def test_timeout_is_always_retryable(self):
        assert exc.GatewayTimeoutError("timed out").is_retryable is True

    def test_card_declined_is_not_retryable(self):
        error = exc.CardDeclinedError("Card declined", decline_code="insufficient_funds", status_code=402)

        assert error.is_retryable is False
        assert error.decline_code == "insufficient_funds"
        assert error.details["decline_code"] == "insufficient_funds"

    def test_str_includes_code(self):
        assert str(exc.UnknownGatewayError("Payment gateway 'x' is not registered")) == (
            "[UNKNOWN_GATEWAY] Payment gateway 'x' is not registered"
        )
