"""
Gateway contract and shared adapter behaviour.

PaymentGateway is the structural interface every provider adapter
satisfies. AbstractGateway implements the behaviour common to all of
them: request validation, amount and currency checks, reference
generation, activity logging, last-error tracking, signature policy and
capability checks. Concrete adapters override the _process_* hooks.

Usage:
    class PayFastGateway(AbstractGateway):
        name = "payfast"
        display_name = "PayFast"
        supported_currencies = ("ZAR",)

        def _process_initialize(self, request):
            ...

Public operations raise PaymentError subclasses for genuine failures.
Outcomes that need a human (manual refunds, EFT verification) are
returned as normal results.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from payments.exceptions import (
    AmountOutOfRangeError,
    GatewayConfigurationError,
    GatewayError,
    InvalidSignatureError,
    PaymentError,
    PaymentValidationError,
    UnsupportedCurrencyError,
)
from payments.gateways.config import mask_sensitive
from payments.gateways.http import GatewayHttpClient
from payments.gateways.tokens import DjangoCacheTokenCache
from payments.gateways.types import (
    FAILURE_STATUSES,
    PENDING_STATUSES,
    SUCCESS_STATUSES,
    RefundResult,
    from_minor_units,
    to_minor_units,
)
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from decimal import Decimal
    from typing import Any

    from payments.gateways.config import GatewayConfig
    from payments.gateways.tokens import TokenCache
    from payments.gateways.types import (
        CallbackPayload,
        CallbackResult,
        InitResult,
        PaymentRequest,
        SubscriptionResult,
        VerifyResult,
    )


REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


@runtime_checkable
class PaymentGateway(Protocol):
    """Operations every provider adapter offers."""

    name: str
    display_name: str
    config: GatewayConfig

    def initialize_payment(self, request: PaymentRequest) -> InitResult: ...

    def verify_payment(self, gateway_transaction_id: str) -> VerifyResult: ...

    def process_callback(self, payload: CallbackPayload) -> CallbackResult: ...

    def verify_signature(self, payload: CallbackPayload) -> None: ...

    def refund_payment(self, gateway_transaction_id: str, amount: Decimal | None = None) -> RefundResult: ...

    def create_subscription(self, request: PaymentRequest) -> ServiceResult[SubscriptionResult]: ...

    def cancel_subscription(self, subscription_id: str) -> ServiceResult[SubscriptionResult]: ...

    def get_subscription(self, subscription_id: str) -> ServiceResult[SubscriptionResult]: ...

    def update_subscription(
        self, subscription_id: str, changes: Mapping[str, Any]
    ) -> ServiceResult[SubscriptionResult]: ...

    def get_transaction_history(self, filters: Mapping[str, Any] | None = None) -> ServiceResult[list]: ...

    def get_last_error(self) -> dict[str, Any] | None: ...

    def is_available(self) -> bool: ...

    def supports_currency(self, currency: str) -> bool: ...


class AbstractGateway:
    """
    Shared behaviour for provider adapters.

    Class attributes describe the provider; instance state is the
    immutable config, the injected HTTP client and token cache, and the
    last-error snapshot.

    Args:
        config: GatewayConfig for this provider
        http_client: Optional pre-built client (tests inject stubs)
        token_cache: Optional TokenCache for OAuth providers
    """

    name: str = ""
    display_name: str = ""
    version: str = "1.0.0"

    supported_currencies: tuple[str, ...] = ("ZAR",)
    payment_methods: tuple[str, ...] = ()
    required_fields: tuple[str, ...] = ("amount", "description")
    optional_fields: tuple[str, ...] = (
        "currency",
        "reference",
        "customer.email",
        "customer.first_name",
        "customer.last_name",
        "customer.phone",
        "return_url",
        "cancel_url",
        "notify_url",
        "metadata",
    )
    required_credentials: tuple[str, ...] = ()

    live_api_url: str = ""
    test_api_url: str = ""

    # Adapter defaults layered between transaction defaults and settings
    default_config: dict[str, Any] = {}

    supports_subscriptions: bool = False
    supports_history: bool = False
    manual_refunds: bool = False
    manual_refund_reason: str = "Provider does not support automated refunds"
    manual_refund_instructions: str = ""

    # Callback signature scheme
    signature_required: bool = True
    signature_header: str | None = None
    signature_secret_key: str | None = None
    signature_algorithm: str = "sha256"
    # Some schemes sign without a shared secret (PayFast without passphrase)
    signature_secret_optional: bool = False

    def __init__(
        self,
        config: GatewayConfig,
        http_client: GatewayHttpClient | None = None,
        token_cache: TokenCache | None = None,
    ) -> None:
        self.config = config
        self._last_error: dict[str, Any] | None = None
        self.http = http_client or self.build_http_client()
        self.token_cache = token_cache or DjangoCacheTokenCache()

    def __repr__(self) -> str:
        mode = "test" if self.config.test_mode else "live"
        return f"<{self.__class__.__name__} {self.name} ({mode})>"

    # =========================================================================
    # Infrastructure
    # =========================================================================

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def build_http_client(self) -> GatewayHttpClient:
        return GatewayHttpClient(
            gateway=self.name,
            base_url=self.get_api_endpoint(),
            headers=self.default_headers(),
            timeout=self.config.timeout,
            retry_attempts=self.config.retry_attempts,
            retry_delay_ms=self.config.retry_delay_ms,
            verify_ssl=self.config.verify_ssl,
        )

    def default_headers(self) -> dict[str, str]:
        """Provider-specific headers added to every request (auth, etc.)."""
        return {}

    def get_api_endpoint(self) -> str:
        if self.config.test_mode:
            return self.config.option("test_api_endpoint") or self.test_api_url or self.live_api_url
        return self.config.option("api_endpoint") or self.live_api_url

    def ensure_configured(self) -> None:
        missing = self.config.missing_credentials(*self.required_credentials)
        if missing:
            raise GatewayConfigurationError(
                f"{self.display_name} is missing configuration: {', '.join(missing)}",
                details={"gateway": self.name, "missing": missing},
            )

    def log_activity(self, action: str, data: Mapping[str, Any] | None = None) -> None:
        self.get_logger().info(
            "Gateway activity",
            extra={
                "gateway": self.name,
                "action": action,
                "data": mask_sensitive(data),
                "timestamp": timezone.now().isoformat(),
            },
        )

    def get_last_error(self) -> dict[str, Any] | None:
        return dict(self._last_error) if self._last_error else None

    def _record_error(self, error: BaseApplicationError) -> None:
        self._last_error = {
            "message": error.message,
            "code": error.error_code,
            "errors": error.details.get("errors", {}),
            "timestamp": timezone.now().isoformat(),
            "gateway": self.name,
        }

    def _run(self, action: str, data: Mapping[str, Any], func: Callable[..., Any], *args: Any) -> Any:
        """
        Wrap a public operation: reset the last error, log the call, and
        record any failure before re-raising it.
        """
        self._last_error = None
        self.log_activity(action, data)
        try:
            return func(*args)
        except BaseApplicationError as e:
            self._record_error(e)
            self.get_logger().warning(
                f"{self.display_name} {action} failed",
                extra={"gateway": self.name, "action": action, "error_code": e.error_code},
            )
            raise
        except Exception as e:
            self.get_logger().error(
                f"Unexpected error during {self.display_name} {action}",
                extra={"gateway": self.name, "action": action},
                exc_info=True,
            )
            error = GatewayError(
                f"Failed to {action.replace('_', ' ')}: {e}",
                gateway=self.name,
            )
            self._record_error(error)
            raise error from e

    # =========================================================================
    # Descriptors
    # =========================================================================

    def is_available(self) -> bool:
        """Configured on/off switch. No network call."""
        return bool(self.config.enabled)

    def get_supported_currencies(self) -> tuple[str, ...]:
        return self.config.supported_currencies or self.supported_currencies

    def supports_currency(self, currency: str) -> bool:
        return (currency or "").upper() in self.get_supported_currencies()

    def get_supported_methods(self) -> tuple[str, ...]:
        return self.payment_methods

    def get_required_fields(self) -> tuple[str, ...]:
        return tuple(self.config.option("required_fields") or self.required_fields)

    def get_optional_fields(self) -> tuple[str, ...]:
        return self.optional_fields

    def get_error_message(self, code: str) -> str:
        return self.config.error_messages.get(code, f"Unknown error: {code}")

    def capabilities(self) -> list[str]:
        caps = ["payments", "callbacks"]
        caps.append("manual_refunds" if self.manual_refunds else "refunds")
        if self.supports_subscriptions:
            caps.append("subscriptions")
        if self.supports_history:
            caps.append("transaction_history")
        return caps

    def get_info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "available": self.is_available(),
            "test_mode": self.config.test_mode,
            "currencies": list(self.get_supported_currencies()),
            "payment_methods": list(self.payment_methods),
            "minimum_amount": str(self.config.minimum_amount),
            "maximum_amount": str(self.config.maximum_amount),
            "capabilities": self.capabilities(),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def generate_reference(self) -> str:
        prefix = self.config.reference_prefix or self.name.upper()[:4]
        suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(6))
        return f"{prefix}-{int(time.time())}-{suffix}"

    def validate_amount(self, amount: Decimal) -> None:
        minimum = self.config.minimum_amount
        maximum = self.config.maximum_amount
        if amount < minimum or amount > maximum:
            message = f"Amount {amount} is outside the allowed range {minimum} - {maximum}"
            raise AmountOutOfRangeError(
                message,
                details={
                    "amount": str(amount),
                    "minimum": str(minimum),
                    "maximum": str(maximum),
                },
                errors={"amount": [message]},
            )

    def validate_request(self, request: PaymentRequest) -> None:
        errors: dict[str, list[str]] = {}
        for path in self.get_required_fields():
            value = request.resolve(path)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[path] = [f"The {path} field is required"]
        if errors:
            raise PaymentValidationError(
                "Invalid payment data",
                details={"gateway": self.name},
                errors=errors,
            )

    def to_minor_units(self, amount: Decimal, currency: str | None = None) -> int:
        return to_minor_units(amount, currency or self.config.currency)

    def from_minor_units(self, value: int, currency: str | None = None) -> Decimal:
        return from_minor_units(value, currency or self.config.currency)

    def map_status(self, provider_status: Any, mapping: Mapping[str, str]) -> str:
        """Map provider vocabulary onto TransactionStatus; unknown otherwise."""
        key = str(provider_status or "").strip()
        return mapping.get(key, mapping.get(key.lower(), mapping.get(key.upper(), TransactionStatus.UNKNOWN)))

    # =========================================================================
    # Payments
    # =========================================================================

    def initialize_payment(self, request: PaymentRequest) -> InitResult:
        """
        Validate a request and start a payment with the provider.

        Raises:
            PaymentValidationError: Required fields missing
            UnsupportedCurrencyError: Currency not accepted
            AmountOutOfRangeError: Amount outside min..max
            GatewayConfigurationError: Credentials missing
            GatewayError: Provider rejected the request
        """
        return self._run(
            "initialize_payment",
            {
                "amount": str(request.amount),
                "currency": request.currency,
                "reference": request.reference,
            },
            self._initialize,
            request,
        )

    def _initialize(self, request: PaymentRequest) -> InitResult:
        self.validate_request(request)

        currency = (request.currency or self.config.currency).upper()
        if not self.supports_currency(currency):
            raise UnsupportedCurrencyError(
                f"Currency {currency} is not supported by {self.display_name}",
                details={"currency": currency, "supported": list(self.get_supported_currencies())},
                errors={"currency": [f"Currency {currency} is not supported"]},
            )

        self.validate_amount(request.amount)
        self.ensure_configured()

        request = request.replace(
            currency=currency,
            reference=request.reference or self.generate_reference(),
            description=request.description or self.config.option("default_description", "Payment"),
        )
        return self._process_initialize(request)

    def verify_payment(self, gateway_transaction_id: str) -> VerifyResult:
        """Ask the provider for the current status of a payment."""
        return self._run(
            "verify_payment",
            {"gateway_transaction_id": gateway_transaction_id},
            self._verify,
            gateway_transaction_id,
        )

    def _verify(self, gateway_transaction_id: str) -> VerifyResult:
        if not gateway_transaction_id:
            raise PaymentValidationError(
                "Transaction ID is required",
                errors={"gateway_transaction_id": ["This field is required."]},
            )
        self.ensure_configured()
        return self._process_verify(gateway_transaction_id)

    def process_callback(self, payload: CallbackPayload) -> CallbackResult:
        """
        Validate a provider notification and map it to canonical fields.

        Raises:
            InvalidSignatureError: Signature mismatch, or missing while strict
        """
        return self._run(
            "process_callback",
            dict(payload.data) if isinstance(payload.data, dict) else {},
            self._callback,
            payload,
        )

    def _callback(self, payload: CallbackPayload) -> CallbackResult:
        self.validate_signature(payload)
        return self._process_callback(payload)

    def refund_payment(self, gateway_transaction_id: str, amount: Decimal | None = None) -> RefundResult:
        """
        Refund all or part of a payment.

        Providers without a refund API return a RefundResult whose outcome
        is MANUAL_REFUND_REQUIRED instead of raising.
        """
        return self._run(
            "refund_payment",
            {"gateway_transaction_id": gateway_transaction_id, "amount": str(amount) if amount else None},
            self._refund,
            gateway_transaction_id,
            amount,
        )

    def _refund(self, gateway_transaction_id: str, amount: Decimal | None) -> RefundResult:
        if not gateway_transaction_id:
            raise PaymentValidationError(
                "Transaction ID is required",
                errors={"gateway_transaction_id": ["This field is required."]},
            )
        if amount is not None and amount <= 0:
            raise PaymentValidationError(
                "Refund amount must be positive",
                errors={"amount": ["Refund amount must be positive"]},
            )
        if self.manual_refunds:
            self.get_logger().info(
                "Refund requires manual processing",
                extra={"gateway": self.name, "gateway_transaction_id": gateway_transaction_id},
            )
            return RefundResult.manual(
                gateway=self.name,
                gateway_transaction_id=gateway_transaction_id,
                amount=amount,
                reason=self.manual_refund_reason,
                instructions=self.manual_refund_instructions,
            )
        self.ensure_configured()
        return self._process_refund(gateway_transaction_id, amount)

    def get_payment_status(self, gateway_transaction_id: str) -> str:
        try:
            return str(self.verify_payment(gateway_transaction_id).status)
        except PaymentError:
            return "error"

    def is_payment_successful(self, gateway_transaction_id: str) -> bool:
        return self.get_payment_status(gateway_transaction_id) in SUCCESS_STATUSES

    def is_payment_pending(self, gateway_transaction_id: str) -> bool:
        return self.get_payment_status(gateway_transaction_id) in PENDING_STATUSES

    def is_payment_failed(self, gateway_transaction_id: str) -> bool:
        return self.get_payment_status(gateway_transaction_id) in FAILURE_STATUSES

    # =========================================================================
    # Signatures
    # =========================================================================

    def signature_secret(self) -> str | None:
        if not self.signature_secret_key:
            return None
        return self.config.credential(self.signature_secret_key)

    def extract_signature(self, payload: CallbackPayload) -> str | None:
        if not self.signature_header:
            return None
        return payload.header(self.signature_header)

    def check_signature(self, payload: CallbackPayload, signature: str, secret: str) -> bool:
        """Default scheme: hex HMAC of the raw body."""
        from payments.gateways.signatures import verify_hmac

        return verify_hmac(secret, payload.raw_body, signature, self.signature_algorithm)

    def verify_signature(self, payload: CallbackPayload) -> None:
        """Public signature check used by the webhook endpoint before queueing."""
        self.validate_signature(payload)

    def validate_signature(self, payload: CallbackPayload) -> None:
        """
        Enforce the callback signature policy.

        A mismatched signature is always rejected. A missing signature or
        secret is rejected only when strict_signatures is on.
        """
        if not self.signature_required:
            return

        strict = self.config.strict_signatures
        secret = self.signature_secret()
        signature = self.extract_signature(payload)

        secret_missing = not secret and not self.signature_secret_optional
        if secret_missing or not signature:
            missing = "secret" if secret_missing else "signature"
            if strict:
                raise InvalidSignatureError(
                    f"{self.display_name} callback {missing} is missing",
                    details={"gateway": self.name, "missing": missing},
                )
            self.get_logger().warning(
                "Accepting unsigned callback (strict signatures disabled)",
                extra={"gateway": self.name, "missing": missing},
            )
            return

        if not self.check_signature(payload, signature, secret or ""):
            raise InvalidSignatureError(
                f"Invalid {self.display_name} callback signature",
                details={"gateway": self.name},
            )

    # =========================================================================
    # Subscriptions & history (capability-gated)
    # =========================================================================

    def _unsupported(self, feature: str) -> ServiceResult:
        message = f"{feature} not supported by {self.display_name}"
        self._last_error = {
            "message": message,
            "code": "UNSUPPORTED_OPERATION",
            "errors": {},
            "timestamp": timezone.now().isoformat(),
            "gateway": self.name,
        }
        return ServiceResult.failure(message, error_code="UNSUPPORTED_OPERATION")

    def _capability(self, enabled: bool, feature: str, action: str, data, func, *args) -> ServiceResult:
        if not enabled:
            return self._unsupported(feature)
        try:
            return ServiceResult.success(self._run(action, data, func, *args))
        except PaymentError as e:
            return ServiceResult.from_exception(e)

    def create_subscription(self, request: PaymentRequest) -> ServiceResult[SubscriptionResult]:
        return self._capability(
            self.supports_subscriptions,
            "Subscriptions are",
            "create_subscription",
            {"amount": str(request.amount), "reference": request.reference},
            self._process_create_subscription,
            request,
        )

    def cancel_subscription(self, subscription_id: str) -> ServiceResult[SubscriptionResult]:
        return self._capability(
            self.supports_subscriptions,
            "Subscriptions are",
            "cancel_subscription",
            {"subscription_id": subscription_id},
            self._process_cancel_subscription,
            subscription_id,
        )

    def get_subscription(self, subscription_id: str) -> ServiceResult[SubscriptionResult]:
        return self._capability(
            self.supports_subscriptions,
            "Subscriptions are",
            "get_subscription",
            {"subscription_id": subscription_id},
            self._process_get_subscription,
            subscription_id,
        )

    def update_subscription(
        self, subscription_id: str, changes: Mapping[str, Any]
    ) -> ServiceResult[SubscriptionResult]:
        return self._capability(
            self.supports_subscriptions,
            "Subscriptions are",
            "update_subscription",
            {"subscription_id": subscription_id, **dict(changes)},
            self._process_update_subscription,
            subscription_id,
            changes,
        )

    def get_transaction_history(self, filters: Mapping[str, Any] | None = None) -> ServiceResult[list]:
        return self._capability(
            self.supports_history,
            "Transaction history is",
            "get_transaction_history",
            dict(filters or {}),
            self._process_history,
            dict(filters or {}),
        )

    # =========================================================================
    # Hooks
    # =========================================================================

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        raise NotImplementedError

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        raise NotImplementedError

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        raise NotImplementedError

    def _process_refund(self, gateway_transaction_id: str, amount: Decimal | None) -> RefundResult:
        raise NotImplementedError

    def _process_create_subscription(self, request: PaymentRequest) -> SubscriptionResult:
        raise NotImplementedError

    def _process_cancel_subscription(self, subscription_id: str) -> SubscriptionResult:
        raise NotImplementedError

    def _process_get_subscription(self, subscription_id: str) -> SubscriptionResult:
        raise NotImplementedError

    def _process_update_subscription(self, subscription_id: str, changes: Mapping[str, Any]) -> SubscriptionResult:
        raise NotImplementedError

    def _process_history(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        raise NotImplementedError
