"""
Stripe adapter built on the official SDK.

Stripe is the one provider driven through its SDK instead of
GatewayHttpClient: PaymentIntents for one-off payments, Subscriptions for
recurring billing, and stripe.Webhook.construct_event for callback
signatures. The secret key is passed per call so sandbox and live
gateways can coexist in one process.

SDK exceptions are translated by _handle_stripe_error:

    CardError             -> CardDeclinedError (not retryable)
    InvalidRequestError   -> GatewayError (status from Stripe)
    AuthenticationError   -> GatewayConfigurationError
    RateLimitError        -> GatewayError 429 (retryable)
    APIConnectionError    -> GatewayTimeoutError (outcome unknown)
    APIError / other      -> GatewayError 502 (retryable)
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import TYPE_CHECKING

import stripe
from django.utils import timezone

from payments.exceptions import (
    CardDeclinedError,
    GatewayConfigurationError,
    GatewayError,
    GatewayTimeoutError,
)
from payments.gateways.base import AbstractGateway
from payments.gateways.types import (
    CallbackResult,
    InitResult,
    RefundOutcome,
    RefundResult,
    SubscriptionResult,
    VerifyResult,
)
from payments.state_machines import RecurringFrequency, TransactionStatus

if TYPE_CHECKING:
    from collections.abc import Callable
    from decimal import Decimal
    from typing import Any, NoReturn

    from payments.gateways.http import GatewayHttpClient
    from payments.gateways.types import CallbackPayload, PaymentRequest


STATUS_MAP = {
    "requires_payment_method": TransactionStatus.PENDING,
    "requires_confirmation": TransactionStatus.PENDING,
    "requires_action": TransactionStatus.PENDING,
    "processing": TransactionStatus.PROCESSING,
    "requires_capture": TransactionStatus.PROCESSING,
    "canceled": TransactionStatus.CANCELLED,
    "succeeded": TransactionStatus.COMPLETED,
}

EVENT_STATUS_MAP = {
    "payment_intent.succeeded": TransactionStatus.COMPLETED,
    "payment_intent.processing": TransactionStatus.PROCESSING,
    "payment_intent.payment_failed": TransactionStatus.FAILED,
    "payment_intent.canceled": TransactionStatus.CANCELLED,
    "charge.refunded": TransactionStatus.REFUNDED,
    "invoice.paid": TransactionStatus.COMPLETED,
    "invoice.payment_failed": TransactionStatus.FAILED,
    "customer.subscription.created": TransactionStatus.ACTIVE,
    "customer.subscription.deleted": TransactionStatus.CANCELLED,
}

SUBSCRIPTION_STATUS_MAP = {
    "incomplete": TransactionStatus.PENDING,
    "trialing": TransactionStatus.ACTIVE,
    "active": TransactionStatus.ACTIVE,
    "past_due": TransactionStatus.PENDING_RENEWAL,
    "unpaid": TransactionStatus.FAILED,
    "canceled": TransactionStatus.CANCELLED,
    "incomplete_expired": TransactionStatus.EXPIRED,
}

INTERVALS = {
    RecurringFrequency.DAILY: ("day", 1),
    RecurringFrequency.WEEKLY: ("week", 1),
    RecurringFrequency.MONTHLY: ("month", 1),
    RecurringFrequency.QUARTERLY: ("month", 3),
    RecurringFrequency.YEARLY: ("year", 1),
}


class StripeGateway(AbstractGateway):
    name = "stripe"
    display_name = "Stripe"
    supported_currencies = ("USD", "EUR", "GBP", "ZAR", "CAD", "AUD", "JPY", "NGN", "KES")
    payment_methods = ("card", "apple_pay", "google_pay", "link")
    required_credentials = ("secret_key",)

    live_api_url = "https://api.stripe.com"

    default_config = {
        "reference_prefix": "ST",
        "currency": "USD",
        "minimum_amount": "0.50",
        "maximum_amount": "999999.99",
    }

    supports_subscriptions = True
    supports_history = True

    signature_header = "Stripe-Signature"
    signature_secret_key = "webhook_secret"

    def __init__(self, config, http_client: GatewayHttpClient | None = None, token_cache=None) -> None:
        super().__init__(config, http_client=http_client, token_cache=token_cache)
        self._configure_stripe()

    def _configure_stripe(self) -> None:
        """Configure the SDK HTTP client with our timeout and retry policy."""
        stripe.max_network_retries = max(self.config.retry_attempts - 1, 0)
        stripe.default_http_client = stripe.RequestsClient(timeout=self.config.timeout)

    @property
    def api_key(self) -> str | None:
        return self.config.credential("secret_key")

    def _call(self, operation: str, func: Callable[..., Any], log_context: dict[str, Any] | None = None, **params: Any) -> Any:
        """Invoke an SDK method with timing logs and error translation."""
        log_context = {"gateway": self.name, "operation": operation, **(log_context or {})}
        logger = self.get_logger()
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)
        try:
            result = func(api_key=self.api_key, **params)
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
        )
        return result

    # =========================================================================
    # Payments
    # =========================================================================

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        params: dict[str, Any] = {
            "amount": self.to_minor_units(request.amount, request.currency),
            "currency": request.currency.lower(),
            "description": request.description,
            "metadata": {"reference": request.reference, **{k: str(v) for k, v in request.metadata.items()}},
            "automatic_payment_methods": {"enabled": True},
            "idempotency_key": f"init-{request.reference}",
        }
        if request.customer.email:
            params["receipt_email"] = request.customer.email

        intent = self._call(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            {"reference": request.reference, "amount": params["amount"]},
            **params,
        )
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=self.map_status(intent.status, STATUS_MAP),
            gateway_transaction_id=intent.id,
            payment_data={
                "client_secret": intent.client_secret,
                "publishable_key": self.config.credential("publishable_key"),
            },
            method="SDK",
            redirect_required=False,
            raw=intent.to_dict(),
        )

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        intent = self._call(
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            {"payment_intent_id": gateway_transaction_id},
            id=gateway_transaction_id,
        )
        currency = (intent.currency or self.config.currency).upper()
        metadata = dict(intent.metadata or {})
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(intent.status, STATUS_MAP),
            gateway_transaction_id=intent.id,
            reference=metadata.get("reference"),
            amount=self.from_minor_units(intent.amount, currency),
            currency=currency,
            raw=intent.to_dict(),
        )

    def _process_refund(self, gateway_transaction_id: str, amount: Decimal | None) -> RefundResult:
        params: dict[str, Any] = {"payment_intent": gateway_transaction_id}
        if amount is not None:
            params["amount"] = self.to_minor_units(amount)
        refund = self._call(
            "create_refund",
            stripe.Refund.create,
            {"payment_intent_id": gateway_transaction_id, "amount": params.get("amount")},
            **params,
        )
        currency = (refund.currency or self.config.currency).upper()
        return RefundResult(
            gateway=self.name,
            outcome=RefundOutcome.EXECUTED,
            gateway_transaction_id=gateway_transaction_id,
            amount=self.from_minor_units(refund.amount, currency),
            refund_id=refund.id,
            status=TransactionStatus.COMPLETED if refund.status == "succeeded" else TransactionStatus.PENDING,
            raw=refund.to_dict(),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def check_signature(self, payload: CallbackPayload, signature: str, secret: str) -> bool:
        try:
            stripe.Webhook.construct_event(payload.raw_body, signature, secret)
        except stripe.SignatureVerificationError:
            return False
        except ValueError:
            return False
        return True

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        event_type = payload.get("type", "")
        obj = (payload.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        currency = (obj.get("currency") or self.config.currency).upper()

        amount_minor = obj.get("amount_received") or obj.get("amount") or obj.get("amount_paid")
        if event_type.startswith("customer.subscription."):
            transaction_id = None
            subscription_id = obj.get("id")
        elif event_type.startswith("invoice."):
            transaction_id = obj.get("payment_intent")
            subscription_id = obj.get("subscription")
        elif event_type == "charge.refunded":
            transaction_id = obj.get("payment_intent")
            subscription_id = None
        else:
            transaction_id = obj.get("id")
            subscription_id = None

        status = EVENT_STATUS_MAP.get(event_type, TransactionStatus.UNKNOWN)
        if event_type == "charge.refunded" and 0 < (obj.get("amount_refunded") or 0) < (obj.get("amount") or 0):
            status = TransactionStatus.PARTIALLY_REFUNDED

        error = obj.get("last_payment_error") or {}
        return CallbackResult(
            gateway=self.name,
            status=status,
            reference=metadata.get("reference"),
            gateway_transaction_id=transaction_id,
            amount=self.from_minor_units(amount_minor, currency) if amount_minor is not None else None,
            currency=currency,
            event_type=event_type,
            subscription_id=subscription_id,
            message=error.get("message", ""),
            raw=dict(payload.data),
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _subscription_result(self, subscription: Any) -> SubscriptionResult:
        period_end = getattr(subscription, "current_period_end", None)
        items = (subscription.get("items") or {}).get("data") or [{}]
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=subscription.id,
            status=self.map_status(subscription.status, SUBSCRIPTION_STATUS_MAP),
            plan=(items[0].get("price") or {}).get("id"),
            next_billing_date=datetime.fromtimestamp(period_end, tz=dt_timezone.utc) if period_end else None,
            raw=subscription.to_dict(),
        )

    def _process_create_subscription(self, request: PaymentRequest) -> SubscriptionResult:
        customer = self._call(
            "create_customer",
            stripe.Customer.create,
            {"reference": request.reference},
            email=request.customer.email,
            name=request.customer.full_name,
            idempotency_key=f"customer-{request.reference}",
        )
        terms = request.subscription
        if terms and terms.plan_code:
            item: dict[str, Any] = {"price": terms.plan_code}
        else:
            product = self._call(
                "create_product",
                stripe.Product.create,
                name=request.description or "Subscription",
            )
            interval, count = INTERVALS.get(terms.frequency if terms else RecurringFrequency.MONTHLY, ("month", 1))
            item = {
                "price_data": {
                    "currency": (request.currency or self.config.currency).lower(),
                    "product": product.id,
                    "unit_amount": self.to_minor_units(request.amount, request.currency),
                    "recurring": {"interval": interval, "interval_count": count},
                }
            }

        params: dict[str, Any] = {
            "customer": customer.id,
            "items": [item],
            "payment_behavior": "default_incomplete",
            "metadata": {"reference": request.reference or ""},
            "idempotency_key": f"subscription-{request.reference}",
        }
        if terms and terms.billing_date and terms.billing_date > timezone.now() + timedelta(minutes=1):
            params["billing_cycle_anchor"] = int(terms.billing_date.timestamp())
            params["proration_behavior"] = "none"
        subscription = self._call("create_subscription", stripe.Subscription.create, **params)
        return self._subscription_result(subscription)

    def _process_get_subscription(self, subscription_id: str) -> SubscriptionResult:
        subscription = self._call(
            "retrieve_subscription",
            stripe.Subscription.retrieve,
            {"subscription_id": subscription_id},
            id=subscription_id,
        )
        return self._subscription_result(subscription)

    def _process_cancel_subscription(self, subscription_id: str) -> SubscriptionResult:
        subscription = self._call(
            "cancel_subscription",
            stripe.Subscription.cancel,
            {"subscription_id": subscription_id},
            subscription_exposed_id=subscription_id,
        )
        return self._subscription_result(subscription)

    def _process_update_subscription(self, subscription_id: str, changes) -> SubscriptionResult:
        params: dict[str, Any] = {}
        if "metadata" in changes:
            params["metadata"] = dict(changes["metadata"])
        if "cancel_at_period_end" in changes:
            params["cancel_at_period_end"] = bool(changes["cancel_at_period_end"])
        subscription = self._call(
            "update_subscription",
            stripe.Subscription.modify,
            {"subscription_id": subscription_id},
            id=subscription_id,
            **params,
        )
        return self._subscription_result(subscription)

    def _process_history(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": min(int(filters.get("limit", 100)), 100)}
        if filters.get("created_after"):
            created_after = filters["created_after"]
            params["created"] = {
                "gte": int(created_after.timestamp()) if hasattr(created_after, "timestamp") else int(created_after)
            }
        intents = self._call("list_payment_intents", stripe.PaymentIntent.list, **params)
        history = []
        for intent in intents.data:
            currency = (intent.currency or self.config.currency).upper()
            history.append(
                {
                    "id": intent.id,
                    "reference": dict(intent.metadata or {}).get("reference"),
                    "amount": self.from_minor_units(intent.amount, currency),
                    "currency": currency,
                    "status": str(self.map_status(intent.status, STATUS_MAP)),
                    "provider_status": intent.status,
                    "created_at": intent.created,
                }
            )
        return history

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_stripe_error(self, error: Exception, log_context: dict[str, Any], duration_ms: float) -> NoReturn:
        """Translate Stripe SDK exceptions into gateway exceptions."""
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning("Card error from Stripe", extra={**log_context, "decline_code": decline_code})
            raise CardDeclinedError(
                str(error.user_message or error),
                decline_code=decline_code,
                error_code="CARD_DECLINED",
                gateway=self.name,
                status_code=error.http_status,
                raw_response=error.json_body,
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error("Invalid request to Stripe", extra={**log_context, "stripe_code": error.code})
            raise GatewayError(
                str(error.user_message or error),
                error_code="INVALID_REQUEST",
                gateway=self.name,
                status_code=error.http_status,
                raw_response=error.json_body,
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise GatewayConfigurationError(
                "Stripe authentication failed",
                details={"gateway": self.name},
            ) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayError(
                "Stripe rate limit exceeded. Please retry.",
                error_code="RATE_LIMITED",
                gateway=self.name,
                status_code=429,
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise GatewayTimeoutError(
                "Could not reach Stripe; payment outcome unknown, verify before retrying",
                gateway=self.name,
            ) from error

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayError(
            f"Stripe service error: {error}",
            error_code="GATEWAY_UNAVAILABLE",
            gateway=self.name,
            status_code=502,
        ) from error
