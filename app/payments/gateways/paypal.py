"""
PayPal adapter (Orders v2, Payments v2, Billing v1).

Every API call carries an OAuth bearer token obtained with the client
credentials grant. Tokens live in the injected TokenCache under
"paypal:<sandbox|live>" and are refreshed once on a 401.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.utils import timezone

from payments.exceptions import GatewayError
from payments.gateways.base import AbstractGateway
from payments.gateways.types import (
    CallbackResult,
    InitResult,
    RefundOutcome,
    RefundResult,
    SubscriptionResult,
    VerifyResult,
    as_decimal,
)
from payments.state_machines import RecurringFrequency, TransactionStatus

if TYPE_CHECKING:
    from decimal import Decimal
    from typing import Any

    from payments.gateways.types import CallbackPayload, PaymentRequest


STATUS_MAP = {
    "CREATED": TransactionStatus.PENDING,
    "SAVED": TransactionStatus.PENDING,
    "APPROVED": TransactionStatus.PROCESSING,
    "PAYER_ACTION_REQUIRED": TransactionStatus.PENDING,
    "PENDING": TransactionStatus.PENDING,
    "VOIDED": TransactionStatus.CANCELLED,
    "COMPLETED": TransactionStatus.COMPLETED,
    "FAILED": TransactionStatus.FAILED,
    "DECLINED": TransactionStatus.FAILED,
    "EXPIRED": TransactionStatus.EXPIRED,
    "PARTIALLY_REFUNDED": TransactionStatus.PARTIALLY_REFUNDED,
    "REFUNDED": TransactionStatus.REFUNDED,
}

EVENT_STATUS_MAP = {
    "CHECKOUT.ORDER.APPROVED": TransactionStatus.PROCESSING,
    "CHECKOUT.ORDER.COMPLETED": TransactionStatus.COMPLETED,
    "PAYMENT.CAPTURE.COMPLETED": TransactionStatus.COMPLETED,
    "PAYMENT.CAPTURE.PENDING": TransactionStatus.PENDING,
    "PAYMENT.CAPTURE.DENIED": TransactionStatus.FAILED,
    "PAYMENT.CAPTURE.DECLINED": TransactionStatus.FAILED,
    "PAYMENT.CAPTURE.REFUNDED": TransactionStatus.REFUNDED,
    "PAYMENT.CAPTURE.REVERSED": TransactionStatus.REFUNDED,
    "BILLING.SUBSCRIPTION.ACTIVATED": TransactionStatus.ACTIVE,
    "BILLING.SUBSCRIPTION.CANCELLED": TransactionStatus.CANCELLED,
    "BILLING.SUBSCRIPTION.EXPIRED": TransactionStatus.EXPIRED,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": TransactionStatus.FAILED,
}

SUBSCRIPTION_STATUS_MAP = {
    "APPROVAL_PENDING": TransactionStatus.PENDING,
    "APPROVED": TransactionStatus.PENDING,
    "ACTIVE": TransactionStatus.ACTIVE,
    "SUSPENDED": TransactionStatus.PENDING_RENEWAL,
    "CANCELLED": TransactionStatus.CANCELLED,
    "EXPIRED": TransactionStatus.EXPIRED,
}

INTERVALS = {
    RecurringFrequency.DAILY: ("DAY", 1),
    RecurringFrequency.WEEKLY: ("WEEK", 1),
    RecurringFrequency.MONTHLY: ("MONTH", 1),
    RecurringFrequency.QUARTERLY: ("MONTH", 3),
    RecurringFrequency.YEARLY: ("YEAR", 1),
}

TRANSMISSION_HEADERS = {
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
    "cert_url": "PAYPAL-CERT-URL",
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
}


class PayPalGateway(AbstractGateway):
    name = "paypal"
    display_name = "PayPal"
    supported_currencies = ("USD", "EUR", "GBP", "CAD", "AUD", "JPY", "ZAR")
    payment_methods = ("paypal", "card", "venmo", "pay_later")
    required_credentials = ("client_id", "client_secret")

    live_api_url = "https://api-m.paypal.com"
    test_api_url = "https://api-m.sandbox.paypal.com"

    default_config = {
        "reference_prefix": "PP",
        "currency": "USD",
        "minimum_amount": "1.00",
        "maximum_amount": "10000.00",
        "error_messages": {
            "PAYMENT_CREATION_ERROR": "Error creating payment",
            "PAYMENT_ALREADY_DONE": "Payment already completed",
            "PAYMENT_NOT_APPROVED": "Payment not approved by payer",
            "PAYMENT_EXPIRED": "Payment link expired",
            "INSUFFICIENT_FUNDS": "Insufficient funds in PayPal account",
            "CARD_DECLINED": "Card was declined",
            "INVALID_CARD": "Invalid card details",
            "INTERNAL_SERVICE_ERROR": "PayPal internal service error",
            "VALIDATION_ERROR": "Validation error in payment data",
        },
    }

    supports_subscriptions = True
    supports_history = True

    signature_header = "PAYPAL-TRANSMISSION-SIG"
    signature_secret_key = "webhook_id"

    # =========================================================================
    # OAuth
    # =========================================================================

    @property
    def token_key(self) -> str:
        return f"paypal:{'sandbox' if self.config.test_mode else 'live'}"

    def fetch_access_token(self) -> tuple[str, int]:
        response = self.http.post(
            "/v1/oauth2/token",
            json=None,
            data={"grant_type": "client_credentials"},
            auth=(self.config.credential("client_id"), self.config.credential("client_secret")),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = response.get("access_token")
        if not token:
            raise GatewayError(
                "PayPal did not return an access token",
                error_code="AUTHENTICATION_FAILED",
                gateway=self.name,
                raw_response=response,
            )
        return token, int(response.get("expires_in", 3600))

    def get_access_token(self) -> str:
        return self.token_cache.get_or_fetch(self.token_key, self.fetch_access_token)

    def api(self, method: str, path: str, **kwargs: Any) -> Any:
        """Authenticated request; refreshes the token once when it was revoked."""
        headers = dict(kwargs.pop("headers", {}) or {})
        for attempt in range(2):
            headers["Authorization"] = f"Bearer {self.get_access_token()}"
            try:
                return self.http.request(method, path, headers=headers, **kwargs)
            except GatewayError as e:
                if e.status_code != 401 or attempt:
                    raise
                self.get_logger().info("PayPal token rejected, refreshing", extra={"gateway": self.name})
                self.token_cache.invalidate(self.token_key)

    # =========================================================================
    # Payments
    # =========================================================================

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        amount = {"currency_code": request.currency, "value": f"{request.amount:.2f}"}
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.reference,
                    "custom_id": request.reference,
                    "description": request.description[:127],
                    "amount": amount,
                }
            ],
            "payment_source": {
                "paypal": {
                    "experience_context": {
                        "payment_method_preference": "IMMEDIATE_PAYMENT_REQUIRED",
                        "landing_page": "LOGIN",
                        "shipping_preference": "NO_SHIPPING",
                        "user_action": "PAY_NOW",
                        "return_url": request.return_url or self.config.return_url,
                        "cancel_url": request.cancel_url or self.config.cancel_url,
                    }
                }
            },
        }
        if request.customer.email:
            body["payment_source"]["paypal"]["email_address"] = request.customer.email

        response = self.api(
            "POST",
            "/v2/checkout/orders",
            json=body,
            headers={"PayPal-Request-Id": request.reference},
        )
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=self.map_status(response.get("status"), STATUS_MAP),
            gateway_transaction_id=response.get("id"),
            payment_url=self.approval_link(response),
            method="GET",
            redirect_required=True,
            raw=response,
        )

    @staticmethod
    def approval_link(response: dict[str, Any]) -> str | None:
        for link in response.get("links") or []:
            if link.get("rel") in ("approve", "payer-action"):
                return link.get("href")
        return None

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        response = self.api("GET", f"/v2/checkout/orders/{gateway_transaction_id}")
        unit = (response.get("purchase_units") or [{}])[0]
        amount = unit.get("amount") or {}
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(response.get("status"), STATUS_MAP),
            gateway_transaction_id=response.get("id", gateway_transaction_id),
            reference=unit.get("custom_id") or unit.get("reference_id"),
            amount=as_decimal(amount.get("value")),
            currency=amount.get("currency_code"),
            raw=response,
        )

    def capture_payment(self, order_id: str) -> VerifyResult:
        """Capture an approved order."""
        return self._run("capture_payment", {"order_id": order_id}, self._capture, order_id)

    def _capture(self, order_id: str) -> VerifyResult:
        response = self.api(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            headers={"PayPal-Request-Id": f"capture-{order_id}"},
        )
        unit = (response.get("purchase_units") or [{}])[0]
        capture = ((unit.get("payments") or {}).get("captures") or [{}])[0]
        amount = capture.get("amount") or {}
        breakdown = capture.get("seller_receivable_breakdown") or {}
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(capture.get("status") or response.get("status"), STATUS_MAP),
            gateway_transaction_id=capture.get("id") or order_id,
            reference=unit.get("reference_id"),
            amount=as_decimal(amount.get("value")),
            currency=amount.get("currency_code"),
            fee_amount=as_decimal((breakdown.get("paypal_fee") or {}).get("value")),
            net_amount=as_decimal((breakdown.get("net_amount") or {}).get("value")),
            raw=response,
        )

    def _process_refund(self, gateway_transaction_id: str, amount: Decimal | None) -> RefundResult:
        body: dict[str, Any] = {"note_to_payer": "Refund"}
        if amount is not None:
            body["amount"] = {"value": f"{amount:.2f}", "currency_code": self.config.currency}
        response = self.api(
            "POST",
            f"/v2/payments/captures/{gateway_transaction_id}/refund",
            json=body,
            headers={"PayPal-Request-Id": f"refund-{uuid.uuid4()}"},
        )
        refunded = response.get("amount") or {}
        return RefundResult(
            gateway=self.name,
            outcome=RefundOutcome.EXECUTED,
            gateway_transaction_id=gateway_transaction_id,
            amount=as_decimal(refunded.get("value")) or amount,
            refund_id=response.get("id"),
            status=TransactionStatus.COMPLETED
            if response.get("status") == "COMPLETED"
            else TransactionStatus.PENDING,
            raw=response,
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def check_signature(self, payload: CallbackPayload, signature: str, secret: str) -> bool:
        """Ask PayPal to verify the transmission against our webhook id."""
        body = {name: payload.header(header) for name, header in TRANSMISSION_HEADERS.items()}
        body["webhook_id"] = secret
        body["webhook_event"] = dict(payload.data)
        response = self.api("POST", "/v1/notifications/verify-webhook-signature", json=body)
        return response.get("verification_status") == "SUCCESS"

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        event_type = payload.get("event_type", "")
        resource = payload.get("resource") or {}
        amount = resource.get("amount") or {}
        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        is_subscription_event = event_type.startswith("BILLING.SUBSCRIPTION.")
        return CallbackResult(
            gateway=self.name,
            status=EVENT_STATUS_MAP.get(event_type, TransactionStatus.UNKNOWN),
            reference=resource.get("custom_id") or resource.get("invoice_id"),
            gateway_transaction_id=related.get("order_id") or resource.get("id"),
            amount=as_decimal(amount.get("value")),
            currency=amount.get("currency_code"),
            event_type=event_type,
            subscription_id=resource.get("id") if is_subscription_event else None,
            message=(resource.get("status_details") or {}).get("reason", ""),
            raw=dict(payload.data),
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _process_create_subscription(self, request: PaymentRequest) -> SubscriptionResult:
        terms = request.subscription
        plan_id = terms.plan_code if terms else None
        if not plan_id:
            unit, count = INTERVALS.get(terms.frequency if terms else RecurringFrequency.MONTHLY, ("MONTH", 1))
            product = self.api(
                "POST",
                "/v1/catalogs/products",
                json={"name": request.description or "Subscription", "type": "SERVICE"},
            )
            plan = self.api(
                "POST",
                "/v1/billing/plans",
                json={
                    "product_id": product.get("id"),
                    "name": request.description or "Subscription Plan",
                    "status": "ACTIVE",
                    "billing_cycles": [
                        {
                            "frequency": {"interval_unit": unit, "interval_count": count},
                            "tenure_type": "REGULAR",
                            "sequence": 1,
                            "total_cycles": (terms.cycles if terms else None) or 0,
                            "pricing_scheme": {
                                "fixed_price": {
                                    "value": f"{request.amount:.2f}",
                                    "currency_code": request.currency or self.config.currency,
                                }
                            },
                        }
                    ],
                    "payment_preferences": {
                        "auto_bill_outstanding": True,
                        "setup_fee_failure_action": "CONTINUE",
                        "payment_failure_threshold": 3,
                    },
                },
            )
            plan_id = plan.get("id")
            if not plan_id:
                raise GatewayError(
                    "Failed to create PayPal subscription plan",
                    gateway=self.name,
                    raw_response=plan,
                )

        start = terms.billing_date if terms and terms.billing_date else timezone.now() + timedelta(minutes=5)
        response = self.api(
            "POST",
            "/v1/billing/subscriptions",
            json={
                "plan_id": plan_id,
                "custom_id": request.reference,
                "start_time": start.isoformat(),
                "subscriber": {
                    "name": {
                        "given_name": request.customer.first_name,
                        "surname": request.customer.last_name,
                    },
                    "email_address": request.customer.email,
                },
                "application_context": {
                    "shipping_preference": "NO_SHIPPING",
                    "user_action": "SUBSCRIBE_NOW",
                    "return_url": request.return_url or self.config.return_url,
                    "cancel_url": request.cancel_url or self.config.cancel_url,
                },
            },
        )
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=response.get("id", ""),
            status=self.map_status(response.get("status"), SUBSCRIPTION_STATUS_MAP),
            plan=plan_id,
            authorization_url=self.approval_link(response),
            raw=response,
        )

    def _process_get_subscription(self, subscription_id: str) -> SubscriptionResult:
        response = self.api("GET", f"/v1/billing/subscriptions/{subscription_id}")
        billing = response.get("billing_info") or {}
        next_billing = billing.get("next_billing_time")
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=subscription_id,
            status=self.map_status(response.get("status"), SUBSCRIPTION_STATUS_MAP),
            plan=response.get("plan_id"),
            next_billing_date=datetime.fromisoformat(next_billing.replace("Z", "+00:00"))
            if next_billing
            else None,
            raw=response,
        )

    def _process_cancel_subscription(self, subscription_id: str) -> SubscriptionResult:
        self.api(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/cancel",
            json={"reason": "Customer requested cancellation"},
        )
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=subscription_id,
            status=TransactionStatus.CANCELLED,
        )

    def _process_update_subscription(self, subscription_id: str, changes) -> SubscriptionResult:
        operations = []
        if changes.get("plan_id"):
            operations.append({"op": "replace", "path": "/plan_id", "value": changes["plan_id"]})
        if changes.get("custom_id"):
            operations.append({"op": "replace", "path": "/custom_id", "value": changes["custom_id"]})
        self.api("PATCH", f"/v1/billing/subscriptions/{subscription_id}", json=operations)
        return self._process_get_subscription(subscription_id)

    def _process_history(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        now = timezone.now()
        params = {
            "start_date": filters.get("start_date") or (now - timedelta(days=30)).isoformat(),
            "end_date": filters.get("end_date") or now.isoformat(),
            "page_size": filters.get("page_size", 100),
            "page": filters.get("page", 1),
        }
        response = self.api("GET", "/v1/reporting/transactions", params=params)
        history = []
        for detail in response.get("transaction_details") or []:
            info = detail.get("transaction_info") or {}
            amount = info.get("transaction_amount") or {}
            history.append(
                {
                    "id": info.get("transaction_id"),
                    "reference": info.get("custom_field") or info.get("invoice_id"),
                    "amount": as_decimal(amount.get("value")),
                    "currency": amount.get("currency_code"),
                    "provider_status": info.get("transaction_status"),
                    "created_at": info.get("transaction_initiation_date"),
                }
            )
        return history
