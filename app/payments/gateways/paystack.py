"""
PayStack adapter (REST, amounts in kobo/pesewas/cents).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.exceptions import UnsupportedOperationError
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
    from decimal import Decimal
    from typing import Any

    from payments.gateways.types import CallbackPayload, PaymentRequest


STATUS_MAP = {
    "success": TransactionStatus.COMPLETED,
    "failed": TransactionStatus.FAILED,
    "abandoned": TransactionStatus.CANCELLED,
    "pending": TransactionStatus.PENDING,
    "reversed": TransactionStatus.REFUNDED,
    "processed": TransactionStatus.PROCESSING,
}

SUBSCRIPTION_STATUS_MAP = {
    "active": TransactionStatus.ACTIVE,
    "non-renewing": TransactionStatus.ACTIVE,
    "attention": TransactionStatus.PENDING_RENEWAL,
    "completed": TransactionStatus.COMPLETED,
    "cancelled": TransactionStatus.CANCELLED,
}

PLAN_INTERVALS = {
    RecurringFrequency.DAILY: "daily",
    RecurringFrequency.WEEKLY: "weekly",
    RecurringFrequency.MONTHLY: "monthly",
    RecurringFrequency.QUARTERLY: "quarterly",
    RecurringFrequency.YEARLY: "annually",
}

DEFAULT_CHANNELS = ["card", "bank", "ussd", "qr", "mobile_money", "bank_transfer"]


class PayStackGateway(AbstractGateway):
    name = "paystack"
    display_name = "PayStack"
    supported_currencies = ("NGN", "GHS", "ZAR", "USD", "EUR", "GBP")
    payment_methods = ("card", "bank", "ussd", "qr", "mobile_money", "bank_transfer")
    required_fields = ("amount", "description", "customer.email")
    required_credentials = ("secret_key",)

    live_api_url = "https://api.paystack.co"
    test_api_url = "https://api.paystack.co"

    default_config = {
        "reference_prefix": "PS",
        "currency": "NGN",
        "minimum_amount": "1.00",
        "maximum_amount": "1000000.00",
        "error_messages": {
            "insufficient_funds": "Insufficient funds in account",
            "card_declined": "Card was declined",
            "expired_card": "Card has expired",
            "invalid_card": "Invalid card details",
            "invalid_amount": "Invalid amount specified",
            "invalid_currency": "Invalid currency specified",
            "duplicate_transaction": "Duplicate transaction detected",
            "transaction_timeout": "Transaction timed out",
            "bank_error": "Bank processing error",
            "gateway_error": "Payment gateway error",
        },
    }

    supports_subscriptions = True
    supports_history = True

    signature_header = "X-Paystack-Signature"
    signature_secret_key = "secret_key"
    signature_algorithm = "sha512"

    def default_headers(self) -> dict[str, str]:
        secret_key = self.config.credential("secret_key")
        return {"Authorization": f"Bearer {secret_key}"} if secret_key else {}

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        body: dict[str, Any] = {
            "email": request.customer.email,
            "amount": self.to_minor_units(request.amount, request.currency),
            "reference": request.reference,
            "currency": request.currency,
            "channels": list(request.metadata.get("channels", DEFAULT_CHANNELS)),
            "metadata": {
                "description": request.description,
                "customer_name": request.customer.full_name,
                **dict(request.metadata),
            },
        }
        callback_url = request.return_url or self.config.return_url
        if callback_url:
            body["callback_url"] = callback_url
        if request.subscription and request.subscription.plan_code:
            body["plan"] = request.subscription.plan_code

        response = self.http.post("/transaction/initialize", json=body)
        data = response.get("data") or {}
        return InitResult(
            gateway=self.name,
            reference=data.get("reference") or request.reference,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=data.get("reference") or request.reference,
            payment_url=data.get("authorization_url"),
            payment_data={"access_code": data.get("access_code")},
            method="GET",
            redirect_required=True,
            raw=response,
        )

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        response = self.http.get(f"/transaction/verify/{gateway_transaction_id}")
        data = response.get("data") or {}
        currency = data.get("currency") or self.config.currency
        fees = data.get("fees")
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(data.get("status"), STATUS_MAP),
            gateway_transaction_id=str(data["id"]) if data.get("id") else None,
            reference=data.get("reference") or gateway_transaction_id,
            amount=self.from_minor_units(data["amount"], currency) if data.get("amount") is not None else None,
            currency=currency,
            fee_amount=self.from_minor_units(fees, currency) if fees is not None else None,
            message=data.get("gateway_response", ""),
            raw=response,
        )

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        event = payload.get("event", "")
        data = payload.get("data") or {}
        currency = data.get("currency") or self.config.currency

        if event.startswith("subscription."):
            status = {
                "subscription.create": TransactionStatus.ACTIVE,
                "subscription.disable": TransactionStatus.CANCELLED,
                "subscription.not_renew": TransactionStatus.ACTIVE,
            }.get(event, TransactionStatus.UNKNOWN)
        elif event == "invoice.payment_failed":
            status = TransactionStatus.FAILED
        elif event.startswith("refund."):
            status = TransactionStatus.UNKNOWN
        else:
            status = self.map_status(data.get("status"), STATUS_MAP)

        amount = data.get("amount")
        fees = data.get("fees")
        subscription = data.get("subscription") or {}
        return CallbackResult(
            gateway=self.name,
            status=status,
            reference=data.get("reference"),
            gateway_transaction_id=str(data["id"]) if data.get("id") else None,
            amount=self.from_minor_units(amount, currency) if amount is not None else None,
            currency=currency,
            fee_amount=self.from_minor_units(fees, currency) if fees is not None else None,
            event_type=event,
            subscription_id=data.get("subscription_code") or subscription.get("subscription_code"),
            payment_method=data.get("channel"),
            message=data.get("gateway_response", ""),
            raw=dict(payload.data),
        )

    def _process_refund(self, gateway_transaction_id: str, amount: Decimal | None) -> RefundResult:
        body: dict[str, Any] = {"transaction": gateway_transaction_id}
        if amount is not None:
            body["amount"] = self.to_minor_units(amount)
        response = self.http.post("/refund", json=body)
        data = response.get("data") or {}
        currency = data.get("currency") or self.config.currency
        return RefundResult(
            gateway=self.name,
            outcome=RefundOutcome.EXECUTED,
            gateway_transaction_id=gateway_transaction_id,
            amount=self.from_minor_units(data["amount"], currency) if data.get("amount") is not None else amount,
            refund_id=str(data["id"]) if data.get("id") else None,
            status=TransactionStatus.COMPLETED
            if data.get("status") == "processed"
            else TransactionStatus.PENDING,
            raw=response,
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _process_create_subscription(self, request: PaymentRequest) -> SubscriptionResult:
        customer = self.http.post(
            "/customer",
            json={
                "email": request.customer.email,
                "first_name": request.customer.first_name,
                "last_name": request.customer.last_name,
                "phone": request.customer.phone,
            },
        )
        customer_code = (customer.get("data") or {}).get("customer_code")

        terms = request.subscription
        plan_code = terms.plan_code if terms else None
        if not plan_code:
            frequency = terms.frequency if terms else RecurringFrequency.MONTHLY
            plan = self.http.post(
                "/plan",
                json={
                    "name": request.description or "Subscription Plan",
                    "amount": self.to_minor_units(request.amount, request.currency),
                    "interval": PLAN_INTERVALS.get(frequency, "monthly"),
                    "currency": request.currency or self.config.currency,
                },
            )
            plan_code = (plan.get("data") or {}).get("plan_code")

        body: dict[str, Any] = {"customer": customer_code, "plan": plan_code}
        if terms and terms.billing_date:
            body["start_date"] = terms.billing_date.isoformat()
        response = self.http.post("/subscription", json=body)
        data = response.get("data") or {}
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=data.get("subscription_code", ""),
            status=self.map_status(data.get("status", "active"), SUBSCRIPTION_STATUS_MAP),
            plan=plan_code,
            raw=response,
        )

    def _process_get_subscription(self, subscription_id: str) -> SubscriptionResult:
        response = self.http.get(f"/subscription/{subscription_id}")
        data = response.get("data") or {}
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=subscription_id,
            status=self.map_status(data.get("status"), SUBSCRIPTION_STATUS_MAP),
            plan=(data.get("plan") or {}).get("plan_code"),
            raw=response,
        )

    def _process_cancel_subscription(self, subscription_id: str) -> SubscriptionResult:
        current = self.http.get(f"/subscription/{subscription_id}")
        token = (current.get("data") or {}).get("email_token")
        response = self.http.post(
            "/subscription/disable",
            json={"code": subscription_id, "token": token},
        )
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=subscription_id,
            status=TransactionStatus.CANCELLED,
            raw=response,
        )

    def _process_update_subscription(self, subscription_id: str, changes) -> SubscriptionResult:
        raise UnsupportedOperationError(
            "PayStack subscriptions cannot be updated; cancel and create a new one",
            details={"gateway": self.name, "subscription_id": subscription_id},
        )

    def _process_history(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        params = {
            key: filters[key]
            for key in ("perPage", "page", "customer", "status", "from", "to")
            if key in filters
        }
        if "amount" in filters:
            params["amount"] = self.to_minor_units(filters["amount"])
        response = self.http.get("/transaction", params=params)
        history = []
        for item in response.get("data") or []:
            currency = item.get("currency") or self.config.currency
            history.append(
                {
                    "id": item.get("id"),
                    "reference": item.get("reference"),
                    "amount": self.from_minor_units(item.get("amount") or 0, currency),
                    "currency": currency,
                    "status": str(self.map_status(item.get("status"), STATUS_MAP)),
                    "provider_status": item.get("status"),
                    "customer_email": (item.get("customer") or {}).get("email"),
                    "paid_at": item.get("paid_at"),
                    "created_at": item.get("created_at"),
                }
            )
        return history
