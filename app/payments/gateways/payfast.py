"""
PayFast adapter.

PayFast has no server-side initialise call: the customer's browser posts a
signed form to /eng/process, and the outcome arrives by ITN (Instant
Transaction Notification) to notify_url. verify_payment therefore reports
pending until the ITN lands, and refunds are done in the merchant dashboard.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from payments.exceptions import UnsupportedOperationError
from payments.gateways.base import AbstractGateway
from payments.gateways.signatures import payfast_signature, secure_compare
from payments.gateways.types import (
    CallbackResult,
    InitResult,
    SubscriptionResult,
    SubscriptionTerms,
    VerifyResult,
    as_decimal,
)
from payments.state_machines import RecurringFrequency, TransactionStatus

if TYPE_CHECKING:
    from payments.gateways.types import CallbackPayload, PaymentRequest


STATUS_MAP = {
    "COMPLETE": TransactionStatus.COMPLETED,
    "PENDING": TransactionStatus.PENDING,
    "FAILED": TransactionStatus.FAILED,
    "CANCELLED": TransactionStatus.CANCELLED,
}

# PayFast frequency codes
FREQUENCY_CODES = {
    RecurringFrequency.DAILY: 1,
    RecurringFrequency.WEEKLY: 2,
    RecurringFrequency.MONTHLY: 3,
    RecurringFrequency.QUARTERLY: 4,
    RecurringFrequency.YEARLY: 6,
}

CUSTOM_FIELDS = tuple(f"custom_int{i}" for i in range(1, 6)) + tuple(f"custom_str{i}" for i in range(1, 6))


def append_transaction_id(url: str, reference: str) -> str:
    if not url:
        return ""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode({'transaction_id': reference})}"


class PayFastGateway(AbstractGateway):
    name = "payfast"
    display_name = "PayFast"
    supported_currencies = ("ZAR",)
    payment_methods = (
        "credit_card",
        "debit_card",
        "eft",
        "instant_eft",
        "masterpass",
        "mobicred",
        "scan_to_pay",
    )
    required_fields = ("amount", "description", "customer.email")
    required_credentials = ("merchant_id", "merchant_key")

    live_api_url = "https://www.payfast.co.za"
    test_api_url = "https://sandbox.payfast.co.za"
    process_path = "/eng/process"

    default_config = {
        "reference_prefix": "PF",
        "currency": "ZAR",
        "minimum_amount": "1.00",
        "maximum_amount": "100000.00",
        "error_messages": {
            "001": "Payment cancelled by user",
            "002": "Payment declined",
            "003": "Transaction expired",
            "004": "Insufficient funds",
            "005": "Invalid card details",
            "006": "Technical error",
            "007": "Duplicate transaction",
            "008": "Invalid merchant configuration",
            "009": "Invalid payment data",
            "010": "Payment method not supported",
        },
    }

    supports_subscriptions = True
    manual_refunds = True
    manual_refund_reason = "Refunds for PayFast must be processed manually through the PayFast dashboard"
    manual_refund_instructions = "Use the PayFast merchant dashboard or contact PayFast support"

    signature_secret_key = "passphrase"
    signature_secret_optional = True

    def get_payment_url(self) -> str:
        return f"{self.get_api_endpoint().rstrip('/')}{self.process_path}"

    def build_form(self, request: PaymentRequest) -> dict[str, str]:
        """Form fields in PayFast's documented order, signature last."""
        reference = request.reference
        customer = request.customer
        fields: dict[str, str] = {
            "merchant_id": str(self.config.credential("merchant_id")),
            "merchant_key": str(self.config.credential("merchant_key")),
            "return_url": append_transaction_id(request.return_url or self.config.return_url, reference),
            "cancel_url": append_transaction_id(request.cancel_url or self.config.cancel_url, reference),
            "notify_url": append_transaction_id(request.notify_url or self.config.notify_url, reference),
            "m_payment_id": reference,
            "amount": f"{request.amount:.2f}",
            "item_name": request.description[:100],
            "item_description": str(request.metadata.get("item_description", request.description))[:255],
            "name_first": customer.first_name,
            "name_last": customer.last_name,
            "email_address": customer.email,
            "cell_number": customer.phone,
        }
        for key in CUSTOM_FIELDS:
            value = request.metadata.get(key)
            if value not in (None, ""):
                fields[key] = str(value)
        if request.payment_method:
            fields["payment_method"] = request.payment_method

        if request.subscription:
            terms = request.subscription
            fields["subscription_type"] = "1"
            if terms.billing_date:
                fields["billing_date"] = terms.billing_date.strftime("%Y-%m-%d")
            fields["recurring_amount"] = f"{request.amount:.2f}"
            fields["frequency"] = str(FREQUENCY_CODES.get(terms.frequency, 3))
            fields["cycles"] = str(terms.cycles or 0)

        fields = {key: value for key, value in fields.items() if value not in (None, "")}
        fields["signature"] = payfast_signature(fields, self.config.credential("passphrase"))
        return fields

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        form = self.build_form(request)
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=request.reference,
            payment_url=self.get_payment_url(),
            payment_data=form,
            method="POST",
            redirect_required=True,
        )

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        return VerifyResult(
            gateway=self.name,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=gateway_transaction_id,
            reference=gateway_transaction_id,
            awaiting_webhook=True,
            message="PayFast reports the final status through ITN",
        )

    # =========================================================================
    # ITN
    # =========================================================================

    def extract_signature(self, payload: CallbackPayload) -> str | None:
        return payload.get("signature")

    def check_signature(self, payload: CallbackPayload, signature: str, secret: str) -> bool:
        expected = payfast_signature(dict(payload.data), secret or None, sort_keys=True)
        return secure_compare(expected, signature)

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        provider_status = payload.get("payment_status", "")
        return CallbackResult(
            gateway=self.name,
            status=self.map_status(provider_status, STATUS_MAP),
            reference=payload.get("m_payment_id"),
            gateway_transaction_id=payload.get("pf_payment_id"),
            amount=as_decimal(payload.get("amount_gross")),
            fee_amount=as_decimal(payload.get("amount_fee")),
            net_amount=as_decimal(payload.get("amount_net")),
            currency="ZAR",
            event_type=f"itn.{str(provider_status).lower()}" if provider_status else "itn",
            subscription_id=payload.get("token"),
            raw=dict(payload.data),
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _process_create_subscription(self, request: PaymentRequest) -> SubscriptionResult:
        if request.subscription is None:
            request = request.replace(subscription=SubscriptionTerms())
        result = self.initialize_payment(request)
        return SubscriptionResult(
            gateway=self.name,
            subscription_id=result.reference,
            status=TransactionStatus.PENDING,
            authorization_url=result.payment_url,
            raw=result.payment_data,
        )

    def _process_cancel_subscription(self, subscription_id: str) -> SubscriptionResult:
        raise UnsupportedOperationError(
            "Subscription cancellations must be processed manually through the PayFast dashboard",
            details={"gateway": self.name, "subscription_id": subscription_id},
        )

    def _process_get_subscription(self, subscription_id: str) -> SubscriptionResult:
        raise UnsupportedOperationError(
            "PayFast subscription status is only available through ITN",
            details={"gateway": self.name, "subscription_id": subscription_id},
        )

    def _process_update_subscription(self, subscription_id, changes) -> SubscriptionResult:
        raise UnsupportedOperationError(
            "PayFast subscriptions cannot be updated through this integration",
            details={"gateway": self.name, "subscription_id": subscription_id},
        )
