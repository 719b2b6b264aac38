"""
VodaPay wallet adapter.

Outbound API calls are signed: X-Signature is HMAC-SHA256 over
method + path + JSON body + X-Timestamp with the api_secret. Webhooks
carry HMAC-SHA256 of the raw body in X-VodaPay-Signature.
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING

from payments.gateways.base import AbstractGateway
from payments.gateways.signatures import hmac_hexdigest
from payments.gateways.types import (
    CallbackResult,
    InitResult,
    RefundOutcome,
    RefundResult,
    VerifyResult,
    as_decimal,
)
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from decimal import Decimal
    from typing import Any

    from payments.gateways.types import CallbackPayload, PaymentRequest


STATUS_MAP = {
    "INITIATED": TransactionStatus.PENDING,
    "PENDING": TransactionStatus.PENDING,
    "PROCESSING": TransactionStatus.PROCESSING,
    "SUCCESS": TransactionStatus.COMPLETED,
    "FAILED": TransactionStatus.FAILED,
    "CANCELLED": TransactionStatus.CANCELLED,
    "EXPIRED": TransactionStatus.EXPIRED,
    "REFUNDED": TransactionStatus.REFUNDED,
}


class VodaPayGateway(AbstractGateway):
    name = "vodapay"
    display_name = "VodaPay"
    supported_currencies = ("ZAR",)
    payment_methods = ("wallet", "card")
    required_credentials = ("merchant_id", "api_key", "api_secret")

    live_api_url = "https://api.vodapay.co.za"
    test_api_url = "https://sandbox-api.vodapay.co.za"

    default_config = {
        "reference_prefix": "VP",
        "currency": "ZAR",
        "minimum_amount": "1.00",
        "maximum_amount": "5000.00",
    }

    signature_header = "X-VodaPay-Signature"
    signature_secret_key = "api_secret"

    def default_headers(self) -> dict[str, str]:
        headers = {
            "X-Merchant-ID": self.config.credential("merchant_id"),
            "X-API-Key": self.config.credential("api_key"),
        }
        return {key: str(value) for key, value in headers.items() if value}

    def signed(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        """Send a request carrying the X-Timestamp / X-Signature pair."""
        encoded = json.dumps(body, separators=(",", ":")) if body is not None else ""
        timestamp = str(int(time.time()))
        signature = hmac_hexdigest(
            self.config.credential("api_secret", ""),
            f"{method}{path}{encoded}{timestamp}",
        )
        return self.http.request(
            method,
            path,
            data=encoded or None,
            headers={"X-Timestamp": timestamp, "X-Signature": signature},
        )

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        response = self.signed(
            "POST",
            "/payments",
            {
                "merchantId": self.config.credential("merchant_id"),
                "reference": request.reference,
                "amount": self.to_minor_units(request.amount, request.currency),
                "currency": request.currency,
                "description": request.description,
                "customer": {
                    "email": request.customer.email,
                    "mobile": request.customer.phone,
                    "name": request.customer.full_name,
                },
                "returnUrl": request.return_url or self.config.return_url,
                "cancelUrl": request.cancel_url or self.config.cancel_url,
                "notifyUrl": request.notify_url or self.config.notify_url,
            },
        )
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=self.map_status(response.get("status") or "INITIATED", STATUS_MAP),
            gateway_transaction_id=response.get("paymentId") or response.get("id"),
            payment_url=response.get("redirectUrl") or response.get("paymentUrl"),
            payment_data={"deep_link": response.get("deepLink")},
            method="GET",
            redirect_required=True,
            raw=response,
        )

    def _amount(self, value: Any, currency: str | None = None) -> Decimal | None:
        return self.from_minor_units(value, currency) if value is not None else None

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        response = self.signed("GET", f"/payments/{gateway_transaction_id}")
        currency = response.get("currency") or "ZAR"
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(response.get("status"), STATUS_MAP),
            gateway_transaction_id=response.get("paymentId") or gateway_transaction_id,
            reference=response.get("reference"),
            amount=self._amount(response.get("amount"), currency),
            currency=currency,
            message=response.get("statusMessage") or "",
            raw=response,
        )

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        currency = payload.get("currency") or "ZAR"
        return CallbackResult(
            gateway=self.name,
            status=self.map_status(payload.get("status"), STATUS_MAP),
            reference=payload.get("reference"),
            gateway_transaction_id=payload.get("paymentId"),
            amount=self._amount(payload.get("amount"), currency),
            currency=currency,
            event_type=str(payload.get("eventType") or ""),
            payment_method=payload.get("paymentMethod"),
            message=payload.get("statusMessage") or "",
            raw=dict(payload.data),
        )

    def _process_refund(self, gateway_transaction_id: str, amount: Decimal | None) -> RefundResult:
        body: dict[str, Any] = {"reason": "Refund requested"}
        if amount is not None:
            body["amount"] = self.to_minor_units(amount)
        response = self.signed("POST", f"/payments/{gateway_transaction_id}/refunds", body)
        return RefundResult(
            gateway=self.name,
            outcome=RefundOutcome.EXECUTED,
            gateway_transaction_id=gateway_transaction_id,
            amount=self._amount(response.get("amount")) or amount,
            refund_id=response.get("refundId"),
            status=TransactionStatus.COMPLETED
            if response.get("status") == "SUCCESS"
            else TransactionStatus.PENDING,
            raw=response,
        )
