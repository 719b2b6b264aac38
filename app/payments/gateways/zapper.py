"""
Zapper QR payments adapter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.gateways.base import AbstractGateway
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
    "Success": TransactionStatus.COMPLETED,
    "Pending": TransactionStatus.PENDING,
    "Failed": TransactionStatus.FAILED,
    "Cancelled": TransactionStatus.CANCELLED,
    "Expired": TransactionStatus.EXPIRED,
    "Refunded": TransactionStatus.REFUNDED,
    "PartiallyRefunded": TransactionStatus.PARTIALLY_REFUNDED,
}


class ZapperGateway(AbstractGateway):
    name = "zapper"
    display_name = "Zapper"
    supported_currencies = ("ZAR",)
    payment_methods = ("zapper_qr", "card", "eft")
    required_credentials = ("merchant_id", "site_id", "api_key")

    live_api_url = "https://api.zapper.com"
    test_api_url = "https://api-sandbox.zapper.com"

    default_config = {
        "reference_prefix": "ZAP",
        "currency": "ZAR",
        "minimum_amount": "1.00",
        "maximum_amount": "50000.00",
    }

    signature_header = "X-Zapper-Signature"
    signature_secret_key = "api_secret"

    def default_headers(self) -> dict[str, str]:
        headers = {
            "Api-Key": self.config.credential("api_key"),
            "Merchant-Id": self.config.credential("merchant_id"),
            "Site-Id": self.config.credential("site_id"),
        }
        return {key: str(value) for key, value in headers.items() if value}

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        body: dict[str, Any] = {
            "merchantId": self.config.credential("merchant_id"),
            "siteId": self.config.credential("site_id"),
            "amount": f"{request.amount:.2f}",
            "currency": request.currency,
            "reference": request.reference,
            "description": request.description,
            "callbackUrl": request.notify_url or self.config.notify_url,
            "successUrl": request.return_url or self.config.return_url,
            "cancelUrl": request.cancel_url or self.config.cancel_url,
            "expiryMinutes": int(self.config.option("expiry_minutes", 30)),
            "isTest": self.config.test_mode,
            "metadata": dict(request.metadata),
        }
        if request.customer.email:
            body["customer"] = {
                "email": request.customer.email,
                "firstName": request.customer.first_name,
                "lastName": request.customer.last_name,
                "mobile": request.customer.phone,
            }

        response = self.http.post("/v1/payments", json=body)
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=response.get("paymentId") or response.get("id"),
            payment_url=response.get("paymentUrl"),
            payment_data={"qr_code": response.get("qrCode"), "qr_code_url": response.get("qrCodeUrl")},
            method="GET",
            redirect_required=bool(response.get("paymentUrl")),
            raw=response,
        )

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        response = self.http.get(f"/v1/payments/{gateway_transaction_id}")
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(response.get("status"), STATUS_MAP),
            gateway_transaction_id=response.get("paymentId") or gateway_transaction_id,
            reference=response.get("reference"),
            amount=as_decimal(response.get("amount")),
            currency=response.get("currency") or "ZAR",
            message=response.get("message") or "",
            raw=response,
        )

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        status = self.map_status(payload.get("status"), STATUS_MAP)
        return CallbackResult(
            gateway=self.name,
            status=status,
            reference=payload.get("reference"),
            gateway_transaction_id=payload.get("paymentId"),
            amount=as_decimal(payload.get("amount")),
            currency=payload.get("currency") or "ZAR",
            event_type=str(payload.get("event") or payload.get("status") or ""),
            payment_method=payload.get("paymentMethod"),
            message=payload.get("errorMessage") or "",
            raw=dict(payload.data),
        )

    def _process_refund(self, gateway_transaction_id: str, amount: Decimal | None) -> RefundResult:
        body: dict[str, Any] = {"reason": "Refund requested"}
        if amount is not None:
            body["amount"] = f"{amount:.2f}"
        response = self.http.post(f"/v1/payments/{gateway_transaction_id}/refund", json=body)
        status = self.map_status(response.get("status"), {"Success": TransactionStatus.COMPLETED})
        return RefundResult(
            gateway=self.name,
            outcome=RefundOutcome.EXECUTED,
            gateway_transaction_id=gateway_transaction_id,
            amount=as_decimal(response.get("amount")) or amount,
            refund_id=response.get("refundId"),
            status=TransactionStatus.COMPLETED if status == TransactionStatus.COMPLETED else TransactionStatus.PENDING,
            raw=response,
        )
