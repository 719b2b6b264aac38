"""
SnapScan QR adapter.

Customers scan a QR code that encodes the merchant snapcode, the
transaction reference and the amount in cents. SnapScan posts a webhook
whose form field "payload" holds the payment JSON, signed with
Authorization: SnapScan signature=<HMAC-SHA256 of the raw body>.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from payments.gateways.base import AbstractGateway
from payments.gateways.types import CallbackResult, InitResult, VerifyResult
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from typing import Any

    from payments.gateways.types import CallbackPayload, PaymentRequest


STATUS_MAP = {
    "completed": TransactionStatus.COMPLETED,
    "pending": TransactionStatus.PENDING,
    "error": TransactionStatus.FAILED,
}

SIGNATURE_PREFIX = "SnapScan signature="


class SnapScanGateway(AbstractGateway):
    name = "snapscan"
    display_name = "SnapScan"
    supported_currencies = ("ZAR",)
    payment_methods = ("qr_code",)
    required_credentials = ("merchant_id", "api_key")

    live_api_url = "https://pos.snapscan.io"
    test_api_url = "https://pos-staging.snapscan.io"

    default_config = {
        "reference_prefix": "SS",
        "currency": "ZAR",
        "minimum_amount": "1.00",
        "maximum_amount": "10000.00",
    }

    manual_refunds = True
    manual_refund_reason = "SnapScan refunds must be processed from the SnapScan merchant portal"
    manual_refund_instructions = "Refund the payment from the SnapScan merchant portal using the transaction reference"

    signature_header = "Authorization"

    def build_http_client(self):
        client = super().build_http_client()
        client.session.auth = (self.config.credential("api_key", ""), "")
        return client

    def signature_secret(self) -> str | None:
        return self.config.credential("webhook_secret") or self.config.credential("api_key")

    def extract_signature(self, payload: CallbackPayload) -> str | None:
        header = payload.header("Authorization") or ""
        if not header.startswith(SIGNATURE_PREFIX):
            return None
        return header[len(SIGNATURE_PREFIX):]

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        snapcode = self.config.credential("merchant_id")
        query = urlencode(
            {
                "id": request.reference,
                "amount": self.to_minor_units(request.amount, request.currency),
                "strict": "true",
            }
        )
        qr_url = f"https://pos.snapscan.io/qr/{snapcode}?{query}"
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=request.reference,
            payment_url=qr_url,
            payment_data={"qr_code_url": f"{qr_url}&snap_code_size=250"},
            method="QR",
            redirect_required=False,
        )

    @staticmethod
    def _payment_payload(data: Any) -> dict[str, Any]:
        payload = data.get("payload") if isinstance(data, dict) else None
        if isinstance(payload, str):
            return json.loads(payload)
        return dict(payload or data or {})

    def _result_fields(self, payment: dict[str, Any]) -> dict[str, Any]:
        amount = payment.get("totalAmount", payment.get("requiredAmount"))
        return {
            "status": self.map_status(payment.get("status"), STATUS_MAP),
            "reference": payment.get("merchantReference"),
            "gateway_transaction_id": str(payment["id"]) if payment.get("id") else None,
            "amount": self.from_minor_units(amount, "ZAR") if amount is not None else None,
            "currency": "ZAR",
        }

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        response = self.http.get(
            "/merchant/api/v1/payments",
            params={"merchantReference": gateway_transaction_id},
        )
        payments = response if isinstance(response, list) else []
        if not payments:
            return VerifyResult(
                gateway=self.name,
                status=TransactionStatus.PENDING,
                reference=gateway_transaction_id,
                awaiting_webhook=True,
                message="No SnapScan payment recorded for this reference yet",
            )
        fields = self._result_fields(payments[0])
        fields["reference"] = fields["reference"] or gateway_transaction_id
        return VerifyResult(gateway=self.name, raw={"payments": payments}, **fields)

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        payment = self._payment_payload(payload.data)
        return CallbackResult(
            gateway=self.name,
            event_type="payment",
            message=payment.get("statusMessage") or "",
            raw=payment,
            **self._result_fields(payment),
        )
