"""
Cryptocurrency adapter (Coinbase Commerce charges API).

A charge is priced in a fiat "local" currency and settled in any supported
coin. Status comes only from the charge timeline or the webhook event
type; nothing is inferred from the reference or transaction id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.gateways.base import AbstractGateway
from payments.gateways.types import CallbackResult, InitResult, VerifyResult, as_decimal
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from typing import Any

    from payments.gateways.types import CallbackPayload, PaymentRequest


TIMELINE_STATUS_MAP = {
    "NEW": TransactionStatus.PENDING,
    "SIGNED": TransactionStatus.PENDING,
    "PENDING": TransactionStatus.PROCESSING,
    "COMPLETED": TransactionStatus.COMPLETED,
    "RESOLVED": TransactionStatus.COMPLETED,
    "EXPIRED": TransactionStatus.EXPIRED,
    "UNRESOLVED": TransactionStatus.FAILED,
    "CANCELED": TransactionStatus.CANCELLED,
}

EVENT_STATUS_MAP = {
    "charge:created": TransactionStatus.PENDING,
    "charge:pending": TransactionStatus.PROCESSING,
    "charge:delayed": TransactionStatus.PROCESSING,
    "charge:confirmed": TransactionStatus.COMPLETED,
    "charge:resolved": TransactionStatus.COMPLETED,
    "charge:failed": TransactionStatus.FAILED,
}


class CryptoGateway(AbstractGateway):
    name = "crypto"
    display_name = "Cryptocurrency"
    supported_currencies = ("BTC", "ETH", "USDT", "USDC", "USD", "EUR", "GBP", "ZAR")
    payment_methods = ("bitcoin", "ethereum", "usdt", "usdc")
    required_credentials = ("api_key",)

    live_api_url = "https://api.commerce.coinbase.com"
    api_version = "2018-03-22"

    default_config = {
        "reference_prefix": "CRYPTO",
        "currency": "USD",
        "minimum_amount": "1.00",
        "maximum_amount": "100000.00",
    }

    manual_refunds = True
    manual_refund_reason = "Cryptocurrency payments cannot be reversed automatically"
    manual_refund_instructions = "Send the refund from the merchant wallet to an address supplied by the customer"

    signature_header = "X-CC-Webhook-Signature"
    signature_secret_key = "webhook_secret"

    def default_headers(self) -> dict[str, str]:
        headers = {"X-CC-Version": self.api_version}
        api_key = self.config.credential("api_key")
        if api_key:
            headers["X-CC-Api-Key"] = api_key
        return headers

    @staticmethod
    def timeline_status(charge: dict[str, Any]) -> str | None:
        timeline = charge.get("timeline") or []
        return timeline[-1].get("status") if timeline else None

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        body = {
            "name": request.description[:100],
            "description": request.description[:200],
            "pricing_type": "fixed_price",
            "local_price": {"amount": f"{request.amount:.2f}", "currency": request.currency},
            "metadata": {
                "reference": request.reference,
                "customer_email": request.customer.email,
                "customer_name": request.customer.full_name,
            },
            "redirect_url": request.return_url or self.config.return_url,
            "cancel_url": request.cancel_url or self.config.cancel_url,
        }
        response = self.http.post("/charges", json=body)
        charge = response.get("data") or {}
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=charge.get("code") or charge.get("id"),
            payment_url=charge.get("hosted_url"),
            payment_data={"addresses": charge.get("addresses") or {}, "pricing": charge.get("pricing") or {}},
            method="GET",
            redirect_required=True,
            raw=response,
        )

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        response = self.http.get(f"/charges/{gateway_transaction_id}")
        charge = response.get("data") or {}
        local = (charge.get("pricing") or {}).get("local") or {}
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(self.timeline_status(charge), TIMELINE_STATUS_MAP),
            gateway_transaction_id=charge.get("code") or gateway_transaction_id,
            reference=(charge.get("metadata") or {}).get("reference"),
            amount=as_decimal(local.get("amount")),
            currency=local.get("currency"),
            raw=response,
        )

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        event = payload.get("event") or {}
        event_type = event.get("type", "")
        charge = event.get("data") or {}
        local = (charge.get("pricing") or {}).get("local") or {}
        return CallbackResult(
            gateway=self.name,
            status=EVENT_STATUS_MAP.get(event_type, TransactionStatus.UNKNOWN),
            reference=(charge.get("metadata") or {}).get("reference"),
            gateway_transaction_id=charge.get("code"),
            amount=as_decimal(local.get("amount")),
            currency=local.get("currency"),
            event_type=event_type,
            raw=dict(payload.data),
        )
