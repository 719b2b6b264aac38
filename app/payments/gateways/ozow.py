"""
Ozow instant EFT adapter.

Payments start with a hashed form posted to pay.ozow.com. Ozow notifies
notify_url with a Hash field (SHA512 over the notification values plus the
private key, lower-cased). Status can also be queried by reference.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.gateways.base import AbstractGateway
from payments.gateways.signatures import ozow_hash, secure_compare
from payments.gateways.types import CallbackResult, InitResult, VerifyResult, as_decimal
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from payments.gateways.types import CallbackPayload, PaymentRequest


STATUS_MAP = {
    "Complete": TransactionStatus.COMPLETED,
    "Pending": TransactionStatus.PENDING,
    "PendingInvestigation": TransactionStatus.PROCESSING,
    "Cancelled": TransactionStatus.CANCELLED,
    "Abandoned": TransactionStatus.CANCELLED,
    "Error": TransactionStatus.FAILED,
    "Failed": TransactionStatus.FAILED,
    "Expired": TransactionStatus.EXPIRED,
}

# Field order for HashCheck on payment requests
REQUEST_HASH_FIELDS = (
    "SiteCode",
    "CountryCode",
    "CurrencyCode",
    "Amount",
    "TransactionReference",
    "BankReference",
    "Optional1",
    "Optional2",
    "Optional3",
    "Optional4",
    "Optional5",
    "Customer",
    "CancelUrl",
    "ErrorUrl",
    "SuccessUrl",
    "NotifyUrl",
    "IsTest",
)

# Field order for Hash on notifications
NOTIFICATION_HASH_FIELDS = (
    "SiteCode",
    "TransactionId",
    "TransactionReference",
    "Amount",
    "Status",
    "Optional1",
    "Optional2",
    "Optional3",
    "Optional4",
    "Optional5",
    "CurrencyCode",
    "IsTest",
    "StatusMessage",
)


class OzowGateway(AbstractGateway):
    name = "ozow"
    display_name = "Ozow"
    supported_currencies = ("ZAR",)
    payment_methods = ("instant_eft",)
    required_fields = ("amount", "description", "customer.email")
    required_credentials = ("site_code", "private_key")

    live_api_url = "https://api.ozow.com"
    test_api_url = "https://api.ozow.com"
    payment_page_url = "https://pay.ozow.com"

    default_config = {
        "reference_prefix": "OZ",
        "currency": "ZAR",
        "minimum_amount": "5.00",
        "maximum_amount": "100000.00",
        "error_messages": {
            "001": "Payment cancelled by user",
            "002": "Payment declined",
            "003": "Transaction expired",
            "004": "Insufficient funds",
            "005": "Bank not supported",
            "006": "Technical error",
        },
    }

    manual_refunds = True
    manual_refund_reason = "Ozow refunds must be processed manually through the Ozow merchant portal"
    manual_refund_instructions = "Log in to the Ozow merchant portal and refund the transaction by reference"

    signature_secret_key = "private_key"

    def default_headers(self) -> dict[str, str]:
        api_key = self.config.credential("api_key")
        return {"ApiKey": api_key} if api_key else {}

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        reference = request.reference
        form = {
            "SiteCode": self.config.credential("site_code"),
            "CountryCode": "ZA",
            "CurrencyCode": request.currency,
            "Amount": f"{request.amount:.2f}",
            "TransactionReference": reference,
            "BankReference": reference[:20],
            "Customer": request.customer.email,
            "CancelUrl": request.cancel_url or self.config.cancel_url,
            "ErrorUrl": self.config.option("error_url") or request.cancel_url or self.config.cancel_url,
            "SuccessUrl": request.return_url or self.config.return_url,
            "NotifyUrl": request.notify_url or self.config.notify_url,
            "IsTest": "true" if self.config.test_mode else "false",
        }
        for index in range(1, 6):
            value = request.metadata.get(f"optional{index}")
            if value:
                form[f"Optional{index}"] = str(value)
        form["HashCheck"] = ozow_hash(
            (form.get(key, "") for key in REQUEST_HASH_FIELDS),
            self.config.credential("private_key"),
        )
        return InitResult(
            gateway=self.name,
            reference=reference,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=reference,
            payment_url=self.payment_page_url,
            payment_data=form,
            method="POST",
            redirect_required=True,
        )

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        response = self.http.get(
            "/GetTransactionByReference",
            params={
                "siteCode": self.config.credential("site_code"),
                "transactionReference": gateway_transaction_id,
                "isTest": "true" if self.config.test_mode else "false",
            },
        )
        records = response if isinstance(response, list) else [response]
        record = records[-1] if records else {}
        if not record:
            return VerifyResult(
                gateway=self.name,
                status=TransactionStatus.PENDING,
                reference=gateway_transaction_id,
                awaiting_webhook=True,
                message="Ozow has no record of this transaction yet",
            )
        return VerifyResult(
            gateway=self.name,
            status=self.map_status(record.get("status"), STATUS_MAP),
            gateway_transaction_id=record.get("transactionId"),
            reference=record.get("transactionReference") or gateway_transaction_id,
            amount=as_decimal(record.get("amount")),
            currency=record.get("currencyCode"),
            message=record.get("statusMessage") or "",
            raw={"records": records},
        )

    def extract_signature(self, payload: CallbackPayload) -> str | None:
        return payload.get("Hash") or payload.get("hash")

    def check_signature(self, payload: CallbackPayload, signature: str, secret: str) -> bool:
        expected = ozow_hash((payload.get(key, "") for key in NOTIFICATION_HASH_FIELDS), secret)
        return secure_compare(expected, signature)

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        status = payload.get("Status", "")
        return CallbackResult(
            gateway=self.name,
            status=self.map_status(status, STATUS_MAP),
            reference=payload.get("TransactionReference"),
            gateway_transaction_id=payload.get("TransactionId"),
            amount=as_decimal(payload.get("Amount")),
            currency=payload.get("CurrencyCode") or "ZAR",
            event_type=f"notification.{str(status).lower()}" if status else "notification",
            message=payload.get("StatusMessage") or "",
            raw=dict(payload.data),
        )
