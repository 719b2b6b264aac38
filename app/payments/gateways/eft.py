"""
Manual EFT / bank transfer adapter.

The customer pays into the merchant's bank account using the transaction
reference. Nothing is known about the payment until an operator matches
the bank statement, so verify_payment always reports pending with
manual_verification set and refunds are manual. Confirmed payments are
marked completed through the admin.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.utils import timezone

from payments.exceptions import GatewayConfigurationError, UnsupportedOperationError
from payments.gateways.base import AbstractGateway
from payments.gateways.types import InitResult, VerifyResult
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from payments.gateways.types import CallbackPayload, CallbackResult, PaymentRequest


class EftGateway(AbstractGateway):
    name = "eft"
    display_name = "EFT/Bank Transfer"
    supported_currencies = ("ZAR",)
    payment_methods = ("bank_transfer",)
    required_credentials = ("account_number", "branch_code")

    default_config = {
        "reference_prefix": "EFT",
        "currency": "ZAR",
        "minimum_amount": "1.00",
        "maximum_amount": "1000000.00",
        "payment_window_hours": 24,
        "error_messages": {
            "001": "Payment window expired",
            "002": "Invalid reference number",
            "003": "Payment amount mismatch",
            "004": "Bank account verification failed",
            "005": "Payment reference not found",
            "006": "Duplicate payment detected",
            "007": "Invalid bank details",
            "008": "Payment verification timeout",
        },
    }

    manual_refunds = True
    manual_refund_reason = "EFT payments are refunded by bank transfer"
    manual_refund_instructions = "Transfer the refund to the customer's bank account and record the proof of payment"

    signature_required = False

    def ensure_configured(self) -> None:
        # Bank details live in options, not credentials
        missing = [key for key in self.required_credentials if not self.config.get(key)]
        if missing:
            raise GatewayConfigurationError(
                f"{self.display_name} is missing configuration: {', '.join(missing)}",
                details={"gateway": self.name, "missing": missing},
            )

    def bank_details(self) -> dict[str, str]:
        return {
            key: str(self.config.get(key) or "")
            for key in ("bank_name", "account_name", "account_number", "branch_code", "swift_code")
        }

    def _process_initialize(self, request: PaymentRequest) -> InitResult:
        expires_at = timezone.now() + timedelta(hours=int(self.config.option("payment_window_hours", 24)))
        bank = self.bank_details()
        return InitResult(
            gateway=self.name,
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=request.reference,
            method="MANUAL",
            redirect_required=False,
            instructions={
                "bank_details": bank,
                "reference": request.reference,
                "amount": f"{request.amount:.2f}",
                "message": (
                    f"Transfer {request.currency} {request.amount:.2f} to {bank['account_name'] or bank['bank_name']} "
                    f"using reference {request.reference}"
                ),
            },
            expires_at=expires_at,
        )

    def _process_verify(self, gateway_transaction_id: str) -> VerifyResult:
        return VerifyResult(
            gateway=self.name,
            status=TransactionStatus.PENDING,
            gateway_transaction_id=gateway_transaction_id,
            reference=gateway_transaction_id,
            manual_verification=True,
            message="Payment is awaiting manual verification",
        )

    def _process_callback(self, payload: CallbackPayload) -> CallbackResult:
        raise UnsupportedOperationError(
            "EFT payments are confirmed by manual reconciliation, not callbacks",
            details={"gateway": self.name},
        )
