"""
Typed requests and results exchanged with gateway adapters.

Adapters take a PaymentRequest or CallbackPayload and return one of the
result dataclasses below, always speaking the canonical TransactionStatus
vocabulary. Provider payloads are kept in `raw` for diagnostics.

A refund that a provider cannot execute automatically is a normal
outcome, not an error: RefundResult.outcome is MANUAL_REFUND_REQUIRED
and manual_action describes what an operator has to do.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from typing import Any


SUCCESS_STATUSES = frozenset({"completed", "success", "paid", "approved"})
PENDING_STATUSES = frozenset({"pending", "processing", "waiting"})
FAILURE_STATUSES = frozenset({"failed", "error", "declined", "cancelled"})

# Currencies whose minor unit is not 1/100
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "XAF", "XOF", "UGX", "RWF"})


def to_minor_units(amount: Decimal, currency: str = "ZAR") -> int:
    """Decimal major units to integer minor units (cents, kobo)."""
    exponent = 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2
    quantized = Decimal(amount).quantize(Decimal(1).scaleb(-exponent), rounding=ROUND_HALF_UP)
    return int(quantized.scaleb(exponent))


def from_minor_units(value: int, currency: str = "ZAR") -> Decimal:
    exponent = 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2
    return (Decimal(int(value)).scaleb(-exponent)).quantize(Decimal(1).scaleb(-exponent))


def as_decimal(value: Any) -> Decimal | None:
    """Parse provider amount fields ("100.00", 100, None) into Decimal."""
    if value in (None, ""):
        return None
    return Decimal(str(value))


class StatusMixin:
    """is_successful / is_pending / is_failed over the canonical status."""

    status: str

    @property
    def is_successful(self) -> bool:
        return str(self.status) in SUCCESS_STATUSES

    @property
    def is_pending(self) -> bool:
        return str(self.status) in PENDING_STATUSES

    @property
    def is_failed(self) -> bool:
        return str(self.status) in FAILURE_STATUSES


# =============================================================================
# Requests
# =============================================================================


@dataclass(frozen=True)
class CustomerDetails:
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> CustomerDetails:
        data = data or {}
        first_name = data.get("first_name", "")
        last_name = data.get("last_name", "")
        if not (first_name or last_name) and data.get("name"):
            first_name, _, last_name = str(data["name"]).partition(" ")
        return cls(
            email=data.get("email", "") or "",
            first_name=first_name or "",
            last_name=last_name or "",
            phone=data.get("phone", "") or "",
        )


@dataclass(frozen=True)
class SubscriptionTerms:
    """Recurring billing terms attached to a PaymentRequest."""

    frequency: str = "monthly"
    cycles: int | None = None
    billing_date: datetime | None = None
    plan_code: str | None = None


@dataclass(frozen=True)
class PaymentRequest:
    """
    Payment to initialize.

    Only amount is structurally required; each adapter declares the rest
    through get_required_fields() using dotted paths ("customer.email").
    """

    amount: Decimal
    description: str = ""
    currency: str | None = None
    reference: str | None = None
    customer: CustomerDetails = field(default_factory=CustomerDetails)
    payment_method: str | None = None
    return_url: str | None = None
    cancel_url: str | None = None
    notify_url: str | None = None
    subscription: SubscriptionTerms | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if self.currency:
            object.__setattr__(self, "currency", self.currency.upper())

    def resolve(self, path: str) -> Any:
        """Value at a dotted path, or None when any segment is missing."""
        value: Any = self
        for part in path.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = getattr(value, part, None)
            if value is None:
                return None
        return value

    def replace(self, **changes: Any) -> PaymentRequest:
        return dataclasses.replace(self, **changes)

    @property
    def is_subscription(self) -> bool:
        return self.subscription is not None


@dataclass(frozen=True)
class CallbackPayload:
    """
    Inbound provider notification.

    Attributes:
        data: Parsed body (JSON object or form fields)
        raw_body: Exact bytes received, required for HMAC checks
        headers: Request headers (looked up case-insensitively)
    """

    data: Mapping[str, Any] = field(default_factory=dict)
    raw_body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str, default: str | None = None) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


# =============================================================================
# Results
# =============================================================================


@dataclass
class InitResult(StatusMixin):
    """
    Outcome of initialize_payment.

    payment_url / payment_data / method tell the caller how to send the
    customer to the provider (a redirect or an auto-posting form).
    """

    gateway: str
    reference: str
    amount: Decimal
    currency: str
    status: str = TransactionStatus.PENDING
    gateway_transaction_id: str | None = None
    payment_url: str | None = None
    payment_data: dict[str, Any] = field(default_factory=dict)
    method: str = "GET"
    redirect_required: bool = True
    instructions: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "gateway": self.gateway,
            "reference": self.reference,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": str(self.status),
            "gateway_transaction_id": self.gateway_transaction_id,
            "payment_url": self.payment_url,
            "payment_data": self.payment_data,
            "method": self.method,
            "redirect_required": self.redirect_required,
            "instructions": self.instructions,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class VerifyResult(StatusMixin):
    """
    Outcome of verify_payment.

    awaiting_webhook: provider has no query API, the outcome arrives by callback
    manual_verification: an operator has to confirm the payment (EFT)
    """

    gateway: str
    status: str
    gateway_transaction_id: str | None = None
    reference: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    fee_amount: Decimal | None = None
    net_amount: Decimal | None = None
    awaiting_webhook: bool = False
    manual_verification: bool = False
    message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class CallbackResult(StatusMixin):
    """Provider callback mapped to canonical fields."""

    gateway: str
    status: str
    reference: str | None = None
    gateway_transaction_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    fee_amount: Decimal | None = None
    net_amount: Decimal | None = None
    event_type: str = ""
    subscription_id: str | None = None
    payment_method: str | None = None
    message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


class RefundOutcome(str, enum.Enum):
    EXECUTED = "executed"
    MANUAL_REFUND_REQUIRED = "manual_refund_required"


@dataclass(frozen=True)
class ManualActionRequired:
    """What an operator must do to finish an operation by hand."""

    action: str
    reason: str
    instructions: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"action": self.action, "reason": self.reason, "instructions": self.instructions}


@dataclass
class RefundResult:
    gateway: str
    outcome: RefundOutcome
    gateway_transaction_id: str
    amount: Decimal | None = None
    refund_id: str | None = None
    status: str = TransactionStatus.COMPLETED
    manual_action: ManualActionRequired | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def requires_manual_action(self) -> bool:
        return self.outcome == RefundOutcome.MANUAL_REFUND_REQUIRED

    @classmethod
    def manual(
        cls,
        gateway: str,
        gateway_transaction_id: str,
        amount: Decimal | None,
        reason: str,
        instructions: str = "",
    ) -> RefundResult:
        return cls(
            gateway=gateway,
            outcome=RefundOutcome.MANUAL_REFUND_REQUIRED,
            gateway_transaction_id=gateway_transaction_id,
            amount=amount,
            status=TransactionStatus.PENDING,
            manual_action=ManualActionRequired(
                action="manual_refund",
                reason=reason,
                instructions=instructions,
            ),
        )


@dataclass
class SubscriptionResult:
    gateway: str
    subscription_id: str
    status: str
    plan: str | None = None
    next_billing_date: datetime | None = None
    authorization_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
