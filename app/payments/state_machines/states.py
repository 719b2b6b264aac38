"""
State and choice enums for payment models.

These are Django TextChoices for database storage and admin integration.

Transaction States:
    created → pending → processing → completed (one-off payment)
    pending/processing → failed → pending/processing/completed (retry)
    pending/processing → cancelled / expired
    completed → refunded / partially_refunded
    partially_refunded → partially_refunded / refunded

Subscription (parent) States:
    pending → active → pending_renewal → active (each billing cycle)
    active/pending_renewal → failed (attempts exhausted)
    active/pending_renewal → cancelled
    active → completed (all cycles billed)

The "unknown" value is never persisted as a transition target; it is what
adapters report when a provider status cannot be mapped.
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    Canonical statuses for the Transaction lifecycle.

    Terminal states: COMPLETED (except for refunds), REFUNDED, CANCELLED,
    EXPIRED, and FAILED once attempts are exhausted.
    """

    CREATED = "created", "Created"
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    UNKNOWN = "unknown", "Unknown"
    ACTIVE = "active", "Active"
    PENDING_RENEWAL = "pending_renewal", "Pending Renewal"


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.REFUNDED,
        TransactionStatus.CANCELLED,
        TransactionStatus.EXPIRED,
    }
)

REFUNDABLE_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.PARTIALLY_REFUNDED,
    }
)

RETRYABLE_STATUSES = frozenset(
    {
        TransactionStatus.FAILED,
        TransactionStatus.PENDING_RENEWAL,
    }
)


class TransactionType(models.TextChoices):
    """Kind of money movement a Transaction records."""

    PAYMENT = "payment", "Payment"
    SUBSCRIPTION_CHARGE = "subscription_charge", "Subscription Charge"
    REFUND = "refund", "Refund"


class GatewayCode(models.TextChoices):
    """Registered payment providers."""

    PAYFAST = "payfast", "PayFast"
    PAYSTACK = "paystack", "PayStack"
    PAYPAL = "paypal", "PayPal"
    STRIPE = "stripe", "Stripe"
    OZOW = "ozow", "Ozow"
    ZAPPER = "zapper", "Zapper"
    CRYPTO = "crypto", "Cryptocurrency"
    EFT = "eft", "EFT/Bank Transfer"
    VODAPAY = "vodapay", "VodaPay"
    SNAPSCAN = "snapscan", "SnapScan"


class RecurringFrequency(models.TextChoices):
    """Billing interval for subscriptions."""

    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"
    MONTHLY = "monthly", "Monthly"
    QUARTERLY = "quarterly", "Quarterly"
    YEARLY = "yearly", "Yearly"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "GatewayCode",
    "RecurringFrequency",
    "REFUNDABLE_STATUSES",
    "RETRYABLE_STATUSES",
    "TERMINAL_STATUSES",
    "TransactionStatus",
    "TransactionType",
    "WebhookEventStatus",
]
