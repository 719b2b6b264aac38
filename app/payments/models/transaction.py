"""
Transaction model: one record per money movement through a gateway.

A Transaction tracks a payment from initiation until the provider's
outcome has been reconciled, whether that outcome arrives by webhook,
by polling or by manual verification. Subscriptions are parent
transactions; each billing cycle and each refund is a child record
linked through parent_transaction.

Usage:
    from payments.models import Transaction
    from payments.state_machines import TransactionStatus

    txn = Transaction.objects.create(
        reference="PF-1700000000-ABC123",
        gateway="payfast",
        amount=Decimal("100.00"),
        currency="ZAR",
        status=TransactionStatus.PENDING,
    )

    # Status changes go through TransactionStore.update_status, which
    # locks the row and calls the django-fsm transition methods below.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import (
    REFUNDABLE_STATUSES,
    RETRYABLE_STATUSES,
    TERMINAL_STATUSES,
    GatewayCode,
    RecurringFrequency,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any


CURRENCY_SYMBOLS = {
    "ZAR": "R",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}


def has_attempts_left(instance: Transaction) -> bool:
    """Transition condition: a FAILED record may only move while attempts remain."""
    if instance.status != TransactionStatus.FAILED:
        return True
    return instance.attempts < instance.max_attempts


class TransactionQuerySet(models.QuerySet):
    """Query helpers used by the orchestrator and recurring processor."""

    def for_gateway(self, gateway: str | None) -> TransactionQuerySet:
        if not gateway:
            return self
        return self.filter(gateway=gateway)

    def subscriptions(self) -> TransactionQuerySet:
        return self.filter(is_subscription=True)

    def visible_to(self, user) -> TransactionQuerySet:
        """Everything for staff; otherwise records owned by user or sent to their email."""
        if user.is_staff:
            return self
        own = Q(user=user)
        if user.email:
            own |= Q(customer_email__iexact=user.email)
        return self.filter(own)

    def due_for_billing(self, now: datetime, force: bool = False) -> TransactionQuerySet:
        """
        Subscriptions whose next charge is due.

        Args:
            now: Reference time
            force: Ignore next_billing_date and retry_at
        """
        qs = self.subscriptions().filter(
            status__in=[TransactionStatus.ACTIVE, TransactionStatus.PENDING_RENEWAL],
        )
        if force:
            return qs
        return qs.filter(
            Q(next_billing_date__lte=now) | Q(next_billing_date__isnull=True),
            Q(retry_at__isnull=True) | Q(retry_at__lte=now),
        )

    def failed_retryable(self, now: datetime) -> TransactionQuerySet:
        """Failed subscriptions with attempts remaining and a retry time reached."""
        return self.subscriptions().filter(
            status=TransactionStatus.FAILED,
            attempts__lt=F("max_attempts"),
            retry_at__lte=now,
        )


class Transaction(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Canonical record of a payment, subscription, subscription charge or refund.

    Uses django-fsm for the status machine and a version column for
    optimistic locking.

    State Flow (one-off payment):
        CREATED -> PENDING -> PROCESSING -> COMPLETED
        PENDING/PROCESSING -> FAILED -> PENDING/PROCESSING/COMPLETED (while attempts remain)
        PENDING/PROCESSING -> CANCELLED / EXPIRED

    State Flow (subscription parent):
        PENDING -> ACTIVE <-> PENDING_RENEWAL
        ACTIVE/PENDING_RENEWAL -> FAILED / CANCELLED
        ACTIVE -> COMPLETED (all cycles billed)

    Refund Flow:
        COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED / REFUNDED

    Note:
        Records are never deleted. A refund is recorded as a new child
        Transaction of type REFUND, with the parent's refund_amount updated.
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    reference = models.CharField(
        max_length=64,
        unique=True,
        editable=False,
        help_text="Merchant reference, e.g. PF-1700000000-ABC123 (immutable)",
    )

    gateway_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Provider-side transaction/charge identifier",
    )

    gateway = models.CharField(
        max_length=20,
        choices=GatewayCode.choices,
        db_index=True,
        help_text="Gateway that processes this transaction",
    )

    transaction_type = models.CharField(
        max_length=30,
        choices=TransactionType.choices,
        default=TransactionType.PAYMENT,
        help_text="Payment, subscription charge or refund",
    )

    payment_method = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Provider payment method (card, eft, instant_eft, ...)",
    )

    # ==========================================================================
    # Relationships
    # ==========================================================================

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment_transactions",
        help_text="User who initiated the payment (optional)",
    )

    parent_transaction = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="child_transactions",
        help_text="Subscription parent for charges, original payment for refunds",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Transaction amount in major currency units",
    )

    currency = models.CharField(
        max_length=5,
        default="ZAR",
        help_text="ISO 4217 currency code (uppercase)",
    )

    fee_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Provider fee, once settled",
    )

    net_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Amount after fees, once settled",
    )

    refund_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Cumulative amount refunded so far",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=TransactionStatus.CREATED,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status (managed by FSM)",
    )

    error_code = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Last provider or processing error code",
    )

    error_message = models.TextField(
        blank=True,
        default="",
        help_text="Last provider or processing error message",
    )

    # ==========================================================================
    # Customer Snapshot
    # ==========================================================================

    description = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Item or service description shown to the customer",
    )

    customer_email = models.EmailField(
        blank=True,
        default="",
        help_text="Customer email at time of payment",
    )

    customer_name = models.CharField(
        max_length=200,
        blank=True,
        default="",
        help_text="Customer name at time of payment",
    )

    customer_phone = models.CharField(
        max_length=30,
        blank=True,
        default="",
        help_text="Customer phone at time of payment",
    )

    # ==========================================================================
    # Retry Bookkeeping
    # ==========================================================================

    attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Failed processing attempts so far",
    )

    max_attempts = models.PositiveSmallIntegerField(
        default=3,
        help_text="Attempts allowed before the record becomes terminal",
    )

    retry_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Earliest time the next attempt may run",
    )

    # ==========================================================================
    # Subscription
    # ==========================================================================

    is_subscription = models.BooleanField(
        default=False,
        db_index=True,
        help_text="True for subscription parent records",
    )

    subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Provider-side subscription identifier",
    )

    recurring_frequency = models.CharField(
        max_length=20,
        choices=RecurringFrequency.choices,
        blank=True,
        default="",
        help_text="Billing interval for subscriptions",
    )

    recurring_cycles = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Total cycles to bill (empty means until cancelled)",
    )

    cycles_completed = models.PositiveIntegerField(
        default=0,
        help_text="Billing cycles charged successfully",
    )

    next_billing_date = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the next subscription charge is due",
    )

    last_payment_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the last subscription charge succeeded",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the provider started processing",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment completed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment last failed",
    )

    cancelled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment was cancelled",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the first refund was recorded",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    objects = TransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(fields=["gateway", "status"], name="payments_tr_gateway_4c1f0e_idx"),
            models.Index(
                fields=["gateway", "gateway_transaction_id"],
                name="payments_tr_gateway_9b7d2a_idx",
            ),
            models.Index(
                fields=["is_subscription", "status", "next_billing_date"],
                name="payments_tr_is_subs_3e8a51_idx",
            ),
            models.Index(fields=["user", "created_at"], name="payments_tr_user_id_7f2c64_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                check=Q(amount__gt=0),
                name="transaction_amount_positive",
            ),
            models.CheckConstraint(
                check=Q(refund_amount__gte=0) & Q(refund_amount__lte=F("amount")),
                name="transaction_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"Transaction({self.reference}, {self.status}, {self.amount} {self.currency})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = self.pk and not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_successful(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    @property
    def is_pending(self) -> bool:
        return self.status in (TransactionStatus.PENDING, TransactionStatus.PROCESSING)

    @property
    def is_failed(self) -> bool:
        return self.status == TransactionStatus.FAILED

    @property
    def is_refunded(self) -> bool:
        return self.status in (TransactionStatus.REFUNDED, TransactionStatus.PARTIALLY_REFUNDED)

    @property
    def is_refundable(self) -> bool:
        return self.status in REFUNDABLE_STATUSES and self.refundable_amount > 0

    @property
    def is_terminal(self) -> bool:
        if self.status == TransactionStatus.FAILED:
            return self.attempts >= self.max_attempts
        return self.status in TERMINAL_STATUSES

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - (self.refund_amount or Decimal("0"))

    @property
    def formatted_amount(self) -> str:
        symbol = CURRENCY_SYMBOLS.get(self.currency, f"{self.currency} ")
        return f"{symbol}{self.amount:,.2f}"

    def can_retry(self, now: datetime | None = None) -> bool:
        """
        Whether another processing attempt is allowed.

        Requires a retryable status, remaining attempts and a retry time
        that is unset or already reached.
        """
        now = now or timezone.now()
        return (
            self.status in RETRYABLE_STATUSES
            and self.attempts < self.max_attempts
            and (self.retry_at is None or self.retry_at <= now)
        )

    def get_summary(self) -> dict[str, Any]:
        """Compact dict used in logs and event payloads."""
        return {
            "id": str(self.id),
            "reference": self.reference,
            "gateway": self.gateway,
            "type": self.transaction_type,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "formatted_amount": self.formatted_amount,
            "refund_amount": str(self.refund_amount),
            "attempts": self.attempts,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[TransactionStatus.CREATED, TransactionStatus.FAILED],
        target=TransactionStatus.PENDING,
        conditions=[has_attempts_left],
    )
    def mark_pending(self):
        """CREATED/FAILED -> PENDING (awaiting customer or provider)."""

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.FAILED],
        target=TransactionStatus.PROCESSING,
        conditions=[has_attempts_left],
    )
    def mark_processing(self):
        """PENDING/FAILED -> PROCESSING."""
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=[
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            TransactionStatus.ACTIVE,
            TransactionStatus.FAILED,
        ],
        target=TransactionStatus.COMPLETED,
        conditions=[has_attempts_left],
    )
    def complete(self):
        """
        Mark payment as completed.

        Also ends a subscription once all its billing cycles are charged.
        """
        now = timezone.now()
        self.completed_at = now
        if self.processed_at is None:
            self.processed_at = now
        self.error_code = ""
        self.error_message = ""

    @transition(
        field=status,
        source=[
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            TransactionStatus.ACTIVE,
            TransactionStatus.PENDING_RENEWAL,
        ],
        target=TransactionStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """Mark payment as failed."""
        self.failed_at = timezone.now()
        if reason:
            self.error_message = reason

    @transition(
        field=status,
        source=[
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            TransactionStatus.ACTIVE,
            TransactionStatus.PENDING_RENEWAL,
        ],
        target=TransactionStatus.CANCELLED,
    )
    def cancel(self):
        self.cancelled_at = timezone.now()

    @transition(
        field=status,
        source=[
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            TransactionStatus.ACTIVE,
        ],
        target=TransactionStatus.EXPIRED,
    )
    def expire(self):
        """Provider reported the payment window closed."""

    @transition(
        field=status,
        source=list(REFUNDABLE_STATUSES),
        target=TransactionStatus.REFUNDED,
    )
    def refund_full(self):
        """Refunded amount has reached the transaction amount."""
        self.refunded_at = self.refunded_at or timezone.now()

    @transition(
        field=status,
        source=list(REFUNDABLE_STATUSES),
        target=TransactionStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self):
        if self.refunded_at is None:
            self.refunded_at = timezone.now()

    @transition(
        field=status,
        source=[
            TransactionStatus.PENDING,
            TransactionStatus.PENDING_RENEWAL,
            TransactionStatus.FAILED,
        ],
        target=TransactionStatus.ACTIVE,
        conditions=[has_attempts_left],
    )
    def activate(self):
        """Subscription is billing normally."""

    @transition(
        field=status,
        source=[TransactionStatus.ACTIVE, TransactionStatus.FAILED],
        target=TransactionStatus.PENDING_RENEWAL,
        conditions=[has_attempts_left],
    )
    def await_renewal(self):
        """Subscription charge failed but attempts remain."""


STATUS_TRANSITIONS = {
    TransactionStatus.PENDING: "mark_pending",
    TransactionStatus.PROCESSING: "mark_processing",
    TransactionStatus.COMPLETED: "complete",
    TransactionStatus.FAILED: "fail",
    TransactionStatus.CANCELLED: "cancel",
    TransactionStatus.EXPIRED: "expire",
    TransactionStatus.REFUNDED: "refund_full",
    TransactionStatus.PARTIALLY_REFUNDED: "refund_partial",
    TransactionStatus.ACTIVE: "activate",
    TransactionStatus.PENDING_RENEWAL: "await_renewal",
}
