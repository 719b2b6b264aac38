"""
Transaction store: the single mutation path for Transaction status.

Every status change goes through update_status(), which re-reads the row
with select_for_update inside transaction.atomic(), applies the
django-fsm transition and publishes PaymentCompleted / PaymentFailed on
commit. Two concurrent deliveries for the same reference serialize on the
row lock; the second one sees the new status and does nothing.

Usage:
    from payments.services import TransactionStore

    store = TransactionStore()
    change = store.update_status(txn, TransactionStatus.COMPLETED)
    if change.changed:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from django_fsm import TransitionNotAllowed

from core.services import BaseService

from payments import events
from payments.exceptions import (
    InvalidStateTransitionError,
    PaymentValidationError,
    RefundAmountExceededError,
    StaleRecordError,
    TransactionNotFoundError,
    TransactionNotRefundableError,
)
from payments.models import STATUS_TRANSITIONS, Transaction
from payments.state_machines import REFUNDABLE_STATUSES, TransactionStatus, TransactionType

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from typing import Any

    from django.db.models import QuerySet


logger = logging.getLogger(__name__)


# Fields callers may set alongside a status change
UPDATABLE_FIELDS = frozenset(
    {
        "gateway_transaction_id",
        "payment_method",
        "fee_amount",
        "net_amount",
        "error_code",
        "error_message",
        "subscription_id",
        "next_billing_date",
        "last_payment_at",
        "retry_at",
        "attempts",
        "cycles_completed",
    }
)

# Filters accepted by filter(); anything else is ignored
FILTER_LOOKUPS = {
    "status": "status",
    "gateway": "gateway",
    "transaction_type": "transaction_type",
    "user": "user",
    "customer_email": "customer_email__iexact",
    "reference": "reference__icontains",
    "date_from": "created_at__gte",
    "date_to": "created_at__lte",
    "is_subscription": "is_subscription",
}


@dataclass(frozen=True)
class StatusChange:
    """
    Outcome of update_status.

    Attributes:
        transaction: The row as saved (or as found, when nothing changed)
        previous_status: Status before the call
        changed: False for same-status and unknown-status updates
    """

    transaction: Transaction
    previous_status: str
    changed: bool

    @property
    def status(self) -> str:
        return self.transaction.status


class TransactionStore(BaseService):
    """Persistence and state machine operations for Transaction."""

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_by_reference(self, reference: str) -> Transaction:
        try:
            return Transaction.objects.get(reference=reference)
        except Transaction.DoesNotExist:
            raise TransactionNotFoundError(
                f"Transaction '{reference}' not found",
                details={"reference": reference},
            ) from None

    def find_by_reference(self, reference: str | None) -> Transaction | None:
        if not reference:
            return None
        return Transaction.objects.filter(reference=reference).first()

    def find_by_gateway_transaction_id(
        self,
        gateway_transaction_id: str | None,
        gateway: str | None = None,
    ) -> Transaction | None:
        if not gateway_transaction_id:
            return None
        return (
            Transaction.objects.for_gateway(gateway)
            .filter(gateway_transaction_id=gateway_transaction_id)
            .order_by("created_at")
            .first()
        )

    def find_for_callback(
        self,
        reference: str | None,
        gateway_transaction_id: str | None,
        gateway: str | None = None,
        subscription_id: str | None = None,
    ) -> Transaction | None:
        """
        Locate the transaction a provider callback is about.

        Tries the merchant reference first, then the provider transaction
        id and finally the provider subscription id.
        """
        txn = self.find_by_reference(reference)
        if txn is None:
            txn = self.find_by_gateway_transaction_id(gateway_transaction_id, gateway)
        if txn is None and subscription_id:
            txn = (
                Transaction.objects.for_gateway(gateway)
                .subscriptions()
                .filter(subscription_id=subscription_id)
                .first()
            )
        return txn

    def filter(self, filters: Mapping[str, Any] | None = None) -> QuerySet[Transaction]:
        """Transactions matching history filters, newest first."""
        qs = Transaction.objects.select_related("parent_transaction")
        for key, value in (filters or {}).items():
            lookup = FILTER_LOOKUPS.get(key)
            if lookup is None or value in (None, ""):
                continue
            qs = qs.filter(**{lookup: value})
        return qs.order_by("-created_at")

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, **fields: Any) -> Transaction:
        """
        Persist a new transaction.

        Status defaults to PENDING; the FSM field is protected, so this is
        the only place a status is assigned directly.
        """
        fields.setdefault("status", TransactionStatus.PENDING)
        fields["currency"] = (fields.get("currency") or "ZAR").upper()
        if Decimal(str(fields.get("amount", 0))) <= 0:
            raise PaymentValidationError(
                "Transaction amount must be positive",
                errors={"amount": ["Must be greater than zero."]},
            )
        txn = Transaction.objects.create(**fields)
        self.get_logger().info(
            "Transaction created",
            extra={
                "reference": txn.reference,
                "gateway": txn.gateway,
                "status": txn.status,
                "transaction_type": txn.transaction_type,
            },
        )
        return txn

    # =========================================================================
    # State Machine
    # =========================================================================

    def update_status(
        self,
        txn: Transaction,
        new_status: str,
        extra_fields: Mapping[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> StatusChange:
        """
        Move a transaction to new_status.

        Args:
            txn: Transaction to update (re-read under a row lock)
            new_status: Target TransactionStatus
            extra_fields: Whitelisted model fields plus "metadata" (merged)
            expected_version: Raise StaleRecordError if the row moved on

        Returns:
            StatusChange; changed is False when the row already had
            new_status or new_status is unknown

        Raises:
            InvalidStateTransitionError: Transition not allowed from the
                current status
        """
        new_status = TransactionStatus(new_status)
        with transaction.atomic():
            locked = Transaction.objects.select_for_update().get(pk=txn.pk)
            previous_status = locked.status

            if expected_version is not None and locked.version != expected_version:
                raise StaleRecordError(
                    f"Transaction {locked.reference} was modified concurrently",
                    details={
                        "reference": locked.reference,
                        "expected_version": expected_version,
                        "current_version": locked.version,
                    },
                )

            if new_status == TransactionStatus.UNKNOWN or previous_status == new_status:
                return StatusChange(locked, previous_status, changed=False)

            self._apply_transition(locked, new_status, extra_fields)
            if (
                new_status == TransactionStatus.FAILED
                and not locked.is_subscription
                and previous_status in (TransactionStatus.PENDING, TransactionStatus.PROCESSING)
            ):
                locked.attempts += 1
            locked.save()

            event = events.event_for_transition(locked, previous_status)
            if event is not None:
                transaction.on_commit(lambda: events.publish(event))

        self.get_logger().info(
            "Transaction status changed",
            extra={
                "reference": locked.reference,
                "from_status": previous_status,
                "to_status": locked.status,
                "attempts": locked.attempts,
            },
        )
        return StatusChange(locked, previous_status, changed=True)

    def _apply_transition(
        self,
        locked: Transaction,
        new_status: str,
        extra_fields: Mapping[str, Any] | None,
    ) -> None:
        extra = dict(extra_fields or {})
        metadata = extra.pop("metadata", None)
        reason = extra.get("error_message") if new_status == TransactionStatus.FAILED else None

        method = getattr(locked, STATUS_TRANSITIONS[new_status])
        try:
            if reason:
                method(reason)
            else:
                method()
        except TransitionNotAllowed as e:
            raise InvalidStateTransitionError(
                f"Cannot move transaction {locked.reference} from {locked.status} to {new_status}",
                details={
                    "reference": locked.reference,
                    "current_status": locked.status,
                    "target_status": str(new_status),
                },
            ) from e

        self._assign(locked, extra)
        if metadata:
            locked.merge_meta(metadata, save=False)

    @staticmethod
    def _assign(locked: Transaction, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise PaymentValidationError(
                "Fields cannot be updated through the store",
                errors={name: ["Not an updatable field."] for name in sorted(unknown)},
            )
        for name, value in fields.items():
            setattr(locked, name, value)

    def update(
        self,
        txn: Transaction,
        fields: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Transaction:
        """Update bookkeeping fields without touching status."""
        with transaction.atomic():
            locked = Transaction.objects.select_for_update().get(pk=txn.pk)
            self._assign(locked, fields or {})
            if metadata:
                locked.merge_meta(metadata, save=False)
            locked.save()
        return locked

    def merge_metadata(self, txn: Transaction, values: Mapping[str, Any]) -> Transaction:
        return self.update(txn, metadata=values)

    # =========================================================================
    # Retry Bookkeeping
    # =========================================================================

    def can_retry(self, txn: Transaction, now: datetime | None = None) -> bool:
        return txn.can_retry(now)

    def refundable_amount(self, txn: Transaction) -> Decimal:
        return txn.refundable_amount

    def schedule_retry(self, txn: Transaction, retry_at: datetime | None = None) -> Transaction:
        """Make a transaction eligible for its next attempt at retry_at (default now)."""
        return self.update(txn, {"retry_at": retry_at or timezone.now()})

    def record_failed_attempt(
        self,
        txn: Transaction,
        retry_at: datetime | None,
        error_message: str = "",
        error_code: str = "",
    ) -> Transaction:
        """Count one failed attempt and set when the next one may run."""
        with transaction.atomic():
            locked = Transaction.objects.select_for_update().get(pk=txn.pk)
            locked.attempts += 1
            locked.retry_at = retry_at
            locked.error_message = error_message or locked.error_message
            locked.error_code = error_code or locked.error_code
            locked.save()
        return locked

    # =========================================================================
    # Refunds
    # =========================================================================

    def check_refundable(self, txn: Transaction, amount: Decimal | None = None) -> Decimal:
        """
        Amount that would be refunded for a request.

        Raises:
            TransactionNotRefundableError: Status does not allow refunds
            RefundAmountExceededError: amount is above the refundable balance
        """
        if txn.transaction_type == TransactionType.REFUND or txn.status not in REFUNDABLE_STATUSES:
            raise TransactionNotRefundableError(
                f"Transaction {txn.reference} cannot be refunded in status {txn.status}",
                details={"reference": txn.reference, "status": txn.status},
            )

        refundable = txn.refundable_amount
        requested = refundable if amount is None else Decimal(str(amount))
        if requested <= 0:
            raise PaymentValidationError(
                "Refund amount must be greater than zero",
                errors={"amount": ["Must be greater than zero."]},
            )
        if requested > refundable:
            raise RefundAmountExceededError(
                f"Refund amount {requested} exceeds refundable amount {refundable}",
                details={
                    "reference": txn.reference,
                    "requested": str(requested),
                    "refundable": str(refundable),
                },
            )
        return requested

    def apply_refund(
        self,
        txn: Transaction,
        amount: Decimal,
        metadata: Mapping[str, Any] | None = None,
    ) -> StatusChange:
        """
        Add amount to refund_amount and move to REFUNDED or PARTIALLY_REFUNDED.

        Re-checks the refundable balance under the row lock.
        """
        with transaction.atomic():
            locked = Transaction.objects.select_for_update().get(pk=txn.pk)
            previous_status = locked.status
            amount = self.check_refundable(locked, amount)

            locked.refund_amount = (locked.refund_amount or Decimal("0")) + amount
            target = (
                TransactionStatus.REFUNDED
                if locked.refund_amount >= locked.amount
                else TransactionStatus.PARTIALLY_REFUNDED
            )
            if locked.status != target:
                self._apply_transition(locked, target, {"metadata": metadata})
            elif metadata:
                locked.merge_meta(metadata, save=False)
            locked.save()

        self.get_logger().info(
            "Refund applied",
            extra={
                "reference": locked.reference,
                "amount": str(amount),
                "refund_amount": str(locked.refund_amount),
                "status": locked.status,
            },
        )
        return StatusChange(locked, previous_status, changed=previous_status != locked.status)
