"""
Domain events published after a transaction status transition.

Events are published by TransactionStore.update_status through
transaction.on_commit(), once per genuine transition. Duplicate webhook
deliveries and same-status updates publish nothing.

Consumers connect to the Django signals below:

    from django.dispatch import receiver
    from payments.events import payment_completed

    @receiver(payment_completed)
    def on_payment_completed(sender, event, **kwargs):
        ...

The default receiver (payments.signals) queues deliver_payment_event.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from django.dispatch import Signal
from django.utils import timezone

from payments.state_machines import TransactionStatus, TransactionType

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal
    from typing import Any

    from payments.models import Transaction

logger = logging.getLogger(__name__)


payment_completed = Signal()
payment_failed = Signal()


@dataclass(frozen=True)
class PaymentEvent:
    """Snapshot of a transaction at the moment its status changed."""

    reference: str
    transaction_id: str
    gateway: str
    amount: Decimal
    currency: str
    status: str
    previous_status: str
    occurred_at: datetime
    transaction_type: str = ""
    error_message: str = ""

    event_name = "payment.event"

    @classmethod
    def from_transaction(cls, txn: Transaction, previous_status: str) -> PaymentEvent:
        return cls(
            reference=txn.reference,
            transaction_id=str(txn.id),
            gateway=txn.gateway,
            amount=txn.amount,
            currency=txn.currency,
            status=str(txn.status),
            previous_status=str(previous_status),
            occurred_at=timezone.now(),
            transaction_type=str(txn.transaction_type),
            error_message=txn.error_message or "",
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event"] = self.event_name
        data["amount"] = str(self.amount)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


@dataclass(frozen=True)
class PaymentCompleted(PaymentEvent):
    event_name = "payment.completed"


@dataclass(frozen=True)
class PaymentFailed(PaymentEvent):
    event_name = "payment.failed"


def event_for_transition(txn: Transaction, previous_status: str) -> PaymentEvent | None:
    """
    Event a transition should publish, if any.

    completed: any transition into COMPLETED, plus a subscription parent
        activated by its first confirmed payment (PENDING -> ACTIVE)
    failed: any transition into FAILED

    Refund records publish nothing; the parent payment keeps its own status.
    """
    if txn.transaction_type == TransactionType.REFUND:
        return None
    if txn.status == TransactionStatus.COMPLETED:
        return PaymentCompleted.from_transaction(txn, previous_status)
    if txn.status == TransactionStatus.ACTIVE and previous_status == TransactionStatus.PENDING:
        return PaymentCompleted.from_transaction(txn, previous_status)
    if txn.status == TransactionStatus.FAILED:
        return PaymentFailed.from_transaction(txn, previous_status)
    return None


def publish(event: PaymentEvent) -> None:
    """Send the matching Django signal for an event."""
    signal = payment_completed if isinstance(event, PaymentCompleted) else payment_failed
    logger.info(
        "Publishing payment event",
        extra={
            "event": event.event_name,
            "reference": event.reference,
            "status": event.status,
            "previous_status": event.previous_status,
        },
    )
    signal.send(sender=event.__class__, event=event)
