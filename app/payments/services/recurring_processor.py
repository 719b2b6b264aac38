"""
Recurring billing batch.

Charges subscription parents whose next billing date has arrived by
initializing a SUBSCRIPTION_CHARGE child through the orchestrator, then
advances or backs off the parent. Runs sequentially; one subscription's
failure never stops the batch.

Usage:
    report = RecurringProcessor(dry_run=True, gateway="paystack").run()
    report.successful, report.failed, report.skipped

The Celery task payments.tasks.process_recurring_payments runs this
hourly under recurring_batch_lock().
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from core.services import BaseService

from payments.gateways.types import CustomerDetails, PaymentRequest
from payments.models import Transaction
from payments.services.billing import add_billing_period, retry_delay
from payments.services.payment_orchestrator import PaymentOrchestrator
from payments.state_machines import TransactionStatus, TransactionType

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from django.db.models import QuerySet


logger = logging.getLogger(__name__)

# Gateways whose subscriptions are billed by hand
MANUAL_GATEWAYS = frozenset({"eft"})


@dataclass
class RecurringChargeResult:
    """What happened to one subscription in a run."""

    subscription_id: str
    reference: str
    gateway: str
    amount: str
    currency: str
    status: str = "pending"
    message: str = ""
    error: str | None = None
    error_code: str | None = None
    transaction_reference: str | None = None
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class RecurringRunReport:
    dry_run: bool = False
    details: list[RecurringChargeResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.details)

    def _count(self, status: str) -> int:
        return sum(1 for result in self.details if result.status == status)

    @property
    def successful(self) -> int:
        return self._count("success")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": [result.to_dict() for result in self.details],
        }


class RecurringProcessor(BaseService):
    """
    Bill due subscriptions.

    Args:
        orchestrator: Used to initialize each charge
        dry_run: Report what would be charged without calling gateways or writing
        force: Ignore next_billing_date and retry_at
        gateway: Only bill subscriptions on this gateway
        limit: Maximum subscriptions per run
        retry_failed: Also pick up FAILED subscriptions with attempts left
            whose retry_at has passed
    """

    def __init__(
        self,
        orchestrator: PaymentOrchestrator | None = None,
        *,
        dry_run: bool = False,
        force: bool = False,
        gateway: str | None = None,
        limit: int | None = None,
        retry_failed: bool = False,
    ) -> None:
        self.orchestrator = orchestrator or PaymentOrchestrator()
        self.dry_run = dry_run
        self.force = force
        self.gateway = gateway
        self.limit = limit or getattr(settings, "PAYMENT_RECURRING_BATCH_LIMIT", 100)
        self.retry_failed = retry_failed

    @property
    def store(self):
        return self.orchestrator.store

    def due_subscriptions(self, now: datetime | None = None) -> QuerySet[Transaction]:
        now = now or timezone.now()
        due = Transaction.objects.due_for_billing(now, force=self.force).for_gateway(self.gateway)
        if self.retry_failed:
            retryable = Transaction.objects.failed_retryable(now).for_gateway(self.gateway)
            due = due | retryable
        return due.order_by(F("next_billing_date").asc(nulls_first=True), "created_at")[: self.limit]

    def run(self) -> RecurringRunReport:
        log = self.get_logger()
        report = RecurringRunReport(dry_run=self.dry_run)
        subscriptions = list(self.due_subscriptions())
        log.info(
            "Recurring billing run started",
            extra={
                "count": len(subscriptions),
                "dry_run": self.dry_run,
                "force": self.force,
                "gateway": self.gateway,
                "retry_failed": self.retry_failed,
            },
        )

        for subscription in subscriptions:
            report.details.append(self.process(subscription))

        log.info(
            "Recurring billing run finished",
            extra={
                "total": report.total,
                "successful": report.successful,
                "failed": report.failed,
                "skipped": report.skipped,
                "dry_run": self.dry_run,
            },
        )
        return report

    def process(self, subscription: Transaction) -> RecurringChargeResult:
        """Bill one subscription; exceptions are reported, not raised."""
        result = RecurringChargeResult(
            subscription_id=str(subscription.id),
            reference=subscription.reference,
            gateway=subscription.gateway,
            amount=str(subscription.amount),
            currency=subscription.currency,
            dry_run=self.dry_run,
        )

        if subscription.status in (TransactionStatus.CANCELLED, TransactionStatus.EXPIRED):
            result.status = "skipped"
            result.message = f"Subscription is {subscription.status}"
            return result
        if subscription.gateway in MANUAL_GATEWAYS:
            result.status = "skipped"
            result.message = "EFT subscriptions require manual processing"
            return result

        if self.dry_run:
            result.status = "success"
            result.message = "Dry run - payment would be processed"
            result.transaction_reference = f"DRY-RUN-{uuid.uuid4().hex[:13]}"
            return result

        try:
            outcome = self.orchestrator.initialize(
                subscription.gateway,
                self.charge_request(subscription),
                user=subscription.user,
                parent=subscription,
                transaction_type=TransactionType.SUBSCRIPTION_CHARGE,
            )
            if outcome.success and not outcome.data.init_result.is_failed:
                self.record_success(subscription)
                result.status = "success"
                result.message = "Payment processed successfully"
                result.transaction_reference = outcome.data.transaction.reference
            else:
                message = outcome.error or "Payment processing failed"
                self.record_failure(subscription, message, outcome.error_code or "")
                result.status = "failed"
                result.message = message
                result.error = message
                result.error_code = outcome.error_code
        except Exception as e:
            logger.exception(
                "Exception processing recurring payment",
                extra={"subscription": subscription.reference, "gateway": subscription.gateway},
            )
            result.status = "failed"
            result.message = "Exception during processing"
            result.error = str(e)
        return result

    def charge_request(self, subscription: Transaction) -> PaymentRequest:
        first_name, _, last_name = subscription.customer_name.partition(" ")
        return PaymentRequest(
            amount=subscription.amount,
            currency=subscription.currency,
            description=f"Recurring: {subscription.description}".strip(),
            customer=CustomerDetails(
                email=subscription.customer_email,
                first_name=first_name,
                last_name=last_name,
                phone=subscription.customer_phone,
            ),
            metadata={
                **(subscription.metadata or {}),
                "subscription_reference": subscription.reference,
                "recurring_payment": True,
                "billing_cycle": subscription.recurring_frequency,
            },
        )

    def record_success(self, subscription: Transaction) -> Transaction:
        """
        Advance the subscription one billing period.

        Completes it once every configured cycle has been charged.
        """
        now = timezone.now()
        cycles_completed = subscription.cycles_completed + 1
        finished = bool(subscription.recurring_cycles) and cycles_completed >= subscription.recurring_cycles
        fields = {
            "next_billing_date": None
            if finished
            else add_billing_period(subscription.next_billing_date or now, subscription.recurring_frequency),
            "attempts": 0,
            "retry_at": None,
            "cycles_completed": cycles_completed,
            "last_payment_at": now,
        }

        with self.atomic():
            subscription = self.store.update(subscription, fields)
            if subscription.status != TransactionStatus.ACTIVE:
                subscription = self.store.update_status(subscription, TransactionStatus.ACTIVE).transaction
            if finished:
                subscription = self.store.update_status(subscription, TransactionStatus.COMPLETED).transaction
        return subscription

    def record_failure(self, subscription: Transaction, message: str, error_code: str = "") -> Transaction:
        """
        Count a failed charge and back off.

        The subscription waits in PENDING_RENEWAL until retry_at, or turns
        FAILED with no next billing date once attempts are exhausted.
        """
        now = timezone.now()
        attempts = subscription.attempts + 1
        exhausted = attempts >= subscription.max_attempts
        fields = {
            "attempts": attempts,
            "retry_at": now + retry_delay(attempts),
            "error_message": message,
            "error_code": error_code[:100],
        }
        if exhausted:
            fields["next_billing_date"] = None

        with self.atomic():
            target = TransactionStatus.FAILED if exhausted else TransactionStatus.PENDING_RENEWAL
            if subscription.status != target:
                # Attempts are counted after the move, so a FAILED record
                # with attempts left may still leave FAILED
                subscription = self.store.update_status(subscription, target, fields).transaction
            else:
                subscription = self.store.update(subscription, fields)

        if exhausted:
            logger.warning(
                "Subscription marked as failed after max retry attempts",
                extra={
                    "subscription": subscription.reference,
                    "attempts": attempts,
                    "max_attempts": subscription.max_attempts,
                },
            )
        return subscription
