"""
Payment orchestrator: entry point for payment operations.

Coordinates the gateway registry, the adapters and the TransactionStore.
Every public method returns a ServiceResult; domain errors become failures
with their error_code, while lock contention and programming errors
propagate.

Usage:
    from payments.gateways import PaymentRequest, CustomerDetails
    from payments.services import PaymentOrchestrator

    orchestrator = PaymentOrchestrator()
    result = orchestrator.initialize(
        "payfast",
        PaymentRequest(
            amount=Decimal("100.00"),
            description="Order #1001",
            customer=CustomerDetails(email="buyer@example.com"),
        ),
    )

    if result.success:
        redirect_to = result.data.init_result.payment_url
        reference = result.data.transaction.reference
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService, ServiceResult

from payments.exceptions import (
    InvalidStateTransitionError,
    PaymentError,
    RetryNotAllowedError,
    TransactionNotFoundForCallbackError,
)
from payments.gateways.registry import get_registry
from payments.locks import refund_lock
from payments.services.billing import add_billing_period
from payments.services.transaction_store import TransactionStore
from payments.state_machines import TransactionStatus, TransactionType

if TYPE_CHECKING:
    from collections.abc import Mapping
    from decimal import Decimal
    from typing import Any

    from django.db.models import QuerySet

    from payments.gateways.base import AbstractGateway
    from payments.gateways.registry import GatewayRegistry
    from payments.gateways.types import (
        CallbackPayload,
        CallbackResult,
        InitResult,
        PaymentRequest,
        RefundResult,
        VerifyResult,
    )
    from payments.models import Transaction


logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class InitializeOutcome:
    init_result: InitResult
    transaction: Transaction

    def to_dict(self) -> dict[str, Any]:
        return {**self.init_result.to_dict(), "transaction": self.transaction.get_summary()}


@dataclass
class VerifyOutcome:
    verify_result: VerifyResult
    transaction: Transaction
    changed: bool = False


@dataclass
class CallbackOutcome:
    """
    Outcome of a provider callback.

    transaction is None when the callback matched no transaction; the
    callback is still acknowledged so the provider stops redelivering.
    """

    callback_result: CallbackResult
    transaction: Transaction | None = None
    changed: bool = False

    @property
    def acknowledged(self) -> bool:
        return True


@dataclass
class RefundRecord:
    """Parent transaction after bookkeeping plus the linked refund record."""

    refund_result: RefundResult
    transaction: Transaction
    refund_transaction: Transaction
    manual_action: dict[str, str] | None = field(default=None)

    @property
    def requires_manual_action(self) -> bool:
        return self.refund_result.requires_manual_action


# =============================================================================
# Payment Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Central coordinator for payment operations.

    Args:
        registry: Gateway registry (process-wide registry from settings by default)
        store: Transaction store
    """

    def __init__(
        self,
        registry: GatewayRegistry | None = None,
        store: TransactionStore | None = None,
    ) -> None:
        self.registry = registry or get_registry()
        self.store = store or TransactionStore()

    # =========================================================================
    # Initialize
    # =========================================================================

    def initialize(
        self,
        gateway_name: str | None,
        request: PaymentRequest,
        user=None,
        parent: Transaction | None = None,
        transaction_type: str = TransactionType.PAYMENT,
    ) -> ServiceResult[InitializeOutcome]:
        """
        Start a payment with a gateway and persist a pending Transaction.

        A request carrying SubscriptionTerms creates a subscription parent;
        recurring charges pass parent and SUBSCRIPTION_CHARGE.
        """
        log = self.get_logger()
        log.info(
            "Initializing payment",
            extra={
                "gateway": gateway_name,
                "amount": str(request.amount),
                "currency": request.currency,
                "transaction_type": str(transaction_type),
            },
        )
        try:
            gateway = self.registry.resolve(gateway_name, require_enabled=True)
            if not request.description:
                request = replace(request, description=gateway.config.option("default_description", "Payment"))
            init_result = gateway.initialize_payment(request)
            fields = self._transaction_fields(gateway, request, init_result, user, parent, transaction_type)
            txn = self.store.create(**fields)
            if init_result.status not in (TransactionStatus.PENDING, TransactionStatus.UNKNOWN):
                txn = self._apply_status(txn, init_result.status).transaction
        except PaymentError as e:
            return self.handle_exception(e, "Payment initialization failed", log_level=logging.WARNING)

        log.info(
            "Payment initialized",
            extra={"reference": txn.reference, "gateway": txn.gateway, "status": txn.status},
        )
        return ServiceResult.success(InitializeOutcome(init_result=init_result, transaction=txn))

    def _transaction_fields(
        self,
        gateway: AbstractGateway,
        request: PaymentRequest,
        init_result: InitResult,
        user,
        parent: Transaction | None,
        transaction_type: str,
    ) -> dict[str, Any]:
        customer = request.customer
        metadata = dict(request.metadata or {})
        if init_result.instructions:
            metadata["instructions"] = init_result.instructions
        if init_result.expires_at:
            metadata["expires_at"] = init_result.expires_at.isoformat()

        fields: dict[str, Any] = {
            "reference": init_result.reference,
            "gateway": gateway.name,
            "gateway_transaction_id": init_result.gateway_transaction_id,
            "transaction_type": transaction_type,
            "amount": init_result.amount,
            "currency": init_result.currency,
            "description": request.description,
            "payment_method": request.payment_method or "",
            "customer_email": customer.email,
            "customer_name": customer.full_name,
            "customer_phone": customer.phone,
            "user": user,
            "parent_transaction": parent,
            "metadata": metadata,
            "max_attempts": int(gateway.config.option("max_attempts", 3)),
        }
        if parent is not None:
            fields["subscription_id"] = parent.subscription_id
            fields["recurring_frequency"] = parent.recurring_frequency
        if request.subscription is not None:
            terms = request.subscription
            fields.update(
                is_subscription=True,
                recurring_frequency=terms.frequency,
                recurring_cycles=terms.cycles,
                next_billing_date=terms.billing_date,
            )
        return fields

    # =========================================================================
    # Verify
    # =========================================================================

    def verify(self, reference: str) -> ServiceResult[VerifyOutcome]:
        """Ask the provider for the latest status and apply it."""
        try:
            txn = self.store.get_by_reference(reference)
            gateway = self.registry.resolve(txn.gateway)
            verify_result = gateway.verify_payment(txn.gateway_transaction_id or txn.reference)

            fields = self._settlement_fields(verify_result)
            change = self._apply_status(txn, verify_result.status, fields)
        except PaymentError as e:
            return self.handle_exception(e, "Payment verification failed", log_level=logging.WARNING)

        return ServiceResult.success(
            VerifyOutcome(verify_result=verify_result, transaction=change.transaction, changed=change.changed)
        )

    # =========================================================================
    # Callback
    # =========================================================================

    def process_callback(self, gateway_name: str, payload: CallbackPayload) -> ServiceResult[CallbackOutcome]:
        """
        Apply a provider notification to its transaction.

        Unmatched callbacks are logged and acknowledged. An invalid
        signature is returned as a failure.
        """
        log = self.get_logger()
        try:
            gateway = self.registry.resolve(gateway_name, require_enabled=True)
            callback_result = gateway.process_callback(payload)

            txn = self.store.find_for_callback(
                callback_result.reference,
                callback_result.gateway_transaction_id,
                gateway=gateway.name,
                subscription_id=callback_result.subscription_id,
            )
            if txn is None:
                unmatched = TransactionNotFoundForCallbackError(
                    "Callback matched no transaction",
                    details={
                        "gateway": gateway.name,
                        "reference": callback_result.reference,
                        "gateway_transaction_id": callback_result.gateway_transaction_id,
                        "status": callback_result.status,
                    },
                )
                log.warning(str(unmatched), extra={"error_code": unmatched.error_code, **unmatched.details})
                return ServiceResult.success(CallbackOutcome(callback_result=callback_result))

            fields = self._settlement_fields(callback_result)
            if callback_result.subscription_id and not txn.subscription_id:
                fields["subscription_id"] = callback_result.subscription_id
            if callback_result.event_type:
                fields["metadata"] = {"last_callback_event": callback_result.event_type}
            change = self._apply_status(txn, callback_result.status, fields)
        except PaymentError as e:
            return self.handle_exception(e, "Callback processing failed", log_level=logging.WARNING)

        return ServiceResult.success(
            CallbackOutcome(
                callback_result=callback_result,
                transaction=change.transaction,
                changed=change.changed,
            )
        )

    @staticmethod
    def _settlement_fields(result: VerifyResult | CallbackResult) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if result.gateway_transaction_id:
            fields["gateway_transaction_id"] = result.gateway_transaction_id
        if result.fee_amount is not None:
            fields["fee_amount"] = result.fee_amount
        if result.net_amount is not None:
            fields["net_amount"] = result.net_amount
        if getattr(result, "payment_method", None):
            fields["payment_method"] = result.payment_method
        if result.is_failed and result.message:
            fields["error_message"] = result.message
        return fields

    def _apply_status(self, txn: Transaction, status: str, fields: Mapping[str, Any] | None = None):
        """
        Apply a provider-reported status through the store.

        Subscription parents become ACTIVE where a one-off payment would
        complete. A status the state machine rejects (for example a late
        "pending" after completion) is logged and ignored.
        """
        fields = dict(fields or {})
        if txn.is_subscription and status == TransactionStatus.COMPLETED:
            status = TransactionStatus.ACTIVE
            if txn.next_billing_date is None:
                now = timezone.now()
                fields["next_billing_date"] = add_billing_period(now, txn.recurring_frequency)
                fields["last_payment_at"] = now
        try:
            return self.store.update_status(txn, status, fields)
        except InvalidStateTransitionError as e:
            self.get_logger().warning(
                "Ignoring provider status that the transaction cannot move to",
                extra={"reference": txn.reference, **e.details},
            )
            return self.store.update_status(txn, TransactionStatus.UNKNOWN)

    # =========================================================================
    # Refund
    # =========================================================================

    def refund(
        self,
        reference: str,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> ServiceResult[RefundRecord]:
        """
        Refund all or part of a completed payment.

        Runs under a per-reference DistributedLock. The provider call
        happens before any write; on success a REFUND child transaction is
        created and the parent's refund_amount and status are updated.
        Providers without a refund API yield a pending refund record with
        manual_action_required in its metadata.
        """
        log = self.get_logger()
        try:
            with refund_lock(reference):
                txn = self.store.get_by_reference(reference)
                refund_amount = self.store.check_refundable(txn, amount)
                gateway = self.registry.resolve(txn.gateway)

                refund_result = gateway.refund_payment(
                    txn.gateway_transaction_id or txn.reference,
                    refund_amount,
                )
                record = self._record_refund(txn, refund_amount, refund_result, reason)
        except PaymentError as e:
            return self.handle_exception(e, "Refund failed", log_level=logging.WARNING)

        log.info(
            "Refund recorded",
            extra={
                "reference": reference,
                "refund_reference": record.refund_transaction.reference,
                "amount": str(refund_amount),
                "manual": record.requires_manual_action,
            },
        )
        return ServiceResult.success(record)

    def _record_refund(
        self,
        txn: Transaction,
        amount: Decimal,
        refund_result: RefundResult,
        reason: str | None,
    ) -> RefundRecord:
        manual_action = refund_result.manual_action.to_dict() if refund_result.manual_action else None
        metadata: dict[str, Any] = {"reason": reason or "", "refund_outcome": refund_result.outcome.value}
        if manual_action:
            metadata["manual_action_required"] = manual_action

        with self.atomic():
            count = txn.child_transactions.filter(transaction_type=TransactionType.REFUND).count()
            refund_txn = self.store.create(
                reference=f"{txn.reference}-RF{count + 1}",
                gateway=txn.gateway,
                gateway_transaction_id=refund_result.refund_id,
                transaction_type=TransactionType.REFUND,
                amount=amount,
                currency=txn.currency,
                description=reason or f"Refund of {txn.reference}",
                customer_email=txn.customer_email,
                customer_name=txn.customer_name,
                customer_phone=txn.customer_phone,
                user=txn.user,
                parent_transaction=txn,
                status=TransactionStatus.PENDING,
                metadata=metadata,
            )
            if not refund_result.requires_manual_action and refund_result.status == TransactionStatus.COMPLETED:
                refund_txn = self.store.update_status(refund_txn, TransactionStatus.COMPLETED).transaction

            parent_meta = {"last_refund_reference": refund_txn.reference}
            if manual_action:
                parent_meta["pending_manual_refund"] = refund_txn.reference
            change = self.store.apply_refund(txn, amount, metadata=parent_meta)

        return RefundRecord(
            refund_result=refund_result,
            transaction=change.transaction,
            refund_transaction=refund_txn,
            manual_action=manual_action,
        )

    # =========================================================================
    # Retry
    # =========================================================================

    def retry(self, reference: str) -> ServiceResult[Transaction]:
        """
        Make a failed transaction eligible for its next attempt now.

        Does not count an attempt; the recurring processor does that when
        the attempt actually runs.
        """
        try:
            txn = self.store.get_by_reference(reference)
            now = timezone.now()
            if not self.store.can_retry(txn, now):
                raise RetryNotAllowedError(
                    f"Transaction {reference} cannot be retried",
                    details={
                        "reference": reference,
                        "status": txn.status,
                        "attempts": txn.attempts,
                        "max_attempts": txn.max_attempts,
                        "retry_at": txn.retry_at.isoformat() if txn.retry_at else None,
                    },
                )
            txn = self.store.schedule_retry(txn, now)
        except PaymentError as e:
            return self.handle_exception(e, "Retry rejected", log_level=logging.WARNING)

        self.get_logger().info("Retry scheduled", extra={"reference": reference, "retry_at": now.isoformat()})
        return ServiceResult.success(txn)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_status(self, reference: str) -> ServiceResult[Transaction]:
        try:
            return ServiceResult.success(self.store.get_by_reference(reference))
        except PaymentError as e:
            return ServiceResult.from_exception(e)

    def list_gateways(self, enabled_only: bool = True) -> list[dict[str, Any]]:
        """Gateway info for clients choosing a payment method."""
        names = self.registry.list_available() if enabled_only else self.registry.names()
        return [self.registry.resolve(name).get_info() for name in names]

    def history(self, filters: Mapping[str, Any] | None = None) -> QuerySet[Transaction]:
        return self.store.filter(filters)
