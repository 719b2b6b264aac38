"""
Tests for TransactionStore lookups, status changes and refund bookkeeping.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from payments.events import payment_completed, payment_failed
from payments.exceptions import (
    InvalidStateTransitionError,
    PaymentValidationError,
    RefundAmountExceededError,
    StaleRecordError,
    TransactionNotFoundError,
    TransactionNotRefundableError,
)
from payments.models import Transaction
from payments.services import TransactionStore
from payments.state_machines import TransactionStatus, TransactionType
from payments.tests.factories import (
    CompletedTransactionFactory,
    SubscriptionFactory,
    TransactionFactory,
)


@pytest.fixture
def store():
    return TransactionStore()


@pytest.fixture
def received_events():
    """Collect payment events sent through the Django signals."""
    received = []

    def handler(sender, event, **kwargs):
        received.append(event)

    payment_completed.connect(handler)
    payment_failed.connect(handler)
    yield received
    payment_completed.disconnect(handler)
    payment_failed.disconnect(handler)


# =============================================================================
# Lookup
# =============================================================================


class TestLookup:
    def test_get_by_reference(self, db, store):
        txn = TransactionFactory(reference="PF-1700000000-GET001")

        assert store.get_by_reference("PF-1700000000-GET001") == txn

    def test_get_by_reference_missing(self, db, store):
        with pytest.raises(TransactionNotFoundError) as exc_info:
            store.get_by_reference("PF-missing")

        assert exc_info.value.details == {"reference": "PF-missing"}

    def test_find_for_callback_prefers_reference(self, db, store):
        by_reference = TransactionFactory(reference="PS-REF-1", gateway="paystack", gateway_transaction_id="111")
        TransactionFactory(reference="PS-REF-2", gateway="paystack", gateway_transaction_id="222")

        assert store.find_for_callback("PS-REF-1", "222", "paystack") == by_reference

    def test_find_for_callback_falls_back_to_gateway_id(self, db, store):
        txn = TransactionFactory(gateway="stripe", gateway_transaction_id="pi_123")
        TransactionFactory(gateway="paystack", gateway_transaction_id="pi_123")

        assert store.find_for_callback(None, "pi_123", "stripe") == txn

    def test_find_for_callback_by_subscription_id(self, db, store):
        sub = SubscriptionFactory(subscription_id="SUB_vsyqdmlzble3uii")

        assert store.find_for_callback(None, None, "paystack", "SUB_vsyqdmlzble3uii") == sub

    def test_find_for_callback_none(self, db, store):
        assert store.find_for_callback("nope", "nope", "payfast") is None

    def test_filter(self, db, store, user):
        mine = TransactionFactory(user=user, customer_email="Thandi@Example.com")
        TransactionFactory(gateway="ozow")
        CompletedTransactionFactory(user=user)

        qs = store.filter({"user": user, "status": TransactionStatus.PENDING, "bogus": "x", "gateway": ""})

        assert list(qs) == [mine]
        assert list(store.filter({"customer_email": "thandi@example.com"})) == [mine]


# =============================================================================
# Creation
# =============================================================================


class TestCreate:
    def test_defaults_to_pending(self, db, store):
        txn = store.create(reference="PF-NEW-1", gateway="payfast", amount=Decimal("10.00"), currency="zar")

        assert txn.status == TransactionStatus.PENDING
        assert txn.currency == "ZAR"

    def test_rejects_non_positive_amount(self, db, store):
        with pytest.raises(PaymentValidationError) as exc_info:
            store.create(reference="PF-NEW-2", gateway="payfast", amount=Decimal("0"))

        assert "amount" in exc_info.value.errors
        assert not Transaction.objects.filter(reference="PF-NEW-2").exists()


# =============================================================================
# Status Changes
# =============================================================================


class TestUpdateStatus:
    def test_transition_is_applied_and_saved(self, db, store):
        txn = TransactionFactory()

        change = store.update_status(
            txn,
            TransactionStatus.COMPLETED,
            {"gateway_transaction_id": "1089250", "fee_amount": Decimal("2.30"), "metadata": {"itn": True}},
        )

        assert change.changed is True
        assert change.previous_status == TransactionStatus.PENDING
        saved = Transaction.objects.get(pk=txn.pk)
        assert saved.status == TransactionStatus.COMPLETED
        assert saved.gateway_transaction_id == "1089250"
        assert saved.fee_amount == Decimal("2.30")
        assert saved.metadata["itn"] is True
        assert saved.completed_at is not None

    def test_same_status_is_a_noop(self, db, store):
        txn = TransactionFactory(status=TransactionStatus.COMPLETED)
        version = txn.version

        change = store.update_status(txn, TransactionStatus.COMPLETED)

        assert change.changed is False
        assert Transaction.objects.get(pk=txn.pk).version == version

    def test_unknown_status_is_a_noop(self, db, store):
        txn = TransactionFactory()

        change = store.update_status(txn, TransactionStatus.UNKNOWN)

        assert change.changed is False
        assert Transaction.objects.get(pk=txn.pk).status == TransactionStatus.PENDING

    def test_illegal_transition(self, db, store):
        txn = TransactionFactory(status=TransactionStatus.REFUNDED)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            store.update_status(txn, TransactionStatus.COMPLETED)

        assert exc_info.value.details["current_status"] == TransactionStatus.REFUNDED
        assert exc_info.value.details["target_status"] == TransactionStatus.COMPLETED

    def test_failure_counts_an_attempt(self, db, store):
        txn = TransactionFactory(status=TransactionStatus.PROCESSING)

        store.update_status(txn, TransactionStatus.FAILED, {"error_message": "Card declined", "error_code": "05"})

        saved = Transaction.objects.get(pk=txn.pk)
        assert saved.attempts == 1
        assert saved.error_message == "Card declined"
        assert saved.error_code == "05"

    def test_subscription_failure_does_not_count_attempt(self, db, store):
        sub = SubscriptionFactory()

        store.update_status(sub, TransactionStatus.FAILED)

        assert Transaction.objects.get(pk=sub.pk).attempts == 0

    def test_stale_version(self, db, store):
        txn = TransactionFactory()

        with pytest.raises(StaleRecordError):
            store.update_status(txn, TransactionStatus.COMPLETED, expected_version=txn.version + 1)

        assert Transaction.objects.get(pk=txn.pk).status == TransactionStatus.PENDING

    def test_unknown_fields_are_rejected(self, db, store):
        txn = TransactionFactory()

        with pytest.raises(PaymentValidationError) as exc_info:
            store.update_status(txn, TransactionStatus.COMPLETED, {"amount": Decimal("1.00")})

        assert "amount" in exc_info.value.errors
        assert Transaction.objects.get(pk=txn.pk).status == TransactionStatus.PENDING


class TestEvents:
    def test_completion_publishes_once_on_commit(
        self, db, store, received_events, django_capture_on_commit_callbacks
    ):
        txn = TransactionFactory()

        with django_capture_on_commit_callbacks(execute=True):
            store.update_status(txn, TransactionStatus.COMPLETED)
            store.update_status(txn, TransactionStatus.COMPLETED)

        assert len(received_events) == 1
        event = received_events[0]
        assert event.event_name == "payment.completed"
        assert event.reference == txn.reference
        assert event.previous_status == TransactionStatus.PENDING

    def test_failure_publishes_failed_event(self, db, store, received_events, django_capture_on_commit_callbacks):
        txn = TransactionFactory()

        with django_capture_on_commit_callbacks(execute=True):
            store.update_status(txn, TransactionStatus.FAILED, {"error_message": "Declined"})

        assert [event.event_name for event in received_events] == ["payment.failed"]
        assert received_events[0].error_message == "Declined"

    def test_nothing_published_before_commit(self, db, store, received_events, django_capture_on_commit_callbacks):
        txn = TransactionFactory()

        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            store.update_status(txn, TransactionStatus.COMPLETED)

        assert received_events == []
        assert len(callbacks) == 1

    def test_processing_publishes_nothing(self, db, store, received_events, django_capture_on_commit_callbacks):
        txn = TransactionFactory()

        with django_capture_on_commit_callbacks(execute=True):
            store.update_status(txn, TransactionStatus.PROCESSING)

        assert received_events == []


# =============================================================================
# Bookkeeping
# =============================================================================


class TestBookkeeping:
    def test_update_merges_metadata(self, db, store):
        txn = TransactionFactory(metadata={"order_id": 7})

        store.update(txn, {"payment_method": "card"}, {"channel": "web"})

        saved = Transaction.objects.get(pk=txn.pk)
        assert saved.payment_method == "card"
        assert saved.metadata == {"order_id": 7, "channel": "web"}

    def test_record_failed_attempt(self, db, store):
        txn = SubscriptionFactory(attempts=1)
        retry_at = timezone.now() + timedelta(hours=2)

        saved = store.record_failed_attempt(txn, retry_at, error_message="Insufficient funds")

        assert saved.attempts == 2
        assert saved.retry_at == retry_at
        assert saved.error_message == "Insufficient funds"

    def test_schedule_retry_defaults_to_now(self, db, store):
        txn = TransactionFactory(status=TransactionStatus.FAILED, attempts=1, retry_at=timezone.now() + timedelta(days=1))

        saved = store.schedule_retry(txn)

        assert store.can_retry(saved) is True


# =============================================================================
# Refunds
# =============================================================================


class TestRefunds:
    def test_full_refund_by_default(self, db, store):
        txn = CompletedTransactionFactory()

        assert store.check_refundable(txn) == Decimal("100.00")

    def test_pending_is_not_refundable(self, db, store):
        with pytest.raises(TransactionNotRefundableError):
            store.check_refundable(TransactionFactory())

    def test_refund_records_are_not_refundable(self, db, store):
        refund = CompletedTransactionFactory(transaction_type=TransactionType.REFUND)

        with pytest.raises(TransactionNotRefundableError):
            store.check_refundable(refund)

    def test_amount_above_balance(self, db, store):
        txn = CompletedTransactionFactory(status=TransactionStatus.PARTIALLY_REFUNDED, refund_amount=Decimal("60.00"))

        with pytest.raises(RefundAmountExceededError) as exc_info:
            store.check_refundable(txn, Decimal("40.01"))

        assert exc_info.value.details["refundable"] == "40.00"

    def test_partial_then_full(self, db, store):
        txn = CompletedTransactionFactory()

        first = store.apply_refund(txn, Decimal("60.00"))
        second = store.apply_refund(txn, Decimal("40.00"))

        assert first.status == TransactionStatus.PARTIALLY_REFUNDED
        assert second.status == TransactionStatus.REFUNDED
        saved = Transaction.objects.get(pk=txn.pk)
        assert saved.refund_amount == Decimal("100.00")
        assert saved.refunded_at is not None

    def test_second_partial_keeps_status_and_merges_metadata(self, db, store):
        txn = CompletedTransactionFactory(status=TransactionStatus.PARTIALLY_REFUNDED, refund_amount=Decimal("10.00"))

        change = store.apply_refund(txn, Decimal("10.00"), {"last_refund_reference": "R2"})

        assert change.changed is False
        saved = Transaction.objects.get(pk=txn.pk)
        assert saved.refund_amount == Decimal("20.00")
        assert saved.metadata["last_refund_reference"] == "R2"
