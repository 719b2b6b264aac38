"""
Tests for Transaction state transitions using django-fsm.

Transitions are called directly on the model here; the store-level
behaviour (locking, events, attempt counting) is covered in
services/tests/test_transaction_store.py.
"""

import pytest
from django_fsm import TransitionNotAllowed, can_proceed

from payments.models import Transaction
from payments.models.transaction import STATUS_TRANSITIONS
from payments.state_machines import TransactionStatus
from payments.tests.factories import SubscriptionFactory, TransactionFactory


def reload(txn):
    return Transaction.objects.get(pk=txn.pk)


# =============================================================================
# Payments
# =============================================================================


class TestPaymentTransitions:
    """Tests for one-off payment transitions."""

    def test_created_to_pending(self, db):
        """Should transition from created to pending."""
        txn = TransactionFactory(status=TransactionStatus.CREATED)

        txn.mark_pending()
        txn.save()

        assert reload(txn).status == TransactionStatus.PENDING

    def test_pending_to_processing_stamps_processed_at(self, db):
        """Should record processed_at when processing starts."""
        txn = TransactionFactory()

        txn.mark_processing()
        txn.save()

        assert reload(txn).processed_at is not None

    def test_complete_clears_previous_error(self, db):
        """Should clear error fields and stamp completed_at."""
        txn = TransactionFactory(
            status=TransactionStatus.PROCESSING,
            error_code="TIMEOUT",
            error_message="Gateway timeout",
        )

        txn.complete()
        txn.save()

        txn = reload(txn)
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.completed_at is not None
        assert txn.error_code == ""
        assert txn.error_message == ""

    def test_fail_records_reason(self, db):
        """Should keep the failure reason."""
        txn = TransactionFactory()

        txn.fail(reason="Card declined")
        txn.save()

        txn = reload(txn)
        assert txn.status == TransactionStatus.FAILED
        assert txn.error_message == "Card declined"
        assert txn.failed_at is not None

    def test_cancel(self, db):
        txn = TransactionFactory()

        txn.cancel()
        txn.save()

        assert reload(txn).cancelled_at is not None

    def test_failed_with_attempts_left_can_complete(self, db):
        """Should allow a late success for a failed payment with attempts left."""
        txn = TransactionFactory(status=TransactionStatus.FAILED, attempts=1)

        assert can_proceed(txn.complete) is True

    def test_failed_without_attempts_is_terminal(self, db):
        """Should refuse to leave FAILED once attempts are exhausted."""
        txn = TransactionFactory(status=TransactionStatus.FAILED, attempts=3, max_attempts=3)

        assert txn.is_terminal is True
        with pytest.raises(TransitionNotAllowed):
            txn.complete()
        with pytest.raises(TransitionNotAllowed):
            txn.mark_pending()

    def test_completed_cannot_fail(self, db):
        """Should not move a completed payment back to failed."""
        txn = TransactionFactory(status=TransactionStatus.COMPLETED)

        with pytest.raises(TransitionNotAllowed):
            txn.fail()

    @pytest.mark.parametrize(
        "status",
        [TransactionStatus.REFUNDED, TransactionStatus.CANCELLED, TransactionStatus.EXPIRED],
    )
    def test_terminal_statuses_cannot_complete(self, db, status):
        txn = TransactionFactory(status=status)

        assert can_proceed(txn.complete) is False


# =============================================================================
# Refunds
# =============================================================================


class TestRefundTransitions:
    def test_completed_to_partially_refunded(self, db):
        txn = TransactionFactory(status=TransactionStatus.COMPLETED)

        txn.refund_partial()
        txn.save()

        txn = reload(txn)
        assert txn.status == TransactionStatus.PARTIALLY_REFUNDED
        assert txn.refunded_at is not None

    def test_partially_refunded_to_refunded(self, db):
        txn = TransactionFactory(status=TransactionStatus.PARTIALLY_REFUNDED)

        txn.refund_full()
        txn.save()

        assert reload(txn).status == TransactionStatus.REFUNDED

    def test_pending_cannot_be_refunded(self, db):
        txn = TransactionFactory()

        with pytest.raises(TransitionNotAllowed):
            txn.refund_full()


# =============================================================================
# Subscriptions
# =============================================================================


class TestSubscriptionTransitions:
    def test_pending_to_active(self, db):
        sub = SubscriptionFactory(status=TransactionStatus.PENDING)

        sub.activate()
        sub.save()

        assert reload(sub).status == TransactionStatus.ACTIVE

    def test_active_to_pending_renewal_and_back(self, db):
        sub = SubscriptionFactory()

        sub.await_renewal()
        sub.save()
        sub = reload(sub)
        sub.activate()
        sub.save()

        assert reload(sub).status == TransactionStatus.ACTIVE

    def test_pending_renewal_to_failed(self, db):
        sub = SubscriptionFactory(status=TransactionStatus.PENDING_RENEWAL)

        sub.fail(reason="Retries exhausted")
        sub.save()

        assert reload(sub).status == TransactionStatus.FAILED

    def test_active_can_complete_when_cycles_done(self, db):
        sub = SubscriptionFactory(recurring_cycles=3, cycles_completed=3)

        assert can_proceed(sub.complete) is True


def test_every_target_status_has_a_transition():
    targets = set(TransactionStatus) - {TransactionStatus.CREATED, TransactionStatus.UNKNOWN}

    assert set(STATUS_TRANSITIONS) == targets
    for method in STATUS_TRANSITIONS.values():
        assert callable(getattr(Transaction, method))
