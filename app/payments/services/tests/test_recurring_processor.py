"""
Tests for RecurringProcessor.

Charges run against PayStack with a stubbed HTTP client; time is frozen
so billing dates and backoff can be compared exactly.
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest
from freezegun import freeze_time

from payments.exceptions import GatewayError
from payments.models import Transaction
from payments.services import PaymentOrchestrator, RecurringProcessor
from payments.state_machines import TransactionStatus, TransactionType
from payments.tests.factories import SubscriptionFactory


NOW = datetime(2026, 3, 1, 9, 0, tzinfo=dt_timezone.utc)

PAYSTACK_INIT = {
    "status": True,
    "data": {
        "authorization_url": "https://checkout.paystack.com/7zvwdb4hk0",
        "access_code": "7zvwdb4hk0",
    },
}


@pytest.fixture
def paystack_http(stub_gateway_http):
    http = stub_gateway_http("paystack")
    http.post.return_value = PAYSTACK_INIT
    return http


@pytest.fixture
def frozen_now():
    with freeze_time(NOW):
        yield NOW


def reload(txn):
    return Transaction.objects.get(pk=txn.pk)


def charges_for(subscription):
    return Transaction.objects.filter(
        parent_transaction=subscription,
        transaction_type=TransactionType.SUBSCRIPTION_CHARGE,
    )


class TestDueSubscriptions:
    def test_gateway_filter(self, db, gateway_registry, frozen_now):
        paystack = SubscriptionFactory()
        SubscriptionFactory(gateway="payfast", currency="ZAR")

        due = RecurringProcessor(gateway="paystack").due_subscriptions()

        assert list(due) == [paystack]

    def test_limit(self, db, gateway_registry, frozen_now):
        for _ in range(3):
            SubscriptionFactory()

        assert len(RecurringProcessor(limit=2).due_subscriptions()) == 2

    def test_retry_failed_includes_failed_with_attempts_left(self, db, gateway_registry, frozen_now):
        failed = SubscriptionFactory(
            status=TransactionStatus.FAILED,
            attempts=1,
            retry_at=frozen_now - timedelta(minutes=1),
        )

        assert failed not in RecurringProcessor().due_subscriptions()
        assert failed in RecurringProcessor(retry_failed=True).due_subscriptions()


class TestRun:
    def test_dry_run_changes_nothing(self, db, gateway_registry, paystack_http, frozen_now):
        sub = SubscriptionFactory()

        report = RecurringProcessor(dry_run=True).run()

        assert report.dry_run is True
        assert report.successful == 1
        detail = report.details[0]
        assert detail.transaction_reference.startswith("DRY-RUN-")
        assert detail.dry_run is True
        paystack_http.post.assert_not_called()
        assert not charges_for(sub).exists()
        assert reload(sub).next_billing_date == frozen_now

    def test_successful_charge_advances_billing_date(self, db, gateway_registry, paystack_http, frozen_now):
        sub = SubscriptionFactory(attempts=1, metadata={"plan": "premium"})

        report = RecurringProcessor().run()

        assert report.to_dict()["successful"] == 1
        charge = charges_for(sub).get()
        assert report.details[0].transaction_reference == charge.reference
        assert charge.amount == Decimal("5000.00")
        assert charge.status == TransactionStatus.PENDING
        assert charge.subscription_id == sub.subscription_id
        assert charge.metadata["subscription_reference"] == sub.reference
        assert charge.metadata["recurring_payment"] is True
        assert charge.metadata["plan"] == "premium"

        saved = reload(sub)
        assert saved.status == TransactionStatus.ACTIVE
        assert saved.next_billing_date == datetime(2026, 4, 1, 9, 0, tzinfo=dt_timezone.utc)
        assert saved.cycles_completed == 1
        assert saved.attempts == 0
        assert saved.last_payment_at == frozen_now

    def test_pending_renewal_returns_to_active(self, db, gateway_registry, paystack_http, frozen_now):
        sub = SubscriptionFactory(status=TransactionStatus.PENDING_RENEWAL, attempts=1, retry_at=frozen_now)

        RecurringProcessor().run()

        saved = reload(sub)
        assert saved.status == TransactionStatus.ACTIVE
        assert saved.retry_at is None

    def test_final_cycle_completes_subscription(self, db, gateway_registry, paystack_http, frozen_now):
        sub = SubscriptionFactory(recurring_cycles=3, cycles_completed=2)

        RecurringProcessor().run()

        saved = reload(sub)
        assert saved.status == TransactionStatus.COMPLETED
        assert saved.cycles_completed == 3
        assert saved.next_billing_date is None

    def test_failure_backs_off(self, db, gateway_registry, paystack_http, frozen_now):
        paystack_http.post.side_effect = GatewayError("paystack error: Insufficient funds", gateway="paystack")
        sub = SubscriptionFactory()

        report = RecurringProcessor().run()

        assert report.failed == 1
        assert report.details[0].error_code == "GATEWAY_ERROR"
        saved = reload(sub)
        assert saved.status == TransactionStatus.PENDING_RENEWAL
        assert saved.attempts == 1
        assert saved.retry_at == frozen_now + timedelta(hours=1)
        assert saved.error_message == "paystack error: Insufficient funds"
        assert saved.error_code == "GATEWAY_ERROR"
        assert not charges_for(sub).exists()

    def test_backoff_doubles(self, db, gateway_registry, paystack_http, frozen_now):
        paystack_http.post.side_effect = GatewayError("paystack error: Insufficient funds", gateway="paystack")
        sub = SubscriptionFactory(
            status=TransactionStatus.PENDING_RENEWAL,
            attempts=1,
            max_attempts=5,
            retry_at=frozen_now,
        )

        RecurringProcessor().run()

        saved = reload(sub)
        assert saved.attempts == 2
        assert saved.retry_at == frozen_now + timedelta(hours=2)

    def test_exhausted_attempts_fail_subscription(self, db, gateway_registry, paystack_http, frozen_now):
        paystack_http.post.side_effect = GatewayError("paystack error: Insufficient funds", gateway="paystack")
        sub = SubscriptionFactory(status=TransactionStatus.PENDING_RENEWAL, attempts=2, retry_at=frozen_now)

        RecurringProcessor().run()

        saved = reload(sub)
        assert saved.status == TransactionStatus.FAILED
        assert saved.attempts == 3
        assert saved.next_billing_date is None

        charges_before = charges_for(sub).count()
        calls_before = paystack_http.post.call_count

        report = RecurringProcessor().run()

        assert report.total == 0
        assert charges_for(sub).count() == charges_before
        assert paystack_http.post.call_count == calls_before
        assert reload(sub).attempts == 3

    def test_eft_subscriptions_are_skipped(self, db, gateway_registry, frozen_now):
        sub = SubscriptionFactory(gateway="eft", currency="ZAR")

        report = RecurringProcessor().run()

        assert report.skipped == 1
        assert report.details[0].message == "EFT subscriptions require manual processing"
        assert reload(sub).next_billing_date == frozen_now

    def test_cancelled_subscription_is_skipped(self, db, gateway_registry):
        sub = SubscriptionFactory(status=TransactionStatus.CANCELLED)

        result = RecurringProcessor().process(sub)

        assert result.status == "skipped"
        assert result.message == "Subscription is cancelled"

    def test_one_exception_does_not_stop_the_batch(self, db, gateway_registry, paystack_http, frozen_now, mocker):
        broken = SubscriptionFactory(next_billing_date=frozen_now - timedelta(days=1))
        healthy = SubscriptionFactory()
        orchestrator = PaymentOrchestrator()
        real_initialize = orchestrator.initialize

        def initialize(gateway_name, request, **kwargs):
            if kwargs["parent"] == broken:
                raise RuntimeError("connection reset")
            return real_initialize(gateway_name, request, **kwargs)

        mocker.patch.object(orchestrator, "initialize", side_effect=initialize)

        report = RecurringProcessor(orchestrator).run()

        assert [detail.status for detail in report.details] == ["failed", "success"]
        assert report.details[0].error == "connection reset"
        assert charges_for(healthy).count() == 1
