"""
Factory Boy factories for payment test data.

Usage:
    from payments.tests.factories import TransactionFactory, WebhookEventFactory

    # Pending PayFast payment
    txn = TransactionFactory()

    # Completed Stripe payment
    txn = TransactionFactory(gateway="stripe", status=TransactionStatus.COMPLETED)

    # Active monthly subscription due now
    sub = SubscriptionFactory(next_billing_date=timezone.now())

Note:
    Transaction.status is a protected FSM field. Pass it at creation
    time; afterwards move it through TransactionStore.update_status.
"""

from decimal import Decimal

import factory
from django.utils import timezone

from payments.models import Transaction, WebhookEvent
from payments.state_machines import (
    RecurringFrequency,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)


class UserFactory(factory.django.DjangoModelFactory):
    """Factory for django.contrib.auth users."""

    class Meta:
        model = "auth.User"
        django_get_or_create = ("username",)

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    password = factory.django.Password("testpass123")
    is_active = True


class StaffUserFactory(UserFactory):
    username = factory.Sequence(lambda n: f"staff{n}")
    is_staff = True


class TransactionFactory(factory.django.DjangoModelFactory):
    """
    Factory for Transaction instances.

    Defaults to a pending R100.00 PayFast payment whose provider id is
    the merchant reference, as PayFast reports it.
    """

    class Meta:
        model = Transaction

    reference = factory.Sequence(lambda n: f"PF-1700000000-T{n:05d}")
    gateway = "payfast"
    gateway_transaction_id = factory.LazyAttribute(lambda o: o.reference)
    transaction_type = TransactionType.PAYMENT
    status = TransactionStatus.PENDING
    amount = Decimal("100.00")
    currency = "ZAR"
    description = "Order payment"
    customer_email = factory.Sequence(lambda n: f"buyer{n}@example.com")
    customer_name = "Thandi Nkosi"
    max_attempts = 3
    metadata = factory.LazyFunction(dict)


class CompletedTransactionFactory(TransactionFactory):
    status = TransactionStatus.COMPLETED
    completed_at = factory.LazyFunction(timezone.now)


class SubscriptionFactory(TransactionFactory):
    """Active subscription parent billed monthly through PayStack."""

    reference = factory.Sequence(lambda n: f"PS-1700000000-S{n:05d}")
    gateway = "paystack"
    currency = "NGN"
    amount = Decimal("5000.00")
    description = "Premium plan"
    status = TransactionStatus.ACTIVE
    is_subscription = True
    subscription_id = factory.Sequence(lambda n: f"SUB_{n:06d}")
    recurring_frequency = RecurringFrequency.MONTHLY
    next_billing_date = factory.LazyFunction(timezone.now)


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """Factory for stored webhook deliveries."""

    class Meta:
        model = WebhookEvent

    gateway = "paystack"
    event_id = factory.Sequence(lambda n: f"charge.success:{4000000 + n}")
    event_type = "charge.success"
    payload = factory.LazyAttribute(
        lambda o: {"event": o.event_type, "data": {"id": o.event_id.split(":")[-1], "status": "success"}}
    )
    raw_body = ""
    headers = factory.LazyFunction(dict)
    status = WebhookEventStatus.PENDING
    retry_count = 0


class FailedWebhookEventFactory(WebhookEventFactory):
    status = WebhookEventStatus.FAILED
    retry_count = 1
    error_message = "Gateway timeout"
