"""
Pytest fixtures for webhook tests.

Provides signed PayStack deliveries, stored WebhookEvent objects and the
transactions they refer to.
"""

import json
from decimal import Decimal

import pytest

from payments.gateways.signatures import hmac_hexdigest
from payments.gateways.types import CallbackPayload
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.tests.factories import TransactionFactory


PAYSTACK_SECRET = "sk_test_paystack"


def paystack_body(reference, event="charge.success", transaction_id=4099260516, status="success"):
    """Raw JSON body of a PayStack webhook."""
    data = {
        "event": event,
        "data": {
            "id": transaction_id,
            "status": status,
            "reference": reference,
            "amount": 500000,
            "currency": "NGN",
            "fees": 7500,
        },
    }
    return json.dumps(data).encode()


def sign_paystack(raw_body: bytes, secret: str = PAYSTACK_SECRET) -> str:
    return hmac_hexdigest(secret, raw_body, "sha512")


def paystack_payload(reference, **kwargs) -> CallbackPayload:
    raw = paystack_body(reference, **kwargs)
    return CallbackPayload(
        data=json.loads(raw),
        raw_body=raw,
        headers={"X-Paystack-Signature": sign_paystack(raw), "Content-Type": "application/json"},
    )


# =============================================================================
# Transaction Fixtures
# =============================================================================


@pytest.fixture
def paystack_payment(db):
    """Pending PayStack payment awaiting its charge.success webhook."""
    return TransactionFactory(
        reference="PS-1700000000-WEB001",
        gateway="paystack",
        currency="NGN",
        amount=Decimal("5000.00"),
        gateway_transaction_id=None,
    )


# =============================================================================
# WebhookEvent Fixtures
# =============================================================================


def stored_event(payload: CallbackPayload, status=WebhookEventStatus.PENDING, **extra) -> WebhookEvent:
    return WebhookEvent.objects.create(
        gateway="paystack",
        event_id=f"{payload.data['event']}:{payload.data['data']['id']}",
        event_type=payload.data["event"],
        payload=dict(payload.data),
        raw_body=payload.raw_body.decode(),
        headers=dict(payload.headers),
        status=status,
        **extra,
    )


@pytest.fixture
def pending_webhook_event(paystack_payment):
    """Stored, signed charge.success event for paystack_payment."""
    return stored_event(paystack_payload(paystack_payment.reference))


@pytest.fixture
def processed_webhook_event(paystack_payment):
    return stored_event(
        paystack_payload(paystack_payment.reference),
        status=WebhookEventStatus.PROCESSED,
        retry_count=1,
    )
