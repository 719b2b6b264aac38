"""
Payment domain models.

- Transaction: Payments, subscriptions, subscription charges and refunds
- WebhookEvent: Provider webhook deliveries for idempotent processing
"""

from payments.models.transaction import STATUS_TRANSITIONS, Transaction
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "STATUS_TRANSITIONS",
    "Transaction",
    "WebhookEvent",
]
