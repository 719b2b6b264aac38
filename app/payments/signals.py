"""
Django signal receivers for payment events.

Connected when the app is ready (see apps.py). Events are published on
commit by TransactionStore, so receivers only see committed transitions.

Related files:
    - events.py: PaymentCompleted / PaymentFailed and the signals
    - tasks.py: deliver_payment_event
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.dispatch import receiver

from payments.events import payment_completed, payment_failed

logger = logging.getLogger(__name__)


@receiver(payment_completed)
@receiver(payment_failed)
def queue_event_delivery(sender, event, **kwargs):
    """
    Queue outbound delivery of a payment event.

    Does nothing when PAYMENT_EVENT_WEBHOOK_URL is not configured.
    """
    if not getattr(settings, "PAYMENT_EVENT_WEBHOOK_URL", ""):
        return

    from payments.tasks import deliver_payment_event

    deliver_payment_event.delay(event.to_dict())
    logger.debug(
        "Queued payment event delivery",
        extra={"event": event.event_name, "reference": event.reference},
    )
