"""
Webhook handling for provider notifications.

Deliveries are stored idempotently, signature-checked and processed
asynchronously via Celery.

Usage:
    # In urls.py
    from payments.webhooks.views import payment_webhook

    urlpatterns = [
        path("webhook/<str:gateway>/", payment_webhook, name="payment_webhook"),
    ]
"""

from payments.webhooks.dispatcher import WebhookDispatcher, event_id_for
from payments.webhooks.views import payment_webhook

__all__ = [
    "WebhookDispatcher",
    "event_id_for",
    "payment_webhook",
]
