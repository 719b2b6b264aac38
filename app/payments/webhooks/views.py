"""
Webhook endpoint for provider notifications.

The view:
1. Verifies the signature synchronously (401 on failure)
2. Stores the delivery as a WebhookEvent (idempotent per gateway + event id)
3. Answers 200 without reprocessing if the event was already processed
4. Queues process_webhook_event and returns immediately

Providers get a 200 even when the transaction turns out to be unknown,
so they stop redelivering.

Usage:
    # In urls.py
    path("webhook/<str:gateway>/", payment_webhook, name="payment_webhook")
"""

from __future__ import annotations

import json
import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.gateways.types import CallbackPayload
from payments.webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

# error_code -> HTTP status for rejected deliveries
REJECTION_STATUS = {
    "INVALID_SIGNATURE": 401,
    "UNKNOWN_GATEWAY": 404,
    "GATEWAY_DISABLED": 404,
}


def payload_from_request(request: HttpRequest) -> CallbackPayload:
    """Build a CallbackPayload from a JSON or form-encoded request."""
    raw_body = request.body
    data: dict = {}
    if request.content_type == "application/json" or raw_body[:1] in (b"{", b"["):
        try:
            parsed = json.loads(raw_body or b"{}")
        except ValueError:
            parsed = {}
        data = parsed if isinstance(parsed, dict) else {"items": parsed}
    else:
        data = request.POST.dict()
    return CallbackPayload(data=data, raw_body=raw_body, headers=dict(request.headers))


@csrf_exempt
@require_POST
def payment_webhook(request: HttpRequest, gateway: str) -> HttpResponse:
    """
    Receive and queue a provider webhook.

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 401: Signature missing or invalid
        - 404: Gateway unknown or disabled
    """
    gateway = gateway.lower()
    payload = payload_from_request(request)
    dispatcher = WebhookDispatcher()

    verification = dispatcher.verify(gateway, payload)
    if not verification.success:
        status_code = REJECTION_STATUS.get(verification.error_code or "", 400)
        logger.warning(
            "Webhook rejected",
            extra={"gateway": gateway, "error_code": verification.error_code, "status_code": status_code},
        )
        return HttpResponse(verification.error or "Rejected", status=status_code)

    webhook_event, created = dispatcher.record(gateway, payload)
    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"gateway": gateway, "event_id": webhook_event.event_id},
        )
        return HttpResponse("Already processed", status=200)

    logger.info(
        "Received payment webhook",
        extra={
            "gateway": gateway,
            "event_id": webhook_event.event_id,
            "event_type": webhook_event.event_type,
            "created": created,
        },
    )

    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(str(webhook_event.id))
    except Exception as e:
        # Event stays PENDING; the provider redelivery queues it again
        logger.error(
            f"Failed to queue webhook: {type(e).__name__}",
            extra={"gateway": gateway, "webhook_event_id": str(webhook_event.id)},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)
