"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing stored provider webhook events
- Retrying failed webhook events and resetting stuck ones
- Recurring subscription billing (hourly via celery-beat)
- Delivering PaymentCompleted / PaymentFailed events to an outbound URL

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))

    # Run recurring billing now (normally scheduled by celery-beat)
    from payments.tasks import process_recurring_payments
    process_recurring_payments.delay(dry_run=True, gateway="paystack")
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

import requests
from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.exceptions import LockAcquisitionError
from payments.locks import recurring_batch_lock
from payments.models import WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
EVENT_DELIVERY_TIMEOUT = 10
EVENT_DELIVERY_MAX_RETRIES = 5

# Callback failures that retrying will not fix
NON_RETRYABLE_ERROR_CODES = frozenset(
    {
        "INVALID_SIGNATURE",
        "UNKNOWN_GATEWAY",
        "GATEWAY_DISABLED",
        "UNSUPPORTED_OPERATION",
        "ALREADY_PROCESSED",
    }
)


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(requests.RequestException,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored webhook event.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with processing result status
    """
    from payments.webhooks.dispatcher import WebhookDispatcher

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={"webhook_event_id": str(webhook_event_id), "event_id": webhook_event.event_id},
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    result = WebhookDispatcher().process_event(webhook_event)
    if result.success:
        logger.info(
            "Webhook processed successfully",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "gateway": webhook_event.gateway,
                "matched": result.data.transaction is not None,
            },
        )
        return {
            "status": "processed",
            "webhook_event_id": str(webhook_event_id),
            "transaction": result.data.transaction.reference if result.data.transaction else None,
        }

    logger.warning(
        f"Webhook processing failed: {result.error}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "gateway": webhook_event.gateway,
            "error_code": result.error_code,
        },
    )
    if result.error_code in NON_RETRYABLE_ERROR_CODES:
        # Exhaust retries so retry_failed_webhook_events leaves it alone
        webhook_event.retry_count = MAX_WEBHOOK_RETRIES
        webhook_event.save(update_fields=["retry_count", "updated_at"])
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": result.error,
        "error_code": result.error_code,
    }


@shared_task
def retry_failed_webhook_events() -> dict:
    """
    Re-queue failed webhook events that have retries left.

    Scheduled via celery-beat. Events stuck in PROCESSING longer than
    STUCK_PROCESSING_THRESHOLD_MINUTES are reset to FAILED first.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    reset_count = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    ).update(status=WebhookEventStatus.FAILED, error_message="Processing timed out - reset for retry")
    if reset_count:
        logger.warning("Reset stuck webhooks", extra={"reset_count": reset_count})

    failed = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:100]

    queued_count = 0
    for webhook in failed:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count, "reset_count": reset_count},
    )
    return {"queued_count": queued_count, "reset_count": reset_count}


# =============================================================================
# Recurring Billing
# =============================================================================


@shared_task
def process_recurring_payments(
    dry_run: bool = False,
    force: bool = False,
    gateway: str | None = None,
    limit: int | None = None,
    retry_failed: bool = True,
) -> dict:
    """
    Bill due subscriptions.

    Runs hourly from the celery-beat schedule installed by migration
    0002_add_recurring_schedule. Only one run executes at a time; an
    overlapping run returns status "locked".
    """
    from payments.services import RecurringProcessor

    lock = recurring_batch_lock()
    try:
        lock.acquire()
    except LockAcquisitionError:
        logger.info("Recurring billing already running, skipping")
        return {"status": "locked"}

    try:
        report = RecurringProcessor(
            dry_run=dry_run,
            force=force,
            gateway=gateway,
            limit=limit,
            retry_failed=retry_failed,
        ).run()
    finally:
        lock.release()

    return {"status": "completed", **report.to_dict()}


# =============================================================================
# Outbound Event Delivery
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(requests.RequestException,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": EVENT_DELIVERY_MAX_RETRIES},
)
def deliver_payment_event(self, event: dict) -> dict:
    """
    POST a payment event to PAYMENT_EVENT_WEBHOOK_URL.

    Args:
        event: PaymentEvent.to_dict() output

    Returns:
        Dict with delivery status ("skipped" when no URL is configured)
    """
    url = getattr(settings, "PAYMENT_EVENT_WEBHOOK_URL", "")
    if not url:
        return {"status": "skipped", "event": event.get("event")}

    response = requests.post(
        url,
        json=event,
        timeout=EVENT_DELIVERY_TIMEOUT,
        headers={"X-Payment-Event": event.get("event", "")},
    )
    response.raise_for_status()

    logger.info(
        "Payment event delivered",
        extra={
            "event": event.get("event"),
            "reference": event.get("reference"),
            "status_code": response.status_code,
            "attempt": self.request.retries + 1,
        },
    )
    return {"status": "delivered", "event": event.get("event"), "status_code": response.status_code}
