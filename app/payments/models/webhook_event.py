"""
WebhookEvent model for idempotent provider callback processing.

Every inbound provider notification is stored before it is processed,
so duplicate deliveries can be recognised and failed ones retried.

Usage:
    event, created = WebhookEvent.objects.get_or_create(
        gateway="paystack",
        event_id=event_id,
        defaults={"event_type": "charge.success", "payload": payload},
    )
    if not created and event.is_processed:
        return HttpResponse(status=200)  # duplicate
"""

from __future__ import annotations

import hashlib

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import GatewayCode, WebhookEventStatus


MAX_WEBHOOK_RETRIES = 5


def fingerprint(raw_body: bytes | str) -> str:
    """Stable event id for providers that do not send one."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode()
    return hashlib.sha256(raw_body).hexdigest()


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks provider webhook deliveries.

    Processing Flow:
        1. Webhook arrives at /webhook/<gateway>/
        2. Verify signature; reject with 401 on mismatch
        3. Insert/get WebhookEvent by (gateway, event_id)
        4. If exists and PROCESSED -> return 200 (duplicate)
        5. Queue process_webhook_event; task dispatches to the gateway
        6. Set status to PROCESSED or FAILED

    Note:
        Idempotency is enforced by the (gateway, event_id) unique constraint.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    gateway = models.CharField(
        max_length=20,
        choices=GatewayCode.choices,
        db_index=True,
        help_text="Gateway that sent the notification",
    )

    event_id = models.CharField(
        max_length=255,
        help_text="Provider event id, or SHA-256 of the raw body",
    )

    event_type = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
        help_text="Provider event type (e.g. 'charge.success', 'COMPLETE')",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        default=dict,
        help_text="Parsed webhook payload (JSON body or form fields)",
    )

    raw_body = models.TextField(
        blank=True,
        default="",
        help_text="Raw request body, needed to re-check HMAC signatures",
    )

    headers = models.JSONField(
        default=dict,
        blank=True,
        help_text="Signature-relevant request headers",
    )

    transaction = models.ForeignKey(
        "payments.Transaction",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_events",
        help_text="Transaction matched while processing",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        constraints = [
            models.UniqueConstraint(
                fields=["gateway", "event_id"],
                name="webhook_event_unique_per_gateway",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="payments_we_status_5a0c1d_idx"),
            models.Index(fields=["status", "retry_count"], name="payments_we_status_e61b9f_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.gateway}, {self.event_id[:16]}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        return self.is_failed and self.retry_count < MAX_WEBHOOK_RETRIES

    # Helpers below do not save; the caller saves.

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
