"""
Webhook dispatcher: routes stored provider notifications to the orchestrator.

Related files:
    - views.py: Receives deliveries and stores WebhookEvent records
    - ../tasks.py: process_webhook_event calls process_event()
    - ../services/payment_orchestrator.py: process_callback

Usage:
    dispatcher = WebhookDispatcher()
    result = dispatcher.dispatch("paystack", payload)
    if not result.success and result.error_code == "INVALID_SIGNATURE":
        ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import BaseService, ServiceResult

from payments.exceptions import PaymentError
from payments.gateways.types import CallbackPayload
from payments.models import WebhookEvent
from payments.models.webhook_event import fingerprint
from payments.services import PaymentOrchestrator
from payments.state_machines import WebhookEventStatus

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

    from payments.services import CallbackOutcome


logger = logging.getLogger(__name__)


# Where each provider puts a unique event id in its payload
EVENT_ID_PATHS: dict[str, tuple[tuple[str, ...], ...]] = {
    "stripe": (("id",),),
    "paypal": (("id",),),
    "crypto": (("event", "id"), ("id",)),
    "paystack": (("data", "id"),),
    "payfast": (("pf_payment_id",),),
    "ozow": (("TransactionId",),),
    "zapper": (("eventId",), ("id",)),
    "vodapay": (("eventId",),),
}

# Providers that reuse one id for every status notification of a payment
EVENT_ID_STATUS_KEYS = {
    "payfast": "payment_status",
    "ozow": "Status",
}

EVENT_TYPE_KEYS = ("type", "event_type", "eventType", "event", "payment_status", "Status", "status")

# Headers kept with a stored event; others are dropped
STORED_HEADER_PREFIXES = ("x-", "paypal-", "stripe-", "authorization", "content-type")


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def event_id_for(gateway_name: str, payload: CallbackPayload) -> str:
    """Provider event id, or a SHA-256 fingerprint of the raw body."""
    data = dict(payload.data) if isinstance(payload.data, dict) else {}
    for path in EVENT_ID_PATHS.get(gateway_name, ()):
        value = _dig(data, path)
        if value:
            if gateway_name == "paystack":
                return f"{data.get('event', '')}:{value}"
            status_key = EVENT_ID_STATUS_KEYS.get(gateway_name)
            if status_key and data.get(status_key):
                return f"{value}:{data[status_key]}"
            return str(value)
    return fingerprint(payload.raw_body or repr(sorted(data.items())))


def event_type_for(payload: CallbackPayload) -> str:
    for key in EVENT_TYPE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value[:100]
        if isinstance(value, dict) and isinstance(value.get("type"), str):
            return value["type"][:100]
    return ""


def stored_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        key: value
        for key, value in headers.items()
        if key.lower().startswith(STORED_HEADER_PREFIXES)
    }


class WebhookDispatcher(BaseService):
    """
    Stores, verifies and dispatches provider webhooks.

    Args:
        orchestrator: Orchestrator used to apply callbacks
    """

    def __init__(self, orchestrator: PaymentOrchestrator | None = None) -> None:
        self.orchestrator = orchestrator or PaymentOrchestrator()

    @property
    def registry(self):
        return self.orchestrator.registry

    def dispatch(self, gateway_name: str, payload: CallbackPayload) -> ServiceResult[CallbackOutcome]:
        """
        Resolve the gateway and apply the callback.

        The adapter validates the signature; InvalidSignatureError comes
        back as a failure with error_code INVALID_SIGNATURE and is never
        acknowledged.
        """
        self.get_logger().info(
            "Dispatching webhook",
            extra={"gateway": gateway_name, "event_type": event_type_for(payload)},
        )
        return self.orchestrator.process_callback(gateway_name, payload)

    def verify(self, gateway_name: str, payload: CallbackPayload) -> ServiceResult[None]:
        """Check the signature without processing the payload."""
        try:
            gateway = self.registry.resolve(gateway_name, require_enabled=True)
            gateway.verify_signature(payload)
        except PaymentError as e:
            return self.handle_exception(e, "Webhook verification failed", log_level=logging.WARNING)
        return ServiceResult.success(None)

    def record(self, gateway_name: str, payload: CallbackPayload) -> tuple[WebhookEvent, bool]:
        """Insert or fetch the WebhookEvent for a delivery (idempotent)."""
        event_id = event_id_for(gateway_name, payload)
        defaults = {
            "event_type": event_type_for(payload),
            "payload": dict(payload.data),
            "raw_body": payload.raw_body.decode("utf-8", errors="replace"),
            "headers": stored_headers(payload.headers),
            "status": WebhookEventStatus.PENDING,
        }
        try:
            with transaction.atomic():
                return WebhookEvent.objects.get_or_create(gateway=gateway_name, event_id=event_id, defaults=defaults)
        except IntegrityError:
            # Concurrent delivery inserted the same event first
            return WebhookEvent.objects.get(gateway=gateway_name, event_id=event_id), False

    @staticmethod
    def payload_for(event: WebhookEvent) -> CallbackPayload:
        return CallbackPayload(
            data=event.payload or {},
            raw_body=(event.raw_body or "").encode("utf-8"),
            headers=event.headers or {},
        )

    def process_event(self, event: WebhookEvent) -> ServiceResult[CallbackOutcome]:
        """
        Process a stored event and record the outcome on it.

        Called by the process_webhook_event task. Already processed events
        are not dispatched again.
        """
        if event.is_processed:
            return ServiceResult.failure("Webhook event already processed", error_code="ALREADY_PROCESSED")

        event.mark_processing()
        event.save(update_fields=["status", "retry_count", "updated_at"])

        result = self.dispatch(event.gateway, self.payload_for(event))
        if result.success:
            event.mark_processed()
            event.transaction = result.data.transaction
            event.save(update_fields=["status", "processed_at", "error_message", "transaction", "updated_at"])
        else:
            event.mark_failed(result.error or "Webhook processing failed")
            event.save(update_fields=["status", "error_message", "updated_at"])
        return result
