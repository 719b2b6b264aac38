"""
Tests for the payment webhook endpoint.

Tests cover:
- Signature verification before anything is stored
- Idempotent storage of deliveries
- Task queuing and queuing failures
- HTTP method restrictions
"""

from urllib.parse import urlencode

import pytest

from payments.conftest import build_config
from payments.gateways.signatures import payfast_signature
from payments.models import Transaction, WebhookEvent
from payments.state_machines import TransactionStatus, WebhookEventStatus
from payments.webhooks.tests.conftest import paystack_body, sign_paystack
from payments.webhooks.views import payment_webhook


pytestmark = pytest.mark.usefixtures("gateway_registry")


def make_webhook_request(rf, gateway, raw_body, content_type="application/json", **headers):
    return rf.post(
        f"/api/v1/payments/webhook/{gateway}/",
        data=raw_body,
        content_type=content_type,
        **headers,
    )


def paystack_request(rf, reference, signature=None, **kwargs):
    raw = paystack_body(reference, **kwargs)
    return make_webhook_request(
        rf,
        "paystack",
        raw,
        HTTP_X_PAYSTACK_SIGNATURE=signature if signature is not None else sign_paystack(raw),
    )


# =============================================================================
# Signature Verification
# =============================================================================


class TestWebhookSignature:
    def test_missing_signature_returns_401(self, rf, db):
        raw = paystack_body("PS-1700000000-WEB001")

        response = payment_webhook(make_webhook_request(rf, "paystack", raw), gateway="paystack")

        assert response.status_code == 401
        assert not WebhookEvent.objects.exists()

    def test_invalid_signature_returns_401(self, rf, db):
        request = paystack_request(rf, "PS-1700000000-WEB001", signature="0" * 128)

        response = payment_webhook(request, gateway="paystack")

        assert response.status_code == 401
        assert b"signature" in response.content.lower()
        assert not WebhookEvent.objects.exists()

    def test_signed_with_another_secret(self, rf, db):
        raw = paystack_body("PS-1700000000-WEB001")
        request = make_webhook_request(
            rf, "paystack", raw, HTTP_X_PAYSTACK_SIGNATURE=sign_paystack(raw, "sk_live_other")
        )

        assert payment_webhook(request, gateway="paystack").status_code == 401

    def test_unknown_gateway_returns_404(self, rf, db):
        response = payment_webhook(make_webhook_request(rf, "bitpay", b"{}"), gateway="bitpay")

        assert response.status_code == 404

    def test_disabled_gateway_returns_404(self, rf, db, gateway_registry):
        gateway_registry.configs["paystack"] = build_config("paystack", enabled=False)

        response = payment_webhook(paystack_request(rf, "PS-1700000000-WEB001"), gateway="paystack")

        assert response.status_code == 404


# =============================================================================
# Event Storage and Processing
# =============================================================================


class TestWebhookProcessing:
    def test_delivery_completes_payment(self, rf, paystack_payment):
        response = payment_webhook(paystack_request(rf, paystack_payment.reference), gateway="PayStack")

        assert response.status_code == 200
        assert response.content == b"Accepted"

        event = WebhookEvent.objects.get()
        assert event.gateway == "paystack"
        assert event.event_id == "charge.success:4099260516"
        assert event.event_type == "charge.success"
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.transaction_id == paystack_payment.pk
        assert "X-Paystack-Signature" in event.headers

        txn = Transaction.objects.get(pk=paystack_payment.pk)
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.gateway_transaction_id == "4099260516"

    def test_unknown_transaction_is_acknowledged(self, rf, db):
        response = payment_webhook(paystack_request(rf, "PS-1700000000-NOPE00"), gateway="paystack")

        assert response.status_code == 200
        event = WebhookEvent.objects.get()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.transaction is None

    def test_duplicate_delivery_is_not_reprocessed(self, rf, processed_webhook_event, mocker):
        delay = mocker.patch("payments.tasks.process_webhook_event.delay")

        response = payment_webhook(
            paystack_request(rf, processed_webhook_event.payload["data"]["reference"]),
            gateway="paystack",
        )

        assert response.status_code == 200
        assert response.content == b"Already processed"
        delay.assert_not_called()
        assert WebhookEvent.objects.count() == 1

    def test_redelivery_of_unprocessed_event_is_queued_again(self, rf, pending_webhook_event, mocker):
        delay = mocker.patch("payments.tasks.process_webhook_event.delay")

        payment_webhook(
            paystack_request(rf, pending_webhook_event.payload["data"]["reference"]),
            gateway="paystack",
        )

        delay.assert_called_once_with(str(pending_webhook_event.id))
        assert WebhookEvent.objects.count() == 1

    def test_queue_failure_still_returns_200(self, rf, paystack_payment, mocker):
        mocker.patch(
            "payments.tasks.process_webhook_event.delay",
            side_effect=ConnectionError("broker unavailable"),
        )

        response = payment_webhook(paystack_request(rf, paystack_payment.reference), gateway="paystack")

        assert response.status_code == 200
        assert WebhookEvent.objects.get().status == WebhookEventStatus.PENDING
        assert Transaction.objects.get(pk=paystack_payment.pk).status == TransactionStatus.PENDING

    def test_form_encoded_itn(self, rf, pending_payment):
        data = {
            "m_payment_id": pending_payment.reference,
            "pf_payment_id": "1089251",
            "payment_status": "COMPLETE",
            "amount_gross": "100.00",
        }
        data["signature"] = payfast_signature(data, "jt7NOE43FZPn", sort_keys=True)
        request = make_webhook_request(
            rf,
            "payfast",
            urlencode(data),
            content_type="application/x-www-form-urlencoded",
        )

        response = payment_webhook(request, gateway="payfast")

        assert response.status_code == 200
        event = WebhookEvent.objects.get()
        assert event.event_id == "1089251:COMPLETE"
        assert event.event_type == "COMPLETE"
        assert Transaction.objects.get(pk=pending_payment.pk).status == TransactionStatus.COMPLETED

    def test_payfast_status_updates_are_each_applied(self, rf, pending_payment):
        def itn(payment_status):
            data = {
                "m_payment_id": pending_payment.reference,
                "pf_payment_id": "1089252",
                "payment_status": payment_status,
                "amount_gross": "100.00",
            }
            data["signature"] = payfast_signature(data, "jt7NOE43FZPn", sort_keys=True)
            request = make_webhook_request(
                rf,
                "payfast",
                urlencode(data),
                content_type="application/x-www-form-urlencoded",
            )
            return payment_webhook(request, gateway="payfast")

        first = itn("PENDING")
        second = itn("COMPLETE")

        assert (first.content, second.content) == (b"Accepted", b"Accepted")
        assert set(WebhookEvent.objects.values_list("event_id", flat=True)) == {
            "1089252:PENDING",
            "1089252:COMPLETE",
        }
        assert Transaction.objects.get(pk=pending_payment.pk).status == TransactionStatus.COMPLETED


class TestWebhookHttpMethods:
    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_only_post_is_allowed(self, rf, db, method):
        request = getattr(rf, method)("/api/v1/payments/webhook/paystack/")

        response = payment_webhook(request, gateway="paystack")

        assert response.status_code == 405
