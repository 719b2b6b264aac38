"""
Tests for the payments API views.

Gateways come from the gateway_registry fixture; providers with HTTP APIs
are stubbed with stub_gateway_http.
"""

from decimal import Decimal
from urllib.parse import urlencode

import pytest
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from payments.conftest import build_config
from payments.exceptions import GatewayTimeoutError
from payments.gateways.registry import GATEWAY_CLASSES
from payments.gateways.signatures import payfast_signature
from payments.locks import DistributedLock
from payments.models import Transaction
from payments.state_machines import TransactionStatus, TransactionType
from payments.tests.factories import CompletedTransactionFactory, TransactionFactory, UserFactory


pytestmark = pytest.mark.usefixtures("gateway_registry")


@pytest.fixture
def stranger_client(db):
    """Authenticated as a user who owns none of the fixture payments."""
    client = APIClient()
    client.force_authenticate(user=UserFactory(username="stranger"))
    return client


def initialize_body(**overrides):
    body = {
        "gateway": "payfast",
        "amount": "150.00",
        "description": "Order #1001",
        "customer_email": "thandi@example.com",
        "customer_name": "Thandi Nkosi",
    }
    body.update(overrides)
    return body


# =============================================================================
# Initialize
# =============================================================================


class TestInitializePayment:
    url = "/api/v1/payments/initialize/"

    def test_anonymous_checkout(self, api_client, db):
        response = api_client.post(self.url, initialize_body(), format="json")

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()["data"]
        assert data["payment_url"] == "https://sandbox.payfast.co.za/eng/process"
        assert data["method"] == "POST"
        assert data["payment_data"]["amount"] == "150.00"
        assert data["transaction"]["status"] == TransactionStatus.PENDING

        txn = Transaction.objects.get(reference=data["reference"])
        assert txn.user is None
        assert txn.customer_name == "Thandi Nkosi"

    def test_authenticated_user_owns_transaction(self, authenticated_client, user):
        response = authenticated_client.post(self.url, initialize_body(), format="json")

        txn = Transaction.objects.get(reference=response.json()["data"]["reference"])
        assert txn.user == user

    def test_eft_returns_instructions(self, api_client, db):
        response = api_client.post(self.url, initialize_body(gateway="eft"), format="json")

        data = response.json()["data"]
        assert data["redirect_required"] is False
        assert data["instructions"]["bank_details"]["branch_code"] == "250655"
        assert data["expires_at"] is not None

    def test_invalid_body(self, api_client, db):
        response = api_client.post(self.url, {"amount": "-1", "description": ""}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "amount" in response.json()
        assert not Transaction.objects.exists()

    def test_amount_rejected_by_gateway(self, api_client, db):
        response = api_client.post(self.url, initialize_body(amount="100000.01"), format="json")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "AMOUNT_OUT_OF_RANGE"
        assert "amount" in body["errors"]

    def test_missing_required_customer_field(self, api_client, db):
        response = api_client.post(self.url, initialize_body(customer_email=""), format="json")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["errors"] == {"customer.email": ["The customer.email field is required"]}

    def test_provider_timeout(self, api_client, db, stub_gateway_http):
        http = stub_gateway_http("paystack")
        http.post.side_effect = GatewayTimeoutError("paystack request timed out", gateway="paystack")

        response = api_client.post(self.url, initialize_body(gateway="paystack", currency="NGN"), format="json")

        assert response.status_code == status.HTTP_504_GATEWAY_TIMEOUT
        assert response.json()["error_code"] == "GATEWAY_TIMEOUT"


# =============================================================================
# Verify and Status
# =============================================================================


class TestVerifyAndStatus:
    def test_verify(self, api_client, db, stub_gateway_http):
        http = stub_gateway_http("paystack")
        http.get.return_value = {
            "data": {"id": 4099260516, "status": "failed", "amount": 500000, "gateway_response": "Declined"}
        }
        txn = TransactionFactory(reference="PS-1700000000-VIEW01", gateway="paystack", currency="NGN")

        response = api_client.get(reverse("payments:verify", args=[txn.reference]))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["changed"] is True
        assert data["transaction"]["status"] == TransactionStatus.FAILED
        assert data["transaction"]["attempts"] == 1

    def test_verify_post_for_webhook_only_gateway(self, api_client, pending_payment):
        response = api_client.post(reverse("payments:verify", args=[pending_payment.reference]))

        data = response.json()["data"]
        assert data["awaiting_webhook"] is True
        assert data["changed"] is False

    def test_status(self, api_client, completed_payment):
        response = api_client.get(reverse("payments:status", args=[completed_payment.reference]))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["status"] == TransactionStatus.COMPLETED

    def test_status_unknown_reference(self, api_client, db):
        response = api_client.get(reverse("payments:status", args=["PF-missing"]))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {
            "success": False,
            "error": "Transaction 'PF-missing' not found",
            "error_code": "TRANSACTION_NOT_FOUND",
        }


# =============================================================================
# Callback
# =============================================================================


class TestCallback:
    url = "/api/v1/payments/callback/payfast/"

    def itn_body(self, reference, **overrides):
        data = {
            "m_payment_id": reference,
            "pf_payment_id": "1089250",
            "payment_status": "COMPLETE",
            "amount_gross": "100.00",
            **overrides,
        }
        data["signature"] = payfast_signature(data, "jt7NOE43FZPn", sort_keys=True)
        return urlencode(data)

    def test_completes_payment(self, api_client, pending_payment):
        response = api_client.post(
            self.url,
            self.itn_body(pending_payment.reference),
            content_type="application/x-www-form-urlencoded",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == {
            "acknowledged": True,
            "reference": pending_payment.reference,
            "status": TransactionStatus.COMPLETED,
            "changed": True,
        }

    def test_unknown_reference_is_acknowledged(self, api_client, db):
        response = api_client.post(
            self.url,
            self.itn_body("PF-1700000000-ZZZZZZ"),
            content_type="application/x-www-form-urlencoded",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["reference"] is None

    def test_invalid_signature(self, api_client, pending_payment):
        body = self.itn_body(pending_payment.reference).replace("amount_gross=100.00", "amount_gross=1.00")

        response = api_client.post(self.url, body, content_type="application/x-www-form-urlencoded")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "INVALID_SIGNATURE"
        assert Transaction.objects.get(pk=pending_payment.pk).status == TransactionStatus.PENDING


# =============================================================================
# Refund and Retry
# =============================================================================


class TestRefund:
    def url(self, reference):
        return reverse("payments:refund", args=[reference])

    def test_requires_authentication(self, api_client, completed_payment):
        response = api_client.post(self.url(completed_payment.reference), {}, format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_manual_refund(self, authenticated_client, completed_payment):
        response = authenticated_client.post(
            self.url(completed_payment.reference),
            {"amount": "30.00", "reason": "Customer request"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["requires_manual_action"] is True
        assert data["manual_action"]["action"] == "manual_refund"
        assert data["transaction"]["status"] == TransactionStatus.PARTIALLY_REFUNDED
        assert data["transaction"]["refund_amount"] == "30.00"
        assert data["refund"]["transaction_type"] == TransactionType.REFUND
        assert data["refund"]["parent_reference"] == completed_payment.reference

    def test_amount_above_balance(self, authenticated_client, completed_payment):
        response = authenticated_client.post(
            self.url(completed_payment.reference),
            {"amount": "100.01"},
            format="json",
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error_code"] == "REFUND_AMOUNT_EXCEEDED"

    def test_unknown_reference(self, authenticated_client):
        response = authenticated_client.post(self.url("PF-missing"), {}, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_refund_in_progress(self, authenticated_client, completed_payment, mock_redis, mocker):
        mock_redis.set.return_value = False
        mocker.patch(
            "payments.services.payment_orchestrator.refund_lock",
            side_effect=lambda reference: DistributedLock(f"refund:{reference}", blocking=False),
        )

        response = authenticated_client.post(self.url(completed_payment.reference), {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "LOCK_ACQUISITION_FAILED"

    def test_other_users_payment_is_forbidden(self, stranger_client, completed_payment):
        response = stranger_client.post(self.url(completed_payment.reference), {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        parent = Transaction.objects.get(pk=completed_payment.pk)
        assert parent.status == TransactionStatus.COMPLETED
        assert not Transaction.objects.filter(parent_transaction=parent).exists()

    def test_staff_may_refund_any_payment(self, staff_client, completed_payment):
        response = staff_client.post(self.url(completed_payment.reference), {"amount": "10.00"}, format="json")

        assert response.status_code == status.HTTP_200_OK

    def test_payer_email_grants_access(self, db):
        payer = UserFactory(username="payer")
        txn = CompletedTransactionFactory(customer_email=payer.email.upper())
        client = APIClient()
        client.force_authenticate(user=payer)

        response = client.post(self.url(txn.reference), {"amount": "10.00"}, format="json")

        assert response.status_code == status.HTTP_200_OK


class TestRetry:
    def test_failed_payment(self, authenticated_client, failed_payment):
        response = authenticated_client.post(reverse("payments:retry", args=[failed_payment.reference]))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["retry_at"] is not None

    def test_completed_payment(self, authenticated_client, completed_payment):
        response = authenticated_client.post(reverse("payments:retry", args=[completed_payment.reference]))

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error_code"] == "RETRY_NOT_ALLOWED"

    def test_other_users_payment_is_forbidden(self, stranger_client, failed_payment):
        response = stranger_client.post(reverse("payments:retry", args=[failed_payment.reference]))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert Transaction.objects.get(pk=failed_payment.pk).retry_at is None


# =============================================================================
# Gateways and History
# =============================================================================


class TestGatewayList:
    def test_lists_enabled_gateways(self, api_client):
        response = api_client.get(reverse("payments:gateways"))

        assert response.status_code == status.HTTP_200_OK
        names = {gateway["name"] for gateway in response.json()["data"]}
        assert names == set(GATEWAY_CLASSES)

    def test_disabled_gateway_only_with_all(self, api_client, gateway_registry):
        gateway_registry.configs["zapper"] = build_config("zapper", enabled=False)

        enabled = {g["name"] for g in api_client.get(reverse("payments:gateways")).json()["data"]}
        everything = {g["name"] for g in api_client.get(reverse("payments:gateways"), {"all": "true"}).json()["data"]}

        assert "zapper" not in enabled
        assert "zapper" in everything


class TestTransactionHistory:
    url = "/api/v1/payments/history/"

    def test_requires_authentication(self, api_client, db):
        assert api_client.get(self.url).status_code == status.HTTP_401_UNAUTHORIZED

    def test_user_sees_own_transactions(self, authenticated_client, user):
        owned = TransactionFactory(user=user)
        by_email = TransactionFactory(customer_email=user.email.upper())
        TransactionFactory()

        response = authenticated_client.get(self.url)

        body = response.json()
        assert body["count"] == 2
        assert {item["reference"] for item in body["results"]} == {owned.reference, by_email.reference}

    def test_staff_sees_everything(self, staff_client, db):
        TransactionFactory.create_batch(3)

        assert staff_client.get(self.url).json()["count"] == 3

    def test_filters(self, staff_client, db):
        CompletedTransactionFactory(gateway="ozow", amount=Decimal("10.00"))
        TransactionFactory(gateway="ozow")
        CompletedTransactionFactory()

        response = staff_client.get(self.url, {"gateway": "ozow", "status": "completed"})

        results = response.json()["results"]
        assert len(results) == 1
        assert results[0]["amount"] == "10.00"
