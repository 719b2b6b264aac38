"""
Pytest fixtures shared by the payments test packages.

Gateways are configured explicitly here instead of through environment
variables, so every test sees the same sandbox credentials. Redis is
replaced by a MagicMock for DistributedLock.

Usage:
    def test_refund(gateway_registry, completed_payment):
        result = PaymentOrchestrator().refund(completed_payment.reference)
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient

from payments.gateways.config import GatewayConfig
from payments.gateways.http import GatewayHttpClient
from payments.gateways.registry import GATEWAY_CLASSES, GatewayRegistry
from payments.gateways.tokens import DjangoCacheTokenCache
from payments.state_machines import TransactionStatus
from payments.tests.factories import (
    CompletedTransactionFactory,
    StaffUserFactory,
    SubscriptionFactory,
    TransactionFactory,
    UserFactory,
)


TRANSACTION_DEFAULTS = {
    "currency": "ZAR",
    "minimum_amount": "1.00",
    "maximum_amount": "1000000.00",
    "max_attempts": 3,
}

# No retries or backoff sleeps against stubbed HTTP clients
HTTP_DEFAULTS = {"timeout": 5, "retry_attempts": 1, "retry_delay_ms": 0}

SANDBOX_SETTINGS = {
    "payfast": {
        "merchant_id": "10000100",
        "merchant_key": "46f0cd694581a",
        "passphrase": "jt7NOE43FZPn",
        "return_url": "https://shop.example.com/payment/return",
        "cancel_url": "https://shop.example.com/payment/cancel",
        "notify_url": "https://api.example.com/api/v1/payments/webhook/payfast/",
    },
    "paystack": {"secret_key": "sk_test_paystack", "public_key": "pk_test_paystack"},
    "paypal": {"client_id": "paypal-client-id", "client_secret": "paypal-client-secret", "webhook_id": "WH-TEST-1"},
    "stripe": {
        "secret_key": "sk_test_stripe",
        "publishable_key": "pk_test_stripe",
        "webhook_secret": "whsec_test_secret",
    },
    "ozow": {"site_code": "TST-TST-001", "private_key": "ozow-private-key", "api_key": "ozow-api-key"},
    "zapper": {
        "merchant_id": "zap-merchant",
        "site_id": "zap-site",
        "api_key": "zap-api-key",
        "api_secret": "zap-api-secret",
    },
    "crypto": {"api_key": "cc-api-key", "webhook_secret": "cc-webhook-secret"},
    "eft": {
        "bank_name": "First National Bank",
        "account_name": "Payments (Pty) Ltd",
        "account_number": "62000000000",
        "branch_code": "250655",
    },
    "vodapay": {"merchant_id": "vp-merchant", "api_key": "vp-api-key", "api_secret": "vp-api-secret"},
    "snapscan": {"merchant_id": "snapcode1", "api_key": "ss-api-key", "webhook_secret": "ss-webhook-secret"},
}


def build_config(name: str, strict_signatures: bool = True, **overrides) -> GatewayConfig:
    """Sandbox GatewayConfig for one gateway, layered like the registry does."""
    return GatewayConfig.from_settings(
        name,
        TRANSACTION_DEFAULTS,
        HTTP_DEFAULTS,
        GATEWAY_CLASSES[name].default_config,
        {**SANDBOX_SETTINGS[name], **overrides},
        strict_signatures=strict_signatures,
    )


def build_gateway(name: str, http_client=None, **overrides):
    """Adapter instance with an optional stubbed HTTP client."""
    return GATEWAY_CLASSES[name](
        build_config(name, **overrides),
        http_client=http_client,
        token_cache=DjangoCacheTokenCache(),
    )


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """Redis connection used by DistributedLock; every lock is free by default."""
    redis = MagicMock()
    redis.set.return_value = True
    redis.eval.return_value = 1
    mocker.patch("payments.locks.get_redis_connection", return_value=redis)
    return redis


@pytest.fixture
def stub_http(mocker):
    """Factory for HTTP client stubs: stub_http().post.return_value = {...}."""

    def make():
        return mocker.Mock(spec=GatewayHttpClient)

    return make


@pytest.fixture
def gateway_registry(mocker):
    """
    Process-wide registry with every gateway enabled in sandbox mode.

    PaymentOrchestrator() and the views pick this registry up through
    get_registry().
    """
    configs = {name: build_config(name) for name in GATEWAY_CLASSES}
    registry = GatewayRegistry(configs, token_cache=DjangoCacheTokenCache(), default_gateway="payfast")
    mocker.patch("payments.gateways.registry._registry", registry)
    return registry


@pytest.fixture
def stub_gateway_http(gateway_registry, stub_http):
    """Replace one registered adapter's HTTP client with a stub and return it."""

    def replace(name: str):
        client = stub_http()
        gateway_registry.resolve(name).http = client
        return client

    return replace


# =============================================================================
# Users and API Clients
# =============================================================================


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    return StaffUserFactory()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


# =============================================================================
# Transactions
# =============================================================================


@pytest.fixture
def pending_payment(db, user):
    """Pending PayFast payment owned by user."""
    return TransactionFactory(user=user, customer_email=user.email)


@pytest.fixture
def completed_payment(db, user):
    """Completed R100.00 PayFast payment owned by user."""
    return CompletedTransactionFactory(user=user, customer_email=user.email)


@pytest.fixture
def completed_paystack_payment(db, user):
    return CompletedTransactionFactory(
        reference="PS-1700000000-PAY001",
        gateway="paystack",
        gateway_transaction_id="4099260516",
        currency="NGN",
        amount=Decimal("5000.00"),
        user=user,
    )


@pytest.fixture
def failed_payment(db, user):
    return TransactionFactory(
        user=user,
        status=TransactionStatus.FAILED,
        attempts=1,
        error_message="Payment declined",
    )


@pytest.fixture
def active_subscription(db, user):
    """PayStack subscription due for billing now."""
    return SubscriptionFactory(user=user, customer_email=user.email)
