"""
Payment gateway adapters.

Every provider is an AbstractGateway subclass speaking the typed
request/result vocabulary in payments.gateways.types. The registry builds
one configured instance per provider.
"""

from payments.gateways.base import AbstractGateway, PaymentGateway
from payments.gateways.config import GatewayConfig
from payments.gateways.registry import GATEWAY_CLASSES, GatewayRegistry, get_registry, reset_registry
from payments.gateways.types import (
    CallbackPayload,
    CallbackResult,
    CustomerDetails,
    InitResult,
    ManualActionRequired,
    PaymentRequest,
    RefundOutcome,
    RefundResult,
    SubscriptionResult,
    SubscriptionTerms,
    VerifyResult,
)

__all__ = [
    "AbstractGateway",
    "CallbackPayload",
    "CallbackResult",
    "CustomerDetails",
    "GATEWAY_CLASSES",
    "GatewayConfig",
    "GatewayRegistry",
    "InitResult",
    "ManualActionRequired",
    "PaymentGateway",
    "PaymentRequest",
    "RefundOutcome",
    "RefundResult",
    "SubscriptionResult",
    "SubscriptionTerms",
    "VerifyResult",
    "get_registry",
    "reset_registry",
]
