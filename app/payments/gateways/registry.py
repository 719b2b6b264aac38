"""
Gateway registry.

Maps provider codes to adapter classes and hands out one configured
adapter instance per code. Configs are built from Django settings by
from_settings(); tests pass explicit GatewayConfig objects.

Usage:
    registry = GatewayRegistry.from_settings()
    gateway = registry.resolve("payfast")
    result = gateway.initialize_payment(request)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from django.conf import settings

from payments.exceptions import GatewayDisabledError, UnknownGatewayError
from payments.gateways.config import GatewayConfig
from payments.gateways.crypto import CryptoGateway
from payments.gateways.eft import EftGateway
from payments.gateways.ozow import OzowGateway
from payments.gateways.payfast import PayFastGateway
from payments.gateways.paypal import PayPalGateway
from payments.gateways.paystack import PayStackGateway
from payments.gateways.snapscan import SnapScanGateway
from payments.gateways.stripe_gateway import StripeGateway
from payments.gateways.vodapay import VodaPayGateway
from payments.gateways.zapper import ZapperGateway

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

    from payments.gateways.base import AbstractGateway
    from payments.gateways.tokens import TokenCache

logger = logging.getLogger(__name__)


GATEWAY_CLASSES: dict[str, type[AbstractGateway]] = {
    cls.name: cls
    for cls in (
        PayFastGateway,
        PayStackGateway,
        PayPalGateway,
        StripeGateway,
        OzowGateway,
        ZapperGateway,
        CryptoGateway,
        EftGateway,
        VodaPayGateway,
        SnapScanGateway,
    )
}


class GatewayRegistry:
    """
    Registry of configured payment gateways.

    Args:
        configs: GatewayConfig per gateway code
        token_cache: Shared TokenCache injected into every adapter
        default_gateway: Code used when a caller does not name one
    """

    def __init__(
        self,
        configs: Mapping[str, GatewayConfig],
        token_cache: TokenCache | None = None,
        default_gateway: str | None = None,
        gateway_classes: Mapping[str, type[AbstractGateway]] | None = None,
    ) -> None:
        self.gateway_classes = dict(gateway_classes or GATEWAY_CLASSES)
        self.configs = dict(configs)
        self.token_cache = token_cache
        self.default_gateway = default_gateway or next(iter(self.configs), None)
        self._instances: dict[str, AbstractGateway] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, token_cache: TokenCache | None = None) -> GatewayRegistry:
        """
        Build configs for every known gateway from Django settings.

        Layers: PAYMENT_TRANSACTION_DEFAULTS, adapter defaults,
        PAYMENT_GATEWAYS[code]. Gateways missing from PAYMENT_GATEWAYS are
        registered but disabled.
        """
        defaults = getattr(settings, "PAYMENT_TRANSACTION_DEFAULTS", {})
        gateway_settings = getattr(settings, "PAYMENT_GATEWAYS", {})
        strict = getattr(settings, "PAYMENT_STRICT_SIGNATURES", True)
        http_defaults = {
            "timeout": getattr(settings, "PAYMENT_HTTP_TIMEOUT", None),
            "retry_attempts": getattr(settings, "PAYMENT_HTTP_RETRY_ATTEMPTS", None),
            "retry_delay_ms": getattr(settings, "PAYMENT_HTTP_RETRY_DELAY_MS", None),
        }

        configs = {}
        for name, gateway_class in GATEWAY_CLASSES.items():
            overrides = gateway_settings.get(name)
            configs[name] = GatewayConfig.from_settings(
                name,
                defaults,
                http_defaults,
                gateway_class.default_config,
                overrides if overrides is not None else {"enabled": False},
                strict_signatures=strict,
            )
        return cls(
            configs,
            token_cache=token_cache,
            default_gateway=getattr(settings, "PAYMENT_DEFAULT_GATEWAY", None),
        )

    # =========================================================================
    # Lookup
    # =========================================================================

    def names(self) -> list[str]:
        return [name for name in self.gateway_classes if name in self.configs]

    def get_config(self, name: str) -> GatewayConfig:
        if name not in self.gateway_classes or name not in self.configs:
            raise UnknownGatewayError(
                f"Payment gateway '{name}' is not registered",
                details={"gateway": name, "available": self.names()},
            )
        return self.configs[name]

    def resolve(self, name: str | None = None, require_enabled: bool = False) -> AbstractGateway:
        """
        Return the adapter instance for a gateway code.

        Raises:
            UnknownGatewayError: Code is not registered
            GatewayDisabledError: require_enabled and the gateway is off
        """
        name = (name or self.default_gateway or "").lower()
        config = self.get_config(name)
        if require_enabled and not config.enabled:
            raise GatewayDisabledError(
                f"Payment gateway '{name}' is disabled",
                details={"gateway": name},
            )

        instance = self._instances.get(name)
        if instance is None:
            with self._lock:
                instance = self._instances.get(name)
                if instance is None:
                    instance = self.gateway_classes[name](config, token_cache=self.token_cache)
                    self._instances[name] = instance
                    logger.debug("Gateway instantiated", extra={"gateway": name})
        return instance

    def is_available(self, name: str) -> bool:
        config = self.configs.get(name)
        return bool(config and config.enabled and name in self.gateway_classes)

    def list_available(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "name": name,
                "display_name": self.gateway_classes[name].display_name,
                "config": self.configs[name],
                "instance": self.resolve(name),
            }
            for name in self.names()
            if self.is_available(name)
        }

    # =========================================================================
    # Supplements
    # =========================================================================

    def all_supported_currencies(self) -> list[str]:
        currencies: set[str] = set()
        for name in self.names():
            if self.is_available(name):
                currencies.update(self.resolve(name).get_supported_currencies())
        return sorted(currencies)

    def gateways_for_currency(self, currency: str) -> list[str]:
        return [
            name
            for name in self.names()
            if self.is_available(name) and self.resolve(name).supports_currency(currency)
        ]

    def statistics(self) -> dict[str, Any]:
        names = self.names()
        enabled = [name for name in names if self.is_available(name)]
        return {
            "total": len(names),
            "enabled": len(enabled),
            "disabled": len(names) - len(enabled),
            "test_mode": sum(1 for name in enabled if self.configs[name].test_mode),
            "default_gateway": self.default_gateway,
            "currencies": self.all_supported_currencies(),
        }

    def with_config(self, name: str, **overrides: Any) -> AbstractGateway:
        """Fresh adapter with config overrides; the cached instance is untouched."""
        config = self.get_config(name).with_overrides(**overrides)
        return self.gateway_classes[name](config, token_cache=self.token_cache)

    def reset(self) -> None:
        with self._lock:
            self._instances.clear()


_registry: GatewayRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> GatewayRegistry:
    """Process-wide registry built from settings on first use."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = GatewayRegistry.from_settings()
    return _registry


def reset_registry() -> None:
    global _registry
    with _registry_lock:
        _registry = None
