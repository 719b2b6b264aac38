"""
Immutable per-gateway configuration.

A GatewayConfig is assembled once per provider by the registry from three
layers, later layers winning:

    1. settings.PAYMENT_TRANSACTION_DEFAULTS (currency, amount range, ...)
    2. the adapter's own defaults (e.g. PayFast caps amounts at 100000.00)
    3. settings.PAYMENT_GATEWAYS[name] (credentials, URLs, overrides)

Adapters never mutate their config; with_overrides() returns a copy.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any


# Keys that hold secrets or account identifiers. They are routed into
# GatewayConfig.credentials and masked in activity logs.
CREDENTIAL_KEYS = frozenset(
    {
        "merchant_id",
        "merchant_key",
        "passphrase",
        "public_key",
        "publishable_key",
        "secret_key",
        "client_id",
        "client_secret",
        "api_key",
        "api_secret",
        "webhook_secret",
        "webhook_id",
        "site_code",
        "site_id",
        "private_key",
    }
)

SECRET_KEYS = frozenset(
    {
        "merchant_key",
        "passphrase",
        "secret_key",
        "client_secret",
        "api_key",
        "api_secret",
        "webhook_secret",
        "private_key",
        "signature",
    }
)

_DECIMAL_FIELDS = ("minimum_amount", "maximum_amount")


@dataclass(frozen=True)
class GatewayConfig:
    """
    Settings for one provider.

    Attributes:
        name: Registry key (e.g. "payfast")
        enabled: Whether the gateway may be resolved for new payments
        test_mode: Selects sandbox endpoints
        currency: Default currency for requests that omit one
        supported_currencies: Overrides the adapter's currency list when set
        minimum_amount / maximum_amount: Inclusive amount range
        reference_prefix: Prefix for generated references
        timeout / retry_attempts / retry_delay_ms / verify_ssl: HTTP client
        strict_signatures: Reject callbacks whose signature is missing
        return_url / cancel_url / notify_url: Customer and webhook URLs
        error_messages: Provider error code to message
        credentials: Secrets and account identifiers
        options: Remaining provider-specific keys
    """

    name: str
    enabled: bool = True
    test_mode: bool = True
    currency: str = "ZAR"
    supported_currencies: tuple[str, ...] = ()
    minimum_amount: Decimal = Decimal("1.00")
    maximum_amount: Decimal = Decimal("1000000.00")
    reference_prefix: str = ""
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay_ms: int = 100
    verify_ssl: bool = True
    strict_signatures: bool = True
    return_url: str = ""
    cancel_url: str = ""
    notify_url: str = ""
    error_messages: Mapping[str, str] = field(default_factory=dict)
    credentials: Mapping[str, Any] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze nested mappings too
        for name in ("error_messages", "credentials", "options"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name) or {})))
        for name in _DECIMAL_FIELDS:
            object.__setattr__(self, name, Decimal(str(getattr(self, name))))
        object.__setattr__(self, "currency", (self.currency or "").upper())
        object.__setattr__(
            self,
            "supported_currencies",
            tuple(c.upper() for c in (self.supported_currencies or ())),
        )

    @classmethod
    def from_settings(
        cls,
        name: str,
        *layers: Mapping[str, Any] | None,
        strict_signatures: bool = True,
    ) -> GatewayConfig:
        """
        Build a config by merging plain dict layers (later layers win).

        Unknown keys land in options, credential keys in credentials.

        Example:
            GatewayConfig.from_settings(
                "payfast",
                settings.PAYMENT_TRANSACTION_DEFAULTS,
                PayFastGateway.default_config,
                settings.PAYMENT_GATEWAYS["payfast"],
                strict_signatures=settings.PAYMENT_STRICT_SIGNATURES,
            )
        """
        merged: dict[str, Any] = {}
        for layer in layers:
            if not layer:
                continue
            for key, value in layer.items():
                if value is None:
                    continue
                if key in ("error_messages", "options", "credentials") and key in merged:
                    merged[key] = {**merged[key], **value}
                else:
                    merged[key] = value

        field_names = {f.name for f in dataclasses.fields(cls)}
        kwargs: dict[str, Any] = {"strict_signatures": strict_signatures}
        credentials: dict[str, Any] = dict(merged.pop("credentials", {}) or {})
        options: dict[str, Any] = dict(merged.pop("options", {}) or {})

        for key, value in merged.items():
            if key in CREDENTIAL_KEYS:
                credentials[key] = value
            elif key in field_names and key != "name":
                kwargs[key] = value
            else:
                options[key] = value

        if "supported_currencies" in kwargs:
            kwargs["supported_currencies"] = tuple(kwargs["supported_currencies"])

        return cls(name=name, credentials=credentials, options=options, **kwargs)

    def credential(self, key: str, default: Any = None) -> Any:
        value = self.credentials.get(key)
        return default if value in (None, "") else value

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def get(self, key: str, default: Any = None) -> Any:
        """Look a key up across fields, credentials and options."""
        if key in self.credentials:
            return self.credential(key, default)
        if key in self.options:
            return self.options[key]
        return getattr(self, key, default)

    def missing_credentials(self, *keys: str) -> list[str]:
        return [key for key in keys if self.credential(key) is None]

    def with_overrides(self, **overrides: Any) -> GatewayConfig:
        """Return a copy with some values replaced (credentials/options merged)."""
        for key in ("credentials", "options", "error_messages"):
            if key in overrides:
                overrides[key] = {**getattr(self, key), **overrides[key]}
        return dataclasses.replace(self, **overrides)

    def masked(self) -> dict[str, Any]:
        """Config as a dict with secrets hidden, for logs and admin views."""
        return {
            "name": self.name,
            "enabled": self.enabled,
            "test_mode": self.test_mode,
            "currency": self.currency,
            "minimum_amount": str(self.minimum_amount),
            "maximum_amount": str(self.maximum_amount),
            "reference_prefix": self.reference_prefix,
            "credentials": {
                key: mask_value(value) if key in SECRET_KEYS else value
                for key, value in self.credentials.items()
            },
        }


def mask_value(value: Any) -> str:
    text = str(value or "")
    if len(text) <= 4:
        return "****"
    return f"{text[:2]}****{text[-2:]}"


def mask_sensitive(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Copy of data with secret-looking keys masked (one level deep)."""
    if not data:
        return {}
    return {
        key: mask_value(value) if key in SECRET_KEYS else value
        for key, value in data.items()
    }
