"""
Signature helpers shared by the gateway adapters.

All comparisons go through hmac.compare_digest.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING
from urllib.parse import quote_plus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from typing import Any


def _to_bytes(value: bytes | str) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def hmac_hexdigest(secret: str, body: bytes | str, algorithm: str = "sha256") -> str:
    return hmac.new(_to_bytes(secret), _to_bytes(body), getattr(hashlib, algorithm)).hexdigest()


def secure_compare(expected: str | None, received: str | None) -> bool:
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.strip().lower(), received.strip().lower())


def verify_hmac(
    secret: str,
    body: bytes | str,
    received: str | None,
    algorithm: str = "sha256",
) -> bool:
    """True when received matches HMAC(secret, body)."""
    return secure_compare(hmac_hexdigest(secret, body, algorithm), received)


def payfast_signature(
    fields: Mapping[str, Any] | Iterable[tuple[str, Any]],
    passphrase: str | None = None,
    sort_keys: bool = False,
) -> str:
    """
    PayFast MD5 signature.

    Empty values and any existing "signature" key are dropped; values are
    stripped and urlencoded with quote_plus; the passphrase (if any) is
    appended as the last pair.

    Args:
        fields: Form fields in submission order
        passphrase: Merchant passphrase
        sort_keys: Sort by key (ITN validation) instead of keeping order
    """
    items = list(fields.items()) if hasattr(fields, "items") else list(fields)
    if sort_keys:
        items.sort(key=lambda item: item[0])

    pairs = [
        f"{key}={quote_plus(str(value).strip())}"
        for key, value in items
        if key != "signature" and value not in (None, "")
    ]
    if passphrase:
        pairs.append(f"passphrase={quote_plus(passphrase.strip())}")
    return hashlib.md5("&".join(pairs).encode("utf-8")).hexdigest()


def ozow_hash(values: Iterable[Any], private_key: str) -> str:
    """Ozow SHA512 over concatenated values plus private key, lower-cased."""
    concatenated = "".join("" if value is None else str(value) for value in values) + private_key
    return hashlib.sha512(concatenated.lower().encode("utf-8")).hexdigest()
