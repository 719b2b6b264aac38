"""
HTTP client shared by the REST-based gateway adapters.

Each adapter owns one GatewayHttpClient (composition, injected through the
constructor so tests can pass a stub). The client adds:

- default headers (User-Agent, JSON Accept/Content-Type)
- a per-request timeout
- bounded retries with exponential backoff and jitter for connection
  errors, timeouts, 429 and 5xx responses
- translation of failures into GatewayError / GatewayTimeoutError
- structured logging with timing metrics

Usage:
    client = GatewayHttpClient(
        gateway="paystack",
        base_url="https://api.paystack.co",
        headers={"Authorization": f"Bearer {secret_key}"},
    )
    body = client.get("/transaction/verify/PS-1700000000-ABC123")
"""

from __future__ import annotations

import logging
import random
import time
from typing import TYPE_CHECKING

import requests
from django.conf import settings

from payments.exceptions import GatewayError, GatewayTimeoutError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def backoff_delay(attempt: int, base: float = 0.1, max_delay: float = 5.0) -> float:
    """
    Exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds
        max_delay: Cap before jitter

    Returns:
        Delay in seconds with 0-25% jitter added

    Example:
        # base=0.1: attempt 0 -> 0.1-0.125s, attempt 1 -> 0.2-0.25s
        delay = backoff_delay(attempt=1)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def user_agent() -> str:
    return f"{getattr(settings, 'PAYMENT_USER_AGENT_NAME', 'Payment-Gateway')}/{getattr(settings, 'PAYMENT_VERSION', '1.0.0')}"


class GatewayHttpClient:
    """
    requests.Session wrapper with retry and error translation.

    Args:
        gateway: Gateway name (for errors and logs)
        base_url: Prefix for relative paths
        headers: Extra default headers
        timeout: Seconds per request
        retry_attempts: Total attempts for retryable failures (>= 1)
        retry_delay_ms: Base backoff delay
        verify_ssl: Verify TLS certificates
        session: Optional pre-built session (tests)
    """

    def __init__(
        self,
        gateway: str,
        base_url: str = "",
        headers: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay_ms: int = 100,
        verify_ssl: bool = True,
        session: requests.Session | None = None,
    ) -> None:
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay_ms = retry_delay_ms
        self.verify_ssl = verify_ssl
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "User-Agent": user_agent(),
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        if headers:
            self.session.headers.update(headers)

    # =========================================================================
    # Verbs
    # =========================================================================

    def get(self, path: str, params: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return self.request("PUT", path, json=json, **kwargs)

    def patch(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)

    # =========================================================================
    # Core
    # =========================================================================

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request and return the decoded JSON body (or text).

        Raises:
            GatewayTimeoutError: No response after all attempts; outcome unknown
            GatewayError: Connection failure or non-2xx response
        """
        url = self.url_for(path)
        kwargs.setdefault("timeout", self.timeout)
        kwargs.setdefault("verify", self.verify_ssl)
        log_context = {"gateway": self.gateway, "method": method, "url": url}

        last_error: Exception | None = None
        for attempt in range(self.retry_attempts):
            start_time = time.time()
            logger.info("Starting gateway request", extra={**log_context, "attempt": attempt + 1})
            try:
                response = self.session.request(method, url, **kwargs)
            except requests.Timeout as e:
                last_error = e
                logger.warning(
                    "Gateway request timed out",
                    extra={**log_context, "attempt": attempt + 1},
                )
            except requests.ConnectionError as e:
                last_error = e
                logger.warning(
                    "Gateway connection failed",
                    extra={**log_context, "attempt": attempt + 1},
                )
            else:
                duration_ms = (time.time() - start_time) * 1000
                logger.info(
                    "Gateway request completed",
                    extra={
                        **log_context,
                        "status_code": response.status_code,
                        "duration_ms": duration_ms,
                    },
                )
                if response.status_code in RETRYABLE_STATUS_CODES and attempt + 1 < self.retry_attempts:
                    last_error = None
                    self._sleep(attempt)
                    continue
                return self._handle_response(response)

            if attempt + 1 < self.retry_attempts:
                self._sleep(attempt)

        if isinstance(last_error, requests.Timeout):
            raise GatewayTimeoutError(
                f"{self.gateway} did not respond within {self.timeout}s; "
                "payment outcome unknown, verify before retrying",
                gateway=self.gateway,
                details={"url": url},
            ) from last_error
        raise GatewayError(
            f"Could not connect to {self.gateway}",
            error_code="GATEWAY_UNAVAILABLE",
            gateway=self.gateway,
            details={"url": url, "error": str(last_error)},
        ) from last_error

    def _sleep(self, attempt: int) -> None:
        time.sleep(backoff_delay(attempt, base=self.retry_delay_ms / 1000))

    def _handle_response(self, response: requests.Response) -> Any:
        body = self.decode(response)
        if 200 <= response.status_code < 300:
            return body

        message = self.error_message(body) or f"HTTP {response.status_code}"
        logger.error(
            "Gateway returned an error",
            extra={
                "gateway": self.gateway,
                "status_code": response.status_code,
                "error": message,
            },
        )
        raise GatewayError(
            f"{self.gateway} error: {message}",
            gateway=self.gateway,
            status_code=response.status_code,
            raw_response=body,
        )

    @staticmethod
    def decode(response: requests.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    @staticmethod
    def error_message(body: Any) -> str | None:
        if not isinstance(body, dict):
            return None
        for key in ("message", "error_description", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return value["message"]
        return None
