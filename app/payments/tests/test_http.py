"""
Tests for GatewayHttpClient retry and error translation.
"""

from unittest.mock import MagicMock

import pytest
import requests

from payments.exceptions import GatewayError, GatewayTimeoutError
from payments.gateways.http import GatewayHttpClient, backoff_delay


def make_response(status_code=200, body=b"{}"):
    response = requests.Response()
    response.status_code = status_code
    response._content = body
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def client(session, mocker):
    client = GatewayHttpClient(
        gateway="paystack",
        base_url="https://api.paystack.co/",
        headers={"Authorization": "Bearer sk_test"},
        timeout=5,
        retry_attempts=3,
        retry_delay_ms=0,
        session=session,
    )
    mocker.patch.object(client, "_sleep")
    return client


class TestRequests:
    def test_sets_default_headers(self, client, session, settings):
        assert session.headers["Authorization"] == "Bearer sk_test"
        assert session.headers["Accept"] == "application/json"
        assert session.headers["User-Agent"] == f"{settings.PAYMENT_USER_AGENT_NAME}/{settings.PAYMENT_VERSION}"

    def test_joins_relative_paths(self, client, session):
        session.request.return_value = make_response(200, b'{"status": true}')

        body = client.get("/transaction/verify/PS-1", params={"a": 1})

        assert body == {"status": True}
        method, url = session.request.call_args[0]
        assert method == "GET"
        assert url == "https://api.paystack.co/transaction/verify/PS-1"
        assert session.request.call_args[1]["timeout"] == 5

    def test_absolute_urls_are_kept(self, client):
        assert client.url_for("https://other.example.com/x") == "https://other.example.com/x"

    def test_empty_body_decodes_to_dict(self, client, session):
        session.request.return_value = make_response(204, b"")

        assert client.delete("/subscription/SUB_1") == {}

    def test_non_json_body_is_wrapped(self, client, session):
        session.request.return_value = make_response(200, b"OK")

        assert client.post("/ping") == {"raw": "OK"}


class TestRetries:
    def test_retries_server_errors_then_succeeds(self, client, session):
        session.request.side_effect = [
            make_response(503, b'{"message": "busy"}'),
            make_response(200, b'{"ok": 1}'),
        ]

        assert client.get("/x") == {"ok": 1}
        assert session.request.call_count == 2
        client._sleep.assert_called_once_with(0)

    def test_last_server_error_is_raised(self, client, session):
        session.request.return_value = make_response(502, b'{"message": "bad gateway"}')

        with pytest.raises(GatewayError) as exc_info:
            client.get("/x")

        assert session.request.call_count == 3
        assert exc_info.value.status_code == 502
        assert exc_info.value.is_retryable is True

    def test_client_errors_are_not_retried(self, client, session):
        session.request.return_value = make_response(400, b'{"message": "Invalid amount"}')

        with pytest.raises(GatewayError) as exc_info:
            client.post("/transaction/initialize", json={})

        assert session.request.call_count == 1
        assert "Invalid amount" in exc_info.value.message
        assert exc_info.value.raw_response == {"message": "Invalid amount"}
        assert exc_info.value.is_retryable is False

    def test_timeouts_raise_gateway_timeout(self, client, session):
        session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(GatewayTimeoutError) as exc_info:
            client.get("/x")

        assert session.request.call_count == 3
        assert exc_info.value.error_code == "GATEWAY_TIMEOUT"

    def test_connection_errors_raise_unavailable(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(GatewayError) as exc_info:
            client.get("/x")

        assert exc_info.value.error_code == "GATEWAY_UNAVAILABLE"


class TestErrorMessage:
    @pytest.mark.parametrize(
        "body,expected",
        [
            ({"message": "Invalid key"}, "Invalid key"),
            ({"error_description": "Client auth failed"}, "Client auth failed"),
            ({"error": {"message": "No such payment_intent"}}, "No such payment_intent"),
            ({"detail": "Not found"}, "Not found"),
            ({"unrelated": 1}, None),
            (["not", "a", "dict"], None),
        ],
    )
    def test_extracts_provider_message(self, body, expected):
        assert GatewayHttpClient.error_message(body) == expected


class TestBackoff:
    def test_doubles_per_attempt_with_jitter(self, mocker):
        mocker.patch("payments.gateways.http.random.uniform", return_value=0.25)

        assert backoff_delay(0, base=0.1) == pytest.approx(0.125)
        assert backoff_delay(2, base=0.1) == pytest.approx(0.5)

    def test_capped_at_max_delay(self, mocker):
        mocker.patch("payments.gateways.http.random.uniform", return_value=0)

        assert backoff_delay(10, base=1, max_delay=5) == 5
