"""Unit tests for ResilientFetchClient classification and retry policy."""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from src.pulse_core.errors import (
    ApiError,
    AuthError,
    ErrorKind,
    NetworkError,
    RateLimitError,
)
from src.pulse_core.fetch.client import ResilientFetchClient, classify_response


def _response(status=200, body=None, headers=None, raw=b""):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.headers = headers or {}
    mock_response.text.return_value = json.dumps(body) if body is not None else ""
    mock_response.read.return_value = raw
    mock_response.__aenter__.return_value = mock_response
    return mock_response


def _client(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    client = ResilientFetchClient(session, base_delay=0, jitter_ms=0)
    return client, session


def test_classify_429_reads_retry_after_and_reset():
    """Test 429 carries retry-after and reset time in details."""
    error = classify_response(
        429, {"retry-after": "12", "x-rate-limit-reset": "1700000000"}, ""
    )

    assert isinstance(error, RateLimitError)
    assert error.kind == ErrorKind.RATE_LIMIT
    assert error.retry_after == 12.0
    assert error.retry_after_supplied is True
    assert error.details["retryAfter"] == 12.0
    assert error.details["resetTime"] == 1700000000


def test_classify_429_defaults_retry_after_to_60():
    """Test missing Retry-After falls back to 60 seconds."""
    error = classify_response(429, {}, "")

    assert error.retry_after == 60.0
    assert error.retry_after_supplied is False
    assert error.details["retryAfter"] == 60.0


@pytest.mark.parametrize("status", [401, 403])
def test_classify_auth_statuses(status):
    error = classify_response(status, {}, "denied")

    assert isinstance(error, AuthError)
    assert error.retryable is False


def test_classify_5xx_retryable_4xx_not():
    """Test api_error retryability follows server-fault statuses."""
    assert classify_response(503, {}, "").retryable is True
    assert classify_response(400, {}, "").retryable is False
    assert classify_response(404, {}, "").kind == ErrorKind.API_ERROR


@pytest.mark.asyncio
async def test_call_success_returns_parsed_json():
    client, session = _client(_response(200, {"data": [1, 2]}))

    result = await client.call("GET", "https://example.test/items")

    assert result == {"data": [1, 2]}
    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_call_empty_body_returns_empty_dict():
    client, _ = _client(_response(204))

    assert await client.call("DELETE", "https://example.test/items/1") == {}


@pytest.mark.asyncio
async def test_call_raw_bytes_when_parse_json_false():
    client, _ = _client(_response(200, raw=b"\x1f\x8b"))

    assert await client.call("GET", "https://example.test/f", parse_json=False) == b"\x1f\x8b"


@pytest.mark.asyncio
async def test_rate_limit_then_success_retries():
    """Test a 429 followed by 200 returns the successful body."""
    client, session = _client(
        _response(429, headers={"Retry-After": "0"}),
        _response(200, {"ok": True}),
    )

    result = await client.call("GET", "https://example.test/insights")

    assert result == {"ok": True}
    assert session.request.call_count == 2


@pytest.mark.asyncio
async def test_rate_limit_with_long_retry_after_still_retries(monkeypatch):
    """Test Retry-After: 60 waits the capped delay and then uses the 200."""
    sleep = AsyncMock()
    monkeypatch.setattr(asyncio, "sleep", sleep)
    session = MagicMock()
    session.request.side_effect = [
        _response(429, headers={"Retry-After": "60"}),
        _response(200, {"ok": True}),
    ]
    client = ResilientFetchClient(session, base_delay=1.0, jitter_ms=0)

    result = await client.call("GET", "https://example.test/insights")

    assert result == {"ok": True}
    assert session.request.call_count == 2
    sleep.assert_awaited_once_with(30.0)


@pytest.mark.asyncio
async def test_check_body_error_is_retried():
    """Test an error reported inside a 2xx body goes through the retry loop."""
    def check_body(body):
        if body.get("error") == "slow down":
            raise RateLimitError("in-body rate limit")

    client, session = _client(
        _response(200, {"error": "slow down"}),
        _response(200, {"ok": True}),
    )

    result = await client.call("GET", "https://example.test/x", check_body=check_body)

    assert result == {"ok": True}
    assert session.request.call_count == 2


@pytest.mark.asyncio
async def test_rate_limit_exhausts_retries():
    """Test persistent 429 raises RateLimitError after max_retries + 1 attempts."""
    client, session = _client(*[_response(429, headers={"Retry-After": "0"}) for _ in range(3)])

    with pytest.raises(RateLimitError):
        await client.call("GET", "https://example.test/insights", max_retries=2)

    assert session.request.call_count == 3


@pytest.mark.asyncio
async def test_auth_error_never_retried():
    client, session = _client(_response(401, {"error": "invalid"}), _response(200, {}))

    with pytest.raises(AuthError):
        await client.call("GET", "https://example.test/me")

    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_generic_4xx_never_retried():
    client, session = _client(_response(400, {"error": "bad"}), _response(200, {}))

    with pytest.raises(ApiError) as exc_info:
        await client.call("GET", "https://example.test/me")

    assert exc_info.value.status == 400
    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_5xx_retried_then_succeeds():
    client, session = _client(_response(502), _response(200, {"ok": 1}))

    assert await client.call("GET", "https://example.test/x") == {"ok": 1}
    assert session.request.call_count == 2


@pytest.mark.asyncio
async def test_transport_errors_become_network_error():
    """Test connection failures and timeouts are classified and retried."""
    client, session = _client(
        aiohttp.ClientConnectionError("reset"),
        asyncio.TimeoutError(),
        aiohttp.ClientConnectionError("dns"),
    )

    with pytest.raises(NetworkError) as exc_info:
        await client.call("GET", "https://example.test/x", max_retries=2)

    assert exc_info.value.kind == ErrorKind.NETWORK_ERROR
    assert exc_info.value.details["reason"] == "ClientConnectionError"
    assert session.request.call_count == 3


@pytest.mark.asyncio
async def test_timeout_reason_recorded():
    client, _ = _client(asyncio.TimeoutError())

    with pytest.raises(NetworkError) as exc_info:
        await client.call("GET", "https://example.test/x", max_retries=0)

    assert exc_info.value.details["reason"] == "timeout"


@pytest.mark.asyncio
async def test_error_body_redacts_secrets():
    """Test access tokens echoed by upstream never reach error details."""
    client, _ = _client(_response(400, {"error": "bad token tok-secret-123"}))

    with pytest.raises(ApiError) as exc_info:
        await client.call(
            "GET",
            "https://example.test/x?access_token=tok-secret-123",
            secrets=["tok-secret-123"],
        )

    assert "tok-secret-123" not in exc_info.value.details["body"]
    assert "tok-secret-123" not in exc_info.value.message
    assert "[REDACTED]" in exc_info.value.details["body"]


@pytest.mark.asyncio
async def test_invalid_json_is_api_error():
    response = _response(200)
    response.text.return_value = "<html>oops</html>"
    client, _ = _client(response)

    with pytest.raises(ApiError):
        await client.call("GET", "https://example.test/x")


def test_retry_delay_rate_limit_uses_larger_of_backoff_and_retry_after():
    client = ResilientFetchClient(MagicMock(), base_delay=1.0, jitter_ms=0)

    assert client._retry_delay(RateLimitError("x", retry_after=5), 0) == 5.0
    assert client._retry_delay(RateLimitError("x", retry_after=1), 3) == 8.0


def test_retry_delay_rate_limit_without_retry_after_uses_backoff():
    client = ResilientFetchClient(MagicMock(), base_delay=1.0, jitter_ms=0)

    assert client._retry_delay(RateLimitError("x"), 2) == 4.0
    assert client._retry_delay(RateLimitError("x"), 10) == 30.0


def test_retry_delay_caps_retry_after_at_max_delay():
    """Test a stated wait above the cap is shortened to the cap, not abandoned."""
    client = ResilientFetchClient(MagicMock(), base_delay=1.0, jitter_ms=0)

    assert client._retry_delay(RateLimitError("x", retry_after=120), 0) == 30.0
    assert client._retry_delay(RateLimitError("x", retry_after=60), 2) == 30.0


def test_transient_backoff_capped_at_ten_seconds():
    client = ResilientFetchClient(MagicMock(), base_delay=1.0, jitter_ms=0)

    assert client._retry_delay(NetworkError("x"), 1) == 2.0
    assert client._retry_delay(ApiError("x", status=503), 8) == 10.0
    assert client._retry_delay(ApiError("x", status=404), 0) is None
    assert client._retry_delay(AuthError("x"), 0) is None


def test_transient_backoff_jitter_bounded():
    client = ResilientFetchClient(MagicMock(), base_delay=1.0, jitter_ms=250)

    for _ in range(20):
        delay = client._retry_delay(NetworkError("x"), 0)
        assert 1.0 <= delay <= 1.25
