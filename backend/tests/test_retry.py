import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from utils.retry import (  # noqa: E402
    PayloadDecodeError,
    PermanentFetchError,
    RetryConfig,
    calculate_delay,
    is_retryable_error,
    decode_payload,
    is_decode_error,
    retry_fetch,
)

FAST = RetryConfig(max_attempts=3, base_delay=0, max_delay=0, jitter=False)


def _status_error(status: int, headers=None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example/champions/id/1")
    response = httpx.Response(status, request=request, headers=headers)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class _Flaky:
    """Fails with the given errors in order, then returns ``value``."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


@pytest.mark.asyncio
async def test_transient_errors_are_retried_until_success():
    request = httpx.Request("GET", "https://api.example")
    op = _Flaky([httpx.ConnectError("down", request=request), _status_error(503)])

    assert await retry_fetch(op, FAST, description="fighter 1") == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_decode_error_is_permanent_without_retry():
    op = _Flaky([PayloadDecodeError("bad shape")] * 3)

    with pytest.raises(PermanentFetchError) as exc_info:
        await retry_fetch(op, FAST)

    assert exc_info.value.reason == "decode"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_json_decode_error_is_permanent():
    op = _Flaky([json.JSONDecodeError("Expecting value", "<html>", 0)])

    with pytest.raises(PermanentFetchError) as exc_info:
        await retry_fetch(op, FAST)

    assert exc_info.value.reason == "decode"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_permanent_with_last_error():
    last = _status_error(500)
    op = _Flaky([_status_error(502), _status_error(503), last])

    with pytest.raises(PermanentFetchError) as exc_info:
        await retry_fetch(op, FAST)

    assert exc_info.value.reason == "exhausted"
    assert exc_info.value.cause is last
    assert op.calls == 3


@pytest.mark.asyncio
async def test_configured_permanent_status_is_not_retried():
    config = RetryConfig(max_attempts=5, base_delay=0, jitter=False, permanent_status_codes=(404,))
    op = _Flaky([_status_error(404)])

    with pytest.raises(PermanentFetchError) as exc_info:
        await retry_fetch(op, config)

    assert exc_info.value.reason == "not_found"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_unclassified_errors_propagate_unchanged():
    op = _Flaky([KeyError("programming error")])

    with pytest.raises(KeyError):
        await retry_fetch(op, FAST)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_rate_limit_retry_after_is_capped(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    config = RetryConfig(max_attempts=2, base_delay=0.1, max_delay=5, jitter=False)
    op = _Flaky([_status_error(429, headers={"Retry-After": "120"})])

    assert await retry_fetch(op, config) == "ok"
    assert delays == [5]


def test_calculate_delay_grows_and_caps():
    config = RetryConfig(base_delay=1, max_delay=10, exponential_base=2, jitter=False)

    assert calculate_delay(0, config) == 1
    assert calculate_delay(2, config) == 4
    assert calculate_delay(10, config) == 10


def test_calculate_delay_jitter_stays_within_half_band():
    config = RetryConfig(base_delay=2, max_delay=60, jitter=True)
    for _ in range(50):
        assert 1.0 <= calculate_delay(0, config) <= 3.0


def test_status_errors_are_retryable_unless_configured_permanent():
    config = RetryConfig(permanent_status_codes=(404,))

    assert is_retryable_error(_status_error(500), config)
    assert is_retryable_error(_status_error(429), config)
    assert not is_retryable_error(_status_error(404), config)
    assert not is_retryable_error(PayloadDecodeError("x"), config)


def test_undecodable_bytes_are_a_decode_error():
    bad_body = httpx.Response(200, content=b'{"attributes": "\xff\xfe"}')

    with pytest.raises(ValueError) as exc_info:
        bad_body.json()

    assert is_decode_error(exc_info.value)
    assert not is_retryable_error(exc_info.value, FAST)


def test_decode_payload_wraps_unexpected_shape_errors():
    def needs_list(data):
        return [entry for entry in data["battles"]]

    with pytest.raises(PayloadDecodeError, match="malformed detail"):
        decode_payload(needs_list, {"battles": 5}, what="detail")
    with pytest.raises(PayloadDecodeError):
        decode_payload(needs_list, {}, what="detail")
    assert decode_payload(needs_list, {"battles": [1]}, what="detail") == [1]
