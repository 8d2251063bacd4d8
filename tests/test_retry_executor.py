"""Unit tests for retry classification and exponential backoff."""

import asyncio
import socket
import ssl
from types import SimpleNamespace

import aiohttp
import pytest

from chain_sweeper.errors import MalformedResponseError, RemoteCallError, UnknownAccountError
from chain_sweeper.retry_executor import RetryPolicy, format_error, is_retryable_error, retry_async

from .conftest import http_error


class Flaky:
    """Fails with the given errors in order, then returns a value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


@pytest.mark.parametrize("err", [
    http_error(500),
    http_error(503),
    ConnectionResetError("reset by peer"),
    ConnectionRefusedError("refused"),
    asyncio.TimeoutError(),
    socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution"),
    aiohttp.ServerDisconnectedError(),
    Exception("Request failed with status code 502"),
    Exception("socket hang up"),
    Exception("Network Error"),
])
def test_transient_errors_are_retryable(err):
    assert is_retryable_error(err)


@pytest.mark.parametrize("err", [
    http_error(400),
    http_error(404),
    UnknownAccountError("no such account"),
    MalformedResponseError("not json"),
    RemoteCallError("condenser_api.get_accounts: Assert Exception", reason="Assert Exception"),
    socket.gaierror(socket.EAI_NONAME, "Name or service not known"),
    ValueError("bad"),
])
def test_other_errors_are_terminal(err):
    assert not is_retryable_error(err)


def test_format_error_prefers_http_status():
    assert format_error(http_error(503)) == "HTTP 503 Service Unavailable"
    assert format_error(ValueError("boom")) == "boom"


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures(sleep, no_jitter):
    fn = Flaky([http_error(503), http_error(503)], value=42)

    result = await retry_async(fn, "balance", RetryPolicy(), sleep=sleep, rng=no_jitter)

    assert result == 42
    assert fn.calls == 3
    assert sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_backoff_delay_within_jitter_window(sleep):
    policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=15.0)
    fn = Flaky([http_error(502)] * 3)

    await retry_async(fn, "jittered", policy, sleep=sleep, rng=lambda: 0.999)

    for attempt, delay in enumerate(sleep.calls, start=1):
        base = 1.0 * 2 ** (attempt - 1)
        assert base <= delay <= base + 0.25


@pytest.mark.asyncio
async def test_backoff_capped_at_max_delay(sleep, no_jitter):
    policy = RetryPolicy(max_attempts=6, base_delay=4.0, max_delay=10.0)
    fn = Flaky([http_error(500)] * 5)

    await retry_async(fn, "capped", policy, sleep=sleep, rng=no_jitter)

    assert sleep.calls == [4.0, 8.0, 10.0, 10.0, 10.0]


@pytest.mark.asyncio
async def test_terminal_error_fails_first_attempt_without_delay(sleep):
    fn = Flaky([http_error(404)] * 3)

    with pytest.raises(RemoteCallError) as exc_info:
        await retry_async(fn, "terminal", sleep=sleep)

    assert exc_info.value.status == 404
    assert fn.calls == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_exhausted_attempts_reraise_last_error(sleep, no_jitter):
    fn = Flaky([http_error(500), http_error(502), http_error(503)])

    with pytest.raises(RemoteCallError) as exc_info:
        await retry_async(fn, "exhausted", RetryPolicy(max_attempts=3), sleep=sleep, rng=no_jitter)

    assert exc_info.value.status == 503
    assert fn.calls == 3
    assert len(sleep.calls) == 2


@pytest.mark.asyncio
async def test_on_retry_called_before_each_sleep(sleep, no_jitter):
    events = []

    async def recording_sleep(seconds):
        events.append(("sleep", seconds))

    def on_retry(err, attempt):
        events.append(("retry", attempt))

    fn = Flaky([ConnectionResetError(), ConnectionResetError()])
    await retry_async(fn, "rotating", on_retry=on_retry, sleep=recording_sleep, rng=no_jitter)

    assert events == [("retry", 1), ("sleep", 1.0), ("retry", 2), ("sleep", 2.0)]


@pytest.mark.asyncio
async def test_no_result_caching(sleep):
    fn = Flaky([])

    await retry_async(fn, "first", sleep=sleep)
    await retry_async(fn, "second", sleep=sleep)

    assert fn.calls == 2


CONNECTION_KEY = SimpleNamespace(host="api.hive.blog", port=443, is_ssl=True, ssl=True)


@pytest.mark.parametrize("err", [
    aiohttp.ClientConnectorDNSError(
        CONNECTION_KEY, socket.gaierror(socket.EAI_NONAME, "Name or service not known")),
    aiohttp.ClientConnectorDNSError(CONNECTION_KEY, OSError(None, "Could not contact DNS servers")),
    aiohttp.ClientConnectorError(
        CONNECTION_KEY, socket.gaierror(socket.EAI_NONAME, "Name or service not known")),
    aiohttp.ClientConnectorCertificateError(
        CONNECTION_KEY, ssl.SSLCertVerificationError("certificate verify failed")),
    aiohttp.ClientConnectorSSLError(CONNECTION_KEY, ssl.SSLError(1, "wrong version number")),
])
def test_wrapped_dns_and_tls_failures_are_terminal(err):
    assert not is_retryable_error(err)


@pytest.mark.parametrize("err", [
    aiohttp.ClientConnectorDNSError(
        CONNECTION_KEY, socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution")),
    aiohttp.ClientConnectorError(CONNECTION_KEY, ConnectionRefusedError(111, "Connection refused")),
    aiohttp.ClientConnectorError(CONNECTION_KEY, ConnectionResetError(104, "Connection reset by peer")),
])
def test_wrapped_transient_connection_failures_are_retryable(err):
    assert is_retryable_error(err)


@pytest.mark.asyncio
async def test_unknown_host_fails_without_retry_or_rotation(sleep):
    rotations = []
    fn = Flaky([aiohttp.ClientConnectorDNSError(
        CONNECTION_KEY, socket.gaierror(socket.EAI_NONAME, "Name or service not known"))])

    with pytest.raises(aiohttp.ClientConnectorDNSError):
        await retry_async(fn, "dns", on_retry=lambda err, attempt: rotations.append(attempt), sleep=sleep)

    assert fn.calls == 1
    assert rotations == []
    assert sleep.calls == []
