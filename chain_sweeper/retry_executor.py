"""
Retry Executor

Wraps a remote call with classification-based retry and exponential backoff.

Retryable errors:
- HTTP 5xx responses
- Connection reset / refused / timeout
- Temporary DNS failures (EAI_AGAIN), bare or wrapped by aiohttp
- Generic transport errors whose message looks like one of the above

Everything else (4xx, malformed data, unknown accounts) is terminal and
propagates on the first attempt.
"""

import asyncio
import random
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from loguru import logger

from .errors import RemoteCallError


RETRYABLE_MESSAGES = (
    "status code 5",
    "service unavailable",
    "socket hang up",
    "network error",
)

MAX_JITTER_SECONDS = 0.25


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits; delays are in seconds"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 15.0

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number `attempt` (1-based), without jitter"""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


def format_error(err: BaseException) -> str:
    """Short one-line summary of an error for log lines"""
    status = getattr(err, 'status', None)
    if status:
        reason = getattr(err, 'reason', None) or getattr(err, 'message', None)
        return f"HTTP {status}{f' {reason}' if reason else ''}"
    return str(err) or repr(err)


def is_retryable_error(err: BaseException) -> bool:
    """
    Classify an error as transient (retry) or terminal (surface)

    Args:
        err: Exception raised by a remote call

    Returns:
        True if the call should be retried
    """
    status = getattr(err, 'status', None)
    if isinstance(status, int) and status >= 500:
        return True
    if isinstance(err, RemoteCallError) and status:
        # 4xx and other explicit HTTP statuses are terminal
        return False

    if isinstance(err, socket.gaierror):
        return err.errno == socket.EAI_AGAIN

    # Certificate and handshake failures are terminal
    if isinstance(err, aiohttp.ClientSSLError):
        return False

    if isinstance(err, aiohttp.ClientConnectorError):
        cause = err.os_error
        if isinstance(err, aiohttp.ClientConnectorDNSError) or isinstance(cause, socket.gaierror):
            return getattr(cause, 'errno', None) == socket.EAI_AGAIN

    if isinstance(err, (
        ConnectionResetError,
        ConnectionRefusedError,
        asyncio.TimeoutError,
        aiohttp.ServerDisconnectedError,
        aiohttp.ClientConnectionError,
    )):
        return True

    message = str(err).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


async def retry_async(
    fn: Callable[[], Awaitable[Any]],
    label: str,
    policy: RetryPolicy = RetryPolicy(),
    on_retry: Optional[Callable[[BaseException, int], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> Any:
    """
    Invoke `fn` until it succeeds, fails terminally, or runs out of attempts

    Args:
        fn: Zero-argument coroutine factory performing the remote call
        label: Human readable label used in log lines
        policy: Attempt and delay limits
        on_retry: Called with (error, attempt) before each backoff sleep
        sleep: Awaitable sleep, injectable for tests
        rng: Source of jitter in [0, 1)

    Returns:
        Whatever `fn` returns on success
    """
    max_attempts = max(1, policy.max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as err:
            if not is_retryable_error(err) or attempt == max_attempts:
                raise

            if on_retry:
                on_retry(err, attempt)

            delay = policy.backoff(attempt) + rng() * MAX_JITTER_SECONDS
            logger.warning(
                f"{label} failed ({format_error(err)}). "
                f"retrying in {delay * 1000:.0f}ms ({attempt}/{max_attempts})"
            )
            await sleep(delay)
