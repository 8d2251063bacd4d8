"""
Batch Dispatcher

Drains an operation queue in fixed-size batches with a cooldown between
batches, respecting the host network's per-account operation limits.

- Operations are broadcast strictly one after another (signing order)
- Each broadcast goes through the retry executor
- A failed broadcast aborts the rest of the cycle; already broadcast
  operations stay on chain
- No cooldown follows the last batch
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .errors import ConfigError, DispatchError
from .retry_executor import RetryPolicy, format_error, retry_async
from .sweep_planner import Operation, OperationQueue


DEFAULT_BATCH_SIZE = 5
DEFAULT_COOLDOWN_SECONDS = 5 * 60


@dataclass
class DispatchReport:
    """Outcome of draining one queue"""
    dispatched: int = 0
    batches: int = 0
    cooldowns: int = 0


class BatchDispatcher:
    """Rate-limited sequential broadcaster"""

    def __init__(
        self,
        submit: Callable[[Operation], Awaitable[Any]],
        batch_size: int = DEFAULT_BATCH_SIZE,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        policy: RetryPolicy = RetryPolicy(),
        on_retry: Optional[Callable[[BaseException, int], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize dispatcher

        Args:
            submit: Broadcasts one operation as a single signed transaction
            batch_size: Max operations per batch (broadcast operation limit)
            cooldown_seconds: Pause between batches
            policy: Retry policy applied to each broadcast
            on_retry: Retry callback (endpoint rotation)
            sleep: Awaitable sleep, injectable for tests
        """
        if batch_size < 1:
            raise ConfigError(f"batch_size must be at least 1, got {batch_size}")

        self.submit = submit
        self.batch_size = batch_size
        self.cooldown_seconds = cooldown_seconds
        self.policy = policy
        self.on_retry = on_retry
        self._sleep = sleep

    async def drain(self, queue: OperationQueue, label: str = "dispatch") -> DispatchReport:
        """
        Broadcast every queued operation

        Args:
            queue: Operations for this cycle (emptied by this call)
            label: Log prefix, e.g. 'HIVE ENGINE alice tokens'

        Returns:
            DispatchReport

        Raises:
            DispatchError: A broadcast failed terminally or exhausted retries
        """
        report = DispatchReport()

        while queue:
            batch = queue.take(self.batch_size)
            report.batches += 1
            logger.info(f"{label}: batch {report.batches} with {len(batch)} op(s), {len(queue)} remaining")

            for position, operation in enumerate(batch):
                try:
                    await retry_async(
                        lambda: self.submit(operation),
                        f"{label} {operation}",
                        self.policy,
                        on_retry=self.on_retry,
                        sleep=self._sleep,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as err:
                    dropped = len(batch) - position - 1 + queue.clear()
                    logger.error(f"✗ {label}: {operation} failed ({format_error(err)}), dropping {dropped} op(s)")
                    raise DispatchError(operation, report.dispatched, dropped, err) from err

                report.dispatched += 1
                logger.info(f"✓ {label}: {operation}")

            if queue:
                logger.info(f"{label}: cooling down {self.cooldown_seconds:.0f}s before next batch")
                report.cooldowns += 1
                await self._sleep(self.cooldown_seconds)

        return report
