"""
Account Worker

Drives one account on one network through an endless cycle:

    IDLE → SAMPLING → PLANNING → DISPATCHING → COOLING → IDLE

Every cycle is isolated: an error in sampling, planning or dispatching is
logged with context and the worker proceeds straight to its inter-cycle
sleep. One account's failure never affects another worker.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from loguru import logger

from .batch_dispatcher import BatchDispatcher, DispatchReport
from .retry_executor import format_error
from .sweep_planner import BalanceSnapshot, SweepPlanner


DEFAULT_LOOP_DELAY_SECONDS = 3 * 60


class WorkerState(Enum):
    IDLE = 'idle'
    SAMPLING = 'sampling'
    PLANNING = 'planning'
    DISPATCHING = 'dispatching'
    COOLING = 'cooling'


class BalanceSource(Protocol):
    async def sample(self, account: str) -> BalanceSnapshot:
        ...


class AccountWorker:
    """Per-account sweep loop"""

    def __init__(
        self,
        account: str,
        network_tag: str,
        mode: str,
        sampler: BalanceSource,
        planner: SweepPlanner,
        dispatcher: BatchDispatcher,
        destination: str,
        loop_delay_seconds: float = DEFAULT_LOOP_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.account = account
        self.network_tag = network_tag
        self.mode = mode
        self.sampler = sampler
        self.planner = planner
        self.dispatcher = dispatcher
        self.destination = destination
        self.loop_delay_seconds = loop_delay_seconds
        self._sleep = sleep

        self.state = WorkerState.IDLE
        self.cycles = 0
        self.failures = 0
        self.last_error: Optional[BaseException] = None

    def __repr__(self):
        return f"AccountWorker({self.label}, {self.state.value})"

    @property
    def label(self) -> str:
        return f"{self.network_tag} {self.account} {self.mode}"

    def _log_snapshot(self, snapshot: BalanceSnapshot):
        if snapshot.liquid:
            balances = " ".join(f"{s}={v:.3f}" for s, v in snapshot.liquid.items())
            queued = " ".join(
                f"{s}={max(v - self.planner.reserves[s], 0):.3f}" for s, v in snapshot.liquid.items()
            )
            logger.info(f"{self.label}: balance {balances}; queue {queued}")

        if snapshot.tokens:
            logger.info(f"{self.label}: {' | '.join(str(t) for t in snapshot.tokens)}")
        elif not snapshot.liquid:
            logger.info(f"{self.label}: no balances found")

    async def run_cycle(self) -> DispatchReport:
        """
        Sample, plan and dispatch once

        Returns:
            DispatchReport for the cycle (empty when nothing was queued)
        """
        self.state = WorkerState.SAMPLING
        snapshot = await self.sampler.sample(self.account)
        self._log_snapshot(snapshot)

        self.state = WorkerState.PLANNING
        queue = self.planner.plan(snapshot, self.destination)
        balance_count = len(snapshot.tokens) or len(snapshot.liquid)
        logger.info(f"{self.label}: found {balance_count} balances, queued {len(queue)} ops")

        if not queue:
            return DispatchReport()

        self.state = WorkerState.DISPATCHING
        report = await self.dispatcher.drain(queue, self.label)
        logger.info(
            f"✅ {self.label}: dispatched {report.dispatched} op(s) in {report.batches} batch(es)"
        )
        return report

    async def run_forever(self, max_cycles: Optional[int] = None):
        """
        Cycle until the task is cancelled

        Args:
            max_cycles: Stop after this many cycles (None = never)
        """
        logger.info(f"{self.label}: worker started")

        while max_cycles is None or self.cycles < max_cycles:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                self.last_error = e
                logger.error(f"{self.label}: {format_error(e)}")

            self.cycles += 1
            self.state = WorkerState.COOLING
            await self._sleep(self.loop_delay_seconds)
            self.state = WorkerState.IDLE
