"""
Sweeper Daemon

Wires configuration, network adapters and account workers together and runs
every worker as an independent asyncio task on a single event loop.

One task is started per (account, network, mode). Workers never stop on
their own; the process runs until it is interrupted, at which point every
worker is cancelled and the shared HTTP session is closed.
"""

import asyncio
import sys
from typing import Dict, List, Optional

import aiohttp
from dotenv import load_dotenv
from loguru import logger

from .account_worker import AccountWorker
from .balance_sampler import NativeBalanceSampler, TokenBalanceSampler
from .batch_dispatcher import BatchDispatcher
from .errors import ConfigError
from .graphene_signer import PrivateKey
from .network_adapter import CHAIN_PROFILES, ChainAdapter
from .rpc_client import create_session
from .sweep_config_parser import Account, SweepConfigParser, SweepMode, SweeperConfig
from .sweep_planner import SweepPlanner
from .token_ledger import TokenLedgerClient


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Replace loguru's default sink with the daemon's sinks"""
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if log_file:
        try:
            logger.add(log_file, level=level, rotation="10 MB", retention=5, enqueue=True)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot open LOG_FILE {log_file}: {e}") from e


class SweeperDaemon:
    """
    Long-running sweeper process

    Features:
    - One shared aiohttp session and one adapter per network
    - One worker task per (account, network, mode)
    - Per-cycle failure isolation inside each worker
    """

    def __init__(self, config: SweeperConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session
        self.adapters: Dict[str, ChainAdapter] = {}
        self.ledger: Optional[TokenLedgerClient] = None
        self.planner = SweepPlanner(config.reserves)
        self.workers: List[AccountWorker] = []
        self.tasks: List[asyncio.Task] = []

    def _adapter(self, network: str) -> ChainAdapter:
        if network not in self.adapters:
            endpoints = self.config.networks[network].endpoints
            self.adapters[network] = ChainAdapter(CHAIN_PROFILES[network], endpoints, self.session)
        return self.adapters[network]

    def _token_ledger(self) -> TokenLedgerClient:
        if self.ledger is None:
            self.ledger = TokenLedgerClient(self.config.engine_endpoints, self.session, self.config.retry)
        return self.ledger

    def _build_worker(self, network: str, account: Account, mode: SweepMode) -> AccountWorker:
        adapter = self._adapter(network)
        key = PrivateKey(account.key)

        if mode is SweepMode.TOKENS:
            sampler = TokenBalanceSampler(self._token_ledger())
            network_tag = f"{adapter.tag} ENGINE"
        else:
            sampler = NativeBalanceSampler(adapter, self.config.retry)
            network_tag = adapter.tag

        async def submit(operation, _name=account.name, _key=key):
            return await adapter.submit(_name, _key, operation)

        dispatcher = BatchDispatcher(
            submit,
            batch_size=self.config.batch_size,
            cooldown_seconds=self.config.cooldown_seconds,
            policy=self.config.retry,
            on_retry=adapter.rotate,
        )

        return AccountWorker(
            account=account.name,
            network_tag=network_tag,
            mode=mode.label,
            sampler=sampler,
            planner=self.planner,
            dispatcher=dispatcher,
            destination=self.config.networks[network].destinations[mode],
            loop_delay_seconds=self.config.loop_delay_seconds,
        )

    def build_workers(self) -> List[AccountWorker]:
        """
        Create a worker for every enabled (account, mode) pair

        Raises:
            ConfigError: An account key cannot be decoded
        """
        if self.session is None:
            self.session = create_session()

        workers = []
        for network in self.config.enabled_networks:
            for account, mode in network.assignments():
                try:
                    workers.append(self._build_worker(network.name, account, mode))
                except ConfigError:
                    raise
                except Exception as e:
                    raise ConfigError(f"{network.name.upper()} {account.name}: {e}") from e

        self.workers = workers
        logger.info(f"Built {len(workers)} worker(s)")
        return workers

    async def run(self):
        """Start every worker and wait on them (forever, barring cancellation)"""
        if not self.workers:
            self.build_workers()

        if not self.workers:
            logger.warning("No workers configured; nothing to sweep")
            await self.close()
            return

        self.tasks = [
            asyncio.create_task(worker.run_forever(), name=worker.label)
            for worker in self.workers
        ]
        try:
            await asyncio.gather(*self.tasks)
        finally:
            await self.close()

    async def close(self, timeout: float = 10.0):
        """Cancel workers and close the shared HTTP session"""
        pending = [task for task in self.tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            done, still_pending = await asyncio.wait(pending, timeout=timeout)
            if still_pending:
                logger.warning(f"{len(still_pending)} worker(s) did not stop in time")

        if self.session is not None and not self.session.closed:
            await self.session.close()
            # Give SSL transports a moment to finish closing
            await asyncio.sleep(0.25)

        logger.info("✓ Sweeper shut down")


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point: load .env, configure logging, run until interrupted"""
    load_dotenv()

    parser = SweepConfigParser()

    try:
        configure_logging(parser.log_level(), parser.env.get("LOG_FILE") or None)
        config = parser.parse()
    except ConfigError as e:
        logger.error(f"✗ Invalid configuration: {e}")
        return 2

    daemon = SweeperDaemon(config)
    try:
        asyncio.run(_run(daemon))
    except ConfigError as e:
        logger.error(f"✗ Invalid configuration: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    return 0


async def _run(daemon: SweeperDaemon):
    try:
        daemon.build_workers()
    except ConfigError:
        if daemon.session is not None:
            await daemon.session.close()
        raise
    await daemon.run()


if __name__ == "__main__":
    sys.exit(main())
