"""
Chain Sweeper

Sweeps account balances above a reserve to a destination wallet on Hive,
Steem and Blurt, plus Hive Engine tokens (unstake, then transfer).

Components:
- retry_executor: Classification-based retry with exponential backoff + jitter
- endpoint_rotator: Per-network endpoint failover cursor
- network_adapter: Balance lookup and signed broadcasts for one network
- token_ledger: Token balance queries with service failover
- balance_sampler: Fresh per-cycle balance snapshots
- sweep_planner: Reserve-aware transfer / unstake planning
- batch_dispatcher: Batched sequential broadcast with cooldowns
- account_worker: Isolated per-account sample → plan → dispatch loop
- sweep_config_parser: Environment + YAML configuration
- sweeper_daemon: Process wiring and entry point

Cycle:
1. Sample balances (retry + endpoint failover)
2. Plan operations above reserve
3. Dispatch in batches of at most 5, cooling down between batches
4. Sleep, then start over from fresh balances
"""

from .account_worker import (
    AccountWorker,
    WorkerState,
)
from .balance_sampler import (
    NativeBalanceSampler,
    TokenBalanceSampler,
)
from .batch_dispatcher import (
    BatchDispatcher,
    DispatchReport,
)
from .endpoint_rotator import (
    EndpointRotator,
)
from .errors import (
    ConfigError,
    DispatchError,
    MalformedResponseError,
    RemoteCallError,
    SigningError,
    SweeperError,
    UnknownAccountError,
)
from .network_adapter import (
    BLURT,
    HIVE,
    STEEM,
    ChainAdapter,
    ChainProfile,
)
from .retry_executor import (
    RetryPolicy,
    is_retryable_error,
    retry_async,
)
from .sweep_config_parser import (
    Account,
    SweepConfigParser,
    SweepMode,
    SweeperConfig,
)
from .sweep_planner import (
    AssetLayer,
    BalanceSnapshot,
    OperationQueue,
    ReserveThresholds,
    SweepPlanner,
    TokenBalance,
    TransferOperation,
    UnstakeOperation,
)
from .sweeper_daemon import (
    SweeperDaemon,
)
from .token_ledger import (
    TokenLedgerClient,
)

__all__ = [
    # Worker loop
    'AccountWorker',
    'WorkerState',
    'BatchDispatcher',
    'DispatchReport',

    # Balances and planning
    'NativeBalanceSampler',
    'TokenBalanceSampler',
    'SweepPlanner',
    'ReserveThresholds',
    'BalanceSnapshot',
    'TokenBalance',
    'OperationQueue',
    'AssetLayer',
    'TransferOperation',
    'UnstakeOperation',

    # Networks
    'ChainAdapter',
    'ChainProfile',
    'HIVE',
    'STEEM',
    'BLURT',
    'EndpointRotator',
    'TokenLedgerClient',

    # Resilience
    'RetryPolicy',
    'retry_async',
    'is_retryable_error',

    # Configuration
    'Account',
    'SweepMode',
    'SweepConfigParser',
    'SweeperConfig',
    'SweeperDaemon',

    # Errors
    'SweeperError',
    'ConfigError',
    'RemoteCallError',
    'UnknownAccountError',
    'MalformedResponseError',
    'SigningError',
    'DispatchError',
]

__version__ = '1.0.0'
