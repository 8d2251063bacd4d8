"""
Balance Sampler

Fetches current spendable balances for one account, fresh every cycle.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Mapping

from .errors import MalformedResponseError
from .network_adapter import ChainAdapter
from .retry_executor import RetryPolicy, retry_async
from .sweep_planner import BalanceSnapshot
from .token_ledger import TokenLedgerClient


def parse_asset_amount(value: Any, symbol: str) -> Decimal:
    """
    Parse an on-chain asset string such as '120.000 HIVE'

    Args:
        value: Raw field from the account record
        symbol: Expected asset symbol

    Returns:
        Decimal amount
    """
    if not isinstance(value, str):
        raise MalformedResponseError(f"{symbol} balance is {type(value).__name__}, expected string")

    parts = value.split()
    if not parts or (len(parts) > 1 and parts[1] != symbol):
        raise MalformedResponseError(f"Unexpected {symbol} balance {value!r}")

    try:
        return Decimal(parts[0])
    except InvalidOperation as e:
        raise MalformedResponseError(f"Unparsable {symbol} balance {value!r}") from e


class NativeBalanceSampler:
    """Native currency balances read from the chain's account record"""

    def __init__(
        self,
        adapter: ChainAdapter,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.adapter = adapter
        self.policy = policy
        self._sleep = sleep

    async def sample(self, account: str) -> BalanceSnapshot:
        record: Mapping[str, Any] = await retry_async(
            lambda: self.adapter.get_account(account),
            f"{self.adapter.tag} getAccounts {account}",
            self.policy,
            on_retry=self.adapter.rotate,
            sleep=self._sleep,
        )

        liquid: Dict[str, Decimal] = {}
        for symbol, field_name in self.adapter.profile.native_assets:
            if field_name not in record:
                raise MalformedResponseError(f"{self.adapter.tag} account {account} has no {field_name}")
            liquid[symbol] = parse_asset_amount(record[field_name], symbol)

        return BalanceSnapshot(account=account, liquid=liquid)


class TokenBalanceSampler:
    """Token-layer balances from the ledger query service"""

    def __init__(self, ledger: TokenLedgerClient):
        self.ledger = ledger

    async def sample(self, account: str) -> BalanceSnapshot:
        tokens = await self.ledger.fetch_balances(account)
        return BalanceSnapshot(account=account, tokens=tuple(tokens))
