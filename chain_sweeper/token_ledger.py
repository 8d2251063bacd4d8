"""
Token Ledger Client

Queries the Hive Engine contracts API for every token balance owned by an
account. Several equivalent service endpoints may be configured; they are
tried in turn starting from the last one that worked.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp
from loguru import logger

from .endpoint_rotator import EndpointRotator
from .errors import MalformedResponseError, RemoteCallError
from .retry_executor import RetryPolicy, format_error, is_retryable_error, retry_async
from .rpc_client import JsonRpcClient
from .sweep_planner import TokenBalance


ENGINE_API_DEFAULT = "https://api.hive-engine.com/rpc/contracts"
BALANCES_QUERY_LIMIT = 1000


def _decimal(record: Dict[str, Any], key: str) -> Decimal:
    value = record.get(key)
    if value in (None, ''):
        return Decimal('0')
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise MalformedResponseError(f"Token balance field {key}={value!r} is not numeric") from e


def parse_token_balances(result: Any) -> List[TokenBalance]:
    """Convert the raw `find` result into TokenBalance records (order kept)"""
    if result is None:
        return []
    if not isinstance(result, list):
        raise MalformedResponseError(f"Token balances result is {type(result).__name__}, expected list")

    balances = []
    for record in result:
        if not isinstance(record, dict) or not record.get('symbol'):
            raise MalformedResponseError(f"Malformed token balance record: {record!r}")
        balances.append(TokenBalance(
            symbol=record['symbol'],
            balance=_decimal(record, 'balance'),
            stake=_decimal(record, 'stake'),
            pending_unstake=_decimal(record, 'pendingUnstake'),
        ))
    return balances


class TokenLedgerClient:
    """
    Token-ledger query service with endpoint failover

    Each endpoint gets the full retry budget; when it is exhausted with a
    retryable error the next endpoint is tried. Terminal errors surface
    immediately.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        session: aiohttp.ClientSession,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.rotator: EndpointRotator[JsonRpcClient] = EndpointRotator(
            endpoints or [ENGINE_API_DEFAULT],
            factory=lambda url: JsonRpcClient(url, session),
            name="HIVE ENGINE",
        )
        self.policy = policy
        self._sleep = sleep

    async def fetch_balances(self, account: str) -> List[TokenBalance]:
        """
        Fetch every token balance for an account

        Args:
            account: Account name

        Returns:
            List of TokenBalance in the order the service returned them
        """
        payload = {
            "jsonrpc": "2.0",
            "method": "find",
            "params": {
                "contract": "tokens",
                "table": "balances",
                "query": {"account": account},
                "limit": BALANCES_QUERY_LIMIT,
            },
            "id": 1,
        }

        last_error: Optional[BaseException] = None
        for _ in range(len(self.rotator)):
            client = self.rotator.client
            try:
                body = await retry_async(
                    lambda: client.post(payload),
                    f"Hive Engine {client.url}",
                    self.policy,
                    sleep=self._sleep,
                )
                if body.get('error'):
                    raise RemoteCallError(f"Hive Engine find: {body['error']}", reason=str(body['error']))
                return parse_token_balances(body.get('result'))
            except Exception as err:
                if not is_retryable_error(err):
                    raise
                last_error = err
                logger.warning(f"Hive Engine {client.url} unavailable ({format_error(err)})")
                self.rotator.rotate(err)

        raise last_error
