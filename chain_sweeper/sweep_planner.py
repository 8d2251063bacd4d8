"""
Sweep Planner

Turns a balance snapshot into an ordered queue of operations.

Native sweep:
- surplus = balance - reserve, truncated to 3 decimals
- one Transfer of the full surplus when it is positive

Token sweep (per token record, in ledger order):
- Unstake the full stake when staked > 0 and no unstake is pending
- Transfer the full liquid balance when it is positive

Within one token the Unstake always precedes the Transfer; the unstaked
amount only becomes liquid after it matures, so it is swept on a later cycle.
"""

from collections import deque
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union


NATIVE_PRECISION = Decimal('0.001')
ZERO = Decimal('0')


class AssetLayer(Enum):
    """Which broadcast a transfer needs"""
    NATIVE = 'native'
    TOKEN = 'token'


@dataclass(frozen=True)
class UnstakeOperation:
    """Unlock staked tokens; they become liquid once the unstake matures"""
    symbol: str
    quantity: Decimal

    def __str__(self):
        return f"Unstake({self.symbol}, {self.quantity})"


@dataclass(frozen=True)
class TransferOperation:
    """Move a liquid balance to the destination wallet"""
    symbol: str
    quantity: Decimal
    destination: str
    layer: AssetLayer = AssetLayer.NATIVE

    def __str__(self):
        return f"Transfer({self.symbol}, {self.quantity} → {self.destination})"


Operation = Union[UnstakeOperation, TransferOperation]


@dataclass(frozen=True)
class TokenBalance:
    """One token-ledger balance record"""
    symbol: str
    balance: Decimal = ZERO
    stake: Decimal = ZERO
    pending_unstake: Decimal = ZERO

    def __str__(self):
        return (
            f"{self.symbol}={self.balance:.3f} "
            f"staked={self.stake:.3f} pending={self.pending_unstake:.3f}"
        )


@dataclass(frozen=True)
class BalanceSnapshot:
    """Balances sampled for one account in one cycle"""
    account: str
    liquid: Mapping[str, Decimal] = field(default_factory=dict)
    tokens: Tuple[TokenBalance, ...] = ()


class ReserveThresholds:
    """Per-asset floor below which nothing is swept (missing assets: 0)"""

    def __init__(self, reserves: Optional[Mapping[str, Decimal]] = None):
        self._reserves: Dict[str, Decimal] = {
            symbol.upper(): Decimal(amount) for symbol, amount in (reserves or {}).items()
        }

    def __getitem__(self, symbol: str) -> Decimal:
        return self._reserves.get(symbol.upper(), ZERO)

    def __repr__(self):
        return f"ReserveThresholds({self._reserves})"

    def as_dict(self) -> Dict[str, Decimal]:
        return dict(self._reserves)


class OperationQueue:
    """FIFO of operations for one account-cycle, drained in batches"""

    def __init__(self, operations: Iterable[Operation] = ()):
        self._items: Deque[Operation] = deque(operations)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def __repr__(self):
        return f"OperationQueue({[str(op) for op in self._items]})"

    def append(self, operation: Operation):
        self._items.append(operation)

    def take(self, count: int) -> List[Operation]:
        """Remove and return up to `count` operations from the front"""
        batch = []
        while self._items and len(batch) < count:
            batch.append(self._items.popleft())
        return batch

    def clear(self) -> int:
        """Drop every remaining operation, returning how many were dropped"""
        dropped = len(self._items)
        self._items.clear()
        return dropped


def native_surplus(balance: Decimal, reserve: Decimal) -> Decimal:
    """Sendable amount above reserve, truncated to on-chain precision"""
    return (balance - reserve).quantize(NATIVE_PRECISION, rounding=ROUND_DOWN)


class SweepPlanner:
    """Builds explainable, deterministic sweep queues"""

    def __init__(self, reserves: Optional[ReserveThresholds] = None):
        self.reserves = reserves or ReserveThresholds()

    def plan_native(self, liquid: Mapping[str, Decimal], destination: str) -> List[Operation]:
        operations: List[Operation] = []
        for symbol, balance in liquid.items():
            surplus = native_surplus(balance, self.reserves[symbol])
            if surplus > ZERO:
                operations.append(TransferOperation(symbol, surplus, destination, AssetLayer.NATIVE))
        return operations

    def plan_tokens(self, tokens: Iterable[TokenBalance], destination: str) -> List[Operation]:
        operations: List[Operation] = []
        for token in tokens:
            if token.stake > ZERO and token.pending_unstake == ZERO:
                operations.append(UnstakeOperation(token.symbol, token.stake))

            if token.balance > ZERO:
                operations.append(TransferOperation(token.symbol, token.balance, destination, AssetLayer.TOKEN))
        return operations

    def plan(self, snapshot: BalanceSnapshot, destination: str) -> OperationQueue:
        """
        Plan every sweep the snapshot allows

        Args:
            snapshot: Freshly sampled balances
            destination: Wallet receiving the swept funds

        Returns:
            OperationQueue with native transfers first, then token operations
        """
        queue = OperationQueue(self.plan_native(snapshot.liquid, destination))
        for operation in self.plan_tokens(snapshot.tokens, destination):
            queue.append(operation)
        return queue
