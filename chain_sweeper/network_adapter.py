"""
Network Adapter

Per-network client adapter: owns the endpoint rotator for one chain and
exposes the three remote calls the sweeper needs:
- account lookup (balances)
- native transfer broadcast
- token-layer custom_json broadcast (Hive Engine contract actions)

Adapters are created once at startup and shared by every worker of that
network.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import aiohttp
from loguru import logger

from .endpoint_rotator import EndpointRotator
from .errors import ConfigError, MalformedResponseError, UnknownAccountError
from .graphene_signer import (
    PrivateKey,
    Transaction,
    custom_json_payload,
    reference_block,
)
from .rpc_client import JsonRpcClient
from .sweep_planner import AssetLayer, Operation, TransferOperation, UnstakeOperation


@dataclass(frozen=True)
class ChainProfile:
    """Static description of one Graphene-family network"""
    name: str
    tag: str
    chain_id: str
    # (symbol, account record field) in sweep order
    native_assets: Tuple[Tuple[str, str], ...]
    wire_symbols: Mapping[str, str] = field(default_factory=dict)
    token_app_id: Optional[str] = None
    expiration_seconds: int = 60

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(symbol for symbol, _ in self.native_assets)


HIVE = ChainProfile(
    name='hive',
    tag='HIVE',
    chain_id='beeab0de00000000000000000000000000000000000000000000000000000000',
    native_assets=(('HIVE', 'balance'), ('HBD', 'hbd_balance')),
    wire_symbols={'HIVE': 'STEEM', 'HBD': 'SBD'},
    token_app_id='ssc-mainnet-hive',
)

STEEM = ChainProfile(
    name='steem',
    tag='STEEM',
    chain_id='0000000000000000000000000000000000000000000000000000000000000000',
    native_assets=(('STEEM', 'balance'), ('SBD', 'sbd_balance')),
)

BLURT = ChainProfile(
    name='blurt',
    tag='BLURT',
    chain_id='cd8d90f29ae273abec3eaa7731e25934c63eb654d55080caff2ebb7f5df6381f',
    native_assets=(('BLURT', 'balance'),),
)

CHAIN_PROFILES: Dict[str, ChainProfile] = {p.name: p for p in (HIVE, STEEM, BLURT)}


def format_amount(quantity: Decimal, symbol: str) -> str:
    """On-chain asset string with 3-decimal precision, e.g. '119.999 HIVE'"""
    return f"{quantity.quantize(Decimal('0.001'))} {symbol}"


def format_token_quantity(quantity: Decimal) -> str:
    """Token quantities are sent exactly as the ledger reported them"""
    return format(quantity, 'f')


class ChainAdapter:
    """
    Client adapter for one network

    Features:
    - Endpoint failover through an EndpointRotator
    - Account record lookup
    - Signed transfer and custom_json broadcasts
    """

    def __init__(self, profile: ChainProfile, endpoints: Sequence[str], session: aiohttp.ClientSession):
        """
        Initialize adapter

        Args:
            profile: Chain parameters
            endpoints: RPC node URLs in failover order
            session: Shared aiohttp session
        """
        self.profile = profile
        self.rotator: EndpointRotator[JsonRpcClient] = EndpointRotator(
            endpoints,
            factory=lambda url: JsonRpcClient(url, session),
            name=profile.tag,
        )
        logger.info(f"✓ {profile.tag} adapter initialized with {len(self.rotator)} endpoint(s)")

    def __repr__(self):
        return f"ChainAdapter({self.profile.tag}, {self.rotator.current})"

    @property
    def tag(self) -> str:
        return self.profile.tag

    @property
    def client(self) -> JsonRpcClient:
        return self.rotator.client

    def rotate(self, err: Optional[BaseException] = None, attempt: Optional[int] = None) -> str:
        """Fail over to the next endpoint (usable as a retry callback)"""
        return self.rotator.rotate(err, attempt)

    async def get_account(self, name: str) -> Dict[str, Any]:
        """
        Fetch the ledger record for an account

        Raises:
            UnknownAccountError: The chain has no such account
        """
        accounts = await self.client.call('condenser_api.get_accounts', [[name]])
        if not isinstance(accounts, list):
            raise MalformedResponseError(f"{self.tag} get_accounts returned {type(accounts).__name__}")
        if not accounts:
            raise UnknownAccountError(f"{self.tag} account not found: {name}")
        return accounts[0]

    async def build_transaction(self, operations: List[Tuple[str, Dict[str, Any]]]) -> Transaction:
        """Unsigned transaction referencing the current head block"""
        properties = await self.client.call('condenser_api.get_dynamic_global_properties', [])
        ref_num, ref_prefix, head_time = reference_block(properties)
        return Transaction(
            ref_block_num=ref_num,
            ref_block_prefix=ref_prefix,
            expiration=head_time + timedelta(seconds=self.profile.expiration_seconds),
            operations=operations,
        )

    async def broadcast(self, operations: List[Tuple[str, Dict[str, Any]]], key: PrivateKey) -> Any:
        """Sign and broadcast a transaction, waiting for block inclusion"""
        tx = await self.build_transaction(operations)
        tx.sign(key, self.profile.chain_id, self.profile.wire_symbols)
        return await self.client.call('condenser_api.broadcast_transaction_synchronous', [tx.to_json()])

    async def transfer(self, sender: str, key: PrivateKey, to: str, quantity: Decimal, symbol: str) -> Any:
        """Native currency transfer"""
        op = ('transfer', {
            'from': sender,
            'to': to,
            'amount': format_amount(quantity, symbol),
            'memo': '',
        })
        return await self.broadcast([op], key)

    async def contract_action(self, account: str, key: PrivateKey, action: str, payload: Dict[str, Any]) -> Any:
        """Token-layer contract action wrapped in an active-authority custom_json"""
        if not self.profile.token_app_id:
            raise ConfigError(f"{self.tag} has no token layer")
        body = {
            'contractName': 'tokens',
            'contractAction': action,
            'contractPayload': payload,
        }
        op = ('custom_json', custom_json_payload(account, self.profile.token_app_id, body))
        return await self.broadcast([op], key)

    async def submit(self, account: str, key: PrivateKey, operation: Operation) -> Any:
        """Broadcast a planned operation as a single signed transaction"""
        if isinstance(operation, UnstakeOperation):
            return await self.contract_action(account, key, 'unstake', {
                'symbol': operation.symbol,
                'quantity': format_token_quantity(operation.quantity),
            })

        if isinstance(operation, TransferOperation):
            if operation.layer is AssetLayer.TOKEN:
                return await self.contract_action(account, key, 'transfer', {
                    'symbol': operation.symbol,
                    'to': operation.destination,
                    'quantity': format_token_quantity(operation.quantity),
                    'memo': '',
                })
            return await self.transfer(account, key, operation.destination, operation.quantity, operation.symbol)

        raise TypeError(f"Unsupported operation: {operation!r}")
