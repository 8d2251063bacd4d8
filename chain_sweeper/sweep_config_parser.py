"""
Sweep Config Parser

Reads the sweeper configuration once at startup from the environment
(optionally populated from a .env file) and an optional YAML override file.

Environment layout:
- ENABLE_HIVE / ENABLE_HIVE_ENGINE / ENABLE_STEEM / ENABLE_BLURT = true|false
- HIVE_RPC / STEEM_RPC / BLURT_RPC / ENGINE_API = comma-separated failover URLs
- HIVE_ACCOUNTS / STEEM_ACCOUNTS / BLURT_ACCOUNTS = name=key[|mode|mode],...
- HIVE_ENGINE_ACCOUNTS = name=key,...  (token sweep accounts)
- DEST_HIVE_NATIVE / DEST_HIVE_TOKENS / DEST_STEEM / DEST_BLURT
- HIVE_RESERVE / HBD_RESERVE / STEEM_RESERVE / SBD_RESERVE / BLURT_RESERVE
- BATCH_SIZE / COOLDOWN_SECONDS / LOOP_DELAY_SECONDS
- RETRY_MAX_ATTEMPTS / RETRY_BASE_DELAY_SECONDS / RETRY_MAX_DELAY_SECONDS
- LOG_LEVEL / LOG_FILE / SWEEPER_CONFIG (path to YAML overrides)

Everything is validated here so workers never meet a malformed account or a
missing destination at run time.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Flag, auto
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml
from loguru import logger

from .batch_dispatcher import DEFAULT_BATCH_SIZE, DEFAULT_COOLDOWN_SECONDS
from .account_worker import DEFAULT_LOOP_DELAY_SECONDS
from .errors import ConfigError
from .retry_executor import RetryPolicy
from .sweep_planner import NATIVE_PRECISION, ReserveThresholds
from .token_ledger import ENGINE_API_DEFAULT


class SweepMode(Flag):
    """Capabilities enabled for an account"""
    NONE = 0
    NATIVE = auto()
    TOKENS = auto()

    @classmethod
    def parse(cls, name: str) -> 'SweepMode':
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ConfigError(f"Unknown sweep mode: {name!r} (expected 'native' or 'tokens')") from None

    @property
    def label(self) -> str:
        return (self.name or 'none').lower()


@dataclass(frozen=True)
class Account:
    """Account to sweep; the key is never printed"""
    name: str
    key: str = field(repr=False)
    modes: SweepMode = SweepMode.NATIVE


@dataclass
class NetworkConfig:
    """Settings for one network"""
    name: str
    endpoints: Tuple[str, ...] = ()
    accounts: Tuple[Account, ...] = ()
    enabled_modes: SweepMode = SweepMode.NONE
    destinations: Dict[SweepMode, str] = field(default_factory=dict)

    @property
    def enabled(self) -> bool:
        return bool(self.enabled_modes)

    def assignments(self) -> Iterator[Tuple[Account, SweepMode]]:
        """(account, mode) pairs that get a worker"""
        for account in self.accounts:
            for mode in (SweepMode.NATIVE, SweepMode.TOKENS):
                if mode in account.modes and mode in self.enabled_modes:
                    yield account, mode


@dataclass
class SweeperConfig:
    """Process-wide configuration, immutable after load"""
    networks: Dict[str, NetworkConfig]
    engine_endpoints: Tuple[str, ...]
    reserves: ReserveThresholds
    batch_size: int = DEFAULT_BATCH_SIZE
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    loop_delay_seconds: float = DEFAULT_LOOP_DELAY_SECONDS
    retry: RetryPolicy = RetryPolicy()
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def enabled_networks(self) -> List[NetworkConfig]:
        return [n for n in self.networks.values() if n.enabled]


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated value, dropping blanks"""
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


def parse_accounts(value: Optional[str], default_mode: SweepMode) -> List[Account]:
    """
    Parse 'name=key[|mode|mode],...' entries

    Args:
        value: Raw environment value
        default_mode: Mode used when an entry lists none

    Returns:
        List of Account
    """
    accounts = []
    for entry in split_list(value):
        name, sep, rest = entry.partition('=')
        parts = rest.split('|')
        key = parts[0].strip()
        if not sep or not name.strip() or not key:
            raise ConfigError(f"Malformed account entry for {name.strip()!r}: expected name=key")

        modes = SweepMode.NONE
        for mode_name in parts[1:]:
            if mode_name.strip():
                modes |= SweepMode.parse(mode_name)

        accounts.append(Account(name=name.strip(), key=key, modes=modes or default_mode))
    return accounts


def merge_accounts(accounts: List[Account]) -> Tuple[Account, ...]:
    """Merge duplicate account names, combining their modes (order kept)"""
    merged: Dict[str, Account] = {}
    for account in accounts:
        existing = merged.get(account.name)
        if existing is None:
            merged[account.name] = account
            continue
        if existing.key != account.key:
            raise ConfigError(f"Account {account.name} is configured with two different keys")
        merged[account.name] = Account(account.name, account.key, existing.modes | account.modes)
    return tuple(merged.values())


class SweepConfigParser:
    """
    Build a SweeperConfig from the environment and optional YAML overrides

    Features:
    - Comma-separated failover endpoint lists
    - Per-account capability modes validated at load time
    - Per-asset reserves as exact decimals
    - YAML overrides for pacing, retry and reserves
    """

    NETWORKS = ('hive', 'steem', 'blurt')
    RESERVE_SYMBOLS = ('HIVE', 'HBD', 'STEEM', 'SBD', 'BLURT')
    DESTINATION_KEYS = {
        ('hive', SweepMode.NATIVE): 'DEST_HIVE_NATIVE',
        ('hive', SweepMode.TOKENS): 'DEST_HIVE_TOKENS',
        ('steem', SweepMode.NATIVE): 'DEST_STEEM',
        ('blurt', SweepMode.NATIVE): 'DEST_BLURT',
    }
    LOG_LEVELS = ('TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL')

    def __init__(self, env: Optional[Mapping[str, str]] = None, config_path: Optional[str] = None):
        """
        Initialize parser

        Args:
            env: Environment mapping (defaults to os.environ)
            config_path: YAML override file (defaults to $SWEEPER_CONFIG)
        """
        self.env = env if env is not None else os.environ
        self.config_path = config_path or self.env.get('SWEEPER_CONFIG')

    def log_level(self) -> str:
        """Validated LOG_LEVEL (default INFO)"""
        level = self.env.get("LOG_LEVEL", "").strip().upper() or "INFO"
        if level not in self.LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(self.LOG_LEVELS)}, got {level!r}")
        return level

    def _flag(self, name: str) -> bool:
        return self.env.get(name, '').strip().lower() == 'true'

    def _number(self, name: str, default, cast, overrides: Optional[Mapping[str, Any]] = None, key: Optional[str] = None):
        """Numeric setting: YAML override first, then environment, then default"""
        if overrides and key in overrides:
            raw, source = overrides[key], key
        else:
            raw, source = self.env.get(name), name
        if raw is None or not str(raw).strip():
            return default
        try:
            return cast(str(raw).strip())
        except (TypeError, ValueError, InvalidOperation):
            raise ConfigError(f"{source} must be numeric, got {raw!r}") from None

    def _load_overrides(self) -> Dict[str, Any]:
        """Load YAML overrides, falling back to none when the file is absent"""
        if not self.config_path:
            return {}

        config_file = Path(self.config_path)
        if not config_file.exists():
            logger.warning(f"Config file {config_file} not found, using environment only")
            return {}

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                overrides = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {config_file}: {e}") from e

        if not isinstance(overrides, dict):
            raise ConfigError(f"{config_file} must contain a mapping at the top level")

        logger.info(f"Loaded overrides from {config_file}: {sorted(overrides)}")
        return overrides

    def _parse_reserves(self, overrides: Mapping[str, Any]) -> ReserveThresholds:
        reserves: Dict[str, Decimal] = {}
        for symbol in self.RESERVE_SYMBOLS:
            reserves[symbol] = self._number(f"{symbol}_RESERVE", Decimal('0'), Decimal)

        for symbol, amount in (overrides.get('reserves') or {}).items():
            try:
                reserves[str(symbol).upper()] = Decimal(str(amount))
            except InvalidOperation:
                raise ConfigError(f"Reserve for {symbol} must be numeric, got {amount!r}") from None

        for symbol, amount in reserves.items():
            if not amount.is_finite():
                raise ConfigError(f"Reserve for {symbol} must be a finite number, got {amount}")
            if amount < 0:
                raise ConfigError(f"Reserve for {symbol} cannot be negative")
            # Reserves share the 3-decimal on-chain precision of the balances they guard
            if amount != amount.quantize(NATIVE_PRECISION):
                raise ConfigError(f"Reserve for {symbol} has more than 3 decimals: {amount}")

        return ReserveThresholds(reserves)

    def _parse_network(self, name: str) -> NetworkConfig:
        upper = name.upper()

        enabled = SweepMode.NATIVE if self._flag(f"ENABLE_{upper}") else SweepMode.NONE
        accounts = parse_accounts(self.env.get(f"{upper}_ACCOUNTS"), SweepMode.NATIVE)

        if name == 'hive':
            if self._flag("ENABLE_HIVE_ENGINE"):
                enabled |= SweepMode.TOKENS
            accounts += parse_accounts(self.env.get("HIVE_ENGINE_ACCOUNTS"), SweepMode.TOKENS)
        else:
            for account in accounts:
                if SweepMode.TOKENS in account.modes:
                    raise ConfigError(f"{upper} account {account.name}: token sweep is only supported on Hive")

        network = NetworkConfig(
            name=name,
            endpoints=tuple(split_list(self.env.get(f"{upper}_RPC"))),
            accounts=merge_accounts(accounts),
            enabled_modes=enabled,
        )

        if not network.enabled:
            return network

        if not network.endpoints:
            raise ConfigError(f"{upper}_RPC must list at least one endpoint when {upper} sweeping is enabled")

        for mode in (SweepMode.NATIVE, SweepMode.TOKENS):
            if mode not in enabled:
                continue
            key = self.DESTINATION_KEYS[(name, mode)]
            destination = self.env.get(key, '').strip()
            if not destination:
                raise ConfigError(f"{key} must be set when {upper} {mode.label} sweeping is enabled")
            network.destinations[mode] = destination

        if not any(True for _ in network.assignments()):
            logger.warning(f"{upper} is enabled but no accounts are configured for it")

        return network

    def parse(self) -> SweeperConfig:
        """
        Parse and validate the complete configuration

        Returns:
            SweeperConfig
        """
        overrides = self._load_overrides()
        retry_overrides = overrides.get('retry') or {}

        retry = RetryPolicy(
            max_attempts=self._number("RETRY_MAX_ATTEMPTS", RetryPolicy.max_attempts, int, retry_overrides, "max_attempts"),
            base_delay=self._number("RETRY_BASE_DELAY_SECONDS", RetryPolicy.base_delay, float, retry_overrides, "base_delay_seconds"),
            max_delay=self._number("RETRY_MAX_DELAY_SECONDS", RetryPolicy.max_delay, float, retry_overrides, "max_delay_seconds"),
        )
        if retry.max_attempts < 1:
            raise ConfigError("Retry max_attempts must be at least 1")

        config = SweeperConfig(
            networks={name: self._parse_network(name) for name in self.NETWORKS},
            engine_endpoints=tuple(split_list(self.env.get("ENGINE_API"))) or (ENGINE_API_DEFAULT,),
            reserves=self._parse_reserves(overrides),
            batch_size=self._number("BATCH_SIZE", DEFAULT_BATCH_SIZE, int, overrides, "batch_size"),
            cooldown_seconds=self._number("COOLDOWN_SECONDS", DEFAULT_COOLDOWN_SECONDS, float, overrides, "cooldown_seconds"),
            loop_delay_seconds=self._number("LOOP_DELAY_SECONDS", DEFAULT_LOOP_DELAY_SECONDS, float, overrides, "loop_delay_seconds"),
            retry=retry,
            log_level=self.log_level(),
            log_file=self.env.get("LOG_FILE") or None,
        )

        if config.batch_size < 1:
            raise ConfigError("BATCH_SIZE must be at least 1")
        if config.cooldown_seconds < 0 or config.loop_delay_seconds < 0:
            raise ConfigError("COOLDOWN_SECONDS and LOOP_DELAY_SECONDS cannot be negative")

        enabled = [n.name for n in config.enabled_networks]
        logger.info(f"Sweeper config loaded: networks={enabled or 'none'}")
        logger.info(f"  Batch size: {config.batch_size}, cooldown: {config.cooldown_seconds:.0f}s, "
                    f"loop delay: {config.loop_delay_seconds:.0f}s")
        logger.info(f"  Reserves: { {k: str(v) for k, v in config.reserves.as_dict().items()} }")

        return config
