"""
Agent Configuration

Loads settings from a YAML file, then applies environment overrides
(a .env file in the working directory is read first).

Environment variables:
- ETH_RPC_URL, ACCOUNT_ADDRESS (required to talk to a real ledger)
- API_TIMEOUT_SECS, DEFI_API_URL, MIN_BALANCE_WEI
- CYCLE_INTERVAL_SECS, BRIDGE_JOURNAL_PATH
"""

import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional
import yaml
from dotenv import load_dotenv
from loguru import logger

from .balance_monitor import DEFAULT_MIN_BALANCE
from .errors import ConfigError
from .transfer_router import MIN_TRANSFER, SIMULATED_LIQUIDITY
from .yield_optimizer import DEFAULT_POOL_API_URL

RECOMMENDED_MIN_TIMEOUT = 5

ENV_OVERRIDES = {
    'ETH_RPC_URL': ('rpc_url', str),
    'ACCOUNT_ADDRESS': ('account_address', str),
    'API_TIMEOUT_SECS': ('api_timeout', float),
    'DEFI_API_URL': ('pool_api_url', str),
    'MIN_BALANCE_WEI': ('min_balance', int),
    'CYCLE_INTERVAL_SECS': ('cycle_interval', float),
    'BRIDGE_JOURNAL_PATH': ('journal_path', str),
}


@dataclass
class AgentConfig:
    """Treasury agent settings"""
    rpc_url: Optional[str] = None
    account_address: Optional[str] = None
    home_chain: str = "Ethereum"
    api_timeout: float = 10.0
    pool_api_url: str = DEFAULT_POOL_API_URL
    min_balance: int = DEFAULT_MIN_BALANCE
    supported_chains: Optional[List[str]] = None
    min_transfer: float = MIN_TRANSFER
    corridor_liquidity: float = SIMULATED_LIQUIDITY
    transfer_amount: float = 100.0
    allow_same_chain: bool = False
    phase_delay: float = 1.0
    phase_timeout: float = 30.0
    cycle_interval: float = 60.0
    max_retry_delay: float = 600.0
    journal_path: str = "bridge_journal.db"
    extra: Dict = field(default_factory=dict)

    @classmethod
    def load(
        cls,
        config_path: Optional[str] = "treasury_config.yaml",
        env: Optional[Dict[str, str]] = None,
        load_env_file: bool = True
    ) -> 'AgentConfig':
        """
        Load configuration

        Args:
            config_path: YAML file; a missing or unreadable file falls back to defaults
            env: Environment mapping, defaults to os.environ
            load_env_file: Read .env before applying environment overrides

        Raises:
            ConfigError: a value has the wrong type
        """
        if load_env_file and env is None:
            load_dotenv()
        env = os.environ if env is None else env

        data = cls._read_yaml(config_path) if config_path else {}

        known = {f.name for f in fields(cls)} - {'extra'}
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        if extra:
            logger.debug(f"Ignoring unknown config keys: {sorted(extra)}")

        for var, (key, caster) in ENV_OVERRIDES.items():
            raw = env.get(var)
            if raw is None or raw == '':
                continue
            try:
                values[key] = caster(raw)
            except ValueError:
                raise ConfigError(var, f"cannot parse {raw!r} as {caster.__name__}")

        config = cls(**values, extra=extra)
        config.validate()
        return config

    @staticmethod
    def _read_yaml(config_path: str) -> Dict:
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file {path} not found, using defaults")
            return {}

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}, using defaults")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Config file {path} is not a mapping, using defaults")
            return {}

        logger.info(f"Loaded configuration from {path}")
        return data

    def validate(self):
        if self.api_timeout <= 0:
            raise ConfigError('api_timeout', "must be positive")
        if self.api_timeout < RECOMMENDED_MIN_TIMEOUT:
            logger.warning(
                f"API timeout is set below recommended minimum ({RECOMMENDED_MIN_TIMEOUT}s). "
                f"Current: {self.api_timeout}s"
            )
        if isinstance(self.min_balance, bool) or not isinstance(self.min_balance, int) or self.min_balance < 0:
            raise ConfigError('min_balance', "must be a non-negative integer (wei)")
        for key in ('transfer_amount', 'min_transfer', 'corridor_liquidity'):
            value = getattr(self, key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigError(key, "must be a finite number")
        if self.transfer_amount <= 0:
            raise ConfigError('transfer_amount', "must be positive")
        if self.cycle_interval <= 0:
            raise ConfigError('cycle_interval', "must be positive")
        if self.max_retry_delay < self.cycle_interval:
            raise ConfigError('max_retry_delay', "must be at least cycle_interval")
        if self.supported_chains is not None and not isinstance(self.supported_chains, list):
            raise ConfigError('supported_chains', "must be a list of chain names")

    def require_ledger(self):
        """Raise ConfigError unless the ledger endpoint and account are set"""
        if not self.rpc_url:
            raise ConfigError('ETH_RPC_URL', "must be set")
        if not self.account_address:
            raise ConfigError('ACCOUNT_ADDRESS', "must be set")
