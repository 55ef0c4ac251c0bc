"""
Configuration loading and normalization for the liquidity agent.

Loads the YAML configuration, validates it against the pydantic schema and
normalizes it into frozen dataclasses. Secrets (private key, RPC URL) are
never read from the YAML file; they come from the environment, optionally
populated from a ``.env`` file.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from .config_schema import AgentConfigSchema, validate_agent_config
from .exceptions import ConfigurationError, ValidationError
from .types import Token

BASE_MAINNET_CONFIG: Dict[str, Any] = {
    "name": "aerodrome_weth_virtual",
    "network": "base",
    "chain_id": 8453,
    "rpc_url_env": "RPC_URL",
    "rpc_primary": "https://mainnet.base.org",
    "private_key_env": "PRIVATE_KEY",
    "explorer_url": "https://basescan.org",
    "base_asset": "USDC",
    "pair": ["WETH", "VIRTUAL"],
    "tokens": {
        "USDC": {"address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "decimals": 6},
        "WETH": {"address": "0x4200000000000000000000000000000000000006", "decimals": 18},
        "VIRTUAL": {"address": "0x0b3e328455c4059EEb9e3f84b5543F74E24e7E1b", "decimals": 18},
        "AERO": {"address": "0x940181a94A35A4569E4529A3CDfB74e38FD98631", "decimals": 18},
    },
    "contracts": {
        "router": "0xcF77a3Ba9A5CA399B7c97c74d54e5b1Beb874E43",
        "factory": "0x420DD381b31aEf6683db6B902084cB0FFECe40Da",
        "voter": "0x16613524e02ad97eDfeF371bC883F2F5d6C480A5",
        "multicall": "0xcA11bde05977b3631167028862bE2a173976CA11",
    },
}


@dataclass(frozen=True)
class NetworkConfig:
    """Normalized network configuration."""

    name: str = "base"
    chain_id: int = 8453
    rpc_primary: Optional[str] = None
    explorer_url: Optional[str] = None

    def tx_url(self, tx_hash: str) -> Optional[str]:
        if not self.explorer_url or not tx_hash:
            return None
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


@dataclass(frozen=True)
class ContractsConfig:
    """Normalized protocol contract addresses."""

    router: str
    factory: str
    voter: str
    multicall: str


@dataclass(frozen=True)
class GasLimits:
    """Fixed gas limits per operation."""

    swap: int = 300000
    add_liquidity: int = 500000
    remove_liquidity: int = 400000
    stake: int = 200000
    unstake: int = 200000
    claim_rewards: int = 200000
    multicall: int = 1000000
    approval: int = 100000


@dataclass(frozen=True)
class ExecutionConfig:
    """Normalized execution configuration."""

    default_slippage_pct: Decimal = Decimal("0.5")
    deadline_minutes: int = 30
    step_timeout_s: float = 180.0
    receipt_timeout_s: float = 120.0
    use_batching: bool = False
    split_ratio_pct: Decimal = Decimal("50")
    max_fee_gwei: Decimal = Decimal("5")
    max_priority_fee_gwei: Decimal = Decimal("0.01")
    gas_limits: GasLimits = field(default_factory=GasLimits)


@dataclass(frozen=True)
class RecoveryConfig:
    """Normalized recovery engine configuration."""

    enabled: bool = True
    dust_threshold: Decimal = Decimal("0.001")
    manual_intervention: bool = True


@dataclass(frozen=True)
class ObservabilityConfig:
    """Normalized observability configuration."""

    metrics_enabled: bool = False
    prometheus_port: int = 8000
    log_level: str = "INFO"


@dataclass(frozen=True)
class PaperConfig:
    """Normalized simulated-ledger configuration."""

    initial_balances: Dict[str, Decimal] = field(default_factory=dict)
    prices: Dict[str, Decimal] = field(default_factory=dict)
    liquidity_depth: Decimal = Decimal("1000000")
    fee_pct: Decimal = Decimal("0.3")
    stable_pools: bool = False
    native_batching: bool = True


@dataclass(frozen=True)
class Credentials:
    """Secrets resolved from the environment."""

    rpc_url: Optional[str]
    private_key: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class AgentConfig:
    """Immutable runtime configuration object."""

    name: str
    network: NetworkConfig
    base_asset: Token
    pair: Tuple[Token, Token]
    tokens: Dict[str, Token]
    contracts: ContractsConfig
    pool_variants: Tuple[str, ...] = ("volatile", "stable")
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    paper: Optional[PaperConfig] = None
    rpc_url_env: str = "RPC_URL"
    private_key_env: str = "PRIVATE_KEY"

    @property
    def asset_a(self) -> Token:
        return self.pair[0]

    @property
    def asset_b(self) -> Token:
        return self.pair[1]


def _dec(value: Any) -> Decimal:
    return Decimal(str(value))


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}")

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    return config_dict


def _normalize_execution_config(schema: AgentConfigSchema) -> ExecutionConfig:
    """Normalize execution configuration."""
    exec_schema = schema.execution
    gas = exec_schema.gas_limits

    return ExecutionConfig(
        default_slippage_pct=_dec(exec_schema.default_slippage_pct),
        deadline_minutes=exec_schema.deadline_minutes,
        step_timeout_s=float(exec_schema.step_timeout_s),
        receipt_timeout_s=float(exec_schema.receipt_timeout_s),
        use_batching=exec_schema.use_batching,
        split_ratio_pct=_dec(exec_schema.split_ratio_pct),
        max_fee_gwei=_dec(exec_schema.max_fee_gwei),
        max_priority_fee_gwei=_dec(exec_schema.max_priority_fee_gwei),
        gas_limits=GasLimits(
            swap=gas.swap,
            add_liquidity=gas.add_liquidity,
            remove_liquidity=gas.remove_liquidity,
            stake=gas.stake,
            unstake=gas.unstake,
            claim_rewards=gas.claim_rewards,
            multicall=gas.multicall,
            approval=gas.approval,
        ),
    )


def _normalize_paper_config(schema: AgentConfigSchema) -> Optional[PaperConfig]:
    """Normalize paper ledger configuration, if present."""
    paper = schema.paper
    if paper is None:
        return None

    unknown = [
        s for s in list(paper.initial_balances) + list(paper.prices) if s not in schema.tokens
    ]
    if unknown:
        raise ConfigurationError(f"Paper config references unknown tokens: {unknown}")

    return PaperConfig(
        initial_balances={k: _dec(v) for k, v in paper.initial_balances.items()},
        prices={k: _dec(v) for k, v in paper.prices.items()},
        liquidity_depth=_dec(paper.liquidity_depth),
        fee_pct=_dec(paper.fee_pct),
        stable_pools=paper.stable_pools,
        native_batching=paper.native_batching,
    )


def build_agent_config(config_dict: Dict[str, Any]) -> AgentConfig:
    """
    Validate and normalize a configuration dictionary.

    Raises:
        ValidationError: If the dictionary fails schema validation
        ConfigurationError: If the validated values cannot be normalized
    """
    try:
        schema = validate_agent_config(config_dict)
    except PydanticValidationError as e:
        raise ValidationError(f"Configuration validation failed: {e}")

    tokens = {
        symbol: Token(symbol=symbol, address=entry.address, decimals=entry.decimals)
        for symbol, entry in schema.tokens.items()
    }

    return AgentConfig(
        name=schema.name,
        network=NetworkConfig(
            name=schema.network,
            chain_id=schema.chain_id,
            rpc_primary=schema.rpc_primary,
            explorer_url=schema.explorer_url,
        ),
        base_asset=tokens[schema.base_asset],
        pair=(tokens[schema.pair[0]], tokens[schema.pair[1]]),
        tokens=tokens,
        contracts=ContractsConfig(
            router=schema.contracts.router,
            factory=schema.contracts.factory,
            voter=schema.contracts.voter,
            multicall=schema.contracts.multicall,
        ),
        pool_variants=tuple(schema.pool_variants),
        execution=_normalize_execution_config(schema),
        recovery=RecoveryConfig(
            enabled=schema.recovery.enabled,
            dust_threshold=_dec(schema.recovery.dust_threshold),
            manual_intervention=schema.recovery.manual_intervention,
        ),
        observability=ObservabilityConfig(
            metrics_enabled=schema.observability.metrics_enabled,
            prometheus_port=schema.observability.prometheus_port,
            log_level=schema.observability.log_level,
        ),
        paper=_normalize_paper_config(schema),
        rpc_url_env=schema.rpc_url_env,
        private_key_env=schema.private_key_env,
    )


def load_agent_config(config_path: Union[str, Path]) -> AgentConfig:
    """
    Load and normalize an agent configuration file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Normalized and frozen agent configuration

    Raises:
        ConfigurationError: If the configuration cannot be loaded
        ValidationError: If the configuration fails schema validation
    """
    return build_agent_config(load_yaml_config(config_path))


def get_default_config() -> AgentConfig:
    """Base mainnet USDC -> WETH/VIRTUAL configuration."""
    return build_agent_config(BASE_MAINNET_CONFIG)


def resolve_credentials(
    config: AgentConfig,
    require_private_key: bool = True,
    env_file: Optional[Union[str, Path]] = None,
) -> Credentials:
    """
    Read the RPC URL and signing key from the environment.

    Variables already present in the environment take precedence over the
    ``.env`` file.

    Raises:
        ConfigurationError: If a required secret is missing
    """
    load_dotenv(dotenv_path=env_file)

    rpc_url = os.getenv(config.rpc_url_env) or config.network.rpc_primary
    if not rpc_url:
        raise ConfigurationError(
            f"RPC URL environment variable {config.rpc_url_env} not set and no rpc_primary in config"
        )

    private_key = os.getenv(config.private_key_env)
    if require_private_key and not private_key:
        raise ConfigurationError(
            f"Private key environment variable {config.private_key_env} not set"
        )

    return Credentials(rpc_url=rpc_url, private_key=private_key)
