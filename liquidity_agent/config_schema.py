"""
Configuration schema validation using Pydantic
"""

import re
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _check_address(v: str) -> str:
    if not _ADDRESS_RE.match(v):
        raise ValueError(f"Invalid address: {v}")
    return v


class TokenSchema(BaseModel):
    """ERC20 token entry"""

    address: str
    decimals: int = Field(ge=0, le=36, default=18)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        return _check_address(v)

    model_config = {"extra": "forbid"}


class ContractsSchema(BaseModel):
    """Protocol contract addresses"""

    router: str
    factory: str
    voter: str
    multicall: str = "0xcA11bde05977b3631167028862bE2a173976CA11"

    @field_validator("router", "factory", "voter", "multicall")
    @classmethod
    def validate_addresses(cls, v):
        return _check_address(v)

    model_config = {"extra": "forbid"}


class GasLimitsSchema(BaseModel):
    """Fixed gas limit per operation kind"""

    swap: int = Field(ge=21000, default=300000)
    add_liquidity: int = Field(ge=21000, default=500000)
    remove_liquidity: int = Field(ge=21000, default=400000)
    stake: int = Field(ge=21000, default=200000)
    unstake: int = Field(ge=21000, default=200000)
    claim_rewards: int = Field(ge=21000, default=200000)
    multicall: int = Field(ge=21000, default=1000000)
    approval: int = Field(ge=21000, default=100000)

    model_config = {"extra": "forbid"}


class ExecutionSchema(BaseModel):
    """Flow execution parameters"""

    default_slippage_pct: float = Field(
        ge=0.1, le=5.0, default=0.5, description="Default slippage tolerance in percent"
    )
    deadline_minutes: int = Field(
        ge=1, le=60, default=30, description="Transaction deadline window"
    )
    step_timeout_s: float = Field(
        gt=0, le=3600, default=180, description="Timeout for a single ledger call"
    )
    receipt_timeout_s: float = Field(gt=0, le=3600, default=120)
    use_batching: bool = False
    split_ratio_pct: float = Field(gt=0, lt=100, default=50)
    max_fee_gwei: float = Field(gt=0, le=10000, default=5.0)
    max_priority_fee_gwei: float = Field(ge=0, le=1000, default=0.01)
    gas_limits: GasLimitsSchema = Field(default_factory=GasLimitsSchema)

    @model_validator(mode="after")
    def validate_fee_caps(self):
        if self.max_priority_fee_gwei > self.max_fee_gwei:
            raise ValueError("max_priority_fee_gwei cannot exceed max_fee_gwei")
        return self

    model_config = {"extra": "forbid"}


class RecoverySchema(BaseModel):
    """Recovery engine parameters"""

    enabled: bool = True
    dust_threshold: float = Field(ge=0, default=0.001)
    manual_intervention: bool = True

    model_config = {"extra": "forbid"}


class ObservabilitySchema(BaseModel):
    """Metrics exposure"""

    metrics_enabled: bool = False
    prometheus_port: int = Field(ge=1, le=65535, default=8000)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    model_config = {"extra": "forbid"}


class PaperSchema(BaseModel):
    """Simulated ledger used by --paper runs"""

    initial_balances: Dict[str, float] = Field(default_factory=dict)
    prices: Dict[str, float] = Field(
        default_factory=dict, description="Price of each token in base-asset units"
    )
    liquidity_depth: float = Field(
        gt=0, default=1_000_000, description="Base-asset value of each side of a pool"
    )
    fee_pct: float = Field(ge=0, lt=100, default=0.3)
    stable_pools: bool = False
    native_batching: bool = True

    @field_validator("initial_balances")
    @classmethod
    def validate_initial_balances(cls, v):
        for symbol, balance in v.items():
            if balance < 0:
                raise ValueError(f"Balance for {symbol} cannot be negative: {balance}")
        return v

    @field_validator("prices")
    @classmethod
    def validate_prices(cls, v):
        for symbol, price in v.items():
            if price <= 0:
                raise ValueError(f"Price for {symbol} must be positive: {price}")
        return v

    model_config = {"extra": "forbid"}


class AgentConfigSchema(BaseModel):
    """Complete agent configuration schema"""

    name: str = Field(min_length=1, max_length=100, default="liquidity_agent")
    network: str = "base"
    chain_id: int = Field(ge=1, default=8453)
    rpc_url_env: str = "RPC_URL"
    rpc_primary: Optional[str] = None
    private_key_env: str = "PRIVATE_KEY"
    explorer_url: Optional[str] = None

    base_asset: str
    pair: List[str] = Field(min_length=2, max_length=2)
    tokens: Dict[str, TokenSchema]
    contracts: ContractsSchema
    pool_variants: List[Literal["volatile", "stable"]] = Field(
        default_factory=lambda: ["volatile", "stable"], min_length=1
    )

    execution: ExecutionSchema = Field(default_factory=ExecutionSchema)
    recovery: RecoverySchema = Field(default_factory=RecoverySchema)
    observability: ObservabilitySchema = Field(default_factory=ObservabilitySchema)
    paper: Optional[PaperSchema] = None

    @field_validator("pool_variants")
    @classmethod
    def validate_unique_variants(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("pool_variants cannot contain duplicates")
        return v

    @model_validator(mode="after")
    def validate_token_references(self):
        missing = [
            s for s in [self.base_asset, *self.pair] if s not in self.tokens
        ]
        if missing:
            raise ValueError(f"Tokens not defined in tokens section: {missing}")
        if self.pair[0] == self.pair[1]:
            raise ValueError("pair must contain two different tokens")
        if self.base_asset in self.pair:
            raise ValueError("base_asset must not be one of the pool assets")
        return self

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
    }


def validate_agent_config(config_dict: Dict) -> AgentConfigSchema:
    """
    Validate an agent configuration dictionary

    Args:
        config_dict: Dictionary representation of agent config

    Returns:
        Validated AgentConfigSchema object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return AgentConfigSchema(**config_dict)


def validate_config_file(config_path: Union[str, Path]) -> AgentConfigSchema:
    """
    Validate an agent configuration file

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If configuration is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    config_path = Path(config_path)
    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f)
    return validate_agent_config(config_dict or {})
