"""
Type definitions for the liquidity agent.
Contains enums and dataclasses shared by the orchestrator, the recovery
engine, the batch executor and the ledger gateways.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .bounds import to_decimal, validate_slippage
from .exceptions import ErrorCategory, InvalidInputError


class FlowKind(Enum):
    """Kind of saga a failure originated from."""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    UNKNOWN = "unknown"


class DepositState(Enum):
    """
    States of the deposit saga.

    Values:
        INIT: Flow accepted, nothing read yet
        CHECK_BASE_BALANCE: Base balance compared with the requested amount
        ACQUIRE_HALF_A: Half of the base amount swapped into asset A
        ACQUIRE_HALF_B: Half of the base amount swapped into asset B
        ADD_LIQUIDITY: Full A/B balances deposited into the pool
        STAKE: Full LP balance deposited into the gauge
        RECEIPT: PositionReceipt assembled (terminal, success)
        FAILED: A step failed (terminal)
    """

    INIT = "Init"
    CHECK_BASE_BALANCE = "CheckBaseBalance"
    ACQUIRE_HALF_A = "AcquireHalfA"
    ACQUIRE_HALF_B = "AcquireHalfB"
    ADD_LIQUIDITY = "AddLiquidity"
    STAKE = "Stake"
    RECEIPT = "Receipt"
    FAILED = "Failed"


class WithdrawState(Enum):
    """
    States of the withdraw saga.

    Values:
        INIT: Flow accepted, nothing read yet
        CHECK_STAKED: Staked balance must be non-zero
        UNSTAKE: Percentage of the stake withdrawn from the gauge
        REMOVE_LIQUIDITY: Unstaked LP tokens burned for A and B
        LIQUIDATE_A: Asset A balance swapped back to base (skipped on zero)
        LIQUIDATE_B: Asset B balance swapped back to base (skipped on zero)
        RECEIPT: WithdrawalReceipt assembled (terminal, success)
        FAILED: A step failed (terminal)
    """

    INIT = "Init"
    CHECK_STAKED = "CheckStaked"
    UNSTAKE = "Unstake"
    REMOVE_LIQUIDITY = "RemoveLiquidity"
    LIQUIDATE_A = "LiquidateA"
    LIQUIDATE_B = "LiquidateB"
    RECEIPT = "Receipt"
    FAILED = "Failed"


class OperationKind(Enum):
    """Kind of ledger operation recorded in a StepResult"""

    SWAP = "swap"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    STAKE = "stake"
    UNSTAKE = "unstake"
    APPROVE = "approve"
    CLAIM_REWARDS = "claim_rewards"
    REPORT = "report"


class BatchMode(Enum):
    """Failure semantics of a submitted batch"""

    BEST_EFFORT = "best_effort"
    ALL_OR_NOTHING = "all_or_nothing"


class RecoveryKind(Enum):
    """Kind of compensating action"""

    REFUND = "refund"
    RETRY = "retry"
    ROLLBACK = "rollback"
    RECOVER_STUCK = "recover_stuck"
    MANUAL = "manual"


@dataclass(frozen=True)
class Token:
    """An ERC20 asset known to the agent."""

    symbol: str
    address: str
    decimals: int = 18

    def __str__(self) -> str:
        return self.symbol


@dataclass(frozen=True)
class SwapRoute:
    """Single-hop route through a pool variant."""

    token_in: Token
    token_out: Token
    stable: bool = False

    def __str__(self) -> str:
        variant = "stable" if self.stable else "volatile"
        return f"{self.token_in.symbol} -> {self.token_out.symbol} ({variant})"


def _validate_flags(slippage_pct, use_batching, optimize_for_gas):
    if slippage_pct is not None:
        validate_slippage(slippage_pct)
    if use_batching is not None and not isinstance(use_batching, bool):
        raise InvalidInputError("use_batching must be a boolean", "use_batching", use_batching)
    if not isinstance(optimize_for_gas, bool):
        raise InvalidInputError(
            "optimize_for_gas must be a boolean", "optimize_for_gas", optimize_for_gas
        )


@dataclass(frozen=True)
class DepositRequest:
    """
    Request to deposit base asset into the pool and stake the LP tokens.

    Attributes:
        amount: Decimal string in base-asset units (e.g. "100")
        slippage_pct: Optional slippage tolerance override in percent
        use_batching: Optional override of the configured batching setting
        optimize_for_gas: Forces batching on when the gateway supports it
        split_ratio_pct: Explicit share for asset A; defaults to an even split
    """

    amount: str
    slippage_pct: Optional[Union[str, Decimal]] = None
    use_batching: Optional[bool] = None
    optimize_for_gas: bool = False
    split_ratio_pct: Optional[Union[str, Decimal]] = None

    def __post_init__(self):
        if not isinstance(self.amount, (str, Decimal, int)) or isinstance(self.amount, bool):
            raise InvalidInputError(
                "amount must be a decimal string", "amount", self.amount
            )
        if self.decimal_amount <= 0:
            raise InvalidInputError(
                f"amount must be positive, got {self.amount}", "amount", self.amount
            )
        _validate_flags(self.slippage_pct, self.use_batching, self.optimize_for_gas)
        if self.split_ratio_pct is not None:
            ratio = to_decimal(self.split_ratio_pct, "split_ratio_pct")
            if ratio <= 0 or ratio >= 100:
                raise InvalidInputError(
                    f"split ratio must satisfy 0 < r < 100, got {ratio}",
                    "split_ratio_pct",
                    ratio,
                )

    @property
    def decimal_amount(self) -> Decimal:
        return to_decimal(self.amount, "amount")

    @property
    def kind(self) -> FlowKind:
        return FlowKind.DEPOSIT


@dataclass(frozen=True)
class WithdrawRequest:
    """
    Request to unstake and remove a percentage of the staked position.

    Attributes:
        percentage: Integer share of the staked balance to withdraw (1-100)
        slippage_pct: Optional slippage tolerance override in percent
        use_batching: Optional override of the configured batching setting
        optimize_for_gas: Forces batching on when the gateway supports it
    """

    percentage: int = 100
    slippage_pct: Optional[Union[str, Decimal]] = None
    use_batching: Optional[bool] = None
    optimize_for_gas: bool = False

    def __post_init__(self):
        if isinstance(self.percentage, bool) or not isinstance(self.percentage, int):
            raise InvalidInputError(
                f"percentage must be an integer, got {self.percentage!r}",
                "percentage",
                self.percentage,
            )
        if not 1 <= self.percentage <= 100:
            raise InvalidInputError(
                f"percentage must be between 1 and 100, got {self.percentage}",
                "percentage",
                self.percentage,
            )
        _validate_flags(self.slippage_pct, self.use_batching, self.optimize_for_gas)

    @property
    def kind(self) -> FlowKind:
        return FlowKind.WITHDRAW


FlowRequest = Union[DepositRequest, WithdrawRequest]


@dataclass(frozen=True)
class StepResult:
    """Outcome of one ledger operation. Immutable once produced."""

    operation: OperationKind
    success: bool
    tx_hash: Optional[str] = None
    gas_used: Optional[int] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    step: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        operation: OperationKind,
        tx_hash: Optional[str] = None,
        gas_used: Optional[int] = None,
        **details,
    ) -> "StepResult":
        return cls(operation, True, tx_hash=tx_hash, gas_used=gas_used, details=details)

    @classmethod
    def failed(
        cls, operation: OperationKind, error: str, tx_hash: Optional[str] = None, **details
    ) -> "StepResult":
        return cls(operation, False, tx_hash=tx_hash, error=error, details=details)

    def for_step(self, step: str) -> "StepResult":
        """Copy of this result tagged with the saga step that produced it."""
        return StepResult(
            operation=self.operation,
            success=self.success,
            tx_hash=self.tx_hash,
            gas_used=self.gas_used,
            error=self.error,
            timestamp=self.timestamp,
            step=step,
            details=dict(self.details),
        )


@dataclass(frozen=True)
class PoolReserves:
    """Reserves ordered as (asset A, asset B) plus LP total supply."""

    reserve_a: int
    reserve_b: int
    total_supply: int


@dataclass(frozen=True)
class PoolInfo:
    """
    Discovered pool and gauge for the configured pair.

    Attributes:
        pool_address: Address of the pool (also the LP token)
        asset_a: First pool asset
        asset_b: Second pool asset
        is_stable: True for the stable curve variant
        gauge_address: Staking gauge for the pool's LP token
        reserves: Reserves at discovery time
    """

    pool_address: str
    asset_a: Token
    asset_b: Token
    is_stable: bool
    gauge_address: str
    reserves: PoolReserves

    @property
    def variant(self) -> str:
        return "stable" if self.is_stable else "volatile"

    @property
    def lp_token(self) -> Token:
        return Token(
            symbol=f"{self.variant[0]}AMM-{self.asset_a.symbol}/{self.asset_b.symbol}",
            address=self.pool_address,
            decimals=18,
        )


@dataclass(frozen=True)
class PositionReceipt:
    """Terminal record of a completed deposit flow."""

    receipt_id: str
    user_address: str
    deposit_amount: str
    base_asset: str
    amount_a: int
    amount_b: int
    lp_amount: int
    staked_balance: int
    pool_address: str
    gauge_address: str
    steps: Tuple[StepResult, ...]
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class WithdrawalReceipt:
    """Terminal record of a completed withdraw flow."""

    receipt_id: str
    user_address: str
    percentage: int
    unstaked_amount: int
    amount_a_received: int
    amount_b_received: int
    final_base_balance: int
    base_asset: str
    pool_address: str
    gauge_address: str
    steps: Tuple[StepResult, ...]
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ErrorContext:
    """Created once per failed flow and handed to the recovery engine."""

    flow_kind: FlowKind
    failed_step: str
    underlying_error: str
    error_category: ErrorCategory = ErrorCategory.STEP_EXECUTION_FAILURE
    original_amount: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecoveryAction:
    """
    A compensating action built for one error context.

    The action is data only; the recovery engine dispatches on ``kind``.
    """

    kind: RecoveryKind
    name: str
    description: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def corrective(self) -> bool:
        return self.kind is not RecoveryKind.MANUAL


@dataclass(frozen=True)
class RecoveryAttempt:
    """Result of running one recovery action."""

    action: RecoveryAction
    success: bool
    message: str
    steps: Tuple[StepResult, ...] = ()
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RecoveryOutcome:
    """
    Result of a recovery chain.

    ``recovered`` is True only when a corrective action (anything but the
    manual report) succeeded.
    """

    context: ErrorContext
    recovered: bool
    attempted_actions: Tuple[RecoveryAttempt, ...]
    final_base_balance: Optional[int] = None
    resolved_by: Optional[RecoveryKind] = None

    @property
    def manual_intervention(self) -> bool:
        return self.resolved_by is RecoveryKind.MANUAL

    @property
    def category(self) -> Optional[ErrorCategory]:
        if self.recovered:
            return None
        return ErrorCategory.RECOVERY_EXHAUSTED

    @property
    def attempted_kinds(self) -> List[RecoveryKind]:
        return [attempt.action.kind for attempt in self.attempted_actions]


@dataclass(frozen=True)
class RecoveryStats:
    """Counters over all recovery chains run by the engine."""

    total_errors: int = 0
    recovered_errors: int = 0
    manual_interventions: int = 0


@dataclass(frozen=True)
class OperationStats:
    """Snapshot of flow and recovery counters."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    recovery: RecoveryStats = field(default_factory=RecoveryStats)
    last_operation: Optional[str] = None
    last_operation_time: Optional[float] = None

    @property
    def success_rate_pct(self) -> float:
        if self.total == 0:
            return 0.0
        return self.successful / self.total * 100


@dataclass
class FlowResult:
    """What a deposit or withdraw flow returns to its caller."""

    success: bool
    flow_kind: FlowKind
    steps: List[StepResult] = field(default_factory=list)
    receipt: Optional[Union[PositionReceipt, WithdrawalReceipt]] = None
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    failed_step: Optional[str] = None
    recovery: Optional[RecoveryOutcome] = None


@dataclass(frozen=True)
class AgentStatus:
    """Read-only view of the orchestrator session."""

    is_initialized: bool
    pool_discovered: bool
    pool_info: Optional[PoolInfo]
    account_address: Optional[str]
    busy: bool
    stats: OperationStats

    @property
    def last_operation(self) -> Optional[str]:
        return self.stats.last_operation

    @property
    def last_operation_time(self) -> Optional[float]:
        return self.stats.last_operation_time


@dataclass(frozen=True)
class AccountSummary:
    """Balances of every asset the agent touches, in base units."""

    account_address: str
    native_balance: int
    balances: Dict[str, int]
    lp_balance: int
    staked_balance: int
    pool_info: Optional[PoolInfo]
    stats: OperationStats


@dataclass(frozen=True)
class DepositEstimate:
    """Expected outcome of a deposit at current quotes and reserves, in base units."""

    deposit_units: int
    amount_a: int
    amount_b: int
    used_a: int
    used_b: int
    expected_lp: int
    price_a_in_b: Optional[Decimal]


@dataclass(frozen=True)
class BatchCall:
    """
    One sub-call of a batch.

    Swaps declare the asset they consume and the asset they produce so the
    batch executor can reject batches with data dependencies. Approvals only
    change allowances and neither consume nor produce an asset.
    """

    kind: OperationKind
    label: str
    token: Token
    amount: int
    spender: Optional[str] = None
    token_out: Optional[Token] = None
    min_out: int = 0
    stable: bool = False
    deadline: Optional[int] = None

    @classmethod
    def approve(cls, token: Token, spender: str, amount: int, label: Optional[str] = None) -> "BatchCall":
        return cls(
            kind=OperationKind.APPROVE,
            label=label or f"approve {token.symbol}",
            token=token,
            amount=amount,
            spender=spender,
        )

    @classmethod
    def swap(
        cls,
        route: SwapRoute,
        amount_in: int,
        min_out: int,
        deadline: int,
        label: Optional[str] = None,
    ) -> "BatchCall":
        return cls(
            kind=OperationKind.SWAP,
            label=label or f"swap {route}",
            token=route.token_in,
            amount=amount_in,
            token_out=route.token_out,
            min_out=min_out,
            stable=route.stable,
            deadline=deadline,
        )

    @property
    def route(self) -> Optional[SwapRoute]:
        if self.kind is not OperationKind.SWAP or self.token_out is None:
            return None
        return SwapRoute(self.token, self.token_out, self.stable)

    @property
    def consumes(self) -> Optional[str]:
        if self.kind is OperationKind.SWAP:
            return self.token.address.lower()
        return None

    @property
    def produces(self) -> Optional[str]:
        if self.kind is OperationKind.SWAP and self.token_out is not None:
            return self.token_out.address.lower()
        return None
