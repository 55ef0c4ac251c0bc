"""
Saga orchestrator for deposit and withdraw flows.

Each flow is an explicit state machine: a transition table gives the next
state and a handler table gives the work done in each state. One driver runs
the handlers in order, appends the StepResult a handler produces, and on the
first failure moves the flow to Failed and hands an ErrorContext to the
recovery engine.

Flows on one orchestrator are serialized by a session lock, every ledger
call is bounded by the step timeout, and a cancelled flow that already
submitted a mutating call still finishes in Failed with recovery.
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .batch_executor import BatchExecutor
from .bounds import (
    DEFAULT_DEADLINE_MINUTES,
    DEFAULT_SLIPPAGE_PCT,
    deadline,
    min_output,
    optimal_liquidity,
    pool_price,
    split_amount,
    to_base_units,
    validate_slippage,
)
from .discovery import PoolDiscovery
from .exceptions import (
    AgentNotInitializedError,
    InsufficientFundsError,
    InsufficientResourceError,
    InvalidInputError,
    LiquidityAgentError,
    NothingStakedError,
    StepExecutionError,
    TransactionRevertedError,
    TransactionTimeoutError,
    categorize,
)
from .gateway.base import MAX_UINT256, LedgerGateway
from .operation_stats import OperationLedger
from .recovery import RecoveryEngine
from .types import (
    AccountSummary,
    AgentStatus,
    BatchCall,
    DepositEstimate,
    BatchMode,
    DepositRequest,
    DepositState,
    ErrorContext,
    FlowKind,
    FlowRequest,
    FlowResult,
    OperationKind,
    PoolInfo,
    PositionReceipt,
    StepResult,
    SwapRoute,
    Token,
    WithdrawalReceipt,
    WithdrawRequest,
    WithdrawState,
)
from .utils import format_duration, format_units, generate_receipt_id, get_logger, short_address

logger = get_logger(__name__)

FlowState = Union[DepositState, WithdrawState]

DEPOSIT_TRANSITIONS: Dict[DepositState, DepositState] = {
    DepositState.INIT: DepositState.CHECK_BASE_BALANCE,
    DepositState.CHECK_BASE_BALANCE: DepositState.ACQUIRE_HALF_A,
    DepositState.ACQUIRE_HALF_A: DepositState.ACQUIRE_HALF_B,
    DepositState.ACQUIRE_HALF_B: DepositState.ADD_LIQUIDITY,
    DepositState.ADD_LIQUIDITY: DepositState.STAKE,
    DepositState.STAKE: DepositState.RECEIPT,
}

WITHDRAW_TRANSITIONS: Dict[WithdrawState, WithdrawState] = {
    WithdrawState.INIT: WithdrawState.CHECK_STAKED,
    WithdrawState.CHECK_STAKED: WithdrawState.UNSTAKE,
    WithdrawState.UNSTAKE: WithdrawState.REMOVE_LIQUIDITY,
    WithdrawState.REMOVE_LIQUIDITY: WithdrawState.LIQUIDATE_A,
    WithdrawState.LIQUIDATE_A: WithdrawState.LIQUIDATE_B,
    WithdrawState.LIQUIDATE_B: WithdrawState.RECEIPT,
}


@dataclass
class _FlowRun:
    """Mutable bookkeeping for one flow invocation."""

    kind: FlowKind
    request: FlowRequest
    pool: Optional[PoolInfo]
    slippage_pct: Decimal
    use_batching: bool
    started_at: float
    state: Optional[FlowState] = None
    steps: List[StepResult] = field(default_factory=list)
    mutation_started: bool = False
    scratch: Dict[str, Any] = field(default_factory=dict)
    receipt: Optional[Union[PositionReceipt, WithdrawalReceipt]] = None


StepHandler = Callable[[_FlowRun], Awaitable[Optional[StepResult]]]


class SagaOrchestrator:
    """
    Runs deposit and withdraw sagas for one account and one pool.

    The orchestrator owns the session's PoolInfo and shares it with the
    recovery engine by explicit update after every discovery.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        discovery: PoolDiscovery,
        batch_executor: BatchExecutor,
        recovery: RecoveryEngine,
        ledger: OperationLedger,
        base_asset: Token,
        asset_a: Token,
        asset_b: Token,
        slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT,
        deadline_minutes: int = DEFAULT_DEADLINE_MINUTES,
        step_timeout_s: Optional[float] = 180.0,
        use_batching: bool = False,
        split_ratio_pct: Decimal = Decimal("50"),
        swap_stable: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.discovery = discovery
        self.batch_executor = batch_executor
        self.recovery = recovery
        self.ledger = ledger
        self.base_asset = base_asset
        self.asset_a = asset_a
        self.asset_b = asset_b
        self.slippage_pct = validate_slippage(slippage_pct)
        self.deadline_minutes = deadline_minutes
        self.step_timeout_s = step_timeout_s
        self.use_batching = use_batching
        self.split_ratio_pct = Decimal(split_ratio_pct)
        self.swap_stable = swap_stable
        self.clock = clock

        self.is_initialized = False
        self._pool: Optional[PoolInfo] = None
        self._lock = asyncio.Lock()

        self._deposit_handlers: Dict[DepositState, StepHandler] = {
            DepositState.CHECK_BASE_BALANCE: self._check_base_balance,
            DepositState.ACQUIRE_HALF_A: self._acquire_half_a,
            DepositState.ACQUIRE_HALF_B: self._acquire_half_b,
            DepositState.ADD_LIQUIDITY: self._add_liquidity,
            DepositState.STAKE: self._stake,
            DepositState.RECEIPT: self._deposit_receipt,
        }
        self._withdraw_handlers: Dict[WithdrawState, StepHandler] = {
            WithdrawState.CHECK_STAKED: self._check_staked,
            WithdrawState.UNSTAKE: self._unstake,
            WithdrawState.REMOVE_LIQUIDITY: self._remove_liquidity,
            WithdrawState.LIQUIDATE_A: self._liquidate_a,
            WithdrawState.LIQUIDATE_B: self._liquidate_b,
            WithdrawState.RECEIPT: self._withdraw_receipt,
        }

    # === SESSION ===

    async def initialize(self) -> bool:
        """
        Connect the gateway and discover the pool and gauge.

        Returns:
            True if the pool was discovered, False otherwise
        """
        async with self._lock:
            try:
                await self._guarded(self.gateway.initialize(), "initialize")
                await self._discover()
            except LiquidityAgentError as e:
                logger.error(f"❌ Initialization failed: {e}")
                self.is_initialized = False
                return False
            self.is_initialized = True

        logger.info(
            f"🚀 Agent ready: {self.asset_a}/{self.asset_b} via "
            f"{short_address(self._pool.pool_address)} for {short_address(self.gateway.account_address)}"
        )
        return True

    async def rediscover(self) -> PoolInfo:
        """Re-run discovery between flows and refresh the shared PoolInfo."""
        async with self._lock:
            return await self._discover()

    async def _discover(self) -> PoolInfo:
        pool = await self._guarded(
            self.discovery.discover_pair(self.asset_a, self.asset_b), "discover_pair"
        )
        self._pool = pool
        self.recovery.update_pool(pool)
        return pool

    async def list_pools(self) -> Dict[str, str]:
        """Every pool variant that exists for the configured pair"""
        return await self._guarded(
            self.discovery.list_pools_for_pair(self.asset_a, self.asset_b), "list_pools"
        )

    def get_pool_info(self) -> Optional[PoolInfo]:
        return self._pool

    def get_status(self) -> AgentStatus:
        return AgentStatus(
            is_initialized=self.is_initialized,
            pool_discovered=self._pool is not None,
            pool_info=self._pool,
            account_address=self.gateway.account_address,
            busy=self._lock.locked(),
            stats=self.ledger.snapshot(),
        )

    async def get_account_summary(self) -> AccountSummary:
        """Balances of the base asset, both pool assets, LP and staked LP."""
        tokens = [self.base_asset, self.asset_a, self.asset_b]
        balances = await self._guarded(self.gateway.get_balances(tokens), "get_balances")
        native = await self._guarded(self.gateway.get_native_balance(), "get_native_balance")

        lp_balance = staked = 0
        if self._pool is not None:
            lp_balance = await self._guarded(
                self.gateway.get_balance(self._pool.lp_token), "get_balance"
            )
            staked = await self._guarded(
                self.gateway.get_staked_balance(self._pool.gauge_address), "get_staked_balance"
            )

        return AccountSummary(
            account_address=self.gateway.account_address,
            native_balance=native,
            balances={t.symbol: balances.get(t.address.lower(), 0) for t in tokens},
            lp_balance=lp_balance,
            staked_balance=staked,
            pool_info=self._pool,
            stats=self.ledger.snapshot(),
        )

    async def estimate_deposit(
        self, amount, split_ratio_pct: Optional[Decimal] = None
    ) -> DepositEstimate:
        """
        Quote a deposit without submitting anything.

        Quotes both acquisition swaps at the current router prices, then sizes
        the liquidity add against the pool's current reserves.

        Raises:
            AgentNotInitializedError: If the pool has not been discovered
            InvalidInputError: If the amount is not a positive number
        """
        pool = self._require_pool()
        units = to_base_units(amount, self.base_asset.decimals)
        if units <= 0:
            raise InvalidInputError(f"deposit amount must be positive, got {amount}", "amount", amount)

        ratio = self.split_ratio_pct if split_ratio_pct is None else split_ratio_pct
        half_a, half_b = split_amount(units, ratio)
        amount_a = await self._guarded(
            self.gateway.quote_swap(self._route_from_base(self.asset_a), half_a), "quote_swap"
        )
        amount_b = await self._guarded(
            self.gateway.quote_swap(self._route_from_base(self.asset_b), half_b), "quote_swap"
        )
        reserves = await self._guarded(
            self.gateway.get_pool_reserves(pool.pool_address, pool.asset_a, pool.asset_b),
            "get_pool_reserves",
        )
        used_a, used_b, lp = optimal_liquidity(
            amount_a, amount_b, reserves.reserve_a, reserves.reserve_b, reserves.total_supply
        )
        return DepositEstimate(
            deposit_units=units,
            amount_a=amount_a,
            amount_b=amount_b,
            used_a=used_a,
            used_b=used_b,
            expected_lp=lp,
            price_a_in_b=pool_price(
                reserves.reserve_a, reserves.reserve_b, pool.asset_a.decimals, pool.asset_b.decimals
            ),
        )

    async def claim_rewards(self) -> StepResult:
        """
        Claim gauge emissions for the staked position.

        Raises:
            AgentNotInitializedError: If the pool has not been discovered
        """
        pool = self._require_pool()
        async with self._lock:
            started = time.perf_counter()
            try:
                result = await self._guarded(
                    self.gateway.submit_claim_rewards(pool.gauge_address), "claim_rewards"
                )
            except StepExecutionError as e:
                logger.error(f"Reward claim failed: {e}")
                result = StepResult.failed(OperationKind.CLAIM_REWARDS, str(e), tx_hash=e.tx_hash)
            self.ledger.record_step(result, time.perf_counter() - started)
            return result

    def _require_pool(self) -> PoolInfo:
        if self._pool is None:
            raise AgentNotInitializedError(
                "Pool not discovered; call initialize() before running flows"
            )
        return self._pool

    # === FLOWS ===

    async def execute_deposit_flow(self, request: DepositRequest) -> FlowResult:
        """
        Swap the base asset into both pool assets, add liquidity and stake.

        Args:
            request: Validated deposit request

        Returns:
            FlowResult with the PositionReceipt on success; failures are
            reported in the result, never raised
        """
        return await self._run_flow(
            FlowKind.DEPOSIT,
            request,
            DepositState.INIT,
            DepositState.RECEIPT,
            DepositState.FAILED,
            DEPOSIT_TRANSITIONS,
            self._deposit_handlers,
        )

    async def execute_withdraw_flow(self, request: WithdrawRequest) -> FlowResult:
        """
        Unstake a percentage of the position, remove liquidity and swap the
        pool assets back to the base asset.
        """
        return await self._run_flow(
            FlowKind.WITHDRAW,
            request,
            WithdrawState.INIT,
            WithdrawState.RECEIPT,
            WithdrawState.FAILED,
            WITHDRAW_TRANSITIONS,
            self._withdraw_handlers,
        )

    async def _run_flow(
        self,
        kind: FlowKind,
        request: FlowRequest,
        initial: FlowState,
        terminal: FlowState,
        failed: FlowState,
        transitions: Dict,
        handlers: Dict,
    ) -> FlowResult:
        async with self._lock:
            run = _FlowRun(
                kind=kind,
                request=request,
                pool=self._pool,
                slippage_pct=self._slippage_for(request),
                use_batching=self._batching_for(request),
                started_at=time.perf_counter(),
                state=initial,
            )
            self.ledger.record_flow_start(kind)
            logger.info(f"▶️  Starting {kind.value} flow: {request}")

            try:
                if run.pool is None:
                    raise AgentNotInitializedError(
                        "Pool not discovered; call initialize() before running flows"
                    )
                await self._drive(run, initial, terminal, transitions, handlers)
            except asyncio.CancelledError:
                if run.mutation_started:
                    logger.warning(
                        f"{kind.value} flow cancelled at {run.state.value} after submitting "
                        f"ledger calls; finishing in {failed.value}"
                    )
                    cancelled = StepExecutionError(
                        f"flow cancelled during {run.state.value}", operation=run.state.value
                    )
                    await asyncio.shield(self._fail(run, cancelled, failed))
                else:
                    self.ledger.record_flow_failure(
                        kind, run.state.value, time.perf_counter() - run.started_at
                    )
                    logger.warning(f"{kind.value} flow cancelled before any ledger mutation")
                raise
            except Exception as e:
                return await self._fail(run, e, failed)

            duration = time.perf_counter() - run.started_at
            self.ledger.record_flow_success(kind, duration)
            logger.info(
                f"✅ {kind.value} flow complete in {format_duration(duration)} "
                f"({len(run.steps)} steps)"
            )
            return FlowResult(
                success=True,
                flow_kind=kind,
                steps=list(run.steps),
                receipt=run.receipt,
            )

    async def _drive(
        self,
        run: _FlowRun,
        initial: FlowState,
        terminal: FlowState,
        transitions: Dict,
        handlers: Dict,
    ) -> None:
        state = initial
        while True:
            run.state = state
            handler = handlers.get(state)
            if handler is not None:
                started = time.perf_counter()
                result = await handler(run)
                if result is not None:
                    result = result.for_step(state.value)
                    run.steps.append(result)
                    self.ledger.record_step(result, time.perf_counter() - started)
                    logger.info(
                        f"  ✔ {state.value}: {result.operation.value}"
                        + (f" tx {short_address(result.tx_hash)}" if result.tx_hash else "")
                    )
            if state is terminal:
                return
            state = transitions[state]

    async def _fail(self, run: _FlowRun, error: BaseException, failed: FlowState) -> FlowResult:
        failed_step = run.state.value
        category = categorize(error)
        duration = time.perf_counter() - run.started_at
        self.ledger.record_flow_failure(run.kind, failed_step, duration)

        outcome = None
        if run.mutation_started:
            ctx = ErrorContext(
                flow_kind=run.kind,
                failed_step=failed_step,
                underlying_error=str(error),
                error_category=category,
                original_amount=getattr(run.request, "amount", None),
                timestamp=self.clock(),
                details=self._context_details(run),
            )
            outcome = await self.recovery.handle(ctx)
        else:
            logger.warning(
                f"{run.kind.value} flow aborted at {failed_step} before any ledger mutation: {error}"
            )

        run.state = failed
        return FlowResult(
            success=False,
            flow_kind=run.kind,
            steps=list(run.steps),
            error=str(error),
            error_category=category,
            failed_step=failed_step,
            recovery=outcome,
        )

    def _context_details(self, run: _FlowRun) -> Dict[str, Any]:
        details = {"completed_steps": [s.step for s in run.steps]}
        if run.kind is FlowKind.WITHDRAW:
            details["percentage"] = run.request.percentage
            details["unstake_amount"] = run.scratch.get("unstake_amount", 0)
        return details

    # === HELPERS ===

    def _slippage_for(self, request: FlowRequest) -> Decimal:
        if request.slippage_pct is None:
            return self.slippage_pct
        return validate_slippage(request.slippage_pct)

    def _batching_for(self, request: FlowRequest) -> bool:
        if request.optimize_for_gas:
            return True
        if request.use_batching is not None:
            return request.use_batching
        return self.use_batching

    async def _guarded(self, awaitable, operation: str):
        """Await a ledger call under the step timeout."""
        if self.step_timeout_s is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, self.step_timeout_s)
        except asyncio.TimeoutError:
            raise TransactionTimeoutError(
                f"{operation} timed out after {self.step_timeout_s}s",
                operation=operation,
                timeout_s=self.step_timeout_s,
            )

    def _deadline(self) -> int:
        return deadline(self.clock(), self.deadline_minutes)

    def _route_to_base(self, token: Token) -> SwapRoute:
        return SwapRoute(token, self.base_asset, self.swap_stable)

    def _route_from_base(self, token: Token) -> SwapRoute:
        return SwapRoute(self.base_asset, token, self.swap_stable)

    async def _swap(self, run: _FlowRun, route: SwapRoute, amount_in: int) -> StepResult:
        run.mutation_started = True
        return await self._guarded(
            self.gateway.submit_bounded_swap(route, amount_in, run.slippage_pct, self._deadline()),
            "swap",
        )

    async def _run_batch(self, calls: List[BatchCall], mode: BatchMode) -> List[StepResult]:
        started = time.perf_counter()
        results = await self._guarded(self.batch_executor.execute_batch(calls, mode), "batch")
        latency = time.perf_counter() - started
        for result in results:
            self.ledger.record_step(result, latency)
        return results

    @staticmethod
    def _raise_if_failed(result: StepResult, operation: str) -> StepResult:
        if not result.success:
            raise StepExecutionError(
                result.error or f"{operation} failed", operation=operation, tx_hash=result.tx_hash
            )
        return result

    # === DEPOSIT STEPS ===

    async def _check_base_balance(self, run: _FlowRun) -> None:
        request: DepositRequest = run.request
        requested = to_base_units(request.decimal_amount, self.base_asset.decimals)
        if requested <= 0:
            raise InsufficientResourceError(
                f"Deposit amount {request.amount} is below one base unit of {self.base_asset}",
                asset=self.base_asset.symbol,
                required=requested,
            )

        balance = await self._guarded(self.gateway.get_balance(self.base_asset), "get_balance")
        if balance < requested:
            raise InsufficientFundsError(
                f"Insufficient {self.base_asset} balance: "
                f"{format_units(balance, self.base_asset.decimals)} < {request.amount}",
                asset=self.base_asset.symbol,
                required=requested,
                available=balance,
            )

        ratio = request.split_ratio_pct if request.split_ratio_pct is not None else self.split_ratio_pct
        half_a, half_b = split_amount(requested, ratio)
        run.scratch.update(requested=requested, half_a=half_a, half_b=half_b)
        logger.info(
            f"Base balance OK: {format_units(balance, self.base_asset.decimals)} {self.base_asset}; "
            f"split {half_a} / {half_b}"
        )
        return None

    async def _acquire_half_a(self, run: _FlowRun) -> StepResult:
        route_a = self._route_from_base(self.asset_a)
        if not run.use_batching:
            return await self._swap(run, route_a, run.scratch["half_a"])

        await self._approve_deposit_batch(run)
        if not self.batch_executor.can_batch:
            # sequential fallback would commit swap A even if swap B fails
            return await self._swap(run, route_a, run.scratch["half_a"])

        results = await self._swap_batch(
            run,
            [
                (route_a, run.scratch["half_a"], f"acquire {self.asset_a}"),
                (self._route_from_base(self.asset_b), run.scratch["half_b"], f"acquire {self.asset_b}"),
            ],
        )
        result_a, result_b = results
        self._raise_if_failed(result_a, "swap")
        self._raise_if_failed(result_b, "swap")
        run.scratch["swap_b"] = result_b
        return result_a

    async def _acquire_half_b(self, run: _FlowRun) -> StepResult:
        batched = run.scratch.pop("swap_b", None)
        if batched is not None:
            return batched
        return await self._swap(run, self._route_from_base(self.asset_b), run.scratch["half_b"])

    async def _approve_deposit_batch(self, run: _FlowRun) -> None:
        """Approvals for both swaps, the liquidity add and the stake in one best-effort batch."""
        pool = run.pool
        router = self.gateway.router_address
        calls = [
            BatchCall.approve(self.base_asset, router, run.scratch["requested"]),
            BatchCall.approve(self.asset_a, router, MAX_UINT256),
            BatchCall.approve(self.asset_b, router, MAX_UINT256),
            BatchCall.approve(pool.lp_token, pool.gauge_address, MAX_UINT256, label="approve LP"),
        ]
        run.mutation_started = True
        results = await self._run_batch(calls, BatchMode.BEST_EFFORT)
        for call, result in zip(calls, results):
            if not result.success:
                # the step itself re-checks the allowance before submitting
                logger.warning(f"Pre-approval '{call.label}' failed: {result.error}")

    async def _swap_batch(
        self, run: _FlowRun, swaps: List[Tuple[SwapRoute, int, str]]
    ) -> List[StepResult]:
        """Quote independent swaps and submit them as one all-or-nothing batch."""
        calls = []
        for route, amount_in, label in swaps:
            quote = await self._guarded(self.gateway.quote_swap(route, amount_in), "quote_swap")
            if quote <= 0:
                raise TransactionRevertedError(f"Zero quote for {route}", operation="swap")
            calls.append(
                BatchCall.swap(
                    route, amount_in, min_output(quote, run.slippage_pct), self._deadline(), label
                )
            )
        run.mutation_started = True
        return await self._run_batch(calls, BatchMode.ALL_OR_NOTHING)

    async def _add_liquidity(self, run: _FlowRun) -> StepResult:
        pool = run.pool
        amount_a = await self._guarded(self.gateway.get_balance(pool.asset_a), "get_balance")
        amount_b = await self._guarded(self.gateway.get_balance(pool.asset_b), "get_balance")
        min_a = min_output(amount_a, run.slippage_pct)
        min_b = min_output(amount_b, run.slippage_pct)

        result = await self._guarded(
            self.gateway.submit_add_liquidity(
                pool, amount_a, amount_b, min_a, min_b, self._deadline()
            ),
            "add_liquidity",
        )
        run.scratch["amount_a"] = result.details.get("amount_a", amount_a)
        run.scratch["amount_b"] = result.details.get("amount_b", amount_b)
        return result

    async def _stake(self, run: _FlowRun) -> StepResult:
        pool = run.pool
        lp_balance = await self._guarded(self.gateway.get_balance(pool.lp_token), "get_balance")
        if lp_balance <= 0:
            raise StepExecutionError("No LP tokens to stake after adding liquidity", operation="stake")

        result = await self._guarded(
            self.gateway.submit_stake(pool.gauge_address, lp_balance), "stake"
        )
        run.scratch["lp_amount"] = lp_balance
        run.scratch["staked_balance"] = await self._guarded(
            self.gateway.get_staked_balance(pool.gauge_address), "get_staked_balance"
        )
        return result

    async def _deposit_receipt(self, run: _FlowRun) -> None:
        pool = run.pool
        run.receipt = PositionReceipt(
            receipt_id=generate_receipt_id("pos"),
            user_address=self.gateway.account_address,
            deposit_amount=run.request.amount,
            base_asset=self.base_asset.symbol,
            amount_a=run.scratch["amount_a"],
            amount_b=run.scratch["amount_b"],
            lp_amount=run.scratch["lp_amount"],
            staked_balance=run.scratch["staked_balance"],
            pool_address=pool.pool_address,
            gauge_address=pool.gauge_address,
            steps=tuple(run.steps),
            timestamp=self.clock(),
        )
        return None

    # === WITHDRAW STEPS ===

    async def _check_staked(self, run: _FlowRun) -> None:
        pool = run.pool
        staked = await self._guarded(
            self.gateway.get_staked_balance(pool.gauge_address), "get_staked_balance"
        )
        if staked <= 0:
            raise NothingStakedError(
                f"Nothing staked in gauge {short_address(pool.gauge_address)}",
                asset=pool.lp_token.symbol,
                required=1,
                available=0,
            )

        percentage = run.request.percentage
        unstake_amount = staked * percentage // 100
        if unstake_amount <= 0:
            raise InsufficientResourceError(
                f"{percentage}% of staked balance {staked} rounds down to zero",
                asset=pool.lp_token.symbol,
                available=staked,
            )
        run.scratch.update(staked=staked, unstake_amount=unstake_amount)
        logger.info(f"Staked {staked} LP; withdrawing {percentage}% = {unstake_amount}")
        return None

    async def _unstake(self, run: _FlowRun) -> StepResult:
        run.mutation_started = True
        return await self._guarded(
            self.gateway.submit_unstake(run.pool.gauge_address, run.scratch["unstake_amount"]),
            "unstake",
        )

    async def _remove_liquidity(self, run: _FlowRun) -> StepResult:
        pool = run.pool
        liquidity = run.scratch["unstake_amount"]
        quote_a, quote_b = await self._guarded(
            self.gateway.quote_remove_liquidity(pool, liquidity), "quote_remove_liquidity"
        )
        min_a = min_output(quote_a, run.slippage_pct) if quote_a > 0 else 0
        min_b = min_output(quote_b, run.slippage_pct) if quote_b > 0 else 0
        return await self._guarded(
            self.gateway.submit_remove_liquidity(pool, liquidity, min_a, min_b, self._deadline()),
            "remove_liquidity",
        )

    async def _liquidate_a(self, run: _FlowRun) -> Optional[StepResult]:
        pool = run.pool
        balance_a = await self._guarded(self.gateway.get_balance(pool.asset_a), "get_balance")
        balance_b = await self._guarded(self.gateway.get_balance(pool.asset_b), "get_balance")
        run.scratch.update(amount_a_received=balance_a, amount_b_received=balance_b)

        if run.use_batching and self.batch_executor.can_batch and balance_a > 0 and balance_b > 0:
            result_a, result_b = await self._swap_batch(
                run,
                [
                    (self._route_to_base(pool.asset_a), balance_a, f"liquidate {pool.asset_a}"),
                    (self._route_to_base(pool.asset_b), balance_b, f"liquidate {pool.asset_b}"),
                ],
            )
            self._raise_if_failed(result_a, "swap")
            self._raise_if_failed(result_b, "swap")
            run.scratch["swap_b"] = result_b
            return result_a

        if balance_a <= 0:
            logger.info(f"Skipping LiquidateA: no {pool.asset_a} balance")
            return None
        return await self._swap(run, self._route_to_base(pool.asset_a), balance_a)

    async def _liquidate_b(self, run: _FlowRun) -> Optional[StepResult]:
        pool = run.pool
        result = run.scratch.pop("swap_b", None)
        if result is None:
            balance_b = await self._guarded(self.gateway.get_balance(pool.asset_b), "get_balance")
            if balance_b > 0:
                result = await self._swap(run, self._route_to_base(pool.asset_b), balance_b)
            else:
                logger.info(f"Skipping LiquidateB: no {pool.asset_b} balance")

        run.scratch["final_base_balance"] = await self._guarded(
            self.gateway.get_balance(self.base_asset), "get_balance"
        )
        return result

    async def _withdraw_receipt(self, run: _FlowRun) -> None:
        pool = run.pool
        run.receipt = WithdrawalReceipt(
            receipt_id=generate_receipt_id("wd"),
            user_address=self.gateway.account_address,
            percentage=run.request.percentage,
            unstaked_amount=run.scratch["unstake_amount"],
            amount_a_received=run.scratch["amount_a_received"],
            amount_b_received=run.scratch["amount_b_received"],
            final_base_balance=run.scratch["final_base_balance"],
            base_asset=self.base_asset.symbol,
            pool_address=pool.pool_address,
            gauge_address=pool.gauge_address,
            steps=tuple(run.steps),
            timestamp=self.clock(),
        )
        return None
