"""
Recovery engine for failed flows.

Each failed flow produces one ErrorContext. The engine looks up the ordered
recovery chain for the flow kind, builds fresh RecoveryAction values for the
context and runs them in order until one succeeds. The manual-intervention
report always succeeds, so every chain ends with an auditable record.
"""

import asyncio
import time
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .bounds import DEFAULT_DEADLINE_MINUTES, DEFAULT_SLIPPAGE_PCT, deadline, min_output, to_base_units
from .exceptions import LiquidityAgentError, StepExecutionError, TransactionTimeoutError
from .gateway.base import LedgerGateway
from .operation_stats import OperationLedger
from .types import (
    ErrorContext,
    FlowKind,
    OperationKind,
    PoolInfo,
    RecoveryAction,
    RecoveryAttempt,
    RecoveryKind,
    RecoveryOutcome,
    StepResult,
    SwapRoute,
    Token,
    WithdrawState,
)
from .utils import format_units, get_logger

logger = get_logger(__name__)

RECOVERY_CHAINS: Dict[FlowKind, Tuple[RecoveryKind, ...]] = {
    FlowKind.DEPOSIT: (RecoveryKind.REFUND, RecoveryKind.RECOVER_STUCK, RecoveryKind.MANUAL),
    FlowKind.WITHDRAW: (RecoveryKind.RETRY, RecoveryKind.ROLLBACK, RecoveryKind.MANUAL),
    FlowKind.UNKNOWN: (RecoveryKind.RECOVER_STUCK, RecoveryKind.MANUAL),
}

ACTION_CATALOG: Dict[RecoveryKind, Tuple[str, str]] = {
    RecoveryKind.REFUND: (
        "refund_excess",
        "Report base-asset balance above the requested amount as refundable",
    ),
    RecoveryKind.RECOVER_STUCK: (
        "recover_stuck_tokens",
        "Liquidate residual pool-asset and LP balances back to the base asset",
    ),
    RecoveryKind.RETRY: (
        "retry_withdrawal",
        "Re-run the remaining withdrawal steps",
    ),
    RecoveryKind.ROLLBACK: (
        "emergency_unstake",
        "Force-unstake every LP token still staked in the gauge",
    ),
    RecoveryKind.MANUAL: (
        "manual_intervention",
        "Emit a manual-intervention report with current balances",
    ),
}

ActionHandler = Callable[[RecoveryAction, ErrorContext], Awaitable[RecoveryAttempt]]


class RecoveryEngine:
    """
    Table-driven chain of compensating actions.

    Writes to the operation ledger once per handled context and keeps every
    ErrorContext in its history until cleared.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        ledger: OperationLedger,
        base_asset: Token,
        pool_assets: Sequence[Token],
        enabled: bool = True,
        dust_threshold: Decimal = Decimal("0.001"),
        manual_intervention: bool = True,
        slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT,
        deadline_minutes: int = DEFAULT_DEADLINE_MINUTES,
        step_timeout_s: Optional[float] = None,
        swap_stable: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.base_asset = base_asset
        self.pool_assets = tuple(pool_assets)
        self.enabled = enabled
        self.dust_threshold = Decimal(dust_threshold)
        self.manual_intervention = manual_intervention
        self.slippage_pct = slippage_pct
        self.deadline_minutes = deadline_minutes
        self.step_timeout_s = step_timeout_s
        self.swap_stable = swap_stable
        self.clock = clock

        self._pool: Optional[PoolInfo] = None
        self._history: List[ErrorContext] = []
        self._outcomes: List[RecoveryOutcome] = []
        self._handlers: Dict[RecoveryKind, ActionHandler] = {
            RecoveryKind.REFUND: self._refund_excess,
            RecoveryKind.RECOVER_STUCK: self._recover_stuck,
            RecoveryKind.RETRY: self._retry_withdrawal,
            RecoveryKind.ROLLBACK: self._emergency_unstake,
            RecoveryKind.MANUAL: self._manual_report,
        }

    # === STATE ===

    def update_pool(self, pool: Optional[PoolInfo]) -> None:
        """Receive the orchestrator's discovered PoolInfo."""
        self._pool = pool

    def get_recovery_history(self) -> List[ErrorContext]:
        return list(self._history)

    def get_outcomes(self) -> List[RecoveryOutcome]:
        return list(self._outcomes)

    def clear_recovery_history(self) -> None:
        self._history.clear()
        self._outcomes.clear()

    # === CHAIN ===

    def build_actions(self, ctx: ErrorContext) -> List[RecoveryAction]:
        """Fresh RecoveryAction values for a context, in execution order."""
        chain = RECOVERY_CHAINS.get(ctx.flow_kind, RECOVERY_CHAINS[FlowKind.UNKNOWN])
        if not self.manual_intervention:
            chain = tuple(kind for kind in chain if kind is not RecoveryKind.MANUAL)

        actions = []
        for kind in chain:
            name, description = ACTION_CATALOG[kind]
            actions.append(
                RecoveryAction(
                    kind=kind,
                    name=name,
                    description=description,
                    payload=self._payload_for(kind, ctx),
                )
            )
        return actions

    def _payload_for(self, kind: RecoveryKind, ctx: ErrorContext) -> Dict:
        if kind is RecoveryKind.REFUND:
            return {"requested_amount": ctx.original_amount}
        if kind is RecoveryKind.RECOVER_STUCK:
            return {
                "assets": [t.symbol for t in self.pool_assets],
                "dust_threshold": str(self.dust_threshold),
            }
        if kind is RecoveryKind.RETRY:
            return {
                "failed_step": ctx.failed_step,
                "unstake_amount": ctx.details.get("unstake_amount", 0),
            }
        if kind is RecoveryKind.ROLLBACK:
            return {"gauge": self._pool.gauge_address if self._pool else None}
        return {"failed_step": ctx.failed_step, "error": ctx.underlying_error}

    async def handle(self, ctx: ErrorContext) -> RecoveryOutcome:
        """
        Run the recovery chain for a failed flow.

        Stops at the first action that reports success. An action that
        raises is recorded as a failed attempt and the chain continues.

        Returns:
            RecoveryOutcome; ``recovered`` is True only if a corrective
            action succeeded
        """
        self._history.append(ctx)
        logger.error(
            f"❌ {ctx.flow_kind.value} failed at {ctx.failed_step}: {ctx.underlying_error}"
        )

        attempts: List[RecoveryAttempt] = []
        resolved_by: Optional[RecoveryKind] = None

        if not self.enabled:
            logger.warning("Automatic recovery disabled; error recorded for review")
        else:
            for action in self.build_actions(ctx):
                logger.info(f"🔧 Recovery: {action.name} - {action.description}")
                try:
                    attempt = await self._handlers[action.kind](action, ctx)
                except Exception as e:
                    logger.error(f"Recovery action {action.name} raised: {e}")
                    attempt = RecoveryAttempt(action, False, f"{type(e).__name__}: {e}")

                attempts.append(attempt)
                if attempt.success:
                    resolved_by = action.kind
                    logger.info(f"Recovery action {action.name} succeeded: {attempt.message}")
                    break
                logger.warning(f"Recovery action {action.name} failed: {attempt.message}")

        final_base = await self._final_base_balance()
        outcome = RecoveryOutcome(
            context=ctx,
            recovered=resolved_by is not None and resolved_by is not RecoveryKind.MANUAL,
            attempted_actions=tuple(attempts),
            final_base_balance=final_base,
            resolved_by=resolved_by,
        )
        self._outcomes.append(outcome)
        self.ledger.record_recovery(outcome)
        return outcome

    # === HELPERS ===

    async def _guard(self, awaitable, operation: str):
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

    async def _final_base_balance(self) -> Optional[int]:
        try:
            return await self._guard(self.gateway.get_balance(self.base_asset), "get_balance")
        except LiquidityAgentError as e:
            logger.warning(f"Could not read final base balance: {e}")
            return None

    def _deadline(self) -> int:
        return deadline(self.clock(), self.deadline_minutes)

    def _dust_units(self, token: Token) -> int:
        return to_base_units(self.dust_threshold, token.decimals)

    async def _liquidate(self, token: Token, amount: int) -> StepResult:
        route = SwapRoute(token, self.base_asset, self.swap_stable)
        result = await self._guard(
            self.gateway.submit_bounded_swap(route, amount, self.slippage_pct, self._deadline()),
            "swap",
        )
        return result.for_step(f"recover:{token.symbol}")

    async def _remove_lp(self, pool: PoolInfo, liquidity: int) -> StepResult:
        quote_a, quote_b = await self._guard(
            self.gateway.quote_remove_liquidity(pool, liquidity), "quote_remove_liquidity"
        )
        min_a = min_output(quote_a, self.slippage_pct) if quote_a > 0 else 0
        min_b = min_output(quote_b, self.slippage_pct) if quote_b > 0 else 0
        result = await self._guard(
            self.gateway.submit_remove_liquidity(pool, liquidity, min_a, min_b, self._deadline()),
            "remove_liquidity",
        )
        return result.for_step("recover:remove_liquidity")

    # === ACTIONS ===

    async def _refund_excess(self, action: RecoveryAction, ctx: ErrorContext) -> RecoveryAttempt:
        requested = action.payload.get("requested_amount")
        if requested is None:
            return RecoveryAttempt(action, False, "No requested amount recorded")

        requested_units = to_base_units(requested, self.base_asset.decimals)
        balance = await self._guard(self.gateway.get_balance(self.base_asset), "get_balance")
        if balance > requested_units:
            excess = balance - requested_units
            return RecoveryAttempt(
                action,
                True,
                f"{format_units(excess, self.base_asset.decimals)} {self.base_asset} refundable",
            )
        return RecoveryAttempt(
            action,
            False,
            f"Base balance {format_units(balance, self.base_asset.decimals)} does not exceed "
            f"requested {requested}",
        )

    async def _recover_stuck(self, action: RecoveryAction, ctx: ErrorContext) -> RecoveryAttempt:
        steps: List[StepResult] = []
        pool = self._pool

        if pool is not None:
            lp_balance = await self._guard(self.gateway.get_balance(pool.lp_token), "get_balance")
            if lp_balance > self._dust_units(pool.lp_token):
                try:
                    steps.append(await self._remove_lp(pool, lp_balance))
                except StepExecutionError as e:
                    steps.append(
                        StepResult.failed(OperationKind.REMOVE_LIQUIDITY, str(e), tx_hash=e.tx_hash)
                    )
                    return RecoveryAttempt(action, False, f"LP removal failed: {e}", tuple(steps))

        for token in self.pool_assets:
            balance = await self._guard(self.gateway.get_balance(token), "get_balance")
            if balance <= self._dust_units(token):
                logger.debug(f"Skipping {token}: balance below dust threshold")
                continue
            try:
                steps.append(await self._liquidate(token, balance))
            except StepExecutionError as e:
                steps.append(
                    StepResult.failed(OperationKind.SWAP, str(e), tx_hash=e.tx_hash, asset=token.symbol)
                )

        if not steps:
            return RecoveryAttempt(action, False, "No residual balances above dust threshold")

        failed = [s for s in steps if not s.success]
        if failed:
            return RecoveryAttempt(
                action, False, f"{len(failed)}/{len(steps)} liquidations failed", tuple(steps)
            )
        return RecoveryAttempt(
            action, True, f"Liquidated {len(steps)} residual balances", tuple(steps)
        )

    async def _retry_withdrawal(self, action: RecoveryAction, ctx: ErrorContext) -> RecoveryAttempt:
        pool = self._pool
        if pool is None:
            return RecoveryAttempt(action, False, "Pool unknown; cannot retry withdrawal")

        steps: List[StepResult] = []
        try:
            if action.payload.get("failed_step") == WithdrawState.UNSTAKE.value:
                planned = int(action.payload.get("unstake_amount") or 0)
                staked = await self._guard(
                    self.gateway.get_staked_balance(pool.gauge_address), "get_staked_balance"
                )
                amount = min(planned, staked)
                if amount > 0:
                    result = await self._guard(
                        self.gateway.submit_unstake(pool.gauge_address, amount), "unstake"
                    )
                    steps.append(result.for_step("retry:unstake"))

            lp_balance = await self._guard(self.gateway.get_balance(pool.lp_token), "get_balance")
            if lp_balance > 0:
                steps.append(await self._remove_lp(pool, lp_balance))

            for token in self.pool_assets:
                balance = await self._guard(self.gateway.get_balance(token), "get_balance")
                if balance > 0:
                    steps.append(await self._liquidate(token, balance))
        except StepExecutionError as e:
            return RecoveryAttempt(action, False, f"Retry failed: {e}", tuple(steps))

        if not steps:
            return RecoveryAttempt(action, False, "Nothing left to retry")
        return RecoveryAttempt(
            action, True, f"Re-ran {len(steps)} withdrawal steps", tuple(steps)
        )

    async def _emergency_unstake(self, action: RecoveryAction, ctx: ErrorContext) -> RecoveryAttempt:
        gauge = action.payload.get("gauge")
        if not gauge:
            return RecoveryAttempt(action, False, "Gauge unknown; cannot unstake")

        staked = await self._guard(self.gateway.get_staked_balance(gauge), "get_staked_balance")
        if staked <= 0:
            return RecoveryAttempt(action, False, "Nothing staked")

        result = await self._guard(self.gateway.submit_unstake(gauge, staked), "unstake")
        return RecoveryAttempt(
            action,
            True,
            f"Unstaked {staked} LP tokens",
            (result.for_step("rollback:unstake"),),
        )

    async def _manual_report(self, action: RecoveryAction, ctx: ErrorContext) -> RecoveryAttempt:
        balances = {}
        for token in (self.base_asset, *self.pool_assets):
            try:
                units = await self._guard(self.gateway.get_balance(token), "get_balance")
                balances[token.symbol] = format_units(units, token.decimals)
            except LiquidityAgentError:
                balances[token.symbol] = "unavailable"

        logger.critical(
            "🚨 MANUAL INTERVENTION REQUIRED | "
            f"flow={ctx.flow_kind.value} step={ctx.failed_step} "
            f"amount={ctx.original_amount} error={ctx.underlying_error} balances={balances}"
        )
        report = StepResult.ok(
            OperationKind.REPORT, flow=ctx.flow_kind.value, failed_step=ctx.failed_step, balances=balances
        )
        return RecoveryAttempt(action, True, "Manual intervention report emitted", (report,))
