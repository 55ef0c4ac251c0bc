"""
Paper Ledger Gateway

Simulates the ledger in memory: ERC20 balances and allowances, constant
product pools with LP accounting, gauges, and one-transaction batches.
Used by ``--paper`` runs and as the injected ledger in tests, where failures
and latency can be scripted per operation.
"""

import asyncio
import copy
import hashlib
import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from ..bounds import optimal_liquidity, to_base_units
from ..config_loader import AgentConfig
from ..exceptions import (
    ApprovalFailedError,
    InsufficientBalanceError,
    StepExecutionError,
    TransactionRevertedError,
)
from ..types import (
    BatchCall,
    BatchMode,
    OperationKind,
    PoolInfo,
    PoolReserves,
    StepResult,
    SwapRoute,
    Token,
)
from .base import LedgerGateway

logger = logging.getLogger(__name__)

PAPER_ACCOUNT = "0x000000000000000000000000000000000000dEaD"

# Rough gas figures reported on simulated receipts
SIMULATED_GAS = {
    OperationKind.APPROVE: 46000,
    OperationKind.SWAP: 150000,
    OperationKind.ADD_LIQUIDITY: 260000,
    OperationKind.REMOVE_LIQUIDITY: 210000,
    OperationKind.STAKE: 120000,
    OperationKind.UNSTAKE: 110000,
    OperationKind.CLAIM_REWARDS: 90000,
}


def _derive_address(*parts: str) -> str:
    digest = hashlib.sha256(":".join(parts).encode()).hexdigest()
    return "0x" + digest[:40]


@dataclass
class PaperPool:
    """Internal state for a simulated pool"""

    address: str
    token_x: str
    token_y: str
    stable: bool
    reserve_x: int
    reserve_y: int
    total_supply: int
    gauge_address: Optional[str] = None

    def reserves_for(self, token_in: str) -> Tuple[int, int]:
        if token_in == self.token_x:
            return self.reserve_x, self.reserve_y
        return self.reserve_y, self.reserve_x

    def adjust(self, token: str, delta: int):
        if token == self.token_x:
            self.reserve_x += delta
        else:
            self.reserve_y += delta


@dataclass
class _ScriptedFailure:
    error: Exception
    skip: int
    times: int


class PaperLedgerGateway(LedgerGateway):
    """
    In-memory ledger with constant-product pools.

    Features:
    - x*y=k swaps with the fee taken from the input
    - Router-style add/remove liquidity with optimal amounts and min checks
    - Gauge staking and reward claims
    - Native batching (best effort or atomic with state rollback)
    - Scripted failures and delays per operation for testing
    """

    def __init__(
        self,
        fee_pct: Decimal = Decimal("0.3"),
        native_batching: bool = True,
        account_address: str = PAPER_ACCOUNT,
        router_address: Optional[str] = None,
        reward_token: Optional[Token] = None,
        reward_per_claim: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self.fee_pct = Decimal(fee_pct)
        self.native_batching = native_batching
        self._account = account_address
        self._router = router_address or _derive_address("paper", "router")
        self.reward_token = reward_token
        self.reward_per_claim = reward_per_claim
        self.clock = clock

        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str], int] = defaultdict(int)
        self.staked: Dict[str, int] = defaultdict(int)
        self.pools: Dict[str, PaperPool] = {}
        self.native_balance = 10**18

        self.call_log: List[str] = []
        self.batches_submitted = 0
        self._tx_counter = 0
        self._failures: Dict[str, List[_ScriptedFailure]] = defaultdict(list)
        self._delays: Dict[str, float] = {}

    # === SETUP ===

    @classmethod
    def from_config(cls, config: AgentConfig) -> "PaperLedgerGateway":
        """
        Build a simulated ledger for the configured pair.

        Creates volatile pools base/A and base/B plus the A/B pool (stable if
        configured) with a gauge, sized from the configured prices and depth.
        """
        paper = config.paper
        if paper is None:
            raise ValueError("paper section missing from configuration")

        gateway = cls(
            fee_pct=paper.fee_pct,
            native_batching=paper.native_batching,
            router_address=config.contracts.router,
        )
        base = config.base_asset
        prices = dict(paper.prices)
        prices.setdefault(base.symbol, Decimal("1"))

        def reserve(token: Token) -> int:
            price = prices.get(token.symbol)
            if price is None:
                raise ValueError(f"paper.prices has no entry for {token.symbol}")
            return to_base_units(paper.liquidity_depth / price, token.decimals)

        asset_a, asset_b = config.pair
        for asset in (asset_a, asset_b):
            gateway.add_pool(base, asset, reserve(base), reserve(asset), stable=False, with_gauge=False)
        gateway.add_pool(
            asset_a, asset_b, reserve(asset_a), reserve(asset_b), stable=paper.stable_pools
        )

        for symbol, amount in paper.initial_balances.items():
            token = config.tokens[symbol]
            gateway.set_balance(token, to_base_units(amount, token.decimals))

        logger.info(
            f"📝 Paper ledger ready: {len(gateway.pools)} pools, "
            f"balances {dict(paper.initial_balances)}"
        )
        return gateway

    def add_pool(
        self,
        token_a: Token,
        token_b: Token,
        reserve_a: int,
        reserve_b: int,
        stable: bool = False,
        with_gauge: bool = True,
    ) -> str:
        """Create a pool and return its address"""
        a, b = token_a.address.lower(), token_b.address.lower()
        x, y = sorted((a, b))
        address = _derive_address("pool", x, y, str(stable))
        rx, ry = (reserve_a, reserve_b) if x == a else (reserve_b, reserve_a)
        gauge = _derive_address("gauge", address) if with_gauge else None
        self.pools[address] = PaperPool(
            address=address,
            token_x=x,
            token_y=y,
            stable=stable,
            reserve_x=rx,
            reserve_y=ry,
            total_supply=math.isqrt(rx * ry),
            gauge_address=gauge,
        )
        return address

    def set_balance(self, token: Token, units: int) -> None:
        self.balances[token.address.lower()] = units

    def set_staked(self, gauge_address: str, units: int) -> None:
        self.staked[gauge_address.lower()] = units

    def fail_next(
        self, operation: str, error: Optional[Exception] = None, times: int = 1, skip: int = 0
    ):
        """
        Script a failure for an operation.

        Args:
            operation: OperationKind value, "batch", "quote" or "read"
            error: Exception to raise (defaults to a reverted transaction)
            times: Number of consecutive calls that fail
            skip: Number of calls that succeed before the failure starts
        """
        if error is None:
            error = TransactionRevertedError(f"simulated {operation} revert", operation=operation)
        self._failures[operation].append(_ScriptedFailure(error, skip, times))

    def set_delay(self, operation: str, seconds: float) -> None:
        self._delays[operation] = seconds

    def _check_failure(self, operation: str):
        scripted = self._failures.get(operation)
        if not scripted:
            return
        entry = scripted[0]
        if entry.skip > 0:
            entry.skip -= 1
            return
        entry.times -= 1
        if entry.times <= 0:
            scripted.pop(0)
        raise entry.error

    async def _enter(self, operation: str, label: str):
        self.call_log.append(label)
        delay = self._delays.get(operation)
        if delay:
            await asyncio.sleep(delay)
        self._check_failure(operation)

    def _next_tx_hash(self, label: str) -> str:
        self._tx_counter += 1
        return "0x" + hashlib.sha256(f"{self._tx_counter}:{label}".encode()).hexdigest()

    def _receipt(self, operation: OperationKind, label: str, **details) -> StepResult:
        return StepResult.ok(
            operation,
            tx_hash=self._next_tx_hash(label),
            gas_used=SIMULATED_GAS.get(operation),
            **details,
        )

    # === LOOKUPS ===

    @property
    def account_address(self) -> str:
        return self._account

    @property
    def router_address(self) -> str:
        return self._router

    @property
    def supports_batching(self) -> bool:
        return self.native_batching

    def _find_pool(self, token_a: str, token_b: str, stable: bool) -> Optional[PaperPool]:
        x, y = sorted((token_a.lower(), token_b.lower()))
        return self.pools.get(_derive_address("pool", x, y, str(stable)))

    def _pool(self, pool_address: str) -> PaperPool:
        pool = self.pools.get(pool_address.lower())
        if pool is None:
            raise TransactionRevertedError(f"unknown pool {pool_address}")
        return pool

    def _gauge_pool(self, gauge_address: str) -> PaperPool:
        for pool in self.pools.values():
            if pool.gauge_address and pool.gauge_address == gauge_address.lower():
                return pool
        raise TransactionRevertedError(f"unknown gauge {gauge_address}")

    def _amount_out(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        num, den = (Decimal(100) - self.fee_pct).as_integer_ratio()
        effective_in = amount_in * num
        return effective_in * reserve_out // (reserve_in * 100 * den + effective_in)

    def _debit(self, token: str, amount: int, operation: OperationKind):
        if self.balances[token] < amount:
            raise InsufficientBalanceError(
                f"balance {self.balances[token]} < {amount} for {token}",
                operation=operation.value,
            )
        self.balances[token] -= amount

    def _check_deadline(self, deadline: Optional[int], operation: OperationKind):
        if deadline is not None and deadline < self.clock():
            raise TransactionRevertedError("EXPIRED", operation=operation.value)

    # === READS ===

    async def get_balance(self, token: Token) -> int:
        await self._enter("read", f"balance:{token.symbol}")
        return self.balances[token.address.lower()]

    async def get_native_balance(self) -> int:
        return self.native_balance

    async def get_staked_balance(self, gauge_address: str) -> int:
        await self._enter("read", "staked")
        return self.staked[gauge_address.lower()]

    async def quote_swap(self, route: SwapRoute, amount_in: int) -> int:
        await self._enter("quote", f"quote:{route.token_in.symbol}->{route.token_out.symbol}")
        pool = self._find_pool(route.token_in.address, route.token_out.address, route.stable)
        if pool is None:
            raise TransactionRevertedError(f"no pool for route {route}", operation="quote")
        reserve_in, reserve_out = pool.reserves_for(route.token_in.address.lower())
        return self._amount_out(amount_in, reserve_in, reserve_out)

    async def quote_remove_liquidity(self, pool: PoolInfo, liquidity: int) -> Tuple[int, int]:
        await self._enter("quote", "quote:remove_liquidity")
        state = self._pool(pool.pool_address)
        ra, rb = state.reserves_for(pool.asset_a.address.lower())
        if state.total_supply == 0:
            return 0, 0
        return liquidity * ra // state.total_supply, liquidity * rb // state.total_supply

    async def get_pool_address(self, token_a: Token, token_b: Token, stable: bool) -> Optional[str]:
        await self._enter("read", "get_pool")
        pool = self._find_pool(token_a.address, token_b.address, stable)
        return pool.address if pool else None

    async def get_gauge_address(self, pool_address: str) -> Optional[str]:
        await self._enter("read", "get_gauge")
        pool = self.pools.get(pool_address.lower())
        return pool.gauge_address if pool else None

    async def get_pool_reserves(
        self, pool_address: str, token_a: Token, token_b: Token
    ) -> PoolReserves:
        await self._enter("read", "get_reserves")
        pool = self._pool(pool_address)
        ra, rb = pool.reserves_for(token_a.address.lower())
        return PoolReserves(reserve_a=ra, reserve_b=rb, total_supply=pool.total_supply)

    # === STATE TRANSITIONS ===

    def _apply_approve(self, token: Token, spender: str, amount: int) -> StepResult:
        self.allowances[(token.address.lower(), spender.lower())] = amount
        return self._receipt(OperationKind.APPROVE, f"approve:{token.symbol}", spender=spender)

    def _apply_swap(self, route: SwapRoute, amount_in: int, min_out: int, deadline: Optional[int]) -> StepResult:
        op = OperationKind.SWAP
        self._check_deadline(deadline, op)
        token_in, token_out = route.token_in.address.lower(), route.token_out.address.lower()
        pool = self._find_pool(token_in, token_out, route.stable)
        if pool is None:
            raise TransactionRevertedError(f"no pool for route {route}", operation=op.value)

        reserve_in, reserve_out = pool.reserves_for(token_in)
        amount_out = self._amount_out(amount_in, reserve_in, reserve_out)
        if amount_out < min_out:
            raise TransactionRevertedError(
                f"INSUFFICIENT_OUTPUT_AMOUNT: {amount_out} < {min_out}", operation=op.value
            )

        self._debit(token_in, amount_in, op)
        pool.adjust(token_in, amount_in)
        pool.adjust(token_out, -amount_out)
        self.balances[token_out] += amount_out
        return self._receipt(
            op,
            f"swap:{route.token_in.symbol}->{route.token_out.symbol}",
            amount_in=amount_in,
            amount_out=amount_out,
        )

    # === WRITES ===

    async def ensure_approval(self, token: Token, spender: str, amount: int) -> Optional[StepResult]:
        if self.allowances[(token.address.lower(), spender.lower())] >= amount:
            return None
        try:
            await self._enter(OperationKind.APPROVE.value, f"approve:{token.symbol}")
        except StepExecutionError as e:
            raise ApprovalFailedError(
                f"Approval of {token.symbol} failed: {e}", operation=OperationKind.APPROVE.value
            ) from e
        return self._apply_approve(token, spender, amount)

    async def submit_swap(
        self, route: SwapRoute, amount_in: int, min_out: int, deadline: int
    ) -> StepResult:
        await self.ensure_approval(route.token_in, self.router_address, amount_in)
        await self._enter(
            OperationKind.SWAP.value, f"swap:{route.token_in.symbol}->{route.token_out.symbol}"
        )
        return self._apply_swap(route, amount_in, min_out, deadline)

    async def submit_add_liquidity(
        self,
        pool: PoolInfo,
        amount_a: int,
        amount_b: int,
        min_a: int,
        min_b: int,
        deadline: int,
    ) -> StepResult:
        op = OperationKind.ADD_LIQUIDITY
        await self.ensure_approval(pool.asset_a, self.router_address, amount_a)
        await self.ensure_approval(pool.asset_b, self.router_address, amount_b)
        await self._enter(op.value, "add_liquidity")
        self._check_deadline(deadline, op)

        state = self._pool(pool.pool_address)
        token_a, token_b = pool.asset_a.address.lower(), pool.asset_b.address.lower()
        ra, rb = state.reserves_for(token_a)

        used_a, used_b, liquidity = optimal_liquidity(amount_a, amount_b, ra, rb, state.total_supply)

        if used_a < min_a:
            raise TransactionRevertedError(f"INSUFFICIENT_A_AMOUNT: {used_a} < {min_a}", operation=op.value)
        if used_b < min_b:
            raise TransactionRevertedError(f"INSUFFICIENT_B_AMOUNT: {used_b} < {min_b}", operation=op.value)
        if liquidity <= 0:
            raise TransactionRevertedError("INSUFFICIENT_LIQUIDITY_MINTED", operation=op.value)

        self._debit(token_a, used_a, op)
        self._debit(token_b, used_b, op)
        state.adjust(token_a, used_a)
        state.adjust(token_b, used_b)
        state.total_supply += liquidity
        self.balances[state.address] += liquidity
        return self._receipt(
            op, "add_liquidity", amount_a=used_a, amount_b=used_b, liquidity=liquidity
        )

    async def submit_remove_liquidity(
        self, pool: PoolInfo, liquidity: int, min_a: int, min_b: int, deadline: int
    ) -> StepResult:
        op = OperationKind.REMOVE_LIQUIDITY
        await self.ensure_approval(pool.lp_token, self.router_address, liquidity)
        await self._enter(op.value, "remove_liquidity")
        self._check_deadline(deadline, op)

        state = self._pool(pool.pool_address)
        token_a, token_b = pool.asset_a.address.lower(), pool.asset_b.address.lower()
        ra, rb = state.reserves_for(token_a)
        out_a = liquidity * ra // state.total_supply
        out_b = liquidity * rb // state.total_supply
        if out_a < min_a or out_b < min_b:
            raise TransactionRevertedError(
                f"INSUFFICIENT_AMOUNT: ({out_a}, {out_b}) < ({min_a}, {min_b})",
                operation=op.value,
            )

        self._debit(state.address, liquidity, op)
        state.total_supply -= liquidity
        state.adjust(token_a, -out_a)
        state.adjust(token_b, -out_b)
        self.balances[token_a] += out_a
        self.balances[token_b] += out_b
        return self._receipt(op, "remove_liquidity", amount_a=out_a, amount_b=out_b)

    async def submit_stake(self, gauge_address: str, amount: int) -> StepResult:
        op = OperationKind.STAKE
        state = self._gauge_pool(gauge_address)
        lp = Token("LP", state.address, 18)
        await self.ensure_approval(lp, gauge_address, amount)
        await self._enter(op.value, "stake")
        self._debit(state.address, amount, op)
        self.staked[gauge_address.lower()] += amount
        return self._receipt(op, "stake", amount=amount)

    async def submit_unstake(self, gauge_address: str, amount: int) -> StepResult:
        op = OperationKind.UNSTAKE
        state = self._gauge_pool(gauge_address)
        await self._enter(op.value, "unstake")
        gauge = gauge_address.lower()
        if self.staked[gauge] < amount:
            raise InsufficientBalanceError(
                f"staked {self.staked[gauge]} < {amount}", operation=op.value
            )
        self.staked[gauge] -= amount
        self.balances[state.address] += amount
        return self._receipt(op, "unstake", amount=amount)

    async def submit_claim_rewards(self, gauge_address: str) -> StepResult:
        op = OperationKind.CLAIM_REWARDS
        self._gauge_pool(gauge_address)
        await self._enter(op.value, "claim_rewards")
        claimed = 0
        if self.reward_token is not None and self.staked[gauge_address.lower()] > 0:
            claimed = self.reward_per_claim
            self.balances[self.reward_token.address.lower()] += claimed
        return self._receipt(op, "claim_rewards", claimed=claimed)

    async def submit_batch(self, calls: List[BatchCall], mode: BatchMode) -> List[StepResult]:
        if not self.native_batching:
            return await super().submit_batch(calls, mode)

        await self._enter("batch", f"batch:{mode.value}:{len(calls)}")
        self.batches_submitted += 1
        snapshot = self._snapshot()
        batch_hash = self._next_tx_hash(f"batch:{len(calls)}")

        results: List[StepResult] = []
        first_error: Optional[Exception] = None
        for call in calls:
            try:
                self._check_failure(call.kind.value)
                if call.kind is OperationKind.APPROVE:
                    self._apply_approve(call.token, call.spender, call.amount)
                    result = StepResult.ok(call.kind, tx_hash=batch_hash, label=call.label)
                elif call.kind is OperationKind.SWAP:
                    swapped = self._apply_swap(call.route, call.amount, call.min_out, call.deadline)
                    result = StepResult.ok(
                        call.kind, tx_hash=batch_hash, label=call.label, **swapped.details
                    )
                else:
                    raise TransactionRevertedError(f"unsupported batch call {call.kind.value}")
            except StepExecutionError as e:
                first_error = first_error or e
                result = StepResult.failed(call.kind, str(e), tx_hash=batch_hash, label=call.label)
            results.append(result)

        if mode is BatchMode.ALL_OR_NOTHING and first_error is not None:
            self._restore(snapshot)
            reason = f"batch reverted: {first_error}"
            return [
                StepResult.failed(call.kind, reason, tx_hash=batch_hash, label=call.label)
                for call in calls
            ]
        return results

    def _snapshot(self):
        return copy.deepcopy((self.balances, self.allowances, self.staked, self.pools))

    def _restore(self, snapshot):
        self.balances, self.allowances, self.staked, self.pools = snapshot

