"""
Base Ledger Gateway Interface

Provides the abstraction layer between the saga orchestrator and the ledger.
Every method is awaitable; mutating calls either return a successful
StepResult or raise a typed StepExecutionError subclass.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from ..bounds import min_output
from ..exceptions import StepExecutionError, TransactionRevertedError
from ..types import BatchCall, BatchMode, PoolInfo, PoolReserves, StepResult, SwapRoute, Token

MAX_UINT256 = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_zero_address(address: Optional[str]) -> bool:
    return not address or int(address, 16) == 0


class LedgerGateway(ABC):
    """Abstract base class for ledger gateways"""

    @property
    @abstractmethod
    def account_address(self) -> str:
        """Address of the signing account"""
        pass

    @property
    @abstractmethod
    def router_address(self) -> str:
        """Router contract that pulls tokens for swaps and liquidity changes"""
        pass

    @property
    def supports_batching(self) -> bool:
        """Whether submit_batch can run state-changing calls in one transaction"""
        return False

    async def initialize(self) -> None:
        """Connect and verify the ledger (no-op by default)"""
        return None

    async def close(self) -> None:
        """Release connections (no-op by default)"""
        return None

    # === READS ===

    @abstractmethod
    async def get_balance(self, token: Token) -> int:
        """Token balance of the account in base units"""
        pass

    async def get_balances(self, tokens: Iterable[Token]) -> Dict[str, int]:
        """Balances keyed by token address (lowercase)"""
        tokens = list(tokens)
        values = await asyncio.gather(*(self.get_balance(t) for t in tokens))
        return {t.address.lower(): v for t, v in zip(tokens, values)}

    @abstractmethod
    async def get_native_balance(self) -> int:
        """Native gas token balance in wei"""
        pass

    @abstractmethod
    async def get_staked_balance(self, gauge_address: str) -> int:
        """LP tokens staked by the account in the gauge"""
        pass

    @abstractmethod
    async def quote_swap(self, route: SwapRoute, amount_in: int) -> int:
        """Expected output of a swap"""
        pass

    @abstractmethod
    async def quote_remove_liquidity(self, pool: PoolInfo, liquidity: int) -> Tuple[int, int]:
        """Expected (amount_a, amount_b) for burning liquidity"""
        pass

    @abstractmethod
    async def get_pool_address(self, token_a: Token, token_b: Token, stable: bool) -> Optional[str]:
        """Pool address for the pair and variant, or None"""
        pass

    @abstractmethod
    async def get_gauge_address(self, pool_address: str) -> Optional[str]:
        """Gauge address for the pool, or None"""
        pass

    @abstractmethod
    async def get_pool_reserves(
        self, pool_address: str, token_a: Token, token_b: Token
    ) -> PoolReserves:
        """Reserves ordered as (token_a, token_b) and LP total supply"""
        pass

    # === WRITES ===

    @abstractmethod
    async def ensure_approval(self, token: Token, spender: str, amount: int) -> Optional[StepResult]:
        """
        Make sure ``spender`` may move ``amount`` of ``token``.

        Returns None when the allowance already suffices, otherwise the
        StepResult of the approval transaction.

        Raises:
            ApprovalFailedError: If the approval could not be confirmed
        """
        pass

    @abstractmethod
    async def submit_swap(
        self, route: SwapRoute, amount_in: int, min_out: int, deadline: int
    ) -> StepResult:
        pass

    async def submit_bounded_swap(
        self, route: SwapRoute, amount_in: int, slippage_pct, deadline: int
    ) -> StepResult:
        """Quote a swap and submit it with the slippage-bounded minimum output"""
        quote = await self.quote_swap(route, amount_in)
        if quote <= 0:
            raise TransactionRevertedError(f"Zero quote for {route}", operation="swap")
        return await self.submit_swap(route, amount_in, min_output(quote, slippage_pct), deadline)

    @abstractmethod
    async def submit_add_liquidity(
        self,
        pool: PoolInfo,
        amount_a: int,
        amount_b: int,
        min_a: int,
        min_b: int,
        deadline: int,
    ) -> StepResult:
        pass

    @abstractmethod
    async def submit_remove_liquidity(
        self, pool: PoolInfo, liquidity: int, min_a: int, min_b: int, deadline: int
    ) -> StepResult:
        pass

    @abstractmethod
    async def submit_stake(self, gauge_address: str, amount: int) -> StepResult:
        pass

    @abstractmethod
    async def submit_unstake(self, gauge_address: str, amount: int) -> StepResult:
        pass

    @abstractmethod
    async def submit_claim_rewards(self, gauge_address: str) -> StepResult:
        pass

    async def submit_batch(self, calls: List[BatchCall], mode: BatchMode) -> List[StepResult]:
        """
        Submit independent calls as one transaction.

        Returns one StepResult per call, in order. In ALL_OR_NOTHING mode a
        revert marks every result as failed.
        """
        raise StepExecutionError(
            f"{type(self).__name__} cannot batch state-changing calls",
            operation="batch",
        )
