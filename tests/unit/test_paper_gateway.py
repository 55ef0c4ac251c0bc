"""
Unit tests for the simulated paper ledger
"""

import pytest

from liquidity_agent.config_loader import get_default_config
from liquidity_agent.discovery import PoolDiscovery
from liquidity_agent.exceptions import (
    ApprovalFailedError,
    InsufficientBalanceError,
    StepExecutionError,
    TransactionRevertedError,
)
from liquidity_agent.gateway.paper_gateway import PAPER_ACCOUNT, PaperLedgerGateway
from liquidity_agent.types import BatchCall, BatchMode, OperationKind, SwapRoute, Token

DEADLINE = 2**40


@pytest.fixture
def clock():
    return lambda: 1_700_000_000.0


class TestSetup:
    def test_from_config(self, gateway, agent_config, usdc):
        assert gateway.account_address == PAPER_ACCOUNT
        assert gateway.router_address == agent_config.contracts.router
        assert gateway.supports_batching
        assert len(gateway.pools) == 3
        assert gateway.balances[usdc.address.lower()] == 1000 * 10**6

    def test_from_config_requires_paper_section(self):
        with pytest.raises(ValueError):
            PaperLedgerGateway.from_config(get_default_config())

    def test_pool_address_is_order_independent(self, weth, virtual):
        first = PaperLedgerGateway()
        second = PaperLedgerGateway()
        assert first.add_pool(weth, virtual, 1, 1) == second.add_pool(virtual, weth, 1, 1)


class TestSwaps:
    @pytest.mark.asyncio
    async def test_quote_matches_fill(self, gateway, usdc, weth):
        route = SwapRoute(usdc, weth)
        quote = await gateway.quote_swap(route, 10**8)

        result = await gateway.submit_swap(route, 10**8, quote, DEADLINE)

        assert result.success
        assert result.operation is OperationKind.SWAP
        assert result.details["amount_out"] == quote
        assert gateway.balances[weth.address.lower()] == quote
        assert gateway.balances[usdc.address.lower()] == 900 * 10**6

    @pytest.mark.asyncio
    async def test_fee_reduces_output(self, gateway, usdc, weth):
        quote = await gateway.quote_swap(SwapRoute(usdc, weth), 3000 * 10**6)
        # 3000 USDC buys just under one WETH at a 3000 price with a 0.3% fee
        assert 0.99 * 10**18 < quote < 0.997 * 10**18

    @pytest.mark.asyncio
    async def test_min_out_enforced(self, gateway, usdc, weth):
        route = SwapRoute(usdc, weth)
        quote = await gateway.quote_swap(route, 10**8)

        with pytest.raises(TransactionRevertedError, match="INSUFFICIENT_OUTPUT_AMOUNT"):
            await gateway.submit_swap(route, 10**8, quote + 1, DEADLINE)
        assert gateway.balances[usdc.address.lower()] == 1000 * 10**6

    @pytest.mark.asyncio
    async def test_expired_deadline(self, usdc, weth, clock):
        gateway = PaperLedgerGateway(clock=clock)
        gateway.add_pool(usdc, weth, 10**12, 10**20)
        gateway.set_balance(usdc, 10**8)

        with pytest.raises(TransactionRevertedError, match="EXPIRED"):
            await gateway.submit_swap(SwapRoute(usdc, weth), 10**6, 1, int(clock()) - 1)

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, gateway, weth, usdc):
        with pytest.raises(InsufficientBalanceError):
            await gateway.submit_swap(SwapRoute(weth, usdc), 10**18, 1, DEADLINE)

    @pytest.mark.asyncio
    async def test_unknown_route(self, gateway, usdc):
        aero = Token("AERO", "0x940181a94A35A4569E4529A3CDfB74e38FD98631")
        with pytest.raises(TransactionRevertedError):
            await gateway.quote_swap(SwapRoute(usdc, aero), 10**6)

    @pytest.mark.asyncio
    async def test_bounded_swap_rejects_zero_quote(self, usdc, weth):
        gateway = PaperLedgerGateway()
        gateway.add_pool(usdc, weth, 10**12, 1)
        gateway.set_balance(usdc, 10)

        with pytest.raises(TransactionRevertedError, match="Zero quote"):
            await gateway.submit_bounded_swap(SwapRoute(usdc, weth), 1, "0.5", DEADLINE)


class TestApprovals:
    @pytest.mark.asyncio
    async def test_swap_approves_router_once(self, gateway, usdc, weth):
        route = SwapRoute(usdc, weth)
        await gateway.submit_bounded_swap(route, 10**6, "0.5", DEADLINE)
        await gateway.ensure_approval(usdc, gateway.router_address, 10**6)

        assert gateway.call_log.count("approve:USDC") == 1

    @pytest.mark.asyncio
    async def test_approval_failure(self, gateway, usdc):
        gateway.fail_next("approve")
        with pytest.raises(ApprovalFailedError):
            await gateway.ensure_approval(usdc, gateway.router_address, 10)


class TestLiquidity:
    @pytest.mark.asyncio
    async def test_add_stake_unstake_remove(self, gateway, usdc, weth, virtual):
        pool = await PoolDiscovery(gateway).discover_pair(weth, virtual)
        gateway.set_balance(weth, 10**18)
        gateway.set_balance(virtual, 2000 * 10**18)

        added = await gateway.submit_add_liquidity(pool, 10**18, 2000 * 10**18, 1, 1, DEADLINE)
        liquidity = added.details["liquidity"]
        assert liquidity > 0
        assert gateway.balances[pool.pool_address] == liquidity

        await gateway.submit_stake(pool.gauge_address, liquidity)
        assert await gateway.get_staked_balance(pool.gauge_address) == liquidity
        assert gateway.balances[pool.pool_address] == 0

        await gateway.submit_unstake(pool.gauge_address, liquidity)
        quote_a, quote_b = await gateway.quote_remove_liquidity(pool, liquidity)
        removed = await gateway.submit_remove_liquidity(
            pool, liquidity, quote_a, quote_b, DEADLINE
        )

        assert removed.details["amount_a"] == quote_a
        assert removed.details["amount_b"] == quote_b
        # integer rounding in the pool loses a few wei
        assert 10**18 - 10 <= gateway.balances[weth.address.lower()] <= 10**18

    @pytest.mark.asyncio
    async def test_add_liquidity_min_amount(self, gateway, weth, virtual):
        pool = await PoolDiscovery(gateway).discover_pair(weth, virtual)
        gateway.set_balance(weth, 10**18)
        gateway.set_balance(virtual, 10**18)

        with pytest.raises(TransactionRevertedError, match="INSUFFICIENT_A_AMOUNT"):
            await gateway.submit_add_liquidity(pool, 10**18, 10**18, 10**18, 1, DEADLINE)

    @pytest.mark.asyncio
    async def test_unstake_more_than_staked(self, gateway, weth, virtual):
        pool = await PoolDiscovery(gateway).discover_pair(weth, virtual)
        with pytest.raises(InsufficientBalanceError):
            await gateway.submit_unstake(pool.gauge_address, 1)

    @pytest.mark.asyncio
    async def test_claim_rewards(self, weth, virtual):
        aero = Token("AERO", "0x940181a94A35A4569E4529A3CDfB74e38FD98631")
        gateway = PaperLedgerGateway(reward_token=aero, reward_per_claim=5)
        gateway.add_pool(weth, virtual, 10**18, 10**18)
        pool = await PoolDiscovery(gateway).discover_pair(weth, virtual)
        gateway.set_staked(pool.gauge_address, 10)

        result = await gateway.submit_claim_rewards(pool.gauge_address)

        assert result.details["claimed"] == 5
        assert gateway.balances[aero.address.lower()] == 5


class TestScripting:
    @pytest.mark.asyncio
    async def test_fail_next_skip_and_times(self, gateway, usdc):
        gateway.fail_next("read", skip=1, times=2)

        await gateway.get_balance(usdc)
        for _ in range(2):
            with pytest.raises(TransactionRevertedError):
                await gateway.get_balance(usdc)
        assert await gateway.get_balance(usdc) == 1000 * 10**6

    @pytest.mark.asyncio
    async def test_batch_without_native_support(self, usdc, weth):
        gateway = PaperLedgerGateway(native_batching=False)
        with pytest.raises(StepExecutionError):
            await gateway.submit_batch(
                [BatchCall.approve(usdc, gateway.router_address, 1)], BatchMode.BEST_EFFORT
            )
