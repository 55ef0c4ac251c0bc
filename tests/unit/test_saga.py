"""
Unit tests for the saga orchestrator, driven against the paper ledger
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from liquidity_agent.agent import build_agent
from liquidity_agent.exceptions import AgentNotInitializedError, ErrorCategory, InvalidInputError
from liquidity_agent.gateway.paper_gateway import PaperLedgerGateway
from liquidity_agent.saga import DEPOSIT_TRANSITIONS, WITHDRAW_TRANSITIONS
from liquidity_agent.types import (
    DepositRequest,
    DepositState,
    FlowKind,
    OperationKind,
    RecoveryKind,
    WithdrawRequest,
    WithdrawState,
)

USDC_UNIT = 10**6


async def wait_for_call(gateway, label, count=1):
    while gateway.call_log.count(label) < count:
        await asyncio.sleep(0.005)


class TestTransitions:
    def test_deposit_states_are_linear(self):
        state, visited = DepositState.INIT, [DepositState.INIT]
        while state in DEPOSIT_TRANSITIONS:
            state = DEPOSIT_TRANSITIONS[state]
            visited.append(state)
        assert visited[-1] is DepositState.RECEIPT
        assert DepositState.FAILED not in visited
        assert len(visited) == len(set(visited)) == 7

    def test_withdraw_states_are_linear(self):
        state, visited = WithdrawState.INIT, [WithdrawState.INIT]
        while state in WITHDRAW_TRANSITIONS:
            state = WITHDRAW_TRANSITIONS[state]
            visited.append(state)
        assert visited[-1] is WithdrawState.RECEIPT
        assert len(visited) == len(set(visited)) == 7


class TestSession:
    @pytest.mark.asyncio
    async def test_initialize_discovers_pool(self, agent, weth, virtual):
        assert await agent.orchestrator.initialize() is True

        status = agent.orchestrator.get_status()
        assert status.is_initialized
        assert status.pool_discovered
        assert not status.busy
        assert status.pool_info.asset_a == weth
        assert status.pool_info.asset_b == virtual
        assert status.pool_info.variant == "volatile"

    @pytest.mark.asyncio
    async def test_initialize_fails_without_gauge(self, agent_config, weth, virtual):
        gateway = PaperLedgerGateway()
        gateway.add_pool(weth, virtual, 10**18, 10**18, with_gauge=False)
        agent = build_agent(agent_config, gateway=gateway, registry=CollectorRegistry())

        assert await agent.orchestrator.initialize() is False
        assert agent.orchestrator.get_pool_info() is None
        assert not agent.orchestrator.get_status().is_initialized

    @pytest.mark.asyncio
    async def test_list_pools(self, agent):
        await agent.orchestrator.initialize()
        pools = await agent.orchestrator.list_pools()
        assert list(pools) == ["volatile"]
        assert pools["volatile"] == agent.orchestrator.get_pool_info().pool_address

    @pytest.mark.asyncio
    async def test_account_summary(self, agent):
        await agent.orchestrator.initialize()
        summary = await agent.orchestrator.get_account_summary()

        assert summary.balances == {"USDC": 1000 * USDC_UNIT, "WETH": 0, "VIRTUAL": 0}
        assert summary.lp_balance == 0
        assert summary.staked_balance == 0
        assert summary.native_balance > 0

    @pytest.mark.asyncio
    async def test_claim_rewards_requires_pool(self, agent):
        with pytest.raises(AgentNotInitializedError):
            await agent.orchestrator.claim_rewards()

    @pytest.mark.asyncio
    async def test_claim_rewards_failure_is_reported(self, agent, gateway):
        await agent.orchestrator.initialize()
        gateway.fail_next("claim_rewards")

        step = await agent.orchestrator.claim_rewards()
        assert not step.success
        assert step.operation is OperationKind.CLAIM_REWARDS
        assert "claim_rewards" in step.error


class TestDepositFlow:
    @pytest.mark.asyncio
    async def test_successful_deposit(self, agent, gateway, usdc):
        await agent.orchestrator.initialize()

        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        assert result.success
        assert result.flow_kind is FlowKind.DEPOSIT
        assert [s.step for s in result.steps] == [
            "AcquireHalfA",
            "AcquireHalfB",
            "AddLiquidity",
            "Stake",
        ]
        assert all(s.success for s in result.steps)
        assert result.recovery is None

        receipt = result.receipt
        assert receipt.receipt_id.startswith("pos_")
        assert receipt.deposit_amount == "100"
        assert receipt.base_asset == "USDC"
        assert receipt.amount_a > 0 and receipt.amount_b > 0
        assert receipt.staked_balance == receipt.lp_amount > 0
        assert receipt.user_address == gateway.account_address
        assert gateway.balances[usdc.address.lower()] == 900 * USDC_UNIT

        stats = agent.ledger.snapshot()
        assert (stats.total, stats.successful, stats.failed) == (1, 1, 0)
        assert stats.last_operation == "deposit"

    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, agent, gateway):
        await agent.orchestrator.initialize()
        await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        log = gateway.call_log
        add = log.index("add_liquidity")
        assert log.index("swap:USDC->WETH") < add
        assert log.index("swap:USDC->VIRTUAL") < add
        assert add < log.index("stake")

    @pytest.mark.asyncio
    async def test_custom_split(self, agent):
        await agent.orchestrator.initialize()
        result = await agent.orchestrator.execute_deposit_flow(
            DepositRequest(amount="100", split_ratio_pct="50", slippage_pct="1")
        )
        assert result.success

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, agent, gateway, usdc):
        await agent.orchestrator.initialize()
        gateway.set_balance(usdc, 10 * USDC_UNIT)

        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="1000000"))

        assert not result.success
        assert result.steps == []
        assert result.failed_step == "CheckBaseBalance"
        assert result.error_category is ErrorCategory.INSUFFICIENT_RESOURCE
        assert result.recovery is None
        assert agent.recovery.get_recovery_history() == []
        assert not any(label.startswith("swap") for label in gateway.call_log)

    @pytest.mark.asyncio
    async def test_not_initialized(self, agent):
        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        assert not result.success
        assert result.failed_step == "Init"
        assert result.error_category is ErrorCategory.DISCOVERY_FAILURE
        assert agent.ledger.snapshot().failed == 1

    def test_invalid_request_rejected_before_flow(self):
        with pytest.raises(InvalidInputError):
            DepositRequest(amount="-5")
        with pytest.raises(InvalidInputError):
            DepositRequest(amount="100", slippage_pct="10")

    @pytest.mark.asyncio
    async def test_add_liquidity_failure_falls_through_to_manual(self, agent, gateway, usdc):
        await agent.orchestrator.initialize()
        gateway.set_balance(usdc, 100 * USDC_UNIT)
        gateway.fail_next("add_liquidity")
        # Recovery liquidations fail too
        gateway.fail_next("swap", times=2, skip=2)

        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        assert not result.success
        assert len(result.steps) == 2
        assert result.failed_step == "AddLiquidity"
        assert result.error_category is ErrorCategory.STEP_EXECUTION_FAILURE

        outcome = result.recovery
        assert outcome.attempted_kinds == [
            RecoveryKind.REFUND,
            RecoveryKind.RECOVER_STUCK,
            RecoveryKind.MANUAL,
        ]
        assert not outcome.recovered
        assert outcome.manual_intervention

        stats = agent.ledger.snapshot()
        assert stats.failed == 1
        assert stats.recovery.total_errors == 1
        assert stats.recovery.recovered_errors == 0
        assert stats.recovery.manual_interventions == 1

    @pytest.mark.asyncio
    async def test_add_liquidity_failure_recovers_stuck_tokens(self, agent, gateway, usdc, weth, virtual):
        await agent.orchestrator.initialize()
        gateway.set_balance(usdc, 100 * USDC_UNIT)
        gateway.fail_next("add_liquidity")

        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        outcome = result.recovery
        assert outcome.recovered
        assert outcome.resolved_by is RecoveryKind.RECOVER_STUCK
        assert gateway.balances[weth.address.lower()] == 0
        assert gateway.balances[virtual.address.lower()] == 0
        assert 98 * USDC_UNIT < outcome.final_base_balance < 100 * USDC_UNIT
        assert agent.ledger.snapshot().recovery.recovered_errors == 1

    @pytest.mark.asyncio
    async def test_swap_timeout_triggers_recovery(self, make_agent):
        agent = make_agent(execution={"step_timeout_s": 0.05})
        await agent.orchestrator.initialize()
        agent.gateway.set_delay("swap", 1)

        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        assert not result.success
        assert result.failed_step == "AcquireHalfA"
        assert "timed out" in result.error
        assert result.recovery is not None
        assert result.recovery.resolved_by is RecoveryKind.REFUND

    @pytest.mark.asyncio
    async def test_read_timeout_before_mutation_skips_recovery(self, make_agent):
        agent = make_agent(execution={"step_timeout_s": 0.05})
        await agent.orchestrator.initialize()
        agent.gateway.set_delay("read", 1)

        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        assert not result.success
        assert result.failed_step == "CheckBaseBalance"
        assert result.recovery is None
        assert agent.recovery.get_recovery_history() == []


class TestBatching:
    @pytest.mark.asyncio
    async def test_batched_deposit(self, agent, gateway):
        await agent.orchestrator.initialize()

        result = await agent.orchestrator.execute_deposit_flow(
            DepositRequest(amount="100", use_batching=True)
        )

        assert result.success
        assert len(result.steps) == 4
        assert gateway.batches_submitted == 2
        assert result.steps[0].tx_hash == result.steps[1].tx_hash

    @pytest.mark.asyncio
    async def test_optimize_for_gas_enables_batching(self, agent, gateway):
        await agent.orchestrator.initialize()
        result = await agent.orchestrator.execute_deposit_flow(
            DepositRequest(amount="100", use_batching=False, optimize_for_gas=True)
        )
        assert result.success
        assert gateway.batches_submitted == 2

    @pytest.mark.asyncio
    async def test_atomic_swap_batch_reverts_both(self, agent, gateway, usdc, weth, virtual):
        await agent.orchestrator.initialize()
        gateway.fail_next("swap", skip=1)

        result = await agent.orchestrator.execute_deposit_flow(
            DepositRequest(amount="100", use_batching=True)
        )

        assert not result.success
        assert result.failed_step == "AcquireHalfA"
        assert gateway.balances[usdc.address.lower()] == 1000 * USDC_UNIT
        assert gateway.balances[weth.address.lower()] == 0
        assert gateway.balances[virtual.address.lower()] == 0

    @pytest.mark.asyncio
    async def test_falls_back_to_sequential(self, make_agent):
        agent = make_agent(paper={"native_batching": False})
        await agent.orchestrator.initialize()

        result = await agent.orchestrator.execute_deposit_flow(
            DepositRequest(amount="100", use_batching=True)
        )

        assert result.success
        assert agent.gateway.batches_submitted == 0
        assert result.steps[0].tx_hash != result.steps[1].tx_hash

    @pytest.mark.asyncio
    async def test_sequential_fallback_records_committed_swap(self, make_agent, weth):
        agent = make_agent(paper={"native_batching": False})
        await agent.orchestrator.initialize()
        agent.gateway.fail_next("swap", skip=1)

        result = await agent.orchestrator.execute_deposit_flow(
            DepositRequest(amount="100", use_batching=True)
        )

        assert not result.success
        assert result.failed_step == "AcquireHalfB"
        assert [s.step for s in result.steps] == ["AcquireHalfA"]
        assert result.steps[0].operation is OperationKind.SWAP
        assert agent.gateway.balances[weth.address.lower()] > 0
        assert result.recovery is not None

    @pytest.mark.asyncio
    async def test_sequential_fallback_records_committed_liquidation(self, make_agent):
        agent = make_agent(paper={"native_batching": False})
        await agent.orchestrator.initialize()
        await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))
        agent.gateway.fail_next("swap", skip=1)

        result = await agent.orchestrator.execute_withdraw_flow(
            WithdrawRequest(percentage=100, use_batching=True)
        )

        assert not result.success
        assert result.failed_step == "LiquidateB"
        assert [s.step for s in result.steps] == ["Unstake", "RemoveLiquidity", "LiquidateA"]

    @pytest.mark.asyncio
    async def test_batched_withdraw(self, agent, gateway):
        await agent.orchestrator.initialize()
        await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        result = await agent.orchestrator.execute_withdraw_flow(
            WithdrawRequest(percentage=100, use_batching=True)
        )

        assert result.success
        assert [s.step for s in result.steps] == [
            "Unstake",
            "RemoveLiquidity",
            "LiquidateA",
            "LiquidateB",
        ]
        assert result.steps[2].tx_hash == result.steps[3].tx_hash


class TestWithdrawFlow:
    @pytest.mark.asyncio
    async def test_deposit_then_withdraw(self, agent, gateway, usdc):
        await agent.orchestrator.initialize()
        await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))

        result = await agent.orchestrator.execute_withdraw_flow(WithdrawRequest(percentage=100))

        assert result.success
        assert [s.step for s in result.steps] == [
            "Unstake",
            "RemoveLiquidity",
            "LiquidateA",
            "LiquidateB",
        ]
        receipt = result.receipt
        assert receipt.receipt_id.startswith("wd_")
        assert receipt.percentage == 100
        assert receipt.final_base_balance == gateway.balances[usdc.address.lower()]
        assert 995 * USDC_UNIT < receipt.final_base_balance < 1000 * USDC_UNIT

        log = gateway.call_log
        assert log.index("unstake") < log.index("remove_liquidity")

        stats = agent.ledger.snapshot()
        assert (stats.total, stats.successful, stats.failed) == (2, 2, 0)
        assert stats.last_operation == "withdraw"

    @pytest.mark.asyncio
    async def test_partial_withdraw(self, agent, gateway):
        await agent.orchestrator.initialize()
        await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))
        gauge = agent.orchestrator.get_pool_info().gauge_address
        staked = gateway.staked[gauge.lower()]

        result = await agent.orchestrator.execute_withdraw_flow(WithdrawRequest(percentage=50))

        assert result.success
        assert result.receipt.unstaked_amount == staked * 50 // 100
        assert gateway.staked[gauge.lower()] == staked - staked * 50 // 100

    @pytest.mark.asyncio
    async def test_nothing_staked(self, agent):
        await agent.orchestrator.initialize()

        result = await agent.orchestrator.execute_withdraw_flow(WithdrawRequest())

        assert not result.success
        assert result.failed_step == "CheckStaked"
        assert result.error_category is ErrorCategory.INSUFFICIENT_RESOURCE
        assert result.recovery is None

    @pytest.mark.asyncio
    async def test_percentage_rounding_to_zero(self, agent, gateway):
        await agent.orchestrator.initialize()
        gateway.set_staked(agent.orchestrator.get_pool_info().gauge_address, 1)

        result = await agent.orchestrator.execute_withdraw_flow(WithdrawRequest(percentage=50))

        assert not result.success
        assert result.failed_step == "CheckStaked"
        assert result.error_category is ErrorCategory.INSUFFICIENT_RESOURCE
        assert "unstake" not in gateway.call_log

    def test_invalid_percentage(self):
        for percentage in (0, 101, 50.5, True):
            with pytest.raises(InvalidInputError):
                WithdrawRequest(percentage=percentage)

    @pytest.mark.asyncio
    async def test_skips_zero_balance_liquidation(self, agent_config, usdc, weth, virtual):
        gateway = PaperLedgerGateway()
        gateway.add_pool(usdc, weth, 10**12, 333 * 10**18, with_gauge=False)
        gateway.add_pool(usdc, virtual, 10**12, 666666 * 10**18, with_gauge=False)
        gateway.add_pool(weth, virtual, 10**18, 1)
        agent = build_agent(agent_config, gateway=gateway, registry=CollectorRegistry())
        await agent.orchestrator.initialize()
        gateway.set_staked(agent.orchestrator.get_pool_info().gauge_address, 10**6)

        result = await agent.orchestrator.execute_withdraw_flow(WithdrawRequest(percentage=100))

        assert result.success
        assert [s.step for s in result.steps] == ["Unstake", "RemoveLiquidity", "LiquidateA"]
        assert result.receipt.amount_b_received == 0
        assert "swap:VIRTUAL->USDC" not in gateway.call_log

    @pytest.mark.asyncio
    async def test_unstake_failure_recovered_by_retry(self, agent, gateway):
        await agent.orchestrator.initialize()
        await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))
        gauge = agent.orchestrator.get_pool_info().gauge_address
        gateway.fail_next("unstake")

        result = await agent.orchestrator.execute_withdraw_flow(WithdrawRequest(percentage=100))

        assert not result.success
        assert result.failed_step == "Unstake"
        assert result.recovery.resolved_by is RecoveryKind.RETRY
        assert result.recovery.recovered
        assert gateway.staked[gauge.lower()] == 0

        context = agent.recovery.get_recovery_history()[-1]
        assert context.flow_kind is FlowKind.WITHDRAW
        assert context.details["percentage"] == 100
        assert context.details["unstake_amount"] > 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_flows_are_serialized(self, agent, gateway):
        await agent.orchestrator.initialize()

        first, second = await asyncio.gather(
            agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100")),
            agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100")),
        )

        assert first.success and second.success
        log = gateway.call_log
        second_check = [i for i, label in enumerate(log) if label == "balance:USDC"][1]
        assert log.index("stake") < second_check
        assert agent.ledger.snapshot().total == 2

    @pytest.mark.asyncio
    async def test_cancel_after_mutation_runs_recovery(self, agent, gateway):
        await agent.orchestrator.initialize()
        gateway.set_delay("add_liquidity", 10)

        task = asyncio.create_task(
            agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))
        )
        await asyncio.wait_for(wait_for_call(gateway, "add_liquidity"), 5)
        assert agent.orchestrator.get_status().busy

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stats = agent.ledger.snapshot()
        assert stats.failed == 1
        assert stats.recovery.total_errors == 1
        history = agent.recovery.get_recovery_history()
        assert [ctx.failed_step for ctx in history] == ["AddLiquidity"]
        assert not agent.orchestrator.get_status().busy

    @pytest.mark.asyncio
    async def test_cancel_before_mutation_skips_recovery(self, agent, gateway):
        await agent.orchestrator.initialize()
        gateway.set_delay("read", 10)

        task = asyncio.create_task(
            agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))
        )
        await asyncio.wait_for(wait_for_call(gateway, "balance:USDC"), 5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert agent.ledger.snapshot().failed == 1
        assert agent.recovery.get_recovery_history() == []

    @pytest.mark.asyncio
    async def test_initialize_waits_for_running_flow(self, agent, gateway):
        await agent.orchestrator.initialize()
        gateway.set_delay("add_liquidity", 0.2)

        flow = asyncio.create_task(
            agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))
        )
        await asyncio.wait_for(wait_for_call(gateway, "add_liquidity"), 5)
        reinit = asyncio.create_task(agent.orchestrator.initialize())
        await asyncio.sleep(0.05)
        assert not reinit.done()

        assert (await flow).success
        assert await reinit
        log = gateway.call_log
        second_lookup = [i for i, label in enumerate(log) if label == "get_pool"][-1]
        assert log.index("stake") < second_lookup


class TestEstimate:
    @pytest.mark.asyncio
    async def test_estimate_matches_deposit(self, agent, gateway):
        await agent.orchestrator.initialize()
        gauge = agent.orchestrator.get_pool_info().gauge_address

        estimate = await agent.orchestrator.estimate_deposit("100")

        assert estimate.deposit_units == 100 * USDC_UNIT
        assert estimate.amount_a > 0 and estimate.amount_b > 0
        assert estimate.used_a <= estimate.amount_a
        assert estimate.used_b <= estimate.amount_b
        assert estimate.price_a_in_b > 0
        assert not any(label.startswith("swap") for label in gateway.call_log)

        result = await agent.orchestrator.execute_deposit_flow(DepositRequest(amount="100"))
        assert result.success
        assert gateway.staked[gauge.lower()] == estimate.expected_lp

    @pytest.mark.asyncio
    async def test_estimate_rejects_non_positive_amount(self, agent):
        await agent.orchestrator.initialize()
        with pytest.raises(InvalidInputError):
            await agent.orchestrator.estimate_deposit("0")

    @pytest.mark.asyncio
    async def test_estimate_requires_pool(self, agent):
        with pytest.raises(AgentNotInitializedError):
            await agent.orchestrator.estimate_deposit("100")
