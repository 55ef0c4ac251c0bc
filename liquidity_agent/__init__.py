"""
Liquidity Provisioning Agent.

Deposits a base asset into an AMM liquidity pool and stakes the LP tokens,
and reverses the position on withdrawal. Every flow runs as a saga with an
ordered recovery chain, optional call batching and bounded slippage.
"""

from liquidity_agent.version import __version__

PROJECT_NAME = "Liquidity-Provisioning-Agent"
VERSION = __version__

# Export main components for easier imports
from liquidity_agent.agent import LiquidityAgent, build_agent
from liquidity_agent.batch_executor import BatchExecutor
from liquidity_agent.discovery import PoolDiscovery
from liquidity_agent.operation_stats import OperationLedger
from liquidity_agent.recovery import RECOVERY_CHAINS, RecoveryEngine
from liquidity_agent.saga import SagaOrchestrator
from liquidity_agent.types import (
    DepositRequest,
    DepositState,
    FlowKind,
    FlowResult,
    PoolInfo,
    PositionReceipt,
    StepResult,
    WithdrawalReceipt,
    WithdrawRequest,
    WithdrawState,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "LiquidityAgent",
    "build_agent",
    "BatchExecutor",
    "PoolDiscovery",
    "OperationLedger",
    "RECOVERY_CHAINS",
    "RecoveryEngine",
    "SagaOrchestrator",
    "DepositRequest",
    "DepositState",
    "FlowKind",
    "FlowResult",
    "PoolInfo",
    "PositionReceipt",
    "StepResult",
    "WithdrawalReceipt",
    "WithdrawRequest",
    "WithdrawState",
]
