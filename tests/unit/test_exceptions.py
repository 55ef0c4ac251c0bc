"""Tests for the exceptions module."""

import pytest

from liquidity_agent.exceptions import (
    AgentNotInitializedError,
    ApprovalFailedError,
    BatchPreconditionError,
    ConfigurationError,
    DiscoveryError,
    ErrorCategory,
    InsufficientFundsError,
    InsufficientResourceError,
    InvalidInputError,
    LedgerNetworkError,
    LiquidityAgentError,
    NoGaugeForPoolError,
    NothingStakedError,
    PoolNotFoundError,
    RecoveryExhaustedError,
    StepExecutionError,
    TransactionRevertedError,
    TransactionTimeoutError,
    ValidationError,
    categorize,
)


def test_base_exception():
    """Test the base exception class."""
    error = LiquidityAgentError("Test error")
    assert str(error) == "Test error"
    assert error.details == {}
    assert error.category is ErrorCategory.INTERNAL

    error_with_details = LiquidityAgentError("Test error", {"key": "value"})
    assert error_with_details.details == {"key": "value"}


def test_configuration_error():
    error = ConfigurationError("Config error", {"config_file": "agent.yaml"})
    assert error.details["config_file"] == "agent.yaml"
    assert error.category is ErrorCategory.CONFIGURATION
    assert isinstance(error, LiquidityAgentError)


def test_invalid_input_error():
    error = InvalidInputError("bad slippage", field="slippage_pct", value=0)
    assert isinstance(error, ValidationError)
    assert error.field == "slippage_pct"
    assert error.value == 0
    assert error.category is ErrorCategory.VALIDATION


def test_insufficient_resource_errors():
    error = InsufficientFundsError("too poor", asset="USDC", required=100, available=10)
    assert isinstance(error, InsufficientResourceError)
    assert error.asset == "USDC"
    assert error.required == 100
    assert error.available == 10
    assert error.category is ErrorCategory.INSUFFICIENT_RESOURCE
    assert NothingStakedError("none").category is ErrorCategory.INSUFFICIENT_RESOURCE


def test_discovery_errors():
    error = PoolNotFoundError("no pool", asset_a="WETH", asset_b="VIRTUAL")
    assert isinstance(error, DiscoveryError)
    assert (error.asset_a, error.asset_b) == ("WETH", "VIRTUAL")

    gauge_error = NoGaugeForPoolError("no gauge", pool_address="0xpool", asset_a="WETH")
    assert gauge_error.pool_address == "0xpool"
    assert gauge_error.asset_a == "WETH"
    assert gauge_error.category is ErrorCategory.DISCOVERY_FAILURE
    assert AgentNotInitializedError("x").category is ErrorCategory.DISCOVERY_FAILURE


@pytest.mark.parametrize(
    "error_class",
    [ApprovalFailedError, TransactionRevertedError, StepExecutionError],
)
def test_step_execution_errors(error_class):
    error = error_class("failed", operation="swap", tx_hash="0xabc")
    assert isinstance(error, StepExecutionError)
    assert error.operation == "swap"
    assert error.tx_hash == "0xabc"
    assert error.category is ErrorCategory.STEP_EXECUTION_FAILURE


def test_timeout_and_network_errors():
    timeout = TransactionTimeoutError("slow", operation="stake", timeout_s=5.0)
    assert timeout.timeout_s == 5.0
    assert timeout.operation == "stake"
    assert isinstance(timeout, StepExecutionError)

    network = LedgerNetworkError("down", endpoint="https://rpc", status_code=429)
    assert network.endpoint == "https://rpc"
    assert network.status_code == 429
    assert isinstance(network, StepExecutionError)


def test_recovery_and_batch_errors():
    exhausted = RecoveryExhaustedError("manual", attempted=["refund"])
    assert exhausted.attempted == ["refund"]
    assert exhausted.category is ErrorCategory.RECOVERY_EXHAUSTED

    precondition = BatchPreconditionError("dependent", asset="0xweth")
    assert precondition.asset == "0xweth"


def test_categorize():
    assert categorize(InvalidInputError("x")) is ErrorCategory.VALIDATION
    assert categorize(TransactionRevertedError("x")) is ErrorCategory.STEP_EXECUTION_FAILURE
    assert categorize(TimeoutError()) is ErrorCategory.STEP_EXECUTION_FAILURE
    assert categorize(KeyError("x")) is ErrorCategory.INTERNAL
