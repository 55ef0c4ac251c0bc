"""
Exception hierarchy for the liquidity agent.

Provides specific exception types for each error category so that the
orchestrator can decide whether a failure needs recovery, and callers can
tell a bad request apart from a failed on-chain step.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCategory(Enum):
    """Coarse error classes used for routing and reporting."""

    VALIDATION = "ValidationError"
    CONFIGURATION = "ConfigurationError"
    INSUFFICIENT_RESOURCE = "InsufficientResource"
    DISCOVERY_FAILURE = "DiscoveryFailure"
    STEP_EXECUTION_FAILURE = "StepExecutionFailure"
    RECOVERY_EXHAUSTED = "RecoveryExhausted"
    INTERNAL = "InternalError"


class LiquidityAgentError(Exception):
    """Base exception for all liquidity agent related errors."""

    category = ErrorCategory.INTERNAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(LiquidityAgentError):
    """Raised when there are configuration-related issues."""

    category = ErrorCategory.CONFIGURATION


class ValidationError(LiquidityAgentError):
    """Raised when a request or value fails validation."""

    category = ErrorCategory.VALIDATION


class InvalidInputError(ValidationError):
    """Raised when an amount, slippage or window is out of range."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value


class InsufficientResourceError(LiquidityAgentError):
    """Raised when a balance or stake is too low to start a flow."""

    category = ErrorCategory.INSUFFICIENT_RESOURCE

    def __init__(
        self,
        message: str,
        asset: Optional[str] = None,
        required: Optional[int] = None,
        available: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.asset = asset
        self.required = required
        self.available = available


class InsufficientFundsError(InsufficientResourceError):
    """Base asset balance is below the requested deposit amount."""

    pass


class NothingStakedError(InsufficientResourceError):
    """No liquidity tokens are staked in the gauge."""

    pass


class DiscoveryError(LiquidityAgentError):
    """Raised when pool or gauge discovery fails."""

    category = ErrorCategory.DISCOVERY_FAILURE

    def __init__(
        self,
        message: str,
        asset_a: Optional[str] = None,
        asset_b: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.asset_a = asset_a
        self.asset_b = asset_b


class PoolNotFoundError(DiscoveryError):
    """No pool variant exists for the pair."""

    pass


class NoGaugeForPoolError(DiscoveryError):
    """The discovered pool has no staking gauge."""

    def __init__(
        self,
        message: str,
        pool_address: Optional[str] = None,
        asset_a: Optional[str] = None,
        asset_b: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, asset_a=asset_a, asset_b=asset_b, details=details)
        self.pool_address = pool_address


class AgentNotInitializedError(LiquidityAgentError):
    """Raised when a flow is started before pool discovery succeeded."""

    category = ErrorCategory.DISCOVERY_FAILURE


class StepExecutionError(LiquidityAgentError):
    """Raised when a mutating ledger call fails or times out."""

    category = ErrorCategory.STEP_EXECUTION_FAILURE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.operation = operation
        self.tx_hash = tx_hash


class ApprovalFailedError(StepExecutionError):
    """Token approval could not be confirmed."""

    pass


class TransactionRevertedError(StepExecutionError):
    """Transaction was mined but reverted."""

    pass


class TransactionTimeoutError(StepExecutionError):
    """A ledger call did not complete within the step timeout."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout_s: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, operation=operation, details=details)
        self.timeout_s = timeout_s


class InsufficientBalanceError(StepExecutionError):
    """The ledger rejected a call because a balance was too low."""

    pass


class LedgerNetworkError(StepExecutionError):
    """Raised when RPC or connectivity issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, operation=operation, details=details)
        self.endpoint = endpoint
        self.status_code = status_code


class RecoveryExhaustedError(LiquidityAgentError):
    """No corrective recovery action succeeded; manual intervention required."""

    category = ErrorCategory.RECOVERY_EXHAUSTED

    def __init__(
        self,
        message: str,
        attempted: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.attempted = attempted or []


class BatchPreconditionError(LiquidityAgentError):
    """A batch contains a call that consumes another call's output."""

    def __init__(
        self,
        message: str,
        asset: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.asset = asset


def categorize(error: BaseException) -> ErrorCategory:
    """Map any exception onto an error category."""
    if isinstance(error, LiquidityAgentError):
        return error.category
    if isinstance(error, (TimeoutError, ConnectionError, OSError)):
        return ErrorCategory.STEP_EXECUTION_FAILURE
    return ErrorCategory.INTERNAL
