"""
Operation ledger: in-process flow and recovery counters.

Only the orchestrator and the recovery engine write to the ledger; every
other reader gets an immutable OperationStats snapshot. Flows are serialized
by the orchestrator, so ``total == successful + failed`` holds whenever no
flow is in flight.
"""

import time
from typing import Callable, Optional

from .metrics import AgentMetrics
from .types import FlowKind, OperationStats, RecoveryOutcome, RecoveryStats, StepResult


class OperationLedger:
    """Single-writer counters, optionally mirrored into Prometheus."""

    def __init__(
        self,
        metrics: Optional[AgentMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.metrics = metrics
        self.clock = clock
        self.clear()

    def clear(self) -> None:
        """Reset every counter to zero."""
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._total_errors = 0
        self._recovered_errors = 0
        self._manual_interventions = 0
        self._last_operation: Optional[str] = None
        self._last_operation_time: Optional[float] = None

    @property
    def in_flight(self) -> int:
        return self._total - self._successful - self._failed

    def record_flow_start(self, kind: FlowKind) -> None:
        self._total += 1
        self._last_operation = kind.value
        self._last_operation_time = self.clock()
        if self.metrics:
            self.metrics.record_flow_started(kind.value)

    def record_flow_success(self, kind: FlowKind, duration_s: float = 0.0) -> None:
        self._successful += 1
        self._last_operation_time = self.clock()
        if self.metrics:
            self.metrics.record_flow_completed(kind.value, duration_s)

    def record_flow_failure(
        self, kind: FlowKind, failed_step: str = "unknown", duration_s: float = 0.0
    ) -> None:
        self._failed += 1
        self._last_operation_time = self.clock()
        if self.metrics:
            self.metrics.record_flow_failed(kind.value, failed_step, duration_s)

    def record_step(self, result: StepResult, latency_s: float = 0.0) -> None:
        if self.metrics:
            self.metrics.record_step(result.operation.value, result.success, latency_s)

    def record_recovery(self, outcome: RecoveryOutcome) -> None:
        """
        Count one recovery chain.

        ``recovered_errors`` counts chains where a corrective action
        succeeded; ``manual_interventions`` counts chains that ended with the
        manual report.
        """
        self._total_errors += 1
        if outcome.recovered:
            self._recovered_errors += 1
        if outcome.manual_intervention:
            self._manual_interventions += 1

        if self.metrics:
            if outcome.recovered:
                label = "recovered"
            elif outcome.manual_intervention:
                label = "manual"
            elif not outcome.attempted_actions:
                label = "disabled"
            else:
                label = "exhausted"
            self.metrics.record_recovery(outcome.context.flow_kind.value, label)

    def snapshot(self) -> OperationStats:
        return OperationStats(
            total=self._total,
            successful=self._successful,
            failed=self._failed,
            recovery=RecoveryStats(
                total_errors=self._total_errors,
                recovered_errors=self._recovered_errors,
                manual_interventions=self._manual_interventions,
            ),
            last_operation=self._last_operation,
            last_operation_time=self._last_operation_time,
        )
