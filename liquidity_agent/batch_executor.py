"""
Batch executor.

Submits groups of mutually independent calls (approvals, parallel swaps) as
one ledger transaction when the gateway supports it, otherwise runs them one
by one.
"""

import logging
from typing import List, Sequence

from .exceptions import BatchPreconditionError, StepExecutionError
from .gateway.base import LedgerGateway
from .types import BatchCall, BatchMode, OperationKind, StepResult

logger = logging.getLogger(__name__)

NOT_EXECUTED = "not executed: an earlier call in the batch failed"


class BatchExecutor:
    """Runs BatchCall groups in batch or sequential mode."""

    def __init__(self, gateway: LedgerGateway, enabled: bool = True):
        self.gateway = gateway
        self.enabled = enabled

    @property
    def can_batch(self) -> bool:
        return self.enabled and self.gateway.supports_batching

    @staticmethod
    def check_independence(calls: Sequence[BatchCall]) -> None:
        """
        Reject batches in which a call consumes an asset another call produces.

        Raises:
            BatchPreconditionError: On the first dependent call found
        """
        producers = {}
        for index, call in enumerate(calls):
            if call.produces:
                producers.setdefault(call.produces, index)

        for index, call in enumerate(calls):
            source = producers.get(call.consumes) if call.consumes else None
            if source is not None and source != index:
                raise BatchPreconditionError(
                    f"'{call.label}' consumes the output of '{calls[source].label}'",
                    asset=call.consumes,
                    details={"consumer": index, "producer": source},
                )

    async def execute_batch(
        self,
        calls: Sequence[BatchCall],
        mode: BatchMode,
        sequential: bool = False,
    ) -> List[StepResult]:
        """
        Execute independent calls and report one StepResult per call, in order.

        Args:
            calls: Mutually independent sub-calls
            mode: BEST_EFFORT or ALL_OR_NOTHING
            sequential: Force one-by-one execution even if batching is available

        Raises:
            BatchPreconditionError: If the calls are not independent
            StepExecutionError: If the batch transaction itself fails
        """
        calls = list(calls)
        if not calls:
            return []

        self.check_independence(calls)

        if self.can_batch and not sequential:
            logger.info(f"📦 Submitting {len(calls)} calls as one {mode.value} batch")
            results = await self.gateway.submit_batch(calls, mode)
            if len(results) != len(calls):
                raise StepExecutionError(
                    f"batch returned {len(results)} results for {len(calls)} calls",
                    operation="batch",
                )
        else:
            results = await self._execute_sequential(calls, mode)

        failed = [r for r in results if not r.success]
        if failed:
            logger.warning(
                f"Batch ({mode.value}): {len(failed)}/{len(results)} calls failed: {failed[0].error}"
            )
        return results

    async def _execute_sequential(self, calls: List[BatchCall], mode: BatchMode) -> List[StepResult]:
        """
        Run calls one by one.

        Not atomic: in ALL_OR_NOTHING mode calls that already succeeded stay
        committed; only the remaining calls are skipped.
        """
        logger.debug(f"Executing {len(calls)} calls sequentially ({mode.value})")
        results: List[StepResult] = []

        for index, call in enumerate(calls):
            try:
                result = await self._execute_single(call)
            except StepExecutionError as e:
                result = StepResult.failed(call.kind, str(e), tx_hash=e.tx_hash, label=call.label)
            results.append(result)

            if not result.success and mode is BatchMode.ALL_OR_NOTHING:
                results.extend(
                    StepResult.failed(rest.kind, NOT_EXECUTED, label=rest.label)
                    for rest in calls[index + 1 :]
                )
                break

        return results

    async def _execute_single(self, call: BatchCall) -> StepResult:
        if call.kind is OperationKind.APPROVE:
            result = await self.gateway.ensure_approval(call.token, call.spender, call.amount)
            if result is None:
                return StepResult.ok(OperationKind.APPROVE, label=call.label, already_approved=True)
            return result
        if call.kind is OperationKind.SWAP:
            return await self.gateway.submit_swap(call.route, call.amount, call.min_out, call.deadline)
        raise BatchPreconditionError(f"Unsupported batch call kind: {call.kind.value}")
