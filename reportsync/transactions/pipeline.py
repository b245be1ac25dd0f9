"""
transactions/pipeline.py - Mutation pipeline

Runs one user action as an ordered sequence of dependent remote writes and
hands the committed result to the invalidation coordinator.

RULES:
- Steps run in order; a step with depends_on_previous=False joins the
  previous step's group and runs concurrently with it
- Every remote call is a guard-tracked task tagged with the batch epoch
- Any failure, cancellation or superseded epoch fails the whole batch and
  touches no cache entry
- Mutations are not retried
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple, Union
import asyncio
import logging

from reportsync.core.clock import Clock, SystemClock
from reportsync.core.enums import BatchStatus
from reportsync.errors.recovery import recovery_for
from reportsync.errors.taxonomy import MutationStepError
from reportsync.kernel.events import BatchEvent, CacheEventType, NoticeEvent, NoticeLevel

from .remote import ReportApi, dispatch, unwrap
from .schemas import (
    BatchOutcome,
    Committed,
    Failed,
    MutationBatch,
    MutationRequest,
    StepResult,
)

logger = logging.getLogger("transactions.pipeline")


def group_steps(steps: List[MutationRequest]) -> List[List[Tuple[int, MutationRequest]]]:
    """Split steps into groups that may run concurrently."""
    groups: List[List[Tuple[int, MutationRequest]]] = []
    for index, step in enumerate(steps):
        if not groups or step.depends_on_previous:
            groups.append([])
        groups[-1].append((index, step))
    return groups


class MutationPipeline:
    """
    Executes mutation batches.

    Usage:
        pipeline = MutationPipeline(api, guard, clock, config, dispatcher)
        pipeline.bind_handoff(invalidation_coordinator)
        outcome = await pipeline.submit(batch)
    """

    def __init__(
        self,
        remote: ReportApi,
        guard,
        clock: Clock = None,
        config=None,
        dispatcher=None,
        handoff=None,
    ):
        self._remote = remote
        self._guard = guard
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher
        self._handoff = handoff
        self._settle_delay = config.mutation.settle_delay_s if config is not None else 1.5

        self._history: List[MutationBatch] = []
        self._max_history = 100

    def bind_handoff(self, handoff) -> None:
        """Bind the component that reconciles committed batches."""
        self._handoff = handoff

    @property
    def history(self) -> List[MutationBatch]:
        return list(self._history)

    async def submit(self, batch: MutationBatch) -> BatchOutcome:
        """Execute a batch and reconcile it. Returns Reconciled or Failed."""
        if self._handoff is None:
            raise RuntimeError("MutationPipeline has no invalidation handoff bound")

        result = await self.execute(batch)
        if isinstance(result, Failed):
            return result

        outcome = await self._handoff.reconcile(result)
        batch.transition(BatchStatus.RECONCILED)
        self._emit_batch(batch, CacheEventType.BATCH_RECONCILED, result.epoch)
        return outcome

    async def execute(self, batch: MutationBatch) -> Union[Committed, Failed]:
        """Run every step of a batch without touching the cache."""
        self._guard.require_identity()
        epoch = self._guard.epoch
        self._record(batch)

        batch.transition(BatchStatus.COMMITTING)
        self._emit_batch(batch, CacheEventType.BATCH_SUBMITTED, epoch)
        logger.info(f"Batch {batch.batch_id}: {len(batch.steps)} step(s) {[k.value for k in batch.kinds]}")

        results: List[StepResult] = []
        for group in group_steps(batch.steps):
            first_index, first_step = group[0]
            if epoch != self._guard.epoch:
                error = MutationStepError(
                    first_index, first_step.kind.value,
                    message=f"Step {first_index} ({first_step.kind.value}) superseded by identity change",
                )
                return self._fail(batch, first_index, error, epoch)

            tasks: Dict[int, asyncio.Task] = {}
            for index, step in group:
                task = asyncio.ensure_future(dispatch(self._remote, step))
                tasks[index] = self._guard.track(task, epoch)
            await asyncio.wait(tasks.values())

            for index, step in group:
                task = tasks[index]
                if task.cancelled():
                    error = MutationStepError(
                        index, step.kind.value,
                        message=f"Step {index} ({step.kind.value}) cancelled",
                    )
                    self._retrieve(tasks)
                    return self._fail(batch, index, error, epoch)
                if task.exception() is not None:
                    error = MutationStepError(index, step.kind.value, cause=task.exception())
                    self._retrieve(tasks)
                    return self._fail(batch, index, error, epoch)

                entity, token = unwrap(task.result())
                results.append(StepResult(index, step.kind, entity, token))
                self._emit_batch(
                    batch, CacheEventType.BATCH_STEP_COMPLETED, epoch,
                    step_index=index, step_kind=step.kind.value,
                )

        token = self._consistency_token(results)
        if token is None and self._settle_delay > 0:
            logger.debug(f"Batch {batch.batch_id}: settling for {self._settle_delay}s")
            await self._clock.sleep(self._settle_delay)

        batch.transition(BatchStatus.SETTLED)
        self._emit_batch(batch, CacheEventType.BATCH_SETTLED, epoch)
        return Committed(batch=batch, results=results, epoch=epoch, consistency_token=token)

    # ==================== Internals ====================

    @staticmethod
    def _consistency_token(results: List[StepResult]) -> Optional[str]:
        """The last write's token, if every write returned one."""
        if not results or any(r.consistency_token is None for r in results):
            return None
        return results[-1].consistency_token

    @staticmethod
    def _retrieve(tasks: Dict[int, asyncio.Task]) -> None:
        for task in tasks.values():
            if task.done() and not task.cancelled():
                task.exception()

    def _fail(self, batch: MutationBatch, index: int, error: MutationStepError, epoch: int) -> Failed:
        logger.warning(f"Batch {batch.batch_id} failed: {error}")
        batch.transition(BatchStatus.FAILED)
        self._emit_batch(
            batch, CacheEventType.BATCH_FAILED, epoch,
            step_index=index, step_kind=error.kind, error=str(error),
        )
        if self._dispatcher:
            self._dispatcher.emit(NoticeEvent(
                epoch=epoch,
                level=NoticeLevel.ERROR,
                message=recovery_for(error).user_message,
                batch_id=batch.batch_id,
            ))
        return Failed(batch_id=batch.batch_id, step=index, error=error)

    def _record(self, batch: MutationBatch) -> None:
        self._history.append(batch)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

    def _emit_batch(
        self,
        batch: MutationBatch,
        event_type: CacheEventType,
        epoch: int,
        **kwargs,
    ) -> None:
        if self._dispatcher:
            self._dispatcher.emit(BatchEvent(
                event_type=event_type,
                epoch=epoch,
                batch_id=batch.batch_id,
                status=batch.status.value,
                **kwargs,
            ))
