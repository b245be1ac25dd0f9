"""
dependencies/invalidation.py - Invalidation coordinator

Turns a committed mutation batch into removals, invalidations and refetches,
and reports success only after the affected scopes have been refetched or
the reconcile timeout has expired.

FAILURE SEMANTICS:
- A failed or timed-out refetch leaves its scope Invalidated; the next read
  retries it
- A batch whose epoch was superseded performs no invalidation at all; the
  full purge that superseded it already emptied the store
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import asyncio
import logging
import uuid

from reportsync.core.cache_store import CacheStore
from reportsync.core.clock import Clock, SystemClock
from reportsync.core.enums import EntryState, InvalidationMode
from reportsync.core.scope import ScopeKey
from reportsync.errors.recovery import recovery_for
from reportsync.errors.taxonomy import IdentityNotConfirmedError, ReconciliationTimeout
from reportsync.kernel.events import (
    NoticeEvent,
    NoticeLevel,
    ReconciliationTimeoutEvent,
    ScopesInvalidatedEvent,
)
from reportsync.transactions.schemas import Committed, Reconciled

from .graph import DependencyGraph, InvalidationPlan

logger = logging.getLogger("dependencies.invalidation")


# =============================================================================
# INVALIDATION RECORDS
# =============================================================================

class InvalidationReason(Enum):
    """Why an invalidation ran."""
    MUTATION_COMMITTED = "mutation_committed"
    USER_DATA_REQUESTED = "user_data_requested"
    ACTIVE_REFRESH = "active_refresh"


@dataclass
class InvalidationRecord:
    """Audit record of one reconciliation."""
    record_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: InvalidationReason = InvalidationReason.MUTATION_COMMITTED
    batch_id: Optional[str] = None

    removed: List[str] = field(default_factory=list)
    invalidated: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    superseded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason.value,
            "batch_id": self.batch_id,
            "removed": list(self.removed),
            "invalidated": list(self.invalidated),
            "refreshed": list(self.refreshed),
            "failed": list(self.failed),
            "timed_out": list(self.timed_out),
            "superseded": self.superseded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InvalidationRecord":
        return cls(
            record_id=data.get("record_id", str(uuid.uuid4())[:8]),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(timezone.utc),
            reason=InvalidationReason(data.get("reason", "mutation_committed")),
            batch_id=data.get("batch_id"),
            removed=data.get("removed", []),
            invalidated=data.get("invalidated", []),
            refreshed=data.get("refreshed", []),
            failed=data.get("failed", []),
            timed_out=data.get("timed_out", []),
            superseded=data.get("superseded", False),
        )


# =============================================================================
# COORDINATOR
# =============================================================================

class InvalidationCoordinator:
    """
    Reconciles the cache with committed mutations.

    Usage:
        coordinator = InvalidationCoordinator(store, queries, guard, clock)
        outcome = await coordinator.reconcile(committed)
    """

    def __init__(
        self,
        store: CacheStore,
        queries,
        guard,
        clock: Clock = None,
        graph: DependencyGraph = None,
        config=None,
        dispatcher=None,
    ):
        self._store = store
        self._queries = queries
        self._guard = guard
        self._clock = clock or SystemClock()
        self._graph = graph or DependencyGraph()
        self._dispatcher = dispatcher

        if config is not None:
            inv = config.invalidation
            self._reconcile_timeout = inv.reconcile_timeout_s
            self._sweep_delay = inv.sweep_delay_s
            self._sweep_timeout = inv.sweep_timeout_s
        else:
            self._reconcile_timeout = 5.0
            self._sweep_delay = 1.0
            self._sweep_timeout = 3.0

        self._sweeps: Set[asyncio.Task] = set()
        self._records: List[InvalidationRecord] = []
        self._max_records = 100
        self._callbacks: List[Callable[[InvalidationRecord], None]] = []

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def pending_sweeps(self) -> int:
        return sum(1 for task in self._sweeps if not task.done())

    def on_invalidation(self, callback: Callable[[InvalidationRecord], None]) -> None:
        """Register a callback invoked with every invalidation record."""
        self._callbacks.append(callback)

    def get_history(self, limit: int = 20) -> List[InvalidationRecord]:
        return self._records[-limit:]

    # ==================== Reconciliation ====================

    async def reconcile(self, committed: Committed) -> Reconciled:
        """Apply the batch's plan and wait for affected scopes to refetch."""
        batch = committed.batch

        if committed.epoch != self._guard.epoch:
            logger.info(
                f"Batch {batch.batch_id} superseded (epoch {committed.epoch} -> {self._guard.epoch}); "
                "skipping invalidation"
            )
            self._record(InvalidationRecord(batch_id=batch.batch_id, superseded=True))
            return Reconciled(batch_id=batch.batch_id, superseded=True)

        plan = self._graph.plan_for(batch, viewer_id=self._guard.confirmed_identity)
        outcome = await self._execute_plan(
            plan,
            batch_id=batch.batch_id,
            reason=InvalidationReason.MUTATION_COMMITTED,
            consistency_token=committed.consistency_token,
        )

        if plan.refetch and not outcome.superseded:
            self._schedule_sweep(plan, committed.epoch, committed.consistency_token)

        if not outcome.superseded and not outcome.timed_out:
            self._notify(NoticeLevel.SUCCESS, batch.description or "Changes saved", batch.batch_id)
        return outcome

    async def invalidate_user_data(self, user_id: str) -> Reconciled:
        """
        Invalidate one user's report, evaluation and hierarchy scopes.

        Only the confirmed identity may be invalidated this way; a request
        for anyone else is treated as an isolation violation.
        """
        identity = self._guard.confirmed_identity
        if identity is not None and user_id != identity:
            await self._guard.report_violation(
                f"invalidate_user_data({user_id}) requested while {identity} is confirmed",
                offending_identity=user_id,
            )
            return Reconciled(batch_id=f"user-{user_id}", superseded=True)

        plan = self._graph.plan_for_user(user_id)
        return await self._execute_plan(
            plan,
            batch_id=f"user-{user_id}",
            reason=InvalidationReason.USER_DATA_REQUESTED,
        )

    async def refetch_active(self) -> Reconciled:
        """Refetch every subscribed scope."""
        epoch = self._guard.epoch
        keys = self._store.subscribed_keys()
        refreshed, failed, timed_out = await self._refetch(keys, None, self._reconcile_timeout, epoch)
        outcome = Reconciled(
            batch_id="active",
            refreshed=refreshed,
            failed=failed,
            timed_out=timed_out,
            superseded=epoch != self._guard.epoch,
        )
        self._record(InvalidationRecord(
            reason=InvalidationReason.ACTIVE_REFRESH,
            refreshed=[str(k) for k in refreshed],
            failed=[str(k) for k in failed],
            timed_out=[str(k) for k in timed_out],
            superseded=outcome.superseded,
        ))
        return outcome

    async def drain(self) -> None:
        """Wait for every scheduled background sweep."""
        if self._sweeps:
            await asyncio.gather(*list(self._sweeps), return_exceptions=True)

    def cancel_sweeps(self) -> int:
        cancelled = 0
        for task in list(self._sweeps):
            if not task.done():
                task.cancel()
                cancelled += 1
        return cancelled

    # ==================== Plan execution ====================

    def apply_plan(self, plan: InvalidationPlan) -> Tuple[List[ScopeKey], List[ScopeKey]]:
        """Remove and invalidate matching entries. Returns (removed, invalidated)."""
        removed: List[ScopeKey] = []
        invalidated: List[ScopeKey] = []
        for action in plan.actions:
            if action.mode == InvalidationMode.REMOVE:
                removed.extend(self._store.remove_matching(action.pattern))
            else:
                for key in self._store.find(action.pattern):
                    self._store.mark(key, EntryState.INVALIDATED)
                    if key not in invalidated:
                        invalidated.append(key)
        return removed, invalidated

    async def _execute_plan(
        self,
        plan: InvalidationPlan,
        batch_id: str,
        reason: InvalidationReason,
        consistency_token: str = None,
    ) -> Reconciled:
        epoch = self._guard.epoch
        removed, invalidated = self.apply_plan(plan)
        if self._dispatcher:
            self._dispatcher.emit(ScopesInvalidatedEvent(
                epoch=epoch,
                batch_id=batch_id,
                removed=[str(k) for k in removed],
                invalidated=[str(k) for k in invalidated],
            ))
        logger.info(f"{batch_id}: removed {len(removed)}, invalidated {len(invalidated)} scope(s)")

        targets = list(invalidated)
        if plan.refetch:
            for pattern in plan.removals:
                for key in self._store.subscribed_keys(pattern):
                    if key not in targets:
                        targets.append(key)
        else:
            targets = []

        refreshed, failed, timed_out = await self._refetch(
            targets, consistency_token, self._reconcile_timeout, epoch,
        )
        superseded = epoch != self._guard.epoch

        if timed_out and not superseded:
            error = ReconciliationTimeout(len(timed_out), self._reconcile_timeout, batch_id=batch_id)
            logger.warning(f"{batch_id}: {error}")
            if self._dispatcher:
                self._dispatcher.emit(ReconciliationTimeoutEvent(
                    epoch=epoch,
                    batch_id=batch_id,
                    scopes=[str(k) for k in timed_out],
                    timeout_s=self._reconcile_timeout,
                ))
            self._notify(NoticeLevel.WARNING, recovery_for(error).user_message, batch_id)

        self._record(InvalidationRecord(
            reason=reason,
            batch_id=batch_id,
            removed=[str(k) for k in removed],
            invalidated=[str(k) for k in invalidated],
            refreshed=[str(k) for k in refreshed],
            failed=[str(k) for k in failed],
            timed_out=[str(k) for k in timed_out],
            superseded=superseded,
        ))
        return Reconciled(
            batch_id=batch_id,
            plan=plan,
            refreshed=refreshed,
            failed=failed,
            timed_out=timed_out,
            superseded=superseded,
        )

    async def _refetch(
        self,
        keys: List[ScopeKey],
        consistency_token: Optional[str],
        timeout: float,
        epoch: int,
    ) -> Tuple[List[ScopeKey], List[ScopeKey], List[ScopeKey]]:
        """Refetch keys with a bounded wait. Returns (refreshed, failed, timed_out)."""
        refreshed: List[ScopeKey] = []
        failed: List[ScopeKey] = []
        timed_out: List[ScopeKey] = []
        if not keys or not self._guard.admit(epoch):
            return refreshed, failed, timed_out

        tasks: Dict[ScopeKey, asyncio.Task] = {}
        for key in keys:
            try:
                tasks[key] = self._queries.refetch(key, consistency_token)
            except (IdentityNotConfirmedError, ValueError) as e:
                logger.warning(f"Cannot refetch {key}: {e}")
                failed.append(key)

        if tasks:
            try:
                await self._clock.wait_for(asyncio.wait(list(tasks.values())), timeout)
            except asyncio.TimeoutError:
                logger.debug(f"Refetch wait expired after {timeout}s")

        for key, task in tasks.items():
            if not task.done():
                self._queries.abandon(key)
                self._store.mark(key, EntryState.INVALIDATED)
                timed_out.append(key)
            elif task.cancelled() or task.exception() is not None:
                failed.append(key)
            elif task.result() is None:
                failed.append(key)
            else:
                refreshed.append(key)
        return refreshed, failed, timed_out

    # ==================== Background sweep ====================

    def _schedule_sweep(self, plan: InvalidationPlan, epoch: int, consistency_token: Optional[str]) -> None:
        task = asyncio.ensure_future(self._sweep(plan, epoch, consistency_token))
        self._guard.track(task, epoch)
        self._sweeps.add(task)
        task.add_done_callback(self._sweeps.discard)

    async def _sweep(self, plan: InvalidationPlan, epoch: int, consistency_token: Optional[str]) -> None:
        """Best-effort refetch of subscribed scopes matching the plan."""
        await self._clock.sleep(self._sweep_delay)
        if not self._guard.admit(epoch):
            return
        keys = [key for key in self._store.subscribed_keys() if plan.matches(key)]
        refreshed, failed, timed_out = await self._refetch(
            keys, consistency_token, self._sweep_timeout, epoch,
        )
        logger.debug(
            f"Sweep refreshed {len(refreshed)}, failed {len(failed)}, timed out {len(timed_out)}"
        )

    # ==================== Notifications ====================

    def _notify(self, level: NoticeLevel, message: str, batch_id: Optional[str]) -> None:
        if self._dispatcher:
            self._dispatcher.emit(NoticeEvent(
                epoch=self._guard.epoch,
                level=level,
                message=message,
                batch_id=batch_id,
            ))

    def _record(self, record: InvalidationRecord) -> None:
        self._records.append(record)
        if len(self._records) > self._max_records:
            self._records = self._records[-self._max_records:]

        for callback in self._callbacks:
            try:
                callback(record)
            except Exception as e:
                logger.error(f"Invalidation callback failed: {e}")
