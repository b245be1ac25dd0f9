"""
isolation/guard.py - Identity isolation guard

Owns the epoch counter and the purge state machine
(Idle -> Purging -> Settling -> Idle).

GUARANTEES:
- A changed identity bumps the epoch, cancels every tracked task tagged
  with an older epoch and empties the cache before the new identity is
  confirmed.
- No identity is confirmed while a purge is running, so no read can be
  issued on anyone's behalf until it finishes.
- admit(epoch) is the single gate for every cache write.
"""

from __future__ import annotations
from typing import Awaitable, Callable, Dict, List, Optional, Union
import asyncio
import inspect
import logging

from reportsync.core.cache_store import CacheStore
from reportsync.core.clock import Clock, SystemClock
from reportsync.core.enums import PurgeState, PURGE_TRANSITIONS, can_transition
from reportsync.core.scope import HIERARCHY, ScopePattern
from reportsync.errors.recovery import RecoveryStrategy, recovery_for
from reportsync.errors.taxonomy import IdentityNotConfirmedError, IsolationViolation, PurgeFailedError
from reportsync.kernel.events import (
    CacheEventType,
    FatalEscalationEvent,
    IsolationViolationEvent,
    PurgeEvent,
)

logger = logging.getLogger("isolation.guard")
violation_logger = logging.getLogger("reportsync.isolation.violation")


ResetHook = Callable[[], Union[None, Awaitable[None]]]
FatalEscalate = Callable[[str], None]


class IsolationGuard:
    """
    Epoch counter and purge state machine for one coordinator.

    Usage:
        guard = IsolationGuard(store, clock, config, dispatcher)
        guard.bind_fatal_escalate(host.reload)
        await guard.on_identity_observed("alice")
    """

    def __init__(
        self,
        store: CacheStore,
        clock: Clock = None,
        config=None,
        dispatcher=None,
        fatal_escalate: FatalEscalate = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher
        self._fatal_escalate = fatal_escalate

        if config is not None:
            iso = config.isolation
            self._debounce_window = iso.debounce_window_s
            self._purge_settle = iso.purge_settle_s
            self._max_attempts = max(1, iso.max_purge_attempts)
            self._partial_enabled = iso.partial_purge_enabled
            self._volatile_resources = list(iso.volatile_resources)
            self._volatile_views = list(iso.volatile_hierarchy_views)
        else:
            self._debounce_window = 1.0
            self._purge_settle = 0.1
            self._max_attempts = 3
            self._partial_enabled = True
            self._volatile_resources = ["reports", "evaluations"]
            self._volatile_views = ["managerReports", "userDetails"]

        self._epoch = 0
        self._state = PurgeState.IDLE
        self._identity: Optional[str] = None
        self._lock = asyncio.Lock()
        self._tracked: Dict[asyncio.Task, int] = {}
        self._reset_hooks: List[ResetHook] = []
        self._last_partial_purge: Optional[float] = None
        self._last_failure: Optional[PurgeFailedError] = None
        self._last_violation: Optional[IsolationViolation] = None

        store.bind_epoch_source(lambda: self._epoch)

    # ==================== State ====================

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def state(self) -> PurgeState:
        return self._state

    @property
    def is_purging(self) -> bool:
        return self._state == PurgeState.PURGING

    @property
    def confirmed_identity(self) -> Optional[str]:
        """The confirmed identity, or None while a purge is running."""
        if self._state == PurgeState.PURGING:
            return None
        return self._identity

    @property
    def last_failure(self) -> Optional[PurgeFailedError]:
        return self._last_failure

    @property
    def last_violation(self) -> Optional[IsolationViolation]:
        return self._last_violation

    @property
    def tracked_count(self) -> int:
        return sum(1 for task in self._tracked if not task.done())

    def require_identity(self) -> str:
        identity = self.confirmed_identity
        if identity is None:
            raise IdentityNotConfirmedError(
                "No confirmed identity",
                purging=self.is_purging,
            )
        return identity

    def admit(self, epoch: int) -> bool:
        """True only for the live epoch while no purge is running."""
        return epoch == self._epoch and self._state != PurgeState.PURGING

    def _set_state(self, target: PurgeState) -> None:
        if not can_transition(PURGE_TRANSITIONS, self._state, target):
            raise RuntimeError(f"Illegal purge transition {self._state.value} -> {target.value}")
        logger.debug(f"Purge state {self._state.value} -> {target.value}")
        self._state = target

    # ==================== Wiring ====================

    def add_reset_hook(self, hook: ResetHook) -> None:
        """Register a callback that clears dependent in-memory state on full purge."""
        self._reset_hooks.append(hook)

    def bind_fatal_escalate(self, callback: FatalEscalate) -> None:
        self._fatal_escalate = callback

    def track(self, task: asyncio.Task, epoch: int) -> asyncio.Task:
        """Track a cache-populating task so a full purge can cancel it."""
        if epoch != self._epoch and not task.done():
            task.cancel()
            return task
        self._tracked[task] = epoch
        task.add_done_callback(lambda t: self._tracked.pop(t, None))
        return task

    # ==================== Identity ====================

    async def on_identity_observed(self, identity: Optional[str]) -> bool:
        """
        Report the identity the host currently sees.

        Returns True if a full purge ran.
        """
        if identity == self._identity and not self.is_purging:
            if identity is not None:
                self._maybe_partial_purge()
            return False

        async with self._lock:
            if identity == self._identity:
                return False
            logger.info(f"Identity changed: {self._identity} -> {identity}")
            return await self._full_purge(
                reason="identity changed",
                next_identity=identity,
            )

    async def request_full_purge(self, reason: str) -> bool:
        """Purge everything and drop the confirmed identity."""
        async with self._lock:
            return await self._full_purge(reason=reason, next_identity=None)

    async def report_violation(self, detail: str, offending_identity: str = None) -> bool:
        """Record a suspected cross-identity leak and purge, keeping the identity."""
        violation = IsolationViolation(
            detail,
            confirmed_identity=self._identity,
            offending_identity=offending_identity,
        )
        self._last_violation = violation
        violation_logger.error(f"{violation} {violation.to_dict()}")
        self._emit(IsolationViolationEvent(
            epoch=self._epoch,
            detail=detail,
            confirmed_identity=self._identity,
            offending_identity=offending_identity,
        ))
        if recovery_for(violation).strategy != RecoveryStrategy.PURGE:
            return False
        async with self._lock:
            return await self._full_purge(
                reason=f"isolation violation: {detail}",
                next_identity=self._identity,
            )

    # ==================== Purges ====================

    def _maybe_partial_purge(self) -> bool:
        if not self._partial_enabled or self._state != PurgeState.IDLE:
            return False

        now = self._clock.monotonic()
        if (
            self._last_partial_purge is not None
            and now - self._last_partial_purge < self._debounce_window
        ):
            return False
        self._last_partial_purge = now

        patterns = [ScopePattern.build(resource) for resource in self._volatile_resources]
        patterns += [ScopePattern.build(HIERARCHY, view) for view in self._volatile_views]

        removed = 0
        for pattern in patterns:
            removed += len(self._store.remove_matching(pattern))

        logger.debug(f"Partial purge removed {removed} volatile entries")
        self._emit(PurgeEvent(
            event_type=CacheEventType.PARTIAL_PURGE,
            epoch=self._epoch,
            reason="volatile refresh",
            previous_identity=self._identity,
            next_identity=self._identity,
            removed_count=removed,
        ))
        return True

    def _cancel_stale_tasks(self) -> int:
        current = asyncio.current_task()
        cancelled = 0
        for task, epoch in list(self._tracked.items()):
            if epoch < self._epoch and task is not current and not task.done():
                task.cancel()
                cancelled += 1
        return cancelled

    async def _run_reset_hooks(self) -> None:
        for hook in self._reset_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def _full_purge(self, reason: str, next_identity: Optional[str]) -> bool:
        """Caller holds self._lock."""
        previous = self._identity
        self._epoch += 1
        self._set_state(PurgeState.PURGING)
        self._emit(PurgeEvent(
            event_type=CacheEventType.PURGE_STARTED,
            epoch=self._epoch,
            reason=reason,
            previous_identity=previous,
            next_identity=next_identity,
        ))

        cancelled = self._cancel_stale_tasks()
        if cancelled:
            logger.info(f"Cancelled {cancelled} in-flight task(s) from older epochs")

        removed = 0
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                removed += self._store.clear(close_subscriptions=True)
                await self._run_reset_hooks()
                if len(self._store):
                    raise RuntimeError(f"{len(self._store)} entries survived the purge")
                last_error = None
                break
            except Exception as e:
                last_error = e
                logger.error(f"Purge attempt {attempt}/{self._max_attempts} failed: {e}")

        if last_error is not None:
            failure = PurgeFailedError(str(last_error), attempts=self._max_attempts)
            self._last_failure = failure
            self._identity = None
            self._set_state(PurgeState.IDLE)
            self._emit(PurgeEvent(
                event_type=CacheEventType.PURGE_FAILED,
                epoch=self._epoch,
                reason=str(failure),
                previous_identity=previous,
                attempt=self._max_attempts,
            ))
            if recovery_for(failure).strategy == RecoveryStrategy.ESCALATE:
                self._escalate(str(failure))
            return False

        self._identity = next_identity
        self._last_partial_purge = self._clock.monotonic()
        self._set_state(PurgeState.SETTLING)
        self._emit(PurgeEvent(
            event_type=CacheEventType.PURGE_COMPLETED,
            epoch=self._epoch,
            reason=reason,
            previous_identity=previous,
            next_identity=next_identity,
            removed_count=removed,
            attempt=attempt,
        ))
        if next_identity != previous:
            self._emit(PurgeEvent(
                event_type=CacheEventType.IDENTITY_CHANGED,
                epoch=self._epoch,
                reason=reason,
                previous_identity=previous,
                next_identity=next_identity,
            ))
        logger.info(f"Full purge complete ({reason}): removed {removed} entries, epoch={self._epoch}")

        await self._clock.sleep(self._purge_settle)
        self._set_state(PurgeState.IDLE)
        return True

    def _escalate(self, reason: str) -> None:
        logger.critical(f"Escalating to host: {reason}")
        self._emit(FatalEscalationEvent(epoch=self._epoch, reason=reason))
        if self._fatal_escalate is None:
            return
        try:
            self._fatal_escalate(reason)
        except Exception as e:
            logger.error(f"fatal_escalate callback failed: {e}")

    def _emit(self, event) -> None:
        if self._dispatcher:
            self._dispatcher.emit(event)
