"""
fetch/query_client.py - Read-miss fetch layer.

Fetches scope data through per-resource fetchers, retries transient
failures, validates payloads at the boundary and writes results to the
cache store.

EPOCH RULES:
- Every fetch is tagged with the guard's epoch when it is issued
- Every fetch task is tracked by the guard, so a full purge cancels it
- A result is written only if guard.admit(tag) still holds
- At most one fetch per scope is in flight; refetch() replaces it
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import logging

from reportsync.core.cache_store import CacheStore
from reportsync.core.clock import Clock, SystemClock
from reportsync.core.enums import EntryState
from reportsync.core.scope import ScopeKey
from reportsync.fetch.retry import RetryPolicy
from reportsync.kernel.events import FetchDiscardedEvent, FetchFailedEvent

logger = logging.getLogger("fetch.query_client")


@dataclass(frozen=True)
class FetchContext:
    """Passed to every fetcher call."""
    identity: str
    epoch: int
    consistency_token: Optional[str] = None
    attempt: int = 0


Fetcher = Callable[[ScopeKey, FetchContext], Awaitable[Any]]
Parser = Callable[[Any], Any]


@dataclass
class _Registration:
    fetcher: Fetcher
    parser: Optional[Parser] = None


@dataclass
class _InFlight:
    task: asyncio.Task
    epoch: int


class QueryClient:
    """
    Scope reads backed by the cache store.

    Usage:
        client.register_fetcher("hierarchy", fetch_hierarchy, parse_hierarchy_view)
        view = await client.read(ScopeKeys.hierarchy_my_view("u1", 5, 2025))
    """

    def __init__(
        self,
        store: CacheStore,
        guard,
        clock: Clock = None,
        config=None,
        dispatcher=None,
    ):
        self._store = store
        self._guard = guard
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher

        if config is not None:
            self._retry = RetryPolicy.from_config(config.fetch)
            self._stale_after = config.cache.stale_after_s
        else:
            self._retry = RetryPolicy()
            self._stale_after = 120.0

        self._fetchers: Dict[str, _Registration] = {}
        self._in_flight: Dict[ScopeKey, _InFlight] = {}

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def register_fetcher(self, resource: str, fetcher: Fetcher, parser: Parser = None) -> None:
        self._fetchers[resource] = _Registration(fetcher=fetcher, parser=parser)

    def in_flight(self, key: ScopeKey) -> Optional[asyncio.Task]:
        current = self._in_flight.get(key)
        return current.task if current else None

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ==================== Reads ====================

    async def read(self, key: ScopeKey) -> Optional[Any]:
        """
        Return Fresh data for a scope, fetching on a miss.

        Returns None when the result was discarded because the identity
        changed while the fetch was in flight.
        """
        identity = self._guard.require_identity()
        entry = self._store.get(key)

        if entry is not None and entry.owner_user_id != identity:
            await self._guard.report_violation(
                f"Entry {key} owned by {entry.owner_user_id} read by {identity}",
                offending_identity=entry.owner_user_id,
            )
            identity = self._guard.require_identity()
            entry = self._store.get(key)

        if entry is not None and entry.state == EntryState.FRESH:
            if entry.age(self._clock.monotonic()) < self._stale_after:
                return entry.data
            self._store.mark(key, EntryState.STALE)

        epoch = self._guard.epoch
        while True:
            current = self._in_flight.get(key)
            task = current.task if current else self._start(key)
            await asyncio.wait({task})

            if not task.cancelled():
                return task.result()

            # Replaced by a newer fetch for the same scope and epoch
            newer = self._in_flight.get(key)
            if newer is None or newer.task is task or newer.epoch != epoch:
                return None
            if not self._guard.admit(epoch):
                return None

    def refetch(self, key: ScopeKey, consistency_token: str = None) -> asyncio.Task:
        """Start a fresh fetch, cancelling any fetch already in flight for the scope."""
        current = self._in_flight.pop(key, None)
        if current is not None and not current.task.done():
            current.task.cancel()
            logger.debug(f"Cancelled in-flight fetch for {key}")
        return self._start(key, consistency_token)

    def abandon(self, key: ScopeKey) -> bool:
        """Cancel the in-flight fetch for a scope, if any."""
        current = self._in_flight.get(key)
        if current is None or current.task.done():
            return False
        current.task.cancel()
        return True

    def abandon_all(self) -> List[asyncio.Task]:
        """Cancel every in-flight fetch. Returns the cancelled tasks."""
        tasks = [current.task for current in self._in_flight.values() if not current.task.done()]
        for task in tasks:
            task.cancel()
        return tasks

    # ==================== Internals ====================

    def _start(self, key: ScopeKey, consistency_token: str = None) -> asyncio.Task:
        registration = self._fetchers.get(key.resource)
        if registration is None:
            raise ValueError(f"No fetcher registered for resource '{key.resource}'")

        context = FetchContext(
            identity=self._guard.require_identity(),
            epoch=self._guard.epoch,
            consistency_token=consistency_token,
        )
        task = asyncio.ensure_future(self._run(key, registration, context))
        self._guard.track(task, context.epoch)
        self._in_flight[key] = _InFlight(task=task, epoch=context.epoch)
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return task

    def _forget(self, key: ScopeKey, task: asyncio.Task) -> None:
        current = self._in_flight.get(key)
        if current is not None and current.task is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Failures are logged and surfaced to readers; mark retrieved
            task.exception()

    def _is_current(self, key: ScopeKey) -> bool:
        current = self._in_flight.get(key)
        return current is None or current.task is asyncio.current_task()

    async def _run(self, key: ScopeKey, registration: _Registration, context: FetchContext) -> Optional[Any]:
        if key in self._store:
            self._store.mark(key, EntryState.FETCHING)

        attempt = 0
        try:
            while True:
                try:
                    payload = await registration.fetcher(key, replace(context, attempt=attempt))
                    data = registration.parser(payload) if registration.parser else payload
                    break
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if not self._retry.should_retry(e, attempt):
                        raise
                    delay = self._retry.delay_for(attempt)
                    logger.warning(
                        f"Fetch {key} failed (attempt {attempt + 1}): {e}; retrying in {delay}s"
                    )
                    attempt += 1
                    await self._clock.sleep(delay)

        except asyncio.CancelledError:
            if self._guard.admit(context.epoch) and self._is_current(key):
                self._store.mark(key, EntryState.INVALIDATED)
            raise

        except Exception as e:
            logger.error(f"Fetch {key} failed after {attempt + 1} attempt(s): {e}")
            if self._guard.admit(context.epoch) and self._is_current(key):
                self._store.mark(key, EntryState.INVALIDATED, error=e)
            if self._dispatcher:
                self._dispatcher.emit(FetchFailedEvent(
                    epoch=context.epoch,
                    scope=str(key),
                    attempts=attempt + 1,
                    error=str(e),
                ))
            raise

        if not self._guard.admit(context.epoch):
            logger.info(f"Discarded result for {key}: epoch {context.epoch} no longer admitted")
            if self._dispatcher:
                self._dispatcher.emit(FetchDiscardedEvent(
                    epoch=self._guard.epoch,
                    scope=str(key),
                    issued_epoch=context.epoch,
                    reason="epoch superseded",
                ))
            return None

        entry = self._store.put(key, data, owner_user_id=context.identity, epoch=context.epoch)
        return data if entry is not None else None
