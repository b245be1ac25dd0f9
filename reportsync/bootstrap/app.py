"""
bootstrap/app.py - CacheCoordinator

The host-owned object that wires the consistency core together: one event
dispatcher, one cache store, the isolation guard wrapping it, the query
client behind reads, and the mutation pipeline handing committed batches to
the invalidation coordinator.

There is no module-level instance. Each host (and each test) builds its own.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
import asyncio
import logging
import uuid

from reportsync.aggregation.engine import (
    ViewStatistics,
    summarize_manager_reports,
    summarize_view,
)
from reportsync.aggregation.views import (
    EmptyView,
    ManagementView,
    ManagerReportsView,
    MixedView,
    StaffView,
    parse_hierarchy_view,
)
from reportsync.core.cache_store import CacheStore, Subscription
from reportsync.core.clock import Clock, SystemClock
from reportsync.core.scope import ScopeKey
from reportsync.dependencies.graph import DependencyGraph
from reportsync.dependencies.invalidation import InvalidationCoordinator
from reportsync.fetch.query_client import Fetcher, Parser, QueryClient
from reportsync.isolation.guard import FatalEscalate, IsolationGuard, ResetHook
from reportsync.kernel.event_dispatcher import EventDispatcher
from reportsync.transactions.pipeline import MutationPipeline
from reportsync.transactions.remote import ReportApi
from reportsync.transactions.schemas import BatchOutcome, MutationBatch, Reconciled

from .config import ReportSyncConfig

logger = logging.getLogger("bootstrap.app")

_HIERARCHY_VARIANTS = (ManagementView, StaffView, MixedView, EmptyView)


class CoordinatorState(Enum):
    """Coordinator lifecycle states."""
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class CoordinatorStatus:
    """Point-in-time view of a coordinator, for host diagnostics."""
    session_id: str
    state: CoordinatorState
    epoch: int
    purge_state: str
    identity: Optional[str]
    entries: int
    subscriptions: int
    in_flight: int
    pending_sweeps: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "epoch": self.epoch,
            "purge_state": self.purge_state,
            "identity": self.identity,
            "entries": self.entries,
            "subscriptions": self.subscriptions,
            "in_flight": self.in_flight,
            "pending_sweeps": self.pending_sweeps,
            "metadata": self.metadata,
        }


class CacheCoordinator:
    """
    Cache consistency core for one host session.

    Usage:
        coordinator = CacheCoordinator(api, config=load_config())
        coordinator.register_fetcher(HIERARCHY, fetch_hierarchy, parse_hierarchy_view)
        await coordinator.on_identity_observed("u1")
        stats = await coordinator.read_statistics(ScopeKeys.hierarchy_my_view("u1", 5, 2025))
        outcome = await coordinator.submit_mutation_batch(batch)
    """

    def __init__(
        self,
        remote: ReportApi,
        config: ReportSyncConfig = None,
        clock: Clock = None,
        session_id: str = None,
        graph: DependencyGraph = None,
        fatal_escalate: FatalEscalate = None,
    ):
        self._config = config or ReportSyncConfig()
        self._clock = clock or SystemClock()
        self._session_id = session_id or str(uuid.uuid4())[:8]
        self._state = CoordinatorState.RUNNING

        self._dispatcher = EventDispatcher(session_id=self._session_id)
        self._store = CacheStore(clock=self._clock, dispatcher=self._dispatcher)
        self._guard = IsolationGuard(
            self._store,
            clock=self._clock,
            config=self._config,
            dispatcher=self._dispatcher,
            fatal_escalate=fatal_escalate,
        )
        self._queries = QueryClient(
            self._store,
            self._guard,
            clock=self._clock,
            config=self._config,
            dispatcher=self._dispatcher,
        )
        self._invalidation = InvalidationCoordinator(
            self._store,
            self._queries,
            self._guard,
            clock=self._clock,
            graph=graph,
            config=self._config,
            dispatcher=self._dispatcher,
        )
        self._pipeline = MutationPipeline(
            remote,
            self._guard,
            clock=self._clock,
            config=self._config,
            dispatcher=self._dispatcher,
            handoff=self._invalidation,
        )

        logger.info(f"CacheCoordinator {self._session_id} ready ({self._config.environment})")

    # ==================== Components ====================

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def config(self) -> ReportSyncConfig:
        return self._config

    @property
    def events(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def guard(self) -> IsolationGuard:
        return self._guard

    @property
    def queries(self) -> QueryClient:
        return self._queries

    @property
    def invalidation(self) -> InvalidationCoordinator:
        return self._invalidation

    @property
    def pipeline(self) -> MutationPipeline:
        return self._pipeline

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def confirmed_identity(self) -> Optional[str]:
        return self._guard.confirmed_identity

    # ==================== Wiring ====================

    def register_fetcher(self, resource: str, fetcher: Fetcher, parser: Parser = None) -> "CacheCoordinator":
        self._queries.register_fetcher(resource, fetcher, parser)
        return self

    def bind_fatal_escalate(self, callback: FatalEscalate) -> "CacheCoordinator":
        self._guard.bind_fatal_escalate(callback)
        return self

    def add_reset_hook(self, hook: ResetHook) -> "CacheCoordinator":
        self._guard.add_reset_hook(hook)
        return self

    # ==================== Reads ====================

    def subscribe(self, key: ScopeKey) -> Subscription:
        self._check_running()
        return self._store.subscribe(key)

    async def read(self, key: ScopeKey) -> Optional[Any]:
        self._check_running()
        return await self._queries.read(key)

    async def read_statistics(self, key: ScopeKey) -> Optional[ViewStatistics]:
        """
        Read a hierarchy scope and summarize it.

        Payloads already validated by a registered parser are summarized
        directly; raw payloads are validated first.
        """
        data = await self.read(key)
        if data is None:
            return None
        if isinstance(data, ViewStatistics):
            return data
        if isinstance(data, ManagerReportsView):
            return summarize_manager_reports(data)
        if not isinstance(data, _HIERARCHY_VARIANTS):
            data = parse_hierarchy_view(data)
        return summarize_view(data)

    # ==================== Mutations ====================

    async def submit_mutation_batch(self, batch: MutationBatch) -> BatchOutcome:
        """Commit a batch and reconcile the cache. Returns Reconciled or Failed."""
        self._check_running()
        return await self._pipeline.submit(batch)

    async def invalidate_user_data(self, user_id: str) -> Reconciled:
        self._check_running()
        return await self._invalidation.invalidate_user_data(user_id)

    async def refetch_active(self) -> Reconciled:
        self._check_running()
        return await self._invalidation.refetch_active()

    # ==================== Identity ====================

    async def on_identity_observed(self, identity: Optional[str]) -> bool:
        return await self._guard.on_identity_observed(identity)

    async def request_full_purge(self, reason: str) -> bool:
        return await self._guard.request_full_purge(reason)

    # ==================== Housekeeping ====================

    def collect_garbage(self) -> List[ScopeKey]:
        removed = self._store.collect_garbage(self._config.cache.gc_after_s)
        if removed:
            logger.debug(f"Collected {len(removed)} unobserved entries")
        return removed

    def status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            session_id=self._session_id,
            state=self._state,
            epoch=self._guard.epoch,
            purge_state=self._guard.state.value,
            identity=self._guard.confirmed_identity,
            entries=len(self._store),
            subscriptions=self._store.subscription_count,
            in_flight=self._queries.in_flight_count,
            pending_sweeps=self._invalidation.pending_sweeps,
        )

    async def shutdown(self) -> None:
        """Cancel background work, close subscriptions and drop every entry."""
        if self._state == CoordinatorState.STOPPED:
            return
        self._state = CoordinatorState.STOPPING

        sweeps = self._invalidation.cancel_sweeps()
        fetches = self._queries.abandon_all()
        await asyncio.gather(*fetches, return_exceptions=True)
        await self._invalidation.drain()
        removed = self._store.clear(close_subscriptions=True)

        self._state = CoordinatorState.STOPPED
        logger.info(
            f"CacheCoordinator {self._session_id} stopped "
            f"(cancelled {sweeps} sweep(s), {len(fetches)} fetch(es); dropped {removed} entries)"
        )

    def _check_running(self) -> None:
        if self._state != CoordinatorState.RUNNING:
            raise RuntimeError(f"CacheCoordinator {self._session_id} is {self._state.value}")
