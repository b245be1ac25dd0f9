"""
tests/integration/test_consistency_properties.py - End-to-end consistency properties

Drives a fully wired CacheCoordinator through identity switches, failing and
succeeding mutation batches, and checks the guarantees hosts depend on:
no cross-identity data, atomic failures, complete invalidation and total
purges.
"""

import asyncio

import pytest
import pytest_asyncio

from reportsync.core.enums import EntryState
from reportsync.core.scope import ScopeKeys
from reportsync.errors import IdentityNotConfirmedError
from reportsync.kernel.events import CacheEventType, NoticeLevel
from reportsync.transactions.schemas import BatchSubject, Failed, build_evaluation_batch


SUBJECT = BatchSubject(user_id="u2", task_id="t-1", week=5, year=2025, viewer_id="mgr")

MANAGER_SCOPES = [
    ScopeKeys.reports_by_week("u2", 5, 2025),
    ScopeKeys.reports_by_week("u3", 5, 2025),
    ScopeKeys.my_evaluations("u2"),
    ScopeKeys.task_evaluations("t-1"),
    ScopeKeys.task_evaluations("t-2"),
    ScopeKeys.evaluable_tasks("mgr"),
    ScopeKeys.hierarchy_my_view("mgr", 5, 2025),
    ScopeKeys.hierarchy_my_view("mgr", 4, 2025),
    ScopeKeys.hierarchy_user_details("mgr", "u2", 5, 2025),
    ScopeKeys.hierarchy_manager_reports("mgr", 5, 2025),
    ScopeKeys.statistics_weekly("mgr", 5, 2025),
    ScopeKeys.statistics_dashboard("mgr"),
    ScopeKeys.user_profile("mgr"),
]


def approve():
    return build_evaluation_batch(
        SUBJECT,
        {"comment": "done"},
        evaluated_is_completed=True,
        original_is_completed=False,
        evaluator_is_manager=True,
    )


@pytest_asyncio.fixture
async def manager(coordinator):
    await coordinator.on_identity_observed("mgr")
    for key in MANAGER_SCOPES:
        await coordinator.read(key)
    return coordinator


# =============================================================================
# ISOLATION
# =============================================================================

class TestIsolation:
    """Data cached for one identity is never visible to the next."""

    @pytest.mark.asyncio
    async def test_no_entries_survive_identity_switch(self, manager):
        await manager.on_identity_observed("bob")

        assert all(entry.owner_user_id != "mgr" for entry in manager.store.entries())
        assert len(manager.store) == 0

    @pytest.mark.asyncio
    async def test_late_fetch_never_lands(self, coordinator, backend, clock):
        await coordinator.on_identity_observed("alice")
        gate = backend.hold("reports")
        late = asyncio.ensure_future(coordinator.read(ScopeKeys.reports_by_week("alice", 5, 2025)))
        await clock.settle()

        await coordinator.on_identity_observed("bob")
        gate.set()
        await clock.settle()

        assert await late is None
        assert all(entry.owner_user_id == "bob" for entry in coordinator.store.entries())

    @pytest.mark.asyncio
    async def test_switch_back_refetches(self, manager, backend):
        key = ScopeKeys.user_profile("mgr")
        await manager.on_identity_observed("bob")
        await manager.on_identity_observed("mgr")

        await manager.read(key)

        assert len(backend.calls_for(key)) == 2
        assert manager.store.get(key).epoch == manager.guard.epoch


# =============================================================================
# MUTATIONS
# =============================================================================

class TestAtomicity:
    """A failing batch leaves the cache exactly as it was."""

    @pytest.mark.asyncio
    async def test_failed_second_step(self, manager, api):
        api.approve_task.side_effect = RuntimeError("task locked")
        notices = []
        manager.events.subscribe(CacheEventType.NOTICE_RAISED, notices.append)
        before = manager.store.snapshot()

        outcome = await manager.submit_mutation_batch(approve())

        assert isinstance(outcome, Failed)
        assert outcome.step == 1
        assert manager.store.snapshot() == before
        assert not manager.events.get_history(event_type=CacheEventType.SCOPES_INVALIDATED)
        assert [(n.level, n.message) for n in notices] == [(NoticeLevel.ERROR, "Could not save your changes")]

    @pytest.mark.asyncio
    async def test_identity_change_mid_batch(self, manager, api, clock):
        started = asyncio.Event()

        async def slow_create(payload):
            started.set()
            await asyncio.Event().wait()

        api.create_evaluation.side_effect = slow_create

        task = asyncio.ensure_future(manager.submit_mutation_batch(approve()))
        await started.wait()
        await manager.on_identity_observed("bob")
        outcome = await task

        assert isinstance(outcome, Failed)
        assert len(manager.store) == 0
        api.approve_task.assert_not_awaited()


class TestCompleteness:
    """After reconciliation no dependent scope holds pre-mutation data."""

    @pytest.mark.asyncio
    async def test_every_dependent_scope_fresh_or_gone(self, manager, backend):
        manager.subscribe(ScopeKeys.statistics_weekly("mgr", 5, 2025))
        backend.version = 2

        outcome = await manager.submit_mutation_batch(approve())

        assert outcome.ok and outcome.fully_refreshed
        affected = [key for key in MANAGER_SCOPES if outcome.plan.matches(key)]
        untouched = [key for key in MANAGER_SCOPES if not outcome.plan.matches(key)]
        assert affected and untouched

        for key in affected:
            entry = manager.store.get(key)
            if entry is None:
                assert key.is_aggregate
                continue
            assert entry.state == EntryState.FRESH
            assert entry.data["version"] == 2

        for key in untouched:
            assert manager.store.get(key).data["version"] == 1

    @pytest.mark.asyncio
    async def test_viewer_scopes_follow_confirmed_identity(self, manager, backend):
        subject = BatchSubject(user_id="u2", task_id="t-1", week=5, year=2025)
        batch = build_evaluation_batch(
            subject,
            {},
            evaluated_is_completed=True,
            original_is_completed=False,
            evaluator_is_manager=True,
        )
        backend.version = 2

        outcome = await manager.submit_mutation_batch(batch)

        assert outcome.ok
        for key in (
            ScopeKeys.hierarchy_my_view("mgr", 5, 2025),
            ScopeKeys.statistics_weekly("mgr", 5, 2025),
        ):
            assert outcome.plan.matches(key)
            entry = manager.store.get(key)
            assert entry is None or entry.data["version"] == 2
        assert manager.store.get(ScopeKeys.hierarchy_my_view("mgr", 4, 2025)).data["version"] == 1

    @pytest.mark.asyncio
    async def test_subscribed_aggregate_never_partially_stale(self, manager, backend):
        key = ScopeKeys.statistics_weekly("mgr", 5, 2025)
        sub = manager.subscribe(key)
        backend.version = 2

        await manager.submit_mutation_batch(approve())

        transitions = sub.drain()
        assert transitions[0].removed
        assert sub.current.data["version"] == 2
        assert all(t.new_state != EntryState.INVALIDATED for t in transitions)

    @pytest.mark.asyncio
    async def test_timeout_leaves_scope_for_next_read(self, manager, backend, clock):
        key = ScopeKeys.reports_by_week("u2", 5, 2025)
        gate = backend.hold("reports")

        task = asyncio.ensure_future(manager.submit_mutation_batch(approve()))
        await clock.advance(5.0)
        outcome = await task

        assert outcome.timed_out == [key]
        assert manager.store.get(key).state == EntryState.INVALIDATED

        gate.set()
        backend.version = 2
        assert (await manager.read(key))["version"] == 2


# =============================================================================
# PURGE
# =============================================================================

class TestFullPurge:
    """A full purge leaves nothing behind."""

    @pytest.mark.asyncio
    async def test_purge_empties_everything(self, manager):
        subs = [manager.subscribe(key) for key in MANAGER_SCOPES[:3]]

        assert await manager.request_full_purge("session expired") is True

        assert len(manager.store) == 0
        assert manager.store.subscription_count == 0
        assert all(sub.closed for sub in subs)
        assert manager.confirmed_identity is None
        with pytest.raises(IdentityNotConfirmedError):
            await manager.read(MANAGER_SCOPES[0])

    @pytest.mark.asyncio
    async def test_subscription_stream_ends(self, manager):
        sub = manager.subscribe(ScopeKeys.user_profile("mgr"))
        await manager.on_identity_observed(None)

        seen = [t async for t in sub]

        assert seen[-1].removed
