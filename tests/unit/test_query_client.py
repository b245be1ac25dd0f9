"""
tests/unit/test_query_client.py - Query client tests

Read-miss fetching, staleness, de-duplication, retries, epoch discards and
ownership checks.
"""

import asyncio

import pytest

from reportsync.core.cache_store import CacheStore
from reportsync.core.enums import EntryState
from reportsync.core.scope import REPORTS, USERS, ScopeKeys
from reportsync.errors import IdentityNotConfirmedError, PermanentFetchError, TransientFetchError
from reportsync.fetch.query_client import QueryClient
from reportsync.isolation.guard import IsolationGuard
from reportsync.kernel.events import CacheEventType


KEY = ScopeKeys.reports_by_week("alice", 5, 2025)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def store(clock, dispatcher):
    return CacheStore(clock=clock, dispatcher=dispatcher)


@pytest.fixture
def guard(store, clock, config, dispatcher):
    return IsolationGuard(store, clock=clock, config=config, dispatcher=dispatcher)


@pytest.fixture
def client(store, guard, clock, config, dispatcher, backend):
    client = QueryClient(store, guard, clock=clock, config=config, dispatcher=dispatcher)
    client.register_fetcher(REPORTS, backend.fetch)
    return client


# =============================================================================
# READS
# =============================================================================

class TestRead:
    """Test QueryClient.read."""

    @pytest.mark.asyncio
    async def test_requires_identity(self, client):
        with pytest.raises(IdentityNotConfirmedError):
            await client.read(KEY)

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, client, guard, store, backend):
        await guard.on_identity_observed("alice")

        data = await client.read(KEY)

        assert data["scope"] == str(KEY)
        assert data["identity"] == "alice"
        entry = store.get(KEY)
        assert entry.state == EntryState.FRESH
        assert entry.owner_user_id == "alice"
        assert entry.epoch == guard.epoch

    @pytest.mark.asyncio
    async def test_fresh_hit_served_from_cache(self, client, guard, backend):
        await guard.on_identity_observed("alice")
        await client.read(KEY)
        await client.read(KEY)
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_stale_entry_refetched(self, client, guard, backend, clock):
        await guard.on_identity_observed("alice")
        await client.read(KEY)
        await clock.advance(120)
        backend.version = 2

        data = await client.read(KEY)

        assert data["version"] == 2
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_invalidated_entry_refetched(self, client, guard, store, backend):
        await guard.on_identity_observed("alice")
        await client.read(KEY)
        store.mark(KEY, EntryState.INVALIDATED)

        await client.read(KEY)

        assert len(backend.calls) == 2
        assert store.get(KEY).state == EntryState.FRESH

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_fetch(self, client, guard, backend, clock):
        await guard.on_identity_observed("alice")
        gate = backend.hold(REPORTS)

        first = asyncio.ensure_future(client.read(KEY))
        second = asyncio.ensure_future(client.read(KEY))
        await clock.settle()
        assert len(backend.calls) == 1
        assert client.in_flight(KEY) is not None

        gate.set()
        assert await first == await second
        assert client.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_parser_applied(self, store, guard, clock, config, backend):
        client = QueryClient(store, guard, clock=clock, config=config)
        client.register_fetcher(USERS, backend.fetch, parser=lambda payload: {"parsed": payload["scope"]})
        await guard.on_identity_observed("alice")

        key = ScopeKeys.user_profile("alice")
        assert await client.read(key) == {"parsed": str(key)}
        assert store.get(key).data == {"parsed": str(key)}

    @pytest.mark.asyncio
    async def test_unregistered_resource(self, client, guard):
        await guard.on_identity_observed("alice")
        with pytest.raises(ValueError, match="No fetcher registered"):
            await client.read(ScopeKeys.user_profile("alice"))


class TestRetries:
    """Test retry behavior on fetch failure."""

    @pytest.mark.asyncio
    async def test_transient_failure_retried_after_backoff(self, client, guard, backend, clock):
        await guard.on_identity_observed("alice")
        backend.fail(REPORTS, TransientFetchError("503", status=503))

        task = asyncio.ensure_future(client.read(KEY))
        await clock.settle()
        assert len(backend.calls) == 1
        assert not task.done()

        await clock.advance(1.0)
        data = await task

        assert data["scope"] == str(KEY)
        assert [c.attempt for _, c in backend.calls] == [0, 1]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client, guard, backend, clock, dispatcher):
        await guard.on_identity_observed("alice")
        backend.fail(REPORTS, *(TransientFetchError("503") for _ in range(3)))

        task = asyncio.ensure_future(client.read(KEY))
        await clock.advance(1.0)
        await clock.advance(2.0)

        with pytest.raises(TransientFetchError):
            await task
        assert len(backend.calls) == 3
        failed = dispatcher.get_history(event_type=CacheEventType.FETCH_FAILED)[-1]
        assert failed.attempts == 3

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, client, guard, backend):
        await guard.on_identity_observed("alice")
        backend.fail(REPORTS, PermanentFetchError("forbidden", status=403))

        with pytest.raises(PermanentFetchError):
            await client.read(KEY)
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_refetch_marks_invalidated(self, client, guard, store, backend):
        """Test a failing refetch keeps the old data but leaves it Invalidated."""
        await guard.on_identity_observed("alice")
        await client.read(KEY)
        error = PermanentFetchError("gone", status=410)
        backend.fail(REPORTS, error)

        await asyncio.gather(client.refetch(KEY), return_exceptions=True)

        entry = store.get(KEY)
        assert entry.state == EntryState.INVALIDATED
        assert entry.error is error
        assert entry.data["version"] == 1


class TestEpochs:
    """Test that results from superseded epochs are never stored."""

    @pytest.mark.asyncio
    async def test_identity_change_cancels_fetch(self, client, guard, store, backend, clock):
        await guard.on_identity_observed("alice")
        backend.hold(REPORTS)

        read = asyncio.ensure_future(client.read(KEY))
        await clock.settle()
        await guard.on_identity_observed("bob")

        assert await read is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_result_discarded_after_identity_change(self, store, guard, clock, config, dispatcher):
        """Test a fetch that completes after the epoch moved writes nothing."""
        async def fetch_then_switch(key, context):
            await guard.on_identity_observed("bob")
            return {"owner": context.identity}

        client = QueryClient(store, guard, clock=clock, config=config, dispatcher=dispatcher)
        client.register_fetcher(REPORTS, fetch_then_switch)
        await guard.on_identity_observed("alice")

        assert await client.read(KEY) is None
        assert KEY not in store

        discarded = dispatcher.get_history(event_type=CacheEventType.FETCH_DISCARDED)[-1]
        assert discarded.issued_epoch == 1
        assert discarded.epoch == 2

    @pytest.mark.asyncio
    async def test_fetch_context_carries_epoch(self, client, guard, backend):
        await guard.on_identity_observed("alice")
        await client.read(KEY)
        _, context = backend.calls[0]
        assert context.identity == "alice"
        assert context.epoch == guard.epoch


class TestOwnership:
    """Test cross-identity detection on read."""

    @pytest.mark.asyncio
    async def test_foreign_entry_triggers_violation(self, client, guard, store, backend, dispatcher):
        await guard.on_identity_observed("alice")
        store.put(KEY, {"secret": True}, owner_user_id="mallory", epoch=guard.epoch)
        epoch = guard.epoch

        data = await client.read(KEY)

        assert data["identity"] == "alice"
        assert guard.epoch == epoch + 1
        assert store.get(KEY).owner_user_id == "alice"
        assert dispatcher.get_history(event_type=CacheEventType.ISOLATION_VIOLATION)


class TestRefetch:
    """Test refetch and abandon."""

    @pytest.mark.asyncio
    async def test_refetch_replaces_in_flight(self, client, guard, backend, clock):
        await guard.on_identity_observed("alice")
        gate = backend.hold(REPORTS)

        first = client.refetch(KEY)
        second = client.refetch(KEY, consistency_token="tok")
        await clock.settle()
        assert first.cancelled()

        gate.set()
        assert (await second)["token"] == "tok"

    @pytest.mark.asyncio
    async def test_reader_follows_replacement(self, client, guard, backend, clock):
        """Test a waiting reader gets the newer fetch's result."""
        await guard.on_identity_observed("alice")
        gate = backend.hold(REPORTS)

        read = asyncio.ensure_future(client.read(KEY))
        await clock.settle()
        client.refetch(KEY, consistency_token="tok")
        gate.set()

        assert (await read)["token"] == "tok"

    @pytest.mark.asyncio
    async def test_abandon(self, client, guard, backend, clock):
        await guard.on_identity_observed("alice")
        backend.hold(REPORTS)

        task = client.refetch(KEY)
        await clock.settle()

        assert client.abandon(KEY) is True
        await asyncio.gather(task, return_exceptions=True)
        assert task.cancelled()
        assert client.abandon(KEY) is False

    @pytest.mark.asyncio
    async def test_abandon_all(self, client, guard, backend, clock):
        await guard.on_identity_observed("alice")
        backend.hold(REPORTS)
        client.refetch(KEY)
        client.refetch(ScopeKeys.my_reports("alice"))
        await clock.settle()

        tasks = client.abandon_all()
        await asyncio.gather(*tasks, return_exceptions=True)

        assert len(tasks) == 2
        assert all(t.cancelled() for t in tasks)
