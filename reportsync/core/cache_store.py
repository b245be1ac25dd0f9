"""
core/cache_store.py - Scope-keyed cache of query results.

The store is the only shared mutable resource in the core. It holds at most
one live CacheEntry per ScopeKey, tracks each entry's state, and streams
state transitions to per-scope subscribers.

WRITE RULES:
- put() is rejected when the write's epoch is not the live epoch
- mark() only follows ENTRY_TRANSITIONS
- clear(close_subscriptions=True) ends every subscription stream
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterator, List, Optional
import asyncio
import copy
import logging

from reportsync.core.clock import Clock, SystemClock
from reportsync.core.enums import EntryState, ENTRY_TRANSITIONS, can_transition
from reportsync.core.scope import ScopeKey, ScopePattern
from reportsync.kernel.events import CacheEventType, EntryStateChangedEvent

logger = logging.getLogger("core.cache_store")


# =============================================================================
# ENTRY TYPES
# =============================================================================

@dataclass
class CacheEntry:
    """One cached query result."""
    scope_key: ScopeKey
    owner_user_id: str
    data: Any
    fetched_at: float
    state: EntryState = EntryState.FRESH
    epoch: int = 0
    updated_at: float = 0.0
    error: Optional[BaseException] = None

    @property
    def is_fresh(self) -> bool:
        return self.state == EntryState.FRESH

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": str(self.scope_key),
            "owner_user_id": self.owner_user_id,
            "state": self.state.value,
            "epoch": self.epoch,
            "fetched_at": self.fetched_at,
            "updated_at": self.updated_at,
            "error": str(self.error) if self.error else None,
        }


@dataclass(frozen=True)
class StateTransition:
    """A change to one scope's entry. new_state None means the entry was removed."""
    scope_key: ScopeKey
    old_state: Optional[EntryState]
    new_state: Optional[EntryState]
    epoch: int
    at: float

    @property
    def removed(self) -> bool:
        return self.new_state is None


_CLOSED = object()


class Subscription:
    """
    Live view of one scope.

    `current` always reflects the store's entry (or None). Transitions are
    queued and can be consumed with `async for`; the stream ends when the
    subscription is closed.
    """

    def __init__(self, store: "CacheStore", scope_key: ScopeKey):
        self._store = store
        self.scope_key = scope_key
        self.current: Optional[CacheEntry] = store.get(scope_key)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, transition: StateTransition) -> None:
        if self._closed:
            return
        self.current = self._store.get(self.scope_key)
        self._queue.put_nowait(transition)

    def _end(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.current = None
        self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Stop receiving transitions."""
        self._store.unsubscribe(self)

    def drain(self) -> List[StateTransition]:
        """Return every queued transition without waiting."""
        items = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            items.append(item)
        return items

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> StateTransition:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item


# =============================================================================
# STORE
# =============================================================================

class CacheStore:
    """
    Scope-keyed store with per-entry state and subscriptions.

    Usage:
        store = CacheStore(clock, dispatcher, epoch_source=guard_epoch)
        store.put(key, data, owner_user_id="u1", epoch=3)
        store.mark_matching(ScopePattern.build("reports"), EntryState.INVALIDATED)
    """

    def __init__(
        self,
        clock: Clock = None,
        dispatcher=None,
        epoch_source: Optional[Callable[[], int]] = None,
    ):
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher
        self._epoch_source = epoch_source
        self._entries: Dict[ScopeKey, CacheEntry] = {}
        self._subscriptions: Dict[ScopeKey, List[Subscription]] = {}

    def bind_epoch_source(self, epoch_source: Callable[[], int]) -> None:
        self._epoch_source = epoch_source

    @property
    def live_epoch(self) -> int:
        return self._epoch_source() if self._epoch_source else 0

    # ==================== Reads ====================

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: ScopeKey) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[ScopeKey]:
        return iter(list(self._entries))

    def get(self, key: ScopeKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def find(self, pattern: ScopePattern) -> List[ScopeKey]:
        """Keys matching a pattern, in deterministic order."""
        return sorted((k for k in self._entries if pattern.matches(k)), key=str)

    def snapshot(self) -> Dict[ScopeKey, CacheEntry]:
        """Deep copy of every entry, for before/after comparisons."""
        return {k: copy.deepcopy(v) for k, v in self._entries.items()}

    # ==================== Writes ====================

    def put(
        self,
        key: ScopeKey,
        data: Any,
        owner_user_id: str,
        epoch: int,
    ) -> Optional[CacheEntry]:
        """
        Store a fetch result as a Fresh entry.

        Returns None (and stores nothing) when `epoch` is not the live epoch.
        """
        live = self.live_epoch
        if self._epoch_source is not None and epoch != live:
            logger.info(f"Dropped write to {key}: epoch {epoch} superseded by {live}")
            return None

        now = self._clock.monotonic()
        previous = self._entries.get(key)
        entry = CacheEntry(
            scope_key=key,
            owner_user_id=owner_user_id,
            data=data,
            fetched_at=now,
            state=EntryState.FRESH,
            epoch=epoch,
            updated_at=now,
        )
        self._entries[key] = entry
        self._notify(key, previous.state if previous else None, EntryState.FRESH)
        return entry

    def mark(self, key: ScopeKey, state: EntryState, error: BaseException = None) -> bool:
        """
        Move an entry to a new state.

        Returns False when the entry does not exist, is already in that state,
        or the transition is not legal.
        """
        entry = self._entries.get(key)
        if entry is None or entry.state == state:
            return False
        if not can_transition(ENTRY_TRANSITIONS, entry.state, state):
            logger.debug(f"Ignored {entry.state.value} -> {state.value} for {key}")
            return False

        old = entry.state
        self._entries[key] = replace(
            entry,
            state=state,
            error=error,
            updated_at=self._clock.monotonic(),
        )
        self._notify(key, old, state)
        return True

    def mark_matching(self, pattern: ScopePattern, state: EntryState) -> List[ScopeKey]:
        return [key for key in self.find(pattern) if self.mark(key, state)]

    def remove(self, key: ScopeKey) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._notify(key, entry.state, None)
        return True

    def remove_matching(self, pattern: ScopePattern) -> List[ScopeKey]:
        return [key for key in self.find(pattern) if self.remove(key)]

    def clear(self, close_subscriptions: bool = False) -> int:
        """Remove every entry. Returns the number removed."""
        keys = list(self._entries)
        for key in keys:
            self.remove(key)

        if close_subscriptions:
            subs = [s for subs in self._subscriptions.values() for s in subs]
            self._subscriptions.clear()
            for sub in subs:
                sub._end()
            if subs:
                logger.debug(f"Closed {len(subs)} subscription(s)")

        return len(keys)

    def collect_garbage(self, gc_after: float) -> List[ScopeKey]:
        """Remove unsubscribed entries not updated within gc_after seconds."""
        now = self._clock.monotonic()
        expired = [
            key for key, entry in self._entries.items()
            if not self.is_subscribed(key) and now - entry.updated_at >= gc_after
        ]
        for key in expired:
            self.remove(key)
        if expired:
            logger.debug(f"Collected {len(expired)} unused entries")
        return expired

    # ==================== Subscriptions ====================

    def subscribe(self, key: ScopeKey) -> Subscription:
        sub = Subscription(self, key)
        self._subscriptions.setdefault(key, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.scope_key, [])
        if sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscriptions[sub.scope_key]
        sub._end()

    def is_subscribed(self, key: ScopeKey) -> bool:
        return bool(self._subscriptions.get(key))

    def subscribed_keys(self, pattern: ScopePattern = None) -> List[ScopeKey]:
        keys = [k for k in self._subscriptions if pattern is None or pattern.matches(k)]
        return sorted(keys, key=str)

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    # ==================== Notification ====================

    def _notify(
        self,
        key: ScopeKey,
        old: Optional[EntryState],
        new: Optional[EntryState],
    ) -> None:
        epoch = self.live_epoch
        transition = StateTransition(
            scope_key=key,
            old_state=old,
            new_state=new,
            epoch=epoch,
            at=self._clock.monotonic(),
        )
        for sub in list(self._subscriptions.get(key, [])):
            sub._push(transition)

        if self._dispatcher:
            if new is None:
                event_type = CacheEventType.ENTRY_REMOVED
            elif old is None:
                event_type = CacheEventType.ENTRY_STORED
            else:
                event_type = CacheEventType.ENTRY_STATE_CHANGED
            self._dispatcher.emit(EntryStateChangedEvent(
                event_type=event_type,
                epoch=epoch,
                scope=str(key),
                old_state=old.value if old else None,
                new_state=new.value if new else None,
            ))
