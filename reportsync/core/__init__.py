"""
core/ - Shared primitives.

Clocks, scope keys, entry/purge/batch states and the cache store.
"""

from .enums import (
    EntryState,
    PurgeState,
    BatchStatus,
    InvalidationMode,
    ENTRY_TRANSITIONS,
    PURGE_TRANSITIONS,
    BATCH_TRANSITIONS,
    can_transition,
)

from .clock import Clock, SystemClock, ManualClock

from .scope import (
    REPORTS,
    EVALUATIONS,
    HIERARCHY,
    STATISTICS,
    USERS,
    AGGREGATE_RESOURCES,
    ScopeKey,
    ScopePattern,
    ScopeKeys,
    ALL_SCOPES,
)

from .cache_store import CacheEntry, StateTransition, Subscription, CacheStore

__all__ = [
    # Enums
    "EntryState",
    "PurgeState",
    "BatchStatus",
    "InvalidationMode",
    "ENTRY_TRANSITIONS",
    "PURGE_TRANSITIONS",
    "BATCH_TRANSITIONS",
    "can_transition",
    # Clock
    "Clock",
    "SystemClock",
    "ManualClock",
    # Scope
    "REPORTS",
    "EVALUATIONS",
    "HIERARCHY",
    "STATISTICS",
    "USERS",
    "AGGREGATE_RESOURCES",
    "ScopeKey",
    "ScopePattern",
    "ScopeKeys",
    "ALL_SCOPES",
    # Store
    "CacheEntry",
    "StateTransition",
    "Subscription",
    "CacheStore",
]
