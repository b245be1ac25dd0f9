"""
kernel/ - Event plumbing for the consistency core.

Typed cache events and the instance-scoped dispatcher that carries them.
"""

from .events import (
    CacheEventType,
    NoticeLevel,
    CacheEvent,
    EntryStateChangedEvent,
    FetchDiscardedEvent,
    FetchFailedEvent,
    PurgeEvent,
    IsolationViolationEvent,
    FatalEscalationEvent,
    BatchEvent,
    ScopesInvalidatedEvent,
    ReconciliationTimeoutEvent,
    NoticeEvent,
)

from .event_dispatcher import EventDispatcher, EventHandler

__all__ = [
    "CacheEventType",
    "NoticeLevel",
    "CacheEvent",
    "EntryStateChangedEvent",
    "FetchDiscardedEvent",
    "FetchFailedEvent",
    "PurgeEvent",
    "IsolationViolationEvent",
    "FatalEscalationEvent",
    "BatchEvent",
    "ScopesInvalidatedEvent",
    "ReconciliationTimeoutEvent",
    "NoticeEvent",
    "EventDispatcher",
    "EventHandler",
]
