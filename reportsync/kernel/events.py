"""
kernel/events.py - Typed cache events v1.0

Events emitted by the consistency core. They are the audit trail of every
cache transition, purge, batch step and user-visible notice, and the feed
a host uses to drive toasts and loading indicators.

INVARIANT: Events describe transitions that already happened.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


# =============================================================================
# EVENT TYPES
# =============================================================================

class CacheEventType(str, Enum):
    """Types of cache events."""

    # Entry events
    ENTRY_STORED = "entry_stored"
    ENTRY_STATE_CHANGED = "entry_state_changed"
    ENTRY_REMOVED = "entry_removed"

    # Fetch events
    FETCH_DISCARDED = "fetch_discarded"
    FETCH_FAILED = "fetch_failed"

    # Isolation events
    IDENTITY_CHANGED = "identity_changed"
    PURGE_STARTED = "purge_started"
    PURGE_COMPLETED = "purge_completed"
    PURGE_FAILED = "purge_failed"
    PARTIAL_PURGE = "partial_purge"
    ISOLATION_VIOLATION = "isolation_violation"
    FATAL_ESCALATION = "fatal_escalation"

    # Batch events
    BATCH_SUBMITTED = "batch_submitted"
    BATCH_STEP_COMPLETED = "batch_step_completed"
    BATCH_FAILED = "batch_failed"
    BATCH_SETTLED = "batch_settled"
    BATCH_RECONCILED = "batch_reconciled"

    # Invalidation events
    SCOPES_INVALIDATED = "scopes_invalidated"
    RECONCILIATION_TIMEOUT = "reconciliation_timeout"

    # User-facing
    NOTICE_RAISED = "notice_raised"


class NoticeLevel(str, Enum):
    """Severity of a user-visible notice."""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# BASE EVENT
# =============================================================================

@dataclass
class CacheEvent:
    """
    Base class for cache events.

    All events have:
    - event_id: Unique identifier
    - event_type: Type classification
    - session_id: Owning coordinator session
    - timestamp: When the event occurred
    - epoch: Isolation epoch at emission time
    """
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])
    event_type: CacheEventType = CacheEventType.ENTRY_STATE_CHANGED
    session_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    epoch: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "epoch": self.epoch,
        }


# =============================================================================
# ENTRY EVENTS
# =============================================================================

@dataclass
class EntryStateChangedEvent(CacheEvent):
    """A scope entry was stored, changed state, or was removed."""
    event_type: CacheEventType = field(default=CacheEventType.ENTRY_STATE_CHANGED)
    scope: str = ""
    old_state: Optional[str] = None
    new_state: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "scope": self.scope,
            "old_state": self.old_state,
            "new_state": self.new_state,
        })
        return base


@dataclass
class FetchDiscardedEvent(CacheEvent):
    """A fetch result was dropped before reaching the store."""
    event_type: CacheEventType = field(default=CacheEventType.FETCH_DISCARDED)
    scope: str = ""
    issued_epoch: int = 0
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "scope": self.scope,
            "issued_epoch": self.issued_epoch,
            "reason": self.reason,
        })
        return base


@dataclass
class FetchFailedEvent(CacheEvent):
    """A fetch failed terminally after retries."""
    event_type: CacheEventType = field(default=CacheEventType.FETCH_FAILED)
    scope: str = ""
    attempts: int = 0
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "scope": self.scope,
            "attempts": self.attempts,
            "error": self.error,
        })
        return base


# =============================================================================
# ISOLATION EVENTS
# =============================================================================

@dataclass
class PurgeEvent(CacheEvent):
    """Lifecycle of a full or partial purge."""
    event_type: CacheEventType = field(default=CacheEventType.PURGE_STARTED)
    reason: str = ""
    previous_identity: Optional[str] = None
    next_identity: Optional[str] = None
    removed_count: int = 0
    attempt: int = 0

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "reason": self.reason,
            "previous_identity": self.previous_identity,
            "next_identity": self.next_identity,
            "removed_count": self.removed_count,
            "attempt": self.attempt,
        })
        return base


@dataclass
class IsolationViolationEvent(CacheEvent):
    """Suspected cross-identity leakage."""
    event_type: CacheEventType = field(default=CacheEventType.ISOLATION_VIOLATION)
    detail: str = ""
    confirmed_identity: Optional[str] = None
    offending_identity: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "detail": self.detail,
            "confirmed_identity": self.confirmed_identity,
            "offending_identity": self.offending_identity,
        })
        return base


@dataclass
class FatalEscalationEvent(CacheEvent):
    """The host was asked to rebuild all state."""
    event_type: CacheEventType = field(default=CacheEventType.FATAL_ESCALATION)
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base["reason"] = self.reason
        return base


# =============================================================================
# BATCH EVENTS
# =============================================================================

@dataclass
class BatchEvent(CacheEvent):
    """Lifecycle of a mutation batch."""
    event_type: CacheEventType = field(default=CacheEventType.BATCH_SUBMITTED)
    batch_id: str = ""
    status: str = ""
    step_index: Optional[int] = None
    step_kind: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "batch_id": self.batch_id,
            "status": self.status,
            "step_index": self.step_index,
            "step_kind": self.step_kind,
            "error": self.error,
        })
        return base


@dataclass
class ScopesInvalidatedEvent(CacheEvent):
    """An invalidation plan was applied to the store."""
    event_type: CacheEventType = field(default=CacheEventType.SCOPES_INVALIDATED)
    batch_id: Optional[str] = None
    removed: List[str] = field(default_factory=list)
    invalidated: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "batch_id": self.batch_id,
            "removed": list(self.removed),
            "invalidated": list(self.invalidated),
        })
        return base


@dataclass
class ReconciliationTimeoutEvent(CacheEvent):
    """Refetches did not finish in time; scopes stay Invalidated."""
    event_type: CacheEventType = field(default=CacheEventType.RECONCILIATION_TIMEOUT)
    batch_id: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    timeout_s: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "batch_id": self.batch_id,
            "scopes": list(self.scopes),
            "timeout_s": self.timeout_s,
        })
        return base


@dataclass
class NoticeEvent(CacheEvent):
    """User-visible notice (toast)."""
    event_type: CacheEventType = field(default=CacheEventType.NOTICE_RAISED)
    level: NoticeLevel = NoticeLevel.INFO
    message: str = ""
    batch_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "level": self.level.value,
            "message": self.message,
            "batch_id": self.batch_id,
        })
        return base
