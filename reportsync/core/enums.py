"""
core/enums.py - Core enumerations and legal transitions.

Entry states, purge states and batch statuses shared by every component.
"""

from enum import Enum
from typing import Dict, List


class EntryState(Enum):
    """State of a cached scope entry."""
    FRESH = "fresh"
    STALE = "stale"
    INVALIDATED = "invalidated"
    FETCHING = "fetching"


class PurgeState(Enum):
    """Isolation guard purge state machine."""
    IDLE = "idle"
    PURGING = "purging"
    SETTLING = "settling"


class BatchStatus(Enum):
    """Mutation batch lifecycle."""
    PENDING = "pending"
    COMMITTING = "committing"
    SETTLED = "settled"
    RECONCILED = "reconciled"
    FAILED = "failed"


class InvalidationMode(Enum):
    """How a matched scope is invalidated."""
    INVALIDATE = "invalidate"   # Mark Invalidated, keep data for the loading view
    REMOVE = "remove"           # Drop the entry entirely


# ==================== Legal Transitions ====================

ENTRY_TRANSITIONS: Dict[EntryState, List[EntryState]] = {
    EntryState.FRESH: [
        EntryState.STALE,
        EntryState.INVALIDATED,
        EntryState.FETCHING,
        EntryState.FRESH,
    ],
    EntryState.STALE: [
        EntryState.INVALIDATED,
        EntryState.FETCHING,
        EntryState.FRESH,
    ],
    EntryState.INVALIDATED: [
        EntryState.FETCHING,
        EntryState.FRESH,
        EntryState.INVALIDATED,
    ],
    EntryState.FETCHING: [
        EntryState.FRESH,
        EntryState.INVALIDATED,
    ],
}

PURGE_TRANSITIONS: Dict[PurgeState, List[PurgeState]] = {
    PurgeState.IDLE: [PurgeState.PURGING],
    PurgeState.PURGING: [PurgeState.SETTLING, PurgeState.IDLE],
    PurgeState.SETTLING: [PurgeState.IDLE],
}

BATCH_TRANSITIONS: Dict[BatchStatus, List[BatchStatus]] = {
    BatchStatus.PENDING: [BatchStatus.COMMITTING, BatchStatus.FAILED],
    BatchStatus.COMMITTING: [BatchStatus.SETTLED, BatchStatus.FAILED],
    BatchStatus.SETTLED: [BatchStatus.RECONCILED, BatchStatus.FAILED],
    BatchStatus.RECONCILED: [],
    BatchStatus.FAILED: [],
}


def can_transition(table: Dict, current: Enum, target: Enum) -> bool:
    """Check a transition against one of the legal transition tables."""
    return target in table.get(current, [])
