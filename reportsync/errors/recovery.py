"""
errors/recovery.py - Recovery strategies for consistency-core errors

Maps each error type to the action the coordinator takes when it surfaces:
retry on the next read, notify the user, purge the cache, or escalate to
the host.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Type
from enum import Enum

from .taxonomy import (
    ReportSyncError,
    TransientFetchError,
    PermanentFetchError,
    ViewValidationError,
    IdentityNotConfirmedError,
    IsolationViolation,
    PurgeFailedError,
    MutationStepError,
    ReconciliationTimeout,
)


class RecoveryStrategy(Enum):
    """Recovery strategy types."""
    RETRY = "retry"          # Leave the scope Invalidated; the next read retries
    NOTIFY = "notify"        # Surface a user-visible notice, keep the session
    PURGE = "purge"          # Full cache purge
    ESCALATE = "escalate"    # Host must rebuild all state


@dataclass(frozen=True)
class RecoveryOption:
    """Recovery action for one error type."""

    strategy: RecoveryStrategy
    description: str = ""
    user_message: str = ""
    notify: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "description": self.description,
            "user_message": self.user_message,
            "notify": self.notify,
        }


RECOVERY_STRATEGIES: Dict[Type[ReportSyncError], RecoveryOption] = {
    TransientFetchError: RecoveryOption(
        strategy=RecoveryStrategy.RETRY,
        description="Retried with backoff; scope stays Invalidated on exhaustion",
    ),
    PermanentFetchError: RecoveryOption(
        strategy=RecoveryStrategy.NOTIFY,
        description="Request rejected by the remote",
        user_message="Could not load data",
        notify=True,
    ),
    ViewValidationError: RecoveryOption(
        strategy=RecoveryStrategy.NOTIFY,
        description="Malformed payload at the boundary",
        user_message="Received invalid data from the server",
        notify=True,
    ),
    IdentityNotConfirmedError: RecoveryOption(
        strategy=RecoveryStrategy.RETRY,
        description="Read again once an identity is confirmed",
    ),
    MutationStepError: RecoveryOption(
        strategy=RecoveryStrategy.NOTIFY,
        description="Batch failed; prior cache entries stay authoritative",
        user_message="Could not save your changes",
        notify=True,
    ),
    ReconciliationTimeout: RecoveryOption(
        strategy=RecoveryStrategy.NOTIFY,
        description="Refetch timed out; scopes stay Invalidated",
        user_message="Saved. Some views are still refreshing",
        notify=True,
    ),
    IsolationViolation: RecoveryOption(
        strategy=RecoveryStrategy.PURGE,
        description="Suspected cross-identity leak",
    ),
    PurgeFailedError: RecoveryOption(
        strategy=RecoveryStrategy.ESCALATE,
        description="Cache could not be emptied",
    ),
}

_DEFAULT_OPTION = RecoveryOption(
    strategy=RecoveryStrategy.NOTIFY,
    description="Unclassified error",
    user_message="Something went wrong",
    notify=True,
)


def recovery_for(error: BaseException) -> RecoveryOption:
    """Find the recovery option for an error, walking its class hierarchy."""
    for cls in type(error).__mro__:
        option = RECOVERY_STRATEGIES.get(cls)
        if option is not None:
            return option
    return _DEFAULT_OPTION
