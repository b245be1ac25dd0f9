"""
errors/ - Error Taxonomy & Recovery

Structured error classification for the consistency core and the recovery
strategy each error maps to.
"""

from .taxonomy import (
    ErrorCategory,
    ErrorSeverity,
    ReportSyncError,
    FetchError,
    TransientFetchError,
    PermanentFetchError,
    ViewValidationError,
    IdentityNotConfirmedError,
    IsolationViolation,
    PurgeFailedError,
    MutationStepError,
    ReconciliationTimeout,
)

from .recovery import (
    RecoveryStrategy,
    RecoveryOption,
    RECOVERY_STRATEGIES,
    recovery_for,
)

__all__ = [
    # Taxonomy
    "ErrorCategory",
    "ErrorSeverity",
    "ReportSyncError",
    "FetchError",
    "TransientFetchError",
    "PermanentFetchError",
    "ViewValidationError",
    "IdentityNotConfirmedError",
    "IsolationViolation",
    "PurgeFailedError",
    "MutationStepError",
    "ReconciliationTimeout",
    # Recovery
    "RecoveryStrategy",
    "RecoveryOption",
    "RECOVERY_STRATEGIES",
    "recovery_for",
]
