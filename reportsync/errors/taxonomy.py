"""
errors/taxonomy.py - Error classification for the consistency core

Structured exception types raised by the fetch layer, the isolation guard,
the mutation pipeline and the invalidation coordinator. Each carries a code,
a category and a severity so hosts can route them without string matching.
"""

from __future__ import annotations
from typing import Any, Dict, Optional
from enum import Enum


# =============================================================================
# ERROR CATEGORIES AND SEVERITY
# =============================================================================

class ErrorCategory(Enum):
    """Error categories."""
    FETCH = "fetch"               # Remote read failed
    VALIDATION = "validation"     # Payload failed boundary validation
    IDENTITY = "identity"         # No confirmed identity or a cross-identity leak
    MUTATION = "mutation"         # A remote write failed
    TIMEOUT = "timeout"           # A bounded wait gave up
    STATE = "state"               # Internal state could not be restored


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# BASE ERROR CLASS
# =============================================================================

class ReportSyncError(Exception):
    """
    Base class for consistency-core errors.

    Provides:
    - Error code for programmatic handling
    - Category and severity for routing
    - Details dict for debugging
    """

    code: str = "RS_000"
    category: ErrorCategory = ErrorCategory.STATE
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None, **kwargs):
        self.message = message or self.__class__.__doc__ or "ReportSync error"
        self.details = details or {}
        self.details.update(kwargs)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# =============================================================================
# FETCH ERRORS
# =============================================================================

class FetchError(ReportSyncError):
    """Remote read failed."""

    code = "RS_100"
    category = ErrorCategory.FETCH

    def __init__(self, message: str = "", *, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, status=status, **kwargs)


class TransientFetchError(FetchError):
    """Network failure or 5xx response; retried with backoff."""

    code = "RS_101"
    severity = ErrorSeverity.WARNING


class PermanentFetchError(FetchError):
    """4xx-class response; never retried."""

    code = "RS_102"


class ViewValidationError(ReportSyncError):
    """Payload failed boundary validation; never retried."""

    code = "RS_103"
    category = ErrorCategory.VALIDATION

    def __init__(self, message: str = "", *, errors: Optional[list] = None, **kwargs):
        self.errors = errors or []
        super().__init__(message, error_count=len(self.errors), **kwargs)


# =============================================================================
# IDENTITY ERRORS
# =============================================================================

class IdentityNotConfirmedError(ReportSyncError):
    """A read was attempted with no confirmed identity."""

    code = "RS_200"
    category = ErrorCategory.IDENTITY
    severity = ErrorSeverity.WARNING


class IsolationViolation(ReportSyncError):
    """Data belonging to one identity was about to be shown to another."""

    code = "RS_201"
    category = ErrorCategory.IDENTITY
    severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        detail: str = "",
        confirmed_identity: Optional[str] = None,
        offending_identity: Optional[str] = None,
        **kwargs,
    ):
        self.detail = detail
        self.confirmed_identity = confirmed_identity
        self.offending_identity = offending_identity
        super().__init__(
            f"Isolation violation: {detail}" if detail else "",
            confirmed_identity=confirmed_identity,
            offending_identity=offending_identity,
            **kwargs,
        )


class PurgeFailedError(ReportSyncError):
    """The cache could not be emptied; the host must rebuild its state."""

    code = "RS_202"
    category = ErrorCategory.STATE
    severity = ErrorSeverity.CRITICAL

    def __init__(self, reason: str, attempts: int = 0, **kwargs):
        self.reason = reason
        self.attempts = attempts
        super().__init__(
            f"Purge failed after {attempts} attempt(s): {reason}",
            attempts=attempts,
            **kwargs,
        )


# =============================================================================
# MUTATION / RECONCILIATION ERRORS
# =============================================================================

class MutationStepError(ReportSyncError):
    """A step of a mutation batch failed; the batch made no cache changes."""

    code = "RS_300"
    category = ErrorCategory.MUTATION

    def __init__(
        self,
        step_index: int,
        kind: str,
        cause: Optional[BaseException] = None,
        message: str = "",
        **kwargs,
    ):
        self.step_index = step_index
        self.kind = kind
        self.cause = cause
        if not message:
            message = f"Step {step_index} ({kind}) failed"
            if cause is not None:
                message += f": {cause}"
        super().__init__(message, step_index=step_index, kind=kind, **kwargs)


class ReconciliationTimeout(ReportSyncError):
    """Refetches did not complete in time; affected scopes stay Invalidated."""

    code = "RS_400"
    category = ErrorCategory.TIMEOUT
    severity = ErrorSeverity.WARNING

    def __init__(self, pending: int, timeout_s: float, **kwargs):
        self.pending = pending
        self.timeout_s = timeout_s
        super().__init__(
            f"{pending} scope(s) still refetching after {timeout_s}s",
            pending=pending,
            timeout_s=timeout_s,
            **kwargs,
        )
