"""
fetch/retry.py - Retry policy for read-miss fetches.

Client errors (4xx) and boundary validation failures are never retried.
Anything else is retried up to max_retries times with exponential backoff
capped at max_delay_s.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from reportsync.errors.taxonomy import ReportSyncError, TransientFetchError


def status_of(error: BaseException) -> Optional[int]:
    """HTTP-style status carried by an error, if any."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_transient(error: BaseException) -> bool:
    """Whether a fetch failure is worth retrying."""
    if isinstance(error, TransientFetchError):
        return True
    if isinstance(error, ReportSyncError):
        return False
    status = status_of(error)
    if status is not None and 400 <= status < 500:
        return False
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: min(base * 2**attempt, max)."""

    max_retries: int = 2
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay_s=config.retry_base_delay_s,
            max_delay_s=config.retry_max_delay_s,
        )

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """attempt is the zero-based index of the attempt that just failed."""
        return attempt < self.max_retries and is_transient(error)

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay_s * (2 ** attempt), self.max_delay_s)
