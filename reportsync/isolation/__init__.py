"""
isolation/ - Identity isolation guard.
"""

from .guard import IsolationGuard, ResetHook, FatalEscalate

__all__ = [
    "IsolationGuard",
    "ResetHook",
    "FatalEscalate",
]
