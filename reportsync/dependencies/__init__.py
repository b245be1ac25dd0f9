"""
dependencies/ - Mutation dependency graph and invalidation coordinator.
"""

from .graph import (
    KeyedBy,
    ScopeRule,
    InvalidationAction,
    InvalidationPlan,
    DependencyGraph,
    DEFAULT_RULES,
    USER_DATA_RULES,
)

from .invalidation import (
    InvalidationReason,
    InvalidationRecord,
    InvalidationCoordinator,
)

__all__ = [
    # Graph
    "KeyedBy",
    "ScopeRule",
    "InvalidationAction",
    "InvalidationPlan",
    "DependencyGraph",
    "DEFAULT_RULES",
    "USER_DATA_RULES",
    # Invalidation
    "InvalidationReason",
    "InvalidationRecord",
    "InvalidationCoordinator",
]
