"""
core/scope.py - Scope keys and scope patterns.

A ScopeKey identifies one cached view: a resource family, the view kind,
the user the view is keyed by, and any filter parameters. ScopePattern
matches families of keys for invalidation and purges.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple


# =============================================================================
# RESOURCE FAMILIES
# =============================================================================

REPORTS = "reports"
EVALUATIONS = "evaluations"
HIERARCHY = "hierarchy"
STATISTICS = "statistics"
USERS = "users"

# Aggregate views whose partially-stale numbers must never be rendered
AGGREGATE_RESOURCES: FrozenSet[str] = frozenset({HIERARCHY, STATISTICS})

# Params that reference another user (included in ScopeKey.user_refs)
USER_PARAMS: Tuple[str, ...] = ("target_user_id",)


def _freeze_params(params: Optional[Dict[str, Any]]) -> Tuple[Tuple[str, Any], ...]:
    if not params:
        return ()
    return tuple(sorted((k, v) for k, v in params.items() if v is not None))


# =============================================================================
# SCOPE KEY
# =============================================================================

@dataclass(frozen=True)
class ScopeKey:
    """Identifier for one cached view."""
    resource: str
    view: str = ""
    user_id: Optional[str] = None
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def build(
        cls,
        resource: str,
        view: str = "",
        user_id: Optional[str] = None,
        **params: Any,
    ) -> "ScopeKey":
        return cls(resource=resource, view=view, user_id=user_id, params=_freeze_params(params))

    def param(self, name: str, default: Any = None) -> Any:
        for key, value in self.params:
            if key == name:
                return value
        return default

    @property
    def user_refs(self) -> FrozenSet[str]:
        """Every user id this scope is keyed by."""
        refs = set()
        if self.user_id is not None:
            refs.add(self.user_id)
        for name in USER_PARAMS:
            value = self.param(name)
            if value is not None:
                refs.add(value)
        return frozenset(refs)

    @property
    def is_aggregate(self) -> bool:
        return self.resource in AGGREGATE_RESOURCES

    def parts(self) -> Tuple[Any, ...]:
        """Render as a flat query-key tuple."""
        parts: Tuple[Any, ...] = (self.resource,)
        if self.view:
            parts += (self.view,)
        if self.user_id is not None:
            parts += (self.user_id,)
        for key, value in self.params:
            parts += (f"{key}={value}",)
        return parts

    def __str__(self) -> str:
        return "/".join(str(p) for p in self.parts())


# =============================================================================
# SCOPE PATTERN
# =============================================================================

@dataclass(frozen=True)
class ScopePattern:
    """
    Matcher over scope keys.

    Unset fields match anything. `users` matches when the key references at
    least one of the given user ids; `params` must be a subset of the key's
    params, except that a key lacking a param entirely is not excluded by
    it (the view is not filtered on that dimension).
    """
    resource: Optional[str] = None
    view: Optional[str] = None
    users: FrozenSet[str] = field(default_factory=frozenset)
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def build(
        cls,
        resource: Optional[str] = None,
        view: Optional[str] = None,
        users: Iterable[str] = (),
        **params: Any,
    ) -> "ScopePattern":
        return cls(
            resource=resource,
            view=view,
            users=frozenset(u for u in users if u is not None),
            params=_freeze_params(params),
        )

    def matches(self, key: ScopeKey) -> bool:
        if self.resource is not None and key.resource != self.resource:
            return False
        if self.view is not None and key.view != self.view:
            return False
        if self.users and not (self.users & key.user_refs):
            return False
        for name, value in self.params:
            actual = key.param(name)
            if actual is not None and actual != value:
                return False
        return True

    def __str__(self) -> str:
        parts = [self.resource or "*", self.view or "*"]
        if self.users:
            parts.append("users=" + ",".join(sorted(self.users)))
        parts.extend(f"{k}={v}" for k, v in self.params)
        return "/".join(parts)


ALL_SCOPES = ScopePattern()


# =============================================================================
# KEY FACTORY
# =============================================================================

class ScopeKeys:
    """Standard scope keys for the report system's views."""

    # Reports
    @staticmethod
    def reports_by_week(user_id: str, week: int, year: int) -> ScopeKey:
        return ScopeKey.build(REPORTS, "byWeek", user_id, week=week, year=year)

    @staticmethod
    def report_by_id(user_id: str, report_id: str) -> ScopeKey:
        return ScopeKey.build(REPORTS, "byId", user_id, report_id=report_id)

    @staticmethod
    def my_reports(user_id: str, page: int = 1, limit: int = 10) -> ScopeKey:
        return ScopeKey.build(REPORTS, "my", user_id, page=page, limit=limit)

    @staticmethod
    def current_week_report(user_id: str) -> ScopeKey:
        return ScopeKey.build(REPORTS, "currentWeek", user_id)

    # Evaluations
    @staticmethod
    def task_evaluations(task_id: str) -> ScopeKey:
        return ScopeKey.build(EVALUATIONS, "task", task_id=task_id)

    @staticmethod
    def my_evaluations(user_id: str, week: int = None, year: int = None) -> ScopeKey:
        return ScopeKey.build(EVALUATIONS, "my", user_id, week=week, year=year)

    @staticmethod
    def evaluable_tasks(user_id: str, week: int = None, year: int = None) -> ScopeKey:
        return ScopeKey.build(EVALUATIONS, "evaluable", user_id, week=week, year=year)

    # Hierarchy
    @staticmethod
    def hierarchy_my_view(user_id: str, week: int, year: int) -> ScopeKey:
        return ScopeKey.build(HIERARCHY, "myView", user_id, week=week, year=year)

    @staticmethod
    def hierarchy_manager_reports(user_id: str, week: int, year: int) -> ScopeKey:
        return ScopeKey.build(HIERARCHY, "managerReports", user_id, week=week, year=year)

    @staticmethod
    def hierarchy_user_details(viewer_id: str, target_user_id: str, week: int, year: int) -> ScopeKey:
        return ScopeKey.build(
            HIERARCHY, "userDetails", viewer_id,
            target_user_id=target_user_id, week=week, year=year,
        )

    @staticmethod
    def hierarchy_user_reports(user_id: str, target_user_id: str) -> ScopeKey:
        return ScopeKey.build(HIERARCHY, "userReports", user_id, target_user_id=target_user_id)

    # Statistics
    @staticmethod
    def statistics_dashboard(user_id: str) -> ScopeKey:
        return ScopeKey.build(STATISTICS, "dashboard", user_id)

    @staticmethod
    def statistics_weekly(user_id: str, week: int, year: int) -> ScopeKey:
        return ScopeKey.build(STATISTICS, "weeklyTaskStats", user_id, week=week, year=year)

    @staticmethod
    def statistics_ranking(user_id: str, week: int, year: int) -> ScopeKey:
        return ScopeKey.build(STATISTICS, "ranking", user_id, week=week, year=year)

    # Users
    @staticmethod
    def user_profile(user_id: str) -> ScopeKey:
        return ScopeKey.build(USERS, "profile", user_id)
