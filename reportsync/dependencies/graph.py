"""
dependencies/graph.py - Mutation-to-scope dependency graph

Declares, for every mutation kind, which cached scopes depend on the entity
it writes. A committed batch is turned into an InvalidationPlan by resolving
those rules against the batch subject and the viewer.

Aggregate scopes (hierarchy, statistics) are removed outright so no view can
render partially-stale numbers; every other scope is marked Invalidated and
keeps its data for the loading view.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set
import logging

from reportsync.core.enums import InvalidationMode
from reportsync.core.scope import (
    AGGREGATE_RESOURCES,
    EVALUATIONS,
    HIERARCHY,
    REPORTS,
    STATISTICS,
    ScopeKey,
    ScopePattern,
)
from reportsync.transactions.schemas import BatchSubject, MutationBatch, MutationKind

logger = logging.getLogger("dependencies.graph")


# =============================================================================
# RULES
# =============================================================================

class KeyedBy(Enum):
    """Which ids a rule's scopes are keyed by."""
    SUBJECT = "subject"                   # Views of the affected user
    SUBJECT_OR_VIEWER = "subject_or_viewer"
    TASK = "task"                         # Views keyed by the task id
    REPORT = "report"                     # Views keyed by the report id
    ANY = "any"                           # Every view of the family


@dataclass(frozen=True)
class ScopeRule:
    """One family of scopes that depends on a mutation."""
    resource: str
    view: Optional[str] = None
    keyed_by: KeyedBy = KeyedBy.SUBJECT
    period_filtered: bool = False
    mode: Optional[InvalidationMode] = None

    @property
    def effective_mode(self) -> InvalidationMode:
        if self.mode is not None:
            return self.mode
        if self.resource in AGGREGATE_RESOURCES:
            return InvalidationMode.REMOVE
        return InvalidationMode.INVALIDATE

    def resolve(self, subject: BatchSubject, viewer_id: Optional[str]) -> Optional[ScopePattern]:
        """Pattern for this rule, or None when the subject lacks the id it needs."""
        users: Set[str] = set()
        params: Dict[str, Any] = {}

        if self.keyed_by == KeyedBy.SUBJECT:
            users.add(subject.user_id)
        elif self.keyed_by == KeyedBy.SUBJECT_OR_VIEWER:
            users.add(subject.user_id)
            if viewer_id:
                users.add(viewer_id)
        elif self.keyed_by == KeyedBy.TASK:
            if subject.task_id is None:
                return None
            params["task_id"] = subject.task_id
        elif self.keyed_by == KeyedBy.REPORT:
            if subject.report_id is None:
                return None
            params["report_id"] = subject.report_id

        if self.period_filtered:
            params["week"] = subject.week
            params["year"] = subject.year

        return ScopePattern.build(self.resource, self.view, users=users, **params)


@dataclass(frozen=True)
class InvalidationAction:
    pattern: ScopePattern
    mode: InvalidationMode

    def to_dict(self) -> Dict[str, Any]:
        return {"pattern": str(self.pattern), "mode": self.mode.value}


@dataclass
class InvalidationPlan:
    """Ordered, de-duplicated set of invalidation actions."""
    actions: List[InvalidationAction] = field(default_factory=list)
    refetch: bool = True

    def add(self, pattern: ScopePattern, mode: InvalidationMode) -> None:
        action = InvalidationAction(pattern, mode)
        if action not in self.actions:
            self.actions.append(action)

    @property
    def removals(self) -> List[ScopePattern]:
        return [a.pattern for a in self.actions if a.mode == InvalidationMode.REMOVE]

    @property
    def invalidations(self) -> List[ScopePattern]:
        return [a.pattern for a in self.actions if a.mode == InvalidationMode.INVALIDATE]

    def matches(self, key: ScopeKey) -> bool:
        return any(a.pattern.matches(key) for a in self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "refetch": self.refetch,
        }


_EVALUATION_RULES: List[ScopeRule] = [
    ScopeRule(EVALUATIONS, "task", KeyedBy.TASK),
    ScopeRule(EVALUATIONS, None, KeyedBy.SUBJECT),
    ScopeRule(REPORTS, None, KeyedBy.SUBJECT),
    ScopeRule(REPORTS, None, KeyedBy.REPORT),
    ScopeRule(HIERARCHY, "userDetails", KeyedBy.SUBJECT),
    ScopeRule(HIERARCHY, "userReports", KeyedBy.SUBJECT),
    ScopeRule(HIERARCHY, None, KeyedBy.SUBJECT_OR_VIEWER, period_filtered=True),
    ScopeRule(STATISTICS, None, KeyedBy.SUBJECT_OR_VIEWER, period_filtered=True),
]

_TASK_STATUS_RULES: List[ScopeRule] = _EVALUATION_RULES + [
    ScopeRule(EVALUATIONS, "evaluable", KeyedBy.SUBJECT_OR_VIEWER),
]

DEFAULT_RULES: Dict[MutationKind, List[ScopeRule]] = {
    MutationKind.CREATE_EVALUATION: list(_EVALUATION_RULES),
    MutationKind.UPDATE_EVALUATION: list(_EVALUATION_RULES),
    MutationKind.DELETE_EVALUATION: list(_EVALUATION_RULES),
    MutationKind.APPROVE_TASK: list(_TASK_STATUS_RULES),
    MutationKind.REJECT_TASK: list(_TASK_STATUS_RULES),
}

# Scopes dropped by an explicit per-user invalidation
USER_DATA_RULES: List[ScopeRule] = [
    ScopeRule(REPORTS, None, KeyedBy.SUBJECT),
    ScopeRule(EVALUATIONS, None, KeyedBy.SUBJECT),
    ScopeRule(HIERARCHY, None, KeyedBy.SUBJECT),
]


# =============================================================================
# GRAPH
# =============================================================================

class DependencyGraph:
    """
    Mutation kind -> dependent scope rules.

    Usage:
        graph = DependencyGraph()
        plan = graph.plan_for(batch)
    """

    def __init__(self, rules: Dict[MutationKind, List[ScopeRule]] = None):
        source = rules if rules is not None else DEFAULT_RULES
        self._rules: Dict[MutationKind, List[ScopeRule]] = {
            kind: list(kind_rules) for kind, kind_rules in source.items()
        }

    def register(self, kind: MutationKind, rule: ScopeRule) -> None:
        rules = self._rules.setdefault(kind, [])
        if rule not in rules:
            rules.append(rule)

    def rules_for(self, kind: MutationKind) -> List[ScopeRule]:
        return list(self._rules.get(kind, []))

    def plan_for(self, batch: MutationBatch, viewer_id: str = None) -> InvalidationPlan:
        """Resolve every step's rules against the batch subject."""
        viewer = batch.subject.viewer_id or viewer_id
        plan = InvalidationPlan()
        for kind in batch.kinds:
            self._extend(plan, self._rules.get(kind, []), batch.subject, viewer)
        logger.debug(f"Plan for batch {batch.batch_id}: {len(plan)} action(s)")
        return plan

    def plan_for_user(self, user_id: str) -> InvalidationPlan:
        plan = InvalidationPlan()
        self._extend(plan, USER_DATA_RULES, BatchSubject(user_id=user_id), None)
        return plan

    @staticmethod
    def _extend(
        plan: InvalidationPlan,
        rules: Iterable[ScopeRule],
        subject: BatchSubject,
        viewer_id: Optional[str],
    ) -> None:
        for rule in rules:
            pattern = rule.resolve(subject, viewer_id)
            if pattern is not None:
                plan.add(pattern, rule.effective_mode)
