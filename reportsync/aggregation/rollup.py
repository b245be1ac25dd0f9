"""
aggregation/rollup.py - Group statistics and roll-ups

Summarizes employees into GroupStats and sums GroupStats upward
(job position -> position -> department -> view).

ORDERING: employees and groups sort by completion rate descending, then
name ascending, then id, so identical inputs give identical outputs
regardless of arrival order.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
import hashlib
import json

from .distribution import aggregate, merge, percent
from .records import EmployeeRecord, GroupStats


UNASSIGNED_DEPARTMENT_ID = "unknown"
UNASSIGNED_DEPARTMENT_NAME = "Unassigned"


# =============================================================================
# ORDERING
# =============================================================================

def employee_sort_key(employee: EmployeeRecord) -> Tuple[float, str, str]:
    return (-employee.task_completion_rate, employee.name, employee.user_id)


def sort_employees(employees: Iterable[EmployeeRecord]) -> List[EmployeeRecord]:
    return sorted(employees, key=employee_sort_key)


# =============================================================================
# SUMMARIES
# =============================================================================

def summarize_employees(employees: Iterable[EmployeeRecord]) -> GroupStats:
    """Stats for one group of employees; task completion is task-weighted."""
    employees = list(employees)
    total_users = len(employees)
    with_reports = sum(1 for e in employees if e.has_report)
    completed_reports = sum(1 for e in employees if e.is_completed)
    total_tasks = sum(e.total_tasks for e in employees)
    completed_tasks = sum(e.completed_tasks for e in employees)

    return GroupStats(
        total_users=total_users,
        users_with_reports=with_reports,
        users_with_completed_reports=completed_reports,
        users_without_reports=total_users - with_reports,
        submission_rate=percent(with_reports, total_users),
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        average_completion_rate=percent(completed_tasks, total_tasks),
        ranking_distribution=aggregate(employees),
    )


def roll_up(groups: Iterable[GroupStats]) -> GroupStats:
    """
    Sum group stats.

    Rates are recomputed from the summed counters, never averaged, so a
    small group cannot outweigh a large one.
    """
    groups = list(groups)
    total_users = sum(g.total_users for g in groups)
    with_reports = sum(g.users_with_reports for g in groups)
    total_tasks = sum(g.total_tasks for g in groups)
    completed_tasks = sum(g.completed_tasks for g in groups)

    return GroupStats(
        total_users=total_users,
        users_with_reports=with_reports,
        users_with_completed_reports=sum(g.users_with_completed_reports for g in groups),
        users_without_reports=sum(g.users_without_reports for g in groups),
        submission_rate=percent(with_reports, total_users),
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        average_completion_rate=percent(completed_tasks, total_tasks),
        ranking_distribution=merge(g.ranking_distribution for g in groups),
    )


# =============================================================================
# NAMED GROUPS
# =============================================================================

@dataclass(frozen=True)
class GroupSummary:
    """A position or job-position group with its stats."""
    group_id: str
    name: str
    stats: GroupStats
    kind: str = "position"
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    employees: Tuple[EmployeeRecord, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "name": self.name,
            "kind": self.kind,
            "department_id": self.department_id,
            "department_name": self.department_name,
            "stats": self.stats.to_dict(),
            "employees": [e.to_dict() for e in self.employees],
        }


def group_sort_key(group: GroupSummary) -> Tuple[float, str, str]:
    return (-group.stats.average_completion_rate, group.name, group.group_id)


def sort_groups(groups: Iterable[GroupSummary]) -> List[GroupSummary]:
    return sorted(groups, key=group_sort_key)


def content_group_id(
    prefix: str,
    name: str,
    employees: Iterable[EmployeeRecord] = (),
    stats: Optional[GroupStats] = None,
) -> str:
    """
    Id for a group the payload sent without one.

    Derived from the group's name, members and counters, never from its
    position in the payload, so reordering the input keeps every id.
    """
    content = {
        "name": name,
        "employees": [e.to_dict() for e in sort_employees(employees)],
        "stats": stats.to_dict() if stats is not None else None,
    }
    digest = hashlib.sha1(json.dumps(content, sort_keys=True).encode("utf-8")).hexdigest()
    return f"{prefix}-{digest[:10]}"


@dataclass(frozen=True)
class DepartmentSummary:
    department_id: str
    name: str
    stats: GroupStats
    group_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "department_id": self.department_id,
            "name": self.name,
            "group_count": self.group_count,
            "stats": self.stats.to_dict(),
        }


def group_by_department(groups: Iterable[GroupSummary]) -> List[DepartmentSummary]:
    """Roll groups up per department; groups without one go to 'unknown'."""
    buckets: Dict[str, List[GroupSummary]] = {}
    names: Dict[str, str] = {}
    for group in groups:
        dept_id = group.department_id or UNASSIGNED_DEPARTMENT_ID
        buckets.setdefault(dept_id, []).append(group)
        if dept_id not in names:
            names[dept_id] = group.department_name or UNASSIGNED_DEPARTMENT_NAME

    departments = [
        DepartmentSummary(
            department_id=dept_id,
            name=names[dept_id],
            stats=roll_up(g.stats for g in members),
            group_count=len(members),
        )
        for dept_id, members in buckets.items()
    ]
    return sorted(
        departments,
        key=lambda d: (-d.stats.average_completion_rate, d.name, d.department_id),
    )
