"""
aggregation/engine.py - View statistics

Pure functions from validated hierarchy payloads to the statistics the
dashboards render. No I/O and no cache access.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .records import GroupStats
from .rollup import (
    DepartmentSummary,
    GroupSummary,
    content_group_id,
    group_by_department,
    roll_up,
    sort_employees,
    sort_groups,
    summarize_employees,
)
from .views import (
    EmptyView,
    JobPositionGroup,
    ManagementView,
    ManagerReportsView,
    MixedView,
    PositionGroup,
    StaffView,
)


@dataclass(frozen=True)
class ViewStatistics:
    """Everything a hierarchy dashboard shows for one week."""
    view_type: str
    week: Optional[int]
    year: Optional[int]
    overall: GroupStats
    groups: Tuple[GroupSummary, ...] = field(default_factory=tuple)
    departments: Tuple[DepartmentSummary, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view_type": self.view_type,
            "week": self.week,
            "year": self.year,
            "overall": self.overall.to_dict(),
            "groups": [g.to_dict() for g in self.groups],
            "departments": [d.to_dict() for d in self.departments],
        }


def _position_summary(group: PositionGroup) -> GroupSummary:
    employees = sort_employees(entry.to_record() for entry in group.users)
    stats = summarize_employees(employees) if employees else group.stats.to_group_stats()
    return GroupSummary(
        group_id=group.position.id or content_group_id("pos", group.position.name, employees, stats),
        name=group.position.name,
        stats=stats,
        kind="position",
        employees=tuple(employees),
    )


def _job_position_summary(group: JobPositionGroup) -> GroupSummary:
    employees = sort_employees(entry.to_record() for entry in group.users)
    stats = summarize_employees(employees) if employees else group.stats.to_group_stats()
    department = group.job_position.department
    return GroupSummary(
        group_id=group.job_position.id or content_group_id("job", group.job_position.job_name, employees, stats),
        name=group.job_position.job_name,
        stats=stats,
        kind="job_position",
        department_id=department.id if department and department.id else None,
        department_name=department.name if department and department.name else None,
        employees=tuple(employees),
    )


def summarize_view(
    view: Union[ManagementView, StaffView, MixedView, EmptyView],
) -> ViewStatistics:
    """
    Statistics for any hierarchy view variant.

    Groups that carry their employees are summarized from them; groups that
    only carry server counters use those counters. The overall figures are a
    roll-up of the groups.
    """
    groups: List[GroupSummary] = []
    if isinstance(view, (ManagementView, MixedView)):
        groups.extend(_position_summary(g) for g in view.positions)
    if isinstance(view, (StaffView, MixedView)):
        groups.extend(_job_position_summary(g) for g in view.job_positions)

    ordered = sort_groups(groups)
    departments = group_by_department(g for g in ordered if g.kind == "job_position")
    return ViewStatistics(
        view_type=view.view_type,
        week=view.week_number,
        year=view.year,
        overall=roll_up(g.stats for g in ordered),
        groups=tuple(ordered),
        departments=tuple(departments),
    )


def transform_manager_reports(view: ManagerReportsView) -> List[GroupSummary]:
    """One group per (position, job position) pair, summarized from its employees."""
    groups: List[GroupSummary] = []
    for position_group in view.grouped_reports:
        position_id = position_group.position.id or content_group_id(
            "pos",
            position_group.position.name,
            (entry.to_record() for job in position_group.job_positions for entry in job.employees),
        )
        for job_group in position_group.job_positions:
            employees = sort_employees(entry.to_record() for entry in job_group.employees)
            job_id = job_group.job_position.id or content_group_id(
                "job", job_group.job_position.job_name, employees,
            )
            department = job_group.job_position.department
            groups.append(GroupSummary(
                group_id=f"{position_id}-{job_id}",
                name=job_group.job_position.job_name or position_group.position.name,
                stats=summarize_employees(employees),
                kind="job_position",
                department_id=department.id if department and department.id else None,
                department_name=department.name if department and department.name else None,
                employees=tuple(employees),
            ))
    return sort_groups(groups)


def summarize_manager_reports(view: ManagerReportsView) -> ViewStatistics:
    groups = transform_manager_reports(view)
    return ViewStatistics(
        view_type="manager_reports",
        week=view.week_number,
        year=view.year,
        overall=roll_up(g.stats for g in groups),
        groups=tuple(groups),
        departments=tuple(group_by_department(groups)),
    )
