"""
aggregation/records.py - Plain records consumed and produced by the engine.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict

from .distribution import RankingDistribution


@dataclass(frozen=True)
class EmployeeRecord:
    """One employee's weekly report status."""
    user_id: str
    has_report: bool
    is_completed: bool
    total_tasks: int
    completed_tasks: int
    task_completion_rate: float
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "has_report": self.has_report,
            "is_completed": self.is_completed,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "task_completion_rate": self.task_completion_rate,
        }


@dataclass(frozen=True)
class GroupStats:
    """Rolled-up statistics for a group of employees."""
    total_users: int = 0
    users_with_reports: int = 0
    users_with_completed_reports: int = 0
    users_without_reports: int = 0
    submission_rate: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    average_completion_rate: int = 0
    ranking_distribution: RankingDistribution = field(default_factory=RankingDistribution)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_users": self.total_users,
            "users_with_reports": self.users_with_reports,
            "users_with_completed_reports": self.users_with_completed_reports,
            "users_without_reports": self.users_without_reports,
            "submission_rate": self.submission_rate,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "average_completion_rate": self.average_completion_rate,
            "ranking_distribution": self.ranking_distribution.to_dict(),
        }
