"""
aggregation/views.py - Pydantic models for hierarchy payloads

Validates the camelCase hierarchy and manager-report responses at the
boundary. A hierarchy view is a tagged union discriminated by `viewType`:
management, staff, mixed or empty.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from reportsync.errors.taxonomy import ViewValidationError

from .classification import RankingBucket
from .distribution import RankingDistribution, percent
from .records import EmployeeRecord, GroupStats


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Organization references
# =============================================================================


class DepartmentRef(ApiModel):
    id: str = ""
    name: str = ""


class PositionRef(ApiModel):
    id: str = ""
    name: str = ""
    level: int = 1
    description: Optional[str] = None
    is_management: bool = False


class JobPositionRef(ApiModel):
    id: str = ""
    job_name: str = ""
    code: str = ""
    department: Optional[DepartmentRef] = None


# =============================================================================
# Employees
# =============================================================================


class EmployeeUser(ApiModel):
    id: str = Field(..., min_length=1)
    employee_code: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    job_position: Optional[JobPositionRef] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class EmployeeStats(ApiModel):
    """Weekly report status for one employee."""

    has_report: bool = False
    is_completed: bool = False
    total_tasks: int = Field(default=0, ge=0)
    completed_tasks: int = Field(default=0, ge=0)
    task_completion_rate: float = Field(default=0.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _completed_within_total(self) -> "EmployeeStats":
        if self.completed_tasks > self.total_tasks:
            raise ValueError(
                f"completedTasks ({self.completed_tasks}) exceeds totalTasks ({self.total_tasks})"
            )
        return self


class EmployeeEntry(ApiModel):
    user: EmployeeUser
    stats: EmployeeStats = Field(default_factory=EmployeeStats)

    def to_record(self) -> EmployeeRecord:
        return EmployeeRecord(
            user_id=self.user.id,
            has_report=self.stats.has_report,
            is_completed=self.stats.is_completed,
            total_tasks=self.stats.total_tasks,
            completed_tasks=self.stats.completed_tasks,
            task_completion_rate=self.stats.task_completion_rate,
            name=self.user.full_name or self.user.employee_code,
        )


# =============================================================================
# Group statistics as reported by the server
# =============================================================================


class BucketCount(ApiModel):
    count: int = Field(default=0, ge=0)
    percentage: float = 0.0


class ReportedStats(ApiModel):
    """Server-side group counters. Derived rates are recomputed locally."""

    total_users: int = Field(default=0, ge=0)
    users_with_reports: int = Field(default=0, ge=0)
    users_with_completed_reports: int = Field(default=0, ge=0)
    users_without_reports: int = Field(default=0, ge=0)
    submission_rate: float = 0.0
    total_tasks: int = Field(default=0, ge=0)
    completed_tasks: int = Field(default=0, ge=0)
    average_completion_rate: float = 0.0
    ranking_distribution: Optional[Dict[str, BucketCount]] = None

    def to_group_stats(self) -> GroupStats:
        counts = {}
        for bucket in RankingBucket:
            entry = (self.ranking_distribution or {}).get(bucket.value)
            counts[bucket] = entry.count if entry else 0

        return GroupStats(
            total_users=self.total_users,
            users_with_reports=self.users_with_reports,
            users_with_completed_reports=self.users_with_completed_reports,
            users_without_reports=self.users_without_reports,
            submission_rate=percent(self.users_with_reports, self.total_users),
            total_tasks=self.total_tasks,
            completed_tasks=self.completed_tasks,
            average_completion_rate=percent(self.completed_tasks, self.total_tasks),
            ranking_distribution=RankingDistribution.from_counts(counts),
        )


# =============================================================================
# Hierarchy view groups
# =============================================================================


class PositionGroup(ApiModel):
    position: PositionRef = Field(default_factory=PositionRef)
    stats: ReportedStats = Field(default_factory=ReportedStats)
    user_count: int = Field(default=0, ge=0)
    users: List[EmployeeEntry] = Field(default_factory=list)


class JobPositionGroup(ApiModel):
    job_position: JobPositionRef = Field(default_factory=JobPositionRef)
    stats: ReportedStats = Field(default_factory=ReportedStats)
    user_count: int = Field(default=0, ge=0)
    users: List[EmployeeEntry] = Field(default_factory=list)


class _ViewBase(ApiModel):
    week_number: int = Field(..., ge=1, le=53)
    year: int = Field(..., ge=2000)
    summary: Dict[str, Any] = Field(default_factory=dict)


class ManagementView(_ViewBase):
    view_type: Literal["management"]
    group_by: Literal["position"] = "position"
    positions: List[PositionGroup] = Field(default_factory=list)


class StaffView(_ViewBase):
    view_type: Literal["staff"]
    group_by: Literal["jobPosition"] = "jobPosition"
    job_positions: List[JobPositionGroup] = Field(default_factory=list)


class MixedView(_ViewBase):
    view_type: Literal["mixed"]
    group_by: Literal["mixed"] = "mixed"
    positions: List[PositionGroup] = Field(default_factory=list)
    job_positions: List[JobPositionGroup] = Field(default_factory=list)


class EmptyView(_ViewBase):
    view_type: Literal["empty"]
    group_by: Literal["none"] = "none"


HierarchyView = Annotated[
    Union[ManagementView, StaffView, MixedView, EmptyView],
    Field(discriminator="view_type"),
]


# =============================================================================
# Manager reports (position -> job position -> employees)
# =============================================================================


class ManagerJobPositionGroup(ApiModel):
    job_position: JobPositionRef = Field(default_factory=JobPositionRef)
    employees: List[EmployeeEntry] = Field(default_factory=list)


class ManagerPositionGroup(ApiModel):
    position: PositionRef = Field(default_factory=PositionRef)
    job_positions: List[ManagerJobPositionGroup] = Field(default_factory=list)


class ManagerReportsView(ApiModel):
    week_number: Optional[int] = Field(default=None, ge=1, le=53)
    year: Optional[int] = None
    grouped_reports: List[ManagerPositionGroup] = Field(default_factory=list)


# =============================================================================
# Parsers
# =============================================================================


_HIERARCHY_ADAPTER: TypeAdapter = TypeAdapter(HierarchyView)


def _validate(adapter_or_model: Any, payload: Any, what: str) -> Any:
    try:
        if isinstance(payload, (str, bytes)):
            if isinstance(adapter_or_model, TypeAdapter):
                return adapter_or_model.validate_json(payload)
            return adapter_or_model.model_validate_json(payload)
        if isinstance(adapter_or_model, TypeAdapter):
            return adapter_or_model.validate_python(payload)
        return adapter_or_model.model_validate(payload)
    except ValidationError as e:
        raise ViewValidationError(
            f"Invalid {what}: {e.error_count()} error(s)",
            errors=e.errors(include_context=False),
        ) from e


def parse_hierarchy_view(payload: Any) -> Union[ManagementView, StaffView, MixedView, EmptyView]:
    """Validate a hierarchy response (dict or JSON text) into its tagged variant."""
    return _validate(_HIERARCHY_ADAPTER, payload, "hierarchy view")


def parse_manager_reports(payload: Any) -> ManagerReportsView:
    return _validate(ManagerReportsView, payload, "manager reports")
