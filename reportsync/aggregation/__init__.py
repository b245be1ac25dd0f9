"""
aggregation/ - Aggregation Engine

Pure functions from employee and grouping records to ranking
distributions and rolled-up statistics, plus boundary validation of the
hierarchy payloads they are computed from.
"""

from .classification import (
    RankingBucket,
    BUCKET_ORDER,
    PerformanceLevel,
    PERFORMANCE_LEVELS,
    clamp_rate,
    classify,
    performance_level,
)

from .distribution import (
    BucketStat,
    RankingDistribution,
    aggregate,
    merge,
    percent,
    round_half_up,
)

from .records import EmployeeRecord, GroupStats

from .rollup import (
    GroupSummary,
    DepartmentSummary,
    summarize_employees,
    roll_up,
    group_by_department,
    sort_employees,
    sort_groups,
    content_group_id,
)

from .views import (
    EmployeeEntry,
    EmployeeStats,
    PositionGroup,
    JobPositionGroup,
    ManagementView,
    StaffView,
    MixedView,
    EmptyView,
    HierarchyView,
    ManagerReportsView,
    parse_hierarchy_view,
    parse_manager_reports,
)

from .engine import (
    ViewStatistics,
    summarize_view,
    summarize_manager_reports,
    transform_manager_reports,
)

__all__ = [
    # Classification
    "RankingBucket",
    "BUCKET_ORDER",
    "PerformanceLevel",
    "PERFORMANCE_LEVELS",
    "clamp_rate",
    "classify",
    "performance_level",
    # Distribution
    "BucketStat",
    "RankingDistribution",
    "aggregate",
    "merge",
    "percent",
    "round_half_up",
    # Records
    "EmployeeRecord",
    "GroupStats",
    # Rollup
    "GroupSummary",
    "DepartmentSummary",
    "summarize_employees",
    "roll_up",
    "group_by_department",
    "sort_employees",
    "sort_groups",
    "content_group_id",
    # Views
    "EmployeeEntry",
    "EmployeeStats",
    "PositionGroup",
    "JobPositionGroup",
    "ManagementView",
    "StaffView",
    "MixedView",
    "EmptyView",
    "HierarchyView",
    "ManagerReportsView",
    "parse_hierarchy_view",
    "parse_manager_reports",
    # Engine
    "ViewStatistics",
    "summarize_view",
    "summarize_manager_reports",
    "transform_manager_reports",
]
