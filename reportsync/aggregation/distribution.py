"""
aggregation/distribution.py - Ranking distributions

Counts employees per ranking bucket and converts counts to whole-number
percentages of the total.

INVARIANTS:
- Bucket counts sum to the total
- Every percentage is 0 when the total is 0
- Percentages are rounded half-up
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping
import math

from .classification import BUCKET_ORDER, RankingBucket, classify


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percent(part: int, total: int) -> int:
    """round(part / total * 100), or 0 when total is 0."""
    if total <= 0:
        return 0
    return round_half_up(part / total * 100)


@dataclass(frozen=True)
class BucketStat:
    count: int = 0
    percentage: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"count": self.count, "percentage": self.percentage}


@dataclass(frozen=True)
class RankingDistribution:
    """Count and percentage for each ranking bucket."""
    excellent: BucketStat = BucketStat()
    good: BucketStat = BucketStat()
    average: BucketStat = BucketStat()
    poor: BucketStat = BucketStat()
    fail: BucketStat = BucketStat()

    @classmethod
    def from_counts(cls, counts: Mapping[RankingBucket, int]) -> "RankingDistribution":
        total = sum(counts.get(bucket, 0) for bucket in BUCKET_ORDER)
        return cls(**{
            bucket.value: BucketStat(counts.get(bucket, 0), percent(counts.get(bucket, 0), total))
            for bucket in BUCKET_ORDER
        })

    @property
    def total(self) -> int:
        return sum(self.get(bucket).count for bucket in BUCKET_ORDER)

    def get(self, bucket: RankingBucket) -> BucketStat:
        return getattr(self, bucket.value)

    def counts(self) -> Dict[RankingBucket, int]:
        return {bucket: self.get(bucket).count for bucket in BUCKET_ORDER}

    def to_dict(self) -> Dict[str, Any]:
        return {bucket.value: self.get(bucket).to_dict() for bucket in BUCKET_ORDER}


def aggregate(employees: Iterable[Any]) -> RankingDistribution:
    """Distribution of employees by task_completion_rate."""
    counts = {bucket: 0 for bucket in BUCKET_ORDER}
    for employee in employees:
        counts[classify(employee.task_completion_rate)] += 1
    return RankingDistribution.from_counts(counts)


def merge(distributions: Iterable[RankingDistribution]) -> RankingDistribution:
    """Sum counts across distributions and recompute percentages."""
    counts = {bucket: 0 for bucket in BUCKET_ORDER}
    for distribution in distributions:
        for bucket, count in distribution.counts().items():
            counts[bucket] += count
    return RankingDistribution.from_counts(counts)
