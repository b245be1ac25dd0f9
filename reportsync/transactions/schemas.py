"""
transactions/schemas.py - Mutation batch data structures

A MutationBatch is one user action: an ordered list of dependent remote
writes plus the subject they affect. It either commits fully and is
reconciled, or fails with no cache side effects.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from datetime import datetime, timezone
from enum import Enum
import uuid

from reportsync.core.enums import BatchStatus, BATCH_TRANSITIONS, can_transition
from reportsync.core.scope import ScopeKey

if TYPE_CHECKING:
    from reportsync.dependencies.graph import InvalidationPlan
    from reportsync.errors.taxonomy import MutationStepError


class MutationKind(Enum):
    """Remote write types."""
    CREATE_EVALUATION = "create_evaluation"
    UPDATE_EVALUATION = "update_evaluation"
    DELETE_EVALUATION = "delete_evaluation"
    APPROVE_TASK = "approve_task"
    REJECT_TASK = "reject_task"


EVALUATION_KINDS = frozenset({
    MutationKind.CREATE_EVALUATION,
    MutationKind.UPDATE_EVALUATION,
    MutationKind.DELETE_EVALUATION,
})

TASK_STATUS_KINDS = frozenset({
    MutationKind.APPROVE_TASK,
    MutationKind.REJECT_TASK,
})


@dataclass(frozen=True)
class MutationRequest:
    """
    Single remote write.

    target_id is the evaluation id for update/delete and the task id for
    create/approve/reject. A step with depends_on_previous=False may run
    concurrently with the step before it.
    """
    kind: MutationKind
    target_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    depends_on_previous: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "target_id": self.target_id,
            "payload": dict(self.payload),
            "depends_on_previous": self.depends_on_previous,
        }


@dataclass(frozen=True)
class BatchSubject:
    """Who and what a batch affects."""
    user_id: str
    task_id: Optional[str] = None
    report_id: Optional[str] = None
    week: Optional[int] = None
    year: Optional[int] = None
    viewer_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "task_id": self.task_id,
            "report_id": self.report_id,
            "week": self.week,
            "year": self.year,
            "viewer_id": self.viewer_id,
        }


@dataclass
class MutationBatch:
    """Ordered writes for one user action."""

    steps: List[MutationRequest]
    subject: BatchSubject

    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    status: BatchStatus = BatchStatus.PENDING
    description: str = ""

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def kinds(self) -> List[MutationKind]:
        return [step.kind for step in self.steps]

    def transition(self, target: BatchStatus) -> None:
        if not can_transition(BATCH_TRANSITIONS, self.status, target):
            raise ValueError(
                f"Batch {self.batch_id}: illegal transition {self.status.value} -> {target.value}"
            )
        self.status = target
        if target in (BatchStatus.RECONCILED, BatchStatus.FAILED):
            self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "description": self.description,
            "subject": self.subject.to_dict(),
            "steps": [step.to_dict() for step in self.steps],
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class WriteReceipt:
    """Remote write result carrying a read-your-writes token."""
    entity: Any = None
    consistency_token: Optional[str] = None


@dataclass(frozen=True)
class StepResult:
    index: int
    kind: MutationKind
    entity: Any = None
    consistency_token: Optional[str] = None


@dataclass
class Committed:
    """Every step of a batch succeeded; handed to the invalidation coordinator."""
    batch: MutationBatch
    results: List[StepResult]
    epoch: int
    consistency_token: Optional[str] = None


@dataclass
class BatchOutcome:
    """Final outcome of a submitted batch."""
    batch_id: str

    @property
    def ok(self) -> bool:
        return False


@dataclass
class Reconciled(BatchOutcome):
    """The batch committed and affected scopes were reconciled."""
    plan: Optional["InvalidationPlan"] = None
    refreshed: List[ScopeKey] = field(default_factory=list)
    failed: List[ScopeKey] = field(default_factory=list)
    timed_out: List[ScopeKey] = field(default_factory=list)
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return True

    @property
    def fully_refreshed(self) -> bool:
        return not self.failed and not self.timed_out


@dataclass
class Failed(BatchOutcome):
    """A step failed; no cache entry was touched."""
    step: int = 0
    error: Optional["MutationStepError"] = None


# =============================================================================
# BUILDERS
# =============================================================================

def build_evaluation_batch(
    subject: BatchSubject,
    payload: Dict[str, Any],
    evaluated_is_completed: bool,
    original_is_completed: bool,
    evaluator_is_manager: bool,
    evaluation_id: Optional[str] = None,
) -> MutationBatch:
    """
    Build the evaluate-then-maybe-approve action.

    Step 1 creates the evaluation (or updates evaluation_id). When the
    evaluator is a manager and the verdict differs from the task's original
    completion flag, step 2 approves or rejects the task.
    """
    if subject.task_id is None:
        raise ValueError("Evaluation batch requires subject.task_id")

    body = dict(payload)
    body["evaluated_is_completed"] = evaluated_is_completed

    if evaluation_id:
        steps = [MutationRequest(MutationKind.UPDATE_EVALUATION, evaluation_id, body)]
        description = "Evaluation updated"
    else:
        body["task_id"] = subject.task_id
        steps = [MutationRequest(MutationKind.CREATE_EVALUATION, subject.task_id, body)]
        description = "Evaluation created"

    if evaluator_is_manager and evaluated_is_completed != original_is_completed:
        kind = MutationKind.APPROVE_TASK if evaluated_is_completed else MutationKind.REJECT_TASK
        steps.append(MutationRequest(kind, subject.task_id, depends_on_previous=True))

    return MutationBatch(steps=steps, subject=subject, description=description)
