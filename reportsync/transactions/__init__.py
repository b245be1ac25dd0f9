"""
transactions/ - Mutation batches and the pipeline that commits them.
"""

from .schemas import (
    MutationKind,
    EVALUATION_KINDS,
    TASK_STATUS_KINDS,
    MutationRequest,
    BatchSubject,
    MutationBatch,
    WriteReceipt,
    StepResult,
    Committed,
    BatchOutcome,
    Reconciled,
    Failed,
    build_evaluation_batch,
)

from .remote import ReportApi, dispatch, unwrap

from .pipeline import MutationPipeline, group_steps

__all__ = [
    # Schemas
    "MutationKind",
    "EVALUATION_KINDS",
    "TASK_STATUS_KINDS",
    "MutationRequest",
    "BatchSubject",
    "MutationBatch",
    "WriteReceipt",
    "StepResult",
    "Committed",
    "BatchOutcome",
    "Reconciled",
    "Failed",
    "build_evaluation_batch",
    # Remote
    "ReportApi",
    "dispatch",
    "unwrap",
    # Pipeline
    "MutationPipeline",
    "group_steps",
]
