"""
transactions/remote.py - Remote write interface.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Protocol, Tuple

from .schemas import MutationKind, MutationRequest, WriteReceipt


class ReportApi(Protocol):
    """
    Remote source of truth for writes.

    Each method returns the written entity or a WriteReceipt; raising means
    the write failed.
    """

    async def create_evaluation(self, payload: Dict[str, Any]) -> Any: ...

    async def update_evaluation(self, evaluation_id: str, payload: Dict[str, Any]) -> Any: ...

    async def delete_evaluation(self, evaluation_id: str) -> Any: ...

    async def approve_task(self, task_id: str) -> Any: ...

    async def reject_task(self, task_id: str) -> Any: ...


async def dispatch(api: ReportApi, request: MutationRequest) -> Any:
    """Route one request to the matching ReportApi method."""
    kind = request.kind
    if kind == MutationKind.CREATE_EVALUATION:
        return await api.create_evaluation(dict(request.payload))
    if kind == MutationKind.UPDATE_EVALUATION:
        return await api.update_evaluation(request.target_id, dict(request.payload))
    if kind == MutationKind.DELETE_EVALUATION:
        return await api.delete_evaluation(request.target_id)
    if kind == MutationKind.APPROVE_TASK:
        return await api.approve_task(request.target_id)
    if kind == MutationKind.REJECT_TASK:
        return await api.reject_task(request.target_id)
    raise ValueError(f"Unknown mutation kind: {kind}")


def unwrap(result: Any) -> Tuple[Any, Optional[str]]:
    """Split a write result into (entity, consistency_token)."""
    if isinstance(result, WriteReceipt):
        return result.entity, result.consistency_token
    return result, None
