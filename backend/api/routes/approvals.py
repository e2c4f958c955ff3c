"""Approval queue endpoints: list pending requests and decide them."""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional
import logging

from api.schemas.execution import ApprovalCountResponse, ApprovalDecision, ApprovalResponse
from app.dependencies import get_orchestrator
from workflow.engine import WorkflowOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["approvals"])


@router.get("/pending", response_model=List[ApprovalResponse])
async def list_pending_approvals(
    role: Optional[str] = Query(None, description="Only requests requiring this role"),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> List[ApprovalResponse]:
    approvals = await orchestrator.approval_gate.list_pending(role)
    return [ApprovalResponse.model_validate(a) for a in approvals]


@router.get("/pending/count", response_model=ApprovalCountResponse)
async def count_pending_approvals(
    role: Optional[str] = Query(None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> ApprovalCountResponse:
    return ApprovalCountResponse(pending=await orchestrator.approval_gate.count_pending(role))


@router.get("/{approval_id}", response_model=ApprovalResponse)
async def get_approval(
    approval_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> ApprovalResponse:
    return ApprovalResponse.model_validate(await orchestrator.approval_gate.get(approval_id))


@router.post("/{approval_id}/approve", response_model=ApprovalResponse)
async def approve(
    approval_id: str,
    request: ApprovalDecision,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> ApprovalResponse:
    """
    Approve a pending request and resume its execution.
    409 if the request was already decided or timed out.
    """
    approval = await orchestrator.resolve_approval(approval_id, True, request.approver, request.comments)
    return ApprovalResponse.model_validate(approval)


@router.post("/{approval_id}/reject", response_model=ApprovalResponse)
async def reject(
    approval_id: str,
    request: ApprovalDecision,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> ApprovalResponse:
    """
    Reject a pending request; the step's on_reject policy decides
    whether the execution fails or skips the step.
    """
    approval = await orchestrator.resolve_approval(approval_id, False, request.approver, request.comments)
    return ApprovalResponse.model_validate(approval)
