"""Workflow execution history and management endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import logging

from api.schemas.common import PaginationParams
from api.schemas.execution import (
    AgentExecutionResponse,
    ApprovalResponse,
    ExecutionListResponse,
    ExecutionResponse,
)
from app.dependencies import get_db, get_orchestrator
from core.utils import calculate_offset
from services.workflow_service import ExecutionService
from workflow.engine import WorkflowOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


@router.get("/", response_model=ExecutionListResponse)
async def list_executions(
    pagination: PaginationParams = Depends(),
    workflow_id: Optional[str] = Query(None, description="Filter by workflow ID"),
    exec_status: Optional[str] = Query(None, alias="status", description="Filter by execution status"),
    db: AsyncSession = Depends(get_db),
) -> ExecutionListResponse:
    """
    List workflow executions (paginated, filterable).
    """
    svc = ExecutionService(db)
    offset = calculate_offset(pagination.page, pagination.per_page)
    executions, total = await svc.list_executions(
        workflow_id=workflow_id,
        status=exec_status,
        offset=offset,
        limit=pagination.per_page,
    )
    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(ex) for ex in executions],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> ExecutionResponse:
    """
    Get an execution: status, context, step results and error.
    """
    execution = await orchestrator.get_execution(execution_id)
    return ExecutionResponse.model_validate(execution)


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse)
async def cancel_execution(
    execution_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> ExecutionResponse:
    """
    Cancel a pending or running execution. 409 if it already finished.
    """
    execution = await orchestrator.cancel_execution(execution_id)
    return ExecutionResponse.model_validate(execution)


@router.get("/{execution_id}/agent-executions", response_model=List[AgentExecutionResponse])
async def list_agent_executions(
    execution_id: str,
    db: AsyncSession = Depends(get_db),
) -> List[AgentExecutionResponse]:
    """
    Every agent attempt recorded for this execution, oldest first.
    """
    records = await ExecutionService(db).list_agent_records(execution_id)
    return [AgentExecutionResponse.model_validate(r) for r in records]


@router.get("/{execution_id}/approvals", response_model=List[ApprovalResponse])
async def list_execution_approvals(
    execution_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> List[ApprovalResponse]:
    await orchestrator.get_execution(execution_id)
    approvals = await orchestrator.approval_gate.list_for_execution(execution_id)
    return [ApprovalResponse.model_validate(a) for a in approvals]
