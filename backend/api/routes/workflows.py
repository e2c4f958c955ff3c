"""Workflow endpoints: CRUD, steps, activation and execution."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import PaginationParams
from api.schemas.execution import ExecutionResponse
from api.schemas.workflow import (
    ExecuteRequest,
    StepReorderRequest,
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowStepCreate,
    WorkflowStepResponse,
    WorkflowStepUpdate,
    WorkflowUpdate,
)
from app.dependencies import get_db, get_orchestrator
from core.constants import ExecutionStatus
from core.utils import calculate_offset
from services.workflow_service import WorkflowService
from workflow.engine import WorkflowOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


def _workflow_to_response(wf) -> WorkflowResponse:
    """Convert a Workflow ORM object to response schema."""
    return WorkflowResponse(
        id=wf.id,
        name=wf.name,
        description=wf.description or "",
        trigger_type=wf.trigger_type,
        execution_mode=wf.execution_mode,
        is_active=wf.is_active,
        input_schema=wf.input_schema,
        interface_type=wf.interface_type,
        is_public=wf.is_public,
        trigger_config=wf.trigger_config,
        steps=[WorkflowStepResponse.model_validate(s) for s in WorkflowService.live_steps(wf)],
        created_at=wf.created_at,
        updated_at=wf.updated_at,
    )


def _execution_response(execution) -> Response:
    """Execution body; a synchronous run that failed is reported as HTTP 500."""
    body = ExecutionResponse.model_validate(execution)
    status_code = 500 if execution.status == ExecutionStatus.FAILED.value else 200
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


# ─── Execution ────────────────────────────────────────────────

@router.post("/public/{workflow_id}/execute", response_model=ExecutionResponse)
async def execute_public_workflow(
    workflow_id: str,
    request: ExecuteRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Start a workflow without authentication. Only workflows flagged
    is_public may be started here (403 otherwise).
    """
    execution = await orchestrator.start_public_execution(workflow_id, request.payload, mode=request.mode)
    return _execution_response(execution)


@router.post("/{workflow_id}/execute", response_model=ExecutionResponse)
async def execute_workflow(
    workflow_id: str,
    request: ExecuteRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Start a workflow execution.

    Sync workflows return the finished (or approval-suspended) execution;
    async workflows return it while it is still running.
    """
    execution = await orchestrator.start_execution(workflow_id, request.payload, mode=request.mode)
    return _execution_response(execution)


# ─── Workflows ────────────────────────────────────────────────

@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
) -> WorkflowListResponse:
    """
    List workflows (paginated).
    """
    svc = WorkflowService(db)
    offset = calculate_offset(pagination.page, pagination.per_page)
    workflows, total = await svc.list(offset=offset, limit=pagination.per_page)

    return WorkflowListResponse(
        workflows=[_workflow_to_response(wf) for wf in workflows],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Create a workflow together with its steps.
    """
    svc = WorkflowService(db)
    data = request.model_dump(mode="json", exclude={"name", "description", "steps"})
    wf = await svc.create_workflow(
        name=request.name,
        description=request.description or "",
        steps=[s.model_dump(mode="json", exclude_unset=True) for s in request.steps],
        **data,
    )
    return _workflow_to_response(wf)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Get workflow details with its steps.
    """
    wf = await WorkflowService(db).get_workflow(workflow_id)
    return _workflow_to_response(wf)


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Update workflow fields. Steps are edited through the step endpoints.
    """
    data = request.model_dump(mode="json", exclude_unset=True)
    wf = await WorkflowService(db).update_workflow(workflow_id, data)
    return _workflow_to_response(wf)


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Soft-delete a workflow. Refused with 409 while executions are in progress.
    """
    await WorkflowService(db).delete_workflow(workflow_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{workflow_id}/activate", response_model=WorkflowResponse)
async def activate_workflow(workflow_id: str, db: AsyncSession = Depends(get_db)) -> WorkflowResponse:
    wf = await WorkflowService(db).set_active(workflow_id, True)
    return _workflow_to_response(wf)


@router.post("/{workflow_id}/deactivate", response_model=WorkflowResponse)
async def deactivate_workflow(workflow_id: str, db: AsyncSession = Depends(get_db)) -> WorkflowResponse:
    wf = await WorkflowService(db).set_active(workflow_id, False)
    return _workflow_to_response(wf)


# ─── Steps ────────────────────────────────────────────────────

@router.post(
    "/{workflow_id}/steps",
    response_model=WorkflowStepResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_step(
    workflow_id: str,
    request: WorkflowStepCreate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowStepResponse:
    step = await WorkflowService(db).add_step(workflow_id, request.model_dump(mode="json", exclude_unset=True))
    return WorkflowStepResponse.model_validate(step)


@router.put("/{workflow_id}/steps/{step_id}", response_model=WorkflowStepResponse)
async def update_step(
    workflow_id: str,
    step_id: str,
    request: WorkflowStepUpdate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowStepResponse:
    data = request.model_dump(mode="json", exclude_unset=True)
    step = await WorkflowService(db).update_step(workflow_id, step_id, data)
    return WorkflowStepResponse.model_validate(step)


@router.delete("/{workflow_id}/steps/{step_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_step(
    workflow_id: str,
    step_id: str,
    db: AsyncSession = Depends(get_db),
):
    await WorkflowService(db).remove_step(workflow_id, step_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{workflow_id}/steps/reorder", response_model=WorkflowResponse)
async def reorder_steps(
    workflow_id: str,
    request: StepReorderRequest,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    wf = await WorkflowService(db).reorder_steps(workflow_id, request.step_ids)
    return _workflow_to_response(wf)
