"""Workflow and step schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.constants import ExecutionMode, InterfaceType, StepType, TriggerType


class WorkflowStepCreate(BaseModel):
    """Request to create a workflow step."""

    name: str = Field(min_length=1, description="Human-readable step name")
    step_type: StepType = Field(description="AGENT_EXECUTION, APPROVAL, CONDITION or PARALLEL_GROUP")
    step_order: Optional[int] = Field(default=None, ge=0, description="Step order (defaults to last)")
    agent_id: Optional[str] = Field(default=None, description="Agent for AGENT_EXECUTION steps")
    input_mapping: Any = Field(default=None, description="Template tree with ${...} references")
    output_variable: Optional[str] = Field(default=None, description="Context key for the step output")
    condition_expression: Optional[str] = Field(default=None, description="Guard, e.g. ${trigger.category} == tools")
    depends_on: Optional[List[int]] = Field(default=None, description="Order indices this step depends on")
    retry_config: Optional[Dict[str, Any]] = Field(default=None, description="max_attempts, backoff, base_delay_ms")
    timeout_seconds: Optional[int] = Field(default=None, ge=1, description="Timeout for the whole step")
    approval_config: Optional[Dict[str, Any]] = Field(default=None, description="Approval policy")
    config: Optional[Dict[str, Any]] = Field(default=None, description="Extra settings (parallel members)")


class WorkflowStepUpdate(BaseModel):
    """Request to update a workflow step. Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1)
    step_type: Optional[StepType] = None
    step_order: Optional[int] = Field(default=None, ge=0)
    agent_id: Optional[str] = None
    input_mapping: Any = None
    output_variable: Optional[str] = None
    condition_expression: Optional[str] = None
    depends_on: Optional[List[int]] = None
    retry_config: Optional[Dict[str, Any]] = None
    timeout_seconds: Optional[int] = Field(default=None, ge=1)
    approval_config: Optional[Dict[str, Any]] = None
    config: Optional[Dict[str, Any]] = None


class WorkflowStepResponse(BaseModel):
    """Workflow step response."""

    id: str
    workflow_id: str
    name: str
    step_order: int
    step_type: str
    agent_id: Optional[str] = None
    input_mapping: Any = None
    output_variable: Optional[str] = None
    condition_expression: Optional[str] = None
    depends_on: Optional[List[int]] = None
    retry_config: Optional[Dict[str, Any]] = None
    timeout_seconds: Optional[int] = None
    approval_config: Optional[Dict[str, Any]] = None
    config: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: Optional[str] = Field(default="", description="Workflow description")
    trigger_type: TriggerType = Field(default=TriggerType.MANUAL)
    execution_mode: ExecutionMode = Field(default=ExecutionMode.SYNC)
    input_schema: Optional[Dict[str, Any]] = Field(default=None, description="JSON Schema for the trigger payload")
    interface_type: InterfaceType = Field(default=InterfaceType.FORM)
    is_public: bool = Field(default=False, description="Allow the public start endpoint")
    is_active: bool = Field(default=True)
    trigger_config: Optional[Dict[str, Any]] = None
    steps: List[WorkflowStepCreate] = Field(default=[], description="Steps in execution order")


class WorkflowUpdate(BaseModel):
    """Request to update a workflow."""

    name: Optional[str] = Field(default=None, min_length=1, description="Workflow name")
    description: Optional[str] = Field(default=None, description="Workflow description")
    trigger_type: Optional[TriggerType] = None
    execution_mode: Optional[ExecutionMode] = None
    input_schema: Optional[Dict[str, Any]] = None
    interface_type: Optional[InterfaceType] = None
    is_public: Optional[bool] = None
    trigger_config: Optional[Dict[str, Any]] = None


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str = Field(description="Workflow ID")
    name: str = Field(description="Workflow name")
    description: str = Field(description="Workflow description")
    trigger_type: str
    execution_mode: str
    is_active: bool
    input_schema: Optional[Dict[str, Any]] = None
    interface_type: str
    is_public: bool
    trigger_config: Optional[Dict[str, Any]] = None
    steps: List[WorkflowStepResponse] = Field(default=[], description="Live steps in order")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")

    class Config:
        from_attributes = True


class WorkflowListResponse(BaseModel):
    """Paginated list of workflows."""

    workflows: List[WorkflowResponse] = Field(description="List of workflows")
    total: int = Field(description="Total number of workflows")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class StepReorderRequest(BaseModel):
    """New step order, as the full list of step IDs."""

    step_ids: List[str] = Field(min_length=1)


class ExecuteRequest(BaseModel):
    """Request to start a workflow execution."""

    payload: Dict[str, Any] = Field(default={}, description="Trigger payload")
    mode: Optional[ExecutionMode] = Field(default=None, description="Override the workflow's execution mode")
