"""Execution, agent attempt and approval schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class ExecutionResponse(BaseModel):
    """Execution run information response."""

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    trigger_type: str = Field(description="How execution was triggered (manual, scheduled, event)")
    status: str = Field(description="Execution status (pending, running, completed, failed)")
    trigger_payload: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = Field(default=None, description="Variables written so far")
    step_results: Optional[Dict[str, Any]] = Field(default=None, description="Per-step results keyed by step ID")
    current_step_index: Optional[int] = None
    started_at: Optional[datetime] = Field(default=None, description="Execution start timestamp")
    completed_at: Optional[datetime] = Field(default=None, description="Execution completion timestamp")
    duration_ms: Optional[int] = Field(default=None, description="Execution duration in milliseconds")
    error_message: Optional[str] = Field(default=None, description="Error message if execution failed")

    class Config:
        from_attributes = True


class ExecutionListResponse(BaseModel):
    """Paginated list of executions."""

    executions: List[ExecutionResponse] = Field(description="List of executions")
    total: int = Field(description="Total number of executions")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class AgentExecutionResponse(BaseModel):
    """One attempt of an agent step."""

    id: str
    execution_id: str
    step_id: str
    agent_id: Optional[str] = None
    attempt: int
    status: str
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Dict[str, Any]] = None
    input_tokens: int = 0
    output_tokens: int = 0
    turns: int = 0
    tool_calls: Optional[List[Dict[str, Any]]] = None
    latency_ms: Optional[int] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApprovalDecision(BaseModel):
    """Approve or reject request body."""

    approver: Optional[str] = Field(default=None, description="Who decided")
    comments: Optional[str] = Field(default=None, description="Reason or notes")


class ApprovalResponse(BaseModel):
    """Approval request response."""

    id: str
    execution_id: str
    step_id: str
    status: str
    required_role: Optional[str] = None
    approver: Optional[str] = None
    decided_at: Optional[datetime] = None
    comments: Optional[str] = None
    timeout_at: Optional[datetime] = None
    payload: Any = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovalCountResponse(BaseModel):
    """Number of pending approvals."""

    pending: int
