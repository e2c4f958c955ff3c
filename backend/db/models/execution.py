"""WorkflowExecution model for the agent workflow engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus, TriggerType
from db.base import BaseModel


class WorkflowExecution(BaseModel):
    """One run of a workflow, created per triggering event.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        trigger_type: How the execution was started (manual, scheduled, event)
        status: pending, running, completed or failed
        trigger_payload: Immutable snapshot of the trigger input
        context: Accumulated variables ("trigger" plus one key per step output)
        step_results: Per-step status, output, error and timing keyed by step id
        current_step_index: Index of the step the execution is suspended on
        definition_snapshot: The workflow and steps as they were when the run started
        started_at: Execution start timestamp
        completed_at: Execution completion timestamp
        duration_ms: Execution duration in milliseconds
        error_message: Error message if execution failed
    """

    __tablename__ = "workflow_executions"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trigger_type: Mapped[str] = mapped_column(
        default=TriggerType.MANUAL.value, index=True
    )
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.PENDING.value, index=True
    )
    trigger_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    step_results: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    current_step_index: Mapped[Optional[int]] = mapped_column(nullable=True)
    definition_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="executions", lazy="noload"
    )
    agent_executions: Mapped[list["AgentExecutionRecord"]] = relationship(
        "AgentExecutionRecord",
        back_populates="execution",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    approvals: Mapped[list["ApprovalRequest"]] = relationship(
        "ApprovalRequest",
        back_populates="execution",
        cascade="all, delete-orphan",
        lazy="noload",
    )
