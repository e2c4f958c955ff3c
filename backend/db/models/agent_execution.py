"""AgentExecutionRecord model: audit trail of agent step attempts."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import AgentRunStatus
from db.base import BaseModel


class AgentExecutionRecord(BaseModel):
    """One row per attempt of an AGENT_EXECUTION step. Written once.

    Attributes:
        id: Unique identifier (UUID string)
        execution_id: Foreign key to WorkflowExecution
        step_id: Id of the WorkflowStep (or parallel member) that ran
        agent_id: Agent used for the attempt
        attempt: 1-based attempt number within the step
        status: completed or failed
        input_data: Resolved step input sent as the user turn
        output_data: Agent reply and stop information
        input_tokens: Prompt tokens summed over all model turns
        output_tokens: Completion tokens summed over all model turns
        turns: Number of model API calls made
        tool_calls: Tool invocations made during the attempt
        latency_ms: Wall time of the attempt
        error_message: Error if the attempt failed
        started_at: Attempt start
        completed_at: Attempt end
    """

    __tablename__ = "agent_executions"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id: Mapped[str] = mapped_column(nullable=False, index=True)
    agent_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    attempt: Mapped[int] = mapped_column(default=1)
    status: Mapped[str] = mapped_column(default=AgentRunStatus.RUNNING.value)
    input_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    input_tokens: Mapped[int] = mapped_column(default=0)
    output_tokens: Mapped[int] = mapped_column(default=0)
    turns: Mapped[int] = mapped_column(default=0)
    tool_calls: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    latency_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    execution: Mapped["WorkflowExecution"] = relationship(
        "WorkflowExecution", back_populates="agent_executions", lazy="noload"
    )
