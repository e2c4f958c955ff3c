"""WorkflowStep model for the agent workflow engine."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowStep(BaseModel):
    """A single step in a workflow.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        step_order: Position in the workflow (steps run in ascending order)
        step_type: AGENT_EXECUTION, APPROVAL, CONDITION or PARALLEL_GROUP
        name: Step name
        agent_id: Agent invoked by AGENT_EXECUTION steps
        input_mapping: Template tree of literals and ${...} references
        output_variable: Context key the step output is stored under
        condition_expression: Optional guard, e.g. "${trigger.category} == tools"
        depends_on: Order indices of steps this one depends on
        retry_config: max_attempts / backoff / base_delay_ms / max_delay_ms
        timeout_seconds: Timeout for the whole step including retries
        approval_config: required_role / timeout_seconds / on_timeout / on_reject
        config: Extra step settings (parallel group members live here)
    """

    __tablename__ = "workflow_steps"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    agent_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("agents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    input_mapping: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output_variable: Mapped[Optional[str]] = mapped_column(nullable=True)
    condition_expression: Mapped[Optional[str]] = mapped_column(nullable=True)
    depends_on: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    retry_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timeout_seconds: Mapped[Optional[int]] = mapped_column(nullable=True, default=300)
    approval_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="steps", lazy="noload"
    )
    agent: Mapped[Optional["Agent"]] = relationship(
        "Agent", lazy="noload"
    )
