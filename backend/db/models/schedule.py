"""WorkflowSchedule model for cron-triggered executions."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowSchedule(BaseModel):
    """Cron schedule that starts a workflow with a fixed payload.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        name: Schedule name
        cron_expression: Cron expression for schedule
        timezone: Timezone the cron expression is evaluated in
        is_enabled: Whether schedule is active
        trigger_payload: Payload passed to each execution
        next_run_at: Next due time (naive UTC)
        last_run_at: Last dispatch time (naive UTC)
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "workflow_schedules"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(nullable=False, index=True)
    cron_expression: Mapped[str] = mapped_column(nullable=False)
    timezone: Mapped[str] = mapped_column(nullable=False, default="UTC")
    is_enabled: Mapped[bool] = mapped_column(default=True, index=True)
    trigger_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(nullable=True, index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # noload: endpoints that need the workflow join explicitly
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="schedules", lazy="noload"
    )
