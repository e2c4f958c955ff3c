"""Workflow model for the agent workflow engine."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionMode, InterfaceType, TriggerType
from db.base import BaseModel


class Workflow(BaseModel):
    """Workflow definition: an ordered list of steps plus trigger settings.

    Attributes:
        id: Unique identifier (UUID string)
        name: Workflow name
        description: Workflow description
        trigger_type: How executions are started (manual, scheduled, event)
        trigger_config: Free-form trigger settings
        execution_mode: sync (caller waits) or async (caller polls)
        is_active: Whether new executions may be started
        input_schema: Optional JSON Schema the trigger payload must satisfy
        interface_type: Presentation hint (form, chat, api)
        is_public: Whether the public start endpoint may run this workflow
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    trigger_type: Mapped[str] = mapped_column(default=TriggerType.MANUAL.value)
    trigger_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    execution_mode: Mapped[str] = mapped_column(default=ExecutionMode.SYNC.value)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    input_schema: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    interface_type: Mapped[str] = mapped_column(default=InterfaceType.FORM.value, index=True)
    is_public: Mapped[bool] = mapped_column(default=False, index=True)

    # Relationships
    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.step_order",
        lazy="selectin",
    )
    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        lazy="noload",
    )
    schedules: Mapped[list["WorkflowSchedule"]] = relationship(
        "WorkflowSchedule",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )
