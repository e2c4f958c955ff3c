"""ApprovalRequest model for human-in-the-loop steps."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ApprovalStatus
from db.base import BaseModel


class ApprovalRequest(BaseModel):
    """Pending or resolved approval for one APPROVAL step instance.

    Attributes:
        id: Unique identifier (UUID string)
        execution_id: Foreign key to WorkflowExecution
        step_id: Id of the APPROVAL WorkflowStep
        status: pending, approved, rejected or timed_out
        required_role: Role expected to decide (informational)
        approver: Who decided (or "system" for timeouts)
        decided_at: Decision timestamp
        comments: Decision comments
        timeout_at: Deadline after which the request times out
        payload: Resolved step input shown to the approver
        resumed_at: When the resolution was handed back to the execution
        created_at: When the request was opened
    """

    __tablename__ = "approval_requests"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id: Mapped[str] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        default=ApprovalStatus.PENDING.value, index=True
    )
    required_role: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    approver: Mapped[Optional[str]] = mapped_column(nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(nullable=True)
    timeout_at: Mapped[Optional[datetime]] = mapped_column(nullable=True, index=True)
    payload: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    resumed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    execution: Mapped["WorkflowExecution"] = relationship(
        "WorkflowExecution", back_populates="approvals", lazy="noload"
    )
