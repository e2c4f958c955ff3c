"""Execution context: the variables and step results of one execution."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from core.constants import StepStatus
from core.exceptions import OutputVariableCollision
from workflow.definition import RESERVED_VARIABLES


# ─── Step Result ──────────────────────────────────────────────

@dataclass
class StepResult:
    """Result of executing a single step."""
    step_id: str
    name: str
    order: int
    status: StepStatus
    output: Any = None
    error: Optional[str] = None
    output_variable: Optional[str] = None
    attempts: int = 0
    approval_id: Optional[str] = None
    group_id: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: int = 0

    @property
    def is_done(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED)

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "name": self.name,
            "order": self.order,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "output_variable": self.output_variable,
            "attempts": self.attempts,
            "approval_id": self.approval_id,
            "group_id": self.group_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StepResult":
        return cls(
            step_id=data["step_id"],
            name=data.get("name", data["step_id"]),
            order=data.get("order", 0),
            status=StepStatus(data["status"]),
            output=data.get("output"),
            error=data.get("error"),
            output_variable=data.get("output_variable"),
            attempts=data.get("attempts", 0),
            approval_id=data.get("approval_id"),
            group_id=data.get("group_id"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            duration_ms=data.get("duration_ms", 0),
        )


# ─── Execution Context ────────────────────────────────────────

@dataclass
class ExecutionContext:
    """Variables and step results accumulated by one execution.

    `trigger` is always present; every other variable is a step output and
    can be written exactly once.
    """

    execution_id: str
    workflow_id: str
    trigger_payload: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    steps: dict[str, StepResult] = field(default_factory=dict)
    started_at: Optional[datetime] = None

    def has_variable(self, name: str) -> bool:
        return name in RESERVED_VARIABLES or name in self.variables

    def set_output(self, name: str, value: Any) -> None:
        """Write a step output. Raises OutputVariableCollision if already set."""
        if self.has_variable(name):
            raise OutputVariableCollision(name)
        self.variables[name] = value

    def mark_skipped(self, output_variable: Optional[str], step_name: str) -> None:
        if output_variable and output_variable not in self.variables:
            self.skipped[output_variable] = step_name

    def record(self, result: StepResult) -> None:
        self.steps[result.step_id] = result

    def result_for_order(self, order: int) -> Optional[StepResult]:
        for result in self.steps.values():
            if result.order == order and result.group_id is None:
                return result
        return None

    def as_mapping(self) -> dict[str, Any]:
        """What ${...} references resolve against; also the persisted context."""
        return {"trigger": self.trigger_payload, **self.variables}

    def results_dict(self) -> dict[str, dict]:
        return {sid: r.to_dict() for sid, r in self.steps.items()}

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "context": self.as_mapping(),
            "step_results": self.results_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionContext":
        context = dict(data.get("context") or {})
        trigger = context.pop("trigger", None) or {}
        ctx = cls(
            execution_id=data["execution_id"],
            workflow_id=data["workflow_id"],
            trigger_payload=trigger,
            variables=context,
        )
        for sid, sdata in (data.get("step_results") or {}).items():
            result = StepResult.from_dict(sdata)
            ctx.steps[sid] = result
            if result.status == StepStatus.SKIPPED and result.group_id is None:
                ctx.mark_skipped(result.output_variable, result.name)
        return ctx

    @classmethod
    def from_execution(cls, execution) -> "ExecutionContext":
        """Rebuild from a WorkflowExecution row (used when resuming)."""
        ctx = cls.from_dict({
            "execution_id": execution.id,
            "workflow_id": execution.workflow_id,
            "context": execution.context,
            "step_results": execution.step_results,
        })
        if not ctx.trigger_payload and execution.trigger_payload:
            ctx.trigger_payload = execution.trigger_payload
        ctx.started_at = execution.started_at
        return ctx
