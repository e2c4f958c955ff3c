"""Workflow service: workflow and step management, execution queries.

Step edits are validated as a whole: the full step list a change would
produce is parsed into StepDefinitions and checked with validate_steps
before anything is written, so a stored workflow always loads.
"""

import logging
from typing import Any, Optional, Sequence
from uuid import uuid4

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.constants import ExecutionStatus, StepType
from core.exceptions import ConfigurationError, ConflictError, NotFoundError, ValidationError
from db.models.agent import Agent
from db.models.agent_execution import AgentExecutionRecord
from db.models.execution import WorkflowExecution
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from services.base import BaseService
from workflow.definition import RESERVED_VARIABLES, StepDefinition, validate_steps

logger = logging.getLogger(__name__)

STEP_FIELDS = (
    "name",
    "step_order",
    "step_type",
    "agent_id",
    "input_mapping",
    "output_variable",
    "condition_expression",
    "depends_on",
    "retry_config",
    "timeout_seconds",
    "approval_config",
    "config",
)


def _step_to_dict(step: WorkflowStep) -> dict:
    data = {field: getattr(step, field) for field in STEP_FIELDS}
    data["id"] = step.id
    return data


def check_input_schema(schema: Optional[dict]) -> None:
    if schema is None:
        return
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise ValidationError(f"Invalid input_schema: {e.message}")


class WorkflowService(BaseService[Workflow]):
    """Service for workflow and step management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Load a live workflow with its live steps, or raise NotFoundError."""
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.id == workflow_id, Workflow.is_deleted == False)
            .options(selectinload(Workflow.steps))
            .execution_options(populate_existing=True)
        )
        workflow = result.scalar_one_or_none()
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    @staticmethod
    def live_steps(workflow: Workflow) -> list[WorkflowStep]:
        return sorted((s for s in workflow.steps if not s.is_deleted), key=lambda s: s.step_order)

    # ─── Workflows ─────────────────────────────────────────

    async def create_workflow(
        self,
        name: str,
        description: str = "",
        steps: Optional[list[dict]] = None,
        **fields: Any,
    ) -> Workflow:
        """Create a workflow together with its steps.

        Steps without a step_order are numbered by list position.
        """
        check_input_schema(fields.get("input_schema"))
        step_dicts = []
        for index, step in enumerate(steps or []):
            step = dict(step)
            if step.get("step_order") is None:
                step["step_order"] = index
            step_dicts.append(step)
        await self._validate(step_dicts)

        workflow_id = str(uuid4())
        values = {k: v for k, v in fields.items() if v is not None}
        workflow = Workflow(id=workflow_id, name=name, description=description or "", **values)
        self.db.add(workflow)
        for step in step_dicts:
            self.db.add(WorkflowStep(
                id=str(uuid4()),
                workflow_id=workflow_id,
                **{k: step.get(k) for k in STEP_FIELDS if k in step},
            ))
        await self.db.flush()

        logger.info(f"Created workflow '{name}' ({workflow_id}) with {len(step_dicts)} step(s)")
        return await self.get_workflow(workflow_id)

    async def update_workflow(self, workflow_id: str, data: dict[str, Any]) -> Workflow:
        if "input_schema" in data:
            check_input_schema(data["input_schema"])
        await self.update(workflow_id, data)
        return await self.get_workflow(workflow_id)

    async def set_active(self, workflow_id: str, active: bool) -> Workflow:
        workflow = await self.get_workflow(workflow_id)
        workflow.is_active = active
        await self.db.flush()
        logger.info(f"Workflow {workflow_id} {'activated' if active else 'deactivated'}")
        return await self.get_workflow(workflow_id)

    async def delete_workflow(self, workflow_id: str) -> None:
        """Soft-delete a workflow.

        Raises:
            ConflictError: the workflow has pending or running executions
        """
        await self.get_workflow(workflow_id)
        in_flight = await self.db.execute(
            select(func.count())
            .select_from(WorkflowExecution)
            .where(
                WorkflowExecution.workflow_id == workflow_id,
                WorkflowExecution.status.in_(
                    [ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value]
                ),
            )
        )
        count = in_flight.scalar() or 0
        if count:
            raise ConflictError(
                f"Workflow {workflow_id} has {count} execution(s) in progress and cannot be deleted"
            )
        await self.soft_delete(workflow_id)
        logger.info(f"Deleted workflow {workflow_id}")

    # ─── Steps ─────────────────────────────────────────────

    async def add_step(self, workflow_id: str, data: dict[str, Any]) -> WorkflowStep:
        workflow = await self.get_workflow(workflow_id)
        existing = [_step_to_dict(s) for s in self.live_steps(workflow)]

        data = dict(data)
        if data.get("step_order") is None:
            data["step_order"] = max((s["step_order"] for s in existing), default=-1) + 1
        await self._validate(existing + [data])

        step = WorkflowStep(
            id=str(uuid4()),
            workflow_id=workflow_id,
            **{k: data.get(k) for k in STEP_FIELDS if k in data},
        )
        self.db.add(step)
        await self.db.flush()
        await self.db.refresh(step)
        return step

    async def update_step(self, workflow_id: str, step_id: str, data: dict[str, Any]) -> WorkflowStep:
        workflow = await self.get_workflow(workflow_id)
        steps = self.live_steps(workflow)
        target = self._find_step(steps, step_id)

        changes = {k: v for k, v in data.items() if k in STEP_FIELDS}
        proposed = []
        for step in steps:
            step_dict = _step_to_dict(step)
            if step.id == step_id:
                step_dict.update(changes)
            proposed.append(step_dict)
        await self._validate(proposed)

        for key, value in changes.items():
            setattr(target, key, value)
        await self.db.flush()
        await self.db.refresh(target)
        return target

    async def remove_step(self, workflow_id: str, step_id: str) -> None:
        workflow = await self.get_workflow(workflow_id)
        steps = self.live_steps(workflow)
        target = self._find_step(steps, step_id)
        await self._validate([_step_to_dict(s) for s in steps if s.id != step_id])
        target.soft_delete()
        await self.db.flush()

    async def reorder_steps(self, workflow_id: str, step_ids: list[str]) -> Workflow:
        """Renumber steps 0..n-1 in the given order.

        depends_on indices are not rewritten; an order that breaks them is
        rejected.
        """
        workflow = await self.get_workflow(workflow_id)
        steps = self.live_steps(workflow)
        if sorted(step_ids) != sorted(s.id for s in steps) or len(set(step_ids)) != len(step_ids):
            raise ValidationError("step_ids must list every step of the workflow exactly once")

        by_id = {s.id: s for s in steps}
        proposed = []
        for order, step_id in enumerate(step_ids):
            step_dict = _step_to_dict(by_id[step_id])
            step_dict["step_order"] = order
            proposed.append(step_dict)
        await self._validate(proposed)

        for order, step_id in enumerate(step_ids):
            by_id[step_id].step_order = order
        await self.db.flush()
        return await self.get_workflow(workflow_id)

    @staticmethod
    def _find_step(steps: Sequence[WorkflowStep], step_id: str) -> WorkflowStep:
        for step in steps:
            if step.id == step_id:
                return step
        raise NotFoundError(f"Step {step_id} not found")

    async def _validate(self, step_dicts: list[dict]) -> None:
        """Reject a step list the engine could not run."""
        try:
            definitions = sorted(
                (StepDefinition.from_dict(s) for s in step_dicts),
                key=lambda s: s.order,
            )
            validate_steps(definitions)
        except (ConfigurationError, TypeError, ValueError) as e:
            message = e.message if isinstance(e, ConfigurationError) else str(e)
            raise ValidationError(message)

        outputs: set[str] = set()
        agent_ids: set[str] = set()
        for step in definitions:
            if step.output_variable:
                if step.output_variable in RESERVED_VARIABLES:
                    raise ValidationError(
                        f"Step '{step.name}': output_variable '{step.output_variable}' is reserved"
                    )
                if step.output_variable in outputs:
                    raise ValidationError(
                        f"Output variable '{step.output_variable}' is written by more than one step"
                    )
                outputs.add(step.output_variable)
            for member in (step,) + step.members:
                if member.step_type == StepType.AGENT_EXECUTION and member.agent_id:
                    agent_ids.add(member.agent_id)

        if agent_ids:
            result = await self.db.execute(
                select(Agent.id).where(Agent.id.in_(agent_ids), Agent.is_deleted == False)
            )
            missing = agent_ids - set(result.scalars().all())
            if missing:
                raise ValidationError(f"Unknown agent(s): {', '.join(sorted(missing))}")


class ExecutionService(BaseService[WorkflowExecution]):
    """Read-side queries over executions and their agent attempt records."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowExecution, db)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ):
        return await self.list(
            offset=offset,
            limit=limit,
            filters={"workflow_id": workflow_id, "status": status},
        )

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        return await self.get_or_404(execution_id)

    async def list_agent_records(self, execution_id: str) -> Sequence[AgentExecutionRecord]:
        """Every agent attempt recorded for an execution, oldest first."""
        await self.get_or_404(execution_id)
        result = await self.db.execute(
            select(AgentExecutionRecord)
            .where(AgentExecutionRecord.execution_id == execution_id)
            .order_by(AgentExecutionRecord.started_at, AgentExecutionRecord.attempt)
        )
        return result.scalars().all()
