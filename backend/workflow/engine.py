"""Workflow Orchestrator: execution lifecycle for agent workflows.

An execution moves PENDING -> RUNNING -> COMPLETED | FAILED. Steps run in
declared order; each step's output is written into the execution context
under its output variable, where later steps reference it as ${name...}.

An APPROVAL step suspends the execution: the step index and context are
persisted and no task is held while the request is pending. The execution
resumes when the request is decided, when its in-process timer fires, or
when the periodic sweep finds it overdue. The approval gate guarantees that
exactly one of those wins, and `claim_resume` hands the result back to the
execution exactly once. A resumed run continues from the definition snapshot
stored when it started, not from the workflow as it is now.

Every progress write is a conditional UPDATE on status = 'running', so a
cancelled execution is never overwritten by a step that was still in flight.
"""

import asyncio
import logging
from typing import Any, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from sqlalchemy import select, update

from core.constants import (
    ApprovalStatus,
    ExecutionMode,
    ExecutionStatus,
    StepStatus,
    TriggerType,
)
from core.exceptions import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    InvalidInput,
    NotFoundError,
)
from core.logging_config import bind_execution
from db.base import utcnow
from db.models.execution import WorkflowExecution
from db.models.workflow import Workflow
from workflow.approval import ApprovalGate
from workflow.context import ExecutionContext
from workflow.definition import EngineConfig, WorkflowDefinition
from workflow.steps import StepExecutor

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Execution cancelled"
IN_FLIGHT_STATUSES = (ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value)


def validate_payload(schema: Optional[dict], payload: Any) -> dict:
    """Check a trigger payload against a workflow's input schema.

    Raises:
        InvalidInput: payload is not an object or fails the schema
        ConfigurationError: the stored schema itself is invalid
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidInput("Trigger payload must be a JSON object")
    if not schema:
        return payload

    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise ConfigurationError(f"Workflow input schema is invalid: {e.message}")

    errors = sorted(Draft202012Validator(schema).iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = [
            f"{'/'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors
        ]
        raise InvalidInput("Trigger payload does not match the workflow input schema", messages)
    return payload


class WorkflowOrchestrator:
    """Starts, advances, suspends, resumes and cancels workflow executions."""

    def __init__(self, session_factory, config: EngineConfig):
        self.session_factory = session_factory
        self.config = config
        self.approval_gate = ApprovalGate(session_factory)
        self.step_executor = StepExecutor(session_factory, config, self.approval_gate)
        self._tasks: set[asyncio.Task] = set()
        self._runs: set[asyncio.Task] = set()

    # ─── Start ─────────────────────────────────────────────

    async def start_execution(
        self,
        workflow_id: str,
        payload: Optional[dict] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
        mode: Optional[ExecutionMode] = None,
    ) -> WorkflowExecution:
        """Validate the payload, create the execution and run it.

        Sync mode returns once the execution completes, fails or suspends on
        an approval. Async mode returns the RUNNING execution immediately.

        Raises:
            NotFoundError: no such workflow
            ConflictError: workflow is inactive
            InvalidInput: payload fails the workflow's input schema
        """
        definition = await self._load_definition(workflow_id)
        return await self._start(definition, payload, trigger_type, mode)

    async def start_public_execution(
        self,
        workflow_id: str,
        payload: Optional[dict] = None,
        mode: Optional[ExecutionMode] = None,
    ) -> WorkflowExecution:
        """Start a workflow from the unauthenticated endpoint; it must be public."""
        definition = await self._load_definition(workflow_id)
        if not definition.is_public:
            raise ForbiddenError("This workflow is not publicly accessible")
        return await self._start(definition, payload, TriggerType.MANUAL, mode)

    async def _start(
        self,
        definition: WorkflowDefinition,
        payload: Optional[dict],
        trigger_type: TriggerType,
        mode: Optional[ExecutionMode],
    ) -> WorkflowExecution:
        if not definition.is_active:
            raise ConflictError(f"Workflow '{definition.name}' is not active")
        payload = validate_payload(definition.input_schema, payload)
        mode = ExecutionMode(mode) if mode else definition.execution_mode

        execution = WorkflowExecution(
            workflow_id=definition.id,
            trigger_type=TriggerType(trigger_type).value,
            status=ExecutionStatus.PENDING.value,
            trigger_payload=payload,
            context={"trigger": payload},
            step_results={},
            definition_snapshot=definition.source,
        )
        async with self.session_factory() as session:
            session.add(execution)
            await session.commit()
            await session.refresh(execution)

        started_at = utcnow()
        async with self.session_factory() as session:
            await session.execute(
                update(WorkflowExecution)
                .where(
                    WorkflowExecution.id == execution.id,
                    WorkflowExecution.status == ExecutionStatus.PENDING.value,
                )
                .values(status=ExecutionStatus.RUNNING.value, started_at=started_at, updated_at=started_at)
            )
            await session.commit()

        bind_execution(execution.id, definition.id)
        logger.info(
            f"Execution {execution.id} started for workflow '{definition.name}' "
            f"({mode.value}, {len(definition.steps)} steps)"
        )

        context = ExecutionContext(
            execution_id=execution.id,
            workflow_id=definition.id,
            trigger_payload=payload,
            started_at=started_at,
        )

        if mode == ExecutionMode.ASYNC:
            self._spawn(self._run(definition, context, 0))
        else:
            await self._run(definition, context, 0)
        return await self.get_execution(execution.id)

    # ─── Step loop ─────────────────────────────────────────

    async def _run(self, definition: WorkflowDefinition, context: ExecutionContext, start_index: int) -> None:
        """Run steps from start_index until the end, a failure or a suspension."""
        bind_execution(context.execution_id, definition.id)
        try:
            for index in range(start_index, len(definition.steps)):
                step = definition.steps[index]

                if not await self._is_running(context.execution_id):
                    logger.info(f"Execution {context.execution_id} stopped before step '{step.name}'")
                    return

                result = await self.step_executor.run_step(step, context, context.execution_id)
                context.record(result)

                if result.status == StepStatus.WAITING:
                    if not await self._persist(context, current_step_index=index):
                        return
                    logger.info(f"Execution {context.execution_id} waiting on approval {result.approval_id}")
                    approval = await self.approval_gate.get(result.approval_id)
                    if approval.status != ApprovalStatus.PENDING.value:
                        # Resolved before the suspension was recorded
                        await self._continue_after_approval(approval, inline=True)
                    else:
                        self._arm_approval_timer(approval)
                    return

                if result.status == StepStatus.FAILED:
                    await self._finish(
                        context,
                        ExecutionStatus.FAILED,
                        error=f"Step '{step.name}' failed: {result.error}",
                    )
                    return

                if not await self._persist(context, current_step_index=index):
                    logger.info(f"Execution {context.execution_id} is no longer running; stopping")
                    return

            await self._finish(context, ExecutionStatus.COMPLETED)

        except asyncio.CancelledError:
            logger.info(f"Execution {context.execution_id} task cancelled")
            raise
        except Exception as e:
            logger.error(f"Execution {context.execution_id} crashed: {e}", exc_info=True)
            await self._finish(context, ExecutionStatus.FAILED, error=f"Unexpected error: {e}")

    async def _is_running(self, execution_id: str) -> bool:
        async with self.session_factory() as session:
            status = (await session.execute(
                select(WorkflowExecution.status).where(WorkflowExecution.id == execution_id)
            )).scalar_one_or_none()
        return status == ExecutionStatus.RUNNING.value

    async def _persist(self, context: ExecutionContext, **values) -> bool:
        """Write context and step results while the execution is still running."""
        now = utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowExecution)
                .where(
                    WorkflowExecution.id == context.execution_id,
                    WorkflowExecution.status == ExecutionStatus.RUNNING.value,
                )
                .values(
                    context=context.as_mapping(),
                    step_results=context.results_dict(),
                    updated_at=now,
                    **values,
                )
            )
            await session.commit()
        return result.rowcount == 1

    async def _finish(self, context: ExecutionContext, status: ExecutionStatus, error: Optional[str] = None) -> bool:
        now = utcnow()
        duration_ms = None
        if context.started_at is not None:
            duration_ms = int((now - context.started_at).total_seconds() * 1000)
        applied = await self._persist(
            context,
            status=status.value,
            completed_at=now,
            duration_ms=duration_ms,
            error_message=error,
            current_step_index=None,
        )
        if applied:
            if status == ExecutionStatus.FAILED:
                logger.warning(f"Execution {context.execution_id} failed: {error}")
            else:
                logger.info(f"Execution {context.execution_id} completed in {duration_ms}ms")
        return applied

    # ─── Approvals ─────────────────────────────────────────

    async def resolve_approval(
        self,
        approval_id: str,
        approved: bool,
        approver: Optional[str] = None,
        comments: Optional[str] = None,
    ):
        """Decide a pending approval and resume its execution.

        Sync workflows resume before this returns; async workflows resume
        on a background task.

        Raises:
            NotFoundError: unknown approval
            ApprovalAlreadyResolved: decided or timed out already
        """
        approval = await self.approval_gate.decide(approval_id, approved, approver, comments)
        if approval.status == ApprovalStatus.PENDING.value:
            return approval
        await self._continue_after_approval(approval)
        return approval

    async def handle_approval_timeout(self, approval_id: str, now=None):
        """Time out an overdue approval and resume its execution.

        Returns the timed-out request, or None when nothing changed.
        """
        approval = await self.approval_gate.expire(approval_id, now)
        if approval is None:
            return None
        await self._continue_after_approval(approval, inline=True)
        return approval

    async def sweep_approvals(self, now=None) -> list:
        """Expire every overdue approval and resume the executions they block."""
        expired = await self.approval_gate.sweep_expired(now)
        for approval in expired:
            await self._continue_after_approval(approval, inline=True)
        if expired:
            logger.info(f"Approval sweep expired {len(expired)} request(s)")
        return expired

    async def _continue_after_approval(self, approval, inline: bool = False) -> None:
        """Hand a resolved approval back to its suspended execution, at most once.

        Runs in the background for async workflows unless `inline` is set.
        Any error while resuming fails the execution.
        """
        claimed = await self._guard(approval.execution_id, self._claim_suspended(approval))
        if claimed is None:
            return
        definition, context, index = claimed
        resume = self._guard(approval.execution_id, self._resume(definition, context, index, approval))
        if definition.execution_mode == ExecutionMode.ASYNC and not inline:
            self._spawn(resume)
        else:
            await resume

    async def _claim_suspended(self, approval):
        """Load the execution suspended on `approval` and claim its resumption.

        Returns (definition, context, step index), or None when the execution
        is not running, has not yet recorded the suspension, or another path
        already resumed it.
        """
        async with self.session_factory() as session:
            execution = await session.get(WorkflowExecution, approval.execution_id)
        if execution is None or execution.status != ExecutionStatus.RUNNING.value:
            return None
        if not execution.definition_snapshot:
            raise ConfigurationError(f"Execution {execution.id} has no definition snapshot")

        definition = WorkflowDefinition.from_dict(execution.definition_snapshot)
        index = definition.step_index(approval.step_id)
        recorded = (execution.step_results or {}).get(approval.step_id) or {}
        if execution.current_step_index != index or recorded.get("status") != StepStatus.WAITING.value:
            logger.info(
                f"Approval {approval.id} resolved before execution {execution.id} "
                f"recorded its suspension; the running step resumes it"
            )
            return None
        if not await self.approval_gate.claim_resume(approval.id):
            return None
        return definition, ExecutionContext.from_execution(execution), index

    async def _resume(self, definition: WorkflowDefinition, context: ExecutionContext, index: int, approval) -> None:
        bind_execution(context.execution_id, definition.id)
        step = definition.steps[index]
        result = self.step_executor.complete_approval(step, approval, context, context.steps.get(step.id))
        context.record(result)
        logger.info(f"Approval {approval.id} resolved as {approval.status}; step '{step.name}' {result.status.value}")

        if result.status == StepStatus.FAILED:
            await self._finish(
                context,
                ExecutionStatus.FAILED,
                error=f"Step '{step.name}' failed: {result.error}",
            )
            return
        if not await self._persist(context, current_step_index=index):
            return
        await self._run(definition, context, index + 1)

    async def _guard(self, execution_id: str, coro):
        """Await `coro`; an unexpected error fails the execution instead of leaving it RUNNING."""
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Execution {execution_id} could not resume: {e}", exc_info=True)
            await self._fail(execution_id, f"Unexpected error: {e}")
            return None

    async def _fail(self, execution_id: str, error: str) -> bool:
        now = utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowExecution)
                .where(
                    WorkflowExecution.id == execution_id,
                    WorkflowExecution.status == ExecutionStatus.RUNNING.value,
                )
                .values(
                    status=ExecutionStatus.FAILED.value,
                    error_message=error,
                    completed_at=now,
                    updated_at=now,
                    current_step_index=None,
                )
            )
            await session.commit()
        return result.rowcount == 1

    def _arm_approval_timer(self, approval) -> None:
        if approval.timeout_at is None:
            return
        delay = max(0.0, (approval.timeout_at - utcnow()).total_seconds())
        self._spawn(self._approval_timer(approval.id, delay), timer=True)

    async def _approval_timer(self, approval_id: str, delay: float) -> None:
        await asyncio.sleep(delay + 0.01)
        try:
            await self.handle_approval_timeout(approval_id)
        except Exception:
            logger.exception(f"Approval timer for {approval_id} failed; the sweep will retry")

    # ─── Read / cancel ─────────────────────────────────────

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        async with self.session_factory() as session:
            execution = await session.get(WorkflowExecution, execution_id)
        if execution is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        return execution

    async def cancel_execution(self, execution_id: str) -> WorkflowExecution:
        """Mark a PENDING or RUNNING execution FAILED.

        The running task notices at its next step boundary; approval
        decisions for it become no-ops.
        """
        now = utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowExecution)
                .where(
                    WorkflowExecution.id == execution_id,
                    WorkflowExecution.status.in_(IN_FLIGHT_STATUSES),
                )
                .values(
                    status=ExecutionStatus.FAILED.value,
                    error_message=CANCELLED_MESSAGE,
                    completed_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        execution = await self.get_execution(execution_id)
        if result.rowcount != 1:
            raise ConflictError(f"Execution {execution_id} is already {execution.status}")
        logger.info(f"Execution {execution_id} cancelled")
        return execution

    # ─── Helpers ───────────────────────────────────────────

    async def _load_definition(self, workflow_id: str) -> WorkflowDefinition:
        async with self.session_factory() as session:
            workflow = (await session.execute(
                select(Workflow).where(Workflow.id == workflow_id, Workflow.is_deleted == False)
            )).scalar_one_or_none()
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return WorkflowDefinition.from_model(workflow)

    def _spawn(self, coro, timer: bool = False) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if not timer:
            self._runs.add(task)
            task.add_done_callback(self._runs.discard)
        return task

    @property
    def background_tasks(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until spawned executions (not sleeping approval timers) settle."""
        while True:
            pending = [t for t in self._runs if not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    async def shutdown(self) -> None:
        """Cancel background tasks (async runs and approval timers)."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()


def build_orchestrator(session_factory, model_client=None, tool_registry=None) -> WorkflowOrchestrator:
    """Orchestrator wired to the Claude client and the default tool registry."""
    from integrations.claude_client import ClaudeClient
    from tools.registry import get_tool_registry

    config = EngineConfig.from_settings(
        model_client=model_client or ClaudeClient(),
        tool_registry=tool_registry or get_tool_registry(),
    )
    return WorkflowOrchestrator(session_factory, config)
