"""Step Executor: runs one workflow step against the execution context.

For every step, in order:
  1. depends_on steps must already be COMPLETED or SKIPPED
  2. the guard expression decides whether the step runs at all
  3. the output variable must not already exist
  4. dispatch on the step type

Agent steps run inside the step's retry policy and a timeout that covers
all attempts together. Every agent attempt leaves one AgentExecutionRecord.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select

from core.constants import (
    AgentRunStatus,
    ApprovalStatus,
    OnReject,
    OnTimeout,
    StepStatus,
    StepType,
)
from core.exceptions import (
    ConfigurationError,
    EngineException,
    ModelAPIError,
    OutputVariableCollision,
    StepTimeoutError,
)
from db.base import utcnow
from db.models.agent import Agent
from db.models.agent_execution import AgentExecutionRecord
from workflow.agent_loop import AgentLoop, AgentSpec
from workflow.conditions import evaluate_condition
from workflow.context import ExecutionContext, StepResult
from workflow.definition import EngineConfig, StepDefinition
from workflow.resolver import resolve
from workflow.retry_strategies import execute_with_retry

logger = logging.getLogger(__name__)


class StepFailed(Exception):
    """Internal signal carrying a step's failure message."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass
class _InFlightAttempt:
    number: int
    agent_id: Optional[str]
    input_data: Any
    started_at: Any
    start: float


class _AttemptTracker:
    """Numbers attempts and remembers the one currently running."""

    def __init__(self):
        self.count = 0
        self.in_flight: Optional[_InFlightAttempt] = None

    def begin(self, agent_id, input_data) -> _InFlightAttempt:
        self.count += 1
        self.in_flight = _InFlightAttempt(
            number=self.count,
            agent_id=agent_id,
            input_data=input_data,
            started_at=utcnow(),
            start=time.monotonic(),
        )
        return self.in_flight


class StepExecutor:
    """Executes single steps; the orchestrator owns ordering and persistence."""

    def __init__(self, session_factory, config: EngineConfig, approval_gate):
        self.session_factory = session_factory
        self.config = config
        self.approval_gate = approval_gate
        self.agent_loop = AgentLoop(
            client=config.model_client,
            tool_registry=config.tool_registry,
            max_turns=config.max_tool_turns,
            fallback_message=config.fallback_message,
            default_model=config.default_model,
            default_max_tokens=config.default_max_tokens,
            default_temperature=config.default_temperature,
        )

    # ─── Entry point ───────────────────────────────────────

    async def run_step(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        execution_id: str,
        write_output: bool = True,
        group_id: Optional[str] = None,
    ) -> StepResult:
        """Run one step and return its result. Never raises for step failures."""
        result = StepResult(
            step_id=step.id,
            name=step.name,
            order=step.order,
            status=StepStatus.RUNNING,
            output_variable=step.output_variable,
            group_id=group_id,
            started_at=utcnow().isoformat(),
        )
        start = time.monotonic()

        try:
            self._check_dependencies(step, context)

            if not evaluate_condition(step.condition, context.as_mapping(), context.skipped):
                logger.info(f"Step '{step.name}' skipped: guard {step.condition!r} is false")
                result.status = StepStatus.SKIPPED
                if write_output:
                    context.mark_skipped(step.output_variable, step.name)
                return self._finish(result, start)

            if write_output and step.output_variable and context.has_variable(step.output_variable):
                raise OutputVariableCollision(step.output_variable)

            if step.step_type == StepType.AGENT_EXECUTION:
                output = await self._run_agent_step(step, context, execution_id, result)
            elif step.step_type == StepType.APPROVAL:
                return await self._open_approval(step, context, execution_id, result, start)
            elif step.step_type == StepType.CONDITION:
                output = resolve(step.input_mapping, context.as_mapping(), context.skipped)
            elif step.step_type == StepType.PARALLEL_GROUP:
                output = await self._run_parallel_group(step, context, execution_id)
            else:
                raise ConfigurationError(f"Unsupported step type: {step.step_type}")

        except StepFailed as e:
            return self._fail(result, e.message, start)
        except EngineException as e:
            return self._fail(result, e.message, start)
        except Exception as e:
            logger.exception(f"Step '{step.name}' raised unexpectedly")
            return self._fail(result, str(e) or type(e).__name__, start)

        result.status = StepStatus.COMPLETED
        result.output = output
        if write_output and step.output_variable:
            context.set_output(step.output_variable, output)
        logger.info(f"Step '{step.name}' completed")
        return self._finish(result, start)

    def _check_dependencies(self, step: StepDefinition, context: ExecutionContext) -> None:
        for order in step.depends_on:
            dep = context.result_for_order(order)
            if dep is None or not dep.is_done:
                state = dep.status.value if dep else "not run"
                raise ConfigurationError(
                    f"Dependency on step {order} is not satisfied ({state})"
                )

    # ─── Agent steps ───────────────────────────────────────

    async def _load_agent(self, agent_id: str) -> AgentSpec:
        async with self.session_factory() as session:
            agent = (await session.execute(
                select(Agent).where(Agent.id == agent_id, Agent.is_deleted == False)
            )).scalar_one_or_none()
        if agent is None:
            raise ConfigurationError(f"Agent {agent_id} not found")
        if not agent.is_active:
            raise ConfigurationError(f"Agent '{agent.name}' is inactive")
        return AgentSpec.from_model(agent)

    async def _run_agent_step(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        execution_id: str,
        result: StepResult,
    ) -> Any:
        agent = await self._load_agent(step.agent_id)
        user_input = resolve(step.input_mapping, context.as_mapping(), context.skipped)
        tracker = _AttemptTracker()

        async def attempt():
            current = tracker.begin(agent.id, user_input)
            try:
                run = await self.agent_loop.run(agent, user_input)
            except Exception as e:
                tracker.in_flight = None
                await self._record_attempt(execution_id, step, current, error=str(e))
                raise
            tracker.in_flight = None
            await self._record_attempt(execution_id, step, current, run=run)
            if run.failed:
                raise ModelAPIError(run.error, transient=run.transient)
            return run.reply

        async def on_retry(number, error, delay):
            logger.warning(
                f"Step '{step.name}' attempt {number} failed ({error}); retrying in {delay}s"
            )

        timeout = step.timeout_seconds or self.config.default_step_timeout
        try:
            if timeout:
                return await asyncio.wait_for(
                    execute_with_retry(attempt, step.retry, on_retry=on_retry),
                    timeout,
                )
            return await execute_with_retry(attempt, step.retry, on_retry=on_retry)
        except asyncio.TimeoutError:
            error = StepTimeoutError(step.name, timeout)
            if tracker.in_flight is not None:
                await self._record_attempt(execution_id, step, tracker.in_flight, error=error.message)
            raise error
        finally:
            result.attempts = tracker.count

    async def _record_attempt(
        self,
        execution_id: str,
        step: StepDefinition,
        attempt: _InFlightAttempt,
        run=None,
        error: Optional[str] = None,
    ) -> None:
        """Persist one AgentExecutionRecord. Records are never updated."""
        if run is not None and run.error:
            error = run.error
        record = AgentExecutionRecord(
            execution_id=execution_id,
            step_id=step.id,
            agent_id=attempt.agent_id,
            attempt=attempt.number,
            status=(AgentRunStatus.FAILED if error else AgentRunStatus.COMPLETED).value,
            input_data={"input": attempt.input_data},
            output_data=run.to_output() if run is not None else None,
            input_tokens=run.input_tokens if run is not None else 0,
            output_tokens=run.output_tokens if run is not None else 0,
            turns=run.turns if run is not None else 0,
            tool_calls=run.tool_calls if run is not None else [],
            latency_ms=int((time.monotonic() - attempt.start) * 1000),
            error_message=error,
            started_at=attempt.started_at,
            completed_at=utcnow(),
        )
        async with self.session_factory() as session:
            session.add(record)
            await session.commit()

    # ─── Approval steps ────────────────────────────────────

    async def _open_approval(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        execution_id: str,
        result: StepResult,
        start: float,
    ) -> StepResult:
        payload = resolve(step.input_mapping, context.as_mapping(), context.skipped)
        approval = await self.approval_gate.open(execution_id, step, payload)
        result.status = StepStatus.WAITING
        result.approval_id = approval.id
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    def complete_approval(
        self,
        step: StepDefinition,
        approval,
        context: ExecutionContext,
        previous: Optional[StepResult] = None,
    ) -> StepResult:
        """Turn a resolved approval into the step's final result."""
        result = previous or StepResult(
            step_id=step.id,
            name=step.name,
            order=step.order,
            status=StepStatus.WAITING,
            output_variable=step.output_variable,
        )
        result.approval_id = approval.id
        result.completed_at = utcnow().isoformat()
        policy = step.approval

        status = ApprovalStatus(approval.status)
        if status == ApprovalStatus.TIMED_OUT:
            on_timeout = policy.on_timeout if policy else OnTimeout.FAIL
            if on_timeout == OnTimeout.FAIL:
                waited = f" after {policy.timeout_seconds:g}s" if policy and policy.timeout_seconds else ""
                return self._mark_failed(result, f"Approval timed out{waited}")
            status = ApprovalStatus.APPROVED if on_timeout == OnTimeout.APPROVE else ApprovalStatus.REJECTED
            logger.info(f"Approval for step '{step.name}' timed out; applying on_timeout={on_timeout.value}")

        if status == ApprovalStatus.REJECTED:
            on_reject = policy.on_reject if policy else OnReject.FAIL
            if on_reject == OnReject.SKIP:
                result.status = StepStatus.SKIPPED
                context.mark_skipped(step.output_variable, step.name)
                return result
            who = approval.approver or "approver"
            reason = f": {approval.comments}" if approval.comments else ""
            return self._mark_failed(result, f"Approval rejected by {who}{reason}")

        if status != ApprovalStatus.APPROVED:
            return self._mark_failed(result, f"Approval is still {approval.status}")

        try:
            if step.output_variable:
                context.set_output(step.output_variable, approval.payload)
        except OutputVariableCollision as e:
            return self._mark_failed(result, e.message)
        result.status = StepStatus.COMPLETED
        result.output = approval.payload
        return result

    # ─── Parallel groups ───────────────────────────────────

    async def _run_parallel_group(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        execution_id: str,
    ) -> dict:
        runs = [
            self.run_step(member, context, execution_id, write_output=False, group_id=step.id)
            for member in step.members
        ]
        timeout = step.timeout_seconds
        try:
            if timeout:
                results = await asyncio.wait_for(asyncio.gather(*runs), timeout)
            else:
                results = await asyncio.gather(*runs)
        except asyncio.TimeoutError:
            raise StepTimeoutError(step.name, timeout)

        output: dict[str, Any] = {}
        failures = []
        for member, member_result in zip(step.members, results):
            context.record(member_result)
            if member_result.status == StepStatus.FAILED:
                failures.append(f"member '{member.name}' failed: {member_result.error}")
            elif member_result.status == StepStatus.COMPLETED and member.output_variable:
                output[member.output_variable] = member_result.output

        if failures:
            raise StepFailed("; ".join(failures))
        return output

    # ─── Helpers ───────────────────────────────────────────

    def _fail(self, result: StepResult, message: str, start: float) -> StepResult:
        logger.warning(f"Step '{result.name}' failed: {message}")
        self._mark_failed(result, message)
        return self._finish(result, start)

    @staticmethod
    def _mark_failed(result: StepResult, message: str) -> StepResult:
        result.status = StepStatus.FAILED
        result.error = message
        return result

    @staticmethod
    def _finish(result: StepResult, start: float) -> StepResult:
        result.completed_at = utcnow().isoformat()
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result
