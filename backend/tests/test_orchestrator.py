"""Integration tests for the workflow orchestrator: lifecycle, approvals, modes and cancellation."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from core.constants import ApprovalStatus, ExecutionMode, ExecutionStatus, StepStatus
from core.exceptions import (
    ApprovalAlreadyResolved,
    ConflictError,
    ForbiddenError,
    InvalidInput,
    NotFoundError,
)
from db.base import utcnow
from db.models.agent_execution import AgentExecutionRecord
from db.models.execution import WorkflowExecution
from fakes import text_response, tool_use_response
from services.workflow_service import WorkflowService


pytestmark = pytest.mark.integration


QUESTION_SCHEMA = {
    "type": "object",
    "properties": {"question": {"type": "string"}, "category": {"type": "string"}},
    "required": ["question"],
}


def ask_step(agent_id, **fields) -> dict:
    step = {
        "name": "answer",
        "step_type": "AGENT_EXECUTION",
        "agent_id": agent_id,
        "input_mapping": {"message": "${trigger.question}"},
        "output_variable": "answer",
    }
    step.update(fields)
    return step


def review_step(**approval_config) -> dict:
    return {
        "name": "review",
        "step_type": "APPROVAL",
        "input_mapping": {"draft": "${answer}"},
        "output_variable": "review",
        "depends_on": [0],
        "approval_config": {"required_role": "support_lead", **approval_config},
    }


async def wait_for_status(orchestrator, execution_id, statuses, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        execution = await orchestrator.get_execution(execution_id)
        if execution.status in statuses:
            return execution
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"execution stuck in {execution.status}")
        await asyncio.sleep(0.05)


# ─── Happy path ───

class TestSyncExecution:
    async def test_agent_with_tool_completes(self, orchestrator, model_client, agent, make_workflow):
        model_client.responses = [
            tool_use_response(("tu_1", "search_products", {"query": "drill"})),
            text_response("We stock the Cordless Drill 18V and the Hammer Drill 750W."),
        ]
        workflow = await make_workflow([ask_step(agent.id)], input_schema=QUESTION_SCHEMA)

        execution = await orchestrator.start_execution(workflow.id, {"question": "Which drills do you have?"})

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["answer"].startswith("We stock the Cordless Drill")
        assert execution.context["trigger"] == {"question": "Which drills do you have?"}
        assert execution.completed_at is not None
        assert execution.error_message is None
        [result] = execution.step_results.values()
        assert result["status"] == StepStatus.COMPLETED.value

        tool_result = model_client.calls[1]["messages"][-1]["content"][0]
        assert "Cordless Drill 18V" in tool_result["content"]
        assert "Hammer Drill 750W" in tool_result["content"]

    async def test_outputs_flow_between_steps(self, orchestrator, model_client, agent, make_workflow):
        model_client.responses = [text_response("draft text"), text_response("final text")]
        workflow = await make_workflow([
            ask_step(agent.id, name="draft", output_variable="draft"),
            ask_step(agent.id, name="polish", input_mapping="Polish this: ${draft}", output_variable="final"),
        ])

        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["final"] == "final text"
        assert model_client.calls[1]["messages"][0]["content"] == "Polish this: draft text"

    async def test_step_failure_fails_execution(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id, input_mapping="${trigger.missing}")])

        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})

        assert execution.status == ExecutionStatus.FAILED.value
        assert "Step 'answer' failed" in execution.error_message
        assert "trigger.missing" in execution.error_message

    async def test_guarded_steps_skip(self, orchestrator, model_client, agent, make_workflow):
        workflow = await make_workflow([
            ask_step(agent.id, condition_expression="${trigger.category} == garden"),
        ])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q", "category": "tools"})

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert "answer" not in execution.context
        assert model_client.call_count == 0

    async def test_agent_records_per_execution(self, orchestrator, agent, make_workflow, session_factory):
        workflow = await make_workflow([ask_step(agent.id)])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})

        async with session_factory() as session:
            records = (await session.execute(
                select(AgentExecutionRecord).where(AgentExecutionRecord.execution_id == execution.id)
            )).scalars().all()
        assert len(records) == 1
        assert records[0].output_data["reply"] == "All done."


# ─── Start validation ───

class TestStartValidation:
    async def test_unknown_workflow(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.start_execution("nope", {})

    async def test_invalid_payload_creates_nothing(self, orchestrator, agent, make_workflow, session_factory):
        workflow = await make_workflow([ask_step(agent.id)], input_schema=QUESTION_SCHEMA)
        with pytest.raises(InvalidInput) as exc:
            await orchestrator.start_execution(workflow.id, {"question": 42})
        assert exc.value.errors

        async with session_factory() as session:
            count = len((await session.execute(select(WorkflowExecution))).scalars().all())
        assert count == 0

    async def test_payload_must_be_object(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id)])
        with pytest.raises(InvalidInput):
            await orchestrator.start_execution(workflow.id, ["not", "an", "object"])

    async def test_inactive_workflow(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id)], is_active=False)
        with pytest.raises(ConflictError):
            await orchestrator.start_execution(workflow.id, {"question": "q"})

    async def test_public_start_requires_public_workflow(self, orchestrator, agent, make_workflow):
        private = await make_workflow([ask_step(agent.id)])
        with pytest.raises(ForbiddenError):
            await orchestrator.start_public_execution(private.id, {"question": "q"})

        public = await make_workflow([ask_step(agent.id)], name="Public Q&A", is_public=True)
        execution = await orchestrator.start_public_execution(public.id, {"question": "q"})
        assert execution.status == ExecutionStatus.COMPLETED.value


# ─── Approvals ───

class TestApprovalFlow:
    async def test_suspends_then_approves(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id), review_step()])

        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        assert execution.status == ExecutionStatus.RUNNING.value
        assert execution.current_step_index == 1

        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)
        assert approval.status == ApprovalStatus.PENDING.value
        assert approval.payload == {"draft": "All done."}

        await orchestrator.resolve_approval(approval.id, True, approver="lead@example.com")
        execution = await orchestrator.get_execution(execution.id)

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["review"] == {"draft": "All done."}

    async def test_steps_after_approval_run_on_resume(self, orchestrator, model_client, agent, make_workflow):
        model_client.responses = [text_response("first"), text_response("after review")]
        workflow = await make_workflow([
            ask_step(agent.id),
            review_step(),
            ask_step(agent.id, name="send", input_mapping="${review.draft}", output_variable="sent"),
        ])

        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)
        await orchestrator.resolve_approval(approval.id, True, approver="lead")

        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["sent"] == "after review"
        assert model_client.calls[1]["messages"][0]["content"] == "first"

    async def test_rejection_fails_execution(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id), review_step()])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)

        await orchestrator.resolve_approval(approval.id, False, approver="lead", comments="wrong price")

        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.FAILED.value
        assert "rejected by lead: wrong price" in execution.error_message

    async def test_second_decision_conflicts(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id), review_step()])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)

        await orchestrator.resolve_approval(approval.id, True, approver="a")
        with pytest.raises(ApprovalAlreadyResolved):
            await orchestrator.resolve_approval(approval.id, False, approver="b")

    async def test_timer_times_out_approval(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([
            ask_step(agent.id),
            review_step(timeout_seconds=1, on_timeout="fail"),
        ])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        assert execution.status == ExecutionStatus.RUNNING.value

        execution = await wait_for_status(orchestrator, execution.id, {ExecutionStatus.FAILED.value})
        assert "timed out" in execution.error_message
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)
        assert approval.status == ApprovalStatus.TIMED_OUT.value

    async def test_sweep_applies_on_timeout_approve(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([
            ask_step(agent.id),
            review_step(timeout_seconds=600, on_timeout="approve"),
        ])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})

        expired = await orchestrator.sweep_approvals(now=utcnow() + timedelta(seconds=601))
        assert len(expired) == 1

        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["review"] == {"draft": "All done."}

    async def test_decision_after_cancel_is_ignored(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id), review_step()])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)

        await orchestrator.cancel_execution(execution.id)
        result = await orchestrator.resolve_approval(approval.id, True, approver="lead")

        assert result.status == ApprovalStatus.PENDING.value
        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.FAILED.value
        assert execution.error_message == "Execution cancelled"

    async def test_decision_before_suspension_is_recorded(self, orchestrator, agent, make_workflow, monkeypatch):
        gate = orchestrator.approval_gate
        open_request = gate.open

        opened_steps = []

        async def open_and_decide(execution_id, step, payload, now=None):
            approval = await open_request(execution_id, step, payload, now)
            opened_steps.append(step.id)
            await orchestrator.resolve_approval(approval.id, True, approver="quick-lead")
            return approval

        monkeypatch.setattr(gate, "open", open_and_decide)
        workflow = await make_workflow([ask_step(agent.id), review_step()])

        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})

        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["review"] == {"draft": "All done."}
        assert execution.step_results[opened_steps[0]]["status"] == StepStatus.COMPLETED.value
        [approval] = await gate.list_for_execution(execution.id)
        assert approval.status == ApprovalStatus.APPROVED.value
        assert approval.resumed_at is not None


# ─── Resuming from the stored definition ───

class TestResumeSnapshot:
    async def test_removed_approval_step_still_resumes(self, orchestrator, session_factory, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id), review_step()])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)

        async with session_factory() as session:
            await WorkflowService(session).remove_step(workflow.id, approval.step_id)
            await session.commit()

        await orchestrator.resolve_approval(approval.id, True, approver="lead")

        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.COMPLETED.value
        assert execution.context["review"] == {"draft": "All done."}

    async def test_step_added_while_suspended_does_not_run(
        self, orchestrator, session_factory, model_client, agent, make_workflow
    ):
        workflow = await make_workflow([ask_step(agent.id), review_step()])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)

        async with session_factory() as session:
            extra = await WorkflowService(session).add_step(
                workflow.id, ask_step(agent.id, name="extra", output_variable="extra")
            )
            await session.commit()

        await orchestrator.resolve_approval(approval.id, True, approver="lead")

        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.COMPLETED.value
        assert model_client.call_count == 1
        assert extra.id not in execution.step_results
        assert "extra" not in execution.context

    async def test_unusable_snapshot_fails_execution(self, orchestrator, session_factory, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id), review_step()])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)

        snapshot = dict(execution.definition_snapshot)
        snapshot["steps"] = snapshot["steps"][:1]
        async with session_factory() as session:
            await session.execute(
                update(WorkflowExecution)
                .where(WorkflowExecution.id == execution.id)
                .values(definition_snapshot=snapshot)
            )
            await session.commit()

        await orchestrator.resolve_approval(approval.id, True, approver="lead")

        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.FAILED.value
        assert execution.error_message.startswith("Unexpected error:")
        assert approval.step_id in execution.error_message
        assert execution.completed_at is not None

    async def test_missing_snapshot_fails_execution(self, orchestrator, session_factory, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id), review_step()])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        [approval] = await orchestrator.approval_gate.list_for_execution(execution.id)

        async with session_factory() as session:
            await session.execute(
                update(WorkflowExecution)
                .where(WorkflowExecution.id == execution.id)
                .values(definition_snapshot=None)
            )
            await session.commit()

        await orchestrator.resolve_approval(approval.id, True, approver="lead")

        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.FAILED.value
        assert "no definition snapshot" in execution.error_message


# ─── Async mode and cancellation ───

class TestAsyncMode:
    async def test_returns_running_then_completes(self, orchestrator, model_client, agent, make_workflow):
        model_client.delay = 0.05
        workflow = await make_workflow([ask_step(agent.id)], execution_mode=ExecutionMode.ASYNC.value)

        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        assert execution.status == ExecutionStatus.RUNNING.value

        await orchestrator.wait_idle()
        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.COMPLETED.value

    async def test_mode_override(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id)], execution_mode=ExecutionMode.ASYNC.value)
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"}, mode=ExecutionMode.SYNC)
        assert execution.status == ExecutionStatus.COMPLETED.value

    async def test_cancel_stops_before_next_step(self, orchestrator, model_client, agent, make_workflow):
        model_client.delay = 0.2
        workflow = await make_workflow(
            [ask_step(agent.id), ask_step(agent.id, name="second", output_variable="second")],
            execution_mode=ExecutionMode.ASYNC.value,
        )
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        while model_client.call_count == 0:
            await asyncio.sleep(0.01)

        cancelled = await orchestrator.cancel_execution(execution.id)
        assert cancelled.status == ExecutionStatus.FAILED.value

        await orchestrator.wait_idle()
        execution = await orchestrator.get_execution(execution.id)
        assert execution.status == ExecutionStatus.FAILED.value
        assert execution.error_message == "Execution cancelled"
        assert model_client.call_count == 1

    async def test_cancel_finished_execution_conflicts(self, orchestrator, agent, make_workflow):
        workflow = await make_workflow([ask_step(agent.id)])
        execution = await orchestrator.start_execution(workflow.id, {"question": "q"})
        with pytest.raises(ConflictError):
            await orchestrator.cancel_execution(execution.id)
