"""Tests for database models: basic creation and relationships."""

import pytest
from uuid import uuid4

from sqlalchemy import select


@pytest.mark.integration
class TestAgentModel:

    async def test_create_agent(self, db_session):
        from db.models.agent import Agent

        agent = Agent(
            id=str(uuid4()),
            name="Order Helper",
            system_prompt="Help customers with orders.",
            tool_names=["lookup_order"],
        )
        db_session.add(agent)
        await db_session.flush()
        assert agent.created_at is not None
        assert agent.is_active is True
        assert agent.temperature == 0.7

    async def test_soft_delete(self, agent):
        """SoftDeleteMixin should set is_deleted and deleted_at."""
        assert agent.is_deleted is False
        agent.soft_delete()
        assert agent.is_deleted is True
        assert agent.deleted_at is not None
        agent.restore()
        assert agent.deleted_at is None


@pytest.mark.integration
class TestWorkflowModel:

    async def test_steps_load_in_order(self, db_session, agent):
        from db.models.workflow import Workflow
        from db.models.workflow_step import WorkflowStep

        wf = Workflow(id=str(uuid4()), name="Two steps")
        db_session.add(wf)
        for order, name in ((1, "second"), (0, "first")):
            db_session.add(WorkflowStep(
                id=str(uuid4()),
                workflow_id=wf.id,
                name=name,
                step_order=order,
                step_type="AGENT_EXECUTION",
                agent_id=agent.id,
            ))
        await db_session.flush()

        result = await db_session.execute(
            select(Workflow).where(Workflow.id == wf.id).execution_options(populate_existing=True)
        )
        loaded = result.scalar_one()
        assert [s.name for s in loaded.steps] == ["first", "second"]
        assert loaded.execution_mode == "sync"
        assert loaded.is_public is False

    async def test_definition_from_model(self, make_workflow, agent):
        from workflow.definition import WorkflowDefinition

        wf = await make_workflow([{
            "name": "ask",
            "step_type": "AGENT_EXECUTION",
            "agent_id": agent.id,
            "output_variable": "answer",
            "retry_config": {"max_attempts": 2},
        }])
        definition = WorkflowDefinition.from_model(wf)
        [step] = definition.steps
        assert step.agent_id == agent.id
        assert step.retry.max_attempts == 2
        assert step.timeout_seconds == 300


@pytest.mark.integration
class TestExecutionModels:

    async def test_execution_with_records_and_approval(self, db_session, make_execution):
        from db.models.agent_execution import AgentExecutionRecord
        from db.models.approval import ApprovalRequest
        from db.models.execution import WorkflowExecution

        execution_id = await make_execution()
        db_session.add(AgentExecutionRecord(execution_id=execution_id, step_id="s1", attempt=1))
        db_session.add(AgentExecutionRecord(execution_id=execution_id, step_id="s1", attempt=2))
        db_session.add(ApprovalRequest(execution_id=execution_id, step_id="s2", payload={"draft": "x"}))
        await db_session.flush()

        execution = await db_session.get(WorkflowExecution, execution_id)
        assert execution.status == "running"

        records = (await db_session.execute(
            select(AgentExecutionRecord).where(AgentExecutionRecord.execution_id == execution_id)
        )).scalars().all()
        assert sorted(r.attempt for r in records) == [1, 2]
        assert all(r.status == "running" for r in records)

        approval = (await db_session.execute(select(ApprovalRequest))).scalar_one()
        assert approval.status == "pending"
        assert approval.payload == {"draft": "x"}
