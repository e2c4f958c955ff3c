"""Tests for the approval gate: open, decide, expire and the first-writer-wins race."""

import asyncio
from datetime import timedelta

import pytest

from core.constants import ApprovalStatus, ExecutionStatus, OnTimeout, StepType
from core.exceptions import ApprovalAlreadyResolved, NotFoundError
from db.base import utcnow
from db.models.execution import WorkflowExecution
from workflow.approval import ApprovalGate
from workflow.definition import ApprovalPolicy, StepDefinition


pytestmark = pytest.mark.integration


def approval_step(role="support_lead", timeout=60.0, on_timeout=OnTimeout.REJECT) -> StepDefinition:
    return StepDefinition(
        id="step-review",
        name="review",
        order=1,
        step_type=StepType.APPROVAL,
        approval=ApprovalPolicy(required_role=role, timeout_seconds=timeout, on_timeout=on_timeout),
    )


@pytest.fixture
def gate(session_factory) -> ApprovalGate:
    return ApprovalGate(session_factory)


# ─── Opening ───

class TestOpen:
    async def test_pending_with_deadline(self, gate, make_execution):
        execution_id = await make_execution()
        now = utcnow()
        approval = await gate.open(execution_id, approval_step(timeout=90), {"draft": "hi"}, now=now)

        assert approval.status == ApprovalStatus.PENDING.value
        assert approval.required_role == "support_lead"
        assert approval.timeout_at == now + timedelta(seconds=90)
        assert approval.payload == {"draft": "hi"}

    async def test_no_deadline_without_timeout(self, gate, make_execution):
        execution_id = await make_execution()
        approval = await gate.open(execution_id, approval_step(timeout=None, on_timeout=None), None)
        assert approval.timeout_at is None

    async def test_unknown_id(self, gate):
        with pytest.raises(NotFoundError):
            await gate.get("nope")


# ─── Decisions ───

class TestDecide:
    async def test_approve(self, gate, make_execution):
        approval = await gate.open(await make_execution(), approval_step(), {})
        decided = await gate.decide(approval.id, True, approver="alice", comments="looks right")

        assert decided.status == ApprovalStatus.APPROVED.value
        assert decided.approver == "alice"
        assert decided.comments == "looks right"
        assert decided.decided_at is not None

    async def test_reject(self, gate, make_execution):
        approval = await gate.open(await make_execution(), approval_step(), {})
        decided = await gate.decide(approval.id, False, approver="bob")
        assert decided.status == ApprovalStatus.REJECTED.value

    async def test_second_decision_conflicts(self, gate, make_execution):
        approval = await gate.open(await make_execution(), approval_step(), {})
        await gate.decide(approval.id, True, approver="alice")

        with pytest.raises(ApprovalAlreadyResolved) as exc:
            await gate.decide(approval.id, False, approver="bob")
        assert exc.value.status == ApprovalStatus.APPROVED.value
        assert exc.value.status_code == 409

    async def test_ignored_when_execution_not_running(self, gate, make_execution, session_factory):
        execution_id = await make_execution()
        approval = await gate.open(execution_id, approval_step(), {})
        async with session_factory() as session:
            execution = await session.get(WorkflowExecution, execution_id)
            execution.status = ExecutionStatus.FAILED.value
            await session.commit()

        result = await gate.decide(approval.id, True, approver="alice")
        assert result.status == ApprovalStatus.PENDING.value


# ─── Timeouts ───

class TestExpire:
    async def test_not_due_yet(self, gate, make_execution):
        now = utcnow()
        approval = await gate.open(await make_execution(), approval_step(timeout=60), {}, now=now)
        assert await gate.expire(approval.id, now=now + timedelta(seconds=30)) is None

    async def test_due(self, gate, make_execution):
        now = utcnow()
        approval = await gate.open(await make_execution(), approval_step(timeout=60), {}, now=now)
        expired = await gate.expire(approval.id, now=now + timedelta(seconds=61))

        assert expired.status == ApprovalStatus.TIMED_OUT.value
        assert expired.approver == "system"

    async def test_decided_request_does_not_expire(self, gate, make_execution):
        now = utcnow()
        approval = await gate.open(await make_execution(), approval_step(timeout=60), {}, now=now)
        await gate.decide(approval.id, True, approver="alice")
        assert await gate.expire(approval.id, now=now + timedelta(hours=1)) is None

    async def test_sweep_only_due_requests(self, gate, make_execution):
        now = utcnow()
        short = await gate.open(await make_execution(), approval_step(timeout=10), {}, now=now)
        await gate.open(await make_execution(), approval_step(timeout=600), {}, now=now)

        expired = await gate.sweep_expired(now=now + timedelta(seconds=11))
        assert [a.id for a in expired] == [short.id]
        assert await gate.sweep_expired(now=now + timedelta(seconds=11)) == []


# ─── Races ───

class TestRace:
    async def test_decision_and_timeout_have_one_winner(self, gate, make_execution):
        now = utcnow()
        approval = await gate.open(await make_execution(), approval_step(timeout=1), {}, now=now)

        outcomes = await asyncio.gather(
            gate.decide(approval.id, True, approver="alice"),
            gate.expire(approval.id, now=now + timedelta(seconds=5)),
            return_exceptions=True,
        )
        decision, expiry = outcomes

        final = await gate.get(approval.id)
        if final.status == ApprovalStatus.APPROVED.value:
            assert expiry is None
        else:
            assert final.status == ApprovalStatus.TIMED_OUT.value
            assert isinstance(decision, ApprovalAlreadyResolved)

    async def test_concurrent_decisions_have_one_winner(self, gate, make_execution):
        approval = await gate.open(await make_execution(), approval_step(), {})

        outcomes = await asyncio.gather(
            *(gate.decide(approval.id, i % 2 == 0, approver=f"user-{i}") for i in range(4)),
            return_exceptions=True,
        )
        winners = [o for o in outcomes if not isinstance(o, Exception)]
        losers = [o for o in outcomes if isinstance(o, ApprovalAlreadyResolved)]
        assert len(winners) == 1
        assert len(losers) == 3

        final = await gate.get(approval.id)
        assert final.approver == winners[0].approver


# ─── Resume claim ───

class TestClaimResume:
    async def test_pending_request_cannot_be_claimed(self, gate, make_execution):
        approval = await gate.open(await make_execution(), approval_step(), {})
        assert await gate.claim_resume(approval.id) is False
        assert (await gate.get(approval.id)).resumed_at is None

    async def test_resolved_request_is_claimed_once(self, gate, make_execution):
        approval = await gate.open(await make_execution(), approval_step(), {})
        await gate.decide(approval.id, True, approver="alice")

        outcomes = await asyncio.gather(*(gate.claim_resume(approval.id) for _ in range(3)))

        assert sorted(outcomes) == [False, False, True]
        assert (await gate.get(approval.id)).resumed_at is not None


# ─── Queue ───

class TestQueue:
    async def test_list_and_count_by_role(self, gate, make_execution):
        await gate.open(await make_execution(), approval_step(role="support_lead"), {})
        await gate.open(await make_execution(), approval_step(role="support_lead"), {})
        other = await gate.open(await make_execution(), approval_step(role="finance"), {})

        assert await gate.count_pending() == 3
        assert await gate.count_pending("support_lead") == 2
        assert [a.id for a in await gate.list_pending("finance")] == [other.id]

        await gate.decide(other.id, True, approver="carol")
        assert await gate.count_pending("finance") == 0

    async def test_list_for_execution(self, gate, make_execution):
        execution_id = await make_execution()
        first = await gate.open(execution_id, approval_step(), {})
        await gate.open(await make_execution(), approval_step(), {})
        assert [a.id for a in await gate.list_for_execution(execution_id)] == [first.id]
