"""Approval Gate: persistent human-approval requests.

Every transition out of PENDING is a single conditional UPDATE:

    UPDATE approval_requests SET status = ...
     WHERE id = :id AND status = 'pending'
       AND EXISTS (SELECT 1 FROM workflow_executions
                    WHERE id = approval_requests.execution_id AND status = 'running')

so a human decision, the in-process timer and the periodic sweep can race
freely and exactly one of them wins. Requests whose execution is no longer
running (cancelled, failed) are left untouched.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update

from core.constants import ApprovalStatus, ExecutionStatus
from core.exceptions import ApprovalAlreadyResolved, NotFoundError
from db.base import utcnow
from db.models.approval import ApprovalRequest
from db.models.execution import WorkflowExecution

logger = logging.getLogger(__name__)

SYSTEM_APPROVER = "system"


def _execution_running():
    return (
        select(WorkflowExecution.id)
        .where(
            WorkflowExecution.id == ApprovalRequest.execution_id,
            WorkflowExecution.status == ExecutionStatus.RUNNING.value,
        )
        .correlate(ApprovalRequest)
        .exists()
    )


class ApprovalGate:
    """Creates, resolves and lists approval requests."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # ─── Open ──────────────────────────────────────────────

    async def open(
        self,
        execution_id: str,
        step,
        payload: Any,
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        """Create a PENDING request for an APPROVAL step."""
        now = now or utcnow()
        policy = step.approval
        timeout_at = None
        if policy is not None and policy.timeout_seconds:
            timeout_at = now + timedelta(seconds=policy.timeout_seconds)

        approval = ApprovalRequest(
            execution_id=execution_id,
            step_id=step.id,
            status=ApprovalStatus.PENDING.value,
            required_role=policy.required_role if policy else None,
            timeout_at=timeout_at,
            payload=payload,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(approval)
            await session.commit()
            await session.refresh(approval)

        logger.info(
            f"Approval {approval.id} opened for step '{step.name}' "
            f"(execution {execution_id}, deadline {timeout_at})"
        )
        return approval

    # ─── Resolve ───────────────────────────────────────────

    async def decide(
        self,
        approval_id: str,
        approved: bool,
        approver: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> ApprovalRequest:
        """Approve or reject a pending request.

        Returns the updated request, or the unchanged PENDING request when its
        execution is no longer running.

        Raises:
            NotFoundError: unknown approval id
            ApprovalAlreadyResolved: the request already left PENDING
        """
        now = utcnow()
        status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        applied = await self._transition(
            approval_id,
            status=status.value,
            approver=approver,
            comments=comments,
            decided_at=now,
            updated_at=now,
        )
        approval = await self.get(approval_id)
        if applied:
            logger.info(f"Approval {approval_id} {status.value} by {approver or 'unknown'}")
            return approval
        if approval.status != ApprovalStatus.PENDING.value:
            raise ApprovalAlreadyResolved(approval_id, approval.status)
        logger.info(f"Approval {approval_id} ignored: execution {approval.execution_id} is not running")
        return approval

    async def expire(self, approval_id: str, now: Optional[datetime] = None) -> Optional[ApprovalRequest]:
        """Time out a request whose deadline has passed.

        Returns the TIMED_OUT request, or None when the request was already
        resolved, is not yet due, or its execution is no longer running.
        """
        now = now or utcnow()
        applied = await self._transition(
            approval_id,
            ApprovalRequest.timeout_at.is_not(None),
            ApprovalRequest.timeout_at <= now,
            status=ApprovalStatus.TIMED_OUT.value,
            approver=SYSTEM_APPROVER,
            decided_at=now,
            updated_at=now,
        )
        if not applied:
            return None
        logger.info(f"Approval {approval_id} timed out")
        return await self.get(approval_id)

    async def sweep_expired(self, now: Optional[datetime] = None) -> list[ApprovalRequest]:
        """Time out every due request. Returns the ones this call expired."""
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApprovalRequest.id).where(
                    ApprovalRequest.status == ApprovalStatus.PENDING.value,
                    ApprovalRequest.timeout_at.is_not(None),
                    ApprovalRequest.timeout_at <= now,
                    _execution_running(),
                )
            )
            due_ids = list(result.scalars().all())

        expired = []
        for approval_id in due_ids:
            approval = await self.expire(approval_id, now)
            if approval is not None:
                expired.append(approval)
        return expired

    async def claim_resume(self, approval_id: str, now: Optional[datetime] = None) -> bool:
        """Mark a resolved request as handed back to its execution.

        True for exactly one caller; the decision path, the timer, the sweep
        and the step that opened the request may all try.
        """
        now = now or utcnow()
        stmt = (
            update(ApprovalRequest)
            .where(
                ApprovalRequest.id == approval_id,
                ApprovalRequest.status != ApprovalStatus.PENDING.value,
                ApprovalRequest.resumed_at.is_(None),
            )
            .values(resumed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def _transition(self, approval_id: str, *conditions, **values) -> bool:
        stmt = (
            update(ApprovalRequest)
            .where(
                ApprovalRequest.id == approval_id,
                ApprovalRequest.status == ApprovalStatus.PENDING.value,
                _execution_running(),
                *conditions,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    # ─── Read ──────────────────────────────────────────────

    async def get(self, approval_id: str) -> ApprovalRequest:
        async with self.session_factory() as session:
            approval = await session.get(ApprovalRequest, approval_id)
        if approval is None:
            raise NotFoundError(f"Approval {approval_id} not found")
        return approval

    async def list_pending(self, role: Optional[str] = None) -> Sequence[ApprovalRequest]:
        """Pending requests, oldest first, optionally for one role."""
        query = select(ApprovalRequest).where(
            ApprovalRequest.status == ApprovalStatus.PENDING.value
        )
        if role is not None:
            query = query.where(ApprovalRequest.required_role == role)
        async with self.session_factory() as session:
            result = await session.execute(query.order_by(ApprovalRequest.created_at))
            return result.scalars().all()

    async def count_pending(self, role: Optional[str] = None) -> int:
        query = select(func.count()).select_from(ApprovalRequest).where(
            ApprovalRequest.status == ApprovalStatus.PENDING.value
        )
        if role is not None:
            query = query.where(ApprovalRequest.required_role == role)
        async with self.session_factory() as session:
            return (await session.execute(query)).scalar_one()

    async def list_for_execution(self, execution_id: str) -> Sequence[ApprovalRequest]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApprovalRequest)
                .where(ApprovalRequest.execution_id == execution_id)
                .order_by(ApprovalRequest.created_at)
            )
            return result.scalars().all()
