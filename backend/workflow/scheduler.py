"""Scheduler Adapter: starts executions for due cron schedules.

Called every minute by Celery beat (worker.tasks.schedule_poller). A due
schedule is claimed by moving its next_run_at forward with a conditional
UPDATE before the execution starts, so two pollers never dispatch the same
occurrence.

All datetimes are NAIVE UTC to match the database columns.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from croniter import croniter
from sqlalchemy import select, update

from core.constants import ExecutionMode, TriggerType
from core.exceptions import EngineException, ValidationError
from db.base import utcnow
from db.models.schedule import WorkflowSchedule

logger = logging.getLogger(__name__)


def validate_cron(cron_expression: str) -> None:
    if not cron_expression or not croniter.is_valid(cron_expression):
        raise ValidationError(f"Invalid cron expression: {cron_expression!r}")


def validate_timezone(tz: str) -> None:
    try:
        ZoneInfo(tz)
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz!r}")


def compute_next_run(cron_expression: str, tz: str = "UTC", after: Optional[datetime] = None) -> datetime:
    """Next occurrence strictly after `after` (naive UTC, default now).

    The cron expression is evaluated in the schedule's timezone; the result
    is converted back to naive UTC.
    """
    tz_obj = ZoneInfo(tz)
    utc = ZoneInfo("UTC")
    base = (after or utcnow()).replace(tzinfo=utc).astimezone(tz_obj)
    next_local = croniter(cron_expression, base).get_next(datetime)
    return next_local.astimezone(utc).replace(tzinfo=None)


async def dispatch_due_schedules(session_factory, orchestrator, now: Optional[datetime] = None) -> dict:
    """Start one execution per due schedule. Returns dispatch counters."""
    now = now or utcnow()
    dispatched = 0
    skipped = 0
    errors = 0

    async with session_factory() as session:
        result = await session.execute(
            select(WorkflowSchedule)
            .where(WorkflowSchedule.is_enabled == True)       # noqa: E712
            .where(WorkflowSchedule.is_deleted == False)       # noqa: E712
            .where(WorkflowSchedule.next_run_at != None)       # noqa: E711
            .where(WorkflowSchedule.next_run_at <= now)
            .order_by(WorkflowSchedule.next_run_at)
        )
        due_schedules = result.scalars().all()

    if not due_schedules:
        logger.debug("[scheduler] No due schedules")
        return {"dispatched": 0, "skipped": 0, "errors": 0}

    logger.info(f"[scheduler] Found {len(due_schedules)} due schedule(s)")

    for schedule in due_schedules:
        try:
            next_run = compute_next_run(schedule.cron_expression, schedule.timezone, after=now)
        except (KeyError, ValueError) as e:
            logger.error(f"[scheduler] Schedule '{schedule.name}' has a bad cron/timezone: {e}")
            next_run = now + timedelta(seconds=60)

        # Claim this occurrence
        async with session_factory() as session:
            claimed = await session.execute(
                update(WorkflowSchedule)
                .where(
                    WorkflowSchedule.id == schedule.id,
                    WorkflowSchedule.next_run_at == schedule.next_run_at,
                )
                .values(next_run_at=next_run, last_run_at=now, updated_at=now)
            )
            await session.commit()
        if claimed.rowcount != 1:
            skipped += 1
            continue

        try:
            execution = await orchestrator.start_execution(
                schedule.workflow_id,
                schedule.trigger_payload or {},
                trigger_type=TriggerType.SCHEDULED,
                mode=ExecutionMode.SYNC,
            )
        except EngineException as e:
            errors += 1
            logger.warning(f"[scheduler] Schedule '{schedule.name}' could not start: {e.message}")
            continue

        dispatched += 1
        logger.info(
            f"[scheduler] Schedule '{schedule.name}' started execution {execution.id} "
            f"({execution.status}); next run {next_run}"
        )

    return {"dispatched": dispatched, "skipped": skipped, "errors": errors}
