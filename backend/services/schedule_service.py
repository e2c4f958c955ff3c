"""Schedule service: cron schedules that start workflows."""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError
from db.models.schedule import WorkflowSchedule
from db.models.workflow import Workflow
from services.base import BaseService
from workflow.engine import validate_payload
from workflow.scheduler import compute_next_run, validate_cron, validate_timezone

logger = logging.getLogger(__name__)


class ScheduleService(BaseService[WorkflowSchedule]):
    """Service for workflow schedules.

    next_run_at is recomputed whenever the cron expression, the timezone
    or the enabled flag changes; a disabled schedule has no next run.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowSchedule, db)

    async def _get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.db.get(Workflow, workflow_id)
        if not workflow or workflow.is_deleted:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def create_schedule(
        self,
        workflow_id: str,
        name: str,
        cron_expression: str,
        timezone: str = "UTC",
        trigger_payload: Optional[dict] = None,
        is_enabled: bool = True,
    ) -> WorkflowSchedule:
        workflow = await self._get_workflow(workflow_id)
        validate_cron(cron_expression)
        validate_timezone(timezone)
        validate_payload(workflow.input_schema, trigger_payload or {})

        schedule = await self.create({
            "workflow_id": workflow_id,
            "name": name,
            "cron_expression": cron_expression,
            "timezone": timezone,
            "trigger_payload": trigger_payload or {},
            "is_enabled": is_enabled,
            "next_run_at": compute_next_run(cron_expression, timezone) if is_enabled else None,
        })
        logger.info(
            f"Created schedule '{name}' for workflow {workflow_id}: "
            f"{cron_expression} ({timezone}), next run {schedule.next_run_at}"
        )
        return schedule

    async def update_schedule(self, schedule_id: str, data: dict[str, Any]) -> WorkflowSchedule:
        schedule = await self.get_or_404(schedule_id)
        data = {k: v for k, v in data.items() if v is not None}

        cron_expression = data.get("cron_expression", schedule.cron_expression)
        timezone = data.get("timezone", schedule.timezone)
        is_enabled = data.get("is_enabled", schedule.is_enabled)
        validate_cron(cron_expression)
        validate_timezone(timezone)
        if "trigger_payload" in data:
            workflow = await self._get_workflow(schedule.workflow_id)
            validate_payload(workflow.input_schema, data["trigger_payload"])

        for key in ("name", "cron_expression", "timezone", "trigger_payload", "is_enabled"):
            if key in data:
                setattr(schedule, key, data[key])
        schedule.next_run_at = compute_next_run(cron_expression, timezone) if is_enabled else None

        await self.db.flush()
        await self.db.refresh(schedule)
        return schedule

    async def set_enabled(self, schedule_id: str, enabled: bool) -> WorkflowSchedule:
        return await self.update_schedule(schedule_id, {"is_enabled": enabled})

    async def list_schedules(self, workflow_id: Optional[str] = None, offset: int = 0, limit: int = 50):
        return await self.list(offset=offset, limit=limit, filters={"workflow_id": workflow_id})
