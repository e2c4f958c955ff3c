"""Celery task to poll schedules and start workflow executions.

Runs every minute via Celery Beat. The due-schedule logic lives in
workflow.scheduler; this task only provides an event loop, a worker-safe
database engine and an orchestrator.
"""

import asyncio
import logging

from db.worker_session import worker_session_factory
from worker.celery_app import celery_app
from workflow.engine import build_orchestrator
from workflow.scheduler import dispatch_due_schedules

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.schedule_poller.poll_schedules",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
)
def poll_schedules(self):
    """Check for due schedules and start workflow executions."""
    logger.info("[schedule-poller] Polling schedules for due executions...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_poll_and_dispatch())
        logger.info(f"[schedule-poller] Done: {result}")
        return result
    except Exception as exc:
        logger.error(f"[schedule-poller] Polling failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()


async def _poll_and_dispatch() -> dict:
    async with worker_session_factory() as session_factory:
        orchestrator = build_orchestrator(session_factory)
        try:
            return await dispatch_due_schedules(session_factory, orchestrator)
        finally:
            await orchestrator.shutdown()
