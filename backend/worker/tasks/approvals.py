"""Celery task that times out overdue approval requests.

The API process arms an in-process timer for each approval with a deadline,
but timers die with the process. This sweep runs every
APPROVAL_SWEEP_SECONDS and resumes any execution whose approval is overdue.
"""

import asyncio
import logging

from db.worker_session import worker_session_factory
from worker.celery_app import celery_app
from workflow.engine import build_orchestrator

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.approvals.sweep_expired_approvals",
    bind=True,
    max_retries=1,
    default_retry_delay=10,
)
def sweep_expired_approvals(self):
    """Expire overdue approvals and resume the executions they block."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        expired = loop.run_until_complete(_sweep())
        if expired:
            logger.info(f"[approval-sweep] Expired {expired} approval(s)")
        return {"expired": expired}
    except Exception as exc:
        logger.error(f"[approval-sweep] Sweep failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()


async def _sweep() -> int:
    async with worker_session_factory() as session_factory:
        orchestrator = build_orchestrator(session_factory)
        try:
            expired = await orchestrator.sweep_approvals()
            await orchestrator.wait_idle()
            return len(expired)
        finally:
            await orchestrator.shutdown()
