"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Task routing to the scheduler queue
- Serialization and timezone settings
- Beat schedule for the schedule poller and the approval sweep
"""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "agent_workflow_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.schedule_poller.*": {"queue": "scheduler"},
        "worker.tasks.approvals.*": {"queue": "scheduler"},
        "worker.tasks.*": {"queue": "default"},
    },
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits; scheduled workflows run to completion inside the task
    task_soft_time_limit=max(settings.STEP_DEFAULT_TIMEOUT_SECONDS * 2, 300),
    task_time_limit=max(settings.STEP_DEFAULT_TIMEOUT_SECONDS * 4, 600),
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    beat_schedule={
        "poll-schedules": {
            "task": "worker.tasks.schedule_poller.poll_schedules",
            "schedule": crontab(minute="*/1"),  # Every minute
            "options": {"queue": "scheduler"},
        },
        "sweep-approvals": {
            "task": "worker.tasks.approvals.sweep_expired_approvals",
            "schedule": float(settings.APPROVAL_SWEEP_SECONDS),
            "options": {"queue": "scheduler"},
        },
    },

    include=[
        "worker.tasks.schedule_poller",
        "worker.tasks.approvals",
    ],
)
