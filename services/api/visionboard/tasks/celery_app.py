"""Celery application configuration."""

import logging
import time

from celery import Celery
from celery.schedules import crontab
from celery.signals import task_postrun, task_prerun

from visionboard.config import get_settings
from visionboard.metrics import celery_task_duration_seconds, celery_task_total

logger = logging.getLogger(__name__)

settings = get_settings()

celery_app = Celery(
    "visionboard",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "visionboard.tasks.export_tasks",
        "visionboard.tasks.maintenance_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "visionboard.tasks.export_tasks.*": {"queue": "exports"},
        "visionboard.tasks.maintenance_tasks.*": {"queue": "default"},
    },
    beat_schedule={
        # Expired PKCE states: every 10 minutes
        "sweep-expired-pkce-states": {
            "task": "visionboard.tasks.maintenance_tasks.sweep_expired_pkce_states",
            "schedule": crontab(minute="*/10"),
        },
        # Dated sync logs past retention: daily at 3 AM UTC
        "prune-sync-logs": {
            "task": "visionboard.tasks.maintenance_tasks.prune_sync_logs",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)

_task_start_times: dict[str, float] = {}


@task_prerun.connect
def _on_task_prerun(task_id=None, task=None, **kwargs):
    _task_start_times[task_id] = time.monotonic()


@task_postrun.connect
def _on_task_postrun(task_id=None, task=None, state=None, **kwargs):
    name = task.name if task is not None else "unknown"
    started = _task_start_times.pop(task_id, None)
    if started is not None:
        celery_task_duration_seconds.labels(task_name=name).observe(time.monotonic() - started)
    status = "success" if state == "SUCCESS" else "failure"
    celery_task_total.labels(task_name=name, status=status).inc()
