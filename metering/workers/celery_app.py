"""
Celery application configuration.
Sets up Celery with Redis broker and result backend, and the beat schedule
that rolls quota usage over at the start of each reset period.
"""
import logging
import time

from celery import Celery
from celery.schedules import crontab
from celery.signals import task_failure, task_postrun, task_prerun, worker_init

from metering.config import settings
from metering.utils.logging import configure_logging
from metering.utils.metrics import worker_task_duration_seconds, worker_tasks_total
from metering.workers.metrics_server import start_metrics_server

logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "metering",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["metering.tasks.reset_quotas"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    beat_schedule={
        "reset-daily-quotas": {
            "task": "reset_due_quotas",
            "schedule": crontab(minute=5, hour=0),
            "args": ("daily",),
        },
        "reset-weekly-quotas": {
            "task": "reset_due_quotas",
            "schedule": crontab(minute=10, hour=0, day_of_week="sun"),
            "args": ("weekly",),
        },
        "reset-monthly-quotas": {
            "task": "reset_due_quotas",
            "schedule": crontab(minute=15, hour=0, day_of_month=1),
            "args": ("monthly",),
        },
        "reset-yearly-quotas": {
            "task": "reset_due_quotas",
            "schedule": crontab(minute=20, hour=0, day_of_month=1, month_of_year=1),
            "args": ("yearly",),
        },
    },
)

_task_started_at = {}


@worker_init.connect
def worker_init_handler(sender=None, **kwargs):
    """Configure logging and expose metrics once the worker boots."""
    configure_logging("metering-worker", settings.log_level)
    try:
        start_metrics_server(port=settings.worker_metrics_port)
    except OSError as e:
        logger.warning(
            f"Failed to start metrics server: {e}",
            extra={"event": "worker_metrics_server_failed"}
        )


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **kwds):
    """Track task start."""
    _task_started_at[task_id] = time.time()


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **kwds):
    """Track task completion and duration."""
    task_name = task.name if task else "unknown"
    worker_tasks_total.labels(task=task_name, status=state or "unknown").inc()

    started_at = _task_started_at.pop(task_id, None)
    if started_at is not None:
        worker_task_duration_seconds.labels(task=task_name).observe(time.time() - started_at)


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, traceback=None, einfo=None, **kwds):
    """Log task failures; the postrun handler counts them."""
    task_name = sender.name if sender else "unknown"
    logger.error(
        f"Task {task_name} failed: {exception}",
        extra={"event": "worker_task_failed", "task": task_name, "task_id": task_id}
    )
