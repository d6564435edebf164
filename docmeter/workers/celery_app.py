"""
Celery application configuration.
Sets up Celery with Redis broker and result backend.
"""
import logging
from celery import Celery
from celery.signals import task_prerun, task_postrun, task_failure, worker_init
from docmeter.config import settings
from docmeter.utils.metrics import (
    worker_tasks_processing,
    worker_tasks_completed_total,
    worker_tasks_failed_total,
)
from docmeter.utils.logging import configure_logging
from docmeter.workers.metrics_server import start_metrics_server

logger = logging.getLogger(__name__)

celery_app = Celery(
    "docmeter",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "docmeter.tasks.process_long_job",
        "docmeter.tasks.deduct_credits",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=15 * 60,  # 15 minutes
    task_soft_time_limit=12 * 60,  # 12 minutes
    task_acks_late=True,  # Redeliver if a worker dies mid-task
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=200,
    worker_concurrency=4,
)

configure_logging('docmeter-worker', settings.log_level)


@worker_init.connect
def worker_init_handler(sender=None, **kwds):
    """Expose worker metrics; failures are logged, the worker keeps running."""
    try:
        start_metrics_server(port=9090)
    except OSError as e:
        logger.warning(f"Failed to start metrics server: {e}")


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **kwds):
    """Track task start."""
    task_name = task.name if task else "unknown"
    worker_tasks_processing.labels(task_name=task_name).inc()


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **kwds):
    """Track task completion."""
    task_name = task.name if task else "unknown"
    worker_tasks_processing.labels(task_name=task_name).dec()
    worker_tasks_completed_total.labels(task_name=task_name, state=state or "unknown").inc()


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, traceback=None, einfo=None, **kwds):
    """Track task failures."""
    task_name = sender.name if sender else "unknown"
    worker_tasks_failed_total.labels(task_name=task_name).inc()
