"""
Celery task for rendering queued (long) jobs.

Message: {job_id, owner_id, input_type, content, options, webhook_url}.
Redelivered messages are harmless: the dedup transition lets only one
delivery process a job.
"""
import logging
from typing import Any, Dict

from docmeter.errors import StoreUnavailableError
from docmeter.tasks.runner import run_async
from docmeter.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="process_long_job", bind=True, max_retries=5)
def process_long_job_task(self, message: Dict[str, Any]):
    """
    Process one long job.

    Store errors are retried with exponential backoff; every other outcome
    (completed, failed, skipped) consumes the message.
    """
    job_id = message.get("job_id")
    try:
        job = run_async(lambda services: services.processor.process_long_job(message))
    except StoreUnavailableError as e:
        countdown = 2 ** self.request.retries
        logger.warning(f"Store unavailable processing job {job_id}, retrying in {countdown}s: {e}")
        raise self.retry(exc=e, countdown=countdown)

    if job is None:
        return {"job_id": job_id, "status": "skipped"}
    return {"job_id": job_id, "status": job["status"]}
