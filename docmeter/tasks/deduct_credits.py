"""
Celery task for queued credit deductions.

Message: {job_id, owner_id, amount, timestamp}. Deductions are idempotent
per job_id, so redelivery never double-charges.
"""
import logging
from typing import Any, Dict

from docmeter.errors import LedgerConflictError, StoreUnavailableError
from docmeter.tasks.runner import run_async
from docmeter.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="deduct_credits", bind=True, max_retries=5)
def deduct_credits_task(self, message: Dict[str, Any]):
    """Apply one deduction message to the ledger."""
    job_id = message.get("job_id")
    try:
        result = run_async(lambda services: services.processor.process_deduction_message(message))
    except (StoreUnavailableError, LedgerConflictError) as e:
        countdown = 2 ** self.request.retries
        logger.warning(f"Deduction for job {job_id} not applied, retrying in {countdown}s: {e}")
        raise self.retry(exc=e, countdown=countdown)

    if result is None:
        return {"job_id": job_id, "status": "rejected"}
    return {"job_id": job_id, "status": result.outcome}
