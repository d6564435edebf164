"""
Job records and the job state machine.

queued -> processing -> completed | failed | timeout. Terminal states are
absorbing and completed_at is written once, by the first terminal write.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from docmeter.errors import AlreadyExistsError, InvalidParameterError, JobNotFoundError
from docmeter.models.job import ACTIVE_STATUSES, TERMINAL_STATUSES, JobStatus, JobType
from docmeter.repositories.idempotency_store import JOBS, Condition, IdempotencyStore, Patch
from docmeter.utils.ids import generate_uuid, utcnow
from docmeter.utils.pagination import finish_page, page_window

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = (
    "job_id",
    "status",
    "job_type",
    "mode",
    "pages",
    "truncated",
    "created_at",
    "completed_at",
    "error_message",
)
LONG_JOB_FIELDS = (
    "artifact_url",
    "artifact_expires_at",
    "webhook_delivered",
    "webhook_delivered_at",
)
QUICK_JOB_FIELDS = ("timeout_occurred",)


@dataclass
class TransitionResult:
    """Outcome of the queued -> processing claim."""

    applied: bool
    job: Optional[Dict[str, Any]]


@dataclass
class JobPatch(Patch):
    """Result fields written together with a terminal status."""

    pages: Optional[int] = None
    truncated: Optional[bool] = None
    artifact_key: Optional[str] = None
    artifact_url: Optional[str] = None
    artifact_expires_at: Optional[datetime] = None
    billing_status: Optional[str] = None


def new_job(
    owner_id: str,
    job_type: JobType,
    mode: str,
    webhook_url: Optional[str] = None,
    job_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a job record in its initial status: queued for long jobs, processing for quick ones."""
    status = JobStatus.QUEUED if job_type == JobType.LONG else JobStatus.PROCESSING
    return {
        "job_id": job_id or generate_uuid(),
        "owner_id": owner_id,
        "job_type": JobType(job_type).value,
        "mode": mode,
        "status": status.value,
        "created_at": None,
        "started_at": None,
        "completed_at": None,
        "error_message": None,
        "pages": None,
        "truncated": False,
        "artifact_key": None,
        "artifact_url": None,
        "artifact_expires_at": None,
        "webhook_url": webhook_url,
        "webhook_delivered": False,
        "webhook_delivered_at": None,
        "webhook_retry_count": 0,
        "timeout_occurred": False,
        "billing_status": None,
    }


class JobRegistry:
    """Persists jobs and enforces monotonic status transitions."""

    def __init__(self, store: IdempotencyStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def create(self, job: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new job.

        Raises:
            AlreadyExistsError: If the job_id is taken
        """
        record = dict(job)
        now = self.clock()
        record["created_at"] = record.get("created_at") or now
        if record["status"] == JobStatus.PROCESSING.value:
            record["started_at"] = record.get("started_at") or now
        if not await self.store.put(JOBS, record, if_absent=True):
            raise AlreadyExistsError(JOBS, record["job_id"])
        return record

    async def get(self, job_id: str) -> Dict[str, Any]:
        """
        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = await self.store.get(JOBS, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_for_owner(self, owner_id: str, job_id: str) -> Dict[str, Any]:
        """Fetch a job, hiding other accounts' jobs as not found."""
        job = await self.store.get(JOBS, job_id)
        if job is None or job["owner_id"] != owner_id:
            raise JobNotFoundError(job_id)
        return job

    async def transition_to_processing(self, job_id: str) -> TransitionResult:
        """
        Claim a queued job for processing.

        Only one caller can win for a given job: the status is swapped
        queued -> processing atomically. A job already processing or in a
        terminal state yields applied=False without any write. Store errors
        propagate so the queue message is redelivered.

        Returns:
            TransitionResult with applied=True only for the winning caller
        """
        job = await self.store.get(JOBS, job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found, skipping")
            return TransitionResult(applied=False, job=None)
        if job["status"] != JobStatus.QUEUED.value:
            logger.info(f"Job {job_id} already {job['status']}, skipping duplicate delivery")
            return TransitionResult(applied=False, job=job)

        swapped = await self.store.compare_and_swap(
            JOBS,
            job_id,
            expected={"status": JobStatus.QUEUED.value},
            new={"status": JobStatus.PROCESSING.value, "started_at": self.clock()},
        )
        current = await self.store.get(JOBS, job_id)
        if not swapped:
            logger.info(f"Job {job_id} claimed by another worker")
        return TransitionResult(applied=swapped, job=current)

    async def _finish(self, job_id: str, status: JobStatus, changes: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(changes)
        values["status"] = status.value
        values["completed_at"] = self.clock()
        updated = await self.store.conditional_update(
            JOBS,
            job_id,
            changes=values,
            conditions=[Condition("status", "in", ACTIVE_STATUSES)],
        )
        if updated is not None:
            return updated

        existing = await self.store.get(JOBS, job_id)
        if existing is None:
            raise JobNotFoundError(job_id)
        logger.info(
            f"Job {job_id} already {existing['status']}, ignoring transition to {status.value}"
        )
        return existing

    async def complete(self, job_id: str, result: JobPatch) -> Dict[str, Any]:
        """Mark a job completed. No effect on a job already in a terminal state."""
        return await self._finish(job_id, JobStatus.COMPLETED, result.as_changes())

    async def fail(self, job_id: str, error_message: str) -> Dict[str, Any]:
        """Mark a job failed. No effect on a job already in a terminal state."""
        return await self._finish(job_id, JobStatus.FAILED, {"error_message": error_message})

    async def mark_timeout(self, job_id: str, timeout_seconds: Optional[float] = None) -> Dict[str, Any]:
        """Mark a job timed out. No effect on a job already in a terminal state."""
        if timeout_seconds is not None:
            message = f"Job processing exceeded {timeout_seconds:g}-second timeout"
        else:
            message = "Job processing timed out"
        return await self._finish(
            job_id,
            JobStatus.TIMEOUT,
            {"error_message": message, "timeout_occurred": True},
        )

    async def record_delivery(self, job_id: str, delivered: bool, retry_count: int) -> Optional[Dict[str, Any]]:
        """Record callback delivery state. Allowed on terminal jobs since status is untouched."""
        changes: Dict[str, Any] = {
            "webhook_delivered": delivered,
            "webhook_retry_count": retry_count,
        }
        if delivered:
            changes["webhook_delivered_at"] = self.clock()
        return await self.store.conditional_update(JOBS, job_id, changes=changes)

    async def record_billing(self, job_id: str, billing_status: str) -> Optional[Dict[str, Any]]:
        """Record how a job was billed (billed, free, unbilled, pending)."""
        return await self.store.conditional_update(JOBS, job_id, changes={"billing_status": billing_status})

    async def list_for_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        limit: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        List an account's jobs, newest first.

        Returns:
            (jobs, next_token)
        """
        where: Dict[str, Any] = {"owner_id": owner_id}
        if status is not None:
            if status not in {s.value for s in JobStatus}:
                raise InvalidParameterError(f"Invalid status: {status}", parameter="status")
            where["status"] = status
        if job_type is not None:
            if job_type not in {t.value for t in JobType}:
                raise InvalidParameterError(f"Invalid job_type: {job_type}", parameter="job_type")
            where["job_type"] = job_type

        offset, limit = page_window(limit, next_token)
        rows = await self.store.query(
            JOBS,
            where=where,
            order_by="created_at",
            descending=True,
            limit=limit + 1,
            offset=offset,
        )
        return finish_page(rows, offset, limit)

    @staticmethod
    def to_public(job: Dict[str, Any]) -> Dict[str, Any]:
        """Status read model. Storage keys, owner and retry counters stay internal."""
        public = {name: job.get(name) for name in PUBLIC_FIELDS}
        if job.get("job_type") == JobType.LONG.value:
            public.update({name: job.get(name) for name in LONG_JOB_FIELDS})
        else:
            public.update({name: job.get(name) for name in QUICK_JOB_FIELDS})
        return public

    @staticmethod
    def is_terminal(job: Dict[str, Any]) -> bool:
        return job.get("status") in TERMINAL_STATUSES
