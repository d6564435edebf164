"""
Job orchestration: admission, rendering, billing and notification.

Quick jobs render inline under a hard timeout. Long jobs are queued and
processed by workers; queue redelivery is absorbed by the dedup transition
in JobRegistry. Billing happens only after a successful render, so
customers are never charged for failed jobs.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from docmeter.config import settings
from docmeter.errors import (
    AccountNotFoundError,
    ArtifactStorageError,
    InsufficientCreditsError,
    PageLimitExceededError,
    QueueUnavailableError,
    QuickJobTimeoutError,
    RenderError,
    StoreUnavailableError,
)
from docmeter.models.job import JobStatus, JobType
from docmeter.renderers.base import DocumentRenderer, RenderResult
from docmeter.services.credit_ledger import CreditLedger
from docmeter.services.job_registry import JobPatch, JobRegistry, new_job
from docmeter.services.money import to_money
from docmeter.services.plan_service import PlanService
from docmeter.services.rate_limiter import QuotaGuard, RateLimiter
from docmeter.services.webhook_dispatcher import DeliveryOutcome, WebhookDispatcher
from docmeter.services.webhook_registry import validate_url
from docmeter.storage.artifact_store import ArtifactStore
from docmeter.utils.ids import utcnow
from docmeter.utils.logging import log_job_completed, log_job_failed, log_job_started
from docmeter.utils.metrics import (
    job_duration_seconds,
    jobs_created_total,
    jobs_deduplicated_total,
    jobs_finished_total,
)

logger = logging.getLogger(__name__)

PAGE_POLICY_REJECT = "reject"
PAGE_POLICY_TRUNCATE = "truncate"

BILLING_BILLED = "billed"
BILLING_FREE = "free"
BILLING_UNBILLED = "unbilled"
BILLING_PENDING = "pending"

INTERNAL_ERROR_MESSAGE = "Internal error while processing job"


@dataclass
class JobRequest:
    """Validated submission from the API."""

    input_type: str
    content: str
    options: Dict[str, Any] = field(default_factory=dict)
    webhook_url: Optional[str] = None


@dataclass
class QuickJobResult:
    job: Dict[str, Any]
    document: bytes
    pages: int
    truncated: bool
    content_type: str = "application/pdf"


class JobProcessor:
    """
    Coordinates the services that handle one job end to end.

    Args:
        jobs: Job state machine
        ledger: Credit ledger
        plans: Plan lookup
        rate_limiter: Per-minute admission
        quota_guard: Usage quota admission
        dispatcher: Webhook fan-out
        renderer: Document renderer
        artifacts: Object storage for long-job output
        publish_job: Sends a long-job message to the queue
        publish_deduction: Sends a deduction message to the queue
    """

    def __init__(
        self,
        jobs: JobRegistry,
        ledger: CreditLedger,
        plans: PlanService,
        rate_limiter: RateLimiter,
        quota_guard: QuotaGuard,
        dispatcher: WebhookDispatcher,
        renderer: DocumentRenderer,
        artifacts: Optional[ArtifactStore] = None,
        publish_job: Optional[Callable[[Dict[str, Any]], Any]] = None,
        publish_deduction: Optional[Callable[[Dict[str, Any]], Any]] = None,
        quickjob_timeout_seconds: Optional[float] = None,
        max_pages: Optional[int] = None,
        page_limit_policy: Optional[str] = None,
        async_billing: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.jobs = jobs
        self.ledger = ledger
        self.plans = plans
        self.rate_limiter = rate_limiter
        self.quota_guard = quota_guard
        self.dispatcher = dispatcher
        self.renderer = renderer
        self.artifacts = artifacts
        self.publish_job = publish_job
        self.publish_deduction = publish_deduction
        self.quickjob_timeout_seconds = (
            settings.quickjob_timeout_seconds if quickjob_timeout_seconds is None else quickjob_timeout_seconds
        )
        self.max_pages = settings.max_pages if max_pages is None else max_pages
        self.page_limit_policy = page_limit_policy or settings.page_limit_policy
        self.async_billing = settings.async_billing if async_billing is None else async_billing
        self.clock = clock

    # Admission

    async def guard(self, account: Dict[str, Any]) -> Dict[str, Any]:
        """
        Admission checks run before a job is created.

        The credit check here is advisory; the authoritative check is the
        conditional write in CreditLedger.deduct.

        Returns:
            The account's plan

        Raises:
            RateLimitExceededError, QuotaExceededError, InsufficientCreditsError
        """
        owner_id = account["account_id"]
        plan = await self.plans.get_plan(account.get("plan_id"))
        await self.rate_limiter.check_rate(owner_id, self.plans.rate_limit_for(plan))
        await self.quota_guard.check_quota(owner_id, account.get("total_count") or 0, self.plans.quota_for(plan))

        price = self.plans.price_for(plan)
        if price > 0 and (account.get("free_credits_remaining") or 0) <= 0:
            balance = to_money(account.get("credits_balance") or 0)
            if balance < price:
                raise InsufficientCreditsError(required=price, available=balance)
        return plan

    # Rendering

    async def _render(self, request: JobRequest) -> RenderResult:
        truncate = self.page_limit_policy == PAGE_POLICY_TRUNCATE
        result = await self.renderer.render(
            request.input_type,
            request.content,
            request.options,
            max_pages=self.max_pages if truncate else None,
        )
        if result.pages > self.max_pages:
            if not truncate:
                raise PageLimitExceededError(page_count=result.pages, max_pages=self.max_pages)
            result.pages = self.max_pages
            result.truncated = True
        return result

    # Billing

    async def _bill(self, owner_id: str, job_id: str, price: Decimal) -> str:
        """
        Charge for a rendered job.

        Insufficient credits at this point are an accepted loss: the job was
        already rendered, the failed deduction is in the ledger and the job
        is marked unbilled. Store outages defer billing to the queue.
        """
        message = {
            "job_id": job_id,
            "owner_id": owner_id,
            "amount": str(price),
            "timestamp": self.clock().isoformat(),
        }
        if self.async_billing and self.publish_deduction is not None:
            return self._publish_deduction(message)

        try:
            result = await self.ledger.deduct(owner_id, job_id, price)
        except (InsufficientCreditsError, AccountNotFoundError) as e:
            logger.warning(f"Job {job_id} delivered unbilled: {e.message}")
            return BILLING_UNBILLED
        except StoreUnavailableError as e:
            logger.error(f"Billing for job {job_id} deferred: {e}")
            if self.publish_deduction is None:
                return BILLING_UNBILLED
            return self._publish_deduction(message)
        return BILLING_FREE if result.outcome == "free_tier" else BILLING_BILLED

    def _publish_deduction(self, message: Dict[str, Any]) -> str:
        try:
            self.publish_deduction(message)
        except Exception as e:
            logger.error(f"Could not enqueue deduction for job {message['job_id']}: {e}")
            return BILLING_UNBILLED
        return BILLING_PENDING

    # Notification

    def event_payload(self, job: Dict[str, Any]) -> Dict[str, Any]:
        return {
            **self.jobs.to_public(job),
            "timestamp": self.clock().isoformat(),
        }

    async def _notify(self, job: Dict[str, Any], event_type: str) -> List[DeliveryOutcome]:
        extra_urls = [job["webhook_url"]] if job.get("webhook_url") else []
        try:
            return await self.dispatcher.dispatch(
                job["owner_id"],
                event_type,
                self.event_payload(job),
                job_id=job["job_id"],
                extra_urls=extra_urls,
            )
        except StoreUnavailableError as e:
            logger.error(f"Could not dispatch {event_type} for job {job['job_id']}: {e}")
            return []

    async def _record_delivery(self, job: Dict[str, Any], outcomes: List[DeliveryOutcome]) -> Dict[str, Any]:
        if not outcomes:
            return job
        delivered = any(outcome.success for outcome in outcomes)
        retries = sum(max(outcome.attempts - 1, 0) for outcome in outcomes)
        try:
            updated = await self.jobs.record_delivery(job["job_id"], delivered, retries)
        except StoreUnavailableError as e:
            logger.warning(f"Could not record webhook delivery for job {job['job_id']}: {e}")
            return job
        return updated or job

    # Quick jobs

    async def run_quick_job(self, account: Dict[str, Any], request: JobRequest) -> QuickJobResult:
        """
        Render a document synchronously.

        Raises:
            QuickJobTimeoutError: If rendering exceeds the quick-job timeout
            PageLimitExceededError: If the document is too long and policy is reject
            RenderError: If rendering fails
        """
        plan = await self.guard(account)
        owner_id = account["account_id"]
        job = await self.jobs.create(new_job(owner_id, JobType.QUICK, request.input_type))
        job_id = job["job_id"]
        job_type = JobType.QUICK.value
        jobs_created_total.labels(job_type=job_type).inc()
        log_job_started(logger, job_id=job_id, owner_id=owner_id, job_type=job_type)
        start_time = time.time()

        try:
            result = await asyncio.wait_for(self._render(request), timeout=self.quickjob_timeout_seconds)
        except asyncio.TimeoutError:
            timed_out = await self.jobs.mark_timeout(job_id, self.quickjob_timeout_seconds)
            self._record_finish(timed_out, start_time, error=timed_out.get("error_message"))
            await self._notify(timed_out, "job.timeout")
            raise QuickJobTimeoutError(job_id, self.quickjob_timeout_seconds)
        except (PageLimitExceededError, RenderError) as e:
            failed = await self.jobs.fail(job_id, e.message)
            self._record_finish(failed, start_time, error=e.message)
            await self._notify(failed, "job.failed")
            raise

        billing = await self._bill(owner_id, job_id, self.plans.price_for(plan))
        completed = await self.jobs.complete(
            job_id,
            JobPatch(pages=result.pages, truncated=result.truncated, billing_status=billing),
        )
        self._record_finish(completed, start_time)
        await self._notify(completed, "job.completed")
        return QuickJobResult(
            job=completed,
            document=result.document,
            pages=result.pages,
            truncated=result.truncated,
            content_type=result.content_type,
        )

    # Long jobs

    async def submit_long_job(self, account: Dict[str, Any], request: JobRequest) -> Dict[str, Any]:
        """
        Queue a document for asynchronous rendering.

        Returns:
            The queued job

        Raises:
            InvalidWebhookUrlError: If the callback URL is not https
            QueueUnavailableError: If the message could not be published
        """
        webhook_url = request.webhook_url or account.get("webhook_url")
        if webhook_url:
            validate_url(webhook_url)

        await self.guard(account)
        owner_id = account["account_id"]
        job = await self.jobs.create(
            new_job(owner_id, JobType.LONG, request.input_type, webhook_url=webhook_url)
        )
        jobs_created_total.labels(job_type=JobType.LONG.value).inc()

        message = {
            "job_id": job["job_id"],
            "owner_id": owner_id,
            "input_type": request.input_type,
            "content": request.content,
            "options": request.options,
            "webhook_url": webhook_url,
        }
        try:
            if self.publish_job is None:
                raise RuntimeError("no job publisher configured")
            self.publish_job(message)
        except Exception as e:
            logger.error(f"Failed to enqueue job {job['job_id']}: {e}")
            await self.jobs.fail(job["job_id"], "Failed to enqueue job")
            raise QueueUnavailableError(str(e))

        logger.info(f"Job {job['job_id']} queued for account {owner_id}")
        await self._notify(job, "job.queued")
        return job

    async def process_long_job(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Worker entry point for one queued job.

        Duplicate deliveries are skipped by the dedup transition. Render and
        storage failures end the job as failed and the message is consumed.
        Any other error after the claim marks the job failed and then
        propagates; the redelivery is skipped as a duplicate.

        Returns:
            The job in its final state, or None when this delivery was skipped
        """
        job_id = message["job_id"]
        transition = await self.jobs.transition_to_processing(job_id)
        if not transition.applied:
            jobs_deduplicated_total.inc()
            return None

        job = transition.job
        start_time = time.time()
        try:
            return await self._run_long_job(job, message, start_time)
        except Exception as e:
            logger.error(f"Job {job_id} crashed after claim: {e}", exc_info=True)
            await self._fail_claimed_job(job_id, start_time)
            raise

    async def _run_long_job(self, job: Dict[str, Any], message: Dict[str, Any], start_time: float) -> Dict[str, Any]:
        job_id = job["job_id"]
        owner_id = job["owner_id"]
        log_job_started(logger, job_id=job_id, owner_id=owner_id, job_type=JobType.LONG.value)
        await self._notify(job, "job.processing")

        request = JobRequest(
            input_type=message.get("input_type") or job.get("mode"),
            content=message.get("content", ""),
            options=message.get("options") or {},
        )
        try:
            result = await self._render(request)
            artifact_key, artifact_url, expires_at = self._store_artifact(owner_id, job_id, result)
        except (PageLimitExceededError, RenderError, ArtifactStorageError) as e:
            failed = await self.jobs.fail(job_id, e.message)
            self._record_finish(failed, start_time, error=e.message)
            outcomes = await self._notify(failed, "job.failed")
            return await self._record_delivery(failed, outcomes)

        try:
            _, plan = await self.plans.resolve(owner_id)
            price = self.plans.price_for(plan)
        except AccountNotFoundError:
            price = Decimal("0")
        billing = await self._bill(owner_id, job_id, price)

        completed = await self.jobs.complete(
            job_id,
            JobPatch(
                pages=result.pages,
                truncated=result.truncated,
                artifact_key=artifact_key,
                artifact_url=artifact_url,
                artifact_expires_at=expires_at,
                billing_status=billing,
            ),
        )
        self._record_finish(completed, start_time)
        outcomes = await self._notify(completed, "job.completed")
        return await self._record_delivery(completed, outcomes)

    async def _fail_claimed_job(self, job_id: str, start_time: float):
        try:
            failed = await self.jobs.fail(job_id, INTERNAL_ERROR_MESSAGE)
        except StoreUnavailableError as e:
            logger.error(f"Could not mark job {job_id} failed: {e}")
            return
        if failed.get("status") != JobStatus.FAILED.value:
            return
        self._record_finish(failed, start_time, error=INTERNAL_ERROR_MESSAGE)
        outcomes = await self._notify(failed, "job.failed")
        await self._record_delivery(failed, outcomes)

    def _store_artifact(self, owner_id: str, job_id: str, result: RenderResult):
        if self.artifacts is None:
            raise ArtifactStorageError(job_id, "storage not configured")
        key = ArtifactStore.key_for(owner_id, job_id)
        self.artifacts.upload(key, result.document, result.content_type)
        url, expires_at = self.artifacts.presigned_read_url(key)
        return key, url, expires_at

    async def process_deduction_message(self, message: Dict[str, Any]):
        """
        Worker entry point for a queued deduction.

        Insufficient credits and missing accounts are recorded and the
        message is consumed; store errors propagate for redelivery.
        """
        job_id = message["job_id"]
        owner_id = message["owner_id"]
        try:
            result = await self.ledger.deduct(owner_id, job_id, message.get("amount", "0"))
        except (InsufficientCreditsError, AccountNotFoundError) as e:
            logger.warning(f"Queued deduction for job {job_id} not applied: {e.message}")
            await self.jobs.record_billing(job_id, BILLING_UNBILLED)
            return None
        if not result.duplicate:
            billing = BILLING_FREE if result.outcome == "free_tier" else BILLING_BILLED
            await self.jobs.record_billing(job_id, billing)
        return result

    # Metrics and logs

    def _record_finish(self, job: Dict[str, Any], start_time: float, error: Optional[str] = None):
        duration = time.time() - start_time
        job_type = job.get("job_type")
        status = job.get("status")
        jobs_finished_total.labels(job_type=job_type, status=status).inc()
        job_duration_seconds.labels(job_type=job_type, status=status).observe(duration)
        if error:
            log_job_failed(
                logger,
                job_id=job["job_id"],
                owner_id=job.get("owner_id"),
                duration_ms=duration * 1000,
                error=error,
                job_type=job_type,
                include_traceback=False,
                status=status,
            )
        else:
            log_job_completed(
                logger,
                job_id=job["job_id"],
                owner_id=job.get("owner_id"),
                duration_ms=duration * 1000,
                job_type=job_type,
                pages=job.get("pages"),
            )
