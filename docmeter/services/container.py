"""
Service wiring for the API process and Celery workers.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from docmeter.config import settings
from docmeter.renderers.base import DocumentRenderer
from docmeter.repositories.idempotency_store import IdempotencyStore
from docmeter.services.credit_ledger import CreditLedger
from docmeter.services.job_processor import JobProcessor
from docmeter.services.job_registry import JobRegistry
from docmeter.services.payment_service import PaymentWebhookService
from docmeter.services.plan_service import PlanService
from docmeter.services.rate_limiter import QuotaGuard, RateLimiter
from docmeter.services.secret_cache import SecretCache, load_stripe_webhook_secret
from docmeter.services.webhook_dispatcher import WebhookDispatcher
from docmeter.services.webhook_registry import WebhookRegistry
from docmeter.storage.artifact_store import ArtifactStore
from docmeter.utils.ids import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: IdempotencyStore
    plans: PlanService
    jobs: JobRegistry
    ledger: CreditLedger
    rate_limiter: RateLimiter
    quota_guard: QuotaGuard
    webhooks: WebhookRegistry
    dispatcher: WebhookDispatcher
    processor: JobProcessor
    payments: PaymentWebhookService


def create_store(worker: bool = False) -> IdempotencyStore:
    """
    Build the store selected by STORE_BACKEND.

    Args:
        worker: Use a non-pooling engine suited to per-task event loops
    """
    backend = settings.store_backend.lower()
    if backend == "memory":
        from docmeter.repositories.memory_store import InMemoryStore
        logger.warning("Using in-memory store; data is lost on restart")
        return InMemoryStore()
    if backend == "sql":
        from docmeter.repositories.sql_store import SQLAlchemyStore
        if worker:
            from docmeter.database import create_worker_session_factory
            return SQLAlchemyStore(create_worker_session_factory())
        from docmeter.database import AsyncSessionLocal
        return SQLAlchemyStore(AsyncSessionLocal)
    raise ValueError(f"Invalid store backend: {backend}. Must be one of: 'sql', 'memory'")


def _default_renderer() -> DocumentRenderer:
    from docmeter.renderers.http_renderer import HttpRenderer
    return HttpRenderer()


def _queue_job(message: Dict[str, Any]):
    from docmeter.tasks.process_long_job import process_long_job_task
    process_long_job_task.delay(message)


def _queue_deduction(message: Dict[str, Any]):
    from docmeter.tasks.deduct_credits import deduct_credits_task
    deduct_credits_task.delay(message)


def build_services(
    store: IdempotencyStore,
    renderer: Optional[DocumentRenderer] = None,
    artifacts: Optional[ArtifactStore] = None,
    publish_job: Optional[Callable[[Dict[str, Any]], Any]] = _queue_job,
    publish_deduction: Optional[Callable[[Dict[str, Any]], Any]] = _queue_deduction,
    http_client: Optional[httpx.AsyncClient] = None,
    secrets: Optional[SecretCache] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **processor_options: Any,
) -> Services:
    """
    Assemble all services around one store.

    Collaborators, the clock and the retry sleep can be swapped for tests.
    """
    plans = PlanService(store)
    jobs = JobRegistry(store, clock=clock)
    ledger = CreditLedger(store, plans, clock=clock)
    webhooks = WebhookRegistry(store, plans, clock=clock)
    dispatcher = WebhookDispatcher(store, webhooks, http_client=http_client, sleep=sleep, clock=clock)
    rate_limiter = RateLimiter(store, clock=clock)
    quota_guard = QuotaGuard(store)
    processor = JobProcessor(
        jobs=jobs,
        ledger=ledger,
        plans=plans,
        rate_limiter=rate_limiter,
        quota_guard=quota_guard,
        dispatcher=dispatcher,
        renderer=renderer or _default_renderer(),
        artifacts=artifacts if artifacts is not None else ArtifactStore(),
        publish_job=publish_job,
        publish_deduction=publish_deduction,
        clock=clock,
        **processor_options,
    )
    payments = PaymentWebhookService(
        ledger,
        secrets or SecretCache(load_stripe_webhook_secret, ttl_seconds=settings.webhook_secret_ttl_seconds),
    )
    return Services(
        store=store,
        plans=plans,
        jobs=jobs,
        ledger=ledger,
        rate_limiter=rate_limiter,
        quota_guard=quota_guard,
        webhooks=webhooks,
        dispatcher=dispatcher,
        processor=processor,
        payments=payments,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """
    Dependency for FastAPI routes.
    Usage: services: Services = Depends(get_services)
    """
    global _services
    if _services is None:
        _services = build_services(create_store())
    return _services
