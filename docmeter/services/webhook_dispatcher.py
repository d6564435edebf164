"""
Webhook delivery with bounded retries, per-attempt history and stats.

Delivery is at-least-once and best effort: a failing endpoint never blocks
other endpoints and never fails the job that produced the event. Receivers
deduplicate with X-Webhook-Delivery-Id.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from docmeter.config import settings
from docmeter.errors import InvalidParameterError, StoreUnavailableError
from docmeter.repositories.idempotency_store import WEBHOOK_DELIVERIES, WEBHOOKS, IdempotencyStore
from docmeter.services.webhook_registry import VALID_EVENT_TYPES, WebhookRegistry
from docmeter.utils.ids import new_sortable_id, utcnow
from docmeter.utils.logging import log_webhook_delivery
from docmeter.utils.metrics import webhook_attempts_total, webhook_delivery_duration_seconds
from docmeter.utils.pagination import finish_page, page_window

logger = logging.getLogger(__name__)

DELIVERY_SUCCESS = "success"
DELIVERY_FAILED = "failed"
DELIVERY_TIMEOUT = "timeout"

HISTORY_FIELDS = (
    "delivery_id",
    "webhook_id",
    "job_id",
    "event_type",
    "url",
    "status",
    "status_code",
    "error_message",
    "retry_count",
    "delivered_at",
    "duration_ms",
    "payload_size_bytes",
)


@dataclass
class DeliveryOutcome:
    """Final result of delivering one event to one endpoint."""

    webhook_id: Optional[str]
    url: str
    success: bool
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class _Attempt:
    status: str
    status_code: int  # 0 for network errors and timeouts
    error: Optional[str]
    duration_ms: int


def is_retryable(status_code: int) -> bool:
    """Network errors, timeouts, 5xx and 429 are retried."""
    return status_code == 0 or status_code >= 500 or status_code == 429


class WebhookDispatcher:
    """
    Fans events out to subscribed webhooks.

    Args:
        store: Delivery history and webhook stats
        registry: Subscription lookup
        http_client: Shared client; a short-lived one is created per dispatch if None
        max_retries: Retries after the first attempt
        retry_delays: Backoff in seconds; the last value is reused
        timeout_seconds: Per-attempt timeout
        sleep: Awaitable sleep, injectable for tests
        clock: Current time, injectable for tests
    """

    def __init__(
        self,
        store: IdempotencyStore,
        registry: WebhookRegistry,
        http_client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
        timeout_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.registry = registry
        self.http_client = http_client
        self.max_retries = settings.webhook_max_retries if max_retries is None else max_retries
        self.retry_delays = list(retry_delays) if retry_delays is not None else settings.retry_delays
        self.timeout_seconds = settings.webhook_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.sleep = sleep
        self.clock = clock

    def _delay(self, attempt_index: int) -> float:
        if not self.retry_delays:
            return 0
        return self.retry_delays[min(attempt_index, len(self.retry_delays) - 1)]

    async def dispatch(
        self,
        owner_id: str,
        event_type: str,
        payload: Dict[str, Any],
        job_id: Optional[str] = None,
        extra_urls: Sequence[str] = (),
    ) -> List[DeliveryOutcome]:
        """
        Deliver an event to every active webhook of the account subscribed to it.

        extra_urls are per-job callback URLs, delivered like an ad-hoc
        subscription without stats. Deliveries run concurrently and one
        failure never aborts the others.

        Returns:
            One DeliveryOutcome per endpoint
        """
        webhooks = await self.registry.active_for_event(owner_id, event_type)
        subscribed_urls = {webhook["url"] for webhook in webhooks}
        targets = list(webhooks)
        for url in dict.fromkeys(extra_urls):
            if url and url not in subscribed_urls:
                targets.append({"webhook_id": None, "owner_id": owner_id, "url": url})

        if not targets:
            return []

        if self.http_client is not None:
            return await self._fan_out(self.http_client, targets, event_type, payload, job_id)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await self._fan_out(client, targets, event_type, payload, job_id)

    async def _fan_out(
        self,
        client: httpx.AsyncClient,
        targets: List[Dict[str, Any]],
        event_type: str,
        payload: Dict[str, Any],
        job_id: Optional[str],
    ) -> List[DeliveryOutcome]:
        results = await asyncio.gather(
            *(self._deliver(client, target, event_type, payload, job_id) for target in targets),
            return_exceptions=True,
        )
        outcomes = []
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Webhook delivery to {target['url']} crashed: {result}",
                    exc_info=(type(result), result, result.__traceback__),
                )
                outcomes.append(DeliveryOutcome(
                    webhook_id=target.get("webhook_id"),
                    url=target["url"],
                    success=False,
                    attempts=0,
                    error=str(result),
                ))
            else:
                outcomes.append(result)
        delivered = sum(1 for outcome in outcomes if outcome.success)
        logger.info(f"Event {event_type} delivered to {delivered}/{len(outcomes)} endpoints")
        return outcomes

    async def deliver(
        self,
        webhook: Dict[str, Any],
        event_type: str,
        payload: Dict[str, Any],
        job_id: Optional[str] = None,
    ) -> DeliveryOutcome:
        """Deliver one event to one webhook, retrying transient failures."""
        if self.http_client is not None:
            return await self._deliver(self.http_client, webhook, event_type, payload, job_id)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await self._deliver(client, webhook, event_type, payload, job_id)

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        webhook: Dict[str, Any],
        event_type: str,
        payload: Dict[str, Any],
        job_id: Optional[str],
    ) -> DeliveryOutcome:
        delivery_base_id = new_sortable_id()
        body = json.dumps({**payload, "event": event_type}, default=str).encode("utf-8")
        webhook_id = webhook.get("webhook_id")

        attempt_number = 0
        result: Optional[_Attempt] = None
        for attempt_index in range(self.max_retries + 1):
            attempt_number = attempt_index + 1
            delivery_id = f"{delivery_base_id}-{attempt_number}"
            result = await self._attempt(client, webhook, event_type, delivery_base_id, body)
            await self._record_attempt(webhook, delivery_id, event_type, job_id, body, attempt_index, result)

            if result.status == DELIVERY_SUCCESS or not is_retryable(result.status_code):
                break
            if attempt_index < self.max_retries:
                await self.sleep(self._delay(attempt_index))

        success = result is not None and result.status == DELIVERY_SUCCESS
        if webhook_id:
            await self._update_stats(webhook_id, success)
        return DeliveryOutcome(
            webhook_id=webhook_id,
            url=webhook["url"],
            success=success,
            attempts=attempt_number,
            status_code=result.status_code if result else None,
            error=result.error if result else None,
        )

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        webhook: Dict[str, Any],
        event_type: str,
        delivery_id: str,
        body: bytes,
    ) -> _Attempt:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.webhook_user_agent,
            "X-Webhook-Event": event_type,
            "X-Webhook-Id": webhook.get("webhook_id") or "",
            "X-Webhook-Delivery-Id": delivery_id,
            "X-Webhook-Timestamp": self.clock().isoformat(),
        }
        start = time.monotonic()
        try:
            response = await client.post(webhook["url"], content=body, headers=headers, timeout=self.timeout_seconds)
        except httpx.TimeoutException:
            return _Attempt(
                status=DELIVERY_TIMEOUT,
                status_code=0,
                error=f"Request timed out after {self.timeout_seconds:g}s",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except httpx.HTTPError as e:
            return _Attempt(
                status=DELIVERY_FAILED,
                status_code=0,
                error=str(e) or type(e).__name__,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        duration_ms = int((time.monotonic() - start) * 1000)
        if 200 <= response.status_code < 300:
            return _Attempt(DELIVERY_SUCCESS, response.status_code, None, duration_ms)
        return _Attempt(
            status=DELIVERY_FAILED,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}: {response.text[:200]}",
            duration_ms=duration_ms,
        )

    async def _record_attempt(
        self,
        webhook: Dict[str, Any],
        delivery_id: str,
        event_type: str,
        job_id: Optional[str],
        body: bytes,
        retry_count: int,
        result: _Attempt,
    ):
        webhook_attempts_total.labels(event_type=event_type, status=result.status).inc()
        webhook_delivery_duration_seconds.labels(event_type=event_type).observe(result.duration_ms / 1000)
        log_webhook_delivery(
            logger,
            webhook_id=webhook.get("webhook_id"),
            event_type=event_type,
            status=result.status,
            attempt=retry_count + 1,
            job_id=job_id,
            status_code=result.status_code,
            duration_ms=result.duration_ms,
            error=result.error,
        )
        record = {
            "delivery_id": delivery_id,
            "webhook_id": webhook.get("webhook_id"),
            "owner_id": webhook["owner_id"],
            "job_id": job_id,
            "event_type": event_type,
            "url": webhook["url"],
            "status": result.status,
            "status_code": result.status_code,
            "error_message": result.error,
            "retry_count": retry_count,
            "delivered_at": self.clock(),
            "duration_ms": result.duration_ms,
            "payload_size_bytes": len(body),
        }
        try:
            await self.store.put(WEBHOOK_DELIVERIES, record)
        except StoreUnavailableError as e:
            logger.warning(f"Could not record webhook delivery {delivery_id}: {e}")

    async def _update_stats(self, webhook_id: str, success: bool):
        now = self.clock()
        if success:
            changes = {"last_success_at": now, "last_triggered_at": now}
            increments = {"success_count": 1}
        else:
            changes = {"last_failure_at": now, "last_triggered_at": now}
            increments = {"failure_count": 1}
        try:
            await self.store.conditional_update(WEBHOOKS, webhook_id, changes=changes, increments=increments)
        except StoreUnavailableError as e:
            logger.warning(f"Could not update stats for webhook {webhook_id}: {e}")

    # History

    async def history_for_webhook(
        self,
        owner_id: str,
        webhook_id: str,
        status: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Delivery attempts for one webhook, newest first."""
        await self.registry.get(owner_id, webhook_id)
        return await self._history({"webhook_id": webhook_id}, status, event_type, limit, next_token)

    async def history_for_job(
        self,
        owner_id: str,
        job_id: str,
        status: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Delivery attempts for one job across all endpoints, newest first."""
        return await self._history({"job_id": job_id, "owner_id": owner_id}, status, event_type, limit, next_token)

    async def _history(
        self,
        where: Dict[str, Any],
        status: Optional[str],
        event_type: Optional[str],
        limit: Optional[int],
        next_token: Optional[str],
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        if status is not None:
            if status not in (DELIVERY_SUCCESS, DELIVERY_FAILED, DELIVERY_TIMEOUT):
                raise InvalidParameterError(f"Invalid status: {status}", parameter="status")
            where["status"] = status
        if event_type is not None:
            if event_type not in VALID_EVENT_TYPES:
                raise InvalidParameterError(f"Invalid event_type: {event_type}", parameter="event_type")
            where["event_type"] = event_type
        offset, limit = page_window(limit, next_token)
        rows = await self.store.query(
            WEBHOOK_DELIVERIES,
            where=where,
            order_by="delivered_at",
            descending=True,
            limit=limit + 1,
            offset=offset,
        )
        page, token = finish_page(rows, offset, limit)
        return [{name: row.get(name) for name in HISTORY_FIELDS} for row in page], token
