"""
Webhook subscriptions per account, capped by the account's plan.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from docmeter.errors import (
    AccountNotFoundError,
    InvalidParameterError,
    InvalidWebhookUrlError,
    WebhookAccessDeniedError,
    WebhookLimitExceededError,
    WebhookNotFoundError,
)
from docmeter.repositories.idempotency_store import ACCOUNTS, WEBHOOKS, IdempotencyStore, Patch
from docmeter.services.plan_service import PlanService
from docmeter.utils.ids import new_sortable_id, utcnow
from docmeter.utils.pagination import finish_page, page_window

logger = logging.getLogger(__name__)

VALID_EVENT_TYPES = (
    "job.queued",
    "job.processing",
    "job.completed",
    "job.failed",
    "job.timeout",
)
DEFAULT_EVENTS = ["job.completed"]

PUBLIC_FIELDS = (
    "webhook_id",
    "name",
    "url",
    "events",
    "is_active",
    "success_count",
    "failure_count",
    "last_success_at",
    "last_failure_at",
    "last_triggered_at",
    "created_at",
    "updated_at",
)


@dataclass
class WebhookPatch(Patch):
    """Fields an owner may change on a webhook."""

    name: Optional[str] = None
    url: Optional[str] = None
    events: Optional[List[str]] = None
    is_active: Optional[bool] = None


def validate_url(url: str) -> str:
    """
    Raises:
        InvalidWebhookUrlError: Unless url is an absolute https URL
    """
    parsed = urlparse(url or "")
    if parsed.scheme != "https" or not parsed.netloc:
        raise InvalidWebhookUrlError(url)
    return url


def validate_events(events: Optional[Sequence[str]]) -> List[str]:
    """
    Returns:
        Deduplicated event list, DEFAULT_EVENTS when None

    Raises:
        InvalidParameterError: If empty or containing unknown event types
    """
    if events is None:
        return list(DEFAULT_EVENTS)
    events = list(dict.fromkeys(events))
    if not events:
        raise InvalidParameterError("events must not be empty", parameter="events")
    invalid = [event for event in events if event not in VALID_EVENT_TYPES]
    if invalid:
        raise InvalidParameterError(
            f"Invalid event types: {', '.join(invalid)}. Valid types: {', '.join(VALID_EVENT_TYPES)}",
            parameter="events",
        )
    return events


class WebhookRegistry:
    """CRUD for webhook subscriptions with ownership checks."""

    def __init__(
        self,
        store: IdempotencyStore,
        plans: PlanService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.plans = plans
        self.clock = clock

    async def create(
        self,
        owner_id: str,
        url: str,
        events: Optional[Sequence[str]] = None,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> Dict[str, Any]:
        """
        Register a webhook.

        The plan limit is checked against the current count at creation
        time only; concurrent creations may briefly exceed it.

        Raises:
            InvalidWebhookUrlError: If url is not https
            InvalidParameterError: If events are invalid
            WebhookLimitExceededError: If the plan's webhook capacity is used up
        """
        validate_url(url)
        events = validate_events(events)

        account = await self.store.get(ACCOUNTS, owner_id)
        if account is None:
            raise AccountNotFoundError(owner_id)
        plan = await self.plans.get_plan(account.get("plan_id"))
        limit = self.plans.webhook_limit(plan)
        if limit is not None:
            current = len(await self.store.query(WEBHOOKS, where={"owner_id": owner_id}))
            if current >= limit:
                raise WebhookLimitExceededError(
                    plan_id=plan["plan_id"],
                    plan_type=plan.get("type"),
                    current_count=current,
                    max_allowed=limit,
                )

        now = self.clock()
        webhook = {
            "webhook_id": new_sortable_id(),
            "owner_id": owner_id,
            "name": name,
            "url": url,
            "events": events,
            "is_active": is_active,
            "success_count": 0,
            "failure_count": 0,
            "last_success_at": None,
            "last_failure_at": None,
            "last_triggered_at": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.store.put(WEBHOOKS, webhook)
        logger.info(f"Webhook {webhook['webhook_id']} created for account {owner_id}")
        return webhook

    async def get(self, owner_id: str, webhook_id: str) -> Dict[str, Any]:
        """
        Fetch a webhook the caller owns.

        Raises:
            WebhookNotFoundError: If it does not exist
            WebhookAccessDeniedError: If another account owns it
        """
        webhook = await self.store.get(WEBHOOKS, webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(webhook_id)
        if webhook["owner_id"] != owner_id:
            raise WebhookAccessDeniedError(webhook_id)
        return webhook

    async def list(
        self,
        owner_id: str,
        is_active: Optional[bool] = None,
        event: Optional[str] = None,
        limit: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """List webhooks newest first, as (page, next_token)."""
        if event is not None and event not in VALID_EVENT_TYPES:
            raise InvalidParameterError(f"Invalid event type: {event}", parameter="event")
        offset, limit = page_window(limit, next_token)
        where: Dict[str, Any] = {"owner_id": owner_id}
        if is_active is not None:
            where["is_active"] = is_active
        rows = await self.store.query(WEBHOOKS, where=where, order_by="created_at", descending=True)
        if event is not None:
            rows = [row for row in rows if event in (row.get("events") or [])]
        return finish_page(rows[offset:offset + limit + 1], offset, limit)

    async def update(self, owner_id: str, webhook_id: str, patch: WebhookPatch) -> Dict[str, Any]:
        """Apply a patch after validating url and events."""
        await self.get(owner_id, webhook_id)
        changes = patch.as_changes()
        if "url" in changes:
            validate_url(changes["url"])
        if "events" in changes:
            changes["events"] = validate_events(changes["events"])
        changes["updated_at"] = self.clock()
        updated = await self.store.conditional_update(WEBHOOKS, webhook_id, changes=changes)
        if updated is None:
            raise WebhookNotFoundError(webhook_id)
        return updated

    async def delete(self, owner_id: str, webhook_id: str):
        await self.get(owner_id, webhook_id)
        await self.store.delete(WEBHOOKS, webhook_id)
        logger.info(f"Webhook {webhook_id} deleted for account {owner_id}")

    async def active_for_event(self, owner_id: str, event_type: str) -> List[Dict[str, Any]]:
        """Active webhooks of an account subscribed to event_type."""
        rows = await self.store.query(WEBHOOKS, where={"owner_id": owner_id, "is_active": True})
        return [row for row in rows if event_type in (row.get("events") or [])]

    @staticmethod
    def to_public(webhook: Dict[str, Any]) -> Dict[str, Any]:
        return {name: webhook.get(name) for name in PUBLIC_FIELDS}
