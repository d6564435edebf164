"""
Plan lookup and the limits derived from a plan.
Accounts without a stored plan fall back to the configured free plan.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from docmeter.config import settings
from docmeter.errors import AccountNotFoundError
from docmeter.models.account import PlanType
from docmeter.repositories.idempotency_store import ACCOUNTS, PLANS, IdempotencyStore
from docmeter.services.money import to_money

logger = logging.getLogger(__name__)

# Webhook capacity by plan type when the plan sets no explicit max_webhooks
WEBHOOK_LIMITS_BY_TYPE = {
    PlanType.FREE.value: 1,
    PlanType.PAID.value: 5,
    PlanType.ENTERPRISE.value: 50,
}


def default_plan() -> Dict[str, Any]:
    """The plan applied when an account's plan is missing or inactive."""
    return {
        "plan_id": settings.default_plan_id,
        "name": "Free Basic",
        "type": PlanType.FREE.value,
        "monthly_quota": settings.free_tier_quota,
        "price_per_job": Decimal("0"),
        "rate_limit_per_minute": settings.rate_limit_per_minute,
        "max_webhooks": None,
        "free_credits": 0,
        "is_active": True,
    }


class PlanService:
    """Resolves plans and the limits they imply."""

    def __init__(self, store: IdempotencyStore):
        self.store = store

    async def get_plan(self, plan_id: Optional[str]) -> Dict[str, Any]:
        """
        Fetch a plan, falling back to the default free plan.

        Args:
            plan_id: Plan ID stored on the account

        Returns:
            Plan record
        """
        if plan_id:
            plan = await self.store.get(PLANS, plan_id)
            if plan is not None and plan.get("is_active", True):
                return plan
            if plan_id != settings.default_plan_id:
                logger.warning(f"Plan {plan_id} not found or inactive, using default plan")
        return default_plan()

    async def resolve(self, owner_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Load an account and its plan.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        account = await self.store.get(ACCOUNTS, owner_id)
        if account is None:
            raise AccountNotFoundError(owner_id)
        plan = await self.get_plan(account.get("plan_id"))
        return account, plan

    async def save_plan(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        record = {**default_plan(), **plan}
        record["price_per_job"] = to_money(record["price_per_job"])
        await self.store.put(PLANS, record)
        return record

    @staticmethod
    def price_for(plan: Dict[str, Any]) -> Decimal:
        """Credits charged per job. Zero for free plans."""
        if plan.get("type") == PlanType.FREE.value:
            return Decimal("0")
        return to_money(plan.get("price_per_job") or 0)

    @staticmethod
    def rate_limit_for(plan: Dict[str, Any]) -> Optional[int]:
        """Requests per minute; enterprise plans without a limit are unlimited."""
        limit = plan.get("rate_limit_per_minute")
        if limit is not None:
            return limit
        if plan.get("type") == PlanType.ENTERPRISE.value:
            return None
        return settings.rate_limit_per_minute

    @staticmethod
    def quota_for(plan: Dict[str, Any]) -> Optional[int]:
        """Usage quota; only free plans are quota-bound unless one is set explicitly."""
        quota = plan.get("monthly_quota")
        if quota is not None:
            return quota
        if plan.get("type") == PlanType.FREE.value:
            return settings.free_tier_quota
        return None

    @staticmethod
    def webhook_limit(plan: Dict[str, Any]) -> Optional[int]:
        """
        Maximum webhooks for a plan.

        Explicit max_webhooks wins; otherwise derived from the plan type.
        Unknown plan types are unlimited (None).
        """
        if plan.get("max_webhooks") is not None:
            return plan["max_webhooks"]
        return WEBHOOK_LIMITS_BY_TYPE.get(plan.get("type"))
