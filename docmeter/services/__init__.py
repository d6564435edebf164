"""
Business logic services.
"""
from docmeter.services.credit_ledger import CreditLedger
from docmeter.services.job_processor import JobProcessor
from docmeter.services.job_registry import JobRegistry
from docmeter.services.plan_service import PlanService
from docmeter.services.rate_limiter import QuotaGuard, RateLimiter
from docmeter.services.webhook_dispatcher import WebhookDispatcher
from docmeter.services.webhook_registry import WebhookRegistry

__all__ = [
    "CreditLedger",
    "JobProcessor",
    "JobRegistry",
    "PlanService",
    "QuotaGuard",
    "RateLimiter",
    "WebhookDispatcher",
    "WebhookRegistry",
]
