"""
Database models package.
"""
from docmeter.models.base import Base
from docmeter.models.account import Account, Plan, PlanType
from docmeter.models.job import Job, JobStatus, JobType
from docmeter.models.ledger import (
    CreditTransaction,
    DeductionClaim,
    CreditGrant,
    RefundLog,
    TransactionType,
    TransactionStatus,
    ClaimStatus,
)
from docmeter.models.rate_limit import RateLimitWindow
from docmeter.models.webhook import Webhook, WebhookDelivery

__all__ = [
    "Base",
    "Account",
    "Plan",
    "PlanType",
    "Job",
    "JobStatus",
    "JobType",
    "CreditTransaction",
    "DeductionClaim",
    "CreditGrant",
    "RefundLog",
    "TransactionType",
    "TransactionStatus",
    "ClaimStatus",
    "RateLimitWindow",
    "Webhook",
    "WebhookDelivery",
]
