"""
Account and Plan models.
Accounts hold the credit balance, free credits and usage counter.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric, CheckConstraint
import enum

from docmeter.models.base import Base


class PlanType(str, enum.Enum):
    """Plan tier."""
    FREE = "free"
    PAID = "paid"
    ENTERPRISE = "enterprise"


class Account(Base):
    """Billing account for an API consumer."""

    __tablename__ = "accounts"

    account_id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True)
    plan_id = Column(String(64), nullable=False)

    credits_balance = Column(Numeric(14, 4), nullable=False, default=0)
    free_credits_remaining = Column(Integer, nullable=False, default=0)
    total_count = Column(Integer, nullable=False, default=0)  # Jobs billed so far
    quota_exceeded = Column(Boolean, nullable=False, default=False)

    webhook_url = Column(String(2048), nullable=True)  # Default callback for long jobs

    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_accounts_balance_non_negative"),
        CheckConstraint("free_credits_remaining >= 0", name="ck_accounts_free_credits_non_negative"),
    )

    def __repr__(self):
        return f"<Account(account_id={self.account_id}, plan_id={self.plan_id}, credits_balance={self.credits_balance})>"


class Plan(Base):
    """Pricing plan: per-job price, quota, rate limit and webhook capacity."""

    __tablename__ = "plans"

    plan_id = Column(String(64), primary_key=True)
    name = Column(String(128), nullable=False)
    type = Column(String(16), nullable=False, default=PlanType.FREE.value)

    monthly_quota = Column(Integer, nullable=True)  # None means no quota
    price_per_job = Column(Numeric(14, 4), nullable=False, default=0)
    rate_limit_per_minute = Column(Integer, nullable=True)
    max_webhooks = Column(Integer, nullable=True)  # None means derive from type
    free_credits = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Plan(plan_id={self.plan_id}, type={self.type}, price_per_job={self.price_per_job})>"
