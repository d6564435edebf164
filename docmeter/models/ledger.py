"""
Credit ledger models.

- CreditTransaction: append-only log of purchases, deductions and refunds
- DeductionClaim: per-job idempotency record for deductions
- CreditGrant: per-purchase record of granted, used and revoked credits
- RefundLog: per-adjustment idempotency record for refunds
"""
from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Text, Index
import enum

from docmeter.models.base import Base


class TransactionType(str, enum.Enum):
    """Ledger entry kind."""
    PURCHASE = "purchase"
    DEDUCTION = "deduction"
    REFUND = "refund"


class TransactionStatus(str, enum.Enum):
    """Ledger entry outcome."""
    COMPLETED = "completed"
    FAILED = "failed"


class ClaimStatus(str, enum.Enum):
    """Idempotency claim state."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CreditTransaction(Base):
    """Immutable ledger entry."""

    __tablename__ = "credit_transactions"

    transaction_id = Column(String(32), primary_key=True)  # Time-sortable
    owner_id = Column(String(64), nullable=False)
    amount = Column(Numeric(14, 4), nullable=False)  # Signed
    job_id = Column(String(36), nullable=True, index=True)
    reference_id = Column(String(255), nullable=True, index=True)
    transaction_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    used_free_credits = Column(Boolean, nullable=False, default=False)
    payment_provider = Column(String(32), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_credit_transactions_owner_created", "owner_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<CreditTransaction(transaction_id={self.transaction_id}, type={self.transaction_type}, "
            f"amount={self.amount}, status={self.status})>"
        )


class DeductionClaim(Base):
    """At most one completed deduction per job."""

    __tablename__ = "deduction_claims"

    job_id = Column(String(36), primary_key=True)
    owner_id = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    transaction_id = Column(String(32), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False)


class CreditGrant(Base):
    """Credits granted by one purchase, with what was used and revoked."""

    __tablename__ = "credit_grants"

    reference_id = Column(String(255), primary_key=True)  # Payment provider reference
    owner_id = Column(String(64), nullable=False, index=True)
    status = Column(String(16), nullable=False)
    credits_granted = Column(Numeric(14, 4), nullable=False)
    credits_used = Column(Numeric(14, 4), nullable=False, default=0)
    credits_revoked = Column(Numeric(14, 4), nullable=False, default=0)
    transaction_id = Column(String(32), nullable=True)
    payment_provider = Column(String(32), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class RefundLog(Base):
    """One row per processed refund adjustment."""

    __tablename__ = "refund_logs"

    adjustment_id = Column(String(255), primary_key=True)
    reference_id = Column(String(255), nullable=False)
    owner_id = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    credits_revoked = Column(Numeric(14, 4), nullable=True)
    transaction_id = Column(String(32), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
