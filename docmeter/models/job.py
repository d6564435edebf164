"""
Job model for document-generation requests.
A job moves queued -> processing -> completed | failed | timeout and never back.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, Index
import enum

from docmeter.models.base import Base


class JobStatus(str, enum.Enum):
    """Job status enum."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class JobType(str, enum.Enum):
    """Synchronous (quick) or queued (long) execution."""
    QUICK = "quick"
    LONG = "long"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.TIMEOUT.value})
ACTIVE_STATUSES = (JobStatus.QUEUED.value, JobStatus.PROCESSING.value)


class Job(Base):
    """Job model tracking status, output artifact and notification state."""

    __tablename__ = "jobs"

    job_id = Column(String(36), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)

    job_type = Column(String(16), nullable=False)
    mode = Column(String(16), nullable=False, default="html")  # Input kind: html or markdown
    status = Column(String(16), nullable=False, default=JobStatus.QUEUED.value)

    created_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)  # Set once, on the first terminal write
    error_message = Column(Text, nullable=True)

    pages = Column(Integer, nullable=True)
    truncated = Column(Boolean, nullable=False, default=False)

    # Long jobs
    artifact_key = Column(String(512), nullable=True)
    artifact_url = Column(Text, nullable=True)
    artifact_expires_at = Column(DateTime(timezone=True), nullable=True)
    webhook_url = Column(Text, nullable=True)  # Per-job callback
    webhook_delivered = Column(Boolean, nullable=False, default=False)
    webhook_delivered_at = Column(DateTime(timezone=True), nullable=True)
    webhook_retry_count = Column(Integer, nullable=False, default=0)

    # Quick jobs
    timeout_occurred = Column(Boolean, nullable=False, default=False)

    # billed | free | unbilled | pending
    billing_status = Column(String(16), nullable=True)

    __table_args__ = (
        Index("idx_jobs_owner_created", "owner_id", "created_at"),
    )

    def __repr__(self):
        return f"<Job(job_id={self.job_id}, owner_id={self.owner_id}, status={self.status})>"
