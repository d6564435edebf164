"""
Webhook subscription and delivery history models.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, JSON, Index

from docmeter.models.base import Base


class Webhook(Base):
    """Callback endpoint registered by an account for job events."""

    __tablename__ = "webhooks"

    webhook_id = Column(String(32), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    url = Column(String(2048), nullable=False)
    events = Column(JSON, nullable=False)  # List of event types
    is_active = Column(Boolean, nullable=False, default=True)

    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_failure_at = Column(DateTime(timezone=True), nullable=True)
    last_triggered_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Webhook(webhook_id={self.webhook_id}, owner_id={self.owner_id}, url={self.url})>"


class WebhookDelivery(Base):
    """One delivery attempt. Never updated after insert."""

    __tablename__ = "webhook_deliveries"

    delivery_id = Column(String(48), primary_key=True)  # <delivery base id>-<attempt>
    webhook_id = Column(String(32), nullable=True, index=True)  # None for per-job callbacks
    owner_id = Column(String(64), nullable=False)
    job_id = Column(String(36), nullable=True, index=True)
    event_type = Column(String(32), nullable=False)
    url = Column(String(2048), nullable=False)
    status = Column(String(16), nullable=False)  # success | failed | timeout
    status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    delivered_at = Column(DateTime(timezone=True), nullable=False)
    duration_ms = Column(Integer, nullable=False, default=0)
    payload_size_bytes = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_webhook_deliveries_webhook_delivered", "webhook_id", "delivered_at"),
    )
