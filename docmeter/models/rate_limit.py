"""
Per-account, per-minute request counters.
"""
from sqlalchemy import Column, String, Integer, DateTime

from docmeter.models.base import Base


class RateLimitWindow(Base):
    """Request count for one account in one wall-clock minute."""

    __tablename__ = "rate_limit_windows"

    window_key = Column(String(96), primary_key=True)  # <owner_id>#YYYY-MM-DD-HH-MM
    owner_id = Column(String(64), nullable=False)
    request_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
