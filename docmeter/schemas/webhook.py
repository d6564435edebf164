"""
Pydantic schemas for webhook subscription endpoints.
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class WebhookCreate(BaseModel):
    """Schema for registering a webhook."""
    url: str = Field(..., description="HTTPS endpoint receiving job events")
    events: Optional[List[str]] = Field(None, description="Event types, defaults to job.completed")
    name: Optional[str] = Field(None, max_length=255)
    is_active: bool = True


class WebhookUpdate(BaseModel):
    """Partial update; omitted fields are unchanged."""
    url: Optional[str] = None
    events: Optional[List[str]] = None
    name: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None


class WebhookResponse(BaseModel):
    webhook_id: str
    name: Optional[str] = None
    url: str
    events: List[str]
    is_active: bool
    success_count: int = 0
    failure_count: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class WebhookListResponse(BaseModel):
    webhooks: List[WebhookResponse]
    next_token: Optional[str] = None


class DeliveryResponse(BaseModel):
    """One recorded delivery attempt."""
    delivery_id: str
    webhook_id: Optional[str] = None
    job_id: Optional[str] = None
    event_type: str
    url: str
    status: str
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    retry_count: int
    delivered_at: datetime
    duration_ms: int
    payload_size_bytes: int


class DeliveryHistoryResponse(BaseModel):
    deliveries: List[DeliveryResponse]
    next_token: Optional[str] = None
