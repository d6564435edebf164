"""
Pydantic schemas for API request/response validation.
"""
from docmeter.schemas.job import JobCreate, JobResponse, JobAccepted, JobListResponse
from docmeter.schemas.webhook import (
    WebhookCreate,
    WebhookUpdate,
    WebhookResponse,
    WebhookListResponse,
    DeliveryResponse,
    DeliveryHistoryResponse,
)
from docmeter.schemas.credit import CreditsResponse, TransactionResponse, TransactionListResponse

__all__ = [
    "JobCreate",
    "JobResponse",
    "JobAccepted",
    "JobListResponse",
    "WebhookCreate",
    "WebhookUpdate",
    "WebhookResponse",
    "WebhookListResponse",
    "DeliveryResponse",
    "DeliveryHistoryResponse",
    "CreditsResponse",
    "TransactionResponse",
    "TransactionListResponse",
]
