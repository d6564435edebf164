"""
Pydantic schemas for job endpoints.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime


class JobCreate(BaseModel):
    """Schema for submitting a document job."""
    input_type: Literal["html", "markdown"] = Field(..., description="Source format")
    content: str = Field(..., min_length=1, description="Document source")
    options: Dict[str, Any] = Field(default_factory=dict, description="Renderer options (page size, margins, ...)")
    webhook_url: Optional[str] = Field(None, description="HTTPS callback for this job (long jobs only)")


class JobResponse(BaseModel):
    """Public job status."""
    job_id: str
    status: str
    job_type: str
    mode: str
    pages: Optional[int] = None
    truncated: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    # Long jobs
    artifact_url: Optional[str] = None
    artifact_expires_at: Optional[datetime] = None
    webhook_delivered: Optional[bool] = None
    webhook_delivered_at: Optional[datetime] = None
    # Quick jobs
    timeout_occurred: Optional[bool] = None


class JobAccepted(BaseModel):
    """Response for a queued long job."""
    job_id: str
    status: str
    message: str
    status_url: str


class JobListResponse(BaseModel):
    jobs: List[JobResponse]
    next_token: Optional[str] = None
