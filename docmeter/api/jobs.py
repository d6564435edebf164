"""
Job endpoints.
Quick jobs return the PDF inline; long jobs are queued and reported through
status polling and webhooks.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from docmeter.auth.dependencies import get_current_account
from docmeter.schemas.job import JobAccepted, JobCreate, JobListResponse, JobResponse
from docmeter.schemas.webhook import DeliveryHistoryResponse
from docmeter.services.container import Services, get_services
from docmeter.services.job_processor import JobRequest

router = APIRouter()


@router.post("/quick")
async def create_quick_job(
    request: JobCreate,
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """
    Render a document synchronously and return the PDF.

    Jobs exceeding the quick-job timeout end with 408 QUICKJOB_TIMEOUT; use
    the long job endpoint for large documents.
    """
    result = await services.processor.run_quick_job(
        account,
        JobRequest(input_type=request.input_type, content=request.content, options=request.options),
    )
    return Response(
        content=result.document,
        media_type=result.content_type,
        headers={
            "X-Job-Id": result.job["job_id"],
            "X-PDF-Pages": str(result.pages),
            "X-PDF-Truncated": "true" if result.truncated else "false",
        },
    )


@router.post("/long", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_long_job(
    request: JobCreate,
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Queue a document for asynchronous rendering."""
    job = await services.processor.submit_long_job(
        account,
        JobRequest(
            input_type=request.input_type,
            content=request.content,
            options=request.options,
            webhook_url=request.webhook_url,
        ),
    )
    return JobAccepted(
        job_id=job["job_id"],
        status=job["status"],
        message="Job queued for processing",
        status_url=f"/api/jobs/{job['job_id']}",
    )


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status_filter: Optional[str] = Query(None, alias="status"),
    job_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    next_token: Optional[str] = Query(None),
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """List the caller's jobs, newest first."""
    jobs, token = await services.jobs.list_for_owner(
        account["account_id"],
        status=status_filter,
        job_type=job_type,
        limit=limit,
        next_token=next_token,
    )
    return JobListResponse(
        jobs=[JobResponse(**services.jobs.to_public(job)) for job in jobs],
        next_token=token,
    )


@router.get("/{job_id}", response_model=JobResponse, response_model_exclude_none=True)
async def get_job(
    job_id: str,
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Job status read model."""
    job = await services.jobs.get_for_owner(account["account_id"], job_id)
    return JobResponse(**services.jobs.to_public(job))


@router.get("/{job_id}/webhooks/history", response_model=DeliveryHistoryResponse)
async def get_job_webhook_history(
    job_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    event_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    next_token: Optional[str] = Query(None),
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Webhook delivery attempts made for one job."""
    await services.jobs.get_for_owner(account["account_id"], job_id)
    deliveries, token = await services.dispatcher.history_for_job(
        account["account_id"],
        job_id,
        status=status_filter,
        event_type=event_type,
        limit=limit,
        next_token=next_token,
    )
    return DeliveryHistoryResponse(deliveries=deliveries, next_token=token)
