"""
Webhook subscription endpoints.
Accounts register HTTPS endpoints that receive job.* events.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from docmeter.auth.dependencies import get_current_account
from docmeter.schemas.webhook import (
    DeliveryHistoryResponse,
    WebhookCreate,
    WebhookListResponse,
    WebhookResponse,
    WebhookUpdate,
)
from docmeter.services.container import Services, get_services
from docmeter.services.webhook_registry import WebhookPatch

router = APIRouter()


@router.post("", response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    request: WebhookCreate,
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Register a webhook. Capacity is limited by plan."""
    webhook = await services.webhooks.create(
        account["account_id"],
        url=request.url,
        events=request.events,
        name=request.name,
        is_active=request.is_active,
    )
    return WebhookResponse(**services.webhooks.to_public(webhook))


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    is_active: Optional[bool] = Query(None),
    event: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    next_token: Optional[str] = Query(None),
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    webhooks, token = await services.webhooks.list(
        account["account_id"],
        is_active=is_active,
        event=event,
        limit=limit,
        next_token=next_token,
    )
    return WebhookListResponse(
        webhooks=[WebhookResponse(**services.webhooks.to_public(w)) for w in webhooks],
        next_token=token,
    )


@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: str,
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    webhook = await services.webhooks.get(account["account_id"], webhook_id)
    return WebhookResponse(**services.webhooks.to_public(webhook))


@router.put("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdate,
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Update url, events, name or active flag."""
    webhook = await services.webhooks.update(
        account["account_id"],
        webhook_id,
        WebhookPatch(
            name=request.name,
            url=request.url,
            events=request.events,
            is_active=request.is_active,
        ),
    )
    return WebhookResponse(**services.webhooks.to_public(webhook))


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: str,
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    await services.webhooks.delete(account["account_id"], webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{webhook_id}/history", response_model=DeliveryHistoryResponse)
async def get_webhook_history(
    webhook_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    event_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    next_token: Optional[str] = Query(None),
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Delivery attempts for one webhook, newest first."""
    deliveries, token = await services.dispatcher.history_for_webhook(
        account["account_id"],
        webhook_id,
        status=status_filter,
        event_type=event_type,
        limit=limit,
        next_token=next_token,
    )
    return DeliveryHistoryResponse(deliveries=deliveries, next_token=token)
