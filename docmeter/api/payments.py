"""
Payment provider webhook endpoints.
Handles Stripe payment webhooks for credit purchases and refunds.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from docmeter.services.container import Services, get_services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    services: Services = Depends(get_services),
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
):
    """
    Stripe webhook endpoint.

    Security:
    - Validates the Stripe signature against the cached signing secret
    - Idempotent per payment intent (purchases) and per refund id (refunds)
    """
    body = await request.body()
    return await services.payments.handle(body, stripe_signature)
