"""
Stripe webhook handling for credit purchases and refunds.

Handles:
- checkout.session.completed / payment_intent.succeeded: grant purchased credits
- charge.refunded: revoke unused credits of the refunded purchase

Both purchase events reference the payment intent, so a purchase reported
through both is credited once.

Expected metadata on the checkout session / payment intent / charge:
{
    "account_id": "<account id>",
    "credits": "<number of credits>"
}
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import stripe

from docmeter.config import settings
from docmeter.errors import AccountNotFoundError, InvalidParameterError
from docmeter.services.credit_ledger import CreditLedger
from docmeter.services.money import to_money
from docmeter.services.secret_cache import SecretCache

logger = logging.getLogger(__name__)

PURCHASE_EVENTS = ("checkout.session.completed", "payment_intent.succeeded")
REFUND_EVENTS = ("charge.refunded",)

# Initialize Stripe if secret key is configured
if settings.stripe_secret_key:
    stripe.api_key = settings.stripe_secret_key


def _parse_credits(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        credits = to_money(value)
    except (InvalidOperation, ValueError, TypeError):
        return None
    return credits if credits > 0 else None


class PaymentWebhookService:
    """Verifies Stripe events and applies them to the credit ledger."""

    def __init__(self, ledger: CreditLedger, secrets: SecretCache):
        self.ledger = ledger
        self.secrets = secrets

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe signature and parse the event.

        A signature failure forces one refresh of the cached secret, so a
        rotated secret is picked up without waiting for the TTL.

        Raises:
            InvalidParameterError: If the signature or payload is invalid
            PaymentConfigurationError: If no signing secret is configured
        """
        if not signature:
            raise InvalidParameterError("Missing Stripe signature", parameter="stripe-signature")

        for refreshed in (False, True):
            if refreshed:
                self.secrets.invalidate()
            try:
                stripe.WebhookSignature.verify_header(
                    payload.decode("utf-8"),
                    signature,
                    self.secrets.get(),
                    stripe.Webhook.DEFAULT_TOLERANCE,
                )
                break
            except stripe.SignatureVerificationError as e:
                if refreshed:
                    logger.error(f"Invalid signature: {e}")
                    raise InvalidParameterError(f"Invalid signature: {e}", parameter="stripe-signature")
                logger.info("Stripe signature check failed, refreshing cached secret")

        try:
            event = json.loads(payload)
        except ValueError as e:
            logger.error(f"Invalid payload: {e}")
            raise InvalidParameterError(f"Invalid payload: {e}")
        if not isinstance(event, dict) or "type" not in event or "data" not in event:
            raise InvalidParameterError("Invalid payload: not a Stripe event")
        return event

    async def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify and apply one Stripe webhook. Returns a status dict for the response body."""
        event = self.verify(payload, signature)
        return await self.apply(event)

    async def apply(self, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event["type"]
        obj = event["data"]["object"]

        if event_type in PURCHASE_EVENTS:
            return await self._apply_purchase(event_type, obj)
        if event_type in REFUND_EVENTS:
            return await self._apply_refund(obj)

        logger.info(f"Unhandled event type: {event_type}")
        return {"status": "ignored", "event_type": event_type}

    async def _apply_purchase(self, event_type: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        if event_type == "checkout.session.completed":
            reference_id = obj.get("payment_intent") or obj.get("id")
        else:
            reference_id = obj.get("id")

        metadata = obj.get("metadata") or {}
        account_id = metadata.get("account_id")
        credits = _parse_credits(metadata.get("credits"))
        if not account_id or credits is None or not reference_id:
            logger.warning(
                f"Missing metadata in {event_type} {obj.get('id')}: "
                f"account_id={account_id}, credits={metadata.get('credits')}"
            )
            return {"status": "ignored", "reason": "missing_metadata"}

        try:
            result = await self.ledger.purchase(account_id, credits, reference_id, payment_provider="stripe")
        except AccountNotFoundError:
            logger.warning(f"Account {account_id} not found for Stripe webhook")
            return {"status": "ignored", "reason": "account_not_found"}

        if result.duplicate:
            return {"status": "already_processed", "reference_id": reference_id}
        return {
            "status": "success",
            "account_id": account_id,
            "credits_added": str(result.amount),
            "transaction_id": result.transaction_id,
        }

    async def _apply_refund(self, charge: Dict[str, Any]) -> Dict[str, Any]:
        reference_id = charge.get("payment_intent") or charge.get("id")
        metadata = charge.get("metadata") or {}
        account_id = metadata.get("account_id")
        if not account_id or not reference_id:
            logger.warning(f"Missing metadata in refunded charge {charge.get('id')}")
            return {"status": "ignored", "reason": "missing_metadata"}

        purchased = _parse_credits(metadata.get("credits"))
        charge_amount = charge.get("amount") or 0
        refunds = (charge.get("refunds") or {}).get("data") or []
        if not refunds:
            refunds = [{"id": f"{charge.get('id')}-refund", "amount": charge.get("amount_refunded")}]

        revoked = Decimal("0")
        for refund in refunds:
            requested = None
            if purchased is not None and charge_amount and refund.get("amount") is not None:
                requested = to_money(purchased * Decimal(refund["amount"]) / Decimal(charge_amount))
            try:
                result = await self.ledger.refund(account_id, reference_id, refund["id"], requested=requested)
            except InvalidParameterError as e:
                logger.warning(f"Refund {refund['id']} ignored: {e.message}")
                continue
            revoked += result.credits_revoked

        return {"status": "success", "reference_id": reference_id, "credits_revoked": str(revoked)}
