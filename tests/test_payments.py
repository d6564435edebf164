"""
Tests for Stripe webhook handling and the signing secret cache.
"""
import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest

from docmeter.errors import InvalidParameterError
from docmeter.repositories.idempotency_store import ACCOUNTS
from docmeter.services.payment_service import PaymentWebhookService
from docmeter.services.secret_cache import SecretCache

SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_event(account_id: str = "acct-paid", credits: str = "50", intent: str = "pi_1") -> dict:
    return {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_1",
            "payment_intent": intent,
            "metadata": {"account_id": account_id, "credits": credits},
        }},
    }


def refund_event(refunds: list, account_id: str = "acct-paid", credits: str = "100") -> dict:
    return {
        "id": "evt_2",
        "type": "charge.refunded",
        "data": {"object": {
            "id": "ch_1",
            "payment_intent": "pi_1",
            "amount": 10000,
            "amount_refunded": sum(r["amount"] for r in refunds),
            "metadata": {"account_id": account_id, "credits": credits},
            "refunds": {"data": refunds},
        }},
    }


class TestSecretCache:
    """Tests for SecretCache."""

    def test_cached_until_ttl(self):
        values = iter(["one", "two"])
        now = [0.0]
        cache = SecretCache(lambda: next(values), ttl_seconds=60, clock=lambda: now[0])

        assert cache.get() == "one"
        now[0] = 59
        assert cache.get() == "one"
        now[0] = 61
        assert cache.get() == "two"

    def test_invalidate_forces_refetch(self):
        values = iter(["one", "two"])
        cache = SecretCache(lambda: next(values))

        cache.get()
        cache.invalidate()

        assert cache.get() == "two"


class TestStripeWebhooks:
    """Tests for PaymentWebhookService."""

    @pytest.mark.asyncio
    async def test_purchase_credits_once(self, services, paid_account, store):
        payload = json.dumps(checkout_event()).encode("utf-8")

        first = await services.payments.handle(payload, sign(payload))
        second = await services.payments.handle(payload, sign(payload))

        assert first["status"] == "success"
        assert first["credits_added"] == "50.0000"
        assert second["status"] == "already_processed"
        assert (await store.get(ACCOUNTS, "acct-paid"))["credits_balance"] == Decimal("60")

    @pytest.mark.asyncio
    async def test_payment_intent_after_checkout_is_duplicate(self, services, paid_account, store):
        await services.payments.apply(checkout_event())

        result = await services.payments.apply({
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_1", "metadata": {"account_id": "acct-paid", "credits": "50"}}},
        })

        assert result["status"] == "already_processed"
        assert (await store.get(ACCOUNTS, "acct-paid"))["credits_balance"] == Decimal("60")

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, services, paid_account):
        payload = json.dumps(checkout_event()).encode("utf-8")

        with pytest.raises(InvalidParameterError):
            await services.payments.handle(payload, sign(payload, secret="whsec_wrong"))

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, services):
        with pytest.raises(InvalidParameterError):
            await services.payments.handle(b"{}", None)

    @pytest.mark.asyncio
    async def test_rotated_secret_picked_up(self, services, paid_account):
        secrets = iter(["whsec_old", "whsec_new"])
        service = PaymentWebhookService(services.ledger, SecretCache(lambda: next(secrets)))
        payload = json.dumps(checkout_event()).encode("utf-8")

        result = await service.handle(payload, sign(payload, secret="whsec_new"))

        assert result["status"] == "success"

    @pytest.mark.asyncio
    async def test_missing_metadata_ignored(self, services, paid_account):
        result = await services.payments.apply(checkout_event(credits=""))

        assert result == {"status": "ignored", "reason": "missing_metadata"}

    @pytest.mark.asyncio
    async def test_unknown_account_ignored(self, services):
        result = await services.payments.apply(checkout_event(account_id="nobody"))

        assert result["reason"] == "account_not_found"

    @pytest.mark.asyncio
    async def test_unhandled_event(self, services):
        result = await services.payments.apply({"type": "customer.created", "data": {"object": {}}})

        assert result["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_partial_refund_revokes_proportional_credits(self, services, paid_account, store):
        await services.payments.apply(checkout_event(credits="100"))

        result = await services.payments.apply(refund_event([{"id": "re_1", "amount": 2500}]))
        replay = await services.payments.apply(refund_event([{"id": "re_1", "amount": 2500}]))

        assert result["credits_revoked"] == "25.0000"
        assert replay["credits_revoked"] == "25.0000"
        assert (await store.get(ACCOUNTS, "acct-paid"))["credits_balance"] == Decimal("85")

    @pytest.mark.asyncio
    async def test_refund_without_purchase_is_ignored(self, services, paid_account):
        result = await services.payments.apply(refund_event([{"id": "re_1", "amount": 10000}]))

        assert result["credits_revoked"] == "0"
