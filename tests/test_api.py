"""
Tests for API endpoints.
Uses httpx AsyncClient for testing FastAPI routes.
"""
import hashlib
import hmac
import json
import time

import pytest
from httpx import AsyncClient

HOOK_URL = "https://hooks.example.com/docmeter"
JOB_BODY = {"input_type": "html", "content": "<h1>Report</h1>"}


def as_account(account_id: str) -> dict:
    return {"X-Account-Id": account_id}


def stripe_signature(payload: bytes, secret: str = "whsec_test_secret") -> str:
    timestamp = int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestRootEndpoint:
    """Tests for root and metrics endpoints."""

    @pytest.mark.asyncio
    async def test_root_returns_info(self, client: AsyncClient):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "docmeter API"

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client: AsyncClient):
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text


class TestAuthentication:
    """Principal resolution from the gateway header."""

    @pytest.mark.asyncio
    async def test_missing_principal(self, client: AsyncClient):
        response = await client.get("/api/me/credits")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_account(self, client: AsyncClient):
        response = await client.get("/api/me/credits", headers=as_account("ghost"))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ACCOUNT_NOT_FOUND"


class TestJobEndpoints:
    """Tests for /api/jobs."""

    @pytest.mark.asyncio
    async def test_quick_job_returns_pdf(self, client: AsyncClient, paid_account):
        response = await client.post("/api/jobs/quick", json=JOB_BODY, headers=as_account("acct-paid"))

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["X-PDF-Pages"] == "3"
        assert response.headers["X-PDF-Truncated"] == "false"
        assert response.content.startswith(b"%PDF")

        job = await client.get(f"/api/jobs/{response.headers['X-Job-Id']}", headers=as_account("acct-paid"))
        assert job.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_quick_job_timeout(self, client: AsyncClient, services, paid_account, renderer):
        renderer.delay = 1
        services.processor.quickjob_timeout_seconds = 0.05

        response = await client.post("/api/jobs/quick", json=JOB_BODY, headers=as_account("acct-paid"))

        error = response.json()["error"]
        assert response.status_code == 408
        assert error["code"] == "QUICKJOB_TIMEOUT"
        assert error["details"]["suggestion"] == "use_long_job_endpoint"

    @pytest.mark.asyncio
    async def test_invalid_input_type(self, client: AsyncClient, paid_account):
        response = await client.post(
            "/api/jobs/quick", json={"input_type": "docx", "content": "x"}, headers=as_account("acct-paid")
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, client: AsyncClient, make_account, paid_plan):
        await make_account("acct-broke", plan_id="paid-standard", credits_balance=0)

        response = await client.post("/api/jobs/quick", json=JOB_BODY, headers=as_account("acct-broke"))

        assert response.status_code == 402
        assert response.json()["error"]["code"] == "INSUFFICIENT_CREDITS"

    @pytest.mark.asyncio
    async def test_rate_limit_sets_retry_after(self, client: AsyncClient, free_account):
        for _ in range(20):
            response = await client.post("/api/jobs/quick", json=JOB_BODY, headers=as_account("acct-free"))
            assert response.status_code == 200

        response = await client.post("/api/jobs/quick", json=JOB_BODY, headers=as_account("acct-free"))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "55"
        assert response.json()["error"]["details"]["limit"] == 20

    @pytest.mark.asyncio
    async def test_long_job_accepted(self, client: AsyncClient, paid_account, published_jobs):
        response = await client.post(
            "/api/jobs/long", json={**JOB_BODY, "webhook_url": HOOK_URL}, headers=as_account("acct-paid")
        )

        data = response.json()
        assert response.status_code == 202
        assert data["status"] == "queued"
        assert data["status_url"] == f"/api/jobs/{data['job_id']}"
        assert published_jobs[0]["job_id"] == data["job_id"]

    @pytest.mark.asyncio
    async def test_long_job_rejects_http_webhook(self, client: AsyncClient, paid_account):
        response = await client.post(
            "/api/jobs/long", json={**JOB_BODY, "webhook_url": "http://plain"}, headers=as_account("acct-paid")
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_WEBHOOK_URL"

    @pytest.mark.asyncio
    async def test_long_job_status_after_processing(self, client: AsyncClient, services, paid_account, published_jobs):
        accepted = await client.post("/api/jobs/long", json=JOB_BODY, headers=as_account("acct-paid"))
        await services.processor.process_long_job(published_jobs[0])

        response = await client.get(f"/api/jobs/{accepted.json()['job_id']}", headers=as_account("acct-paid"))

        data = response.json()
        assert data["status"] == "completed"
        assert data["artifact_url"].startswith("https://s3.test/")
        assert "artifact_key" not in data

    @pytest.mark.asyncio
    async def test_job_of_other_account_not_found(self, client: AsyncClient, paid_account, free_account):
        accepted = await client.post("/api/jobs/long", json=JOB_BODY, headers=as_account("acct-paid"))

        response = await client.get(f"/api/jobs/{accepted.json()['job_id']}", headers=as_account("acct-free"))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "JOB_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_jobs(self, client: AsyncClient, clock, paid_account):
        for _ in range(3):
            await client.post("/api/jobs/long", json=JOB_BODY, headers=as_account("acct-paid"))
            clock.advance(1)

        first = await client.get("/api/jobs", params={"limit": 2}, headers=as_account("acct-paid"))
        second = await client.get(
            "/api/jobs", params={"limit": 2, "next_token": first.json()["next_token"]},
            headers=as_account("acct-paid"),
        )

        assert len(first.json()["jobs"]) == 2
        assert len(second.json()["jobs"]) == 1
        assert second.json()["next_token"] is None

    @pytest.mark.asyncio
    async def test_job_webhook_history(self, client: AsyncClient, services, paid_account, published_jobs):
        accepted = await client.post(
            "/api/jobs/long", json={**JOB_BODY, "webhook_url": HOOK_URL}, headers=as_account("acct-paid")
        )
        job_id = accepted.json()["job_id"]
        await services.processor.process_long_job(published_jobs[0])

        response = await client.get(f"/api/jobs/{job_id}/webhooks/history", headers=as_account("acct-paid"))

        events = [d["event_type"] for d in response.json()["deliveries"]]
        assert sorted(events) == ["job.completed", "job.processing", "job.queued"]


class TestAccountEndpoints:
    """Tests for /api/me."""

    @pytest.mark.asyncio
    async def test_credits(self, client: AsyncClient, paid_account):
        response = await client.get("/api/me/credits", headers=as_account("acct-paid"))

        data = response.json()
        assert response.status_code == 200
        assert float(data["credits_balance"]) == 10
        assert data["plan_id"] == "paid-standard"

    @pytest.mark.asyncio
    async def test_transactions(self, client: AsyncClient, paid_account):
        await client.post("/api/jobs/quick", json=JOB_BODY, headers=as_account("acct-paid"))

        response = await client.get("/api/me/transactions", headers=as_account("acct-paid"))

        transactions = response.json()["transactions"]
        assert len(transactions) == 1
        assert transactions[0]["transaction_type"] == "deduction"
        assert float(transactions[0]["amount"]) == -1


class TestWebhookEndpoints:
    """Tests for /api/webhooks."""

    @pytest.mark.asyncio
    async def test_crud(self, client: AsyncClient, free_account):
        headers = as_account("acct-free")
        created = await client.post("/api/webhooks", json={"url": HOOK_URL, "name": "main"}, headers=headers)
        webhook_id = created.json()["webhook_id"]

        fetched = await client.get(f"/api/webhooks/{webhook_id}", headers=headers)
        updated = await client.put(f"/api/webhooks/{webhook_id}", json={"events": ["job.failed"]}, headers=headers)
        listed = await client.get("/api/webhooks", headers=headers)
        deleted = await client.delete(f"/api/webhooks/{webhook_id}", headers=headers)
        missing = await client.get(f"/api/webhooks/{webhook_id}", headers=headers)

        assert created.status_code == 201
        assert fetched.json()["name"] == "main"
        assert updated.json()["events"] == ["job.failed"]
        assert len(listed.json()["webhooks"]) == 1
        assert deleted.status_code == 204
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_capacity_exceeded(self, client: AsyncClient, free_account):
        headers = as_account("acct-free")
        await client.post("/api/webhooks", json={"url": HOOK_URL}, headers=headers)

        response = await client.post("/api/webhooks", json={"url": HOOK_URL + "/2"}, headers=headers)

        error = response.json()["error"]
        assert response.status_code == 403
        assert error["code"] == "WEBHOOK_LIMIT_EXCEEDED"
        assert error["details"]["max_allowed"] == 1

    @pytest.mark.asyncio
    async def test_access_denied(self, client: AsyncClient, free_account, paid_account):
        created = await client.post("/api/webhooks", json={"url": HOOK_URL}, headers=as_account("acct-free"))

        response = await client.get(
            f"/api/webhooks/{created.json()['webhook_id']}", headers=as_account("acct-paid")
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_history(self, client: AsyncClient, services, free_account, receiver):
        created = await client.post("/api/webhooks", json={"url": HOOK_URL}, headers=as_account("acct-free"))
        receiver.responses[HOOK_URL] = [500, 200]
        await services.dispatcher.dispatch("acct-free", "job.completed", {"job_id": "job-1"}, job_id="job-1")

        response = await client.get(
            f"/api/webhooks/{created.json()['webhook_id']}/history", headers=as_account("acct-free")
        )

        deliveries = response.json()["deliveries"]
        assert [d["status"] for d in deliveries] == ["success", "failed"]
        assert [d["status_code"] for d in deliveries] == [200, 500]


class TestPaymentEndpoint:
    """Tests for /api/payments/stripe."""

    @pytest.mark.asyncio
    async def test_missing_signature(self, client: AsyncClient):
        response = await client.post("/api/payments/stripe", content=b"{}")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_signed_purchase(self, client: AsyncClient, paid_account):
        payload = json.dumps({
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": "cs_1",
                "payment_intent": "pi_api",
                "metadata": {"account_id": "acct-paid", "credits": "5"},
            }},
        }).encode("utf-8")
        response = await client.post(
            "/api/payments/stripe", content=payload, headers={"stripe-signature": stripe_signature(payload)}
        )
        credits = await client.get("/api/me/credits", headers=as_account("acct-paid"))

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert float(credits.json()["credits_balance"]) == 15


class TestHealthEndpoint:
    """Tests for /api/health."""

    @pytest.mark.asyncio
    async def test_healthy(self, client: AsyncClient, monkeypatch):
        class FakeRedis:
            def ping(self):
                return True

        monkeypatch.setattr("docmeter.api.health.redis.from_url", lambda url: FakeRedis())

        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["store"] == "connected"
