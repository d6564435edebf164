"""
Test configuration and fixtures.
Services run on the in-memory store with a fake renderer, a fake S3 client
and an httpx MockTransport standing in for webhook receivers.
"""
import os

# Set test environment before any imports
os.environ["STORE_BACKEND"] = "memory"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["ENVIRONMENT"] = "test"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from docmeter.errors import RenderError
from docmeter.renderers.base import DocumentRenderer, RenderResult
from docmeter.repositories.idempotency_store import ACCOUNTS
from docmeter.repositories.memory_store import InMemoryStore
from docmeter.services.container import Services, build_services
from docmeter.storage.artifact_store import ArtifactStore

PAID_PLAN = {
    "plan_id": "paid-standard",
    "name": "Paid Standard",
    "type": "paid",
    "monthly_quota": None,
    "price_per_job": Decimal("1"),
    "rate_limit_per_minute": 20,
    "max_webhooks": None,
}

ENTERPRISE_PLAN = {
    "plan_id": "enterprise",
    "name": "Enterprise",
    "type": "enterprise",
    "monthly_quota": None,
    "price_per_job": Decimal("0.5"),
    "rate_limit_per_minute": None,
    "max_webhooks": None,
}


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 15, 10, 0, 5, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1):
        self.now = self.now + timedelta(seconds=seconds)


class FakeRenderer(DocumentRenderer):
    """Returns a fixed PDF; page count, delay and failure are configurable."""

    def __init__(self, pages: int = 3, delay: float = 0, error: Optional[str] = None):
        self.pages = pages
        self.delay = delay
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def render(self, input_type, content, options=None, max_pages=None):
        self.calls.append({"input_type": input_type, "content": content, "max_pages": max_pages})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise RenderError(self.error)
        pages = self.pages
        truncated = False
        if max_pages is not None and pages > max_pages:
            pages, truncated = max_pages, True
        return RenderResult(document=b"%PDF-1.7 test", pages=pages, truncated=truncated)


class FakeS3Client:
    """The two boto3 S3 calls ArtifactStore makes."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[f"{Bucket}/{Key}"] = Body

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"


class WebhookReceiver:
    """
    Records webhook requests and answers with scripted responses.

    responses maps a URL to a list of status codes (consumed in order, the
    last one repeats) or to an exception class to raise.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: Dict[str, Any] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        script = self.responses.get(str(request.url), [200])
        if isinstance(script, type) and issubclass(script, Exception):
            raise script("scripted failure", request=request)
        status = script.pop(0) if len(script) > 1 else script[0]
        return httpx.Response(status, text="ok" if status < 400 else "error")

    def to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def published_jobs() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def published_deductions() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
async def http_client(receiver: WebhookReceiver) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(receiver.handler)) as client:
        yield client


@pytest.fixture
def services(
    store: InMemoryStore,
    clock: FakeClock,
    renderer: FakeRenderer,
    s3_client: FakeS3Client,
    http_client: httpx.AsyncClient,
    published_jobs: List[Dict[str, Any]],
    published_deductions: List[Dict[str, Any]],
    sleeps: List[float],
) -> Services:
    """All services wired to test doubles."""
    async def fake_sleep(seconds: float):
        sleeps.append(seconds)

    return build_services(
        store,
        renderer=renderer,
        artifacts=ArtifactStore(client=s3_client, bucket="test-bucket"),
        publish_job=published_jobs.append,
        publish_deduction=published_deductions.append,
        http_client=http_client,
        clock=clock,
        sleep=fake_sleep,
    )


@pytest.fixture
def make_account(store: InMemoryStore, clock: FakeClock) -> Callable:
    """Factory inserting an account record."""
    async def _make(
        account_id: str = "acct-1",
        plan_id: str = "free-basic",
        credits_balance: Any = 0,
        free_credits_remaining: int = 0,
        total_count: int = 0,
        webhook_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        account = {
            "account_id": account_id,
            "email": f"{account_id}@example.com",
            "plan_id": plan_id,
            "credits_balance": Decimal(str(credits_balance)),
            "free_credits_remaining": free_credits_remaining,
            "total_count": total_count,
            "quota_exceeded": False,
            "webhook_url": webhook_url,
            "created_at": clock(),
            "updated_at": clock(),
        }
        await store.put(ACCOUNTS, account)
        return account

    return _make


@pytest.fixture
async def paid_plan(services: Services) -> Dict[str, Any]:
    return await services.plans.save_plan(PAID_PLAN)


@pytest.fixture
async def enterprise_plan(services: Services) -> Dict[str, Any]:
    return await services.plans.save_plan(ENTERPRISE_PLAN)


@pytest.fixture
async def free_account(make_account) -> Dict[str, Any]:
    return await make_account("acct-free", plan_id="free-basic")


@pytest.fixture
async def paid_account(make_account, paid_plan) -> Dict[str, Any]:
    return await make_account("acct-paid", plan_id="paid-standard", credits_balance=10)


@pytest.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    from docmeter.main import app
    from docmeter.services.container import get_services

    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
