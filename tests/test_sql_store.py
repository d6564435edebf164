"""
Tests for the SQLAlchemy store against PostgreSQL.
Skipped unless TEST_DATABASE_URL points at a disposable database.
"""
import asyncio
import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from docmeter.errors import InsufficientCreditsError
from docmeter.models.base import Base
from docmeter.models.job import JobType
from docmeter.repositories.idempotency_store import ACCOUNTS, Condition
from docmeter.repositories.sql_store import SQLAlchemyStore
from docmeter.services.credit_ledger import CreditLedger
from docmeter.services.job_registry import JobRegistry, new_job
from docmeter.services.plan_service import PlanService

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set")


@pytest.fixture(scope="function")
async def sql_store(clock) -> AsyncGenerator[SQLAlchemyStore, None]:
    """Fresh schema per test."""
    import docmeter.models  # noqa: F401

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SQLAlchemyStore(session_maker)

    await engine.dispose()


async def seed_account(store: SQLAlchemyStore, clock, balance: str) -> None:
    await store.put(ACCOUNTS, {
        "account_id": "acct-sql",
        "email": "sql@example.com",
        "plan_id": "paid-standard",
        "credits_balance": Decimal(balance),
        "free_credits_remaining": 0,
        "total_count": 0,
        "quota_exceeded": False,
        "webhook_url": None,
        "created_at": clock(),
        "updated_at": clock(),
    })


class TestSQLAlchemyStore:
    """Conditional writes on PostgreSQL."""

    @pytest.mark.asyncio
    async def test_check_constraint_blocks_negative_balance(self, sql_store, clock):
        await seed_account(sql_store, clock, "1")

        result = await sql_store.conditional_update(ACCOUNTS, "acct-sql", increments={"credits_balance": Decimal("-2")})

        assert result is None
        assert (await sql_store.get(ACCOUNTS, "acct-sql"))["credits_balance"] == Decimal("1")

    @pytest.mark.asyncio
    async def test_put_if_absent_reports_existing_key(self, sql_store, clock):
        await seed_account(sql_store, clock, "1")

        inserted = await sql_store.put(
            ACCOUNTS, {**(await sql_store.get(ACCOUNTS, "acct-sql")), "credits_balance": Decimal("7")}, if_absent=True
        )

        assert inserted is False
        assert (await sql_store.get(ACCOUNTS, "acct-sql"))["credits_balance"] == Decimal("1")

    @pytest.mark.asyncio
    async def test_put_if_absent_rejects_invalid_record(self, sql_store, clock):
        await seed_account(sql_store, clock, "1")
        invalid = {**(await sql_store.get(ACCOUNTS, "acct-sql")), "account_id": "acct-bad", "credits_balance": Decimal("-1")}

        with pytest.raises(ValueError):
            await sql_store.put(ACCOUNTS, invalid, if_absent=True)

        assert await sql_store.get(ACCOUNTS, "acct-bad") is None

    @pytest.mark.asyncio
    async def test_conditional_decrement(self, sql_store, clock):
        await seed_account(sql_store, clock, "5")

        updated = await sql_store.conditional_update(
            ACCOUNTS,
            "acct-sql",
            increments={"credits_balance": Decimal("-2")},
            conditions=[Condition("credits_balance", "ge", Decimal("2"))],
        )

        assert updated["credits_balance"] == Decimal("3")

    @pytest.mark.asyncio
    async def test_dedup_transition(self, sql_store, clock):
        registry = JobRegistry(sql_store, clock=clock)
        job = await registry.create(new_job("acct-sql", JobType.LONG, "html"))

        results = await asyncio.gather(*(registry.transition_to_processing(job["job_id"]) for _ in range(5)))

        assert sum(1 for r in results if r.applied) == 1

    @pytest.mark.asyncio
    async def test_concurrent_deductions(self, sql_store, clock):
        await seed_account(sql_store, clock, "3")
        ledger = CreditLedger(sql_store, PlanService(sql_store), clock=clock)

        results = await asyncio.gather(
            *(ledger.deduct("acct-sql", f"job-{i}", Decimal("1")) for i in range(6)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 3
        assert sum(1 for r in results if isinstance(r, InsufficientCreditsError)) == 3
        assert (await sql_store.get(ACCOUNTS, "acct-sql"))["credits_balance"] == Decimal("0")
