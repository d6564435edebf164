"""
Tests for the in-memory IdempotencyStore and pagination helpers.
"""
import asyncio

import pytest

from docmeter.errors import InvalidParameterError
from docmeter.repositories.idempotency_store import ACCOUNTS, JOBS, Condition
from docmeter.utils.ids import new_sortable_id
from docmeter.utils.pagination import clamp_limit, decode_token, encode_token


class TestInMemoryStore:
    """Tests for InMemoryStore semantics shared with the SQL store."""

    @pytest.mark.asyncio
    async def test_put_if_absent(self, store):
        assert await store.put(JOBS, {"job_id": "j1", "status": "queued"}, if_absent=True) is True
        assert await store.put(JOBS, {"job_id": "j1", "status": "failed"}, if_absent=True) is False
        assert (await store.get(JOBS, "j1"))["status"] == "queued"

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        await store.put(JOBS, {"job_id": "j1", "status": "queued"})

        record = await store.get(JOBS, "j1")
        record["status"] = "tampered"

        assert (await store.get(JOBS, "j1"))["status"] == "queued"

    @pytest.mark.asyncio
    async def test_conditional_update_respects_conditions(self, store):
        await store.put(ACCOUNTS, {"account_id": "a1", "credits_balance": 5})

        blocked = await store.conditional_update(
            ACCOUNTS, "a1", increments={"credits_balance": -6}, conditions=[Condition("credits_balance", "ge", 6)]
        )
        applied = await store.conditional_update(
            ACCOUNTS, "a1", increments={"credits_balance": -5}, conditions=[Condition("credits_balance", "ge", 5)]
        )

        assert blocked is None
        assert applied["credits_balance"] == 0

    @pytest.mark.asyncio
    async def test_update_missing_record(self, store):
        assert await store.conditional_update(JOBS, "missing", changes={"status": "failed"}) is None

    @pytest.mark.asyncio
    async def test_compare_and_swap_single_winner(self, store):
        await store.put(JOBS, {"job_id": "j1", "status": "queued"})

        results = await asyncio.gather(
            *(store.compare_and_swap(JOBS, "j1", {"status": "queued"}, {"status": "processing"}) for _ in range(8))
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_in_condition(self, store):
        await store.put(JOBS, {"job_id": "j1", "status": "completed"})

        updated = await store.conditional_update(
            JOBS, "j1", changes={"status": "failed"}, conditions=[Condition("status", "in", ("queued", "processing"))]
        )

        assert updated is None

    @pytest.mark.asyncio
    async def test_query_order_and_slice(self, store):
        for i, owner in enumerate(["a", "a", "b", "a"]):
            await store.put(JOBS, {"job_id": f"j{i}", "owner_id": owner, "created_at": i})

        rows = await store.query(JOBS, where={"owner_id": "a"}, order_by="created_at", descending=True, limit=2, offset=1)

        assert [r["job_id"] for r in rows] == ["j1", "j0"]

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put(JOBS, {"job_id": "j1"})

        assert await store.delete(JOBS, "j1") is True
        assert await store.delete(JOBS, "j1") is False

    @pytest.mark.asyncio
    async def test_unknown_collection(self, store):
        with pytest.raises(ValueError):
            await store.get("sessions", "x")

    def test_invalid_condition_operator(self):
        with pytest.raises(ValueError):
            Condition("status", "like", "q%")


class TestHelpers:
    """Pagination tokens and sortable ids."""

    def test_token_round_trip(self):
        assert decode_token(encode_token(150)) == 150
        assert decode_token(None) == 0

    def test_garbage_token(self):
        with pytest.raises(InvalidParameterError):
            decode_token("not-a-token")

    def test_limit_clamped(self):
        assert clamp_limit(None) == 50
        assert clamp_limit(500) == 100
        with pytest.raises(InvalidParameterError):
            clamp_limit(0)

    def test_sortable_ids_increase(self):
        ids = [new_sortable_id() for _ in range(100)]

        assert ids == sorted(ids)
        assert len(set(ids)) == 100
        assert all(len(i) == 32 for i in ids)
