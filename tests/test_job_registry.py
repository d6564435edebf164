"""
Tests for the job state machine and the dedup transition.
"""
import asyncio

import pytest

from docmeter.errors import AlreadyExistsError, InvalidParameterError, JobNotFoundError
from docmeter.models.job import JobStatus, JobType
from docmeter.services.job_registry import JobPatch, JobRegistry, new_job


@pytest.fixture
def registry(store, clock) -> JobRegistry:
    return JobRegistry(store, clock=clock)


class TestJobCreation:
    """Tests for JobRegistry.create."""

    @pytest.mark.asyncio
    async def test_long_job_starts_queued(self, registry):
        job = await registry.create(new_job("acct-1", JobType.LONG, "html"))

        assert job["status"] == "queued"
        assert job["started_at"] is None
        assert job["created_at"] is not None

    @pytest.mark.asyncio
    async def test_quick_job_starts_processing(self, registry, clock):
        job = await registry.create(new_job("acct-1", JobType.QUICK, "markdown"))

        assert job["status"] == "processing"
        assert job["started_at"] == clock()

    @pytest.mark.asyncio
    async def test_duplicate_job_id_rejected(self, registry):
        await registry.create(new_job("acct-1", JobType.LONG, "html", job_id="job-1"))

        with pytest.raises(AlreadyExistsError):
            await registry.create(new_job("acct-1", JobType.LONG, "html", job_id="job-1"))

    @pytest.mark.asyncio
    async def test_get_missing_job(self, registry):
        with pytest.raises(JobNotFoundError):
            await registry.get("missing")

    @pytest.mark.asyncio
    async def test_other_owner_sees_not_found(self, registry):
        job = await registry.create(new_job("acct-1", JobType.LONG, "html"))

        with pytest.raises(JobNotFoundError):
            await registry.get_for_owner("acct-2", job["job_id"])


class TestDedupTransition:
    """Tests for queued -> processing claims."""

    @pytest.mark.asyncio
    async def test_first_claim_wins(self, registry):
        job = await registry.create(new_job("acct-1", JobType.LONG, "html"))

        result = await registry.transition_to_processing(job["job_id"])

        assert result.applied is True
        assert result.job["status"] == "processing"
        assert result.job["started_at"] is not None

    @pytest.mark.asyncio
    async def test_second_claim_is_skipped(self, registry):
        job = await registry.create(new_job("acct-1", JobType.LONG, "html"))
        await registry.transition_to_processing(job["job_id"])

        result = await registry.transition_to_processing(job["job_id"])

        assert result.applied is False
        assert result.job["status"] == "processing"

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, registry):
        job = await registry.create(new_job("acct-1", JobType.LONG, "html"))

        results = await asyncio.gather(
            *(registry.transition_to_processing(job["job_id"]) for _ in range(10))
        )

        assert sum(1 for r in results if r.applied) == 1

    @pytest.mark.asyncio
    async def test_terminal_job_cannot_be_claimed(self, registry):
        job = await registry.create(new_job("acct-1", JobType.LONG, "html"))
        await registry.transition_to_processing(job["job_id"])
        await registry.complete(job["job_id"], JobPatch(pages=1))

        result = await registry.transition_to_processing(job["job_id"])

        assert result.applied is False
        assert result.job["status"] == "completed"

    @pytest.mark.asyncio
    async def test_missing_job_is_skipped(self, registry):
        result = await registry.transition_to_processing("missing")

        assert result.applied is False
        assert result.job is None


class TestTerminalStates:
    """Terminal states are absorbing."""

    @pytest.mark.asyncio
    async def test_complete_sets_result(self, registry, clock):
        job = await registry.create(new_job("acct-1", JobType.QUICK, "html"))
        clock.advance(2)

        done = await registry.complete(job["job_id"], JobPatch(pages=4, truncated=False, billing_status="billed"))

        assert done["status"] == "completed"
        assert done["pages"] == 4
        assert done["billing_status"] == "billed"
        assert done["completed_at"] == clock()

    @pytest.mark.asyncio
    async def test_failed_job_stays_failed(self, registry, clock):
        job = await registry.create(new_job("acct-1", JobType.QUICK, "html"))
        failed = await registry.fail(job["job_id"], "renderer down")
        clock.advance(5)

        after = await registry.complete(job["job_id"], JobPatch(pages=1))

        assert after["status"] == "failed"
        assert after["completed_at"] == failed["completed_at"]
        assert after["pages"] is None

    @pytest.mark.asyncio
    async def test_timeout_then_complete_keeps_timeout(self, registry):
        job = await registry.create(new_job("acct-1", JobType.QUICK, "html"))
        await registry.mark_timeout(job["job_id"], 30)

        after = await registry.complete(job["job_id"], JobPatch(pages=2))

        assert after["status"] == "timeout"
        assert after["timeout_occurred"] is True
        assert "30-second" in after["error_message"]

    @pytest.mark.asyncio
    async def test_racing_terminal_writes_keep_first(self, registry):
        job = await registry.create(new_job("acct-1", JobType.QUICK, "html"))

        await asyncio.gather(
            registry.complete(job["job_id"], JobPatch(pages=1)),
            registry.fail(job["job_id"], "boom"),
            registry.mark_timeout(job["job_id"]),
        )

        final = await registry.get(job["job_id"])
        assert final["status"] in ("completed", "failed", "timeout")
        assert JobRegistry.is_terminal(final)

    @pytest.mark.asyncio
    async def test_delivery_recorded_on_terminal_job(self, registry, clock):
        job = await registry.create(new_job("acct-1", JobType.LONG, "html"))
        await registry.transition_to_processing(job["job_id"])
        await registry.complete(job["job_id"], JobPatch(pages=1))

        updated = await registry.record_delivery(job["job_id"], delivered=True, retry_count=2)

        assert updated["status"] == "completed"
        assert updated["webhook_delivered"] is True
        assert updated["webhook_retry_count"] == 2
        assert updated["webhook_delivered_at"] == clock()


class TestListing:
    """Tests for list_for_owner and the public read model."""

    @pytest.mark.asyncio
    async def test_newest_first_with_pagination(self, registry, clock):
        ids = []
        for _ in range(3):
            job = await registry.create(new_job("acct-1", JobType.LONG, "html"))
            ids.append(job["job_id"])
            clock.advance(1)
        await registry.create(new_job("acct-2", JobType.LONG, "html"))

        page, token = await registry.list_for_owner("acct-1", limit=2)
        rest, last_token = await registry.list_for_owner("acct-1", limit=2, next_token=token)

        assert [j["job_id"] for j in page] == [ids[2], ids[1]]
        assert [j["job_id"] for j in rest] == [ids[0]]
        assert token is not None
        assert last_token is None

    @pytest.mark.asyncio
    async def test_filter_by_status(self, registry, clock):
        queued = await registry.create(new_job("acct-1", JobType.LONG, "html"))
        clock.advance(1)
        quick = await registry.create(new_job("acct-1", JobType.QUICK, "html"))
        await registry.complete(quick["job_id"], JobPatch(pages=1))

        page, _ = await registry.list_for_owner("acct-1", status=JobStatus.QUEUED.value)

        assert [j["job_id"] for j in page] == [queued["job_id"]]

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, registry):
        with pytest.raises(InvalidParameterError):
            await registry.list_for_owner("acct-1", status="done")

    def test_public_view_hides_internal_fields(self):
        job = new_job("acct-1", JobType.LONG, "html", job_id="job-1")
        job["artifact_key"] = "documents/acct-1/job-1.pdf"

        public = JobRegistry.to_public(job)

        assert "owner_id" not in public
        assert "artifact_key" not in public
        assert "webhook_retry_count" not in public
        assert "artifact_url" in public
        assert "timeout_occurred" not in public

    def test_quick_public_view_reports_timeout(self):
        public = JobRegistry.to_public(new_job("acct-1", JobType.QUICK, "html"))

        assert public["timeout_occurred"] is False
        assert "artifact_url" not in public
