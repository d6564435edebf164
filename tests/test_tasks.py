"""
Tests for the Celery task wrappers.
Tasks are called directly; the async service call is replaced per test.
"""
from types import SimpleNamespace

import pytest

from docmeter.tasks import deduct_credits, process_long_job


def fake_run_async(value):
    def _run(func):
        return value
    return _run


class TestProcessLongJobTask:
    """Tests for process_long_job_task."""

    def test_completed_job(self, monkeypatch):
        monkeypatch.setattr(process_long_job, "run_async", fake_run_async({"job_id": "j1", "status": "completed"}))

        result = process_long_job.process_long_job_task({"job_id": "j1"})

        assert result == {"job_id": "j1", "status": "completed"}

    def test_duplicate_delivery_skipped(self, monkeypatch):
        monkeypatch.setattr(process_long_job, "run_async", fake_run_async(None))

        result = process_long_job.process_long_job_task({"job_id": "j1"})

        assert result == {"job_id": "j1", "status": "skipped"}

    def test_runs_against_worker_services(self):
        # Memory backend: the worker builds a fresh store, so the job is unknown and skipped
        result = process_long_job.process_long_job_task({"job_id": "missing"})

        assert result["status"] == "skipped"


class TestDeductCreditsTask:
    """Tests for deduct_credits_task."""

    def test_applied(self, monkeypatch):
        monkeypatch.setattr(deduct_credits, "run_async", fake_run_async(SimpleNamespace(outcome="balance")))

        result = deduct_credits.deduct_credits_task({"job_id": "j1"})

        assert result == {"job_id": "j1", "status": "balance"}

    def test_rejected(self, monkeypatch):
        monkeypatch.setattr(deduct_credits, "run_async", fake_run_async(None))

        result = deduct_credits.deduct_credits_task({"job_id": "j1"})

        assert result["status"] == "rejected"
