"""
Scheduler Test Fixtures.

Per-test fixtures:
  - Jobs inserted straight into the store (bypassing admission) for
    lifecycle and listing tests
  - Unsaved Job entities for pure state-machine and schedule tests
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from src.dedup.fingerprint import compute_job_fingerprint
from src.scheduler.entities import Job, JobFrequency, JobStatus
from src.scheduler.persistence import JobStore


FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


def build_job(**overrides) -> Job:
    """Unsaved job with a consistent fingerprint."""
    values = {
        "job_id": None,
        "name": "sync-inventory",
        "frequency": JobFrequency.DAILY,
        "start_date": FIXED_DATETIME + timedelta(hours=1),
        "data": {"warehouse": "north"},
        "created_at": FIXED_DATETIME,
        "updated_at": FIXED_DATETIME,
    }
    values.update(overrides)
    job = Job(**values)
    if not job.fingerprint:
        job.fingerprint = compute_job_fingerprint(
            job.name, job.frequency, job.cron_expression, job.data
        )
    return job


@pytest.fixture
def job_factory() -> Callable[..., Job]:
    """Factory for unsaved jobs."""
    return build_job


@pytest.fixture
def create_job(store: JobStore) -> Callable[..., Job]:
    """
    Factory fixture that inserts jobs directly into the store.

    Each call gets a distinct name unless one is given, so the identity
    index never trips by accident.
    """
    counter = {"n": 0}

    def _create(status: JobStatus = JobStatus.PENDING, forced: bool = False, **overrides) -> Job:
        counter["n"] += 1
        overrides.setdefault("name", f"job-{counter['n']}")
        job = build_job(status=status, **overrides)
        return store.insert(job, forced=forced)

    return _create
