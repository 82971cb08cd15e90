"""
Entity and enum mapping tests.
"""

import logging
from datetime import datetime, timezone

import pytest

from src.scheduler.entities import (
    Job,
    JobFrequency,
    JobStatus,
    QueueSchedule,
    frequency_from_store,
    frequency_to_store,
    from_iso,
    status_from_store,
    status_to_store,
)

from .conftest import build_job


class TestEnumMapping:
    """Enums round-trip through explicit lowercase tables."""

    @pytest.mark.parametrize("status", list(JobStatus))
    def test_status_roundtrip(self, status):
        stored = status_to_store(status)

        assert stored == status.value.lower()
        assert status_from_store(stored) == status

    @pytest.mark.parametrize("frequency", list(JobFrequency))
    def test_frequency_roundtrip(self, frequency):
        assert frequency_from_store(frequency_to_store(frequency)) == frequency

    def test_case_insensitive(self):
        assert status_from_store("Running") == JobStatus.RUNNING
        assert frequency_from_store("WEEKLY") == JobFrequency.WEEKLY

    def test_unknown_values_default(self, caplog):
        with caplog.at_level(logging.WARNING, logger="src.scheduler.entities"):
            assert status_from_store("archived") == JobStatus.PENDING
            assert frequency_from_store("hourly") == JobFrequency.ONCE

        assert "Unknown job status 'archived'" in caplog.text
        assert "Unknown job frequency 'hourly'" in caplog.text


class TestJobSnapshot:
    def test_to_dict_from_dict(self):
        job = build_job(
            job_id=12,
            status=JobStatus.FAILED,
            last_run_at=datetime(2026, 1, 1, 3, 0, tzinfo=timezone.utc),
            retry_count=2,
        )

        restored = Job.from_dict(job.to_dict())

        assert restored == job

    def test_snapshot_uses_camel_case(self):
        snapshot = build_job(job_id=1).to_dict()

        assert snapshot["startDate"].endswith("+00:00")
        assert snapshot["cronExpression"] is None
        assert snapshot["status"] == "PENDING"

    def test_schedulable(self):
        assert build_job().is_schedulable()
        assert not build_job(enabled=False).is_schedulable()
        assert not build_job(status=JobStatus.RUNNING).is_schedulable()


class TestTimeHelpers:
    def test_from_iso_accepts_z_suffix(self):
        assert from_iso("2026-01-01T00:00:00Z") == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_from_iso_treats_naive_as_utc(self):
        assert from_iso("2026-01-01T00:00:00").tzinfo is not None

    def test_queue_schedule_kinds(self):
        assert QueueSchedule.one_shot(10).is_repeating is False
        assert QueueSchedule.repeating("0 0 * * *").is_repeating is True
