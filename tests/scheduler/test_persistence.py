"""
JobStore Tests.

Verifies:
- Round-trip of every job field
- Lowercase enum storage and tolerant decoding
- The identity index (NULL cron compares equal, forced rows exempt)
- Error mapping for locked databases
- Pagination, upcoming list and batched iteration
"""

import sqlite3
from datetime import timedelta

import pytest

from src.scheduler.entities import JobFrequency, JobStatus
from src.scheduler.errors import TransientDependencyError, UniqueConstraintViolation
from src.scheduler.persistence import JobStore

from .conftest import FIXED_DATETIME, build_job


class TestRoundTrip:
    """Stored jobs come back unchanged."""

    def test_insert_assigns_id_and_roundtrips(self, store: JobStore):
        job = build_job(
            description="Nightly sync",
            end_date=FIXED_DATETIME + timedelta(days=30),
            next_run_at=FIXED_DATETIME + timedelta(hours=1),
            data={"nested": {"b": 2, "a": [1, 2]}, "unicode": "café"},
            max_retries=5,
        )

        saved = store.insert(job)
        loaded = store.find_by_id(saved.job_id)

        assert saved.job_id is not None
        assert loaded.name == job.name
        assert loaded.description == "Nightly sync"
        assert loaded.frequency == JobFrequency.DAILY
        assert loaded.status == JobStatus.PENDING
        assert loaded.enabled is True
        assert loaded.start_date == job.start_date
        assert loaded.end_date == job.end_date
        assert loaded.next_run_at == job.next_run_at
        assert loaded.data == job.data
        assert loaded.fingerprint == job.fingerprint
        assert loaded.max_retries == 5
        assert loaded.created_at == FIXED_DATETIME

    def test_missing_job_returns_none(self, store: JobStore):
        assert store.find_by_id(999) is None
        assert store.update(999, {"enabled": False}) is None
        assert store.delete(999) is False

    def test_enums_stored_lowercase(self, store: JobStore, temp_db_path: str):
        saved = store.insert(build_job(status=JobStatus.RUNNING, frequency=JobFrequency.WEEKLY))

        conn = sqlite3.connect(temp_db_path)
        row = conn.execute(
            "SELECT status, frequency FROM jobs WHERE job_id = ?", (saved.job_id,)
        ).fetchone()
        conn.close()

        assert row == ("running", "weekly")

    def test_unknown_stored_values_default(self, store: JobStore, temp_db_path: str, caplog):
        """Unrecognized stored enum values are logged and defaulted, never raised."""
        saved = store.insert(build_job())

        conn = sqlite3.connect(temp_db_path)
        conn.execute(
            "UPDATE jobs SET status = 'paused', frequency = 'hourly' WHERE job_id = ?",
            (saved.job_id,),
        )
        conn.commit()
        conn.close()

        loaded = store.find_by_id(saved.job_id)

        assert loaded.status == JobStatus.PENDING
        assert loaded.frequency == JobFrequency.ONCE
        assert "Unknown job status" in caplog.text

    def test_update_returns_fresh_row(self, store: JobStore):
        saved = store.insert(build_job())

        updated = store.update(saved.job_id, {
            "status": JobStatus.FAILED,
            "retry_count": 2,
            "last_run_at": FIXED_DATETIME,
        })

        assert updated.status == JobStatus.FAILED
        assert updated.retry_count == 2
        assert updated.last_run_at == FIXED_DATETIME

    def test_update_rejects_unknown_field(self, store: JobStore):
        saved = store.insert(build_job())

        with pytest.raises(ValueError):
            store.update(saved.job_id, {"owner": "nobody"})

    def test_delete(self, store: JobStore):
        saved = store.insert(build_job())

        assert store.delete(saved.job_id) is True
        assert store.find_by_id(saved.job_id) is None


class TestIdentityIndex:
    """The unique index is the backstop for concurrent admissions."""

    def test_identical_insert_violates(self, store: JobStore):
        store.insert(build_job())

        with pytest.raises(UniqueConstraintViolation) as exc_info:
            store.insert(build_job())

        assert exc_info.value.fingerprint == build_job().fingerprint

    def test_null_cron_compares_equal(self, store: JobStore):
        """Two rows with NULL cron and identical fields collide."""
        store.insert(build_job(cron_expression=None))

        with pytest.raises(UniqueConstraintViolation):
            store.insert(build_job(cron_expression=None))

    def test_different_cron_does_not_collide(self, store: JobStore):
        store.insert(build_job(frequency=JobFrequency.CUSTOM, cron_expression="0 * * * *"))
        other = store.insert(build_job(frequency=JobFrequency.CUSTOM, cron_expression="5 * * * *"))

        assert other.job_id is not None

    def test_forced_rows_are_exempt(self, store: JobStore):
        first = store.insert(build_job())
        second = store.insert(build_job(), forced=True)
        third = store.insert(build_job(), forced=True)

        assert len({first.job_id, second.job_id, third.job_id}) == 3

    def test_update_into_existing_identity_violates(self, store: JobStore):
        store.insert(build_job(name="alpha"))
        beta = store.insert(build_job(name="beta"))
        alpha_fp = build_job(name="alpha").fingerprint

        with pytest.raises(UniqueConstraintViolation):
            store.update(beta.job_id, {"name": "alpha", "fingerprint": alpha_fp})

    def test_find_by_fingerprint_null_aware(self, store: JobStore):
        saved = store.insert(build_job())

        found = store.find_by_fingerprint(saved.name, saved.frequency, None, saved.fingerprint)
        missing = store.find_by_fingerprint(saved.name, saved.frequency, "0 * * * *", saved.fingerprint)

        assert found.job_id == saved.job_id
        assert missing is None


class TestTransientErrors:
    """Lock contention surfaces as TransientDependencyError."""

    def test_locked_database_write(self, temp_db_path: str):
        store = JobStore(temp_db_path, busy_timeout=0.05)
        blocker = sqlite3.connect(temp_db_path)
        blocker.execute("BEGIN EXCLUSIVE")

        try:
            with pytest.raises(TransientDependencyError) as exc_info:
                store.insert(build_job())
        finally:
            blocker.rollback()
            blocker.close()

        assert exc_info.value.operation == "insert"
        assert isinstance(exc_info.value.cause, sqlite3.OperationalError)


class TestListing:
    """Pagination and upcoming jobs."""

    def test_list_jobs_newest_first_with_total(self, store: JobStore, create_job):
        for i in range(5):
            create_job(created_at=FIXED_DATETIME + timedelta(minutes=i))

        page1, total = store.list_jobs(page=1, limit=2)
        page3, _ = store.list_jobs(page=3, limit=2)

        assert total == 5
        assert [j.name for j in page1] == ["job-5", "job-4"]
        assert [j.name for j in page3] == ["job-1"]

    def test_list_jobs_filters_status(self, store: JobStore, create_job):
        create_job(status=JobStatus.PENDING)
        create_job(status=JobStatus.FAILED)
        create_job(status=JobStatus.FAILED)

        jobs, total = store.list_jobs(status=JobStatus.FAILED)

        assert total == 2
        assert all(j.status == JobStatus.FAILED for j in jobs)

    def test_list_by_status_enabled(self, store: JobStore, create_job):
        pending = create_job(status=JobStatus.PENDING)
        create_job(status=JobStatus.PENDING, enabled=False)
        create_job(status=JobStatus.COMPLETED)

        jobs = store.list_by_status_enabled(JobStatus.PENDING, True)

        assert [j.job_id for j in jobs] == [pending.job_id]

    def test_list_upcoming(self, store: JobStore, create_job):
        later = create_job(next_run_at=FIXED_DATETIME + timedelta(hours=5))
        sooner = create_job(next_run_at=FIXED_DATETIME + timedelta(hours=1))
        create_job(next_run_at=FIXED_DATETIME - timedelta(hours=1))
        create_job(next_run_at=FIXED_DATETIME + timedelta(hours=2), enabled=False)
        create_job(next_run_at=FIXED_DATETIME + timedelta(hours=3), status=JobStatus.RUNNING)

        jobs = store.list_upcoming(limit=10, now=FIXED_DATETIME)

        assert [j.job_id for j in jobs] == [sooner.job_id, later.job_id]

    def test_iter_all_batches(self, store: JobStore, create_job):
        created = [create_job().job_id for _ in range(7)]

        seen = [job.job_id for job in store.iter_all(batch_size=3)]

        assert seen == created
