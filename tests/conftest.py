"""
Pytest configuration and shared fixtures.

Base fixtures:
  - Temporary SQLite database
  - Mocked clock at a fixed time
  - In-memory cache and work queue fakes
  - A fully wired JobAdmissionService
"""

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Generator, Optional

import pytest

from src.dedup.duplicate_check import DuplicateAdmissionController
from src.infra.retry import RetryPolicy
from src.scheduler.entities import JobDefinition, JobFrequency, QueueSchedule
from src.scheduler.errors import TransientDependencyError
from src.scheduler.persistence import JobStore
from src.scheduler.service import JobAdmissionService


# Fixed time for deterministic tests
FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True, scope="function")
def reset_auth_module():
    """
    Reset auth module state before each test.

    Tests run with API_AUTH_ENABLED=false unless they set it explicitly.
    """
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]

    import importlib
    import src.api.dependencies.auth as auth_module
    importlib.reload(auth_module)


# =============================================================================
# Fakes
# =============================================================================


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at a fixed instant
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: int = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        self._current = time


class FakeCache:
    """
    In-memory cache with the RedisCache contract.

    Values round-trip through JSON like the real adapter. Set `fail = True`
    to simulate an unreachable server (reads miss, writes are dropped).
    """

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.deleted: list[str] = []
        self.deleted_prefixes: list[str] = []

    def get(self, key: str) -> Optional[Any]:
        if self.fail:
            return None
        raw = self.values.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        if self.fail:
            return False
        self.values[key] = json.dumps(value, default=str)
        self.ttls[key] = ttl_seconds
        return True

    def delete(self, key: str) -> bool:
        self.deleted.append(key)
        self.values.pop(key, None)
        self.ttls.pop(key, None)
        return True

    def delete_by_prefix(self, prefix: str) -> int:
        self.deleted_prefixes.append(prefix)
        keys = [k for k in self.values if k.startswith(prefix)]
        for key in keys:
            self.delete(key)
        return len(keys)


class FakeWorkQueue:
    """In-memory work queue recording submissions and removals."""

    def __init__(self):
        self.entries: dict[int, tuple[dict, QueueSchedule]] = {}
        self.submitted: list[int] = []
        self.removed: list[int] = []
        self.fail = False

    def submit(self, job_id: int, descriptor: dict, schedule: QueueSchedule) -> None:
        if self.fail:
            raise TransientDependencyError("work_queue.submit")
        self.entries[job_id] = (descriptor, schedule)
        self.submitted.append(job_id)

    def remove(self, job_id: int) -> None:
        if self.fail:
            raise TransientDependencyError("work_queue.remove")
        self.entries.pop(job_id, None)
        self.removed.append(job_id)

    def schedule_of(self, job_id: int) -> Optional[QueueSchedule]:
        entry = self.entries.get(job_id)
        return entry[1] if entry else None


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def store(temp_db_path: str) -> JobStore:
    """JobStore with an empty temporary database."""
    return JobStore(temp_db_path, busy_timeout=1.0)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def fake_queue() -> FakeWorkQueue:
    return FakeWorkQueue()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by retry policies under test."""
    return []


@pytest.fixture
def duplicate_controller(store: JobStore, fake_cache: FakeCache, sleeps: list) -> DuplicateAdmissionController:
    return DuplicateAdmissionController(
        store,
        fake_cache,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.1),
        sleep=sleeps.append,
    )


@pytest.fixture
def service(
    store: JobStore,
    fake_cache: FakeCache,
    fake_queue: FakeWorkQueue,
    duplicate_controller: DuplicateAdmissionController,
    clock: MockClock,
) -> JobAdmissionService:
    """JobAdmissionService wired to fakes and a temporary database."""
    return JobAdmissionService(
        store=store,
        cache=fake_cache,
        work_queue=fake_queue,
        duplicate_controller=duplicate_controller,
        write_policy=RetryPolicy(max_attempts=3, base_delay=0.0),
        clock=clock.now,
    )


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def make_definition() -> Callable[..., JobDefinition]:
    """Factory for valid job definitions (DAILY, starting one day after FIXED_DATETIME)."""

    def _make(**overrides) -> JobDefinition:
        values = {
            "name": "nightly-report",
            "frequency": JobFrequency.DAILY,
            "start_date": FIXED_DATETIME + timedelta(days=1),
            "data": {"report": "sales", "recipients": ["ops@example.com"]},
        }
        values.update(overrides)
        return JobDefinition(**values)

    return _make
