"""
Scheduler Domain Entities.

- Job: a scheduled job definition plus its lifecycle state
- JobDefinition: caller-supplied fields for admission
- QueueSchedule: how a job is handed to the external work queue

Status and frequency values round-trip through explicit mapping tables
(enum <-> stored string). Unknown stored values are logged and defaulted,
never raised.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Any


logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """
    Job execution status.

    - PENDING: Admitted, waiting for dispatch
    - RUNNING: Handed to a worker
    - COMPLETED: Last run finished successfully
    - FAILED: Last run raised an error
    - CANCELLED: Explicitly cancelled
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class JobFrequency(str, Enum):
    """How often a job recurs. CUSTOM is driven by cron_expression."""

    ONCE = "ONCE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


# =============================================================================
# Enum <-> stored string mapping
# =============================================================================

STATUS_TO_STORE = {
    JobStatus.PENDING: "pending",
    JobStatus.RUNNING: "running",
    JobStatus.COMPLETED: "completed",
    JobStatus.FAILED: "failed",
    JobStatus.CANCELLED: "cancelled",
}
STORE_TO_STATUS = {v: k for k, v in STATUS_TO_STORE.items()}

FREQUENCY_TO_STORE = {
    JobFrequency.ONCE: "once",
    JobFrequency.DAILY: "daily",
    JobFrequency.WEEKLY: "weekly",
    JobFrequency.MONTHLY: "monthly",
    JobFrequency.CUSTOM: "custom",
}
STORE_TO_FREQUENCY = {v: k for k, v in FREQUENCY_TO_STORE.items()}

DEFAULT_STATUS = JobStatus.PENDING
DEFAULT_FREQUENCY = JobFrequency.ONCE


def status_to_store(status: JobStatus) -> str:
    """Convert a JobStatus to its stored string."""
    return STATUS_TO_STORE[JobStatus(status)]


def status_from_store(value: Any) -> JobStatus:
    """
    Convert a stored/external status string to JobStatus.

    Case-insensitive. Unknown values log a warning and default to PENDING.
    """
    if isinstance(value, JobStatus):
        return value
    status = STORE_TO_STATUS.get(str(value).lower())
    if status is None:
        logger.warning(
            f"[EnumMapping] Unknown job status {value!r}, defaulting to {DEFAULT_STATUS.value}"
        )
        return DEFAULT_STATUS
    return status


def frequency_to_store(frequency: JobFrequency) -> str:
    """Convert a JobFrequency to its stored string."""
    return FREQUENCY_TO_STORE[JobFrequency(frequency)]


def frequency_from_store(value: Any) -> JobFrequency:
    """
    Convert a stored/external frequency string to JobFrequency.

    Case-insensitive. Unknown values log a warning and default to ONCE.
    """
    if isinstance(value, JobFrequency):
        return value
    frequency = STORE_TO_FREQUENCY.get(str(value).lower())
    if frequency is None:
        logger.warning(
            f"[EnumMapping] Unknown job frequency {value!r}, defaulting to {DEFAULT_FREQUENCY.value}"
        )
        return DEFAULT_FREQUENCY
    return frequency


# =============================================================================
# Time helpers
# =============================================================================


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as an ISO-8601 UTC string."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


# =============================================================================
# Entities
# =============================================================================


@dataclass
class JobDefinition:
    """
    Caller-supplied fields for admitting a new job.

    Assumed already validated (cron iff CUSTOM, end_date > start_date,
    max_retries in 0..10) by the API schema layer.
    """

    name: str
    frequency: JobFrequency
    start_date: datetime
    cron_expression: Optional[str] = None
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    enabled: bool = True
    data: dict = field(default_factory=dict)
    max_retries: int = 3


@dataclass
class Job:
    """
    A scheduled job.

    Mutability rules:
    - job_id, fingerprint, created_at: assigned by the store/service
    - status, enabled, last_run_at, retry_count: lifecycle-managed
    - next_run_at: derived, recomputed on scheduling-field changes
    """

    job_id: Optional[int]
    name: str
    frequency: JobFrequency
    start_date: datetime
    description: Optional[str] = None
    cron_expression: Optional[str] = None
    end_date: Optional[datetime] = None
    status: JobStatus = JobStatus.PENDING
    enabled: bool = True
    data: dict = field(default_factory=dict)
    fingerprint: str = ""
    retry_count: int = 0
    max_retries: int = 3
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_definition(cls, definition: JobDefinition) -> "Job":
        """Create an unsaved PENDING job from a definition."""
        now = utc_now()
        return cls(
            job_id=None,
            name=definition.name,
            frequency=JobFrequency(definition.frequency),
            start_date=ensure_utc(definition.start_date),
            description=definition.description,
            cron_expression=definition.cron_expression,
            end_date=ensure_utc(definition.end_date),
            status=JobStatus.PENDING,
            enabled=definition.enabled,
            data=dict(definition.data or {}),
            max_retries=definition.max_retries,
            created_at=now,
            updated_at=now,
        )

    def is_schedulable(self) -> bool:
        """A job may sit on the work queue only while enabled and PENDING."""
        return self.enabled and self.status == JobStatus.PENDING

    def to_dict(self) -> dict:
        """Snapshot for cache entries, queue descriptors and API responses."""
        return {
            "id": self.job_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "enabled": self.enabled,
            "frequency": self.frequency.value,
            "cronExpression": self.cron_expression,
            "startDate": to_iso(self.start_date),
            "endDate": to_iso(self.end_date),
            "lastRunAt": to_iso(self.last_run_at),
            "nextRunAt": to_iso(self.next_run_at),
            "data": self.data,
            "fingerprint": self.fingerprint,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Job":
        """Rebuild a Job from a to_dict() snapshot."""
        return cls(
            job_id=raw.get("id"),
            name=raw["name"],
            description=raw.get("description"),
            status=status_from_store(raw.get("status", DEFAULT_STATUS.value)),
            enabled=bool(raw.get("enabled", True)),
            frequency=frequency_from_store(raw.get("frequency", DEFAULT_FREQUENCY.value)),
            cron_expression=raw.get("cronExpression"),
            start_date=from_iso(raw["startDate"]),
            end_date=from_iso(raw.get("endDate")),
            last_run_at=from_iso(raw.get("lastRunAt")),
            next_run_at=from_iso(raw.get("nextRunAt")),
            data=raw.get("data") or {},
            fingerprint=raw.get("fingerprint") or "",
            retry_count=int(raw.get("retryCount", 0)),
            max_retries=int(raw.get("maxRetries", 3)),
            created_at=from_iso(raw.get("createdAt")) or utc_now(),
            updated_at=from_iso(raw.get("updatedAt")) or utc_now(),
        )


@dataclass(frozen=True)
class QueueSchedule:
    """
    How a job is placed on the work queue.

    Exactly one of delay_ms (one-shot) or cron_pattern (repeating) is set.
    """

    delay_ms: Optional[int] = None
    cron_pattern: Optional[str] = None

    @classmethod
    def one_shot(cls, delay_ms: int) -> "QueueSchedule":
        return cls(delay_ms=delay_ms)

    @classmethod
    def repeating(cls, cron_pattern: str) -> "QueueSchedule":
        return cls(cron_pattern=cron_pattern)

    @property
    def is_repeating(self) -> bool:
        return self.cron_pattern is not None
