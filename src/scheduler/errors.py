"""
Scheduler-specific exceptions.

Only DuplicateJobError, InvalidJobUpdateError, TransientDependencyError
and SchedulerInitializationError are expected to cross the service boundary.
"Not found" is signalled with None/False return values, never raised.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .entities import Job


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class DuplicateJobError(SchedulerError):
    """
    Raised by create() when an equivalent job is already admitted.

    Carries the existing job so the caller can decide whether to retry
    with force_create=True.
    """

    code = "DUPLICATE_JOB"

    def __init__(self, existing_job: "Job"):
        self.existing_job = existing_job
        self.existing_job_id = existing_job.job_id
        self.existing_job_name = existing_job.name
        self.existing_created_at = existing_job.created_at
        super().__init__(
            "Duplicate job detected. Job with same name, frequency, "
            f"and data already exists (id={existing_job.job_id})"
        )


class TransientDependencyError(SchedulerError):
    """
    Raised when the store or cache fails with a retryable I/O error.

    Examples:
    - SQLite "database is locked"
    - Redis connection refused / socket timeout
    - Per-attempt deadline exceeded
    """

    def __init__(
        self,
        operation: str,
        cause: Optional[BaseException] = None,
        attempts: int = 1,
    ):
        self.operation = operation
        self.cause = cause
        self.attempts = attempts
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Transient failure during {operation}{detail}")


class UniqueConstraintViolation(SchedulerError):
    """
    Raised by the store when an insert collides with the duplicate-check index.

    The service translates this into DuplicateJobError.
    """

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__(f"Unique constraint violated for fingerprint {fingerprint[:16]}...")


class InvalidTransitionError(SchedulerError):
    """Raised when a dispatch-driven status transition is not allowed."""

    def __init__(self, job_id: Optional[int], current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Illegal transition for job {job_id}: {current} -> {target}")


class SchedulerInitializationError(SchedulerError):
    """Raised when startup reconciliation of the work queue fails."""
    pass


class InvalidJobUpdateError(SchedulerError, ValueError):
    """
    Raised by update() when the merged job would be invalid.

    Examples:
    - explicit null for a field that cannot be null
    - end_date not after start_date
    - CUSTOM frequency without a cron expression
    """

    def __init__(self, job_id: Optional[int], reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Invalid update for job {job_id}: {reason}")
