"""
Job Scheduler Core Module.

- entities: Job, JobDefinition, status/frequency mapping
- schedule: next-run calculation
- lifecycle: status state machine and its queue/cache effects
- persistence: SQLite job store
- service: JobAdmissionService (import from src.scheduler.service)
"""

from .entities import (
    JobStatus,
    JobFrequency,
    Job,
    JobDefinition,
    QueueSchedule,
)
from .errors import (
    SchedulerError,
    DuplicateJobError,
    TransientDependencyError,
    UniqueConstraintViolation,
    InvalidTransitionError,
    SchedulerInitializationError,
)
from .lifecycle import LifecycleEffect, QueueAction, STATE_MACHINE
from .persistence import JobStore
from .schedule import calculate_next_run, queue_schedule_for

__all__ = [
    # Entities
    "JobStatus",
    "JobFrequency",
    "Job",
    "JobDefinition",
    "QueueSchedule",
    # Errors
    "SchedulerError",
    "DuplicateJobError",
    "TransientDependencyError",
    "UniqueConstraintViolation",
    "InvalidTransitionError",
    "SchedulerInitializationError",
    # Lifecycle
    "LifecycleEffect",
    "QueueAction",
    "STATE_MACHINE",
    # Persistence
    "JobStore",
    # Schedule
    "calculate_next_run",
    "queue_schedule_for",
]
