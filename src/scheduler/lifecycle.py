"""
Job lifecycle state machine.

Status transitions (dispatch-driven):
- PENDING -> RUNNING (dispatch)
- RUNNING -> COMPLETED (normal completion)
- RUNNING -> FAILED (execution error)
- any -> CANCELLED (explicit cancellation)
- COMPLETED/FAILED -> RUNNING only for recurring jobs (next repeat firing)

`enabled` is orthogonal to status:
- enabled -> False always removes the job from the work queue
- enabled -> True re-submits only when status is PENDING

Every evaluation returns a LifecycleEffect telling the service which queue
action to take and which caches to drop. The state machine never performs
I/O itself.
"""

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .entities import Job, JobFrequency, JobStatus, utc_now
from .errors import InvalidTransitionError


class QueueAction(str, Enum):
    """What the service must do with the job's work-queue entry."""

    NONE = "NONE"
    SUBMIT = "SUBMIT"
    REMOVE = "REMOVE"
    RESUBMIT = "RESUBMIT"  # remove any existing entry, then submit


@dataclass(frozen=True)
class LifecycleEffect:
    """Side effects implied by a lifecycle change."""

    queue_action: QueueAction = QueueAction.NONE
    invalidate_job: bool = True
    invalidate_lists: bool = True


STATE_MACHINE = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: {JobStatus.CANCELLED},
    JobStatus.FAILED: {JobStatus.CANCELLED},
    JobStatus.CANCELLED: {JobStatus.CANCELLED},
}

# Recurring jobs fire again after a finished run
_REPEAT_FIRING = {JobStatus.COMPLETED, JobStatus.FAILED}


def is_recurring(job: Job) -> bool:
    """True when the work queue keeps a repeating entry for the job."""
    return job.frequency != JobFrequency.ONCE


def can_transition(job: Job, target: JobStatus) -> bool:
    """Check a dispatch-driven transition against the state machine."""
    if target in STATE_MACHINE.get(job.status, set()):
        return True
    return (
        target == JobStatus.RUNNING
        and job.status in _REPEAT_FIRING
        and is_recurring(job)
    )


def assert_transition(job: Job, target: JobStatus) -> None:
    """Raise InvalidTransitionError if the transition is not allowed."""
    if not can_transition(job, target):
        raise InvalidTransitionError(job.job_id, job.status.value, target.value)


def transition_effect(job: Job, target: JobStatus) -> LifecycleEffect:
    """
    Queue/cache effects of moving `job` to `target`.

    Shared by automatic transitions and direct status edits.
    """
    if target == JobStatus.CANCELLED:
        return LifecycleEffect(QueueAction.REMOVE)

    if target == JobStatus.PENDING:
        if job.enabled:
            return LifecycleEffect(QueueAction.RESUBMIT)
        return LifecycleEffect(QueueAction.REMOVE)

    if target in (JobStatus.COMPLETED, JobStatus.FAILED) and not is_recurring(job):
        # One-shot entry is consumed; drop any leftover
        return LifecycleEffect(QueueAction.REMOVE)

    return LifecycleEffect(QueueAction.NONE)


def apply_transition(
    job: Job,
    target: JobStatus,
    now: Optional[datetime] = None,
) -> tuple[Job, LifecycleEffect]:
    """
    Apply a dispatch-driven transition.

    Entering RUNNING stamps last_run_at.

    Returns:
        (updated copy of the job, effect)

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    assert_transition(job, target)
    now = now or utc_now()

    changes = {"status": target, "updated_at": now}
    if target == JobStatus.RUNNING:
        changes["last_run_at"] = now

    updated = dataclasses.replace(job, **changes)
    return updated, transition_effect(updated, target)


def enabled_effect(job: Job, enabled: bool) -> LifecycleEffect:
    """
    Effects of setting `enabled` on a job. Status is never touched.

    Disabling always removes the queue entry. Enabling re-submits only
    a PENDING job.
    """
    if not enabled:
        return LifecycleEffect(QueueAction.REMOVE)
    if job.status == JobStatus.PENDING:
        return LifecycleEffect(QueueAction.RESUBMIT)
    return LifecycleEffect(QueueAction.NONE)


def update_effect(before: Job, after: Job) -> LifecycleEffect:
    """
    Effects of an explicit update.

    The existing queue entry is always dropped; the job goes back on the
    queue only if it ends up enabled and PENDING. Direct status edits follow
    the same rule, so a stale descriptor never outlives the edit.
    """
    if after.enabled and after.status == JobStatus.PENDING:
        return LifecycleEffect(QueueAction.RESUBMIT)
    return LifecycleEffect(QueueAction.REMOVE)


def admission_effect(job: Job) -> LifecycleEffect:
    """Effects of admitting a new job. Only list caches can be stale."""
    action = QueueAction.SUBMIT if job.is_schedulable() else QueueAction.NONE
    return LifecycleEffect(action, invalidate_job=False)
