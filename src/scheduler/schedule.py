"""
Schedule calculation for jobs.

calculate_next_run() decides the next execution instant of a job.
queue_schedule_for() decides how the job is handed to the work queue:
a one-shot delay for ONCE jobs, a cron pattern for recurring ones.

Rules for calculate_next_run, evaluated in order:
1. end_date in the past   -> start_date
2. start_date in future   -> start_date
3. ONCE                   -> start_date
4. DAILY / WEEKLY / MONTHLY -> last_run_at (or start_date) + 1 day / 7 days / 1 month
5. CUSTOM                 -> start_date (the work queue owns cron timing)
Unknown frequency values log a warning and are treated as ONCE.
"""

import calendar
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from .entities import Job, JobFrequency, QueueSchedule, ensure_utc, utc_now


logger = logging.getLogger(__name__)


# Cron patterns used when a recurring job has no explicit expression
DEFAULT_CRON_PATTERNS = {
    JobFrequency.DAILY: "0 0 * * *",    # every day at midnight
    JobFrequency.WEEKLY: "0 0 * * 0",   # every Sunday at midnight
    JobFrequency.MONTHLY: "0 0 1 * *",  # first day of the month at midnight
}


def add_months(value: datetime, months: int) -> datetime:
    """
    Add calendar months, keeping the day-of-month.

    Days that do not exist in the target month are clamped to its last day
    (Jan 31 + 1 month -> Feb 28/29).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def _coerce_frequency(frequency: Any) -> Optional[JobFrequency]:
    if isinstance(frequency, JobFrequency):
        return frequency
    try:
        return JobFrequency(str(frequency).upper())
    except ValueError:
        return None


def calculate_next_run(job: Job, now: Optional[datetime] = None) -> datetime:
    """
    Compute the next execution instant of a job.

    Never raises for an unrecognized frequency.

    Args:
        job: The job (only scheduling fields are read)
        now: Reference time, defaults to the current UTC time

    Returns:
        Aware UTC datetime
    """
    now = ensure_utc(now) if now is not None else utc_now()
    start_date = ensure_utc(job.start_date)
    end_date = ensure_utc(job.end_date)

    if end_date is not None and end_date < now:
        return start_date

    if start_date > now:
        return start_date

    frequency = _coerce_frequency(job.frequency)

    if frequency is None:
        logger.warning(
            f"[Schedule] Unknown job frequency {job.frequency!r} for job {job.job_id}, treating as ONCE"
        )
        return start_date

    if frequency == JobFrequency.ONCE:
        return start_date

    if frequency == JobFrequency.CUSTOM:
        return start_date

    last_run = ensure_utc(job.last_run_at) or start_date

    if frequency == JobFrequency.DAILY:
        return last_run + timedelta(days=1)
    if frequency == JobFrequency.WEEKLY:
        return last_run + timedelta(days=7)
    return add_months(last_run, 1)


def cron_pattern_for(job: Job) -> Optional[str]:
    """Cron pattern the work queue should repeat a job on, if any."""
    if job.cron_expression:
        return job.cron_expression

    frequency = _coerce_frequency(job.frequency)
    return DEFAULT_CRON_PATTERNS.get(frequency)


def queue_schedule_for(job: Job, now: Optional[datetime] = None) -> Optional[QueueSchedule]:
    """
    Decide how a job should be submitted to the work queue.

    - ONCE (and unknown frequencies): one-shot, delayed until next run.
      A job that already ran and whose start is past is not resubmitted.
    - Recurring: repeating on the job's cron pattern.

    Returns:
        QueueSchedule, or None when nothing should be queued
    """
    now = ensure_utc(now) if now is not None else utc_now()
    frequency = _coerce_frequency(job.frequency)

    if frequency in (None, JobFrequency.ONCE):
        next_run = calculate_next_run(job, now)
        delay_ms = int((next_run - now).total_seconds() * 1000)
        if delay_ms > 0:
            return QueueSchedule.one_shot(delay_ms)
        if job.last_run_at is None:
            return QueueSchedule.one_shot(0)
        return None

    pattern = cron_pattern_for(job)
    if pattern is None:
        logger.warning(f"[Schedule] Job {job.job_id} has no cron pattern, not queued")
        return None

    return QueueSchedule.repeating(pattern)
