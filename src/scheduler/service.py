"""
Job Admission Service - main entry point for the job scheduler.

This service coordinates all scheduler components:
- JobStore (authoritative storage)
- DuplicateAdmissionController (cache-first duplicate lookup)
- Lifecycle state machine (status/enabled effects)
- Schedule calculator (next run, queue schedule)
- Work queue (hand-off to the external worker runtime)
- Cache invalidation

Ordering for every mutating call: persist -> work queue -> caches.
Cache invalidation always runs, even when the queue call fails.

Usage:
    service = JobAdmissionService.create(load_config())
    service.initialize()
    job = service.create(JobDefinition(...))
"""

import dataclasses
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Tuple

from src.dedup.duplicate_check import DuplicateAdmissionController, DuplicateCheckFields
from src.dedup.fingerprint import compute_job_fingerprint
from src.infra.cache import CachePort, RedisCache
from src.infra.config import SchedulerConfig, load_config
from src.infra.retry import RetryPolicy
from src.infra.work_queue import RedisWorkQueue, WorkQueuePort

from .cache_keys import (
    JOB_LIST_TTL_SECONDS,
    JOB_TTL_SECONDS,
    UPCOMING_TTL_SECONDS,
    CacheInvalidator,
    job_key,
    job_list_key,
    upcoming_key,
)
from .entities import (
    Job,
    JobDefinition,
    JobFrequency,
    JobStatus,
    ensure_utc,
    frequency_from_store,
    status_from_store,
    utc_now,
)
from .errors import (
    DuplicateJobError,
    InvalidJobUpdateError,
    SchedulerInitializationError,
    UniqueConstraintViolation,
)
from .lifecycle import (
    LifecycleEffect,
    QueueAction,
    admission_effect,
    apply_transition,
    enabled_effect,
    update_effect,
)
from .persistence import JobStore
from .schedule import calculate_next_run, queue_schedule_for


logger = logging.getLogger(__name__)


MAX_PAGE_SIZE = 100

# Fields that feed the fingerprint
IDENTITY_FIELDS = ("name", "frequency", "cron_expression", "data")

# Fields that feed next_run_at
SCHEDULING_FIELDS = ("frequency", "cron_expression", "start_date", "end_date", "last_run_at")

UPDATABLE_FIELDS = (
    "name",
    "description",
    "frequency",
    "cron_expression",
    "start_date",
    "end_date",
    "enabled",
    "data",
    "max_retries",
    "status",
)

# Updatable fields that may be set to null
NULLABLE_FIELDS = ("description", "cron_expression", "end_date")


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def normalize_update_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Convert external update values into entity values.

    - status / frequency strings go through the enum mapping tables
    - name and cron_expression are stripped
    - datetimes are converted to aware UTC

    Raises:
        InvalidJobUpdateError: For fields that cannot be updated, or a null
            value for a field that cannot be null
    """
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise InvalidJobUpdateError(None, f"fields cannot be updated: {sorted(unknown)}")

    nulls = sorted(
        key for key, value in fields.items() if value is None and key not in NULLABLE_FIELDS
    )
    if nulls:
        raise InvalidJobUpdateError(None, f"fields cannot be null: {nulls}")

    changes = dict(fields)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    if "cron_expression" in changes:
        changes["cron_expression"] = _clean_text(changes["cron_expression"])
    if "frequency" in changes:
        changes["frequency"] = frequency_from_store(changes["frequency"])
    if "status" in changes:
        changes["status"] = status_from_store(changes["status"])
    for key in ("start_date", "end_date"):
        if key in changes:
            changes[key] = ensure_utc(changes[key])
    if "data" in changes:
        changes["data"] = dict(changes["data"])
    return changes


def validate_merged_job(job: Job) -> None:
    """
    Check the invariants a partial update could break.

    Raises:
        InvalidJobUpdateError: If the merged job is not a valid job
    """
    if job.frequency == JobFrequency.CUSTOM and not job.cron_expression:
        raise InvalidJobUpdateError(
            job.job_id, "cron expression is required when frequency is CUSTOM"
        )
    if job.end_date is not None and job.end_date <= job.start_date:
        raise InvalidJobUpdateError(job.job_id, "end date must be after start date")


class JobAdmissionService:
    """
    Duplicate-safe admission and lifecycle coordination.

    Provides:
    - create/update/delete/enable/disable with queue and cache side effects
    - startup reconciliation of the work queue (initialize)
    - cached read paths
    - lifecycle hooks for the worker runtime
    """

    def __init__(
        self,
        store: JobStore,
        cache: CachePort,
        work_queue: WorkQueuePort,
        duplicate_controller: Optional[DuplicateAdmissionController] = None,
        write_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize JobAdmissionService with its collaborators.

        Use JobAdmissionService.create() for convenient construction.
        """
        self.store = store
        self.cache = cache
        self.work_queue = work_queue
        self.duplicates = duplicate_controller or DuplicateAdmissionController(store, cache)
        self.write_policy = write_policy or RetryPolicy()
        self.invalidator = CacheInvalidator(cache)
        self._clock = clock

    @classmethod
    def create(cls, config: Optional[SchedulerConfig] = None) -> "JobAdmissionService":
        """
        Create a JobAdmissionService with all components wired together.

        Args:
            config: Scheduler settings (default: load_config())

        Returns:
            Configured JobAdmissionService
        """
        config = config or load_config()

        store = JobStore(config.db_path, busy_timeout=config.db_busy_timeout)

        cache = RedisCache.from_url(
            config.redis_url,
            connect_timeout=config.redis_connect_timeout,
            socket_timeout=config.redis_socket_timeout,
        )

        work_queue = RedisWorkQueue.from_url(
            config.redis_url,
            prefix=config.queue_prefix,
            connect_timeout=config.redis_connect_timeout,
            socket_timeout=config.redis_socket_timeout,
        )

        duplicate_controller = DuplicateAdmissionController(
            store,
            cache,
            retry_policy=RetryPolicy(
                max_attempts=config.duplicate_check_max_attempts,
                base_delay=config.duplicate_check_base_delay,
                timeout=config.duplicate_check_timeout,
            ),
        )

        write_policy = RetryPolicy(
            max_attempts=config.store_write_max_attempts,
            base_delay=config.duplicate_check_base_delay,
        )

        logger.info(f"[JobAdmission] Service created (db={config.db_path}, queue={config.queue_prefix})")

        return cls(
            store=store,
            cache=cache,
            work_queue=work_queue,
            duplicate_controller=duplicate_controller,
            write_policy=write_policy,
        )

    def close(self) -> None:
        """Release Redis connections."""
        for resource in (self.cache, self.work_queue):
            close = getattr(resource, "close", None)
            if close is not None:
                close()

    # =========================================================================
    # Admission
    # =========================================================================

    def create(self, fields: JobDefinition, force_create: bool = False) -> Job:
        """
        Admit a new job.

        Args:
            fields: Validated job definition
            force_create: Skip duplicate detection

        Returns:
            The persisted PENDING job

        Raises:
            DuplicateJobError: If an equivalent job already exists
            TransientDependencyError: If the store or work queue is unavailable
        """
        now = self._clock()
        definition = dataclasses.replace(
            fields,
            name=fields.name.strip(),
            cron_expression=_clean_text(fields.cron_expression),
        )
        job = Job.from_definition(definition)
        job.created_at = job.updated_at = now
        job.fingerprint = compute_job_fingerprint(
            job.name, job.frequency, job.cron_expression, job.data
        )

        if not force_create:
            existing = self.duplicates.check_duplicate(DuplicateCheckFields.from_job(job))
            if existing is not None:
                logger.info(
                    f"[JobAdmission] Duplicate rejected: '{job.name}' matches job {existing.job_id} "
                    f"(fingerprint={job.fingerprint[:16]})"
                )
                raise DuplicateJobError(existing)

        job.next_run_at = calculate_next_run(job, now)

        try:
            job = self._write("insert", lambda: self.store.insert(job, forced=force_create))
        except UniqueConstraintViolation:
            existing = self.store.find_by_fingerprint(
                job.name, job.frequency, job.cron_expression, job.fingerprint
            )
            if existing is None:
                raise
            logger.warning(
                f"[JobAdmission] Concurrent duplicate caught by unique index: '{job.name}' "
                f"matches job {existing.job_id} (fingerprint={job.fingerprint[:16]})"
            )
            raise DuplicateJobError(existing)

        logger.info(
            f"[JobAdmission] Job {job.job_id} created: '{job.name}' ({job.frequency.value}, "
            f"forced={force_create}, fingerprint={job.fingerprint[:16]})"
        )

        self.duplicates.remember(job)
        self._apply_effect(job, admission_effect(job))
        return job

    def update(self, job_id: int, fields: dict[str, Any]) -> Optional[Job]:
        """
        Update a job.

        - next_run_at is recomputed when a scheduling field changes
        - the fingerprint is recomputed when an identity field changes
        - the queue entry is removed and re-submitted if the job ends up
          enabled and PENDING

        Args:
            job_id: Job to update
            fields: Job attribute name -> new value

        Returns:
            Updated job, or None if it does not exist

        Raises:
            DuplicateJobError: If the new identity collides with another job
            InvalidJobUpdateError: If a field is nulled that cannot be, or the
                merged job breaks the date or cron rules
            TransientDependencyError: If the store or work queue is unavailable
        """
        existing = self.store.find_by_id(job_id)
        if existing is None:
            return None

        now = self._clock()
        try:
            changes = normalize_update_fields(fields)
        except InvalidJobUpdateError as e:
            raise InvalidJobUpdateError(job_id, e.reason) from e

        frequency = changes.get("frequency", existing.frequency)
        if frequency != JobFrequency.CUSTOM:
            changes["cron_expression"] = None

        candidate = dataclasses.replace(existing, **changes)
        validate_merged_job(candidate)
        changed = {key for key in changes if changes[key] != getattr(existing, key)}

        if changed & set(IDENTITY_FIELDS):
            candidate.fingerprint = compute_job_fingerprint(
                candidate.name, candidate.frequency, candidate.cron_expression, candidate.data
            )
            changes["fingerprint"] = candidate.fingerprint

        if changed & set(SCHEDULING_FIELDS):
            changes["next_run_at"] = calculate_next_run(candidate, now)

        changes["updated_at"] = max(now, existing.updated_at)

        try:
            updated = self._write("update", lambda: self.store.update(job_id, changes))
        except UniqueConstraintViolation:
            other = self.store.find_by_fingerprint(
                candidate.name, candidate.frequency, candidate.cron_expression, candidate.fingerprint
            )
            if other is None:
                raise
            logger.warning(f"[JobAdmission] Update of job {job_id} collides with job {other.job_id}")
            raise DuplicateJobError(other)

        if updated is None:
            return None

        logger.info(f"[JobAdmission] Job {job_id} updated: {sorted(changed) or 'no changes'}")

        self._apply_effect(updated, update_effect(existing, updated), existing.fingerprint)
        return updated

    def delete(self, job_id: int) -> bool:
        """
        Delete a job, its queue entry and every cache entry that refers to it.

        Returns:
            False if the job does not exist
        """
        existing = self.store.find_by_id(job_id)
        if existing is None:
            return False

        deleted = self._write("delete", lambda: self.store.delete(job_id))
        if not deleted:
            return False

        logger.info(f"[JobAdmission] Job {job_id} deleted")
        self._apply_effect(existing, LifecycleEffect(QueueAction.REMOVE))
        return True

    def enable(self, job_id: int) -> Optional[Job]:
        """Enable a job; re-submit it only if it is PENDING."""
        return self._set_enabled(job_id, True)

    def disable(self, job_id: int) -> Optional[Job]:
        """Disable a job and remove it from the work queue."""
        return self._set_enabled(job_id, False)

    def _set_enabled(self, job_id: int, enabled: bool) -> Optional[Job]:
        existing = self.store.find_by_id(job_id)
        if existing is None:
            return None

        now = max(self._clock(), existing.updated_at)
        updated = self._write(
            "set_enabled",
            lambda: self.store.update(job_id, {"enabled": enabled, "updated_at": now}),
        )
        if updated is None:
            return None

        logger.info(f"[JobAdmission] Job {job_id} {'enabled' if enabled else 'disabled'}")
        self._apply_effect(updated, enabled_effect(updated, enabled))
        return updated

    def initialize(self) -> int:
        """
        Re-submit every enabled PENDING job to the work queue.

        Called once at startup. Any failure aborts startup.

        Returns:
            Number of jobs submitted

        Raises:
            SchedulerInitializationError: On any store or queue failure
        """
        logger.info("[JobAdmission] Reconciling work queue with stored jobs...")
        try:
            jobs = self.store.list_by_status_enabled(JobStatus.PENDING, True)
            submitted = 0
            for job in jobs:
                if self._submit(job):
                    submitted += 1
        except Exception as e:
            logger.error(f"[JobAdmission] Scheduler initialization failed: {e}")
            raise SchedulerInitializationError(f"Failed to initialize scheduled jobs: {e}") from e

        logger.info(f"[JobAdmission] Initialized {submitted}/{len(jobs)} pending jobs")
        return submitted

    # =========================================================================
    # Read paths (cached)
    # =========================================================================

    def get_job(self, job_id: int) -> Optional[Job]:
        """Get a job by ID, cache first."""
        cached = self.cache.get(job_key(job_id))
        if cached is not None:
            try:
                return Job.from_dict(cached)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[JobAdmission] Corrupt cache entry for job {job_id}: {e}")

        job = self.store.find_by_id(job_id)
        if job is not None:
            self.cache.set(job_key(job_id), job.to_dict(), JOB_TTL_SECONDS)
        return job

    def list_jobs(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[JobStatus] = None,
    ) -> Tuple[list[Job], int]:
        """
        List jobs newest first.

        Returns:
            (jobs on the page, total matching jobs)
        """
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        status = status_from_store(status) if status is not None else None

        key = job_list_key(page, limit, status.value if status else None)
        cached = self.cache.get(key)
        if cached is not None:
            try:
                return [Job.from_dict(raw) for raw in cached["jobs"]], int(cached["total"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[JobAdmission] Corrupt cache entry at {key}: {e}")

        jobs, total = self.store.list_jobs(page=page, limit=limit, status=status)
        self.cache.set(
            key,
            {"jobs": [job.to_dict() for job in jobs], "total": total},
            JOB_LIST_TTL_SECONDS,
        )
        return jobs, total

    def list_upcoming(self, limit: int = 10) -> list[Job]:
        """Enabled PENDING jobs ordered by next run."""
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        key = upcoming_key(limit)
        cached = self.cache.get(key)
        if cached is not None:
            try:
                return [Job.from_dict(raw) for raw in cached]
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[JobAdmission] Corrupt cache entry at {key}: {e}")

        jobs = self.store.list_upcoming(limit=limit, now=self._clock())
        self.cache.set(key, [job.to_dict() for job in jobs], UPCOMING_TTL_SECONDS)
        return jobs

    # =========================================================================
    # Worker runtime hooks
    # =========================================================================

    def mark_running(self, job_id: int) -> Optional[Job]:
        """
        Record the start of a run.

        Returns:
            Updated job, or None if the job is missing or disabled
            (the runtime must then skip the run)

        Raises:
            InvalidTransitionError: If the job cannot start from its status
        """
        job = self.store.find_by_id(job_id)
        if job is None:
            logger.warning(f"[JobAdmission] Run requested for missing job {job_id}")
            return None
        if not job.enabled:
            logger.info(f"[JobAdmission] Skipping run of disabled job {job_id}")
            return None

        return self._transition(job, JobStatus.RUNNING)

    def mark_completed(self, job_id: int) -> Optional[Job]:
        """Record a successful run."""
        job = self.store.find_by_id(job_id)
        if job is None:
            return None
        return self._transition(job, JobStatus.COMPLETED)

    def mark_failed(self, job_id: int, error: str) -> Optional[Job]:
        """Record a failed run."""
        job = self.store.find_by_id(job_id)
        if job is None:
            return None
        logger.error(f"[JobAdmission] Job {job_id} failed: {error}")
        return self._transition(job, JobStatus.FAILED)

    def cancel(self, job_id: int) -> Optional[Job]:
        """Cancel a job and remove its queue entry."""
        job = self.store.find_by_id(job_id)
        if job is None:
            return None
        return self._transition(job, JobStatus.CANCELLED)

    def increment_retry_count(self, job_id: int) -> Optional[Job]:
        """retry_count += 1; status is unchanged."""
        job = self.store.find_by_id(job_id)
        if job is None:
            return None

        now = max(self._clock(), job.updated_at)
        updated = self._write(
            "increment_retry_count",
            lambda: self.store.update(
                job_id, {"retry_count": job.retry_count + 1, "updated_at": now}
            ),
        )
        if updated is None:
            return None

        logger.info(
            f"[JobAdmission] Job {job_id} retry {updated.retry_count}/{updated.max_retries}"
        )
        self._apply_effect(updated, LifecycleEffect(QueueAction.NONE))
        return updated

    def _transition(self, job: Job, target: JobStatus) -> Optional[Job]:
        now = max(self._clock(), job.updated_at)
        moved, effect = apply_transition(job, target, now)

        changes: dict[str, Any] = {"status": moved.status, "updated_at": moved.updated_at}
        if moved.last_run_at != job.last_run_at:
            changes["last_run_at"] = moved.last_run_at
            changes["next_run_at"] = calculate_next_run(moved, now)

        updated = self._write(
            f"mark_{target.value.lower()}",
            lambda: self.store.update(job.job_id, changes),
        )
        if updated is None:
            return None

        logger.info(f"[JobAdmission] Job {job.job_id}: {job.status.value} -> {target.value}")
        self._apply_effect(updated, effect)
        return updated

    # =========================================================================
    # Maintenance
    # =========================================================================

    def backfill_fingerprints(self) -> int:
        """
        Recompute stored fingerprints that do not match their fields.

        Rows that would collide with another job are skipped and logged.

        Returns:
            Number of rows updated
        """
        updated = 0
        skipped = 0
        for job in self.store.iter_all():
            fingerprint = compute_job_fingerprint(
                job.name, job.frequency, job.cron_expression, job.data
            )
            if fingerprint == job.fingerprint:
                continue

            try:
                self._write(
                    "backfill_fingerprint",
                    lambda: self.store.update(job.job_id, {"fingerprint": fingerprint}),
                )
            except UniqueConstraintViolation:
                skipped += 1
                logger.warning(
                    f"[Backfill] Job {job.job_id} duplicates another job, fingerprint left unchanged"
                )
                continue

            updated += 1
            self.invalidator.invalidate_job(job.job_id, job.fingerprint, fingerprint)

        if updated:
            self.invalidator.invalidate_lists()

        logger.info(f"[Backfill] Updated {updated} fingerprints ({skipped} skipped)")
        return updated

    # =========================================================================
    # Side effects
    # =========================================================================

    def _write(self, operation: str, fn: Callable[[], Any]) -> Any:
        return self.write_policy.call(fn, operation=f"store.{operation}")

    def _submit(self, job: Job) -> bool:
        """Hand a schedulable job to the work queue. Returns False if nothing was queued."""
        if not job.is_schedulable():
            return False

        schedule = queue_schedule_for(job, self._clock())
        if schedule is None:
            logger.info(f"[JobAdmission] Job {job.job_id} has no upcoming run, not queued")
            return False

        self.work_queue.submit(job.job_id, job.to_dict(), schedule)
        return True

    def _apply_effect(
        self,
        job: Job,
        effect: LifecycleEffect,
        previous_fingerprint: Optional[str] = None,
    ) -> None:
        try:
            if effect.queue_action == QueueAction.SUBMIT:
                self._submit(job)
            elif effect.queue_action == QueueAction.REMOVE:
                self.work_queue.remove(job.job_id)
            elif effect.queue_action == QueueAction.RESUBMIT:
                self.work_queue.remove(job.job_id)
                self._submit(job)
        finally:
            if effect.invalidate_job:
                self.invalidator.invalidate_job(job.job_id, job.fingerprint, previous_fingerprint)
            if effect.invalidate_lists:
                self.invalidator.invalidate_lists()
