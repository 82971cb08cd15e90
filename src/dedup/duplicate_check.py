"""
Duplicate admission check.

Lookup order:
1. cache  duplicate:{fingerprint}
2. store  find_by_fingerprint(), bounded retries with per-attempt deadline

Failure policy:
- Cache errors are a miss and are never retried
- Store errors are retried with exponential backoff; when retries are
  exhausted the check fails OPEN (returns None) and logs fingerprint,
  attempts and elapsed time
- Callers never see an exception from check_duplicate()

The check is advisory. The store's unique index is the real guard against
two concurrent admissions of the same job.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from src.infra.cache import CachePort
from src.infra.retry import RetryPolicy
from src.scheduler.cache_keys import DUPLICATE_TTL_SECONDS, duplicate_key
from src.scheduler.entities import Job, JobFrequency
from src.scheduler.errors import TransientDependencyError
from src.scheduler.persistence import JobStore

from .fingerprint import compute_job_fingerprint

logger = logging.getLogger(__name__)


# Defaults
DEFAULT_LOOKUP_TIMEOUT_SECONDS = 5.0
DEFAULT_LOOKUP_ATTEMPTS = 3
DEFAULT_LOOKUP_BASE_DELAY_SECONDS = 0.1


@dataclass
class DuplicateCheckFields:
    """The identity fields of a job."""

    name: str
    frequency: JobFrequency
    cron_expression: Optional[str] = None
    data: dict = field(default_factory=dict)

    @property
    def fingerprint(self) -> str:
        return compute_job_fingerprint(self.name, self.frequency, self.cron_expression, self.data)

    @classmethod
    def from_job(cls, job: Job) -> "DuplicateCheckFields":
        return cls(
            name=job.name,
            frequency=job.frequency,
            cron_expression=job.cron_expression,
            data=job.data,
        )


class DuplicateAdmissionController:
    """
    Cache-first, store-fallback duplicate lookup.

    Usage:
        controller = DuplicateAdmissionController(store, cache)
        existing = controller.check_duplicate(fields)
        if existing is not None:
            raise DuplicateJobError(existing)
    """

    def __init__(
        self,
        store: JobStore,
        cache: CachePort,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            store: Job store
            cache: Cache adapter
            retry_policy: Store lookup policy (default: 3 attempts, 0.1s base, 5s deadline)
            sleep: Backoff sleep function
        """
        self.store = store
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=DEFAULT_LOOKUP_ATTEMPTS,
            base_delay=DEFAULT_LOOKUP_BASE_DELAY_SECONDS,
            timeout=DEFAULT_LOOKUP_TIMEOUT_SECONDS,
        )
        self._sleep = sleep

    def check_duplicate(self, fields: DuplicateCheckFields) -> Optional[Job]:
        """
        Return the already-admitted job with the same identity, or None.

        None means "no duplicate" OR "could not determine" (fail-open).
        """
        fingerprint = fields.fingerprint

        cached = self._read_cache(fingerprint)
        if cached is not None:
            logger.debug(f"[DuplicateCheck] Cache hit: {fingerprint[:16]} -> job {cached.job_id}")
            return cached

        started = time.monotonic()
        try:
            existing = self.retry_policy.call(
                lambda: self.store.find_by_fingerprint(
                    fields.name,
                    fields.frequency,
                    fields.cron_expression,
                    fingerprint,
                ),
                operation="duplicate_lookup",
                sleep=self._sleep,
            )
        except TransientDependencyError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                f"[DuplicateCheck] Store lookup failed, admitting without duplicate check: "
                f"fingerprint={fingerprint} attempts={e.attempts} elapsed_ms={elapsed_ms} "
                f"error={e.cause or e}"
            )
            return None
        except Exception as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                f"[DuplicateCheck] Unexpected store error, admitting without duplicate check: "
                f"fingerprint={fingerprint} attempts=1 elapsed_ms={elapsed_ms} error={e!r}",
                exc_info=True,
            )
            return None

        if existing is None:
            return None

        logger.info(f"[DuplicateCheck] Store hit: {fingerprint[:16]} -> job {existing.job_id}")
        self.remember(existing)
        return existing

    def remember(self, job: Job) -> None:
        """Seed the duplicate cache with a job snapshot."""
        if not job.fingerprint:
            return
        self.cache.set(duplicate_key(job.fingerprint), job.to_dict(), DUPLICATE_TTL_SECONDS)

    def forget(self, fingerprint: Optional[str]) -> None:
        """Drop the duplicate cache entry for a fingerprint."""
        if fingerprint:
            self.cache.delete(duplicate_key(fingerprint))

    def _read_cache(self, fingerprint: str) -> Optional[Job]:
        raw: Any = self.cache.get(duplicate_key(fingerprint))
        if raw is None:
            return None

        try:
            return Job.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[DuplicateCheck] Corrupt cache entry for {fingerprint[:16]}, ignoring: {e}")
            return None
