"""
Cache key builders, TTLs and invalidation.

Key families:
- duplicate:{fingerprint}              -> job snapshot (24h)
- job:{id}                             -> job snapshot (15 min)
- jobs:all:{page}:{limit}:{status}     -> page of jobs + total (5 min)
- jobs:upcoming:{limit}                -> upcoming jobs (3 min)
"""

import logging
from typing import Optional

from src.infra.cache import CachePort

logger = logging.getLogger(__name__)


DUPLICATE_TTL_SECONDS = 86400
JOB_TTL_SECONDS = 900
JOB_LIST_TTL_SECONDS = 300
UPCOMING_TTL_SECONDS = 180

DUPLICATE_PREFIX = "duplicate:"
JOB_PREFIX = "job:"
JOB_LIST_PREFIX = "jobs:all:"
UPCOMING_PREFIX = "jobs:upcoming:"


def duplicate_key(fingerprint: str) -> str:
    return f"{DUPLICATE_PREFIX}{fingerprint}"


def job_key(job_id: int) -> str:
    return f"{JOB_PREFIX}{job_id}"


def job_list_key(page: int, limit: int, status: Optional[str] = None) -> str:
    return f"{JOB_LIST_PREFIX}{page}:{limit}:{status or 'all'}"


def upcoming_key(limit: int) -> str:
    return f"{UPCOMING_PREFIX}{limit}"


class CacheInvalidator:
    """
    Best-effort cache invalidation.

    The cache adapter already swallows its own errors; nothing here raises.
    """

    def __init__(self, cache: CachePort):
        self.cache = cache

    def invalidate_lists(self) -> None:
        """Drop every paginated and upcoming list entry."""
        self.cache.delete_by_prefix(JOB_LIST_PREFIX)
        self.cache.delete_by_prefix(UPCOMING_PREFIX)

    def invalidate_job(self, job_id: int, *fingerprints: Optional[str]) -> None:
        """Drop the id-scoped entry and the duplicate entry of each fingerprint."""
        self.cache.delete(job_key(job_id))
        for fingerprint in {fp for fp in fingerprints if fp}:
            self.cache.delete(duplicate_key(fingerprint))

    def invalidate_all(self, job_id: int, *fingerprints: Optional[str]) -> None:
        self.invalidate_job(job_id, *fingerprints)
        self.invalidate_lists()
        logger.debug(f"[CacheInvalidator] Invalidated caches for job {job_id}")
