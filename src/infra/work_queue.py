"""
Work-queue adapter on Redis.

Redis layout (prefix defaults to "jobqueue"):
- {prefix}:descriptors  HASH  job_id -> JSON job snapshot
- {prefix}:scheduled    ZSET  job_id -> run_at_ms (one-shot entries)
- {prefix}:repeat       HASH  job_id -> cron pattern (repeating entries)

A job has at most one entry: submitting replaces whatever was there.
Both submit and remove run in a single MULTI/EXEC pipeline.

Queue writes are fail-closed: Redis errors surface as
TransientDependencyError.
"""

import json
import logging
import time
from typing import Any, Optional, Protocol

import redis
from redis.exceptions import RedisError

from src.scheduler.entities import QueueSchedule
from src.scheduler.errors import TransientDependencyError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class WorkQueuePort(Protocol):
    """Operations the scheduler needs from a work queue."""

    def submit(self, job_id: int, descriptor: dict, schedule: QueueSchedule) -> None: ...

    def remove(self, job_id: int) -> None: ...


class QueueKeys:
    """Redis key names for one queue prefix."""

    def __init__(self, prefix: str):
        self.descriptors = f"{prefix}:descriptors"
        self.scheduled = f"{prefix}:scheduled"
        self.repeat = f"{prefix}:repeat"


class RedisWorkQueue:
    """
    Redis-backed work queue consumed by an external worker runtime.

    Args:
        client: redis.Redis created with decode_responses=True
        prefix: Key prefix
    """

    def __init__(self, client: "redis.Redis", prefix: str = "jobqueue"):
        self.client = client
        self.keys = QueueKeys(prefix)

    @classmethod
    def from_url(
        cls,
        url: str,
        prefix: str = "jobqueue",
        connect_timeout: float = 5.0,
        socket_timeout: float = 2.0,
    ) -> "RedisWorkQueue":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
            socket_timeout=socket_timeout,
        )
        return cls(client, prefix)

    def submit(self, job_id: int, descriptor: dict, schedule: QueueSchedule) -> None:
        """
        Place a job on the queue, replacing any existing entry.

        Raises:
            TransientDependencyError: On Redis failure
        """
        member = str(job_id)
        pipe = self.client.pipeline(transaction=True)

        pipe.hset(self.keys.descriptors, member, json.dumps(descriptor, ensure_ascii=False, default=str))

        if schedule.is_repeating:
            pipe.zrem(self.keys.scheduled, member)
            pipe.hset(self.keys.repeat, member, schedule.cron_pattern)
        else:
            run_at_ms = now_ms() + max(0, schedule.delay_ms or 0)
            pipe.hdel(self.keys.repeat, member)
            pipe.zadd(self.keys.scheduled, {member: run_at_ms})

        try:
            pipe.execute()
        except RedisError as e:
            logger.error(f"[WorkQueue] Submit failed for job {job_id}: {e}")
            raise TransientDependencyError("work_queue.submit", e) from e
        finally:
            pipe.reset()

        if schedule.is_repeating:
            logger.debug(f"[WorkQueue] Job {job_id} repeating on '{schedule.cron_pattern}'")
        else:
            logger.debug(f"[WorkQueue] Job {job_id} scheduled in {schedule.delay_ms}ms")

    def remove(self, job_id: int) -> None:
        """
        Remove a job's entry. Removing an absent job is a no-op.

        Raises:
            TransientDependencyError: On Redis failure
        """
        member = str(job_id)
        pipe = self.client.pipeline(transaction=True)
        pipe.hdel(self.keys.descriptors, member)
        pipe.zrem(self.keys.scheduled, member)
        pipe.hdel(self.keys.repeat, member)

        try:
            pipe.execute()
        except RedisError as e:
            logger.error(f"[WorkQueue] Remove failed for job {job_id}: {e}")
            raise TransientDependencyError("work_queue.remove", e) from e
        finally:
            pipe.reset()

        logger.debug(f"[WorkQueue] Job {job_id} removed")

    # =========================================================================
    # Read side (used by the worker runtime and diagnostics)
    # =========================================================================

    def get_entry(self, job_id: int) -> Optional[dict[str, Any]]:
        """
        Return the queued entry for a job, or None.

        Keys: descriptor, run_at_ms (one-shot) and cron_pattern (repeating).
        """
        member = str(job_id)
        raw = self.client.hget(self.keys.descriptors, member)
        if raw is None:
            return None

        run_at = self.client.zscore(self.keys.scheduled, member)
        return {
            "descriptor": json.loads(raw),
            "run_at_ms": int(run_at) if run_at is not None else None,
            "cron_pattern": self.client.hget(self.keys.repeat, member),
        }

    def due_job_ids(self, at_ms: Optional[int] = None) -> list[int]:
        """One-shot job ids whose run time is at or before `at_ms`."""
        at_ms = now_ms() if at_ms is None else at_ms
        members = self.client.zrangebyscore(self.keys.scheduled, "-inf", at_ms)
        return [int(m) for m in members]

    def close(self) -> None:
        self.client.close()
