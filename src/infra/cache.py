"""
Cache adapter on Redis.

Values are stored as JSON strings with a TTL. The cache is advisory:
every Redis error is logged and treated as a miss (reads) or as a no-op
(writes/deletes). Nothing here raises to the caller.
"""

import json
import logging
from typing import Any, Optional, Protocol

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


# Keys deleted per DEL command during prefix invalidation
DELETE_BATCH_SIZE = 500


class CachePort(Protocol):
    """Operations the scheduler needs from a cache."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def delete_by_prefix(self, prefix: str) -> int: ...


class RedisCache:
    """
    JSON cache over a redis-py client.

    Args:
        client: redis.Redis created with decode_responses=True
    """

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        connect_timeout: float = 5.0,
        socket_timeout: float = 2.0,
    ) -> "RedisCache":
        """Create a cache with its own connection pool."""
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
            socket_timeout=socket_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None on miss/error."""
        try:
            raw = self.client.get(key)
        except RedisError as e:
            logger.warning(f"[Cache] GET {key} failed, treating as miss: {e}")
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"[Cache] Undecodable value at {key}, treating as miss: {e}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store `value` as JSON with a TTL. Returns False on error."""
        try:
            payload = json.dumps(value, ensure_ascii=False, default=str)
            self.client.setex(key, ttl_seconds, payload)
            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(f"[Cache] SET {key} failed: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Delete a single key. Returns False on error."""
        try:
            self.client.delete(key)
            return True
        except RedisError as e:
            logger.warning(f"[Cache] DEL {key} failed: {e}")
            return False

    def delete_by_prefix(self, prefix: str) -> int:
        """
        Delete every key starting with `prefix`.

        Uses SCAN so the server is never blocked by KEYS.

        Returns:
            Number of keys deleted (0 on error)
        """
        deleted = 0
        batch: list[str] = []
        try:
            for key in self.client.scan_iter(match=f"{prefix}*", count=DELETE_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= DELETE_BATCH_SIZE:
                    deleted += self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += self.client.delete(*batch)
        except RedisError as e:
            logger.warning(f"[Cache] Prefix delete {prefix}* failed after {deleted} keys: {e}")
        return deleted

    def close(self) -> None:
        self.client.close()
