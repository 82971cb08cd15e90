"""
Configuration for the job scheduler.

All settings come from environment variables (optionally loaded from a .env
file by the entry points via python-dotenv).

Environment Variables:
- JOB_DB_PATH: SQLite database path (default: data/jobs.db)
- DB_BUSY_TIMEOUT_SECONDS: sqlite3 busy timeout (default: 5.0)
- REDIS_URL: Full Redis URL; overrides REDIS_HOST/PORT/PASSWORD
- REDIS_HOST / REDIS_PORT / REDIS_PASSWORD: Redis connection (default: localhost:6379)
- REDIS_CONNECT_TIMEOUT: Socket connect timeout in seconds (default: 5.0)
- REDIS_SOCKET_TIMEOUT: Per-command timeout in seconds (default: 2.0)
- QUEUE_PREFIX: Key prefix for work-queue entries (default: jobqueue)
- DUPLICATE_CHECK_TIMEOUT_SECONDS: Per-attempt store deadline (default: 5.0)
- DUPLICATE_CHECK_MAX_ATTEMPTS: Store attempts before failing open (default: 3)
- DUPLICATE_CHECK_BASE_DELAY_SECONDS: Backoff base (default: 0.1)
- STORE_WRITE_MAX_ATTEMPTS: Attempts for retryable store writes (default: 3)
- LOG_LEVEL: Logging level (default: INFO)
- LOG_DIR: Log directory (default: logs)
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)


# =============================================================================
# Environment helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


def _build_redis_url() -> str:
    url = os.getenv("REDIS_URL")
    if url:
        return url

    host = os.getenv("REDIS_HOST", "localhost")
    port = _get_env_int("REDIS_PORT", 6379)
    password = os.getenv("REDIS_PASSWORD")
    if password:
        return f"redis://:{quote(password, safe='')}@{host}:{port}/0"
    return f"redis://{host}:{port}/0"


# =============================================================================
# Config object
# =============================================================================

@dataclass
class SchedulerConfig:
    """Resolved scheduler settings."""

    db_path: str = "data/jobs.db"
    db_busy_timeout: float = 5.0

    redis_url: str = "redis://localhost:6379/0"
    redis_connect_timeout: float = 5.0
    redis_socket_timeout: float = 2.0
    queue_prefix: str = "jobqueue"

    duplicate_check_timeout: float = 5.0
    duplicate_check_max_attempts: int = 3
    duplicate_check_base_delay: float = 0.1
    store_write_max_attempts: int = 3

    log_level: str = "INFO"
    log_dir: str = "logs"


def load_config(db_path: Optional[str] = None) -> SchedulerConfig:
    """
    Build a SchedulerConfig from the current environment.

    Args:
        db_path: Explicit database path, overriding JOB_DB_PATH

    Returns:
        SchedulerConfig
    """
    attempts = _get_env_int("DUPLICATE_CHECK_MAX_ATTEMPTS", 3)
    if attempts < 1:
        logger.warning(f"[Config] DUPLICATE_CHECK_MAX_ATTEMPTS must be >= 1, got {attempts}, using 1")
        attempts = 1

    write_attempts = _get_env_int("STORE_WRITE_MAX_ATTEMPTS", 3)
    if write_attempts < 1:
        logger.warning(f"[Config] STORE_WRITE_MAX_ATTEMPTS must be >= 1, got {write_attempts}, using 1")
        write_attempts = 1

    return SchedulerConfig(
        db_path=db_path or os.getenv("JOB_DB_PATH", "data/jobs.db"),
        db_busy_timeout=_get_env_float("DB_BUSY_TIMEOUT_SECONDS", 5.0),
        redis_url=_build_redis_url(),
        redis_connect_timeout=_get_env_float("REDIS_CONNECT_TIMEOUT", 5.0),
        redis_socket_timeout=_get_env_float("REDIS_SOCKET_TIMEOUT", 2.0),
        queue_prefix=os.getenv("QUEUE_PREFIX", "jobqueue"),
        duplicate_check_timeout=_get_env_float("DUPLICATE_CHECK_TIMEOUT_SECONDS", 5.0),
        duplicate_check_max_attempts=attempts,
        duplicate_check_base_delay=_get_env_float("DUPLICATE_CHECK_BASE_DELAY_SECONDS", 0.1),
        store_write_max_attempts=write_attempts,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),
    )
