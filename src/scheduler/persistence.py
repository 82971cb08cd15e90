"""
Job store on SQLite.

- WAL mode, one short-lived connection per call (safe across threads)
- Every connection carries a busy timeout
- Unique identity index over (name, frequency, IFNULL(cron_expression, ''),
  fingerprint); NULL cron expressions compare equal for this index. Rows
  inserted with forced=True are outside the index
- Status and frequency are stored as lowercase strings through the
  mapping tables in entities.py

Error mapping:
- sqlite3.IntegrityError on the identity index -> UniqueConstraintViolation
- sqlite3.OperationalError (locked, busy, I/O)  -> TransientDependencyError

"Not found" is signalled with None/False, never raised.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional, Tuple

from .entities import (
    Job,
    JobFrequency,
    JobStatus,
    ensure_utc,
    frequency_from_store,
    frequency_to_store,
    from_iso,
    status_from_store,
    status_to_store,
    utc_now,
)
from .errors import TransientDependencyError, UniqueConstraintViolation


logger = logging.getLogger(__name__)


DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0

IDENTITY_INDEX = "uq_jobs_identity"


def _to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width ISO string so lexical order equals time order."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def _encode_data(value: Any) -> str:
    return json.dumps(value or {}, ensure_ascii=False, sort_keys=True, default=str)


# attribute name -> (column, encoder)
_COLUMNS = {
    "name": ("name", None),
    "description": ("description", None),
    "status": ("status", status_to_store),
    "enabled": ("enabled", lambda v: 1 if v else 0),
    "frequency": ("frequency", frequency_to_store),
    "cron_expression": ("cron_expression", None),
    "start_date": ("start_date", _to_db_time),
    "end_date": ("end_date", _to_db_time),
    "last_run_at": ("last_run_at", _to_db_time),
    "next_run_at": ("next_run_at", _to_db_time),
    "data": ("data", _encode_data),
    "fingerprint": ("fingerprint", None),
    "retry_count": ("retry_count", None),
    "max_retries": ("max_retries", None),
    "created_at": ("created_at", _to_db_time),
    "updated_at": ("updated_at", _to_db_time),
}


def _encode(attribute: str, value: Any) -> Tuple[str, Any]:
    column, encoder = _COLUMNS[attribute]
    if encoder is not None and value is not None:
        value = encoder(value)
    return column, value


class JobStore:
    """
    SQLite-based persistence for jobs.

    - Abstracts SQLite storage
    - Does NOT contain business logic
    - Does NOT validate beyond schema constraints
    """

    def __init__(self, db_path: str | Path, busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS):
        """
        Initialize the store and create the schema if needed.

        Args:
            db_path: Path to SQLite database file. Every call opens its own
                connection, so ":memory:" is not supported.
            busy_timeout: Seconds a call waits on a locked database
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only connections."""
        try:
            conn = self._get_connection()
        except sqlite3.OperationalError as e:
            raise TransientDependencyError(operation, e) from e
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise TransientDependencyError(operation, e) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, operation: str, fingerprint: str = "") -> Iterator[sqlite3.Connection]:
        """Context manager for write transactions."""
        try:
            conn = self._get_connection()
        except sqlite3.OperationalError as e:
            raise TransientDependencyError(operation, e) from e
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "UNIQUE" in str(e).upper():
                raise UniqueConstraintViolation(fingerprint) from e
            raise
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise TransientDependencyError(operation, e) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction("init_db") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    enabled INTEGER NOT NULL DEFAULT 1,
                    frequency TEXT NOT NULL,
                    cron_expression TEXT,
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    last_run_at TEXT,
                    next_run_at TEXT,
                    data TEXT NOT NULL DEFAULT '{}',
                    fingerprint TEXT NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    max_retries INTEGER NOT NULL DEFAULT 3,
                    forced INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Backstop for the duplicate check; forced admissions are exempt
            conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {IDENTITY_INDEX}
                ON jobs (name, frequency, IFNULL(cron_expression, ''), fingerprint)
                WHERE forced = 0
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_enabled
                ON jobs (status, enabled)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_next_run
                ON jobs (next_run_at)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_fingerprint
                ON jobs (fingerprint)
            """)

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, job: Job, forced: bool = False) -> Job:
        """
        Insert a new job and assign its job_id.

        Args:
            job: Unsaved job
            forced: Admitted with force_create; exempt from the identity index

        Raises:
            UniqueConstraintViolation: If an identical job already exists
            TransientDependencyError: On lock/busy/I-O errors
        """
        values = dict(_encode(attr, getattr(job, attr)) for attr in _COLUMNS)
        values["forced"] = 1 if forced else 0
        columns = ", ".join(values.keys())
        placeholders = ", ".join("?" for _ in values)

        with self._transaction("insert", job.fingerprint) as conn:
            cursor = conn.execute(
                f"INSERT INTO jobs ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            job.job_id = cursor.lastrowid

        return job

    def update(self, job_id: int, fields: dict[str, Any]) -> Optional[Job]:
        """
        Update the given attributes of a job.

        Args:
            job_id: Job to update
            fields: Job attribute name -> new value

        Returns:
            Updated job, or None if the job does not exist

        Raises:
            UniqueConstraintViolation: If the update collides with another job
            TransientDependencyError: On lock/busy/I-O errors
        """
        if not fields:
            return self.find_by_id(job_id)

        unknown = set(fields) - set(_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        updates = []
        values = []
        for attr, value in fields.items():
            column, encoded = _encode(attr, value)
            updates.append(f"{column} = ?")
            values.append(encoded)
        values.append(job_id)

        with self._transaction("update", fields.get("fingerprint", "")) as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {', '.join(updates)} WHERE job_id = ?",
                values,
            )
            if cursor.rowcount == 0:
                return None

        return self.find_by_id(job_id)

    def delete(self, job_id: int) -> bool:
        """Delete a job. Returns False if it did not exist."""
        with self._transaction("delete") as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            return cursor.rowcount > 0

    # =========================================================================
    # Reads
    # =========================================================================

    def find_by_id(self, job_id: int) -> Optional[Job]:
        """Get a job by ID."""
        with self._connection("find_by_id") as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def find_by_fingerprint(
        self,
        name: str,
        frequency: JobFrequency,
        cron_expression: Optional[str],
        fingerprint: str,
    ) -> Optional[Job]:
        """
        Find the job with this identity.

        A None cron_expression matches only rows whose cron is NULL.
        """
        with self._connection("find_by_fingerprint") as conn:
            row = conn.execute(
                """
                SELECT * FROM jobs
                WHERE name = ?
                  AND frequency = ?
                  AND IFNULL(cron_expression, '') = IFNULL(?, '')
                  AND fingerprint = ?
                LIMIT 1
                """,
                (name, frequency_to_store(frequency), cron_expression, fingerprint),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def list_by_status_enabled(self, status: JobStatus, enabled: bool) -> list[Job]:
        """List jobs with the given status and enabled flag, oldest first."""
        with self._connection("list_by_status_enabled") as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs
                WHERE status = ? AND enabled = ?
                ORDER BY job_id ASC
                """,
                (status_to_store(status), 1 if enabled else 0),
            ).fetchall()

        return [self._row_to_job(row) for row in rows]

    def list_jobs(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[JobStatus] = None,
    ) -> Tuple[list[Job], int]:
        """
        List a page of jobs, newest first.

        Returns:
            (jobs on the page, total matching jobs)
        """
        offset = max(0, (page - 1) * limit)
        where = ""
        params: list[Any] = []
        if status is not None:
            where = "WHERE status = ?"
            params.append(status_to_store(status))

        with self._connection("list_jobs") as conn:
            total = conn.execute(
                f"SELECT COUNT(*) AS count FROM jobs {where}",
                params,
            ).fetchone()["count"]

            rows = conn.execute(
                f"""
                SELECT * FROM jobs {where}
                ORDER BY created_at DESC, job_id DESC
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            ).fetchall()

        return [self._row_to_job(row) for row in rows], total

    def list_upcoming(self, limit: int = 10, now: Optional[datetime] = None) -> list[Job]:
        """Enabled PENDING jobs whose next run is at or after `now`, soonest first."""
        now = now or utc_now()
        with self._connection("list_upcoming") as conn:
            rows = conn.execute(
                """
                SELECT * FROM jobs
                WHERE status = ? AND enabled = 1
                  AND next_run_at IS NOT NULL AND next_run_at >= ?
                ORDER BY next_run_at ASC
                LIMIT ?
                """,
                (status_to_store(JobStatus.PENDING), _to_db_time(now), limit),
            ).fetchall()

        return [self._row_to_job(row) for row in rows]

    def iter_all(self, batch_size: int = 500) -> Iterator[Job]:
        """Iterate every job in id order, one batch per connection."""
        last_id = 0
        while True:
            with self._connection("iter_all") as conn:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE job_id > ? ORDER BY job_id ASC LIMIT ?",
                    (last_id, batch_size),
                ).fetchall()

            if not rows:
                return

            for row in rows:
                yield self._row_to_job(row)
            last_id = rows[-1]["job_id"]

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job entity."""
        return Job(
            job_id=row["job_id"],
            name=row["name"],
            description=row["description"],
            status=status_from_store(row["status"]),
            enabled=bool(row["enabled"]),
            frequency=frequency_from_store(row["frequency"]),
            cron_expression=row["cron_expression"],
            start_date=from_iso(row["start_date"]),
            end_date=from_iso(row["end_date"]),
            last_run_at=from_iso(row["last_run_at"]),
            next_run_at=from_iso(row["next_run_at"]),
            data=json.loads(row["data"]) if row["data"] else {},
            fingerprint=row["fingerprint"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )
