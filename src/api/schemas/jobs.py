"""
Job API schemas.

Request bodies and responses use camelCase on the wire
(cronExpression, startDate, ...); Python attributes are snake_case and
match the Job entity fields.

Validation rules:
- name: 1-255 characters
- description: up to 1000 characters
- cronExpression: 5-field cron, required iff frequency is CUSTOM
- endDate strictly after startDate
- maxRetries: 0-10

Updates are partial, so the date and cron rules are checked again by the
service against the merged job.
"""

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.scheduler.entities import Job, JobFrequency, JobStatus


# minute hour day-of-month month day-of-week; each field is *, a value or */step
CRON_PATTERN = re.compile(
    r"^(\*|[0-5]?[0-9]|\*/[0-5]?[0-9]) "
    r"(\*|1?[0-9]|2[0-3]|\*/(1?[0-9]|2[0-3])) "
    r"(\*|[1-9]|[12][0-9]|3[01]|\*/([1-9]|[12][0-9]|3[01])) "
    r"(\*|[1-9]|1[0-2]|\*/([1-9]|1[0-2])) "
    r"(\*|[0-6]|\*/[0-6])$"
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_cron(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not CRON_PATTERN.match(value):
        raise ValueError("Invalid cron expression format")
    return value


# =============================================================================
# Requests
# =============================================================================


class JobCreateRequest(_CamelModel):
    """Request to create a new job."""

    name: str = Field(..., min_length=1, max_length=255, description="Job name")
    description: Optional[str] = Field(default=None, max_length=1000, description="Job description")
    enabled: bool = Field(default=True, description="Whether the job may be queued")
    frequency: JobFrequency = Field(..., description="ONCE, DAILY, WEEKLY, MONTHLY or CUSTOM")
    cron_expression: Optional[str] = Field(
        default=None,
        description="5-field cron pattern, required when frequency is CUSTOM",
        json_schema_extra={"examples": ["*/15 * * * *", "0 9 * * 1"]},
    )
    start_date: datetime = Field(..., description="First run (ISO-8601)")
    end_date: Optional[datetime] = Field(default=None, description="Last allowed run (ISO-8601)")
    data: dict[str, Any] = Field(default_factory=dict, description="Opaque job payload")
    max_retries: int = Field(default=3, ge=0, le=10, description="Maximum retries")

    @field_validator("cron_expression")
    @classmethod
    def validate_cron(cls, value: Optional[str]) -> Optional[str]:
        return _check_cron(value)

    @model_validator(mode="after")
    def validate_schedule(self) -> "JobCreateRequest":
        if self.frequency == JobFrequency.CUSTOM and not self.cron_expression:
            raise ValueError("Cron expression is required when frequency is CUSTOM")
        if self.frequency != JobFrequency.CUSTOM and self.cron_expression:
            raise ValueError("Cron expression should only be provided when frequency is CUSTOM")
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class JobUpdateRequest(_CamelModel):
    """Request to update a job. Only the fields that are sent are changed."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    enabled: Optional[bool] = None
    frequency: Optional[JobFrequency] = None
    cron_expression: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    data: Optional[dict[str, Any]] = None
    max_retries: Optional[int] = Field(default=None, ge=0, le=10)
    status: Optional[JobStatus] = Field(default=None, description="Direct status edit")

    @field_validator("cron_expression")
    @classmethod
    def validate_cron(cls, value: Optional[str]) -> Optional[str]:
        return _check_cron(value)

    # Omitted means unchanged; only description, cronExpression and endDate may be null
    @field_validator(
        "name", "enabled", "frequency", "start_date", "data", "max_retries", "status"
    )
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @model_validator(mode="after")
    def validate_schedule(self) -> "JobUpdateRequest":
        if self.frequency == JobFrequency.CUSTOM and not self.cron_expression:
            raise ValueError("Cron expression is required when frequency is CUSTOM")
        if (
            self.frequency is not None
            and self.frequency != JobFrequency.CUSTOM
            and self.cron_expression
        ):
            raise ValueError("Cron expression should only be provided when frequency is CUSTOM")
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self

    def to_changes(self) -> dict[str, Any]:
        """Fields explicitly sent by the client, keyed by Job attribute name."""
        return self.model_dump(exclude_unset=True)


# =============================================================================
# Responses
# =============================================================================


class JobResponse(_CamelModel):
    """Response representing a Job."""

    id: int
    name: str
    description: Optional[str] = None
    status: JobStatus
    enabled: bool
    frequency: JobFrequency
    cron_expression: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    data: dict[str, Any] = Field(default_factory=dict)
    fingerprint: str
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.job_id,
            name=job.name,
            description=job.description,
            status=job.status,
            enabled=job.enabled,
            frequency=job.frequency,
            cron_expression=job.cron_expression,
            start_date=job.start_date,
            end_date=job.end_date,
            last_run_at=job.last_run_at,
            next_run_at=job.next_run_at,
            data=job.data,
            fingerprint=job.fingerprint,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobListResponse(_CamelModel):
    """Response for the paginated job list."""

    jobs: List[JobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Total number of matching jobs")
    page: int
    limit: int
    total_pages: int


class DuplicateJobResponse(_CamelModel):
    """409 body returned when an equivalent job already exists."""

    error: str = "Duplicate job detected"
    message: str
    existing_job: JobResponse
    suggestion: str = "Use forceCreate=true query parameter to override duplicate detection"
